"""
Tests for FastAPI endpoints (integration tests).
"""
from datetime import date
from unittest.mock import Mock, patch

import pytest
from fastapi.testclient import TestClient

from studybuddy import main
from studybuddy.errors import GenerationFailure, PersistenceError
from studybuddy.generation import GenerationService
from studybuddy.main import app, get_db, get_generation_service
from studybuddy.schemas import ConceptMapNode, Flashcard, QuizQuestion, StudyPlan


@pytest.fixture
def generator():
    """Generation service double returning canned artifacts."""
    generator = Mock(spec=GenerationService)
    generator.request_summary.return_value = "<h3>Cells</h3>"
    generator.request_overview.return_value = "All about cells."
    generator.request_flashcards.return_value = [
        Flashcard(id=f"card-1-{i}", front=f"Q{i}", back=f"A{i}") for i in range(2)
    ]
    generator.request_quiz.return_value = [
        QuizQuestion(
            id=f"quiz-1-{i}", question=f"Q{i}", options=["a", "b", "c", "d"], correct_answer=i
        )
        for i in range(2)
    ]
    generator.request_concept_map.return_value = ConceptMapNode(id="root", label="Cells")
    generator.generate_overview.return_value = "All about cells."
    generator.test_connection.return_value = (True, "Anthropic API connection successful")
    return generator


@pytest.fixture
def client(test_db, generator):
    """Create a test client with dependency overrides."""
    app.dependency_overrides[get_db] = lambda: test_db
    app.dependency_overrides[get_generation_service] = lambda: generator

    with TestClient(app) as test_client:
        yield test_client

    # Clean up after test
    app.dependency_overrides.clear()


@pytest.fixture
def material(client):
    response = client.post("/api/materials", json={"title": "Cells", "content": "ATP notes"})
    assert response.status_code == 200
    return response.json()


@pytest.fixture
def study_kit(client):
    response = client.post("/api/generate", json={"title": "Cells", "content": "ATP notes"})
    assert response.status_code == 200
    return response.json()


def test_health_check(client):
    """Test health check endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


# Material endpoints
def test_create_and_list_materials(client):
    """Test materials are listed in creation order."""
    ids = [
        client.post("/api/materials", json={"content": f"notes {i}"}).json()["id"]
        for i in range(3)
    ]

    response = client.get("/api/materials")

    assert response.status_code == 200
    assert [m["id"] for m in response.json()] == ids
    assert all(i.startswith("mat-") for i in ids)


def test_create_material_validation(client):
    """Test that empty content is rejected."""
    response = client.post("/api/materials", json={"content": ""})
    assert response.status_code == 422


def test_get_material(client, material):
    response = client.get(f"/api/materials/{material['id']}")
    assert response.status_code == 200
    assert response.json()["title"] == "Cells"

    assert client.get("/api/materials/mat-unknown").status_code == 404


def test_delete_material(client, study_kit):
    """Test deleting a material and its artifacts."""
    material_id = study_kit["material"]["id"]

    response = client.delete(f"/api/materials/{material_id}")

    assert response.status_code == 200
    assert client.get(f"/api/materials/{material_id}").status_code == 404
    assert client.delete(f"/api/materials/{material_id}").status_code == 404


# Generation endpoint
def test_generate_study_kit(client, study_kit):
    """Test generating and persisting a full study kit."""
    material_id = study_kit["material"]["id"]
    assert all(s["ok"] for s in study_kit["statuses"])

    cards = client.get(f"/api/materials/{material_id}/flashcards").json()
    assert [c["front"] for c in cards] == ["Q0", "Q1"]

    concept_map = client.get(f"/api/materials/{material_id}/concept-map").json()
    assert concept_map["label"] == "Cells"

    summary = client.get(f"/api/materials/{material_id}/summary").json()
    assert summary["summary"] == "<h3>Cells</h3>"


def test_generate_failure(client, generator):
    """Test that a failed artifact aborts generation with a 502."""
    generator.request_concept_map.side_effect = GenerationFailure("model overloaded")

    response = client.post("/api/generate", json={"content": "ATP notes"})

    assert response.status_code == 502
    assert response.json()["detail"]["failed"] == ["concept_map"]
    assert client.get("/api/materials").json() == []


def test_generate_best_effort(client, generator):
    """Test partial success once best_effort is configured."""
    client.put("/api/config", json={"generation_mode": "best_effort"})
    generator.request_quiz.side_effect = GenerationFailure("model overloaded")

    response = client.post("/api/generate", json={"content": "ATP notes"})

    assert response.status_code == 200
    statuses = {s["name"]: s["ok"] for s in response.json()["statuses"]}
    assert statuses["quiz"] is False
    assert statuses["flashcards"] is True


# Flashcard endpoints
def test_review_flashcard_flow(client, study_kit):
    """Test reviewing a card to mastery updates stats."""
    material_id = study_kit["material"]["id"]
    card_id = study_kit["flashcards"][0]["id"]
    url = f"/api/materials/{material_id}/flashcards/{card_id}/review"

    first = client.post(url, json={"outcome": "correct"}).json()
    assert first["card"]["status"] == "review"
    assert first["card_learned"] is False

    second = client.post(url, json={"outcome": "correct"}).json()
    assert second["card"]["status"] == "mastered"
    assert second["card_learned"] is True
    assert second["stats"]["total_cards_learned"] == 1

    third = client.post(url, json={"outcome": "incorrect"}).json()
    assert third["card"]["status"] == "learning"
    assert third["card"]["next_review"] is None

    progress = client.get(f"/api/materials/{material_id}/progress").json()
    assert progress["learning_count"] == 1
    assert progress["new_count"] == 1


def test_review_invalid_outcome(client, study_kit):
    material_id = study_kit["material"]["id"]
    card_id = study_kit["flashcards"][0]["id"]

    response = client.post(
        f"/api/materials/{material_id}/flashcards/{card_id}/review", json={"outcome": "maybe"}
    )

    assert response.status_code == 422


def test_review_missing_card(client, material):
    response = client.post(
        f"/api/materials/{material['id']}/flashcards/card-x/review", json={"outcome": "correct"}
    )
    assert response.status_code == 404


def test_patch_flashcard_cannot_set_status(client, study_kit):
    """Test that status is not writable through the edit endpoint."""
    material_id = study_kit["material"]["id"]
    card_id = study_kit["flashcards"][0]["id"]
    url = f"/api/materials/{material_id}/flashcards/{card_id}"

    assert client.patch(url, json={"status": "mastered"}).status_code == 422

    response = client.patch(url, json={"back": "Adenosine triphosphate", "difficulty": "hard"})
    assert response.status_code == 200
    assert response.json()["back"] == "Adenosine triphosphate"
    assert response.json()["status"] == "new"


def test_replace_flashcards(client, material):
    """Test that PUT overwrites the whole list."""
    url = f"/api/materials/{material['id']}/flashcards"
    client.put(url, json=[{"id": "c1", "front": "F1", "back": "B1"}])
    client.put(url, json=[{"id": "c2", "front": "F2", "back": "B2"}])

    assert [c["id"] for c in client.get(url).json()] == ["c2"]
    assert client.get(f"{url}/due").json()[0]["id"] == "c2"


def test_replace_flashcards_rejects_lifecycle_fields(client, material):
    """Test that status cannot be written through the deck replacement endpoint."""
    url = f"/api/materials/{material['id']}/flashcards"

    for field, value in (("status", "review"), ("mastered_at", None), ("next_review", 1)):
        card = {"id": "c1", "front": "F1", "back": "B1", field: value}
        assert client.put(url, json=[card]).status_code == 422

    assert client.get(url).json() == []


def test_replace_flashcards_keeps_review_state(client, material):
    """Test that re-sending a deck does not reset mastery or recount learned cards."""
    url = f"/api/materials/{material['id']}/flashcards"
    deck = [{"id": "c1", "front": "F1", "back": "B1"}]
    client.put(url, json=deck)

    review_url = f"{url}/c1/review"
    client.post(review_url, json={"outcome": "correct"})
    mastered = client.post(review_url, json={"outcome": "correct"}).json()
    assert mastered["card_learned"] is True

    response = client.put(url, json=[{"id": "c1", "front": "F1 edited", "back": "B1"}])
    assert response.status_code == 200
    card = response.json()[0]
    assert card["status"] == "mastered"
    assert card["front"] == "F1 edited"
    assert card["mastered_at"] == mastered["card"]["mastered_at"]

    client.post(review_url, json={"outcome": "incorrect"})
    client.post(review_url, json={"outcome": "correct"})
    again = client.post(review_url, json={"outcome": "correct"}).json()

    assert again["card"]["status"] == "mastered"
    assert again["card_learned"] is False
    assert again["stats"]["total_cards_learned"] == 1


def test_flashcards_for_unknown_material(client):
    assert client.get("/api/materials/mat-unknown/flashcards").status_code == 404


# Quiz endpoints
def test_submit_quiz(client, study_kit):
    """Test scoring a quiz and the resulting stats."""
    material_id = study_kit["material"]["id"]

    response = client.post(f"/api/materials/{material_id}/quiz/submit", json={"answers": [0, 3]})

    assert response.status_code == 200
    body = response.json()
    assert body["correct"] == [True, False]
    assert body["result"]["score"] == 1
    assert body["stats"]["total_quizzes_taken"] == 1

    results = client.get("/api/quiz-results", params={"material_id": material_id}).json()
    assert len(results) == 1


def test_submit_quiz_wrong_length(client, study_kit):
    material_id = study_kit["material"]["id"]
    response = client.post(f"/api/materials/{material_id}/quiz/submit", json={"answers": [0]})
    assert response.status_code == 400


def test_submit_quiz_without_quiz(client, material):
    response = client.post(f"/api/materials/{material['id']}/quiz/submit", json={"answers": []})
    assert response.status_code == 404


# Study plan endpoints
def test_study_plan(client, material, generator):
    """Test generating, reading and replacing a study plan."""
    material_id = material["id"]
    assert client.get(f"/api/materials/{material_id}/study-plan").status_code == 404

    generator.request_study_plan.return_value = StudyPlan(
        id="plan-1", material_id=material_id, exam_date="2030-01-01", daily_minutes=45, created_at=1
    )
    response = client.post(
        f"/api/materials/{material_id}/study-plan/generate",
        json={"exam_date": "2030-01-01", "daily_minutes": 45},
    )
    assert response.status_code == 200
    args = generator.request_study_plan.call_args
    assert args.args[2] == date(2030, 1, 1)

    replacement = {**response.json(), "id": "plan-2"}
    assert client.put(f"/api/materials/{material_id}/study-plan", json=replacement).status_code == 200
    assert client.get(f"/api/materials/{material_id}/study-plan").json()["id"] == "plan-2"

    wrong = {**replacement, "material_id": "mat-other"}
    assert client.put(f"/api/materials/{material_id}/study-plan", json=wrong).status_code == 400


def test_study_plan_generation_failure(client, material, generator):
    generator.request_study_plan.side_effect = GenerationFailure("bad exam date")

    response = client.post(
        f"/api/materials/{material['id']}/study-plan/generate",
        json={"exam_date": "2030-01-01"},
    )

    assert response.status_code == 502


# Stats endpoints
def test_login_streak(client):
    """Test that repeated logins on one day keep the streak at one."""
    assert client.post("/api/stats/login").json()["streak_days"] == 1
    assert client.post("/api/stats/login").json()["streak_days"] == 1

    stats = client.get("/api/stats").json()
    assert stats["last_study_date"] == date.today().isoformat()


# Task endpoints
def test_task_endpoints(client):
    created = client.post("/api/tasks", json={"title": "Review chapter 2"}).json()
    assert created["id"].startswith("task-")
    assert created["completed"] is False

    updated = client.put(f"/api/tasks/{created['id']}", json={"completed": True}).json()
    assert updated["completed"] is True

    assert client.put("/api/tasks/task-x", json={"completed": True}).status_code == 404
    assert client.delete(f"/api/tasks/{created['id']}").status_code == 200
    assert client.get("/api/tasks").json() == []


# Configuration endpoints
def test_config_hides_keys(client):
    response = client.put("/api/config", json={"anthropic_api_key": "sk-secret", "flashcard_count": 12})

    assert response.status_code == 200
    body = response.json()
    assert body["has_anthropic_key"] is True
    assert body["flashcard_count"] == 12
    assert "sk-secret" not in response.text


def test_config_validation(client):
    response = client.put("/api/config", json={"generation_mode": "sometimes"})
    assert response.status_code == 422


def test_config_connection_test(client):
    response = client.post("/api/config/test", json={"provider": "anthropic"})
    assert response.json()["success"] is True


# Data reset and storage errors
def test_clear_all_data(client, study_kit):
    assert client.delete("/api/data").status_code == 200
    assert client.get("/api/materials").json() == []


def test_clear_all_data_drops_cached_generation_service(client):
    """Test that the generation service is rebuilt after config overrides are wiped."""
    client.put("/api/config", json={"anthropic_api_key": "sk-stored"})
    main._generation_service_instance = Mock(spec=GenerationService)

    client.delete("/api/data")

    assert main._generation_service_instance is None
    assert client.get("/api/config").json()["has_anthropic_key"] == bool(
        main.settings.anthropic_api_key
    )


def test_storage_failure_returns_503(client):
    with patch.object(main.KeyValueStore, "set", side_effect=PersistenceError("disk full")):
        response = client.post("/api/materials", json={"content": "notes"})

    assert response.status_code == 503

"""
Tests for the key-value store and the DAOs built on it.
"""
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from studybuddy.database import (
    CONCEPT_MAPS_KEY,
    FLASHCARDS_KEY,
    MATERIALS_KEY,
    STUDY_PLANS_KEY,
    ArtifactStore,
    ConfigDAO,
    MaterialDAO,
    TaskDAO,
)
from studybuddy.errors import DuplicateId, PersistenceError
from studybuddy.schemas import (
    CardStatus,
    ConceptMapNode,
    Difficulty,
    Flashcard,
    MaterialType,
    StudyMaterial,
    StudyPlan,
    StudyPlanDay,
    Task,
)


def make_material(material_id: str, title: str = "Notes") -> StudyMaterial:
    return StudyMaterial(
        id=material_id,
        title=title,
        content="Some content",
        created_at=1700000000000,
    )


@pytest.fixture
def material_dao(store):
    return MaterialDAO(store)


@pytest.fixture
def flashcard_store(store):
    return ArtifactStore(store, FLASHCARDS_KEY, list[Flashcard])


# Key-value store tests
def test_get_missing_key(store):
    """Test reading an absent key."""
    assert store.get("missing") is None
    assert store.get_json("missing", []) == []


def test_set_and_get(store):
    """Test storing and overwriting a raw value."""
    store.set("greeting", "hello")
    store.set("greeting", "hi")

    assert store.get("greeting") == "hi"


def test_json_round_trip(store):
    """Test storing structured JSON."""
    store.set_json("data", {"a": [1, 2, 3], "b": "ü"})

    assert store.get_json("data") == {"a": [1, 2, 3], "b": "ü"}


def test_corrupt_json_treated_as_absent(store, caplog):
    """Test that malformed JSON is logged and returns the default."""
    store.set("broken", "{not json")

    assert store.get_json("broken", {}) == {}
    assert "Corrupt record under 'broken'" in caplog.text


def test_delete_and_clear(store):
    """Test removing one key and then everything."""
    store.set("a", "1")
    store.set("b", "2")

    store.delete("a")
    store.delete("never-existed")
    assert store.get("a") is None
    assert store.get("b") == "2"

    store.clear()
    assert store.get("b") is None
    assert store.keys() == []


def test_keys_with_prefix(store):
    """Test listing keys by prefix."""
    store.set("config:x", "1")
    store.set("config:y", "2")
    store.set("other", "3")

    assert store.keys("config:") == ["config:x", "config:y"]


def test_write_failure_raises_persistence_error(store):
    """Test that database errors on write surface as PersistenceError."""
    with patch.object(store.db, "get_session", side_effect=OperationalError("stmt", {}, Exception("disk full"))):
        with pytest.raises(PersistenceError):
            store.set("key", "value")


# Material DAO tests
def test_materials_keep_insertion_order(material_dao):
    """Test that materials come back in the order they were saved."""
    for i in range(5):
        material_dao.save(make_material(f"mat-{i}", title=f"Material {i}"))

    materials = material_dao.get_all()

    assert [m.id for m in materials] == [f"mat-{i}" for i in range(5)]


def test_save_duplicate_material(material_dao):
    """Test that saving the same id twice is rejected."""
    material_dao.save(make_material("mat-1"))

    with pytest.raises(DuplicateId):
        material_dao.save(make_material("mat-1", title="Other"))

    assert len(material_dao.get_all()) == 1


def test_material_round_trip(material_dao):
    """Test that every field survives persistence."""
    material = StudyMaterial(
        id="mat-42",
        title="Physics",
        content="F = ma",
        context="Rubric: explain Newton's laws",
        images=["iVBORw0KGgo="],
        created_at=1700000000123,
        type=MaterialType.FILE,
    )
    material_dao.save(material)

    assert material_dao.get_by_id("mat-42") == material


def test_delete_material(material_dao):
    """Test deleting a material."""
    material_dao.save(make_material("mat-1"))
    material_dao.save(make_material("mat-2"))

    assert material_dao.delete("mat-1") is True
    assert [m.id for m in material_dao.get_all()] == ["mat-2"]


def test_delete_missing_material_is_noop(material_dao):
    """Test that deleting an unknown id changes nothing."""
    material_dao.save(make_material("mat-1"))

    assert material_dao.delete("mat-unknown") is False
    assert [m.id for m in material_dao.get_all()] == ["mat-1"]


def test_corrupt_material_list(store, material_dao):
    """Test that an unreadable material list reads as empty."""
    store.set(MATERIALS_KEY, '[{"id": 1}]')

    assert material_dao.get_all() == []


# Artifact store tests
def test_flashcards_overwrite_not_merge(flashcard_store, sample_cards):
    """Test that a second save replaces the first list entirely."""
    flashcard_store.save("mat-1", sample_cards)
    flashcard_store.save("mat-1", sample_cards[:1])

    assert flashcard_store.get("mat-1") == sample_cards[:1]


def test_last_session_wins(store, sample_cards):
    """Test that two independent writers do not merge: the later write is kept."""
    first_session = ArtifactStore(store, FLASHCARDS_KEY, list[Flashcard])
    second_session = ArtifactStore(store, FLASHCARDS_KEY, list[Flashcard])

    first_session.save("mat-1", sample_cards[:2])
    second_session.save("mat-1", sample_cards[2:])

    assert first_session.get("mat-1") == sample_cards[2:]


def test_artifacts_are_per_material(flashcard_store, sample_cards):
    """Test that entries for different materials are independent."""
    flashcard_store.save("mat-1", sample_cards[:1])
    flashcard_store.save("mat-2", sample_cards[1:])

    assert flashcard_store.get("mat-1") == sample_cards[:1]
    assert flashcard_store.get("mat-2") == sample_cards[1:]
    assert set(flashcard_store.get_all()) == {"mat-1", "mat-2"}


def test_missing_artifact_is_none(flashcard_store):
    """Test the absent sentinel."""
    assert flashcard_store.get("mat-unknown") is None


def test_flashcard_round_trip(flashcard_store):
    """Test that every flashcard field survives persistence."""
    cards = [
        Flashcard(
            id="card-1-0",
            front="Front",
            back="Back",
            status=CardStatus.MASTERED,
            difficulty=Difficulty.HARD,
            next_review=1700000000000,
            mastered_at=1690000000000,
        )
    ]
    flashcard_store.save("mat-1", cards)

    assert flashcard_store.get("mat-1") == cards


def test_concept_map_round_trip(store):
    """Test storing a nested concept map."""
    concept_maps = ArtifactStore(store, CONCEPT_MAPS_KEY, ConceptMapNode)
    tree = ConceptMapNode(
        id="root",
        label="Biology",
        children=[
            ConceptMapNode(
                id="cell",
                label="Cell",
                details="Basic unit of life",
                children=[ConceptMapNode(id="mito", label="Mitochondria")],
            )
        ],
    )
    concept_maps.save("mat-1", tree)

    assert concept_maps.get("mat-1") == tree


def test_study_plan_round_trip(store):
    """Test storing a study plan."""
    plans = ArtifactStore(store, STUDY_PLANS_KEY, StudyPlan)
    plan = StudyPlan(
        id="plan-1",
        material_id="mat-1",
        exam_date="2024-02-01",
        daily_minutes=45,
        schedule=[
            StudyPlanDay(
                day=1,
                date="2024-01-30",
                topics=["Cells"],
                activities=["Flashcards"],
                duration_minutes=45,
            )
        ],
        created_at=1700000000000,
    )
    plans.save("mat-1", plan)

    assert plans.get("mat-1") == plan


def test_invalid_artifact_entry_is_absent(store, flashcard_store, sample_cards, caplog):
    """Test that one unreadable entry does not hide the others."""
    flashcard_store.save("mat-1", sample_cards)
    store.set_json(
        FLASHCARDS_KEY,
        {**store.get_json(FLASHCARDS_KEY), "mat-2": [{"front": "missing id"}]},
    )

    assert flashcard_store.get("mat-2") is None
    assert flashcard_store.get("mat-1") == sample_cards
    assert "treating as absent" in caplog.text


def test_artifact_store_non_object(store, flashcard_store):
    """Test that a store key holding a non-object reads as empty."""
    store.set_json(FLASHCARDS_KEY, ["not", "a", "map"])

    assert flashcard_store.get("mat-1") is None


def test_delete_artifact(flashcard_store, sample_cards):
    """Test removing one material's entry."""
    flashcard_store.save("mat-1", sample_cards)

    assert flashcard_store.delete("mat-1") is True
    assert flashcard_store.delete("mat-1") is False
    assert flashcard_store.get("mat-1") is None


# Task DAO tests
def test_task_crud(store):
    """Test creating, updating and deleting tasks."""
    task_dao = TaskDAO(store)
    task = task_dao.save(Task(id="task-1", title="Read chapter 1", date="2024-01-01"))

    updated = task_dao.update(task.model_copy(update={"completed": True}))
    assert updated.completed is True
    assert task_dao.get_all()[0].completed is True

    assert task_dao.update(Task(id="task-x", title="x", date="2024-01-01")) is None
    assert task_dao.delete("task-1") is True
    assert task_dao.get_all() == []


# Config DAO tests
def test_config_dao(store):
    """Test config overrides are namespaced in the store."""
    config_dao = ConfigDAO(store)
    config_dao.set("default_provider", "openai")

    assert config_dao.get("default_provider") == "openai"
    assert config_dao.get("missing", "fallback") == "fallback"
    assert config_dao.get_all() == {"default_provider": "openai"}
    assert store.get("config:default_provider") == "openai"

"""
FastAPI main application for the study app.
"""

import logging

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from studybuddy.config import ConfigManager, Settings, configure_logging
from studybuddy.database import ConfigDAO, Database, KeyValueStore
from studybuddy.errors import DuplicateId, GenerationFailure, PersistenceError
from studybuddy.generation import GenerationService
from studybuddy.library import StudyLibrary
from studybuddy.pipeline import GenerationPipeline
from studybuddy.schemas import (
    ConceptMapNode,
    ConfigResponse,
    ConfigUpdate,
    DeckProgress,
    Flashcard,
    FlashcardContent,
    FlashcardUpdate,
    GenerationResult,
    MaterialCreate,
    MaterialSummary,
    QuizQuestion,
    QuizResult,
    QuizSubmission,
    QuizSubmissionResult,
    ReviewRequest,
    ReviewResponse,
    StudyMaterial,
    StudyPlan,
    StudyPlanRequest,
    Task,
    TaskCreate,
    TaskUpdate,
    UserStats,
)
from studybuddy.stats import StatsService

settings = Settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="StudyBuddy",
    description="AI-generated summaries, flashcards, quizzes and study plans",
    version="1.0.0",
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify exact origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global instances
_db_instance: Database | None = None
_generation_service_instance: GenerationService | None = None


def get_db() -> Database:
    """Dependency to get database instance."""
    global _db_instance
    if _db_instance is None:
        _db_instance = Database(settings.database_url)
    return _db_instance


def get_store(db: Database = Depends(get_db)) -> KeyValueStore:
    """Dependency to get the key-value store."""
    return KeyValueStore(db)


def get_config_manager(store: KeyValueStore = Depends(get_store)) -> ConfigManager:
    """Dependency to get config manager instance."""
    return ConfigManager(config_dao=ConfigDAO(store), settings=settings)


def get_generation_service(
    config_manager: ConfigManager = Depends(get_config_manager),
) -> GenerationService:
    """Dependency to get generation service instance."""
    global _generation_service_instance
    if _generation_service_instance is None:
        _generation_service_instance = GenerationService(
            anthropic_api_key=config_manager.get_api_key("anthropic"),
            openai_api_key=config_manager.get_api_key("openai"),
            default_provider=config_manager.get_default_provider(),
            anthropic_model=config_manager.get_model("anthropic"),
            openai_model=config_manager.get_model("openai"),
            flashcard_count=config_manager.get_flashcard_count(),
            quiz_question_count=config_manager.get_quiz_question_count(),
            max_content_chars=settings.max_content_chars,
            max_context_chars=settings.max_context_chars,
        )
    return _generation_service_instance


def refresh_generation_service():
    """Refresh generation service after config update."""
    global _generation_service_instance
    _generation_service_instance = None


def get_stats_service(store: KeyValueStore = Depends(get_store)) -> StatsService:
    """Dependency to get the stats service."""
    return StatsService(store)


def get_library(
    store: KeyValueStore = Depends(get_store),
    stats: StatsService = Depends(get_stats_service),
    generator: GenerationService = Depends(get_generation_service),
    config_manager: ConfigManager = Depends(get_config_manager),
) -> StudyLibrary:
    """Dependency to get the study library."""
    return StudyLibrary(
        store,
        stats=stats,
        generator=generator,
        review_config=config_manager.get_review_config(),
        cascade_delete=config_manager.get_cascade_delete(),
    )


def get_pipeline(
    library: StudyLibrary = Depends(get_library),
    generator: GenerationService = Depends(get_generation_service),
    config_manager: ConfigManager = Depends(get_config_manager),
) -> GenerationPipeline:
    """Dependency to get the generation pipeline."""
    return GenerationPipeline(generator, library, mode=config_manager.get_generation_mode())


def _require_material(library: StudyLibrary, material_id: str) -> StudyMaterial:
    material = library.get_material(material_id)
    if not material:
        raise HTTPException(status_code=404, detail="Material not found")
    return material


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": f"Storage error: {exc!s}"})


@app.exception_handler(DuplicateId)
async def duplicate_id_handler(request: Request, exc: DuplicateId):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


# Health check
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


# Material endpoints
@app.post("/api/materials", response_model=StudyMaterial)
async def create_material(data: MaterialCreate, library: StudyLibrary = Depends(get_library)):
    """Save study material without generating anything."""
    return library.create_material(data)


@app.get("/api/materials", response_model=list[StudyMaterial])
async def get_materials(library: StudyLibrary = Depends(get_library)):
    """Get all materials in the order they were added."""
    return library.list_materials()


@app.get("/api/materials/{material_id}", response_model=StudyMaterial)
async def get_material(material_id: str, library: StudyLibrary = Depends(get_library)):
    """Get a material by ID."""
    return _require_material(library, material_id)


@app.delete("/api/materials/{material_id}")
async def delete_material(material_id: str, library: StudyLibrary = Depends(get_library)):
    """Delete a material (and its artifacts when cascade_delete is on)."""
    if not library.delete_material(material_id):
        raise HTTPException(status_code=404, detail="Material not found")
    return {"message": "Material deleted successfully"}


# Generation endpoint
@app.post("/api/generate", response_model=GenerationResult)
async def generate_study_kit(
    data: MaterialCreate, pipeline: GenerationPipeline = Depends(get_pipeline)
):
    """Create a material and generate its summary, flashcards, quiz and concept map."""
    try:
        return await pipeline.run(data)
    except GenerationFailure as e:
        raise HTTPException(
            status_code=502,
            detail={"message": "Something went wrong with AI generation", "failed": e.artifacts},
        ) from e


# Flashcard endpoints
@app.get("/api/materials/{material_id}/flashcards", response_model=list[Flashcard])
async def get_flashcards(material_id: str, library: StudyLibrary = Depends(get_library)):
    """Get all flashcards for a material."""
    _require_material(library, material_id)
    return library.get_flashcards(material_id)


@app.put("/api/materials/{material_id}/flashcards", response_model=list[Flashcard])
async def replace_flashcards(
    material_id: str,
    cards: list[FlashcardContent],
    library: StudyLibrary = Depends(get_library),
):
    """Replace the flashcard list for a material. Review state of kept cards is preserved."""
    _require_material(library, material_id)
    return library.replace_flashcard_content(material_id, cards)


@app.get("/api/materials/{material_id}/flashcards/due", response_model=list[Flashcard])
async def get_due_flashcards(material_id: str, library: StudyLibrary = Depends(get_library)):
    """Get flashcards that are due for review."""
    _require_material(library, material_id)
    return library.get_due_flashcards(material_id)


@app.get("/api/materials/{material_id}/progress", response_model=DeckProgress)
async def get_progress(material_id: str, library: StudyLibrary = Depends(get_library)):
    """Get per-status card counts."""
    _require_material(library, material_id)
    return library.get_progress(material_id)


@app.patch("/api/materials/{material_id}/flashcards/{card_id}", response_model=Flashcard)
async def update_flashcard(
    material_id: str,
    card_id: str,
    update: FlashcardUpdate,
    library: StudyLibrary = Depends(get_library),
):
    """Edit a flashcard's text or difficulty."""
    _require_material(library, material_id)
    card = library.update_flashcard(material_id, card_id, update)
    if not card:
        raise HTTPException(status_code=404, detail="Flashcard not found")
    return card


@app.post(
    "/api/materials/{material_id}/flashcards/{card_id}/review", response_model=ReviewResponse
)
async def review_flashcard(
    material_id: str,
    card_id: str,
    review: ReviewRequest,
    library: StudyLibrary = Depends(get_library),
):
    """Record a review outcome for a flashcard."""
    _require_material(library, material_id)
    response = library.review_flashcard(material_id, card_id, review.outcome)
    if not response:
        raise HTTPException(status_code=404, detail="Flashcard not found")
    return response


# Summary and concept map endpoints
@app.get("/api/materials/{material_id}/summary", response_model=MaterialSummary)
async def get_summary(material_id: str, library: StudyLibrary = Depends(get_library)):
    """Get the study guide, generating it if it was never cached."""
    material = _require_material(library, material_id)
    return library.get_or_generate_summary(material)


@app.get("/api/materials/{material_id}/concept-map", response_model=ConceptMapNode)
async def get_concept_map(material_id: str, library: StudyLibrary = Depends(get_library)):
    """Get the concept map, generating it if it was never cached."""
    material = _require_material(library, material_id)
    return library.get_or_generate_concept_map(material)


# Quiz endpoints
@app.get("/api/materials/{material_id}/quiz", response_model=list[QuizQuestion])
async def get_quiz(material_id: str, library: StudyLibrary = Depends(get_library)):
    """Get the quiz generated for a material."""
    _require_material(library, material_id)
    return library.get_quiz(material_id)


@app.post("/api/materials/{material_id}/quiz/submit", response_model=QuizSubmissionResult)
async def submit_quiz(
    material_id: str, submission: QuizSubmission, library: StudyLibrary = Depends(get_library)
):
    """Score a quiz submission and record the result."""
    _require_material(library, material_id)
    try:
        result = library.submit_quiz(material_id, submission.answers)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    if result is None:
        raise HTTPException(status_code=404, detail="No quiz for this material")
    return result


@app.get("/api/quiz-results", response_model=list[QuizResult])
async def get_quiz_results(
    material_id: str | None = None, stats: StatsService = Depends(get_stats_service)
):
    """Get the quiz result log."""
    return stats.get_quiz_results(material_id)


# Study plan endpoints
@app.get("/api/materials/{material_id}/study-plan", response_model=StudyPlan)
async def get_study_plan(material_id: str, library: StudyLibrary = Depends(get_library)):
    """Get the study plan for a material."""
    _require_material(library, material_id)
    plan = library.get_study_plan(material_id)
    if not plan:
        raise HTTPException(status_code=404, detail="No study plan for this material")
    return plan


@app.put("/api/materials/{material_id}/study-plan", response_model=StudyPlan)
async def save_study_plan(
    material_id: str, plan: StudyPlan, library: StudyLibrary = Depends(get_library)
):
    """Store a study plan, replacing any previous one."""
    _require_material(library, material_id)
    if plan.material_id != material_id:
        raise HTTPException(status_code=400, detail="Plan belongs to a different material")
    return library.save_study_plan(plan)


@app.post("/api/materials/{material_id}/study-plan/generate", response_model=StudyPlan)
async def generate_study_plan(
    material_id: str, request: StudyPlanRequest, library: StudyLibrary = Depends(get_library)
):
    """Generate a study plan up to the exam date."""
    material = _require_material(library, material_id)
    try:
        return library.generate_study_plan(material, request.exam_date, request.daily_minutes)
    except GenerationFailure as e:
        raise HTTPException(status_code=502, detail=f"Study plan generation failed: {e!s}") from e


# Statistics endpoints
@app.get("/api/stats", response_model=UserStats)
async def get_stats(stats: StatsService = Depends(get_stats_service)):
    """Get study statistics."""
    return stats.get_stats()


@app.post("/api/stats/login", response_model=UserStats)
async def record_login(stats: StatsService = Depends(get_stats_service)):
    """Record a study session for today and update the streak."""
    return stats.record_login()


# Task endpoints
@app.get("/api/tasks", response_model=list[Task])
async def get_tasks(library: StudyLibrary = Depends(get_library)):
    """Get all tasks."""
    return library.list_tasks()


@app.post("/api/tasks", response_model=Task)
async def create_task(data: TaskCreate, library: StudyLibrary = Depends(get_library)):
    """Create a task."""
    return library.add_task(data)


@app.put("/api/tasks/{task_id}", response_model=Task)
async def update_task(task_id: str, data: TaskUpdate, library: StudyLibrary = Depends(get_library)):
    """Update a task."""
    task = library.update_task(task_id, data)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


@app.delete("/api/tasks/{task_id}")
async def delete_task(task_id: str, library: StudyLibrary = Depends(get_library)):
    """Delete a task."""
    if not library.delete_task(task_id):
        raise HTTPException(status_code=404, detail="Task not found")
    return {"message": "Task deleted successfully"}


# Configuration endpoints
@app.get("/api/config", response_model=ConfigResponse)
async def get_config(config_manager: ConfigManager = Depends(get_config_manager)):
    """Get configuration."""
    return config_manager.get_config_response()


@app.put("/api/config", response_model=ConfigResponse)
async def update_config(
    config_update: ConfigUpdate, config_manager: ConfigManager = Depends(get_config_manager)
):
    """Update configuration."""
    result = config_manager.update_config(config_update)
    # Refresh services with new config
    refresh_generation_service()
    return result


@app.post("/api/config/test")
async def test_ai_connection(
    request: dict, generator: GenerationService = Depends(get_generation_service)
):
    """Test AI provider connection."""
    provider = request.get("provider")
    success, message = generator.test_connection(provider)
    return {"success": success, "message": message}


# Data reset
@app.delete("/api/data")
async def clear_all_data(library: StudyLibrary = Depends(get_library)):
    """Delete every stored record, including stats and config overrides."""
    library.reset_all()
    # Stored config overrides are gone too
    refresh_generation_service()
    return {"message": "All data cleared"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)

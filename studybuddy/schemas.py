"""
Pydantic schemas (DTOs) for persisted records and API request/response validation.
"""

from __future__ import annotations

from datetime import date
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


# Study material schemas
class MaterialType(str, Enum):
    """Where the material content came from."""

    TEXT = "text"
    FILE = "file"


class MaterialCreate(BaseModel):
    """Schema for submitting new study material."""

    title: str = Field("Untitled Study Kit", min_length=1, description="Material title")
    content: str = Field(..., min_length=1, description="Raw study notes")
    context: str | None = Field(None, description="Optional rubric or grading criteria")
    images: list[str] | None = Field(None, description="Optional base64 image payloads")
    type: MaterialType = MaterialType.TEXT


class StudyMaterial(BaseModel):
    """A persisted unit of study content. Immutable once created."""

    id: str
    title: str
    content: str
    context: str | None = None
    images: list[str] | None = None
    created_at: int  # epoch millis
    type: MaterialType = MaterialType.TEXT

    model_config = ConfigDict(frozen=True)


class MaterialSummary(BaseModel):
    """Cached summary and overview text for a material."""

    summary: str
    overview: str = ""
    created_at: int


# Flashcard schemas
class CardStatus(str, Enum):
    """Lifecycle of a flashcard."""

    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    MASTERED = "mastered"


class Difficulty(str, Enum):
    """Difficulty perceived by the learner."""

    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class ReviewOutcome(str, Enum):
    """Result of showing a flashcard to the learner."""

    CORRECT = "correct"
    INCORRECT = "incorrect"
    SKIPPED = "skipped"


class Flashcard(BaseModel):
    """
    A flashcard owned by one study material.

    Frozen: the status only changes through review.review_card.
    """

    id: str
    front: str
    back: str
    status: CardStatus = CardStatus.NEW
    difficulty: Difficulty | None = None
    next_review: int | None = None  # epoch millis
    mastered_at: int | None = None  # epoch millis of first mastery

    model_config = ConfigDict(frozen=True)


class FlashcardUpdate(BaseModel):
    """Schema for editing flashcard content. Status is not writable."""

    front: str | None = Field(None, min_length=1)
    back: str | None = Field(None, min_length=1)
    difficulty: Difficulty | None = None

    model_config = ConfigDict(extra="forbid")


class FlashcardContent(BaseModel):
    """Card content for replacing a whole deck. Lifecycle fields are not accepted."""

    id: str = Field(..., min_length=1)
    front: str = Field(..., min_length=1)
    back: str = Field(..., min_length=1)
    difficulty: Difficulty | None = None

    model_config = ConfigDict(extra="forbid")


class ReviewRequest(BaseModel):
    """Outcome of reviewing a single card."""

    outcome: ReviewOutcome


class ReviewResponse(BaseModel):
    """Card after review plus the stats snapshot it produced."""

    card: Flashcard
    card_learned: bool
    stats: UserStats


class DeckProgress(BaseModel):
    """Per-status card counts for a material."""

    total_cards: int = 0
    new_count: int = 0
    learning_count: int = 0
    review_count: int = 0
    mastered_count: int = 0
    due_cards: int = 0


# Quiz schemas
class QuizQuestion(BaseModel):
    """A multiple choice question with exactly four options."""

    id: str
    question: str
    options: list[str] = Field(..., min_length=4, max_length=4)
    correct_answer: int = Field(..., ge=0, le=3, description="Index of the correct option")
    explanation: str | None = None


class QuizResult(BaseModel):
    """One completed quiz. Append-only."""

    id: str
    material_id: str
    score: int = Field(..., ge=0, description="Number of correct answers")
    total_questions: int = Field(..., ge=0)
    date: int  # epoch millis


class QuizSubmission(BaseModel):
    """Selected option index per question, in question order. None means unanswered."""

    answers: list[int | None] = Field(..., description="Chosen option index per question")


class QuizSubmissionResult(BaseModel):
    """Scored quiz submission."""

    result: QuizResult
    correct: list[bool]
    stats: UserStats


# Concept map schemas
class ConceptMapNode(BaseModel):
    """A node in the concept map tree."""

    id: str
    label: str
    details: str | None = None
    children: list[ConceptMapNode] = Field(default_factory=list)


# Study plan schemas
class StudyPlanDay(BaseModel):
    """One day of a study plan."""

    day: int = Field(..., ge=1)
    date: str  # ISO date
    topics: list[str] = Field(default_factory=list)
    activities: list[str] = Field(default_factory=list)
    duration_minutes: int = Field(0, ge=0)


class StudyPlan(BaseModel):
    """At most one plan per material; a new plan replaces the old one."""

    id: str
    material_id: str
    exam_date: str
    daily_minutes: int = Field(..., ge=0)
    schedule: list[StudyPlanDay] = Field(default_factory=list)
    created_at: int


class StudyPlanRequest(BaseModel):
    """Request to generate a study plan."""

    exam_date: date
    daily_minutes: int = Field(60, ge=10, le=600, description="Minutes available per day")


# Statistics schemas
class UserStats(BaseModel):
    """Aggregate study statistics. A single record per store."""

    streak_days: int = Field(0, ge=0)
    last_study_date: str = ""
    total_cards_learned: int = Field(0, ge=0)
    total_quizzes_taken: int = Field(0, ge=0)
    average_quiz_score: float = 0.0


# Task schemas
class Task(BaseModel):
    """A to-do item on the study calendar."""

    id: str
    title: str
    date: str  # ISO date
    completed: bool = False


class TaskCreate(BaseModel):
    """Schema for creating a task."""

    title: str = Field(..., min_length=1)
    date: str | None = Field(None, description="ISO date, defaults to today")


class TaskUpdate(BaseModel):
    """Schema for updating a task."""

    title: str | None = Field(None, min_length=1)
    date: str | None = None
    completed: bool | None = None


# Generation schemas
class ArtifactStatus(BaseModel):
    """Outcome of generating one artifact."""

    name: str
    ok: bool
    error: str | None = None


class GenerationResult(BaseModel):
    """Everything produced for a newly submitted material."""

    material: StudyMaterial
    summary: str | None = None
    overview: str | None = None
    flashcards: list[Flashcard] = Field(default_factory=list)
    quiz: list[QuizQuestion] = Field(default_factory=list)
    concept_map: ConceptMapNode | None = None
    statuses: list[ArtifactStatus] = Field(default_factory=list)


# Config schemas
class ConfigUpdate(BaseModel):
    """Update configuration."""

    anthropic_api_key: str | None = None
    openai_api_key: str | None = None
    default_provider: str | None = Field(None, pattern="^(anthropic|openai)$")
    anthropic_model: str | None = None
    openai_model: str | None = None
    generation_mode: str | None = Field(None, pattern="^(all_or_nothing|best_effort)$")
    cascade_delete: bool | None = None
    flashcard_count: int | None = Field(None, ge=1, le=50)
    quiz_question_count: int | None = Field(None, ge=1, le=30)
    review_interval_days: int | None = Field(None, ge=1, le=30)
    mastered_interval_days: int | None = Field(None, ge=1, le=365)


class ConfigResponse(BaseModel):
    """Configuration response (without API keys)."""

    default_provider: str
    anthropic_model: str
    openai_model: str
    has_anthropic_key: bool
    has_openai_key: bool
    generation_mode: str = "all_or_nothing"
    cascade_delete: bool = True
    flashcard_count: int = 10
    quiz_question_count: int = 8
    review_interval_days: int = 1
    mastered_interval_days: int = 7


ReviewResponse.model_rebuild()
QuizSubmissionResult.model_rebuild()

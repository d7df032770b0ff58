"""
Study library: materials, their derived artifacts, reviews and quizzes.

The stores do not check that a material exists before an artifact is written
for it; callers (the API layer) verify that first.
"""

import logging
import time
from datetime import date, datetime

from studybuddy.database import (
    CONCEPT_MAPS_KEY,
    FLASHCARDS_KEY,
    QUIZZES_KEY,
    STUDY_PLANS_KEY,
    SUMMARIES_KEY,
    ArtifactStore,
    KeyValueStore,
    MaterialDAO,
    TaskDAO,
)
from studybuddy.errors import GenerationFailure
from studybuddy.generation import SUMMARY_FALLBACK, GenerationService
from studybuddy.review import ReviewConfig, deck_progress, due_cards, review_card
from studybuddy.schemas import (
    ConceptMapNode,
    DeckProgress,
    Flashcard,
    FlashcardContent,
    FlashcardUpdate,
    MaterialCreate,
    MaterialSummary,
    QuizQuestion,
    QuizSubmissionResult,
    ReviewOutcome,
    ReviewResponse,
    StudyMaterial,
    StudyPlan,
    Task,
    TaskCreate,
    TaskUpdate,
)
from studybuddy.stats import StatsService

logger = logging.getLogger(__name__)


def now_millis() -> int:
    return int(time.time() * 1000)


def unique_id(prefix: str, existing: set[str]) -> str:
    """<prefix>-<millis>, suffixed with a counter if that id is already taken."""
    candidate = base = f"{prefix}-{now_millis()}"
    n = 1
    while candidate in existing:
        candidate = f"{base}-{n}"
        n += 1
    return candidate


class StudyLibrary:
    """Facade over the key-value store for everything keyed by a material."""

    def __init__(
        self,
        store: KeyValueStore,
        stats: StatsService | None = None,
        generator: GenerationService | None = None,
        review_config: ReviewConfig | None = None,
        cascade_delete: bool = True,
    ):
        self.store = store
        self.stats = stats or StatsService(store)
        self.generator = generator
        self.review_config = review_config or ReviewConfig()
        self.cascade_delete = cascade_delete

        self.materials = MaterialDAO(store)
        self.tasks = TaskDAO(store)
        self.flashcards: ArtifactStore[list[Flashcard]] = ArtifactStore(
            store, FLASHCARDS_KEY, list[Flashcard]
        )
        self.concept_maps: ArtifactStore[ConceptMapNode] = ArtifactStore(
            store, CONCEPT_MAPS_KEY, ConceptMapNode
        )
        self.study_plans: ArtifactStore[StudyPlan] = ArtifactStore(
            store, STUDY_PLANS_KEY, StudyPlan
        )
        self.quizzes: ArtifactStore[list[QuizQuestion]] = ArtifactStore(
            store, QUIZZES_KEY, list[QuizQuestion]
        )
        self.summaries: ArtifactStore[MaterialSummary] = ArtifactStore(
            store, SUMMARIES_KEY, MaterialSummary
        )

    # Materials

    def new_material(self, data: MaterialCreate) -> StudyMaterial:
        """Build a material with a fresh mat-<millis> id without saving it."""
        material_id = unique_id("mat", {m.id for m in self.materials.get_all()})
        return StudyMaterial(
            id=material_id,
            title=data.title,
            content=data.content,
            context=data.context,
            images=data.images,
            created_at=now_millis(),
            type=data.type,
        )

    def create_material(self, data: MaterialCreate) -> StudyMaterial:
        """Create and save a material."""
        return self.materials.save(self.new_material(data))

    def list_materials(self) -> list[StudyMaterial]:
        return self.materials.get_all()

    def get_material(self, material_id: str) -> StudyMaterial | None:
        return self.materials.get_by_id(material_id)

    def delete_material(self, material_id: str) -> bool:
        """
        Delete a material.

        With cascade_delete the flashcards, concept map, study plan, quiz and
        summary stored for it are removed too. Quiz results are history and
        are always kept.
        """
        deleted = self.materials.delete(material_id)
        if deleted and self.cascade_delete:
            for artifacts in (
                self.flashcards,
                self.concept_maps,
                self.study_plans,
                self.quizzes,
                self.summaries,
            ):
                artifacts.delete(material_id)
            logger.info("Deleted material %s and its artifacts", material_id)
        return deleted

    # Flashcards

    def get_flashcards(self, material_id: str) -> list[Flashcard]:
        return self.flashcards.get(material_id) or []

    def save_flashcards(self, material_id: str, cards: list[Flashcard]) -> None:
        self.flashcards.save(material_id, cards)

    def replace_flashcard_content(
        self, material_id: str, contents: list[FlashcardContent]
    ) -> list[Flashcard]:
        """
        Replace the deck from client-supplied content.

        Cards whose id is already stored keep their status and schedule; new ids
        start as new cards.
        """
        existing = {card.id: card for card in self.get_flashcards(material_id)}
        cards = []
        for content in contents:
            fields = content.model_dump()
            if content.id in existing:
                cards.append(existing[content.id].model_copy(update=fields))
            else:
                cards.append(Flashcard(**fields))
        self.save_flashcards(material_id, cards)
        return cards

    def update_flashcard(
        self, material_id: str, card_id: str, update: FlashcardUpdate
    ) -> Flashcard | None:
        """Edit a card's content. Returns None if the card does not exist."""
        cards = self.get_flashcards(material_id)
        for i, card in enumerate(cards):
            if card.id == card_id:
                cards[i] = card.model_copy(update=update.model_dump(exclude_none=True))
                self.save_flashcards(material_id, cards)
                return cards[i]
        return None

    def review_flashcard(
        self,
        material_id: str,
        card_id: str,
        outcome: ReviewOutcome,
        reviewed_at: datetime | None = None,
    ) -> ReviewResponse | None:
        """
        Review one card, persist the whole list and record a learned card.

        Returns:
            ReviewResponse, or None if the card does not exist
        """
        cards = self.get_flashcards(material_id)
        for i, card in enumerate(cards):
            if card.id == card_id:
                break
        else:
            return None

        result = review_card(card, outcome, reviewed_at=reviewed_at, config=self.review_config)
        if result.card != card:
            cards[i] = result.card
            self.save_flashcards(material_id, cards)

        if result.card_learned:
            stats = self.stats.record_card_learned()
        else:
            stats = self.stats.get_stats()

        return ReviewResponse(card=result.card, card_learned=result.card_learned, stats=stats)

    def get_due_flashcards(self, material_id: str, now: datetime | None = None) -> list[Flashcard]:
        return due_cards(self.get_flashcards(material_id), now)

    def get_progress(self, material_id: str, now: datetime | None = None) -> DeckProgress:
        return deck_progress(self.get_flashcards(material_id), now)

    # Quizzes

    def get_quiz(self, material_id: str) -> list[QuizQuestion]:
        return self.quizzes.get(material_id) or []

    def save_quiz(self, material_id: str, questions: list[QuizQuestion]) -> None:
        self.quizzes.save(material_id, questions)

    def submit_quiz(self, material_id: str, answers: list[int | None]) -> QuizSubmissionResult | None:
        """
        Score answers against the stored quiz and record the result.

        Returns:
            QuizSubmissionResult, or None if no quiz is stored for the material

        Raises:
            ValueError: If the number of answers does not match the quiz
        """
        questions = self.get_quiz(material_id)
        if not questions:
            return None
        if len(answers) != len(questions):
            raise ValueError(f"Expected {len(questions)} answers, got {len(answers)}")

        correct = [a == q.correct_answer for q, a in zip(questions, answers)]
        score = sum(correct)
        stats = self.stats.record_quiz_result(material_id, score, len(questions))
        result = self.stats.get_quiz_results(material_id)[-1]
        return QuizSubmissionResult(result=result, correct=correct, stats=stats)

    # Generated text and concept maps

    def _require_generator(self) -> GenerationService:
        if self.generator is None:
            raise GenerationFailure("No generation service configured")
        return self.generator

    def get_or_generate_summary(self, material: StudyMaterial) -> MaterialSummary:
        """Return the cached summary, generating and caching it if missing."""
        cached = self.summaries.get(material.id)
        if cached is not None and cached.summary:
            return cached

        generator = self._require_generator()
        try:
            text = generator.request_summary(material.content, material.context, material.images)
        except GenerationFailure as e:
            logger.warning("Summary for %s unavailable: %s", material.id, e)
            return MaterialSummary(
                summary=SUMMARY_FALLBACK,
                overview=cached.overview if cached else "",
                created_at=now_millis(),
            )

        if cached is not None and cached.overview:
            overview = cached.overview
        else:
            overview = generator.generate_overview(
                material.content, material.context, material.images
            )
        summary = MaterialSummary(summary=text, overview=overview, created_at=now_millis())
        self.summaries.save(material.id, summary)
        return summary

    def get_or_generate_concept_map(self, material: StudyMaterial) -> ConceptMapNode:
        """Return the cached concept map, generating and caching it if missing."""
        cached = self.concept_maps.get(material.id)
        if cached is not None:
            return cached

        generator = self._require_generator()
        try:
            concept_map = generator.request_concept_map(
                material.content, material.context, material.images
            )
        except GenerationFailure as e:
            logger.warning("Concept map for %s unavailable: %s", material.id, e)
            return ConceptMapNode(id="error", label="Could not generate map")

        self.concept_maps.save(material.id, concept_map)
        return concept_map

    # Study plans

    def save_study_plan(self, plan: StudyPlan) -> StudyPlan:
        self.study_plans.save(plan.material_id, plan)
        return plan

    def get_study_plan(self, material_id: str) -> StudyPlan | None:
        return self.study_plans.get(material_id)

    def generate_study_plan(
        self,
        material: StudyMaterial,
        exam_date: date,
        daily_minutes: int,
        start_date: date | None = None,
    ) -> StudyPlan:
        """Generate a plan and store it, replacing any previous plan."""
        plan = self._require_generator().request_study_plan(
            material.content,
            material.id,
            exam_date,
            daily_minutes,
            start_date=start_date,
            context=material.context,
        )
        return self.save_study_plan(plan)

    # Tasks

    def list_tasks(self) -> list[Task]:
        return self.tasks.get_all()

    def add_task(self, data: TaskCreate, today: date | None = None) -> Task:
        task = Task(
            id=unique_id("task", {t.id for t in self.tasks.get_all()}),
            title=data.title,
            date=data.date or (today or date.today()).isoformat(),
        )
        return self.tasks.save(task)

    def update_task(self, task_id: str, data: TaskUpdate) -> Task | None:
        for task in self.tasks.get_all():
            if task.id == task_id:
                return self.tasks.update(
                    task.model_copy(update=data.model_dump(exclude_none=True))
                )
        return None

    def delete_task(self, task_id: str) -> bool:
        return self.tasks.delete(task_id)

    def reset_all(self) -> None:
        """Remove every stored record."""
        self.store.clear()
        logger.info("All study data cleared")

"""
AI generation service for turning study material into study artifacts.
Supports both Anthropic Claude and OpenAI GPT models.

Every artifact has two entry points:
- request_<artifact> raises GenerationFailure when the call fails or the
  answer is unusable
- generate_<artifact> never raises and returns a fallback value instead
"""

import json
import logging
import re
import time
from collections.abc import Callable
from datetime import date
from typing import Any

from anthropic import Anthropic
from openai import OpenAI
from pydantic import ValidationError

from studybuddy.errors import GenerationFailure
from studybuddy.schemas import (
    ConceptMapNode,
    Flashcard,
    QuizQuestion,
    StudyPlan,
    StudyPlanDay,
)

logger = logging.getLogger(__name__)

MAX_CONCEPT_MAP_DEPTH = 4

SUMMARY_FALLBACK = "Failed to generate summary. Please try again."
OVERVIEW_FALLBACK = "Your study set is ready!"

SUMMARY_PROMPT = """You are an expert study assistant.
Write a structured study guide for the material below.

If a rubric or context section is present, give the most weight to the parts of the material it emphasizes.

Format:
- Use HTML <h3> for section headers.
- Use <ul><li> for bullet points.
- Wrap key terms, dates and definitions in <mark> tags.
- Use <strong> for emphasis.
- Keep it concise and easy to scan."""

OVERVIEW_PROMPT = """You are a friendly study buddy.
Write one short paragraph (at most 5 sentences) describing what the learner will study and practice with this material.
Use an encouraging tone. Plain text only, no markdown or headers."""

FLASHCARDS_PROMPT = """Create {count} high quality flashcards from the material below.
If a rubric or context section is present, prefer cards that match its grading criteria.

Respond with a JSON array only:
[{{"front": "<question or term>", "back": "<answer or definition>"}}]"""

QUIZ_PROMPT = """Create a short multiple choice quiz of {count} questions from the material below.
Favor topics emphasized by the rubric or context section if one is present.
Each question has exactly 4 options and one correct option.

Respond with a JSON array only:
[{{"question": "<text>", "options": ["<a>", "<b>", "<c>", "<d>"], "correct_answer": <0-3>, "explanation": "<why>"}}]"""

CONCEPT_MAP_PROMPT = """Build a hierarchical concept map of the material below.
Structure: root topic -> main concepts -> details or sub-concepts, at most 4 levels deep.

Respond with a single JSON object only:
{"id": "<id>", "label": "<root topic>", "details": "<optional>", "children": [<nodes of the same shape>]}"""

STUDY_PLAN_PROMPT = """Create a day-by-day study plan for the material below.
The plan starts on {start} and ends the day before the exam on {exam}.
The learner can study {minutes} minutes per day; no day may exceed that.

Respond with a JSON object only:
{{"schedule": [{{"day": 1, "date": "YYYY-MM-DD", "topics": ["..."], "activities": ["..."], "duration_minutes": <int>}}]}}"""


def _now_millis() -> int:
    return int(time.time() * 1000)


def _split_image(image: str) -> tuple[str, str]:
    """Return (media_type, base64 data), stripping a data URI prefix if present."""
    match = re.match(r"^data:(image/[\w.+-]+);base64,(.*)$", image, re.DOTALL)
    if match:
        return match.group(1), match.group(2)
    if "," in image:
        return "image/png", image.split(",", 1)[1]
    return "image/png", image


def _build_concept_node(data: Any, depth: int = 1, path: str = "0") -> ConceptMapNode:
    """Validate a concept map node, dropping anything below the maximum depth."""
    if not isinstance(data, dict) or not data.get("label"):
        raise ValueError(f"Concept map node {path} has no label")

    children = []
    if depth < MAX_CONCEPT_MAP_DEPTH:
        for i, child in enumerate(data.get("children") or []):
            try:
                children.append(_build_concept_node(child, depth + 1, f"{path}-{i}"))
            except ValueError as e:
                logger.debug("Skipping concept map node: %s", e)

    return ConceptMapNode(
        id=str(data.get("id") or f"node-{path}"),
        label=str(data["label"]),
        details=data.get("details") or None,
        children=children,
    )


class GenerationService:
    """Service for generating study artifacts using AI."""

    def __init__(
        self,
        anthropic_api_key: str | None = None,
        openai_api_key: str | None = None,
        default_provider: str = "anthropic",
        anthropic_model: str = "claude-sonnet-4-20250514",
        openai_model: str = "gpt-4o",
        flashcard_count: int = 10,
        quiz_question_count: int = 8,
        max_content_chars: int = 30000,
        max_context_chars: int = 10000,
    ):
        self.anthropic_api_key = anthropic_api_key
        self.openai_api_key = openai_api_key
        self.default_provider = default_provider
        self.anthropic_model = anthropic_model
        self.openai_model = openai_model
        self.flashcard_count = flashcard_count
        self.quiz_question_count = quiz_question_count
        self.max_content_chars = max_content_chars
        self.max_context_chars = max_context_chars

        # Initialize clients
        self.anthropic_client = None
        self.openai_client = None

        if anthropic_api_key:
            self.anthropic_client = Anthropic(api_key=anthropic_api_key)

        if openai_api_key:
            self.openai_client = OpenAI(api_key=openai_api_key)

    def _build_text(self, prompt: str, content: str, context: str | None) -> str:
        """Combine instructions, material and optional rubric into one prompt."""
        text = f"{prompt}\n\n=== MAIN STUDY MATERIAL ===\n{content[: self.max_content_chars]}"
        if context:
            text += (
                "\n\n=== CONTEXT / RUBRIC / GRADING CRITERIA ===\n"
                f"{context[: self.max_context_chars]}"
            )
        return text

    def complete(
        self,
        prompt: str,
        content: str,
        context: str | None = None,
        images: list[str] | None = None,
        json_mode: bool = False,
        provider: str | None = None,
    ) -> str:
        """
        Send one prompt to the configured provider and return the text answer.

        Raises:
            GenerationFailure: If the provider is unknown, not configured or the call fails
        """
        provider = provider or self.default_provider
        text = self._build_text(prompt, content, context)

        if provider == "anthropic":
            return self._complete_with_anthropic(text, images or [])
        elif provider == "openai":
            return self._complete_with_openai(text, images or [], json_mode)
        else:
            raise GenerationFailure(f"Unknown provider: {provider}")

    def _complete_with_anthropic(self, text: str, images: list[str]) -> str:
        """Complete using Anthropic Claude."""
        if not self.anthropic_client:
            raise GenerationFailure("Anthropic API key not configured")

        blocks: list[dict] = []
        for image in images:
            media_type, data = _split_image(image)
            blocks.append(
                {
                    "type": "image",
                    "source": {"type": "base64", "media_type": media_type, "data": data},
                }
            )
        blocks.append({"type": "text", "text": text})

        try:
            response = self.anthropic_client.messages.create(
                model=self.anthropic_model,
                max_tokens=4096,
                messages=[{"role": "user", "content": blocks}],
            )
            return response.content[0].text
        except Exception as e:
            raise GenerationFailure(f"Error generating with Anthropic: {e!s}") from e

    def _complete_with_openai(self, text: str, images: list[str], json_mode: bool) -> str:
        """Complete using OpenAI GPT."""
        if not self.openai_client:
            raise GenerationFailure("OpenAI API key not configured")

        parts: list[dict] = [{"type": "text", "text": text}]
        for image in images:
            media_type, data = _split_image(image)
            parts.append(
                {"type": "image_url", "image_url": {"url": f"data:{media_type};base64,{data}"}}
            )

        kwargs: dict[str, Any] = {}
        if json_mode:
            # json_object mode needs a top-level object, so arrays come back wrapped
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = self.openai_client.chat.completions.create(
                model=self.openai_model,
                messages=[{"role": "user", "content": parts}],
                **kwargs,
            )
            return response.choices[0].message.content or ""
        except Exception as e:
            raise GenerationFailure(f"Error generating with OpenAI: {e!s}") from e

    def _extract_json(self, text: str) -> Any:
        """
        Extract JSON from response text.
        Handles cases where JSON is wrapped in markdown code blocks.
        """
        # Try to parse as-is first
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            pass

        # Try to extract from code blocks
        json_match = re.search(r"```(?:json)?\s*([\[{].*?[\]}])\s*```", text, re.DOTALL)
        if json_match:
            try:
                return json.loads(json_match.group(1))
            except json.JSONDecodeError:
                pass

        # Try to find a JSON object or array in text
        json_match = re.search(r"[\[{].*[\]}]", text, re.DOTALL)
        if json_match:
            try:
                return json.loads(json_match.group(0))
            except json.JSONDecodeError:
                pass

        raise GenerationFailure(f"Could not extract valid JSON from response: {text[:200]}")

    def _request_list(self, prompt: str, content, context, images) -> list:
        data = self._extract_json(self.complete(prompt, content, context, images, json_mode=True))
        if isinstance(data, dict):
            # Unwrap {"items": [...]} style answers
            lists = [v for v in data.values() if isinstance(v, list)]
            if len(lists) == 1:
                data = lists[0]
        if not isinstance(data, list):
            raise GenerationFailure("Expected a JSON array in the response")
        return data

    # Strict entry points

    def request_summary(
        self, content: str, context: str | None = None, images: list[str] | None = None
    ) -> str:
        """Generate an HTML study guide."""
        summary = self.complete(SUMMARY_PROMPT, content, context, images).strip()
        if not summary:
            raise GenerationFailure("Empty summary", ["summary"])
        return summary

    def request_overview(
        self, content: str, context: str | None = None, images: list[str] | None = None
    ) -> str:
        """Generate a one-paragraph overview."""
        overview = self.complete(OVERVIEW_PROMPT, content, context, images).strip()
        if not overview:
            raise GenerationFailure("Empty overview", ["overview"])
        return overview

    def request_flashcards(
        self, content: str, context: str | None = None, images: list[str] | None = None
    ) -> list[Flashcard]:
        """Generate new flashcards. Entries without a front and back are dropped."""
        items = self._request_list(
            FLASHCARDS_PROMPT.format(count=self.flashcard_count), content, context, images
        )
        millis = _now_millis()
        cards = []
        for item in items:
            if not isinstance(item, dict) or not item.get("front") or not item.get("back"):
                continue
            cards.append(
                Flashcard(
                    id=f"card-{millis}-{len(cards)}",
                    front=str(item["front"]),
                    back=str(item["back"]),
                )
            )
        return cards

    def request_quiz(
        self, content: str, context: str | None = None, images: list[str] | None = None
    ) -> list[QuizQuestion]:
        """Generate quiz questions. Malformed questions are dropped."""
        items = self._request_list(
            QUIZ_PROMPT.format(count=self.quiz_question_count), content, context, images
        )
        millis = _now_millis()
        questions = []
        for item in items:
            if not isinstance(item, dict):
                continue
            if "correct_answer" not in item and "correctAnswer" in item:
                item["correct_answer"] = item["correctAnswer"]
            try:
                questions.append(
                    QuizQuestion(
                        id=f"quiz-{millis}-{len(questions)}",
                        question=item.get("question", ""),
                        options=item.get("options", []),
                        correct_answer=item.get("correct_answer", -1),
                        explanation=item.get("explanation"),
                    )
                )
            except ValidationError as e:
                logger.debug("Dropping malformed quiz question: %s", e)
        return questions

    def request_concept_map(
        self, content: str, context: str | None = None, images: list[str] | None = None
    ) -> ConceptMapNode:
        """Generate a concept map tree, at most four levels deep."""
        data = self._extract_json(
            self.complete(CONCEPT_MAP_PROMPT, content, context, images, json_mode=True)
        )
        if not isinstance(data, dict) or not data.get("label"):
            return ConceptMapNode(id="root", label="Main Topic")
        try:
            return _build_concept_node(data)
        except ValueError as e:
            raise GenerationFailure(f"Invalid concept map: {e!s}", ["concept_map"]) from e

    def request_study_plan(
        self,
        content: str,
        material_id: str,
        exam_date: date,
        daily_minutes: int,
        start_date: date | None = None,
        context: str | None = None,
    ) -> StudyPlan:
        """Generate a study plan running up to exam_date."""
        start_date = start_date or date.today()
        if exam_date <= start_date:
            raise GenerationFailure("Exam date must be after the start date", ["study_plan"])

        prompt = STUDY_PLAN_PROMPT.format(
            start=start_date.isoformat(), exam=exam_date.isoformat(), minutes=daily_minutes
        )
        data = self._extract_json(self.complete(prompt, content, context, json_mode=True))
        raw_days = data.get("schedule") if isinstance(data, dict) else data
        if not isinstance(raw_days, list):
            raise GenerationFailure("Study plan has no schedule", ["study_plan"])

        schedule = []
        for item in raw_days:
            try:
                day = StudyPlanDay.model_validate(item)
            except ValidationError as e:
                logger.debug("Dropping malformed study plan day: %s", e)
                continue
            schedule.append(
                day.model_copy(update={"duration_minutes": min(day.duration_minutes, daily_minutes)})
            )

        return StudyPlan(
            id=f"plan-{_now_millis()}",
            material_id=material_id,
            exam_date=exam_date.isoformat(),
            daily_minutes=daily_minutes,
            schedule=schedule,
            created_at=_now_millis(),
        )

    # Fallback entry points

    def _with_fallback(self, name: str, func: Callable, fallback: Any, *args, **kwargs) -> Any:
        try:
            return func(*args, **kwargs)
        except Exception as e:
            logger.warning("Generation of %s failed, using fallback: %s", name, e)
            return fallback

    def generate_summary(self, content, context=None, images=None) -> str:
        return self._with_fallback(
            "summary", self.request_summary, SUMMARY_FALLBACK, content, context, images
        )

    def generate_overview(self, content, context=None, images=None) -> str:
        return self._with_fallback(
            "overview", self.request_overview, OVERVIEW_FALLBACK, content, context, images
        )

    def generate_flashcards(self, content, context=None, images=None) -> list[Flashcard]:
        return self._with_fallback(
            "flashcards", self.request_flashcards, [], content, context, images
        )

    def generate_quiz(self, content, context=None, images=None) -> list[QuizQuestion]:
        return self._with_fallback("quiz", self.request_quiz, [], content, context, images)

    def generate_concept_map(self, content, context=None, images=None) -> ConceptMapNode:
        fallback = ConceptMapNode(id="error", label="Could not generate map")
        return self._with_fallback(
            "concept map", self.request_concept_map, fallback, content, context, images
        )

    def generate_study_plan(
        self, content, material_id, exam_date, daily_minutes, start_date=None, context=None
    ) -> StudyPlan:
        fallback = StudyPlan(
            id=f"plan-{_now_millis()}",
            material_id=material_id,
            exam_date=exam_date.isoformat(),
            daily_minutes=daily_minutes,
            schedule=[],
            created_at=_now_millis(),
        )
        return self._with_fallback(
            "study plan",
            self.request_study_plan,
            fallback,
            content,
            material_id,
            exam_date,
            daily_minutes,
            start_date=start_date,
            context=context,
        )

    def test_connection(self, provider: str | None = None) -> tuple[bool, str]:
        """
        Test API connection for a provider.

        Args:
            provider: Provider to test ("anthropic" or "openai"), defaults to default_provider

        Returns:
            Tuple of (success: bool, message: str)
        """
        provider = provider or self.default_provider

        try:
            self.complete("Reply with the word OK.", "ping", provider=provider)
            return True, f"{provider.capitalize()} API connection successful"
        except Exception as e:
            return False, f"{provider.capitalize()} API error: {e!s}"

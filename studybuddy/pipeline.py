"""
Generation pipeline for newly submitted material.

All artifact requests are issued concurrently and joined before anything is
written. In all_or_nothing mode a single failure aborts the whole run and
nothing is stored; in best_effort mode the material and every artifact that
succeeded are stored and the failures are reported per artifact.
"""

import asyncio
import logging
from typing import Any

from studybuddy.errors import GenerationFailure
from studybuddy.generation import GenerationService
from studybuddy.library import StudyLibrary, now_millis
from studybuddy.schemas import ArtifactStatus, GenerationResult, MaterialCreate, MaterialSummary

logger = logging.getLogger(__name__)

ARTIFACTS = ("summary", "overview", "flashcards", "quiz", "concept_map")


class GenerationPipeline:
    """Fan-out/fan-in generation of every artifact for one material."""

    def __init__(
        self,
        generator: GenerationService,
        library: StudyLibrary,
        mode: str = "all_or_nothing",
    ):
        if mode not in ("all_or_nothing", "best_effort"):
            raise ValueError(f"Unknown generation mode: {mode}")
        self.generator = generator
        self.library = library
        self.mode = mode

    async def _gather(self, content: str, context: str | None, images: list[str] | None):
        requests = {
            "summary": self.generator.request_summary,
            "overview": self.generator.request_overview,
            "flashcards": self.generator.request_flashcards,
            "quiz": self.generator.request_quiz,
            "concept_map": self.generator.request_concept_map,
        }
        # The provider clients are blocking, so each call gets its own worker thread
        results = await asyncio.gather(
            *(asyncio.to_thread(requests[name], content, context, images) for name in ARTIFACTS),
            return_exceptions=True,
        )
        return dict(zip(ARTIFACTS, results))

    async def run(self, data: MaterialCreate) -> GenerationResult:
        """
        Create a material and generate all of its artifacts.

        Args:
            data: Submitted material

        Returns:
            GenerationResult with per-artifact statuses

        Raises:
            GenerationFailure: In all_or_nothing mode, if any artifact failed
        """
        material = self.library.new_material(data)
        results = await self._gather(material.content, material.context, material.images)

        statuses = []
        values: dict[str, Any] = {}
        for name, value in results.items():
            if isinstance(value, Exception):
                logger.warning("Generation of %s for %s failed: %s", name, material.id, value)
                statuses.append(ArtifactStatus(name=name, ok=False, error=str(value)))
            elif isinstance(value, BaseException):
                raise value
            else:
                statuses.append(ArtifactStatus(name=name, ok=True))
                values[name] = value

        failed = [s.name for s in statuses if not s.ok]
        if failed and self.mode == "all_or_nothing":
            raise GenerationFailure(f"Generation failed for: {', '.join(failed)}", failed)

        self.library.materials.save(material)
        if "flashcards" in values:
            self.library.save_flashcards(material.id, values["flashcards"])
        if "quiz" in values:
            self.library.save_quiz(material.id, values["quiz"])
        if "concept_map" in values:
            self.library.concept_maps.save(material.id, values["concept_map"])
        if "summary" in values or "overview" in values:
            # An empty summary is regenerated on first read, the overview is kept
            self.library.summaries.save(
                material.id,
                MaterialSummary(
                    summary=values.get("summary", ""),
                    overview=values.get("overview", ""),
                    created_at=now_millis(),
                ),
            )

        logger.info(
            "Generated study kit %s (%d/%d artifacts)",
            material.id,
            len(values),
            len(ARTIFACTS),
        )
        return GenerationResult(
            material=material,
            summary=values.get("summary"),
            overview=values.get("overview"),
            flashcards=values.get("flashcards", []),
            quiz=values.get("quiz", []),
            concept_map=values.get("concept_map"),
            statuses=statuses,
        )

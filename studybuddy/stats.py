"""
Study statistics aggregator.

Keeps the single UserStats record up to date from login, quiz and
card-learned events. Each writer loads the record, mutates it and writes it
back; if the write fails a PersistenceError propagates and the change must be
considered lost.
"""

import logging
import time
from datetime import date, datetime, timedelta

from pydantic import TypeAdapter, ValidationError

from studybuddy.database import QUIZ_RESULTS_KEY, STATS_KEY, KeyValueStore
from studybuddy.schemas import QuizResult, UserStats

logger = logging.getLogger(__name__)


def running_mean(mean: float, count: int, value: float) -> float:
    """
    Fold one more value into a mean of count values.

    Uses m + (x - m) / n rather than re-summing, so the error stays bounded
    over long histories.
    """
    return mean + (value - mean) / (count + 1)


def next_streak(stats: UserStats, today: date) -> int:
    """
    Streak length after studying on today.

    Same day keeps the streak, the day after extends it, anything else
    (a gap, no history, an unreadable date) starts over at 1.
    """
    if stats.last_study_date == today.isoformat():
        return stats.streak_days
    try:
        last = date.fromisoformat(stats.last_study_date)
    except ValueError:
        return 1
    if last == today - timedelta(days=1):
        return stats.streak_days + 1
    return 1


class StatsService:
    """Load/mutate/persist cycle for UserStats and the quiz result log."""

    _results_adapter = TypeAdapter(list[QuizResult])

    def __init__(self, store: KeyValueStore):
        self.store = store

    def get_stats(self) -> UserStats:
        """Get current stats, zeroed if none are stored yet."""
        data = self.store.get_json(STATS_KEY)
        if data is None:
            return UserStats()
        try:
            return UserStats.model_validate(data)
        except ValidationError as e:
            logger.warning("Corrupt stats record, resetting to defaults: %s", e)
            return UserStats()

    def _save(self, stats: UserStats) -> UserStats:
        self.store.set_json(STATS_KEY, stats.model_dump(mode="json"))
        return stats

    def record_login(self, today: date | None = None) -> UserStats:
        """Update the study streak. Idempotent within a calendar day."""
        if today is None:
            today = date.today()
        stats = self.get_stats()
        if stats.last_study_date == today.isoformat():
            return stats

        stats.streak_days = next_streak(stats, today)
        stats.last_study_date = today.isoformat()
        logger.info("Study streak is now %d day(s)", stats.streak_days)
        return self._save(stats)

    def get_quiz_results(self, material_id: str | None = None) -> list[QuizResult]:
        """Get the quiz result log, optionally for a single material."""
        data = self.store.get_json(QUIZ_RESULTS_KEY, [])
        try:
            results = self._results_adapter.validate_python(data)
        except ValidationError as e:
            logger.warning("Corrupt quiz result log, treating as empty: %s", e)
            results = []
        if material_id is not None:
            results = [r for r in results if r.material_id == material_id]
        return results

    def record_quiz_result(
        self,
        material_id: str,
        score: int,
        total_questions: int,
        completed_at: datetime | None = None,
    ) -> UserStats:
        """
        Append a quiz result and fold its score into the running average.

        Args:
            material_id: Material the quiz was generated from
            score: Number of correct answers
            total_questions: Number of questions asked
            completed_at: Completion time, defaults to now

        Returns:
            Updated stats

        Raises:
            ValueError: If the score is negative or exceeds total_questions
        """
        if total_questions < 0 or score < 0 or score > total_questions:
            raise ValueError(f"Invalid quiz score {score}/{total_questions}")

        if completed_at is None:
            millis = int(time.time() * 1000)
        else:
            millis = int(completed_at.timestamp() * 1000)

        results = self.get_quiz_results()
        results.append(
            QuizResult(
                id=f"quiz-result-{millis}-{len(results)}",
                material_id=material_id,
                score=score,
                total_questions=total_questions,
                date=millis,
            )
        )
        self.store.set_json(QUIZ_RESULTS_KEY, [r.model_dump(mode="json") for r in results])

        stats = self.get_stats()
        stats.average_quiz_score = running_mean(
            stats.average_quiz_score, stats.total_quizzes_taken, score
        )
        stats.total_quizzes_taken += 1
        return self._save(stats)

    def record_card_learned(self) -> UserStats:
        """Count one more mastered card."""
        stats = self.get_stats()
        stats.total_cards_learned += 1
        return self._save(stats)

    def reset(self) -> UserStats:
        """Drop stats and the quiz result log."""
        self.store.delete(STATS_KEY)
        self.store.delete(QUIZ_RESULTS_KEY)
        return UserStats()

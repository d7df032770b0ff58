"""
Flashcard review state machine.

Cards move through new -> learning -> review -> mastered:
- correct: new/learning -> review, review -> mastered (mastered stays mastered)
- incorrect: any state -> learning, schedule cleared
- skipped: no change

The first time a card reaches mastered it is stamped with mastered_at and the
review reports it as learned, so a demoted card that is mastered again is not
counted twice.
"""

from collections import Counter
from datetime import datetime, timedelta
from typing import NamedTuple

from studybuddy.schemas import CardStatus, DeckProgress, Flashcard, ReviewOutcome


class ReviewConfig(NamedTuple):
    """Scheduling intervals applied on correct answers."""

    review_interval_days: int = 1  # Next review after reaching review
    mastered_interval_days: int = 7  # Next review once mastered


class ReviewResult(NamedTuple):
    """Result of reviewing a card."""

    card: Flashcard
    card_learned: bool


CORRECT_TRANSITIONS = {
    CardStatus.NEW: CardStatus.REVIEW,
    CardStatus.LEARNING: CardStatus.REVIEW,
    CardStatus.REVIEW: CardStatus.MASTERED,
    CardStatus.MASTERED: CardStatus.MASTERED,
}


def to_millis(moment: datetime) -> int:
    """Convert a datetime to epoch milliseconds."""
    return int(moment.timestamp() * 1000)


def review_card(
    card: Flashcard,
    outcome: ReviewOutcome,
    reviewed_at: datetime | None = None,
    config: ReviewConfig | None = None,
) -> ReviewResult:
    """
    Apply a review outcome to a card.

    Args:
        card: The card being reviewed
        outcome: correct, incorrect or skipped
        reviewed_at: Time of the review, defaults to now
        config: Scheduling intervals

    Returns:
        ReviewResult with the new card and whether it was learned for the first time
    """
    if outcome == ReviewOutcome.SKIPPED:
        return ReviewResult(card=card, card_learned=False)

    if outcome == ReviewOutcome.INCORRECT:
        updated = card.model_copy(update={"status": CardStatus.LEARNING, "next_review": None})
        return ReviewResult(card=updated, card_learned=False)

    if config is None:
        config = ReviewConfig()
    if reviewed_at is None:
        reviewed_at = datetime.now()

    new_status = CORRECT_TRANSITIONS[card.status]
    if new_status == CardStatus.MASTERED:
        interval_days = config.mastered_interval_days
    else:
        interval_days = config.review_interval_days

    changes = {
        "status": new_status,
        "next_review": to_millis(reviewed_at + timedelta(days=interval_days)),
    }

    card_learned = new_status == CardStatus.MASTERED and card.mastered_at is None
    if card_learned:
        changes["mastered_at"] = to_millis(reviewed_at)

    return ReviewResult(card=card.model_copy(update=changes), card_learned=card_learned)


def is_card_due(card: Flashcard, now: datetime | None = None) -> bool:
    """
    Check if a card is due for review.

    Args:
        card: The card to check
        now: Reference time, defaults to now

    Returns:
        True if the card has no schedule or its scheduled time has passed
    """
    if card.next_review is None:
        return True  # Unscheduled cards are always due

    if now is None:
        now = datetime.now()
    return to_millis(now) >= card.next_review


def due_cards(cards: list[Flashcard], now: datetime | None = None) -> list[Flashcard]:
    """Return the cards that are due, preserving order."""
    return [card for card in cards if is_card_due(card, now)]


def deck_progress(cards: list[Flashcard], now: datetime | None = None) -> DeckProgress:
    """Count cards per status."""
    counts = Counter(card.status for card in cards)
    return DeckProgress(
        total_cards=len(cards),
        new_count=counts[CardStatus.NEW],
        learning_count=counts[CardStatus.LEARNING],
        review_count=counts[CardStatus.REVIEW],
        mastered_count=counts[CardStatus.MASTERED],
        due_cards=len(due_cards(cards, now)),
    )

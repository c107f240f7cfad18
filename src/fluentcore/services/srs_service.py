"""Spaced repetition scheduling (SM-2 family)."""
import logging
import math
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Iterable, List, Mapping, Optional, Union

from fluentcore.config import settings
from fluentcore.models.command_models import Interaction
from fluentcore.models.progress_models import LearningStats, WordProgress

logger = logging.getLogger(__name__)

PERFECT_QUALITY = 5
DAYS_PER_MONTH = 30

# Hovering or asking for context signals difficulty; ignoring or clicking, easy recall
INTERACTION_QUALITY = {
    Interaction.HOVER: 3,
    Interaction.CONTEXT: 3,
    Interaction.PRONUNCIATION: 4,
    Interaction.IGNORED: 5,
    Interaction.CLICKED: 5,
}
DEFAULT_QUALITY = 4

# Mastery weights: correct ratio, interval, repetitions
MASTERY_WEIGHTS = (0.4, 0.3, 0.3)


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values instead of to the even neighbour."""
    return int(math.floor(value + 0.5))


def parse_interaction(kind: Union[Interaction, str]) -> Optional[Interaction]:
    """Map an interaction name to the enum; None if it is not a known interaction."""
    if isinstance(kind, Interaction):
        return kind
    try:
        return Interaction(str(kind).lower())
    except ValueError:
        return None


class SpacedRepetitionScheduler:
    """Computes mastery and review times for word records.

    Stateless: every method takes records and returns new ones.
    """

    def __init__(
        self,
        default_ease_factor: Optional[float] = None,
        min_ease_factor: Optional[float] = None,
        max_ease_factor: Optional[float] = None,
        pass_threshold: Optional[int] = None,
    ):
        learning = settings.learning
        self.default_ease_factor = default_ease_factor or learning.default_ease_factor
        self.min_ease_factor = min_ease_factor or learning.min_ease_factor
        self.max_ease_factor = max_ease_factor if max_ease_factor is not None else learning.max_ease_factor
        self.pass_threshold = learning.pass_threshold if pass_threshold is None else pass_threshold

    def score_interaction(self, record: Optional[WordProgress], interaction: Union[Interaction, str]) -> int:
        """Get the 0..5 quality rating of an interaction."""
        kind = parse_interaction(interaction)
        if kind is None:
            logger.warning("Unknown interaction %r, scoring as %d", interaction, DEFAULT_QUALITY)
            return DEFAULT_QUALITY
        return INTERACTION_QUALITY[kind]

    def calculate_ease_factor(self, ease_factor: float, quality: int) -> float:
        miss = PERFECT_QUALITY - quality
        ease_factor = ease_factor + (0.1 - miss * (0.08 + miss * 0.02))
        ease_factor = max(ease_factor, self.min_ease_factor)
        if self.max_ease_factor is not None:
            ease_factor = min(ease_factor, self.max_ease_factor)
        return ease_factor

    def calculate_next_review(
        self,
        record: WordProgress,
        quality: int,
        now: Optional[datetime] = None,
    ) -> WordProgress:
        """Apply one graded review to a record and return the updated copy."""
        if not 0 <= quality <= PERFECT_QUALITY:
            raise ValueError(f"Quality must be between 0 and {PERFECT_QUALITY}, got {quality}")
        now = now or datetime.now(UTC)

        # Initialize word data if new
        if not record.ease_factor:
            record = replace(
                record,
                ease_factor=self.default_ease_factor,
                interval=0,
                repetitions=0,
                total_seen=0,
                correct_count=0,
                mastery=0,
            )

        updated = replace(record, interactions=replace(record.interactions))
        updated.total_seen += 1
        updated.last_seen = now
        updated.ease_factor = self.calculate_ease_factor(updated.ease_factor, quality)

        if quality >= self.pass_threshold:
            updated.correct_count += 1
            if updated.repetitions == 0:
                updated.interval = 1
            elif updated.repetitions == 1:
                updated.interval = 3
            else:
                updated.interval = round_half_up(updated.interval * updated.ease_factor)
            updated.repetitions += 1
        else:
            # A lapse restarts the review cadence
            updated.repetitions = 0
            updated.interval = 1

        updated.next_review = now + timedelta(days=updated.interval)
        updated.mastery = self.calculate_mastery(updated)
        return updated

    def calculate_mastery(self, record: WordProgress) -> int:
        """Blend accuracy, interval length and streak into a 0..100 score."""
        if not record.total_seen:
            return 0

        correct_ratio = record.correct_count / record.total_seen
        interval_weight = min(record.interval / DAYS_PER_MONTH, 1)
        repetition_weight = min(record.repetitions / PERFECT_QUALITY, 1)

        correct_w, interval_w, repetition_w = MASTERY_WEIGHTS
        mastery = (
            correct_ratio * correct_w + interval_weight * interval_w + repetition_weight * repetition_w
        ) * 100
        return max(0, min(100, round_half_up(mastery)))

    def record_interaction(
        self,
        record: WordProgress,
        interaction: Union[Interaction, str],
        now: Optional[datetime] = None,
    ) -> WordProgress:
        """Score an interaction, reschedule the word and count the help request."""
        quality = self.score_interaction(record, interaction)
        updated = self.calculate_next_review(record, quality, now)

        kind = parse_interaction(interaction)
        if kind is not None and hasattr(updated.interactions, kind.value):
            setattr(updated.interactions, kind.value, getattr(updated.interactions, kind.value) + 1)
        return updated

    def get_words_for_review(
        self,
        records: Union[Mapping[str, WordProgress], Iterable[WordProgress]],
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[WordProgress]:
        """Get due records, most overdue first, at most ``limit`` of them."""
        now = now or datetime.now(UTC)
        limit = settings.learning.max_review_words_per_session if limit is None else limit
        if isinstance(records, Mapping):
            records = records.values()

        due = [record for record in records if record.is_due(now)]
        # sorted() is stable, so ties keep their original order
        due = sorted(due, key=lambda record: record.overdue(now), reverse=True)
        return due[:max(limit, 0)]

    def get_statistics(
        self,
        records: Mapping[str, WordProgress],
        now: Optional[datetime] = None,
    ) -> LearningStats:
        """Summarize a language's records."""
        now = now or datetime.now(UTC)
        words = list(records.values())
        if not words:
            return LearningStats()

        threshold = settings.learning.mastered_threshold
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return LearningStats(
            total_words=len(words),
            mastered_words=sum(1 for w in words if w.mastery >= threshold),
            words_in_progress=sum(1 for w in words if 0 < w.mastery < threshold),
            words_due_for_review=sum(1 for w in words if w.is_due(now)),
            average_mastery=sum(w.mastery for w in words) / len(words),
            today_reviews=sum(1 for w in words if w.last_seen and w.last_seen >= today),
        )

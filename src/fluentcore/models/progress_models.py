"""Models for learning progress and usage data."""
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Dict, Optional, Union

from fluentcore.exceptions import InvalidRecordState

MIN_EASE_FACTOR = 1.3
DEFAULT_EASE_FACTOR = 2.5

Timestamp = Union[str, int, float, datetime, None]


def parse_timestamp(value: Timestamp) -> Optional[datetime]:
    """Parse an ISO string or a millisecond epoch into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        # Records written by the browser extension hold epoch milliseconds
        return datetime.fromtimestamp(value / 1000, UTC)
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime for storage."""
    return value.isoformat() if value else None


def word_key(word: str, language: str) -> str:
    """Build the storage key of a word: ``language:word`` with the word case-folded."""
    return f"{language}:{word.casefold()}"


@dataclass
class InteractionCounts:
    """How often the user asked for help with a word."""
    hover: int = 0
    pronunciation: int = 0
    context: int = 0

    def to_data(self) -> Dict[str, int]:
        return {"hover": self.hover, "pronunciation": self.pronunciation, "context": self.context}

    @classmethod
    def from_data(cls, data: Optional[Dict[str, Any]]) -> "InteractionCounts":
        data = data or {}
        return cls(
            hover=int(data.get("hover", 0)),
            pronunciation=int(data.get("pronunciation", 0)),
            context=int(data.get("context", 0)),
        )


@dataclass
class WordProgress:
    """Spaced repetition state of one word in one language."""
    word: str
    language: str
    ease_factor: float = DEFAULT_EASE_FACTOR
    interval: int = 0  # days
    repetitions: int = 0
    last_seen: Optional[datetime] = None
    next_review: Optional[datetime] = None
    total_seen: int = 0
    correct_count: int = 0
    mastery: int = 0
    interactions: InteractionCounts = field(default_factory=InteractionCounts)

    @classmethod
    def new(cls, word: str, language: str, now: Optional[datetime] = None) -> "WordProgress":
        """Create the record of a word encountered for the first time."""
        now = now or datetime.now(UTC)
        return cls(word=word.casefold(), language=language, last_seen=now, next_review=now)

    @property
    def key(self) -> str:
        return word_key(self.word, self.language)

    def overdue(self, now: datetime) -> float:
        """Seconds since the word became due (negative if not due yet)."""
        if self.next_review is None:
            return 0.0
        return (now - self.next_review).total_seconds()

    def is_due(self, now: datetime) -> bool:
        return self.next_review is not None and self.next_review <= now

    def validate(self) -> None:
        """Raise InvalidRecordState if the record breaks one of its invariants."""
        if self.ease_factor < MIN_EASE_FACTOR:
            raise InvalidRecordState(f"{self.key}: ease factor {self.ease_factor} below {MIN_EASE_FACTOR}")
        if self.interval < 0:
            raise InvalidRecordState(f"{self.key}: negative interval {self.interval}")
        if self.repetitions < 0 or self.total_seen < 0 or self.correct_count < 0:
            raise InvalidRecordState(f"{self.key}: negative counter")
        if self.correct_count > self.total_seen:
            raise InvalidRecordState(
                f"{self.key}: correct count {self.correct_count} exceeds total seen {self.total_seen}"
            )
        if not 0 <= self.mastery <= 100:
            raise InvalidRecordState(f"{self.key}: mastery {self.mastery} outside 0..100")
        if self.last_seen and self.next_review and self.next_review < self.last_seen:
            raise InvalidRecordState(f"{self.key}: next review precedes last seen")

    def to_data(self) -> Dict[str, Any]:
        """Convert to serializable data for storage."""
        return {
            "word": self.word,
            "language": self.language,
            "easeFactor": self.ease_factor,
            "interval": self.interval,
            "repetitions": self.repetitions,
            "lastSeen": format_timestamp(self.last_seen),
            "nextReview": format_timestamp(self.next_review),
            "totalSeen": self.total_seen,
            "correctCount": self.correct_count,
            "mastery": self.mastery,
            "interactions": self.interactions.to_data(),
        }

    @classmethod
    def from_data(cls, data: Dict[str, Any], word: Optional[str] = None,
                  language: Optional[str] = None) -> "WordProgress":
        """Create a WordProgress instance from stored data.

        Raises InvalidRecordState when the stored data is malformed or
        violates an invariant.
        """
        try:
            progress = cls(
                word=(data.get("word") or word or "").casefold(),
                language=data.get("language") or language or "",
                ease_factor=float(data.get("easeFactor") or DEFAULT_EASE_FACTOR),
                interval=int(data.get("interval", 0)),
                repetitions=int(data.get("repetitions", 0)),
                last_seen=parse_timestamp(data.get("lastSeen")),
                next_review=parse_timestamp(data.get("nextReview")),
                total_seen=int(data.get("totalSeen", 0)),
                correct_count=int(data.get("correctCount", 0)),
                mastery=int(data.get("mastery", 0)),
                interactions=InteractionCounts.from_data(data.get("interactions")),
            )
        except (AttributeError, TypeError, ValueError) as e:
            raise InvalidRecordState(f"Malformed word progress record: {e}") from e
        progress.validate()
        return progress


@dataclass
class DailyUsage:
    """Today's usage counters for the free tier."""
    date: str
    words_translated: int = 0
    explanations_viewed: int = 0
    last_reset: Optional[datetime] = None
    is_plus: bool = False

    def to_data(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "wordsTranslated": self.words_translated,
            "explanationsViewed": self.explanations_viewed,
            "lastReset": format_timestamp(self.last_reset),
            "isPlus": self.is_plus,
        }

    @classmethod
    def from_data(cls, data: Dict[str, Any]) -> "DailyUsage":
        """Create a DailyUsage instance from stored data.

        Raises InvalidRecordState when the stored data is malformed.
        """
        try:
            usage = cls(
                date=str(data.get("date", "")),
                words_translated=int(data.get("wordsTranslated", 0)),
                explanations_viewed=int(data.get("explanationsViewed", 0)),
                last_reset=parse_timestamp(data.get("lastReset")),
                is_plus=bool(data.get("isPlus", False)),
            )
        except (AttributeError, TypeError, ValueError) as e:
            raise InvalidRecordState(f"Malformed daily usage record: {e}") from e
        if usage.words_translated < 0 or usage.explanations_viewed < 0:
            raise InvalidRecordState(f"Daily usage for {usage.date} has a negative counter")
        return usage


@dataclass
class LearningStats:
    """Aggregate learning statistics for one language."""
    total_words: int = 0
    mastered_words: int = 0
    words_in_progress: int = 0
    words_due_for_review: int = 0
    average_mastery: float = 0.0
    today_reviews: int = 0


@dataclass
class UsageStats:
    """Today's usage compared to the daily limits."""
    words_today: int
    words_limit: float
    explanations_today: int
    explanations_limit: float
    is_plus: bool
    words_percentage: float
    explanations_percentage: float

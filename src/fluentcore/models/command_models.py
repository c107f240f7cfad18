"""Commands, results and events exchanged with the host."""
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Sequence, Union


class Interaction(Enum):
    """Ways the user can react to a replaced word."""
    HOVER = "hover"  # Hovered to see the original word
    PRONUNCIATION = "pronunciation"  # Played the pronunciation
    CONTEXT = "context"  # Asked for a context explanation
    IGNORED = "ignored"  # Read past it without help
    CLICKED = "clicked"  # Actively engaged with it


class QuotaKind(Enum):
    """Daily counters tracked by the quota manager."""
    TRANSLATIONS = "translations"
    EXPLANATIONS = "explanations"


Candidates = Union[Sequence[str], Mapping[str, int]]


@dataclass(frozen=True)
class QuotaDecision:
    """Outcome of a quota check. Denial is a result, not an error."""
    allowed: bool
    remaining: float
    message: Optional[str] = None

    @property
    def unlimited(self) -> bool:
        return math.isinf(self.remaining)


@dataclass(frozen=True)
class DurabilityExhausted:
    """A write failed repeatedly and now only lives in the local backup."""
    key: str
    value: Any
    retries: int
    message: str = (
        "Failed to sync settings. Your changes are saved locally "
        "but may not sync across devices."
    )


@dataclass(frozen=True)
class SelectionResult:
    """Words chosen for a page and the quota decision that bounded them."""
    words: list[str]
    quota: QuotaDecision


# Commands


@dataclass(frozen=True)
class SelectWords:
    """Choose the words to replace on a page."""
    candidates: Candidates
    language: Optional[str] = None
    budget: Optional[int] = None


@dataclass(frozen=True)
class RecordInteraction:
    """Score a user interaction with a replaced word."""
    word: str
    language: str
    interaction: Union[Interaction, str]


@dataclass(frozen=True)
class CheckQuota:
    kind: QuotaKind
    count: int = 1


@dataclass(frozen=True)
class RecordUsage:
    kind: QuotaKind
    count: int


@dataclass(frozen=True)
class GetDailyUsage:
    pass


@dataclass(frozen=True)
class GetUsageStats:
    pass


@dataclass(frozen=True)
class SetPlusStatus:
    is_plus: bool


@dataclass(frozen=True)
class GetLearningStats:
    language: str


@dataclass(frozen=True)
class GetCachedTranslation:
    word: str
    language: str


@dataclass(frozen=True)
class CacheTranslation:
    word: str
    language: str
    translation: str


@dataclass(frozen=True)
class GetSettings:
    pass


@dataclass(frozen=True)
class UpdateSettings:
    updates: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Cleanup:
    """Drop stale word progress and expired translations."""


@dataclass(frozen=True)
class ResetLearningData:
    """Forget all learning progress and cached translations. Daily usage is kept."""


@dataclass(frozen=True)
class Flush:
    """Commit every queued write before the process is torn down."""


Command = Union[
    SelectWords,
    RecordInteraction,
    CheckQuota,
    RecordUsage,
    GetDailyUsage,
    GetUsageStats,
    SetPlusStatus,
    GetLearningStats,
    GetCachedTranslation,
    CacheTranslation,
    GetSettings,
    UpdateSettings,
    Cleanup,
    ResetLearningData,
    Flush,
]

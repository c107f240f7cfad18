"""Daily usage limits for translations and explanations."""
import logging
import math
from datetime import UTC, datetime
from typing import Callable, Optional

from fluentcore.config import DAILY_USAGE, settings
from fluentcore.exceptions import InvalidRecordState, TransientStorageError
from fluentcore.models.command_models import QuotaDecision, QuotaKind
from fluentcore.models.progress_models import DailyUsage, UsageStats
from fluentcore.monitoring import quota_denials
from fluentcore.services.storage_service import PersistentStore

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = "Usage limits are temporarily unavailable. Please try again shortly."


class UsageQuotaManager:
    """Tracks today's usage and enforces the free tier's daily limits."""

    def __init__(
        self,
        store: PersistentStore,
        daily_words: Optional[int] = None,
        daily_explanations: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the manager with the store holding the usage record."""
        self.store = store
        self.daily_words = settings.quota.daily_words if daily_words is None else daily_words
        self.daily_explanations = (
            settings.quota.daily_explanations if daily_explanations is None else daily_explanations
        )
        self.clock = clock or (lambda: datetime.now(UTC))

    def _today(self) -> str:
        return self.clock().date().isoformat()

    def _limit(self, kind: QuotaKind) -> int:
        return self.daily_words if kind == QuotaKind.TRANSLATIONS else self.daily_explanations

    @staticmethod
    def _used(usage: DailyUsage, kind: QuotaKind) -> int:
        return usage.words_translated if kind == QuotaKind.TRANSLATIONS else usage.explanations_viewed

    async def _usage(self) -> DailyUsage:
        """Load today's usage, resetting it on a new day.

        Raises TransientStorageError when the record cannot be read, so
        nothing is written over a record that may still be valid.
        """
        data = await self.store.load(DAILY_USAGE)
        usage = None
        is_plus = False
        if data:
            try:
                usage = DailyUsage.from_data(data)
            except InvalidRecordState as e:
                logger.warning("Replacing malformed daily usage: %s", e)
                is_plus = isinstance(data, dict) and data.get("isPlus") is True
        if usage is not None:
            is_plus = usage.is_plus

        # Check if we need to reset for a new day
        today = self._today()
        if usage is None or usage.date != today:
            usage = DailyUsage(date=today, last_reset=self.clock(), is_plus=is_plus)
            self.store.set(DAILY_USAGE, usage.to_data())
            logger.info("Daily usage reset for %s", today)
        return usage

    async def _usage_or_default(self) -> DailyUsage:
        try:
            return await self._usage()
        except TransientStorageError as e:
            logger.error("Cannot read daily usage, reporting empty counters: %s", e)
            return DailyUsage(date=self._today())

    async def get_daily_usage(self) -> DailyUsage:
        """Get today's counters, resetting them the first time a new day is seen.

        If storage cannot be read, returns zeroed counters without saving them.
        """
        return await self._usage_or_default()

    async def check(self, kind: QuotaKind, count: int = 1) -> QuotaDecision:
        """Check whether ``count`` more units of ``kind`` fit in today's limit."""
        try:
            usage = await self._usage()
        except TransientStorageError as e:
            # Nothing cached to trust, so fail closed
            logger.error("Cannot read daily usage, denying %s: %s", kind.value, e)
            quota_denials.labels(kind=kind.value).inc()
            return QuotaDecision(allowed=False, remaining=0, message=UNAVAILABLE_MESSAGE)

        # Plus users are unlimited
        if usage.is_plus:
            return QuotaDecision(allowed=True, remaining=math.inf)

        limit = self._limit(kind)
        used = self._used(usage, kind)
        remaining = limit - used
        allowed = remaining >= count
        if not allowed:
            quota_denials.labels(kind=kind.value).inc()

        noun = "translations" if kind == QuotaKind.TRANSLATIONS else "explanations"
        return QuotaDecision(
            allowed=allowed,
            remaining=max(0, remaining),
            message=None if allowed else f"Daily limit reached! You've used {used}/{limit} {noun} today.",
        )

    async def can_translate_words(self, count: int = 1) -> QuotaDecision:
        return await self.check(QuotaKind.TRANSLATIONS, count)

    async def can_view_explanations(self, count: int = 1) -> QuotaDecision:
        return await self.check(QuotaKind.EXPLANATIONS, count)

    async def record(self, kind: QuotaKind, count: int) -> DailyUsage:
        """Add delivered units to today's counter.

        Not idempotent: call exactly once per delivered unit of work.
        """
        if count < 0:
            raise ValueError(f"Usage count cannot be negative, got {count}")
        try:
            usage = await self._usage()
        except TransientStorageError as e:
            # Never write over a record that could not be read
            logger.error("Cannot read daily usage, dropping %d %s: %s", count, kind.value, e)
            return DailyUsage(date=self._today())

        if kind == QuotaKind.TRANSLATIONS:
            usage.words_translated += count
        else:
            usage.explanations_viewed += count
        self.store.set(DAILY_USAGE, usage.to_data())
        return usage

    async def record_translations(self, count: int) -> DailyUsage:
        return await self.record(QuotaKind.TRANSLATIONS, count)

    async def record_explanations(self, count: int) -> DailyUsage:
        return await self.record(QuotaKind.EXPLANATIONS, count)

    async def set_plus_status(self, is_plus: bool) -> DailyUsage:
        try:
            usage = await self._usage()
        except TransientStorageError as e:
            logger.error("Cannot read daily usage, Plus status not changed: %s", e)
            return DailyUsage(date=self._today())

        usage.is_plus = is_plus
        self.store.set(DAILY_USAGE, usage.to_data())
        logger.info("Plus status set to %s", is_plus)
        return usage

    async def get_usage_stats(self) -> UsageStats:
        """Today's usage compared to the limits."""
        usage = await self._usage_or_default()
        if usage.is_plus:
            return UsageStats(
                words_today=usage.words_translated,
                words_limit=math.inf,
                explanations_today=usage.explanations_viewed,
                explanations_limit=math.inf,
                is_plus=True,
                words_percentage=0.0,
                explanations_percentage=0.0,
            )
        return UsageStats(
            words_today=usage.words_translated,
            words_limit=self.daily_words,
            explanations_today=usage.explanations_viewed,
            explanations_limit=self.daily_explanations,
            is_plus=False,
            words_percentage=_percentage(usage.words_translated, self.daily_words),
            explanations_percentage=_percentage(usage.explanations_viewed, self.daily_explanations),
        )


def _percentage(used: int, limit: int) -> float:
    return (used / limit) * 100 if limit else 100.0

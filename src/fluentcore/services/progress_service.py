"""Service owning word progress records and the translation cache."""
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Dict, Optional, Union

from fluentcore.config import TRANSLATION_CACHE, WORD_PROGRESS, settings
from fluentcore.exceptions import InvalidRecordState
from fluentcore.models.command_models import Interaction
from fluentcore.models.progress_models import LearningStats, WordProgress, parse_timestamp, word_key
from fluentcore.monitoring import interactions_recorded
from fluentcore.services.srs_service import SpacedRepetitionScheduler, parse_interaction
from fluentcore.services.storage_service import PersistentStore

logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    """What a maintenance sweep removed."""
    words_removed: int = 0
    translations_removed: int = 0


class ProgressService:
    """Reads and writes learning state through the persistent store."""

    def __init__(
        self,
        store: PersistentStore,
        scheduler: Optional[SpacedRepetitionScheduler] = None,
    ):
        """Initialize the service with a store and a scheduler."""
        self.store = store
        self.scheduler = scheduler or SpacedRepetitionScheduler()

    async def _progress_map(self) -> Dict[str, Dict[str, Any]]:
        progress = await self.store.get(WORD_PROGRESS, {})
        return progress if isinstance(progress, dict) else {}

    @staticmethod
    def _decode(key: str, data: Any) -> Optional[WordProgress]:
        language, _, word = key.partition(":")
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed progress record %s", key)
            return None
        try:
            return WordProgress.from_data(data, word=word, language=language)
        except InvalidRecordState as e:
            # Start the word over instead of spreading the corruption
            logger.warning("Treating %s as new: %s", key, e)
            return None

    async def get_word_progress(self, word: str, language: str) -> Optional[WordProgress]:
        """Get the record of one word, or None if it has never been seen."""
        key = word_key(word, language)
        progress = await self._progress_map()
        if key not in progress:
            return None
        return self._decode(key, progress[key])

    async def get_all_word_progress(self, language: str) -> Dict[str, WordProgress]:
        """Get every valid record of a language keyed by word."""
        prefix = f"{language}:"
        records = {}
        for key, data in (await self._progress_map()).items():
            if not key.startswith(prefix):
                continue
            record = self._decode(key, data)
            if record is not None:
                records[key[len(prefix):]] = record
        return records

    async def record_interaction(
        self,
        word: str,
        language: str,
        interaction: Union[Interaction, str],
        now: Optional[datetime] = None,
    ) -> WordProgress:
        """Score an interaction with a word and persist its new schedule."""
        now = now or datetime.now(UTC)
        key = word_key(word, language)
        progress = await self._progress_map()

        record = self._decode(key, progress[key]) if key in progress else None
        if record is None:
            record = WordProgress.new(word, language, now)

        updated = self.scheduler.record_interaction(record, interaction, now)

        progress = dict(progress)
        progress[key] = updated.to_data()
        self.store.set(WORD_PROGRESS, progress)

        kind = parse_interaction(interaction)
        interactions_recorded.labels(kind=kind.value if kind else "unknown").inc()
        logger.debug(
            "Recorded %s for %s: interval=%d repetitions=%d mastery=%d",
            interaction,
            key,
            updated.interval,
            updated.repetitions,
            updated.mastery,
        )
        return updated

    async def get_learning_stats(self, language: str, now: Optional[datetime] = None) -> LearningStats:
        records = await self.get_all_word_progress(language)
        return self.scheduler.get_statistics(records, now)

    # Translation cache

    async def _translation_cache(self) -> Dict[str, Any]:
        cache = await self.store.get(TRANSLATION_CACHE, None)
        if not isinstance(cache, dict):
            return {"translations": {}, "timestamps": {}, "lastUpdated": None}
        return {
            "translations": dict(cache.get("translations") or {}),
            "timestamps": dict(cache.get("timestamps") or {}),
            "lastUpdated": cache.get("lastUpdated"),
        }

    async def get_cached_translation(self, word: str, language: str) -> Optional[str]:
        cache = await self._translation_cache()
        return cache["translations"].get(word_key(word, language))

    async def cache_translation(
        self,
        word: str,
        language: str,
        translation: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """Remember a translation, evicting the oldest entries when the cache is full."""
        now = now or datetime.now(UTC)
        key = word_key(word, language)
        cache = await self._translation_cache()

        cache["translations"][key] = translation
        cache["timestamps"][key] = now.isoformat()
        cache["lastUpdated"] = now.isoformat()

        max_entries = settings.cache.max_entries
        if len(cache["translations"]) > max_entries:
            timestamps = cache["timestamps"]
            newest = sorted(
                cache["translations"],
                key=lambda k: parse_timestamp(timestamps.get(k)) or datetime.min.replace(tzinfo=UTC),
                reverse=True,
            )[:settings.cache.trim_to]
            cache["translations"] = {k: cache["translations"][k] for k in newest}
            cache["timestamps"] = {k: timestamps[k] for k in newest if k in timestamps}
            logger.info("Translation cache trimmed to %d entries", len(newest))

        return self.store.set(TRANSLATION_CACHE, cache)

    # Maintenance

    async def cleanup(self, now: Optional[datetime] = None) -> CleanupReport:
        """Drop word progress not seen for the staleness period and expired translations."""
        now = now or datetime.now(UTC)
        report = CleanupReport()

        cutoff = now - timedelta(days=settings.learning.stale_after_days)
        progress = await self._progress_map()
        kept = {}
        for key, data in progress.items():
            last_seen = _safe_timestamp(data.get("lastSeen") if isinstance(data, dict) else None)
            if last_seen is not None and last_seen < cutoff:
                report.words_removed += 1
                continue
            kept[key] = data
        if report.words_removed:
            self.store.set(WORD_PROGRESS, kept)

        cache_cutoff = now - timedelta(days=settings.cache.expiry_days)
        cache = await self._translation_cache()
        for key, timestamp in list(cache["timestamps"].items()):
            cached_at = _safe_timestamp(timestamp)
            if cached_at is not None and cached_at < cache_cutoff:
                cache["translations"].pop(key, None)
                del cache["timestamps"][key]
                report.translations_removed += 1
        if report.translations_removed:
            self.store.set(TRANSLATION_CACHE, cache)

        logger.info(
            "Cleanup removed %d stale words and %d expired translations",
            report.words_removed,
            report.translations_removed,
        )
        return report

    async def reset(self) -> bool:
        """Forget all word progress and cached translations."""
        removed_progress = await self.store.remove(WORD_PROGRESS)
        removed_cache = await self.store.remove(TRANSLATION_CACHE)
        logger.info("Learning data reset")
        return removed_progress and removed_cache


def _safe_timestamp(value: Any) -> Optional[datetime]:
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError):
        return None

"""Learning engine: wires the services together and dispatches host commands."""
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Type

from fluentcore.exceptions import UnknownCommandError
from fluentcore.models.command_models import (
    CacheTranslation,
    Candidates,
    CheckQuota,
    Cleanup,
    Command,
    Flush,
    GetCachedTranslation,
    GetDailyUsage,
    GetLearningStats,
    GetSettings,
    GetUsageStats,
    RecordInteraction,
    RecordUsage,
    ResetLearningData,
    SelectionResult,
    SelectWords,
    SetPlusStatus,
    UpdateSettings,
)
from fluentcore.services.backends import SqlAlchemyBackend
from fluentcore.services.backup_service import LocalBackup
from fluentcore.services.progress_service import ProgressService
from fluentcore.services.quota_service import UsageQuotaManager
from fluentcore.services.selection_service import WordSelectionPolicy
from fluentcore.services.settings_service import SettingsService
from fluentcore.services.srs_service import SpacedRepetitionScheduler
from fluentcore.services.storage_service import PersistentStore


class FluentEngine:
    """Main application class."""

    def __init__(
        self,
        store: PersistentStore,
        scheduler: Optional[SpacedRepetitionScheduler] = None,
        policy: Optional[WordSelectionPolicy] = None,
        quota: Optional[UsageQuotaManager] = None,
    ):
        """Initialize the engine around an explicitly constructed store."""
        self.store = store
        self.scheduler = scheduler or SpacedRepetitionScheduler()
        self.policy = policy or WordSelectionPolicy(self.scheduler)
        self.quota = quota or UsageQuotaManager(store)
        self.progress = ProgressService(store, self.scheduler)
        self.user_settings = SettingsService(store)
        self.running = False
        self.logger = logging.getLogger(__name__)

        self._handlers: Dict[Type[Any], Callable[[Any], Awaitable[Any]]] = {
            SelectWords: lambda c: self.select_words(c.candidates, c.language, c.budget),
            RecordInteraction: lambda c: self.progress.record_interaction(c.word, c.language, c.interaction),
            CheckQuota: lambda c: self.quota.check(c.kind, c.count),
            RecordUsage: lambda c: self.quota.record(c.kind, c.count),
            GetDailyUsage: lambda c: self.quota.get_daily_usage(),
            GetUsageStats: lambda c: self.quota.get_usage_stats(),
            SetPlusStatus: lambda c: self.quota.set_plus_status(c.is_plus),
            GetLearningStats: lambda c: self.progress.get_learning_stats(c.language),
            GetCachedTranslation: lambda c: self.progress.get_cached_translation(c.word, c.language),
            CacheTranslation: lambda c: self.progress.cache_translation(c.word, c.language, c.translation),
            GetSettings: lambda c: self.user_settings.get_settings(),
            UpdateSettings: lambda c: self.user_settings.update_settings(c.updates),
            Cleanup: lambda c: self.progress.cleanup(),
            ResetLearningData: lambda c: self.progress.reset(),
            Flush: lambda c: self.store.force_flush(),
        }

    @classmethod
    def from_url(cls, database_url: Optional[str] = None, backup_path: Optional[Path] = None) -> "FluentEngine":
        """Create an engine on a SQL database (the configured one by default)."""
        backend = SqlAlchemyBackend.from_url(database_url)
        return cls(PersistentStore(backend, LocalBackup(backup_path)))

    async def start(self) -> None:
        """Start the engine."""
        if self.running:
            return

        backed_up = self.store.backup.load()
        if backed_up:
            self.logger.warning(
                "%d keys exist only in the local backup: %s",
                len(backed_up),
                ", ".join(sorted(backed_up)),
            )
        self.running = True
        self.logger.info("Engine started")

    async def stop(self) -> None:
        """Flush every queued write and release the store."""
        if not self.running:
            return

        try:
            await self.store.force_flush()
        finally:
            await self.store.close()
            self.store.backend.close()
            self.running = False
            self.logger.info("Engine stopped")

    async def dispatch(self, command: Command) -> Any:
        """Run one host command and return its result."""
        handler = self._handlers.get(type(command))
        if handler is None:
            raise UnknownCommandError(f"Cannot dispatch {type(command).__name__}")
        return await handler(command)

    async def select_words(
        self,
        candidates: Candidates,
        language: Optional[str] = None,
        budget: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> SelectionResult:
        """Choose a page's words, bounded by the remaining translation quota.

        Without a language there is no learning state to consult, so the
        policy falls back to frequency scoring.
        """
        decision = await self.quota.can_translate_words(1)
        if not decision.allowed:
            self.logger.info("Translation quota exhausted, selecting no words")
            return SelectionResult(words=[], quota=decision)

        if budget is None:
            budget = int((await self.user_settings.get_settings()).get("wordsPerPage") or 0) or None
        if budget is not None and not decision.unlimited:
            budget = min(budget, int(decision.remaining))

        records = await self.progress.get_all_word_progress(language) if language else None
        words = self.policy.select_words_for_page(records, candidates, budget, now)
        return SelectionResult(words=words, quota=decision)

"""Tests for the learning engine."""
import logging
import random
from datetime import UTC, datetime, timedelta

import pytest
from faker import Faker

from fluentcore.app import FluentEngine
from fluentcore.config import WORD_PROGRESS
from fluentcore.exceptions import UnknownCommandError
from fluentcore.models.command_models import (
    CacheTranslation,
    CheckQuota,
    Cleanup,
    Flush,
    GetCachedTranslation,
    GetDailyUsage,
    GetLearningStats,
    GetSettings,
    GetUsageStats,
    Interaction,
    QuotaKind,
    RecordInteraction,
    RecordUsage,
    ResetLearningData,
    SelectionResult,
    SelectWords,
    SetPlusStatus,
    UpdateSettings,
)
from fluentcore.services.quota_service import UsageQuotaManager
from fluentcore.services.selection_service import WordSelectionPolicy
from fluentcore.services.storage_service import PersistentStore

fake = Faker()

PAGE = ["garden", "window", "river", "forest", "mountain", "valley", "island", "bridge"]


@pytest.fixture
def engine(store: PersistentStore) -> FluentEngine:
    """Create an engine allowing five translations a day."""
    return FluentEngine(
        store,
        policy=WordSelectionPolicy(rng=random.Random(3)),
        quota=UsageQuotaManager(store, daily_words=5, daily_explanations=10),
    )


@pytest.mark.asyncio
async def test_start_stop(engine: FluentEngine) -> None:
    """Test that stopping the engine flushes queued writes."""
    await engine.start()
    assert engine.running is True

    await engine.dispatch(RecordInteraction("garden", "spanish", Interaction.HOVER))
    assert WORD_PROGRESS in engine.store.pending_keys

    await engine.stop()
    assert engine.running is False
    assert engine.store.pending_keys == frozenset()
    assert engine.store.is_idle


@pytest.mark.asyncio
async def test_start_reports_backed_up_keys(engine: FluentEngine, caplog) -> None:
    """Test that keys left in the local backup are reported on start."""
    engine.store.backup.save("user_settings", {"enabled": False})

    with caplog.at_level(logging.WARNING):
        await engine.start()

    assert "user_settings" in caplog.text
    await engine.stop()


@pytest.mark.asyncio
async def test_unknown_command(engine: FluentEngine) -> None:
    with pytest.raises(UnknownCommandError):
        await engine.dispatch("select words")


@pytest.mark.asyncio
async def test_select_words_without_language(engine: FluentEngine) -> None:
    """Test frequency selection when no language is given."""
    result = await engine.dispatch(SelectWords({"garden": 2, "it": 1, "mountain": 3}, budget=2))

    assert isinstance(result, SelectionResult)
    assert result.words == ["garden", "mountain"]
    assert result.quota.allowed is True
    await engine.store.close()


@pytest.mark.asyncio
async def test_select_words_reviews_due_words(engine: FluentEngine) -> None:
    """Test that words due for review come before new ones."""
    past = datetime.now(UTC) - timedelta(days=5)
    await engine.progress.record_interaction("river", "spanish", Interaction.HOVER, past)
    await engine.progress.record_interaction("forest", "spanish", Interaction.HOVER, past + timedelta(days=1))

    result = await engine.dispatch(SelectWords(PAGE, language="spanish", budget=4))

    assert result.words[:2] == ["river", "forest"]
    assert len(result.words) == 4
    assert set(result.words[2:]) <= set(PAGE) - {"river", "forest"}
    await engine.store.close()


@pytest.mark.asyncio
async def test_select_words_capped_by_quota(engine: FluentEngine) -> None:
    """Test that selection never exceeds the remaining translations."""
    await engine.dispatch(RecordUsage(QuotaKind.TRANSLATIONS, 3))

    result = await engine.dispatch(SelectWords(PAGE, language="spanish", budget=6))

    assert len(result.words) == 2
    assert result.quota.remaining == 2
    await engine.store.close()


@pytest.mark.asyncio
async def test_select_words_when_quota_exhausted(engine: FluentEngine) -> None:
    """Test that an exhausted quota selects nothing and explains why."""
    await engine.dispatch(RecordUsage(QuotaKind.TRANSLATIONS, 5))

    result = await engine.dispatch(SelectWords(PAGE, language="spanish"))

    assert result.words == []
    assert result.quota.allowed is False
    assert "5/5" in result.quota.message
    await engine.store.close()


@pytest.mark.asyncio
async def test_select_words_for_plus_users(engine: FluentEngine) -> None:
    """Test that Plus users are bounded by the budget only."""
    await engine.dispatch(RecordUsage(QuotaKind.TRANSLATIONS, 5))
    await engine.dispatch(SetPlusStatus(True))

    result = await engine.dispatch(SelectWords(PAGE, language="spanish", budget=4))

    assert len(result.words) == 4
    assert result.quota.unlimited
    await engine.store.close()


@pytest.mark.asyncio
async def test_budget_defaults_to_user_settings(store: PersistentStore) -> None:
    """Test that the words-per-page setting bounds selection without an explicit budget."""
    engine = FluentEngine(store, quota=UsageQuotaManager(store, daily_words=100, daily_explanations=10))
    await engine.dispatch(UpdateSettings({"wordsPerPage": 3}))

    settings = await engine.dispatch(GetSettings())
    result = await engine.dispatch(SelectWords(PAGE, language="spanish"))

    assert settings["wordsPerPage"] == 3
    assert settings["enabled"] is True
    assert len(result.words) == 3
    await store.close()


@pytest.mark.asyncio
async def test_quota_commands(engine: FluentEngine) -> None:
    await engine.dispatch(RecordUsage(QuotaKind.EXPLANATIONS, 4))

    usage = await engine.dispatch(GetDailyUsage())
    decision = await engine.dispatch(CheckQuota(QuotaKind.EXPLANATIONS, 7))
    stats = await engine.dispatch(GetUsageStats())

    assert usage.explanations_viewed == 4
    assert decision.allowed is False
    assert decision.remaining == 6
    assert stats.explanations_percentage == 40.0
    await engine.store.close()


@pytest.mark.asyncio
async def test_learning_commands(engine: FluentEngine) -> None:
    """Test interactions, stats, translations, cleanup and reset through dispatch."""
    word = fake.word()
    record = await engine.dispatch(RecordInteraction(word, "spanish", "pronunciation"))
    assert record.interactions.pronunciation == 1

    stats = await engine.dispatch(GetLearningStats("spanish"))
    assert stats.total_words == 1

    await engine.dispatch(CacheTranslation(word, "spanish", "traducción"))
    assert await engine.dispatch(GetCachedTranslation(word, "spanish")) == "traducción"

    report = await engine.dispatch(Cleanup())
    assert report.words_removed == 0

    await engine.dispatch(Flush())
    assert engine.store.is_idle

    assert await engine.dispatch(ResetLearningData()) is True
    assert (await engine.dispatch(GetLearningStats("spanish"))).total_words == 0
    assert await engine.dispatch(GetCachedTranslation(word, "spanish")) is None


@pytest.mark.asyncio
async def test_site_settings(engine: FluentEngine) -> None:
    """Test per-site settings kept in the synced namespace."""
    hostname = fake.domain_name()
    assert await engine.user_settings.get_site_settings(hostname) == {"enabled": True}

    updated = await engine.user_settings.update_site_settings(hostname, {"enabled": False})

    assert updated == {"enabled": False}
    assert await engine.user_settings.get_site_settings(hostname) == {"enabled": False}
    assert await engine.user_settings.get_site_settings("unknown.invalid") == {"enabled": True}
    assert "site_settings" in engine.store.pending_keys
    await engine.store.close()

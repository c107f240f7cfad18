"""Tests for the progress service."""
from datetime import UTC, datetime, timedelta

import pytest

from fluentcore.config import DAILY_USAGE, TRANSLATION_CACHE, WORD_PROGRESS, settings
from fluentcore.models.command_models import Interaction
from fluentcore.services.progress_service import ProgressService
from fluentcore.services.storage_service import PersistentStore

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def progress_service(store: PersistentStore) -> ProgressService:
    """Create a progress service on the test store."""
    return ProgressService(store)


@pytest.mark.asyncio
async def test_record_interaction_persists(progress_service: ProgressService, store: PersistentStore) -> None:
    """Test that an interaction creates and stores the word's record."""
    record = await progress_service.record_interaction("House", "spanish", Interaction.HOVER, NOW)

    assert record.word == "house"
    assert record.interval == 1
    assert record.interactions.hover == 1

    stored = (await store.get(WORD_PROGRESS))["spanish:house"]
    assert stored["interval"] == 1
    assert stored["easeFactor"] == pytest.approx(2.36)
    assert stored["nextReview"] == (NOW + timedelta(days=1)).isoformat()

    again = await progress_service.record_interaction("house", "spanish", "clicked", NOW + timedelta(days=1))
    assert again.repetitions == 2
    assert again.interval == 3
    await store.close()


@pytest.mark.asyncio
async def test_records_survive_a_flush(progress_service: ProgressService, store: PersistentStore, backend, backup) -> None:
    """Test reading progress back through a fresh store."""
    await progress_service.record_interaction("water", "spanish", Interaction.IGNORED, NOW)
    await store.force_flush()

    fresh = ProgressService(PersistentStore(backend, backup=backup))
    record = await fresh.get_word_progress("water", "spanish")

    assert record is not None
    assert record.repetitions == 1
    assert record.last_seen == NOW


@pytest.mark.asyncio
async def test_get_all_word_progress_by_language(progress_service: ProgressService, store: PersistentStore) -> None:
    """Test that records are listed per language, keyed by word."""
    await progress_service.record_interaction("house", "spanish", Interaction.HOVER, NOW)
    await progress_service.record_interaction("water", "spanish", Interaction.HOVER, NOW)
    await progress_service.record_interaction("house", "french", Interaction.HOVER, NOW)

    spanish = await progress_service.get_all_word_progress("spanish")
    french = await progress_service.get_all_word_progress("french")

    assert sorted(spanish) == ["house", "water"]
    assert list(french) == ["house"]
    assert await progress_service.get_word_progress("food", "spanish") is None
    await store.close()


@pytest.mark.asyncio
async def test_invalid_record_starts_over(progress_service: ProgressService, store: PersistentStore) -> None:
    """Test that a record breaking its invariants is treated as new."""
    store.set(WORD_PROGRESS, {
        "spanish:house": {"easeFactor": 2.5, "totalSeen": 1, "correctCount": 5, "interval": 3},
        "spanish:water": "not a record",
    })

    assert await progress_service.get_word_progress("house", "spanish") is None
    assert await progress_service.get_all_word_progress("spanish") == {}

    record = await progress_service.record_interaction("house", "spanish", Interaction.CLICKED, NOW)
    assert record.total_seen == 1
    assert record.correct_count == 1
    await store.close()


@pytest.mark.asyncio
async def test_learning_stats(progress_service: ProgressService, store: PersistentStore) -> None:
    await progress_service.record_interaction("house", "spanish", Interaction.HOVER, NOW)
    await progress_service.record_interaction("water", "spanish", Interaction.CLICKED, NOW)

    stats = await progress_service.get_learning_stats("spanish", NOW + timedelta(days=2))

    assert stats.total_words == 2
    assert stats.words_due_for_review == 2
    assert stats.words_in_progress == 2
    await store.close()


@pytest.mark.asyncio
async def test_translation_cache(progress_service: ProgressService, store: PersistentStore) -> None:
    """Test caching and looking up translations."""
    assert await progress_service.cache_translation("House", "spanish", "casa", NOW) is True

    assert await progress_service.get_cached_translation("house", "spanish") == "casa"
    assert await progress_service.get_cached_translation("house", "french") is None
    cache = await store.get(TRANSLATION_CACHE)
    assert cache["timestamps"]["spanish:house"] == NOW.isoformat()
    await store.close()


@pytest.mark.asyncio
async def test_translation_cache_trims_oldest(
    progress_service: ProgressService, store: PersistentStore, monkeypatch
) -> None:
    """Test that a full cache keeps only the newest entries."""
    monkeypatch.setattr(settings.cache, "max_entries", 3)
    monkeypatch.setattr(settings.cache, "trim_to", 2)

    for offset, word in enumerate(["one", "two", "three", "four"]):
        await progress_service.cache_translation(word, "spanish", word.upper(), NOW + timedelta(minutes=offset))

    cache = await store.get(TRANSLATION_CACHE)
    assert sorted(cache["translations"]) == ["spanish:four", "spanish:three"]
    assert sorted(cache["timestamps"]) == ["spanish:four", "spanish:three"]
    await store.close()


@pytest.mark.asyncio
async def test_cleanup(progress_service: ProgressService, store: PersistentStore) -> None:
    """Test removal of stale progress and expired translations."""
    await progress_service.record_interaction("house", "spanish", Interaction.HOVER, NOW - timedelta(days=120))
    await progress_service.record_interaction("water", "spanish", Interaction.HOVER, NOW - timedelta(days=10))
    await progress_service.cache_translation("house", "spanish", "casa", NOW - timedelta(days=40))
    await progress_service.cache_translation("water", "spanish", "agua", NOW - timedelta(days=5))

    report = await progress_service.cleanup(NOW)

    assert report.words_removed == 1
    assert report.translations_removed == 1
    assert list(await progress_service.get_all_word_progress("spanish")) == ["water"]
    assert await progress_service.get_cached_translation("house", "spanish") is None
    assert await progress_service.get_cached_translation("water", "spanish") == "agua"
    await store.close()


@pytest.mark.asyncio
async def test_reset_keeps_daily_usage(progress_service: ProgressService, store: PersistentStore) -> None:
    """Test that a reset forgets learning data but not today's usage."""
    await progress_service.record_interaction("house", "spanish", Interaction.HOVER, NOW)
    await progress_service.cache_translation("house", "spanish", "casa", NOW)
    store.set(DAILY_USAGE, {"date": "2024-03-01", "wordsTranslated": 40})
    await store.force_flush()

    assert await progress_service.reset() is True

    assert await store.get(WORD_PROGRESS) is None
    assert await store.get(TRANSLATION_CACHE) is None
    assert (await store.get(DAILY_USAGE))["wordsTranslated"] == 40

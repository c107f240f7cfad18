"""Tests for spaced repetition scheduling."""
from datetime import UTC, datetime, timedelta

import pytest

from fluentcore.models.command_models import Interaction
from fluentcore.models.progress_models import WordProgress
from fluentcore.services.srs_service import SpacedRepetitionScheduler, round_half_up

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def scheduler() -> SpacedRepetitionScheduler:
    """Create a scheduler with the default parameters."""
    return SpacedRepetitionScheduler()


@pytest.fixture
def house() -> WordProgress:
    """Create the record of a word seen for the first time."""
    return WordProgress.new("house", "spanish", NOW)


def test_interaction_quality(scheduler: SpacedRepetitionScheduler) -> None:
    """Test quality ratings of the interaction kinds."""
    assert scheduler.score_interaction(None, Interaction.HOVER) == 3
    assert scheduler.score_interaction(None, Interaction.CONTEXT) == 3
    assert scheduler.score_interaction(None, Interaction.PRONUNCIATION) == 4
    assert scheduler.score_interaction(None, Interaction.IGNORED) == 5
    assert scheduler.score_interaction(None, "clicked") == 5
    assert scheduler.score_interaction(None, "wiggle") == 4


def test_review_progression(scheduler: SpacedRepetitionScheduler, house: WordProgress) -> None:
    """Test the first three reviews of a new word."""
    first = scheduler.record_interaction(house, Interaction.HOVER, NOW)
    assert first.interval == 1
    assert first.repetitions == 1
    assert first.total_seen == 1
    assert first.correct_count == 1
    assert first.ease_factor == pytest.approx(2.36)
    assert first.mastery == 47
    assert first.next_review == NOW + timedelta(days=1)
    assert first.interactions.hover == 1

    later = NOW + timedelta(days=1)
    second = scheduler.record_interaction(first, Interaction.CLICKED, later)
    assert second.interval == 3
    assert second.repetitions == 2
    assert second.ease_factor == pytest.approx(2.46)
    assert second.mastery == 55

    third = scheduler.record_interaction(second, Interaction.HOVER, later + timedelta(days=3))
    assert third.ease_factor == pytest.approx(2.32)
    assert third.interval == round_half_up(3 * third.ease_factor) == 7
    assert third.repetitions == 3
    assert third.interactions.hover == 2


def test_lapse_resets_cadence(scheduler: SpacedRepetitionScheduler, house: WordProgress) -> None:
    """Test that a failing grade restarts the word."""
    record = house
    for day in range(3):
        record = scheduler.record_interaction(record, Interaction.IGNORED, NOW + timedelta(days=day))
    assert record.repetitions == 3

    lapsed = scheduler.calculate_next_review(record, 2, NOW + timedelta(days=10))

    assert lapsed.repetitions == 0
    assert lapsed.interval == 1
    assert lapsed.total_seen == record.total_seen + 1
    assert lapsed.correct_count == record.correct_count
    assert lapsed.ease_factor == pytest.approx(record.ease_factor - 0.32)


def test_ease_factor_floor(scheduler: SpacedRepetitionScheduler, house: WordProgress) -> None:
    """Test that repeated blackouts never push the ease factor below 1.3."""
    record = house
    for _ in range(10):
        record = scheduler.calculate_next_review(record, 0, NOW)
    assert record.ease_factor == 1.3


def test_ease_factor_ceiling_is_optional() -> None:
    """Test the configurable ease factor ceiling."""
    capped = SpacedRepetitionScheduler(max_ease_factor=2.6)
    uncapped = SpacedRepetitionScheduler()

    assert capped.calculate_ease_factor(2.55, 5) == 2.6
    assert uncapped.calculate_ease_factor(2.55, 5) == pytest.approx(2.65)


def test_calculate_next_review_does_not_mutate(scheduler: SpacedRepetitionScheduler, house: WordProgress) -> None:
    """Test that scheduling returns a new record."""
    updated = scheduler.record_interaction(house, Interaction.PRONUNCIATION, NOW)

    assert house.total_seen == 0
    assert house.interactions.pronunciation == 0
    assert updated.interactions.pronunciation == 1


def test_quality_out_of_range(scheduler: SpacedRepetitionScheduler, house: WordProgress) -> None:
    """Test that grades outside 0..5 are rejected."""
    with pytest.raises(ValueError):
        scheduler.calculate_next_review(house, 6, NOW)
    with pytest.raises(ValueError):
        scheduler.calculate_next_review(house, -1, NOW)


def test_mastery_bounds(scheduler: SpacedRepetitionScheduler) -> None:
    """Test mastery limits."""
    unseen = WordProgress(word="house", language="spanish")
    assert scheduler.calculate_mastery(unseen) == 0

    veteran = WordProgress(
        word="water",
        language="spanish",
        interval=400,
        repetitions=40,
        total_seen=40,
        correct_count=40,
    )
    assert scheduler.calculate_mastery(veteran) == 100


def test_words_for_review_most_overdue_first(scheduler: SpacedRepetitionScheduler) -> None:
    """Test ordering and limits of due words."""
    records = {
        "house": WordProgress(word="house", language="spanish", next_review=NOW - timedelta(days=1)),
        "water": WordProgress(word="water", language="spanish", next_review=NOW - timedelta(days=5)),
        "food": WordProgress(word="food", language="spanish", next_review=NOW + timedelta(days=2)),
        "time": WordProgress(word="time", language="spanish", next_review=NOW),
    }

    due = scheduler.get_words_for_review(records, now=NOW)
    assert [record.word for record in due] == ["water", "house", "time"]

    limited = scheduler.get_words_for_review(records, limit=1, now=NOW)
    assert [record.word for record in limited] == ["water"]

    assert scheduler.get_words_for_review(records, limit=0, now=NOW) == []


def test_get_statistics(scheduler: SpacedRepetitionScheduler) -> None:
    """Test learning statistics."""
    records = {
        "house": WordProgress(word="house", language="spanish", mastery=90, last_seen=NOW,
                              next_review=NOW + timedelta(days=30)),
        "water": WordProgress(word="water", language="spanish", mastery=40,
                              last_seen=NOW - timedelta(days=3), next_review=NOW - timedelta(days=1)),
        "food": WordProgress(word="food", language="spanish", mastery=0),
    }

    stats = scheduler.get_statistics(records, NOW)

    assert stats.total_words == 3
    assert stats.mastered_words == 1
    assert stats.words_in_progress == 1
    assert stats.words_due_for_review == 1
    assert stats.average_mastery == pytest.approx(130 / 3)
    assert stats.today_reviews == 1


def test_get_statistics_empty(scheduler: SpacedRepetitionScheduler) -> None:
    """Test statistics without any records."""
    stats = scheduler.get_statistics({}, NOW)
    assert stats.total_words == 0
    assert stats.average_mastery == 0.0

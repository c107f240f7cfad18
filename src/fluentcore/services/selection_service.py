"""Word selection for a page."""
import logging
import random
import re
from collections import Counter
from dataclasses import replace
from datetime import UTC, datetime
from typing import Dict, List, Mapping, Optional, Sequence

from fluentcore.config import settings
from fluentcore.models.command_models import Candidates
from fluentcore.models.progress_models import WordProgress
from fluentcore.monitoring import words_selected
from fluentcore.services.srs_service import SpacedRepetitionScheduler

logger = logging.getLogger(__name__)

WORD_PATTERN = re.compile(r"[^\W\d_]+(?:'[^\W\d_]+)*")


class WordSelectionPolicy:
    """Turns a page's candidate words into a bounded learning set."""

    def __init__(
        self,
        scheduler: Optional[SpacedRepetitionScheduler] = None,
        rng: Optional[random.Random] = None,
        common_words: Optional[Sequence[str]] = None,
        stop_words: Optional[Sequence[str]] = None,
        min_word_length: Optional[int] = None,
    ):
        self.scheduler = scheduler or SpacedRepetitionScheduler()
        self.rng = rng or random.Random()
        self.common_words = frozenset(common_words if common_words is not None else settings.learning.common_words)
        self.stop_words = frozenset(stop_words if stop_words is not None else settings.learning.stop_words)
        self.min_word_length = min_word_length or settings.learning.min_word_length

    def select_words_for_page(
        self,
        existing_records: Optional[Mapping[str, WordProgress]],
        candidates: Candidates,
        budget: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[str]:
        """Choose at most ``budget`` words to replace on a page.

        ``existing_records`` maps words of the page language to their
        progress; pass None when no learning state is available to fall
        back to frequency scoring. ``candidates`` is either a list of
        words (repeats count as occurrences) or a word-to-count mapping.
        """
        budget = settings.learning.words_per_page if budget is None else budget
        if budget <= 0:
            return []

        counts = self.count_candidates(candidates)
        if existing_records is None:
            selected = self.select_by_frequency(counts, budget)
            words_selected.labels(mode="frequency").inc(len(selected))
            return selected

        now = now or datetime.now(UTC)
        records = self._normalize_records(existing_records)

        due = {word: records[word] for word in counts if word in records and records[word].is_due(now)}
        new_words = [word for word in counts if word not in records]

        # Leave room for at least one new word when the page has one
        review_cap = budget - 1 if new_words else budget
        ranked = self.scheduler.get_words_for_review(due, limit=min(len(due), review_cap), now=now)
        review_words = [record.word for record in ranked]

        fresh = self.get_new_words(new_words, budget - len(review_words))
        selected = review_words + fresh

        logger.debug(
            "Selected %d review and %d new words from %d candidates",
            len(review_words),
            len(fresh),
            len(counts),
        )
        words_selected.labels(mode="review").inc(len(review_words))
        words_selected.labels(mode="new").inc(len(fresh))
        return selected

    def get_new_words(self, new_words: Sequence[str], limit: int) -> List[str]:
        """Shuffle unseen words and keep ``limit`` of them."""
        if limit <= 0:
            return []
        shuffled = list(new_words)
        self.rng.shuffle(shuffled)  # Fisher-Yates
        return shuffled[:limit]

    def select_by_frequency(self, counts: Mapping[str, int], budget: int) -> List[str]:
        """Pick the best-scoring words when no learning state is available."""
        scored = sorted(
            counts.items(),
            key=lambda item: self.score_word(item[0], item[1]),
            reverse=True,
        )
        return [word for word, _ in scored[:budget]]

    def score_word(self, word: str, count: int) -> int:
        """Score a word's learning value from its page frequency and length."""
        score = 0

        # Two or three sightings give ideal repetition exposure
        if count in (2, 3):
            score += 3
        elif count == 4:
            score += 2

        # Prefer medium-length words
        if 5 <= len(word) <= 8:
            score += 2
        elif 8 < len(word) <= 12:
            score += 1

        if word in self.common_words:
            score += 2

        return score

    def is_valid_word(self, word: str) -> bool:
        """Check whether a raw token is worth replacing."""
        if len(word) < self.min_word_length:
            return False
        if word.casefold() in self.stop_words:
            return False
        # Skip short proper nouns
        if word[0].isupper() and (len(word) == 1 or word[1:].islower()) and len(word) < 6:
            return False
        return True

    def extract_candidates(self, text: str) -> Dict[str, int]:
        """Count the valid candidate words of a text, in first-seen order."""
        counts: Dict[str, int] = {}
        for match in WORD_PATTERN.finditer(text):
            token = match.group(0)
            if not self.is_valid_word(token):
                continue
            word = token.casefold()
            counts[word] = counts.get(word, 0) + 1
        return counts

    @staticmethod
    def count_candidates(candidates: Candidates) -> Dict[str, int]:
        """Case-fold candidates into a word-to-count mapping, keeping first-seen order."""
        counts: Dict[str, int] = {}
        if isinstance(candidates, Mapping):
            for word, count in candidates.items():
                word = word.casefold()
                counts[word] = counts.get(word, 0) + int(count)
        else:
            for word, count in Counter(word.casefold() for word in candidates).items():
                counts[word] = count
        return counts

    @staticmethod
    def _normalize_records(records: Mapping[str, WordProgress]) -> Dict[str, WordProgress]:
        normalized = {}
        for word, record in records.items():
            word = word.casefold()
            normalized[word] = record if record.word == word else replace(record, word=word)
        return normalized

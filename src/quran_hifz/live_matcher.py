"""
Live transcript matching while a recitation is being recorded.

Interim speech-recognition text only ever reveals words; correctness is decided
later by the recitation verdict.
"""

import logging
from typing import List

from .normalization import normalize_arabic, tokenize
from .progress import WordProgressTracker, WordStatus

logger = logging.getLogger(__name__)

# Words longer than this may match by containment, tolerating recognizer truncation
MIN_FUZZY_LENGTH = 3


def words_match(candidate: str, expected: str) -> bool:
    """Compare two normalized words: exact, or containment when both words are long."""
    if not candidate or not expected:
        return False
    if candidate == expected:
        return True
    if len(expected) <= MIN_FUZZY_LENGTH or len(candidate) <= MIN_FUZZY_LENGTH:
        return False
    return expected in candidate or candidate in expected


class LiveTranscriptMatcher:
    """Reveals words of the current ayah as they show up in interim transcripts."""

    def __init__(self, tracker: WordProgressTracker):
        self.tracker = tracker

    def apply(self, transcript: str) -> List[int]:
        """
        Reveal every hidden word of the current ayah found in the transcript.

        Matching is positionally unordered, so a later word may be revealed
        before an earlier one. Words that are already revealed or graded are
        never touched.

        Args:
            transcript: Latest interim transcript; supersedes any earlier one

        Returns:
            Indices of the words revealed by this call
        """
        candidates = tokenize(normalize_arabic(transcript))
        if not candidates:
            return []

        ayah_index = self.tracker.current_index
        revealed = []
        for word in self.tracker.current_words():
            if word.status != WordStatus.HIDDEN:
                continue
            if any(words_match(candidate, word.normalized) for candidate in candidates):
                self.tracker.set_word_status(ayah_index, word.index, WordStatus.REVEALED)
                revealed.append(word.index)

        if revealed:
            logger.debug(f"Live transcript revealed words {revealed} of ayah index {ayah_index}")
        return revealed

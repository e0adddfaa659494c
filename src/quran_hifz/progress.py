"""
Per-session word progress for the memorization trainer.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

from .api_clients import Ayah
from .normalization import normalize_arabic, tokenize

logger = logging.getLogger(__name__)


class WordStatus(str, Enum):
    """Display state of a single word."""

    HIDDEN = "hidden"
    REVEALED = "revealed"
    CORRECT = "correct"
    WRONG = "wrong"


@dataclass
class Word:
    """A word of the ayah being memorized."""
    index: int
    text: str
    normalized: str
    status: WordStatus = WordStatus.HIDDEN


@dataclass
class AyahProgress:
    """Word-level progress for one ayah of the session."""
    ayah: Ayah
    words: List[Word] = field(default_factory=list)

    @classmethod
    def from_ayah(cls, ayah: Ayah) -> "AyahProgress":
        words = [
            Word(index=i, text=token, normalized=normalize_arabic(token))
            for i, token in enumerate(tokenize(ayah.text))
        ]
        return cls(ayah=ayah, words=words)

    @property
    def is_complete(self) -> bool:
        return bool(self.words) and all(word.status == WordStatus.CORRECT for word in self.words)

    @property
    def has_mistakes(self) -> bool:
        return any(word.status == WordStatus.WRONG for word in self.words)


class WordProgressTracker:
    """
    Owns the AyahProgress list of a session and the index of the active ayah.

    Status updates addressed outside the current bounds are ignored, since
    asynchronous results can arrive after the user has navigated away or
    reset the session.
    """

    def __init__(self):
        self.ayahs: List[AyahProgress] = []
        self.current_index = 0

    def __len__(self) -> int:
        return len(self.ayahs)

    def initialize(self, ayahs: Sequence[Ayah], range_start: int, range_end: int) -> int:
        """
        Build one AyahProgress per ayah whose position in the surah lies in
        ``[range_start, range_end]``, every word hidden.

        Returns:
            Number of ayahs in the session (0 for an empty or inverted range)
        """
        self.clear()
        if range_start > range_end:
            logger.debug(f"Inverted ayah range {range_start}-{range_end}")
            return 0

        self.ayahs = [
            AyahProgress.from_ayah(ayah)
            for ayah in ayahs
            if range_start <= ayah.number_in_surah <= range_end
        ]
        logger.debug(f"Initialized {len(self.ayahs)} ayahs for range {range_start}-{range_end}")
        return len(self.ayahs)

    def clear(self) -> None:
        self.ayahs = []
        self.current_index = 0

    def get(self, ayah_index: int) -> Optional[AyahProgress]:
        if 0 <= ayah_index < len(self.ayahs):
            return self.ayahs[ayah_index]
        return None

    def current(self) -> Optional[AyahProgress]:
        return self.get(self.current_index)

    def current_words(self) -> List[Word]:
        """Words of the ayah at the current index (empty when there is none)."""
        progress = self.current()
        return progress.words if progress else []

    def set_word_status(self, ayah_index: int, word_index: int, status: WordStatus) -> bool:
        """Set a word's status. Returns False, changing nothing, when either index is out of bounds."""
        progress = self.get(ayah_index)
        if progress is None or not 0 <= word_index < len(progress.words):
            logger.debug(f"Ignoring status update for ayah {ayah_index} word {word_index}")
            return False
        progress.words[word_index].status = WordStatus(status)
        return True

    def is_ayah_complete(self, ayah_index: int) -> bool:
        progress = self.get(ayah_index)
        return progress.is_complete if progress else False

    def reveal_all(self, ayah_index: int, force: bool = False) -> int:
        """
        Reveal the words of an ayah.

        Only hidden words change unless ``force`` is set, in which case every
        word, graded or not, becomes revealed.

        Returns:
            Number of words whose status changed
        """
        progress = self.get(ayah_index)
        if progress is None:
            return 0
        changed = 0
        for word in progress.words:
            if word.status == WordStatus.REVEALED:
                continue
            if force or word.status == WordStatus.HIDDEN:
                word.status = WordStatus.REVEALED
                changed += 1
        return changed

    def counts(self) -> Dict[WordStatus, int]:
        """Number of words in each status across the whole session."""
        totals = {status: 0 for status in WordStatus}
        for progress in self.ayahs:
            for word in progress.words:
                totals[word.status] += 1
        return totals

"""
Reconciliation of the external grader's per-word verdict with the current ayah.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Literal, Sequence

from pydantic import BaseModel, Field

from .progress import WordProgressTracker, WordStatus

logger = logging.getLogger(__name__)


class WordVerdict(BaseModel):
    """Correctness judgment for one source word."""
    word: str = Field(..., description="Word as echoed back by the grader")
    status: Literal["correct", "wrong"]


class GradingResponse(BaseModel):
    """Validated shape of the grader's JSON answer."""
    results: List[WordVerdict]


@dataclass
class VerdictResult:
    """What applying a verdict did to the ayah."""
    ayah_index: int
    correct: List[int] = field(default_factory=list)
    wrong: List[int] = field(default_factory=list)
    promoted: List[int] = field(default_factory=list)
    ignored_verdicts: int = 0
    completed: bool = False


class RecitationVerdictApplier:
    """Applies verdicts to the ayah at the tracker's current index."""

    def __init__(self, tracker: WordProgressTracker):
        self.tracker = tracker

    def apply(self, verdicts: Sequence[WordVerdict]) -> VerdictResult:
        """
        Finalize word states from a verdict list aligned by position.

        A word with no verdict at its position keeps its state, except that a
        word already revealed by the live transcript is promoted to correct.
        Verdicts past the last word are ignored.

        Returns:
            VerdictResult; ``completed`` is True only if this call made the
            ayah complete.
        """
        ayah_index = self.tracker.current_index
        result = VerdictResult(ayah_index=ayah_index)
        words = self.tracker.current_words()
        if not words:
            return result

        was_complete = self.tracker.is_ayah_complete(ayah_index)

        for i, word in enumerate(words):
            if i < len(verdicts):
                if verdicts[i].status == "wrong":
                    self.tracker.set_word_status(ayah_index, i, WordStatus.WRONG)
                    result.wrong.append(i)
                else:
                    self.tracker.set_word_status(ayah_index, i, WordStatus.CORRECT)
                    result.correct.append(i)
            elif word.status == WordStatus.REVEALED:
                self.tracker.set_word_status(ayah_index, i, WordStatus.CORRECT)
                result.promoted.append(i)

        if len(verdicts) != len(words):
            logger.warning(
                f"Verdict length {len(verdicts)} does not match {len(words)} words "
                f"for ayah index {ayah_index}"
            )
            result.ignored_verdicts = max(0, len(verdicts) - len(words))

        result.completed = not was_complete and self.tracker.is_ayah_complete(ayah_index)
        logger.info(
            f"Verdict applied to ayah index {ayah_index}: "
            f"{len(result.correct) + len(result.promoted)} correct, {len(result.wrong)} wrong"
        )
        return result

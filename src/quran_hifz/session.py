"""
Hifz session sequencing: lifecycle, navigation, auto-advance and the guard
against grading results that arrive after the user has moved on.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence

from .api_clients import Ayah, Surah
from .config import get_settings
from .exceptions import SessionStateError
from .grading import GradingOk, GradingOutcome
from .live_matcher import LiveTranscriptMatcher
from .progress import AyahProgress, Word, WordProgressTracker, WordStatus
from .verdict import RecitationVerdictApplier, VerdictResult

Scheduler = Callable[[float, Callable[[], None]], None]


def run_immediately(delay: float, callback: Callable[[], None]) -> None:
    """Scheduler that ignores the delay."""
    callback()


class SessionState(str, Enum):
    SETUP = "setup"
    ACTIVE = "active"
    SUMMARY = "summary"


@dataclass
class GradingToken:
    """Identifies one in-flight grading request, or one pending auto-advance."""
    ayah_index: int
    generation: int
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class SessionSummary:
    total_ayahs: int
    completed_ayahs: int
    ayahs_with_mistakes: int
    correct_words: int
    wrong_words: int
    revealed_words: int
    hidden_words: int


class HifzSession:
    """
    State machine for one memorization run: setup -> active -> summary.

    Summary is only left through new_session(), which returns to setup with
    all progress cleared. There is no resuming in place.
    """

    def __init__(self, advance_delay: Optional[float] = None, scheduler: Optional[Scheduler] = None):
        self.tracker = WordProgressTracker()
        self.matcher = LiveTranscriptMatcher(self.tracker)
        self.applier = RecitationVerdictApplier(self.tracker)
        self.state = SessionState.SETUP
        self.surah: Optional[Surah] = None
        self.advance_delay = get_settings().auto_advance_delay if advance_delay is None else advance_delay
        self.scheduler = scheduler or run_immediately
        self.logger = logging.getLogger(__name__)

        self._generation = 0
        self._in_flight: Optional[GradingToken] = None
        self._pending_advance: Optional[GradingToken] = None

    # --- Properties ---

    @property
    def current_index(self) -> int:
        return self.tracker.current_index

    @property
    def ayahs(self) -> List[AyahProgress]:
        return self.tracker.ayahs

    @property
    def current_ayah(self) -> Optional[AyahProgress]:
        return self.tracker.current() if self.state == SessionState.ACTIVE else None

    def current_words(self) -> List[Word]:
        return self.tracker.current_words() if self.state == SessionState.ACTIVE else []

    @property
    def grading_in_flight(self) -> bool:
        return self._in_flight is not None and not self._in_flight.cancelled

    # --- Lifecycle ---

    def start(self, ayahs: Sequence[Ayah], range_start: int, range_end: int, surah: Optional[Surah] = None) -> bool:
        """
        Start memorizing ayahs ``range_start``..``range_end`` (positions in the surah).

        Returns:
            True if the session became active; False, staying in setup, for an
            empty or inverted range.

        Raises:
            SessionStateError: If the session is not in setup
        """
        if self.state != SessionState.SETUP:
            raise SessionStateError("Session already started", state=self.state.value)

        if self.tracker.initialize(ayahs, range_start, range_end) == 0:
            self.logger.info(f"Empty ayah range {range_start}-{range_end}; staying in setup")
            return False

        self.surah = surah
        self._generation += 1
        self.state = SessionState.ACTIVE
        self.logger.info(f"Hifz session started with {len(self.tracker)} ayahs ({range_start}-{range_end})")
        return True

    def end_session(self) -> SessionSummary:
        """Jump straight to the summary. Ending an already finished session just returns its summary."""
        if self.state == SessionState.SETUP:
            raise SessionStateError("Session has not started", state=self.state.value)
        if self.state == SessionState.ACTIVE:
            self._finish()
        return self.summary()

    def new_session(self) -> None:
        """Discard all progress and return to setup."""
        self._cancel_pending()
        self.tracker.clear()
        self.surah = None
        self._generation += 1
        self.state = SessionState.SETUP
        self.logger.info("Hifz session reset")

    def summary(self) -> SessionSummary:
        counts = self.tracker.counts()
        return SessionSummary(
            total_ayahs=len(self.tracker),
            completed_ayahs=sum(1 for progress in self.tracker.ayahs if progress.is_complete),
            ayahs_with_mistakes=sum(1 for progress in self.tracker.ayahs if progress.has_mistakes),
            correct_words=counts[WordStatus.CORRECT],
            wrong_words=counts[WordStatus.WRONG],
            revealed_words=counts[WordStatus.REVEALED],
            hidden_words=counts[WordStatus.HIDDEN],
        )

    # --- Navigation and manual actions ---

    def next_ayah(self) -> bool:
        return self._go_to(self.current_index + 1)

    def previous_ayah(self) -> bool:
        return self._go_to(self.current_index - 1)

    def reveal_all(self) -> int:
        """Reveal the hidden words of the current ayah. Graded words keep their status."""
        if self.state != SessionState.ACTIVE:
            return 0
        return self.tracker.reveal_all(self.current_index)

    def apply_transcript(self, transcript: str) -> List[int]:
        """Feed an interim transcript to the live matcher."""
        if self.state != SessionState.ACTIVE:
            return []
        return self.matcher.apply(transcript)

    # --- Grading ---

    def begin_grading(self) -> GradingToken:
        """
        Issue the token for a new grading request on the current ayah.

        Any earlier request still in flight is cancelled; its result will be
        discarded when it arrives.
        """
        if self.state != SessionState.ACTIVE:
            raise SessionStateError("Cannot grade outside an active session", state=self.state.value)
        if self._in_flight is not None:
            self._in_flight.cancel()
        self._in_flight = GradingToken(ayah_index=self.current_index, generation=self._generation)
        return self._in_flight

    def is_stale(self, token: GradingToken) -> bool:
        return (
            token.cancelled
            or token.generation != self._generation
            or token.ayah_index != self.current_index
            or self.state != SessionState.ACTIVE
        )

    def complete_grading(self, token: GradingToken, outcome: GradingOutcome) -> Optional[VerdictResult]:
        """
        Apply a grading outcome for the request identified by ``token``.

        Stale outcomes are dropped and None is returned. A successful outcome
        goes through the verdict applier and may schedule the auto-advance; any
        failure reveals the whole ayah instead.
        """
        if self.is_stale(token):
            self.logger.debug(f"Discarding stale grading result for ayah index {token.ayah_index}")
            return None
        self._in_flight = None

        if isinstance(outcome, GradingOk):
            result = self.applier.apply(outcome.results)
            if result.completed:
                self._schedule_advance()
            return result

        self.logger.warning(f"Grading failed ({outcome}); revealing ayah index {self.current_index}")
        self.tracker.reveal_all(self.current_index, force=True)
        return VerdictResult(ayah_index=self.current_index)

    # --- Internals ---

    def _go_to(self, index: int) -> bool:
        if self.state != SessionState.ACTIVE:
            return False
        index = max(0, min(index, len(self.tracker) - 1))
        if index == self.current_index:
            return False
        self._cancel_pending()
        self.tracker.current_index = index
        self.logger.debug(f"Moved to ayah index {index}")
        return True

    def _cancel_pending(self) -> None:
        for token in (self._in_flight, self._pending_advance):
            if token is not None:
                token.cancel()
        self._in_flight = None
        self._pending_advance = None

    def _schedule_advance(self) -> None:
        ticket = GradingToken(ayah_index=self.current_index, generation=self._generation)
        self._pending_advance = ticket
        self.scheduler(self.advance_delay, lambda: self._auto_advance(ticket))

    def _auto_advance(self, ticket: GradingToken) -> None:
        if ticket is not self._pending_advance or self.is_stale(ticket):
            return
        self._pending_advance = None
        # A regrade during the display delay may have marked a word wrong
        if not self.tracker.is_ayah_complete(ticket.ayah_index):
            self.logger.info(f"Ayah index {ticket.ayah_index} no longer complete; staying")
            return
        if self.current_index < len(self.tracker) - 1:
            self.tracker.current_index += 1
            self.logger.info(f"Ayah complete; advanced to ayah index {self.current_index}")
        else:
            self.logger.info("Last ayah complete")
            self._finish()

    def _finish(self) -> None:
        self._cancel_pending()
        self.state = SessionState.SUMMARY
        summary = self.summary()
        self.logger.info(
            f"Hifz session finished: {summary.completed_ayahs}/{summary.total_ayahs} ayahs complete"
        )

"""
Analysis polling state machine.

Polls the results store on a fixed interval until the expected segments
have arrived (SATISFIED), partial results have stalled for the grace window
(FORCED_COMPLETE), or the hard ceiling passes with nothing usable
(TIMED_OUT).
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ..config import PollingPolicy
from .clock import Clock, MonotonicClock, poll_until
from .errors import PollingInProgressError, ResultsNotReady
from .events import PollingProgressEvent, SessionEventBus
from .models import AnalysisSegmentResult
from .schemas import PollingState, normalize_segment_record
from .services import AnalysisResultsStore

logger = logging.getLogger("polling")

MSG_WAITING = "Waiting for video analysis to start..."
MSG_NETWORK_ERROR = "Network error. Retrying..."
MSG_COMPLETE = "Analysis complete!"
MSG_TIMED_OUT = "Analysis is taking longer than expected. Please check the feedback page later."


def progress_message(qualifying: int, expected: int) -> str:
    return f"Analysis in progress: {qualifying} of {expected} segments analyzed..."


@dataclass
class PollingOutcome:
    """Terminal result of one polling run."""
    state: PollingState
    segments: List[AnalysisSegmentResult] = field(default_factory=list)
    progress: str = ""
    attempts: int = 0
    elapsed_s: float = 0.0

    @property
    def has_results(self) -> bool:
        return self.state.has_results and bool(self.segments)


class AnalysisPoller:
    """Polls one session's analysis results under a PollingPolicy."""

    def __init__(self,
                 session_id: str,
                 results_store: AnalysisResultsStore,
                 policy: Optional[PollingPolicy] = None,
                 clock: Optional[Clock] = None,
                 event_bus: Optional[SessionEventBus] = None,
                 on_progress: Optional[Callable[[str], None]] = None):
        self.session_id = session_id
        self.results_store = results_store
        self.policy = policy or PollingPolicy()
        self.clock = clock or MonotonicClock()
        self.event_bus = event_bus or SessionEventBus()
        self.on_progress = on_progress

        self.state = PollingState.IDLE
        self.progress = ""
        self.expected_segments = 1
        self.received_segments = 0
        self.qualifying: List[AnalysisSegmentResult] = []
        self.started_at: Optional[float] = None
        self.last_progress_at: Optional[float] = None

    def _set_progress(self, message: str) -> None:
        if message == self.progress:
            return
        self.progress = message
        logger.info("Polling progress: %s", message)
        if self.on_progress:
            self.on_progress(message)
        self.event_bus.emit(PollingProgressEvent(
            self.session_id, time.time(), self.state.value, message,
            len(self.qualifying), self.expected_segments,
        ))

    def _finish(self, state: PollingState, message: str) -> None:
        self.state = state
        self._set_progress(message)
        logger.info("Polling finished: %s (%d of %d segments usable)",
                    state.value, len(self.qualifying), self.expected_segments)

    def begin(self, expected_segments: int = 1) -> None:
        """
        Enter POLLING.

        Raises:
            PollingInProgressError: A polling run is already active
        """
        if self.state is PollingState.POLLING:
            raise PollingInProgressError(f"Already polling results for {self.session_id}")
        self.state = PollingState.POLLING
        self.expected_segments = max(1, expected_segments)
        self.received_segments = 0
        self.qualifying = []
        self.started_at = self.clock.now()
        self.last_progress_at = self.started_at
        self.progress = ""
        self._set_progress(MSG_WAITING)

    async def _fetch(self) -> Optional[list]:
        try:
            rows = await asyncio.to_thread(self.results_store.list_results, self.session_id)
        except ResultsNotReady:
            return []
        except Exception as e:
            logger.warning("Error fetching analysis results: %s", e)
            self._set_progress(MSG_NETWORK_ERROR)
            return None
        return list(rows or [])

    async def poll_once(self) -> PollingState:
        """One fetch-and-evaluate step. Only valid while POLLING."""
        if self.state is not PollingState.POLLING:
            return self.state

        rows = await self._fetch()
        now = self.clock.now()
        if rows is None:
            # Transient error: timers keep running
            return self.state

        records = [r for r in (normalize_segment_record(row, self.session_id) for row in rows) if r is not None]
        invalid = len(rows) - len(records)
        qualifying = [r for r in records if r.has_results]

        self.received_segments = len(rows)
        if len(qualifying) != len(self.qualifying):
            self.last_progress_at = now
        self.qualifying = qualifying
        logger.debug("Poll: %d received, %d qualifying, %d malformed, %d expected",
                     len(rows), len(qualifying), invalid, self.expected_segments)

        if rows and len(rows) >= self.expected_segments and len(qualifying) == len(rows):
            self._finish(PollingState.SATISFIED, MSG_COMPLETE)
        elif qualifying and now - self.last_progress_at >= self.policy.grace_window_s:
            self._finish(
                PollingState.FORCED_COMPLETE,
                f"Analysis complete with partial results ({len(qualifying)} of "
                f"{self.expected_segments} segments).",
            )
        elif qualifying or rows:
            self._set_progress(progress_message(len(qualifying), self.expected_segments))
        return self.state

    async def run(self, expected_segments: int = 1) -> PollingOutcome:
        """
        Poll until a terminal state.

        Raises:
            PollingInProgressError: A polling run is already active
        """
        self.begin(expected_segments)
        logger.info("Polling analysis results for %s every %.0fs (expected %d segment(s))",
                    self.session_id, self.policy.interval_s, self.expected_segments)

        async def check():
            state = await self.poll_once()
            return state if state.is_terminal else None

        try:
            result = await poll_until(check, self.clock, self.policy.interval_s, self.policy.hard_timeout_s)
        except BaseException:
            # Leave the machine re-enterable if the caller cancels us
            if self.state is PollingState.POLLING:
                self.state = PollingState.IDLE
            raise

        if result.timed_out:
            if self.qualifying:
                self._finish(
                    PollingState.FORCED_COMPLETE,
                    f"Analysis complete with partial results ({len(self.qualifying)} of "
                    f"{self.expected_segments} segments).",
                )
            else:
                self._finish(PollingState.TIMED_OUT, MSG_TIMED_OUT)

        return PollingOutcome(
            state=self.state,
            segments=list(self.qualifying) if self.state.has_results else [],
            progress=self.progress,
            attempts=result.attempts,
            elapsed_s=result.elapsed_s,
        )

"""
Session controller: wires capture, conversation, dispatch, polling and
aggregation into one interview session.
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from ..config import Config, PollingPolicy
from .aggregation import aggregate
from .capture import MediaCaptureController
from .clock import Clock, MonotonicClock
from .conversation import ConversationEngine, SessionTimer
from .dispatch import AnalysisDispatcher, DispatchResult
from .errors import DeviceAccessError, RecordingError, UploadError
from .events import (
    AnalysisAggregatedEvent, ErrorOccurredEvent, EventLogger, RecordingFinalizedEvent,
    SessionCompletedEvent, SessionEventBus, SessionMetrics, SessionStartedEvent,
)
from .frames import FrameSampler
from .models import ConversationTurn, InterviewSession, MediaBlob, Role, SessionOutcome, SessionStatus
from .polling import AnalysisPoller
from .questions import FallbackQuestions
from .schemas import TurnState
from .services import Collaborators

logger = logging.getLogger("session_controller")

CompletionHandler = Callable[[SessionOutcome], None]
AnswerSource = Callable[["SessionController"], Awaitable[Optional[bool]]]
SegmentDispatch = Tuple[int, Optional[str], Optional[DispatchResult]]


class SessionController:
    """
    Runs one interview session end to end.

    The controller exclusively owns the media handle and recorder. Every
    exit path releases the devices, and every terminal outcome (completed,
    degraded or failed) is handed to ``on_complete`` exactly once. Once
    started, the session timer ends the session on its own when it runs out.
    """

    def __init__(self,
                 session: InterviewSession,
                 collaborators: Collaborators,
                 config: Optional[Config] = None,
                 clock: Optional[Clock] = None,
                 event_bus: Optional[SessionEventBus] = None,
                 on_complete: Optional[CompletionHandler] = None,
                 on_progress: Optional[Callable[[str], None]] = None,
                 fallbacks: Optional[FallbackQuestions] = None):
        self.session = session
        self.collaborators = collaborators
        self.config = config
        self.clock = clock or MonotonicClock()
        self.on_complete = on_complete
        self.on_progress = on_progress

        self.event_bus = event_bus or SessionEventBus()
        self.event_logger = EventLogger()
        self.metrics = SessionMetrics()
        self.event_bus.subscribe_all(self.event_logger.handle_event)
        self.event_bus.subscribe_all(self.metrics.handle_event)

        polling = config.polling if config else PollingPolicy()
        self.analysis_max_attempts = config.analysis_max_attempts if config else 3

        self.capture = MediaCaptureController(collaborators.devices)
        self.engine: Optional[ConversationEngine] = None
        if session.is_conversational:
            engine_kwargs: Dict[str, Any] = {}
            if config:
                engine_kwargs["max_consecutive_failures"] = config.max_consecutive_turn_failures
            self.engine = ConversationEngine(
                session=session,
                capture=self.capture,
                question_generator=collaborators.question_generator,
                transcriber=collaborators.transcriber,
                synthesizer=collaborators.synthesizer,
                player=collaborators.player,
                clock=self.clock,
                event_bus=self.event_bus,
                fallbacks=fallbacks,
                **engine_kwargs,
            )
            self.timer = self.engine.timer
        else:
            self.timer = SessionTimer(session.duration_seconds, self.clock)

        # Segment-per-answer only applies when there are answers to cut
        self.segmented = session.segment_per_answer and self.engine is not None

        self.dispatcher = AnalysisDispatcher(
            session.session_id, collaborators.storage, collaborators.analysis_trigger,
            clock=self.clock, event_bus=self.event_bus,
        )
        self.poller = AnalysisPoller(
            session.session_id, collaborators.results_store, policy=polling,
            clock=self.clock, event_bus=self.event_bus, on_progress=self._set_progress,
        )

        self.frame_sampler: Optional[FrameSampler] = None
        frames_enabled = config.enable_frame_analysis if config else True
        if collaborators.frame_analyzer is not None and frames_enabled:
            sampler_kwargs: Dict[str, Any] = {}
            if config:
                sampler_kwargs["interval_s"] = config.frame_interval_s
            self.frame_sampler = FrameSampler(
                session.session_id, collaborators.frame_analyzer,
                clock=self.clock, event_bus=self.event_bus, **sampler_kwargs,
            )

        self.progress = ""
        self.outcome: Optional[SessionOutcome] = None
        self.final_blob: Optional[MediaBlob] = None
        self._end_task: Optional[asyncio.Task] = None
        self._end_signal: Optional[asyncio.Future] = None
        self._countdown: Optional[asyncio.Task] = None
        self._segment_tasks: List[asyncio.Task] = []
        self._background: Set[asyncio.Task] = set()
        self._completed = False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_progress(self, message: str) -> None:
        self.progress = message
        if self.on_progress:
            self.on_progress(message)

    def _emit_error(self, error: Exception, component: str) -> None:
        self.event_bus.emit(ErrorOccurredEvent(
            self.session.session_id, time.time(), type(error).__name__, str(error), component,
        ))

    @property
    def conversation(self) -> List[ConversationTurn]:
        return list(self.engine.transcript) if self.engine else []

    @property
    def turn_state(self) -> Optional[TurnState]:
        return self.engine.state if self.engine else None

    @property
    def ending(self) -> bool:
        """True once end_session() has been entered, by any path."""
        return self._end_task is not None

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Acquire devices, start the continuous recording and the timer, and
        ask the first question.

        Raises:
            DeviceAccessError: Devices unavailable. The session is completed
                as failed before the error is raised.
        """
        logger.info("Starting session %s (%s, %s, %.0fs, conversational=%s, segmented=%s)",
                    self.session.session_id, self.session.interview_type,
                    self.session.difficulty, self.session.duration_seconds,
                    self.session.is_conversational, self.segmented)
        self._end_signal = asyncio.get_running_loop().create_future()
        try:
            handle = self.capture.acquire_devices()
            self.capture.start_continuous_recording(handle)
        except (DeviceAccessError, RecordingError) as e:
            logger.error("Could not start session: %s", e)
            self._emit_error(e, "media_capture")
            self.capture.release_devices()
            self._complete(SessionOutcome(
                session_id=self.session.session_id,
                status=SessionStatus.FAILED,
                reason=f"device_error: {e}",
            ))
            raise

        self.event_bus.emit(SessionStartedEvent(
            self.session.session_id, time.time(), self.session.interview_type,
            self.session.duration_seconds, self.session.is_conversational,
        ))

        if self.frame_sampler is not None and self.capture.preview_attached:
            self.frame_sampler.start(handle)

        if self.engine:
            await self.engine.start()
        else:
            self.timer.start()
        self._countdown = asyncio.ensure_future(self._run_countdown())

    async def _run_countdown(self) -> None:
        """End the session when the timer runs out, whatever the turn state."""
        deadline = self.timer.deadline
        if deadline is None:
            return
        await self.clock.wait_until(deadline)
        self._countdown = None
        if self.ending:
            return
        logger.info("Time limit reached; ending session %s", self.session.session_id)
        if self.engine is not None:
            self.engine.request_end("time_limit")
        await self.end_session("time_limit")

    def _stop_countdown(self) -> None:
        task, self._countdown = self._countdown, None
        if task is not None and not task.done():
            task.cancel()

    def begin_answer(self) -> bool:
        if self.engine is None:
            return False
        return self.engine.begin_answer()

    async def end_answer(self) -> Optional[ConversationTurn]:
        if self.engine is None:
            return None
        turn = await self.engine.end_answer()
        if turn is not None and self.segmented:
            self._dispatch_answer_segment()
        return turn

    @property
    def should_end(self) -> bool:
        """True once the timer expired, the candidate ended, or the turn budget ran out."""
        if self.engine is not None:
            return self.engine.end_requested or self.engine.state.is_terminal
        return self.timer.expired

    async def end_session(self, reason: str = "candidate_ended") -> SessionOutcome:
        """
        Finish the session. Idempotent: concurrent and repeated calls share
        the first call's outcome.
        """
        if self._end_task is None and self.outcome is not None:
            # Already completed as failed during start()
            return self.outcome
        if self._end_task is None:
            self._end_task = asyncio.ensure_future(self._finish(reason))
            if self._end_signal is not None and not self._end_signal.done():
                self._end_signal.set_result(None)
        return await asyncio.shield(self._end_task)

    async def wait_ended(self) -> SessionOutcome:
        """Wait for the session to end by any path, including the time limit."""
        if self._end_task is None and self.outcome is None:
            if self._end_signal is None:
                raise RuntimeError("Session has not been started")
            await asyncio.shield(self._end_signal)
        return await self.end_session()

    async def _finish(self, reason: str) -> SessionOutcome:
        degraded: List[str] = []
        status = SessionStatus.COMPLETED
        video_uri = None
        segment_uris: List[str] = []
        analysis = None
        polling_state = None

        self._stop_countdown()
        try:
            if self.frame_sampler is not None:
                await self.frame_sampler.stop()

            if self.engine is not None:
                if self.timer.expired:
                    reason = "time_limit"
                self.engine.request_end(reason)
                if self.engine.is_answering:
                    # Keep the answer in progress
                    await self.end_answer()
                await self.engine.wait_idle()
                if self.engine.state is TurnState.FAILED:
                    degraded.append("conversation_failed")
                self.engine.stop()
            else:
                self.timer.stop()

            blob = self._finalize()
            if self.segmented:
                segment_uris = await self._collect_segments(degraded)
            elif blob is None:
                degraded.append("no_recording")
            else:
                video_uri = await self._upload(blob)
                if video_uri is None:
                    degraded.append("upload_failed")
                else:
                    dispatch = await self.dispatcher.trigger_analysis(
                        video_uri, max_attempts=self.analysis_max_attempts, on_progress=self._set_progress,
                    )
                    if not dispatch.succeeded:
                        # Reported only; polling decides whether analysis exists
                        degraded.append("analysis_dispatch_failed")

            if video_uri is not None or segment_uris:
                analysis, polling_state = await self._poll_and_aggregate()
                if analysis is None:
                    degraded.append("analysis_unavailable")

            if self.frame_sampler is not None:
                await self.frame_sampler.save()

            if self.conversation or analysis is not None:
                self._submit_feedback(analysis)

            if not self.conversation and video_uri is None and not segment_uris:
                status = SessionStatus.FAILED
            elif degraded:
                status = SessionStatus.DEGRADED

        except Exception as e:
            logger.exception("Session %s failed while ending: %s", self.session.session_id, e)
            self._emit_error(e, "session_controller")
            status = SessionStatus.FAILED
            degraded.append(f"error: {e}")

        finally:
            self.capture.release_devices()

        await self._report_status(status)

        outcome = SessionOutcome(
            session_id=self.session.session_id,
            status=status,
            reason=", ".join([reason] + degraded) if degraded else reason,
            conversation=self.conversation,
            analysis=analysis,
            video_uri=video_uri,
            progress=self.progress,
            polling_state=polling_state,
            segment_uris=segment_uris,
            frames_analyzed=len(self.frame_sampler.frames) if self.frame_sampler else 0,
        )
        self._complete(outcome)
        return outcome

    def _finalize(self) -> Optional[MediaBlob]:
        try:
            blob = self.capture.finalize_recording()
        except RecordingError as e:
            logger.error("Could not finalize recording: %s", e)
            self._emit_error(e, "media_capture")
            return None
        self.final_blob = blob
        self.event_bus.emit(RecordingFinalizedEvent(
            self.session.session_id, time.time(), blob.size, blob.mime_type,
        ))
        return blob if blob.size > 0 else None

    async def _upload(self, blob: MediaBlob) -> Optional[str]:
        self._set_progress("Uploading interview recording...")
        try:
            return await self.dispatcher.upload_finalized_video(blob)
        except UploadError as e:
            # final_blob is kept so the caller can retry the upload
            logger.error("Upload failed; session continues without video analysis: %s", e)
            self._set_progress("Failed to upload video. Your interview transcript has been saved.")
            return None

    async def retry_upload(self) -> Optional[str]:
        """Upload the kept recording again after a failed upload."""
        if self.final_blob is None:
            return None
        return await self._upload(self.final_blob)

    async def _poll_and_aggregate(self) -> Tuple[Optional[Dict[str, Any]], str]:
        polled = await self.poller.run(expected_segments=max(1, self.dispatcher.dispatched_segments))
        if not polled.has_results:
            return None, polled.state.value
        aggregated = aggregate(polled.segments, self.session.session_id)
        self.event_bus.emit(AnalysisAggregatedEvent(
            self.session.session_id, time.time(), aggregated.segment_count,
            aggregated.skipped_segments, aggregated.overall_score.overall_score,
            aggregated.overall_score.grade,
        ))
        return aggregated.to_dict(), polled.state.value

    # ------------------------------------------------------------------
    # Segment-per-answer mode
    # ------------------------------------------------------------------

    def _dispatch_answer_segment(self) -> None:
        """Upload and analyze the answer just recorded, without holding up the next question."""
        blob = self.engine.last_answer_blob
        if blob is None or blob.size == 0:
            logger.warning("No audio for the last answer; no segment dispatched")
            return
        segment_index = len(self._segment_tasks)
        self._segment_tasks.append(asyncio.ensure_future(self._send_segment(blob, segment_index)))

    async def _send_segment(self, blob: MediaBlob, segment_index: int) -> SegmentDispatch:
        try:
            uri = await self.dispatcher.upload_segment(blob, segment_index)
        except UploadError as e:
            logger.error("Segment %d upload failed: %s", segment_index, e)
            return segment_index, None, None
        dispatch = await self.dispatcher.trigger_analysis(
            uri, segment_index=segment_index, max_attempts=self.analysis_max_attempts,
        )
        return segment_index, uri, dispatch

    async def _collect_segments(self, degraded: List[str]) -> List[str]:
        """Wait for every answer segment's upload and trigger; returns the uploaded URIs in order."""
        if not self._segment_tasks:
            degraded.append("no_segments")
            return []
        self._set_progress(f"Uploading {len(self._segment_tasks)} answer segments...")
        sent = sorted(await asyncio.gather(*self._segment_tasks), key=lambda item: item[0])
        uris = [uri for _, uri, _ in sent if uri is not None]
        if len(uris) < len(sent):
            degraded.append("upload_failed")
        if any(dispatch is not None and not dispatch.succeeded for _, _, dispatch in sent):
            degraded.append("analysis_dispatch_failed")
        logger.info("%d of %d answer segments uploaded, %d dispatched",
                    len(uris), len(sent), self.dispatcher.dispatched_segments)
        return uris

    # ------------------------------------------------------------------
    # Hand-offs
    # ------------------------------------------------------------------

    def _submit_feedback(self, analysis: Optional[Dict[str, Any]]) -> None:
        """Fire-and-forget feedback generation; failures are only logged."""
        history = [turn.to_history() for turn in self.conversation]
        feedback = self.collaborators.feedback

        async def submit():
            try:
                await asyncio.to_thread(feedback.submit_feedback, self.session.session_id, history, analysis)
                logger.info("Feedback generation requested for %s", self.session.session_id)
            except Exception as e:
                logger.error("Feedback generation failed: %s", e)
                self._emit_error(e, "feedback")

        task = asyncio.ensure_future(submit())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _report_status(self, status: SessionStatus) -> None:
        sink = self.collaborators.status_sink
        if sink is None:
            return
        # The web app only distinguishes completed from not
        wire_status = "COMPLETED" if status is not SessionStatus.FAILED else "FAILED"
        try:
            await asyncio.to_thread(sink.update_session_status, self.session.session_id, wire_status)
        except Exception as e:
            logger.error("Failed to update session status: %s", e)
            self._emit_error(e, "session_status")

    def _complete(self, outcome: SessionOutcome) -> None:
        if self._completed:
            return
        self._completed = True
        self.outcome = outcome
        logger.info("Session %s finished: %s (%s)", outcome.session_id, outcome.status.value, outcome.reason)
        self.event_bus.emit(SessionCompletedEvent(
            outcome.session_id, time.time(), outcome.status.value, outcome.reason,
            len([t for t in outcome.conversation if t.role is Role.CANDIDATE]),
        ))
        if self.on_complete:
            try:
                self.on_complete(outcome)
            except Exception as e:
                logger.error("Completion handler failed: %s", e)

    async def wait_background(self) -> None:
        """Wait for fire-and-forget work (feedback submission) to settle."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # Headless driver
    # ------------------------------------------------------------------

    async def _await_answer(self, answer_source: AnswerSource) -> Optional[bool]:
        """Await one answering period. Returns False when the session ends first."""
        answer = asyncio.ensure_future(answer_source(self))
        await asyncio.wait({answer, self._end_signal}, return_when=asyncio.FIRST_COMPLETED)
        if self.ending:
            answer.cancel()
            return False
        return answer.result()

    async def run(self, answer_source: AnswerSource) -> SessionOutcome:
        """
        Drive a whole session.

        ``answer_source(controller)`` is awaited once per answering period
        while the candidate speaks. It returns False to end the session.
        Non-conversational sessions call it once for the whole recording.
        If the timer runs out first, the pending call is cancelled and the
        session ends with the answer in progress kept.
        """
        await self.start()
        reason = "candidate_ended"
        try:
            if self.engine is None:
                await self._await_answer(answer_source)
                if self.timer.expired:
                    reason = "time_limit"
            else:
                while not self.should_end and not self.ending:
                    if not self.begin_answer():
                        break
                    keep_going = await self._await_answer(answer_source)
                    if self.ending:
                        break
                    await self.end_answer()
                    if keep_going is False:
                        break
                reason = self.engine.end_reason or reason
        except Exception as e:
            logger.error("Session loop failed: %s", e)
            self._emit_error(e, "session_loop")
            reason = "error"
        return await self.end_session(reason)

"""
Turn-taking conversation engine.

One engine per session. It owns the transcript and the TurnState machine and
drives every question/answer exchange:

    AWAITING_QUESTION -> INTERVIEWER_SPEAKING -> AWAITING_ANSWER
        -> CANDIDATE_ANSWERING -> TRANSCRIBING -> AWAITING_QUESTION ...

The session timer preempts cooperatively: expiry is checked at turn
boundaries and never cancels a collaborator call already in flight.
"""
import asyncio
import logging
import time
from typing import Dict, List, Optional

from ..config import MAX_CONSECUTIVE_TURN_FAILURES
from .capture import MediaCaptureController
from .clock import Clock, MonotonicClock
from .errors import TurnInProgressError
from .events import (
    AnswerTranscribedEvent, ErrorOccurredEvent, QuestionAskedEvent,
    SessionEventBus, TurnCompletedEvent,
)
from .models import ConversationTurn, InterviewSession, MediaBlob, Question, Role, TranscriptionResult
from .prompts import APOLOGY_EMPTY_TRANSCRIPT, APOLOGY_TRANSCRIPTION_FAILED, CLOSING_LINE, PLACEHOLDER_ANSWER
from .questions import FallbackQuestions
from .schemas import TurnState, normalize_transcription, parse_question_reply
from .services import AudioPlayer, QuestionGenerator, SpeechSynthesizer, SpeechTranscriber

logger = logging.getLogger("conversation")


class SessionTimer:
    """Deadline for the whole session, measured on the injected clock."""

    def __init__(self, duration_s: float, clock: Clock):
        self.duration_s = duration_s
        self.clock = clock
        self.started_at: Optional[float] = None

    def start(self) -> None:
        if self.started_at is None:
            self.started_at = self.clock.now()
            logger.info("Session timer started: %.0f seconds", self.duration_s)

    def stop(self) -> None:
        """Freeze the timer; remaining() keeps its last value."""
        if self.started_at is not None:
            self.duration_s = self.remaining()
            self.started_at = None

    @property
    def running(self) -> bool:
        return self.started_at is not None

    @property
    def deadline(self) -> Optional[float]:
        """Clock time at which the session runs out, or None when not running."""
        if self.started_at is None:
            return None
        return self.started_at + self.duration_s

    def elapsed(self) -> float:
        if self.started_at is None:
            return 0.0
        return self.clock.now() - self.started_at

    def remaining(self) -> float:
        return max(0.0, self.duration_s - self.elapsed())

    @property
    def expired(self) -> bool:
        return self.running and self.remaining() <= 0.0


class ConversationEngine:
    """Runs the question/answer protocol for one conversational session."""

    def __init__(self,
                 session: InterviewSession,
                 capture: MediaCaptureController,
                 question_generator: QuestionGenerator,
                 transcriber: SpeechTranscriber,
                 synthesizer: Optional[SpeechSynthesizer] = None,
                 player: Optional[AudioPlayer] = None,
                 clock: Optional[Clock] = None,
                 event_bus: Optional[SessionEventBus] = None,
                 fallbacks: Optional[FallbackQuestions] = None,
                 max_consecutive_failures: int = MAX_CONSECUTIVE_TURN_FAILURES):
        self.session = session
        self.capture = capture
        self.question_generator = question_generator
        self.transcriber = transcriber
        self.synthesizer = synthesizer
        self.player = player
        self.clock = clock or MonotonicClock()
        self.event_bus = event_bus or SessionEventBus()
        self.fallbacks = fallbacks or FallbackQuestions()
        self.max_consecutive_failures = max_consecutive_failures
        self.timer = SessionTimer(session.duration_seconds, self.clock)

        self.state = TurnState.NOT_STARTED
        self.transcript: List[ConversationTurn] = []
        self.end_reason: Optional[str] = None
        self.consecutive_failures = 0
        self._turn_lock = asyncio.Lock()
        self._answer_offset = 0
        self.last_answer_blob: Optional[MediaBlob] = None
        self._last_turn_failed = False

    # ------------------------------------------------------------------
    # Transcript views
    # ------------------------------------------------------------------

    def history(self) -> List[Dict[str, str]]:
        """Conversation in the web API's ``{"role", "content"}`` form."""
        return [turn.to_history() for turn in self.transcript]

    @property
    def candidate_turns(self) -> List[ConversationTurn]:
        return [t for t in self.transcript if t.role is Role.CANDIDATE]

    @property
    def interviewer_turns(self) -> List[ConversationTurn]:
        return [t for t in self.transcript if t.role is Role.INTERVIEWER]

    @property
    def interviewer_speaking(self) -> bool:
        return self.state is TurnState.INTERVIEWER_SPEAKING

    @property
    def is_answering(self) -> bool:
        return self.state is TurnState.CANDIDATE_ANSWERING

    @property
    def end_requested(self) -> bool:
        return self.end_reason is not None or self.timer.expired

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> Optional[Question]:
        """Start the timer and ask the opening question."""
        if self.state is not TurnState.NOT_STARTED:
            logger.warning("Conversation already started (state=%s)", self.state.value)
            return None
        self.timer.start()
        self.state = TurnState.AWAITING_QUESTION
        question = await self.request_next_question()
        await self._ask(question)
        return question

    def request_end(self, reason: str) -> None:
        """Ask the engine to stop at the next turn boundary."""
        if self.end_reason is None:
            self.end_reason = reason
            logger.info("End of conversation requested: %s", reason)
        if self.state in (TurnState.NOT_STARTED, TurnState.AWAITING_QUESTION,
                          TurnState.INTERVIEWER_SPEAKING, TurnState.AWAITING_ANSWER):
            self.state = TurnState.ENDED

    def stop(self) -> None:
        """Terminal stop from the session controller."""
        self.timer.stop()
        if not self.state.is_terminal:
            self.state = TurnState.ENDED

    async def wait_idle(self) -> None:
        """Wait for an in-flight end_answer() to finish."""
        async with self._turn_lock:
            pass

    def _check_timer(self) -> bool:
        if self.timer.expired and self.end_reason is None:
            self.end_reason = "time_limit"
            logger.info("Session time limit reached")
        return self.end_requested

    # ------------------------------------------------------------------
    # Questions
    # ------------------------------------------------------------------

    async def request_next_question(self) -> Question:
        """
        Get the next question from the generator, or a canned fallback.

        Never raises: generator errors and malformed or empty replies fall
        back to the local question table.
        """
        opening = not self.transcript
        try:
            raw = await asyncio.to_thread(
                self.question_generator.get_next_question,
                self.history(), self.session.interview_type, self.session.difficulty,
            )
            return Question(parse_question_reply(raw), source="ai")
        except Exception as e:
            logger.error("Question generation failed: %s", e)
            self._emit_error(e, "question_generator")
            self._last_turn_failed = True
            return self.fallbacks.pick(self.session.interview_type, opening=opening)

    async def speak_question(self, question: Question) -> None:
        """Play the question aloud. Synthesis or playback failure is silent."""
        self.state = TurnState.INTERVIEWER_SPEAKING
        try:
            if self.synthesizer is not None:
                audio = await asyncio.to_thread(self.synthesizer.synthesize, question.text)
                if self.player is not None and audio:
                    await asyncio.to_thread(self.player.play, audio)
        except Exception as e:
            logger.warning("Speech synthesis failed, continuing silently: %s", e)
            self._emit_error(e, "speech_synthesis")
        finally:
            if self.state is TurnState.INTERVIEWER_SPEAKING:
                self.state = TurnState.AWAITING_ANSWER

    async def _ask(self, question: Question) -> None:
        self.transcript.append(ConversationTurn(role=Role.INTERVIEWER, content=question.text))
        self.event_bus.emit(QuestionAskedEvent(
            self.session.session_id, time.time(), question.text, question.source,
        ))
        await self.speak_question(question)

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    def begin_answer(self) -> bool:
        """
        Open an answering period.

        Returns:
            True if answering started; False (no-op) unless the engine is
            awaiting an answer and the continuous recording is live.
        """
        if self.state is not TurnState.AWAITING_ANSWER:
            logger.debug("begin_answer ignored in state %s", self.state.value)
            return False
        if not self.capture.is_recording:
            logger.warning("begin_answer ignored: recording is not active")
            return False
        if self._check_timer():
            self.state = TurnState.ENDED
            return False

        snapshot = self.capture.snapshot_current_buffer()
        self._answer_offset = snapshot.size
        self.state = TurnState.CANDIDATE_ANSWERING
        logger.info("Candidate answering (buffer offset %d bytes)", self._answer_offset)
        return True

    def _answer_blob(self) -> MediaBlob:
        blob = self.capture.snapshot_current_buffer()
        if not blob.is_raw_pcm or self._answer_offset <= 0:
            # Container formats need their header; send the whole buffer
            return blob
        frame = 2 * max(1, blob.channels)
        offset = self._answer_offset - (self._answer_offset % frame)
        return MediaBlob(blob.data[offset:], blob.mime_type, blob.sample_rate, blob.channels)

    async def _transcribe(self, blob: MediaBlob) -> TranscriptionResult:
        raw = await asyncio.to_thread(self.transcriber.transcribe, blob, self.session.session_id)
        return normalize_transcription(raw)

    async def end_answer(self) -> Optional[ConversationTurn]:
        """
        Close the answering period: transcribe, record exactly one candidate
        turn, then ask the next question unless the session is ending.

        Returns:
            The recorded candidate turn, or None when no answer was open.

        Raises:
            TurnInProgressError: Another end_answer() is still running
        """
        if self._turn_lock.locked():
            raise TurnInProgressError("An answer is already being processed")

        async with self._turn_lock:
            if self.state is not TurnState.CANDIDATE_ANSWERING:
                logger.debug("end_answer ignored in state %s", self.state.value)
                return None

            self.state = TurnState.TRANSCRIBING
            self._last_turn_failed = False
            apology = None
            self.last_answer_blob = None
            result = TranscriptionResult()
            try:
                blob = self._answer_blob()
                self.last_answer_blob = blob
                logger.info("Transcribing answer (%d bytes, %s)", blob.size, blob.mime_type)
                result = await self._transcribe(blob)
                if result.is_empty:
                    apology = APOLOGY_EMPTY_TRANSCRIPT
            except Exception as e:
                logger.error("Transcription failed: %s", e)
                self._emit_error(e, "speech_transcription")
                self._last_turn_failed = True
                apology = APOLOGY_TRANSCRIPTION_FAILED

            if apology is None:
                turn = ConversationTurn(role=Role.CANDIDATE, content=result.transcript,
                                        speaker_segments=list(result.segments))
                self.event_bus.emit(AnswerTranscribedEvent(
                    self.session.session_id, time.time(), result.transcript,
                    len({s.speaker for s in result.segments}),
                ))
            else:
                turn = ConversationTurn(role=Role.CANDIDATE, content=PLACEHOLDER_ANSWER,
                                        is_placeholder=True)
            self.transcript.append(turn)
            turn_idx = len(self.candidate_turns) - 1
            self.event_bus.emit(TurnCompletedEvent(
                self.session.session_id, time.time(), turn_idx, turn.content, turn.is_placeholder,
            ))
            logger.info("Turn %d recorded%s", turn_idx, " (placeholder)" if turn.is_placeholder else "")

            if self._check_timer():
                self._close()
                return turn

            if apology is not None:
                # The apology stands in for the next question
                question = Question(apology, source="apology")
            else:
                self.state = TurnState.AWAITING_QUESTION
                question = await self.request_next_question()

            self._record_failure(self._last_turn_failed)
            if self.state is TurnState.FAILED or self._check_timer():
                self._close()
                return turn

            await self._ask(question)
            if self._check_timer():
                self.state = TurnState.ENDED
            return turn

    def _close(self) -> None:
        """Record the closing line, unspoken, so the last answer still gets an interviewer turn."""
        self.transcript.append(ConversationTurn(role=Role.INTERVIEWER, content=CLOSING_LINE))
        self.event_bus.emit(QuestionAskedEvent(
            self.session.session_id, time.time(), CLOSING_LINE, "closing",
        ))
        if self.state is not TurnState.FAILED:
            self.state = TurnState.ENDED

    def _record_failure(self, failed: bool) -> None:
        if not failed:
            self.consecutive_failures = 0
            return
        self.consecutive_failures += 1
        if self.consecutive_failures >= self.max_consecutive_failures:
            logger.error("%d consecutive failed turns; giving up on the conversation",
                         self.consecutive_failures)
            self.state = TurnState.FAILED
            if self.end_reason is None:
                self.end_reason = "turn_budget_exhausted"

    def _emit_error(self, error: Exception, component: str) -> None:
        self.event_bus.emit(ErrorOccurredEvent(
            self.session.session_id, time.time(), type(error).__name__, str(error), component,
        ))

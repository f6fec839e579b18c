"""
Session event bus: progress notifications from the engine to observers.
"""
import logging
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Any, List, Callable, Optional

logger = logging.getLogger("events")


class EventType(str, Enum):
    """Types of session events."""
    SESSION_STARTED = "session_started"
    QUESTION_ASKED = "question_asked"
    ANSWER_TRANSCRIBED = "answer_transcribed"
    TURN_COMPLETED = "turn_completed"
    FRAME_ANALYZED = "frame_analyzed"
    RECORDING_FINALIZED = "recording_finalized"
    UPLOAD_FAILED = "upload_failed"
    ANALYSIS_TRIGGERED = "analysis_triggered"
    ANALYSIS_DISPATCH_FAILED = "analysis_dispatch_failed"
    POLLING_PROGRESS = "polling_progress"
    ANALYSIS_AGGREGATED = "analysis_aggregated"
    SESSION_COMPLETED = "session_completed"
    ERROR_OCCURRED = "error_occurred"


@dataclass
class SessionEvent:
    """Base class for all session events."""
    event_type: EventType
    session_id: str
    timestamp: float
    data: Dict[str, Any]


class SessionStartedEvent(SessionEvent):
    def __init__(self, session_id: str, timestamp: float, interview_type: str,
                 duration_seconds: float, is_conversational: bool):
        super().__init__(
            event_type=EventType.SESSION_STARTED,
            session_id=session_id,
            timestamp=timestamp,
            data={
                "interview_type": interview_type,
                "duration_seconds": duration_seconds,
                "is_conversational": is_conversational,
            },
        )


class QuestionAskedEvent(SessionEvent):
    def __init__(self, session_id: str, timestamp: float, question: str, source: str):
        super().__init__(
            event_type=EventType.QUESTION_ASKED,
            session_id=session_id,
            timestamp=timestamp,
            data={"question": question, "source": source},
        )


class AnswerTranscribedEvent(SessionEvent):
    def __init__(self, session_id: str, timestamp: float, transcript: str, speaker_count: int):
        super().__init__(
            event_type=EventType.ANSWER_TRANSCRIBED,
            session_id=session_id,
            timestamp=timestamp,
            data={"transcript": transcript, "speaker_count": speaker_count},
        )


class TurnCompletedEvent(SessionEvent):
    """Fired once per end_answer(), with the recorded candidate turn."""
    def __init__(self, session_id: str, timestamp: float, turn_idx: int,
                 transcript: str, is_placeholder: bool):
        super().__init__(
            event_type=EventType.TURN_COMPLETED,
            session_id=session_id,
            timestamp=timestamp,
            data={"turn_idx": turn_idx, "transcript": transcript, "is_placeholder": is_placeholder},
        )


class FrameAnalyzedEvent(SessionEvent):
    def __init__(self, session_id: str, timestamp: float, frame_count: int, size_bytes: int):
        super().__init__(
            event_type=EventType.FRAME_ANALYZED,
            session_id=session_id,
            timestamp=timestamp,
            data={"frame_count": frame_count, "size_bytes": size_bytes},
        )


class RecordingFinalizedEvent(SessionEvent):
    def __init__(self, session_id: str, timestamp: float, size_bytes: int, mime_type: str):
        super().__init__(
            event_type=EventType.RECORDING_FINALIZED,
            session_id=session_id,
            timestamp=timestamp,
            data={"size_bytes": size_bytes, "mime_type": mime_type},
        )


class AnalysisTriggeredEvent(SessionEvent):
    def __init__(self, session_id: str, timestamp: float, video_uri: str,
                 segment_index: int, attempts: int):
        super().__init__(
            event_type=EventType.ANALYSIS_TRIGGERED,
            session_id=session_id,
            timestamp=timestamp,
            data={"video_uri": video_uri, "segment_index": segment_index, "attempts": attempts},
        )


class PollingProgressEvent(SessionEvent):
    def __init__(self, session_id: str, timestamp: float, state: str, message: str,
                 received: int, expected: int):
        super().__init__(
            event_type=EventType.POLLING_PROGRESS,
            session_id=session_id,
            timestamp=timestamp,
            data={"state": state, "message": message, "received": received, "expected": expected},
        )


class AnalysisAggregatedEvent(SessionEvent):
    def __init__(self, session_id: str, timestamp: float, segment_count: int,
                 skipped_segments: int, overall_score: float, grade: str):
        super().__init__(
            event_type=EventType.ANALYSIS_AGGREGATED,
            session_id=session_id,
            timestamp=timestamp,
            data={
                "segment_count": segment_count,
                "skipped_segments": skipped_segments,
                "overall_score": overall_score,
                "grade": grade,
            },
        )


class SessionCompletedEvent(SessionEvent):
    def __init__(self, session_id: str, timestamp: float, status: str,
                 reason: Optional[str], turn_count: int):
        super().__init__(
            event_type=EventType.SESSION_COMPLETED,
            session_id=session_id,
            timestamp=timestamp,
            data={"status": status, "reason": reason, "turn_count": turn_count},
        )


class ErrorOccurredEvent(SessionEvent):
    """Fired for absorbed failures; ``event_type`` may be narrowed by the caller."""
    def __init__(self, session_id: str, timestamp: float, error_type: str,
                 error_message: str, component: str,
                 event_type: EventType = EventType.ERROR_OCCURRED):
        super().__init__(
            event_type=event_type,
            session_id=session_id,
            timestamp=timestamp,
            data={"error_type": error_type, "error_message": error_message, "component": component},
        )


EventHandler = Callable[[SessionEvent], None]


class SessionEventBus:
    """Synchronous in-process event bus. Handler errors are logged, never raised."""

    def __init__(self):
        self._handlers: Dict[EventType, List[EventHandler]] = {}
        self._global_handlers: List[EventHandler] = []

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)
        logger.debug("Subscribed handler to %s", event_type)

    def subscribe_all(self, handler: EventHandler) -> None:
        self._global_handlers.append(handler)
        logger.debug("Subscribed global handler")

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
        else:
            logger.warning("Handler not found for %s", event_type)

    def emit(self, event: SessionEvent) -> None:
        logger.debug("Emitting event: %s for session %s", event.event_type, event.session_id)
        for handler in self._handlers.get(event.event_type, []) + self._global_handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error("Error in event handler for %s: %s", event.event_type, e)


class EventLogger:
    """Logs all events for debugging."""

    def __init__(self, log_level: int = logging.INFO):
        self.logger = logging.getLogger("event_logger")
        self.log_level = log_level

    def handle_event(self, event: SessionEvent) -> None:
        self.logger.log(self.log_level, "Event: %s | Session: %s | Data: %s",
                        event.event_type.value, event.session_id, event.data)


class SessionMetrics:
    """Counts events by type across sessions."""

    def __init__(self):
        self.counts: Counter = Counter()
        self.placeholder_turns = 0

    def handle_event(self, event: SessionEvent) -> None:
        self.counts[event.event_type] += 1
        if event.event_type is EventType.TURN_COMPLETED and event.data.get("is_placeholder"):
            self.placeholder_turns += 1

    def get_metrics(self) -> Dict[str, int]:
        metrics = {event_type.value: self.counts[event_type] for event_type in EventType}
        metrics["placeholder_turns"] = self.placeholder_turns
        return metrics

    def reset(self) -> None:
        self.counts.clear()
        self.placeholder_turns = 0

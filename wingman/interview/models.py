"""
Data models for the interview session engine.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, List, Any


class Role(str, Enum):
    """Who produced a conversation turn."""
    INTERVIEWER = "interviewer"
    CANDIDATE = "candidate"

    @property
    def wire_name(self) -> str:
        """Role name used by the web API's conversation history."""
        return "assistant" if self is Role.INTERVIEWER else "user"


@dataclass(frozen=True)
class InterviewSession:
    """Session metadata, created by the web application before the engine starts."""
    session_id: str
    interview_type: str
    difficulty: str
    duration_seconds: float
    is_conversational: bool = True
    job_role: str = "Software Engineer"
    company: str = "FAANG"
    segment_per_answer: bool = False


@dataclass(frozen=True)
class SpeakerSegment:
    """One diarized stretch of speech."""
    speaker: str
    text: str
    start_time: float
    end_time: float


@dataclass
class ConversationTurn:
    """Represents a single utterance in the transcript."""
    role: Role
    content: str
    timestamp: datetime = field(default_factory=datetime.now)
    speaker_segments: List[SpeakerSegment] = field(default_factory=list)
    is_placeholder: bool = False

    def to_history(self) -> Dict[str, str]:
        return {"role": self.role.wire_name, "content": self.content}


@dataclass(frozen=True)
class MediaBlob:
    """Immutable recorded media."""
    data: bytes
    mime_type: str
    sample_rate: Optional[int] = None
    channels: int = 1

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_raw_pcm(self) -> bool:
        return self.mime_type.startswith("audio/l16")


@dataclass(frozen=True)
class Question:
    """A question put to the candidate."""
    text: str
    source: str = "ai"  # "ai", "fallback", "apology" or "closing"


@dataclass
class TranscriptionResult:
    """Normalized speech-to-text output."""
    transcript: str = ""
    segments: List[SpeakerSegment] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.transcript.strip()


@dataclass(frozen=True)
class AnalysisSegmentResult:
    """One analysed segment as read back from the results store."""
    session_id: str
    segment_index: int
    results: Dict[str, Any]
    record_id: Optional[str] = None
    annotation_results: List[Any] = field(default_factory=list)

    @property
    def has_results(self) -> bool:
        return isinstance(self.results, dict) and len(self.results) > 0


class SessionStatus(str, Enum):
    """Terminal status reported to the completion hand-off."""
    COMPLETED = "completed"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass
class SessionOutcome:
    """Final session results handed to the caller."""
    session_id: str
    status: SessionStatus
    reason: Optional[str] = None
    conversation: List[ConversationTurn] = field(default_factory=list)
    analysis: Optional[Dict[str, Any]] = None
    video_uri: Optional[str] = None
    progress: str = ""
    polling_state: Optional[str] = None
    segment_uris: List[str] = field(default_factory=list)
    frames_analyzed: int = 0

    @property
    def degraded(self) -> bool:
        return self.status is not SessionStatus.COMPLETED

    @property
    def has_video(self) -> bool:
        return self.video_uri is not None or len(self.segment_uris) > 0

    @property
    def has_conversation(self) -> bool:
        return len(self.conversation) > 0

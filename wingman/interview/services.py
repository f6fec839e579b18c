"""
Collaborator contracts for the session engine.

Every external dependency (devices, AI, speech, storage, results, vision) is
reached through one of these narrow protocols. Production implementations
live under ``wingman.infrastructure``; test doubles live in ``testing.py``.
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from .models import MediaBlob


# =============================================================================
# Media devices
# =============================================================================

class MediaTrack(Protocol):
    kind: str

    def stop(self) -> None: ...


class MediaRecorder(Protocol):
    """Delivers recorded data in fixed time slices until stopped."""

    def start(self, timeslice_ms: int) -> None: ...

    def stop(self) -> None:
        """Stop recording. Must deliver the final slice before returning."""
        ...


class MediaHandle(Protocol):
    """Live camera and microphone streams for one session."""
    mime_type: str
    sample_rate: Optional[int]
    channels: int

    @property
    def tracks(self) -> Sequence[MediaTrack]: ...

    @property
    def active(self) -> bool: ...

    def attach_preview(self) -> bool: ...

    def create_recorder(self, on_data: Callable[[bytes], None]) -> MediaRecorder: ...

    def capture_frame(self) -> Optional[bytes]:
        """JPEG still of the current video frame, or None without a camera."""
        ...


class MediaDevices(Protocol):
    def open(self, video: bool = True, audio: bool = True) -> MediaHandle:
        """Raises DeviceAccessError when access is denied or a device is missing."""
        ...


# =============================================================================
# AI, speech, storage and results
# =============================================================================

class QuestionGenerator(Protocol):
    def get_next_question(self, history: List[Dict[str, str]],
                          interview_type: str, difficulty: str) -> Any:
        """Return a reply carrying ``question``; adapters normalize the shape."""
        ...


class SpeechSynthesizer(Protocol):
    def synthesize(self, text: str) -> bytes: ...


class AudioPlayer(Protocol):
    def play(self, audio: bytes) -> None: ...


class SpeechTranscriber(Protocol):
    def transcribe(self, blob: MediaBlob, session_id: str) -> Any: ...


class ObjectStorage(Protocol):
    def upload(self, blob: MediaBlob, key: str) -> str:
        """Store the blob and return its URI. Raises UploadError on rejection."""
        ...


class AnalysisTrigger(Protocol):
    def analyze(self, video_uri: str, session_id: str, segment_index: int) -> Any: ...


class AnalysisResultsStore(Protocol):
    def list_results(self, session_id: str) -> List[Any]:
        """Raises ResultsNotReady when nothing exists yet."""
        ...


class FeedbackGenerator(Protocol):
    def submit_feedback(self, session_id: str, history: List[Dict[str, str]],
                        analysis: Optional[Dict[str, Any]] = None) -> Any: ...


class FrameAnalyzer(Protocol):
    def analyze_frame(self, session_id: str, image: bytes) -> Dict[str, Any]: ...

    def save_frames(self, session_id: str, frames: List[Dict[str, Any]]) -> Any: ...


class SessionStatusSink(Protocol):
    def update_session_status(self, session_id: str, status: str) -> Any: ...


@dataclass
class Collaborators:
    """Everything a SessionController talks to."""
    devices: MediaDevices
    question_generator: QuestionGenerator
    transcriber: SpeechTranscriber
    storage: ObjectStorage
    analysis_trigger: AnalysisTrigger
    results_store: AnalysisResultsStore
    feedback: FeedbackGenerator
    synthesizer: Optional[SpeechSynthesizer] = None
    player: Optional[AudioPlayer] = None
    status_sink: Optional[SessionStatusSink] = None
    frame_analyzer: Optional[FrameAnalyzer] = None

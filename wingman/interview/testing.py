"""
Testing infrastructure: a virtual clock, fake media devices and scripted
mock collaborators for the session engine.
"""
import asyncio
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import CollaboratorError, DeviceAccessError, ResultsNotReady, UploadError
from .models import MediaBlob
from .services import Collaborators

PCM_MIME = "audio/l16;rate=16000;channels=1"
WEBM_MIME = "video/webm;codecs=vp9,opus"
JPEG_FRAME = b"\xff\xd8\xff\xe0frame"


class FakeClock:
    """
    Virtual time. sleep() advances the clock instantly and yields once;
    wait_until() parks until a sleep or advance() moves time past its deadline.
    """

    def __init__(self, start: float = 0.0):
        self.current = start
        self.sleeps: List[float] = []
        self._waiters: List[Tuple[float, asyncio.Future]] = []

    def now(self) -> float:
        return self.current

    async def sleep(self, seconds: float) -> None:
        seconds = max(0.0, seconds)
        self.sleeps.append(seconds)
        self.current += seconds
        self._wake()
        await asyncio.sleep(0)

    async def wait_until(self, deadline: float) -> None:
        if self.current >= deadline:
            return
        future = asyncio.get_running_loop().create_future()
        self._waiters.append((deadline, future))
        await future

    def advance(self, seconds: float) -> None:
        self.current += seconds
        self._wake()

    def _wake(self) -> None:
        pending = []
        for deadline, future in self._waiters:
            if future.done():
                continue
            if self.current >= deadline:
                future.set_result(None)
            else:
                pending.append((deadline, future))
        self._waiters = pending


# =============================================================================
# Media devices
# =============================================================================

class FakeTrack:
    def __init__(self, kind: str):
        self.kind = kind
        self.stop_count = 0

    def stop(self) -> None:
        self.stop_count += 1


class FakeRecorder:
    """Recorder whose slices are pushed by the test. stop() flushes ``final_chunk``."""

    def __init__(self, on_data: Callable[[bytes], None], final_chunk: bytes = b""):
        self.on_data = on_data
        self.final_chunk = final_chunk
        self.timeslice_ms: Optional[int] = None
        self.started = False
        self.stopped = False

    def start(self, timeslice_ms: int) -> None:
        self.timeslice_ms = timeslice_ms
        self.started = True

    def push(self, data: bytes) -> None:
        self.on_data(data)

    def stop(self) -> None:
        if self.stopped:
            return
        self.stopped = True
        if self.final_chunk:
            self.on_data(self.final_chunk)


class FakeMediaHandle:
    def __init__(self, mime_type: str = PCM_MIME, sample_rate: Optional[int] = 16000,
                 channels: int = 1, final_chunk: bytes = b"", preview: bool = True,
                 frame: Optional[bytes] = JPEG_FRAME):
        self.mime_type = mime_type
        self.sample_rate = sample_rate
        self.channels = channels
        self.final_chunk = final_chunk
        self.preview = preview
        self.frame = frame
        self.frames_captured = 0
        self._tracks = [FakeTrack("video"), FakeTrack("audio")]
        self.recorders: List[FakeRecorder] = []

    @property
    def tracks(self) -> List[FakeTrack]:
        return self._tracks

    @property
    def active(self) -> bool:
        return all(t.stop_count == 0 for t in self._tracks)

    @property
    def recorder(self) -> Optional[FakeRecorder]:
        return self.recorders[-1] if self.recorders else None

    def attach_preview(self) -> bool:
        return self.preview

    def create_recorder(self, on_data: Callable[[bytes], None]) -> FakeRecorder:
        recorder = FakeRecorder(on_data, self.final_chunk)
        self.recorders.append(recorder)
        return recorder

    def capture_frame(self) -> Optional[bytes]:
        if self.frame is not None:
            self.frames_captured += 1
        return self.frame


class FakeMediaDevices:
    """Hands out one FakeMediaHandle, or raises DeviceAccessError when ``deny`` is set."""

    def __init__(self, handle: Optional[FakeMediaHandle] = None, deny: bool = False):
        self.handle = handle or FakeMediaHandle()
        self.deny = deny
        self.open_calls = 0

    def open(self, video: bool = True, audio: bool = True) -> FakeMediaHandle:
        self.open_calls += 1
        if self.deny:
            raise DeviceAccessError("Permission denied")
        return self.handle


# =============================================================================
# Scripted collaborators
# =============================================================================

class _Script:
    """Replays scripted replies in order; the last one repeats. Exceptions are raised."""

    def __init__(self, replies: Optional[List[Any]], default: Any):
        self.replies = list(replies or [])
        self.default = default
        self.calls = 0
        self._lock = threading.Lock()

    def next(self) -> Any:
        with self._lock:
            idx = self.calls
            self.calls += 1
        if not self.replies:
            reply = self.default
        else:
            reply = self.replies[min(idx, len(self.replies) - 1)]
        if isinstance(reply, BaseException):
            raise reply
        return reply


class MockQuestionGenerator:
    def __init__(self, replies: Optional[List[Any]] = None):
        self._script = _Script(replies, {"question": "Tell me about a recent project."})
        self.histories: List[List[Dict[str, str]]] = []

    @property
    def calls(self) -> int:
        return self._script.calls

    def get_next_question(self, history, interview_type, difficulty):
        self.histories.append(list(history))
        return self._script.next()


class MockTranscriber:
    def __init__(self, replies: Optional[List[Any]] = None, delay_s: float = 0.0):
        self._script = _Script(replies, {"transcript": "I led the migration to a new billing system."})
        self.delay_s = delay_s
        self.blobs: List[MediaBlob] = []

    @property
    def calls(self) -> int:
        return self._script.calls

    def transcribe(self, blob: MediaBlob, session_id: str):
        self.blobs.append(blob)
        if self.delay_s:
            threading.Event().wait(self.delay_s)
        return self._script.next()


class MockSynthesizer:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.texts: List[str] = []

    def synthesize(self, text: str) -> bytes:
        self.texts.append(text)
        if self.fail:
            raise RuntimeError("TTS unavailable")
        return b"RIFF" + text.encode()


class MockAudioPlayer:
    def __init__(self):
        self.played: List[bytes] = []

    def play(self, audio: bytes) -> None:
        self.played.append(audio)


class MockObjectStorage:
    """Fails the first ``fail_times`` uploads (all of them when ``fail_times`` is None and ``fail`` is set)."""

    def __init__(self, fail: bool = False, fail_times: Optional[int] = None, bucket: str = "test-bucket"):
        self.fail = fail
        self.fail_times = fail_times
        self.bucket = bucket
        self.uploads: List[Dict[str, Any]] = []
        self.attempts = 0

    def upload(self, blob: MediaBlob, key: str) -> str:
        self.attempts += 1
        if self.fail and (self.fail_times is None or self.attempts <= self.fail_times):
            raise UploadError("bucket rejected object", status_code=403)
        self.uploads.append({"key": key, "blob": blob})
        return f"gs://{self.bucket}/{key}"


class MockAnalysisTrigger:
    def __init__(self, fail_times: int = 0):
        self.fail_times = fail_times
        self.calls: List[Dict[str, Any]] = []

    def analyze(self, video_uri: str, session_id: str, segment_index: int) -> Dict[str, Any]:
        self.calls.append({"video_uri": video_uri, "session_id": session_id, "segment_index": segment_index})
        if len(self.calls) <= self.fail_times:
            raise CollaboratorError("analysis_trigger", "HTTP 503: unavailable")
        return {"success": True}


class MockResultsStore:
    """
    One scripted reply per poll. Each reply is a list of rows, an exception,
    or None for "nothing yet" (HTTP 404). The last reply repeats.
    """

    def __init__(self, replies: Optional[List[Any]] = None):
        self.replies = list(replies or [None])
        self.calls = 0

    def list_results(self, session_id: str) -> List[Any]:
        reply = self.replies[min(self.calls, len(self.replies) - 1)]
        self.calls += 1
        if reply is None:
            raise ResultsNotReady(session_id)
        if isinstance(reply, BaseException):
            raise reply
        return list(reply)


class MockFeedbackGenerator:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.submissions: List[Dict[str, Any]] = []

    def submit_feedback(self, session_id, history, analysis=None):
        self.submissions.append({"session_id": session_id, "history": history, "analysis": analysis})
        if self.fail:
            raise CollaboratorError("feedback", "HTTP 500")
        return {"success": True}


class MockFrameAnalyzer:
    """Scripted vision replies per frame; ``fail_save`` makes save_frames() raise."""

    def __init__(self, replies: Optional[List[Any]] = None, fail_save: bool = False, delay_s: float = 0.0):
        self._script = _Script(replies, {"success": True, "emotion": "neutral", "faces": 1})
        self.fail_save = fail_save
        self.delay_s = delay_s
        self.images: List[bytes] = []
        self.saved: List[Dict[str, Any]] = []

    def analyze_frame(self, session_id: str, image: bytes) -> Dict[str, Any]:
        self.images.append(image)
        if self.delay_s:
            threading.Event().wait(self.delay_s)
        return self._script.next()

    def save_frames(self, session_id: str, frames: List[Dict[str, Any]]) -> None:
        if self.fail_save:
            raise CollaboratorError("frame_analysis", "HTTP 500")
        self.saved.append({"session_id": session_id, "frames": frames})


class MockStatusSink:
    def __init__(self):
        self.updates: List[Dict[str, str]] = []

    def update_session_status(self, session_id: str, status: str) -> None:
        self.updates.append({"session_id": session_id, "status": status})


def make_collaborators(**overrides) -> Collaborators:
    """Collaborators wired with mocks; pass keyword overrides to replace any of them."""
    parts: Dict[str, Any] = dict(
        devices=FakeMediaDevices(),
        question_generator=MockQuestionGenerator(),
        transcriber=MockTranscriber(),
        storage=MockObjectStorage(),
        analysis_trigger=MockAnalysisTrigger(),
        results_store=MockResultsStore([[make_segment_record(0)]]),
        feedback=MockFeedbackGenerator(),
        synthesizer=MockSynthesizer(),
        player=MockAudioPlayer(),
        status_sink=MockStatusSink(),
    )
    parts.update(overrides)
    return Collaborators(**parts)


def make_segment_record(segment_index: int,
                        transcript: str = "I designed the caching layer.",
                        total_words: int = 100,
                        filler_count: int = 5,
                        words_per_minute: float = 140.0,
                        clarity: float = 0.8,
                        joy: float = 0.6,
                        confidence: float = 0.7,
                        frames: int = 30,
                        record_id: Optional[str] = None) -> Dict[str, Any]:
    """A results-store row shaped like the analysis service's output."""
    return {
        "id": record_id or f"rec-{segment_index}",
        "sessionId": "session-1",
        "segmentIndex": segment_index,
        "results": {
            "speech_analysis": {
                "transcript": transcript,
                "total_words": total_words,
                "words_per_minute": words_per_minute,
                "clarity_score": clarity,
                "filler_words": {"count": filler_count, "details": [{"word": "um", "segment": segment_index}]},
                "pacing_analysis": {"wpm_timeline": [{"segment": segment_index, "wpm": words_per_minute}]},
            },
            "facial_analysis": {
                "total_frames_analyzed": frames,
                "average_detection_confidence": 0.9,
                "emotion_statistics": {
                    "joy": {"average": joy, "max": joy + 0.1, "min": joy - 0.1, "std": 0.05},
                    "sorrow": {"average": 0.1, "max": 0.2, "min": 0.0, "std": 0.05},
                },
                "emotion_timeline": [{"segment": segment_index}],
            },
            "confidence_analysis": {
                "average_eye_contact_score": 0.75,
                "eye_contact_consistency": 0.6,
                "head_stability_score": 0.8,
                "confidence_score": confidence,
            },
            "durationSec": 60,
        },
    }

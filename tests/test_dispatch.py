"""Tests for recording upload and analysis dispatch."""
import asyncio

import pytest

from wingman.interview.dispatch import AnalysisDispatcher, retry_delay, video_key
from wingman.interview.errors import UploadError
from wingman.interview.events import EventType, SessionEventBus
from wingman.interview.models import MediaBlob
from wingman.interview.testing import FakeClock, MockAnalysisTrigger, MockObjectStorage, PCM_MIME, WEBM_MIME


def make_dispatcher(storage=None, trigger=None, clock=None, bus=None):
    return AnalysisDispatcher(
        "session-1",
        storage or MockObjectStorage(),
        trigger or MockAnalysisTrigger(),
        clock=clock or FakeClock(),
        event_bus=bus,
    )


class TestHelpers:
    def test_video_key(self):
        assert video_key("abc", 1700000000000) == "interviews/abc/1700000000000_interview_abc_full.webm"
        assert video_key("abc", 1700000000000, "wav", segment_index=2) == \
            "interviews/abc/1700000000000_interview_abc_segment_2.wav"

    def test_retry_delay_doubles_and_caps(self):
        assert retry_delay(1) == 2.0
        assert retry_delay(2) == 4.0
        assert retry_delay(3) == 8.0
        assert retry_delay(10) == 30.0


class TestUpload:
    def test_container_blob_is_uploaded_as_is(self):
        storage = MockObjectStorage()
        blob = MediaBlob(b"\x1a\x45\xdf\xa3data", WEBM_MIME)
        uri = asyncio.run(make_dispatcher(storage=storage).upload_finalized_video(blob))
        upload = storage.uploads[0]
        assert uri == f"gs://test-bucket/{upload['key']}"
        assert upload["key"].startswith("interviews/session-1/")
        assert upload["key"].endswith("_interview_session-1_full.webm")
        assert upload["blob"] is blob

    def test_raw_pcm_is_wrapped_as_wav(self):
        storage = MockObjectStorage()
        blob = MediaBlob(b"\x01\x00" * 160, PCM_MIME, sample_rate=16000, channels=1)
        asyncio.run(make_dispatcher(storage=storage).upload_finalized_video(blob))
        upload = storage.uploads[0]
        assert upload["key"].endswith(".wav")
        assert upload["blob"].mime_type == "audio/wav"
        assert upload["blob"].data[:4] == b"RIFF"

    def test_empty_recording_is_rejected(self):
        with pytest.raises(UploadError):
            asyncio.run(make_dispatcher().upload_finalized_video(MediaBlob(b"", WEBM_MIME)))

    def test_segment_key_carries_index(self):
        storage = MockObjectStorage()
        blob = MediaBlob(b"\x01\x00" * 160, PCM_MIME, sample_rate=16000, channels=1)
        uri = asyncio.run(make_dispatcher(storage=storage).upload_segment(blob, 3))
        assert storage.uploads[0]["key"].endswith("_interview_session-1_segment_3.wav")
        assert uri.endswith("_segment_3.wav")

    def test_empty_segment_is_rejected(self):
        storage = MockObjectStorage()
        with pytest.raises(UploadError, match="Segment 1 is empty"):
            asyncio.run(make_dispatcher(storage=storage).upload_segment(MediaBlob(b"", PCM_MIME), 1))
        assert storage.attempts == 0

    def test_rejection_raises_and_emits(self):
        bus = SessionEventBus()
        seen = []
        bus.subscribe(EventType.UPLOAD_FAILED, seen.append)
        dispatcher = make_dispatcher(storage=MockObjectStorage(fail=True), bus=bus)
        with pytest.raises(UploadError) as excinfo:
            asyncio.run(dispatcher.upload_finalized_video(MediaBlob(b"data", WEBM_MIME)))
        assert excinfo.value.status_code == 403
        assert len(seen) == 1
        assert seen[0].data["component"] == "storage"

    def test_unexpected_errors_become_upload_errors(self):
        class BrokenStorage:
            def upload(self, blob, key):
                raise ConnectionError("reset by peer")

        dispatcher = make_dispatcher(storage=BrokenStorage())
        with pytest.raises(UploadError, match="reset by peer"):
            asyncio.run(dispatcher.upload_finalized_video(MediaBlob(b"data", WEBM_MIME)))


class TestTriggerAnalysis:
    def test_first_attempt_succeeds(self):
        trigger = MockAnalysisTrigger()
        dispatcher = make_dispatcher(trigger=trigger)
        result = asyncio.run(dispatcher.trigger_analysis("gs://b/k"))
        assert result.succeeded
        assert result.attempts == 1
        assert trigger.calls == [{"video_uri": "gs://b/k", "session_id": "session-1", "segment_index": 0}]
        assert dispatcher.dispatched_segments == 1

    def test_retries_with_backoff(self):
        clock = FakeClock()
        dispatcher = make_dispatcher(trigger=MockAnalysisTrigger(fail_times=2), clock=clock)
        progress = []
        result = asyncio.run(dispatcher.trigger_analysis("gs://b/k", on_progress=progress.append))
        assert result.succeeded
        assert result.attempts == 3
        assert clock.sleeps == [2.0, 4.0]
        assert progress[0] == "Starting video analysis (attempt 1/3)..."
        assert progress[-1] == "Video analysis started. This may take a few minutes..."

    def test_gives_up_without_raising(self):
        bus = SessionEventBus()
        failed = []
        bus.subscribe(EventType.ANALYSIS_DISPATCH_FAILED, failed.append)
        clock = FakeClock()
        dispatcher = make_dispatcher(trigger=MockAnalysisTrigger(fail_times=10), clock=clock, bus=bus)
        result = asyncio.run(dispatcher.trigger_analysis("gs://b/k", max_attempts=3))
        assert not result.succeeded
        assert result.attempts == 3
        assert "503" in result.error
        assert clock.sleeps == [2.0, 4.0]
        assert dispatcher.dispatched_segments == 0
        assert len(failed) == 1

"""Tests for device acquisition and the continuous session recording."""
import pytest

from wingman.interview.capture import MediaCaptureController
from wingman.interview.errors import AlreadyFinalizedError, DeviceAccessError, RecordingStartError
from wingman.interview.schemas import RecordingState
from wingman.interview.testing import FakeMediaDevices, FakeMediaHandle


def started_capture(handle=None):
    devices = FakeMediaDevices(handle or FakeMediaHandle())
    capture = MediaCaptureController(devices, timeslice_ms=500)
    capture.start_continuous_recording(capture.acquire_devices())
    return capture, devices.handle


class TestDevices:
    def test_acquire_attaches_preview(self):
        capture = MediaCaptureController(FakeMediaDevices())
        handle = capture.acquire_devices()
        assert handle.active
        assert capture.preview_attached

    def test_denied_access_raises(self):
        capture = MediaCaptureController(FakeMediaDevices(deny=True))
        with pytest.raises(DeviceAccessError):
            capture.acquire_devices()
        assert capture.handle is None

    def test_release_stops_each_track_once(self):
        capture, handle = started_capture()
        capture.release_devices()
        capture.release_devices()
        assert [t.stop_count for t in handle.tracks] == [1, 1]
        assert not handle.active

    def test_release_while_recording_finalizes_once(self):
        capture, handle = started_capture(FakeMediaHandle(final_chunk=b"\x09\x00"))
        handle.recorder.push(b"\x01\x00")
        capture.release_devices()
        assert handle.recorder.stopped
        assert not capture.is_recording
        assert capture.state is RecordingState.FINALIZED
        assert capture.snapshot_current_buffer().data == b"\x01\x00\x09\x00"
        with pytest.raises(AlreadyFinalizedError):
            capture.finalize_recording()

    def test_release_without_handle_is_noop(self):
        capture = MediaCaptureController(FakeMediaDevices())
        capture.release_devices()
        assert not capture.released


class TestRecording:
    def test_start_uses_timeslice(self):
        capture, handle = started_capture()
        assert capture.state is RecordingState.RECORDING
        assert handle.recorder.timeslice_ms == 500

    def test_start_without_handle_raises(self):
        capture = MediaCaptureController(FakeMediaDevices())
        with pytest.raises(RecordingStartError):
            capture.start_continuous_recording()

    def test_second_start_raises(self):
        capture, _ = started_capture()
        with pytest.raises(RecordingStartError):
            capture.start_continuous_recording()

    def test_snapshot_is_a_copy(self):
        capture, handle = started_capture()
        handle.recorder.push(b"ab")
        first = capture.snapshot_current_buffer()
        handle.recorder.push(b"cd")
        second = capture.snapshot_current_buffer()
        assert first.data == b"ab"
        assert second.data == b"abcd"
        assert capture.is_recording

    def test_empty_chunks_are_ignored(self):
        capture, handle = started_capture()
        handle.recorder.push(b"")
        assert capture.chunk_count == 0

    def test_finalize_flushes_last_slice(self):
        capture, handle = started_capture(FakeMediaHandle(final_chunk=b"zz"))
        handle.recorder.push(b"ab")
        blob = capture.finalize_recording()
        assert blob.data == b"abzz"
        assert blob.mime_type == handle.mime_type
        assert capture.state is RecordingState.FINALIZED

    def test_finalize_twice_raises(self):
        capture, _ = started_capture()
        capture.finalize_recording()
        with pytest.raises(AlreadyFinalizedError):
            capture.finalize_recording()

    def test_finalize_before_start_raises(self):
        capture = MediaCaptureController(FakeMediaDevices())
        capture.acquire_devices()
        with pytest.raises(RecordingStartError):
            capture.finalize_recording()

    def test_restart_after_finalize_raises(self):
        capture, _ = started_capture()
        capture.finalize_recording()
        with pytest.raises(RecordingStartError):
            capture.start_continuous_recording()

"""Tests for media devices, recorded-audio processing and the PCM container format."""
import io
import sys
import wave
from unittest.mock import Mock

import numpy as np
import pytest

from wingman.infrastructure.media import pcm_mime_type, to_linear16, wav_bytes
from wingman.infrastructure.media.devices import OpenCVCameraTrack, PyAudioMediaHandle, open_camera
from wingman.infrastructure.media.processing import pcm16_to_float, resample, stereo_to_mono
from wingman.interview.models import MediaBlob


class TestProcessing:
    def test_mime_type_marks_raw_pcm(self):
        mime = pcm_mime_type(48000, 1)
        assert mime == "audio/l16;rate=48000;channels=1"
        assert MediaBlob(b"", mime).is_raw_pcm

    def test_stereo_decode_and_downmix(self):
        data = np.array([1000, 3000, -2000, 0], dtype="<i2").tobytes()
        mono = stereo_to_mono(pcm16_to_float(data, channels=2))
        assert mono.shape == (2,)
        assert mono[0] == pytest.approx(2000 / 32768.0)

    def test_resample_length(self):
        tone = np.sin(np.linspace(0, 100, 48000)).astype(np.float32)
        assert resample(tone, 48000, 16000).shape == (16000,)

    def test_to_linear16_resamples_to_16k(self):
        samples = (np.sin(np.linspace(0, 200, 48000)) * 8000).astype("<i2").tobytes()
        out = to_linear16(MediaBlob(samples, pcm_mime_type(48000, 1), 48000, 1))
        assert len(out) == 16000 * 2

    def test_to_linear16_rejects_containers(self):
        with pytest.raises(ValueError):
            to_linear16(MediaBlob(b"webm", "video/webm"))

    def test_wav_bytes_header(self):
        pcm = b"\x01\x00" * 100
        with wave.open(io.BytesIO(wav_bytes(pcm, 16000, 1)), "rb") as wf:
            assert wf.getframerate() == 16000
            assert wf.getnchannels() == 1
            assert wf.readframes(100) == pcm


class TestCamera:
    @staticmethod
    def fake_cv2(opened=True, frame_ok=True):
        cv2 = Mock(IMWRITE_JPEG_QUALITY=1)
        capture = cv2.VideoCapture.return_value
        capture.isOpened.return_value = opened
        capture.read.return_value = (frame_ok, "frame")
        cv2.imencode.return_value = (True, np.frombuffer(b"\xff\xd8jpeg", dtype=np.uint8))
        return cv2

    def test_read_jpeg_encodes_frame(self):
        cv2 = self.fake_cv2()
        track = OpenCVCameraTrack(cv2, cv2.VideoCapture(0), jpeg_quality=70)
        assert track.read_jpeg() == b"\xff\xd8jpeg"
        cv2.imencode.assert_called_once_with(".jpg", "frame", [1, 70])

    def test_missing_frame(self):
        cv2 = self.fake_cv2(frame_ok=False)
        assert OpenCVCameraTrack(cv2, cv2.VideoCapture(0)).read_jpeg() is None
        cv2.imencode.assert_not_called()

    def test_stop_releases_once(self):
        cv2 = self.fake_cv2()
        capture = cv2.VideoCapture(0)
        track = OpenCVCameraTrack(cv2, capture)
        track.stop()
        track.stop()
        capture.release.assert_called_once()
        assert track.read_jpeg() is None

    def test_open_camera(self, monkeypatch):
        cv2 = self.fake_cv2()
        monkeypatch.setitem(sys.modules, "cv2", cv2)
        track = open_camera(2)
        assert isinstance(track, OpenCVCameraTrack)
        assert track.kind == "video"
        cv2.VideoCapture.assert_called_with(2)

    def test_camera_that_will_not_open(self, monkeypatch):
        monkeypatch.setitem(sys.modules, "cv2", self.fake_cv2(opened=False))
        assert open_camera(0) is None

    def test_without_opencv(self, monkeypatch):
        monkeypatch.setitem(sys.modules, "cv2", None)
        assert open_camera(0) is None

    def test_handle_frames(self):
        microphone = Mock(stopped=False, kind="audio")
        audio_only = PyAudioMediaHandle(microphone, 16000, 1)
        assert not audio_only.attach_preview()
        assert audio_only.capture_frame() is None
        assert audio_only.tracks == [microphone]

        cv2 = self.fake_cv2()
        camera = OpenCVCameraTrack(cv2, cv2.VideoCapture(0))
        handle = PyAudioMediaHandle(microphone, 16000, 1, camera)
        assert handle.attach_preview()
        assert handle.tracks == [microphone, camera]
        assert handle.capture_frame() == b"\xff\xd8jpeg"

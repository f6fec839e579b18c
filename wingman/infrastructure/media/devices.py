"""
PyAudio microphone backend for headless sessions.

The backend records raw PCM16 and hands it to the capture controller in
timeslice-sized chunks, the same contract a browser MediaRecorder follows.
When OpenCV can open a camera, the handle also carries a video track used
for preview stills. Without one the session records audio only.
"""
import logging
import threading
from typing import Callable, List, Optional

from ...config import CAMERA_INDEX, CHANNELS, FRAME_JPEG_QUALITY, SAMPLE_RATE_CAPTURE
from ...interview.errors import DeviceAccessError
from ...utils import with_suppressed_audio_warnings

logger = logging.getLogger("media_devices")

# PyAudio and OpenCV are imported lazily when a device is opened.
# This avoids dependency issues on machines without audio or video hardware.


def pcm_mime_type(sample_rate: int, channels: int) -> str:
    return f"audio/l16;rate={sample_rate};channels={channels}"


class PyAudioTrack:
    """Microphone track wrapping one PyAudio input stream."""
    kind = "audio"

    def __init__(self, pa, stream):
        self._pa = pa
        self._stream = stream
        self._lock = threading.Lock()
        self.stopped = False

    def read(self, frames: int) -> bytes:
        with self._lock:
            if self.stopped:
                return b""
            return self._stream.read(frames, exception_on_overflow=False)

    def stop(self) -> None:
        with self._lock:
            if self.stopped:
                return
            self.stopped = True
            try:
                self._stream.stop_stream()
                self._stream.close()
            finally:
                self._pa.terminate()
        logger.info("Microphone track stopped")


class OpenCVCameraTrack:
    """Camera track; stills are read on demand for live frame analysis."""
    kind = "video"

    def __init__(self, cv2, capture, jpeg_quality: int = FRAME_JPEG_QUALITY):
        self._cv2 = cv2
        self._capture = capture
        self._jpeg_quality = jpeg_quality
        self._lock = threading.Lock()
        self.stopped = False

    def read_jpeg(self) -> Optional[bytes]:
        with self._lock:
            if self.stopped:
                return None
            ret, frame = self._capture.read()
        if not ret:
            logger.warning("Camera returned no frame")
            return None
        ok, buffer = self._cv2.imencode(".jpg", frame, [int(self._cv2.IMWRITE_JPEG_QUALITY), self._jpeg_quality])
        return buffer.tobytes() if ok else None

    def stop(self) -> None:
        with self._lock:
            if self.stopped:
                return
            self.stopped = True
            self._capture.release()
        logger.info("Camera track stopped")


def open_camera(index: int) -> Optional[OpenCVCameraTrack]:
    """Open a camera through OpenCV, or return None so the session records audio only."""
    try:
        import cv2
    except ImportError:
        logger.warning("OpenCV is not installed; recording without camera")
        return None

    capture = cv2.VideoCapture(index)
    if capture is None or not capture.isOpened():
        logger.warning("Unable to open camera %d; recording audio only", index)
        return None
    logger.info("Opened camera %d", index)
    return OpenCVCameraTrack(cv2, capture)


class TimesliceRecorder:
    """Reads the track on a worker thread and emits one chunk per timeslice."""

    def __init__(self, track: PyAudioTrack, on_data: Callable[[bytes], None],
                 sample_rate: int, channels: int):
        self._track = track
        self._on_data = on_data
        self._sample_rate = sample_rate
        self._channels = channels
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._pending: List[bytes] = []

    def start(self, timeslice_ms: int) -> None:
        frames_per_slice = max(1, int(self._sample_rate * timeslice_ms / 1000))
        # Small reads keep stop() responsive; chunks are flushed once per slice
        read_frames = max(1, frames_per_slice // 10)
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, args=(frames_per_slice, read_frames),
            name="timeslice-recorder", daemon=True,
        )
        self._thread.start()

    def _run(self, frames_per_slice: int, read_frames: int) -> None:
        bytes_per_slice = frames_per_slice * self._channels * 2
        buffered = 0
        while not self._stop.is_set():
            try:
                data = self._track.read(read_frames)
            except OSError as e:
                logger.error("Microphone read failed: %s", e)
                break
            if not data:
                break
            self._pending.append(data)
            buffered += len(data)
            if buffered >= bytes_per_slice:
                self._flush()
                buffered = 0

    def _flush(self) -> None:
        if self._pending:
            chunk = b"".join(self._pending)
            self._pending = []
            self._on_data(chunk)

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None
        self._flush()


class PyAudioMediaHandle:
    """Media handle over one PyAudio microphone stream and an optional camera."""

    def __init__(self, track: PyAudioTrack, sample_rate: int, channels: int,
                 camera: Optional[OpenCVCameraTrack] = None):
        self._track = track
        self._camera = camera
        self.sample_rate = sample_rate
        self.channels = channels
        self.mime_type = pcm_mime_type(sample_rate, channels)

    @property
    def tracks(self):
        return [self._track] + ([self._camera] if self._camera else [])

    @property
    def active(self) -> bool:
        return not self._track.stopped

    def attach_preview(self) -> bool:
        return self._camera is not None

    def create_recorder(self, on_data: Callable[[bytes], None]) -> TimesliceRecorder:
        return TimesliceRecorder(self._track, on_data, self.sample_rate, self.channels)

    def capture_frame(self) -> Optional[bytes]:
        if self._camera is None:
            return None
        return self._camera.read_jpeg()


class PyAudioMediaDevices:
    """Opens the default (or a chosen) input device through PyAudio, plus a camera when asked."""

    def __init__(self, input_device: Optional[int] = None,
                 sample_rate: int = SAMPLE_RATE_CAPTURE,
                 channels: int = CHANNELS,
                 camera_index: int = CAMERA_INDEX):
        self.input_device = input_device
        self.sample_rate = sample_rate
        self.channels = channels
        self.camera_index = camera_index

    @with_suppressed_audio_warnings
    def open(self, video: bool = True, audio: bool = True) -> PyAudioMediaHandle:
        if not audio:
            raise DeviceAccessError("PyAudio backend can only record audio")

        try:
            import pyaudio
        except ImportError as e:
            raise DeviceAccessError(f"PyAudio is not installed: {e}")

        pa = pyaudio.PyAudio()
        try:
            stream = pa.open(
                format=pyaudio.paInt16,
                channels=self.channels,
                rate=self.sample_rate,
                input=True,
                input_device_index=self.input_device,
                frames_per_buffer=int(self.sample_rate / 10),
            )
        except (OSError, ValueError) as e:
            pa.terminate()
            raise DeviceAccessError(f"Could not open microphone: {e}")

        logger.info("Opened microphone device=%s rate=%d channels=%d",
                    self.input_device, self.sample_rate, self.channels)
        camera = open_camera(self.camera_index) if video else None
        return PyAudioMediaHandle(PyAudioTrack(pa, stream), self.sample_rate, self.channels, camera)

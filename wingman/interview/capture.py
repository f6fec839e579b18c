"""
Media capture controller: device acquisition and the single session recording.
"""
import logging
import threading
from typing import List, Optional

from ..config import RECORDER_TIMESLICE_MS
from .errors import AlreadyFinalizedError, DeviceAccessError, RecordingStartError
from .models import MediaBlob
from .schemas import RecordingState
from .services import MediaDevices, MediaHandle, MediaRecorder

logger = logging.getLogger("media_capture")


class MediaCaptureController:
    """
    Owns the camera/microphone handle and the continuous recording.

    The recorder appends one chunk per timeslice from its own thread, so
    the chunk buffer is guarded by a lock and snapshots copy the chunk list
    before joining it.
    """

    def __init__(self, devices: MediaDevices, timeslice_ms: int = RECORDER_TIMESLICE_MS):
        self.devices = devices
        self.timeslice_ms = timeslice_ms
        self.handle: Optional[MediaHandle] = None
        self.state = RecordingState.IDLE
        self.preview_attached = False
        self._recorder: Optional[MediaRecorder] = None
        self._chunks: List[bytes] = []
        self._lock = threading.Lock()
        self._final_blob: Optional[MediaBlob] = None
        self.released = False

    @property
    def is_recording(self) -> bool:
        return self.state is RecordingState.RECORDING

    @property
    def chunk_count(self) -> int:
        with self._lock:
            return len(self._chunks)

    def acquire_devices(self) -> MediaHandle:
        """
        Request camera and microphone access.

        Raises:
            DeviceAccessError: Permission denied or device missing
        """
        if self.handle is not None and self.handle.active:
            return self.handle

        try:
            handle = self.devices.open(video=True, audio=True)
        except DeviceAccessError:
            logger.error("Media device access denied")
            raise
        except OSError as e:
            logger.error("Media device access failed: %s", e)
            raise DeviceAccessError(str(e))

        self.handle = handle
        self.released = False
        self.preview_attached = bool(handle.attach_preview())
        logger.info("Media devices acquired (%d tracks, preview=%s)",
                    len(handle.tracks), self.preview_attached)
        return handle

    def start_continuous_recording(self, handle: Optional[MediaHandle] = None) -> None:
        """
        Begin the session recording.

        Raises:
            RecordingStartError: No active handle, or a recording already exists
        """
        handle = handle or self.handle
        if handle is None or not handle.active:
            raise RecordingStartError("No active media handle")
        if self.state is RecordingState.RECORDING:
            raise RecordingStartError("A recording is already in progress")
        if self.state is RecordingState.FINALIZED:
            raise RecordingStartError("The session recording was already finalized")

        with self._lock:
            self._chunks = []
        self.handle = handle
        self._recorder = handle.create_recorder(self._on_chunk)
        self._recorder.start(self.timeslice_ms)
        self.state = RecordingState.RECORDING
        logger.info("Continuous recording started (%s, %d ms slices)",
                    handle.mime_type, self.timeslice_ms)

    def _on_chunk(self, data: bytes) -> None:
        if not data:
            return
        with self._lock:
            self._chunks.append(data)

    def _blob_from(self, chunks: List[bytes]) -> MediaBlob:
        handle = self.handle
        return MediaBlob(
            data=b"".join(chunks),
            mime_type=handle.mime_type,
            sample_rate=handle.sample_rate,
            channels=handle.channels,
        )

    def snapshot_current_buffer(self) -> MediaBlob:
        """Immutable copy of everything recorded so far. Recording continues."""
        if self.state is RecordingState.IDLE or self.handle is None:
            raise RecordingStartError("No recording to snapshot")
        if self.state is RecordingState.FINALIZED:
            return self._final_blob

        with self._lock:
            chunks = list(self._chunks)
        blob = self._blob_from(chunks)
        logger.debug("Snapshot of %d chunks (%d bytes)", len(chunks), blob.size)
        return blob

    def finalize_recording(self) -> MediaBlob:
        """
        Stop the recorder and return the complete recording.

        Raises:
            AlreadyFinalizedError: Called a second time
            RecordingStartError: Recording was never started
        """
        if self.state is RecordingState.FINALIZED:
            raise AlreadyFinalizedError("Recording already finalized")
        if self.state is RecordingState.IDLE:
            raise RecordingStartError("Recording was never started")

        try:
            self._recorder.stop()
        finally:
            self.state = RecordingState.FINALIZED
            self._recorder = None
            with self._lock:
                chunks = list(self._chunks)
                self._chunks = []
            self._final_blob = self._blob_from(chunks)

        logger.info("Recording finalized: %d chunks, %d bytes",
                    len(chunks), self._final_blob.size)
        return self._final_blob

    def release_devices(self) -> None:
        """Stop every track. Safe to call any number of times."""
        handle = self.handle
        if handle is None or self.released:
            return
        self.released = True
        if self.state is RecordingState.RECORDING:
            # Keep what was recorded; a later finalize_recording() is a second finalize
            try:
                self.finalize_recording()
            except Exception as e:
                logger.warning("Error stopping recorder during release: %s", e)
        for track in handle.tracks:
            try:
                track.stop()
            except Exception as e:
                logger.warning("Error stopping %s track: %s", getattr(track, "kind", "media"), e)
        logger.info("Media devices released")

"""
Upload of the finalized recording and analysis dispatch with retry.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from ..config import (
    ANALYSIS_MAX_ATTEMPTS, ANALYSIS_RETRY_BASE_DELAY_S, ANALYSIS_RETRY_MAX_DELAY_S,
    CONTINUOUS_SEGMENT_INDEX,
)
from ..infrastructure.media.processing import wav_bytes
from .clock import Clock, MonotonicClock
from .errors import UploadError
from .events import AnalysisTriggeredEvent, ErrorOccurredEvent, EventType, SessionEventBus
from .models import MediaBlob
from .services import AnalysisTrigger, ObjectStorage

logger = logging.getLogger("dispatch")

ProgressCallback = Callable[[str], None]


@dataclass
class DispatchResult:
    """Outcome of one trigger_analysis() call."""
    segment_index: int
    attempts: int
    succeeded: bool
    error: Optional[str] = None


def video_key(session_id: str, timestamp_ms: int, extension: str = "webm",
              segment_index: Optional[int] = None) -> str:
    """Storage key for a session's full recording, or for one answer segment."""
    part = "full" if segment_index is None else f"segment_{segment_index}"
    return f"interviews/{session_id}/{timestamp_ms}_interview_{session_id}_{part}.{extension}"


def upload_form(blob: MediaBlob) -> Tuple[MediaBlob, str]:
    """Raw PCM is wrapped in a WAV container before upload; containers pass through."""
    if blob.is_raw_pcm and blob.sample_rate:
        wav = MediaBlob(wav_bytes(blob.data, blob.sample_rate, blob.channels), "audio/wav",
                        blob.sample_rate, blob.channels)
        return wav, "wav"
    return blob, "webm"


def retry_delay(attempt: int, base_s: float = ANALYSIS_RETRY_BASE_DELAY_S,
                max_s: float = ANALYSIS_RETRY_MAX_DELAY_S) -> float:
    """Backoff before retry number ``attempt`` (1-based): base * 2**(attempt-1), capped."""
    return min(max_s, base_s * (2 ** (attempt - 1)))


class AnalysisDispatcher:
    """Uploads recordings and asks the analysis service to process each segment."""

    def __init__(self,
                 session_id: str,
                 storage: ObjectStorage,
                 trigger: AnalysisTrigger,
                 clock: Optional[Clock] = None,
                 event_bus: Optional[SessionEventBus] = None,
                 base_delay_s: float = ANALYSIS_RETRY_BASE_DELAY_S,
                 max_delay_s: float = ANALYSIS_RETRY_MAX_DELAY_S):
        self.session_id = session_id
        self.storage = storage
        self.trigger = trigger
        self.clock = clock or MonotonicClock()
        self.event_bus = event_bus or SessionEventBus()
        self.base_delay_s = base_delay_s
        self.max_delay_s = max_delay_s
        self.dispatched_segments = 0

    async def upload_finalized_video(self, blob: MediaBlob) -> str:
        """
        Upload the finalized recording.

        Returns:
            URI of the stored object

        Raises:
            UploadError: Storage rejected the upload. The caller still holds
                the blob and may retry; there is no automatic retry here.
        """
        if blob.size == 0:
            raise UploadError("Recording is empty")
        return await self._upload(blob)

    async def upload_segment(self, blob: MediaBlob, segment_index: int) -> str:
        """
        Upload one answer's recording as its own analysis segment.

        Raises:
            UploadError: Storage rejected the upload
        """
        if blob.size == 0:
            raise UploadError(f"Segment {segment_index} is empty")
        return await self._upload(blob, segment_index)

    async def _upload(self, blob: MediaBlob, segment_index: Optional[int] = None) -> str:
        payload, extension = upload_form(blob)
        key = video_key(self.session_id, int(time.time() * 1000), extension, segment_index)
        logger.info("Uploading %d bytes to %s", blob.size, key)
        try:
            uri = await asyncio.to_thread(self.storage.upload, payload, key)
        except UploadError as e:
            self._report_upload_failure(e)
            raise
        except Exception as e:
            self._report_upload_failure(e)
            raise UploadError(str(e)) from e

        logger.info("Upload complete: %s", uri)
        return uri

    def _report_upload_failure(self, error: Exception) -> None:
        logger.error("Video upload failed: %s", error)
        self.event_bus.emit(ErrorOccurredEvent(
            self.session_id, time.time(), type(error).__name__, str(error), "storage",
            event_type=EventType.UPLOAD_FAILED,
        ))

    async def trigger_analysis(self,
                               video_uri: str,
                               segment_index: int = CONTINUOUS_SEGMENT_INDEX,
                               max_attempts: int = ANALYSIS_MAX_ATTEMPTS,
                               on_progress: Optional[ProgressCallback] = None) -> DispatchResult:
        """
        Ask the analysis service to process one segment, retrying with
        exponential backoff. Never raises; exhaustion is logged and reported
        on the event bus.
        """
        last_error = None
        for attempt in range(1, max_attempts + 1):
            if on_progress:
                on_progress(f"Starting video analysis (attempt {attempt}/{max_attempts})...")
            try:
                await asyncio.to_thread(self.trigger.analyze, video_uri, self.session_id, segment_index)
            except Exception as e:
                last_error = e
                logger.warning("Analysis trigger attempt %d/%d failed: %s", attempt, max_attempts, e)
                if attempt < max_attempts:
                    delay = retry_delay(attempt, self.base_delay_s, self.max_delay_s)
                    if on_progress:
                        on_progress(f"Analysis request failed. Retrying in {delay:.0f}s...")
                    await self.clock.sleep(delay)
                continue

            self.dispatched_segments += 1
            logger.info("Analysis triggered for segment %d after %d attempt(s)", segment_index, attempt)
            self.event_bus.emit(AnalysisTriggeredEvent(
                self.session_id, time.time(), video_uri, segment_index, attempt,
            ))
            if on_progress:
                on_progress("Video analysis started. This may take a few minutes...")
            return DispatchResult(segment_index=segment_index, attempts=attempt, succeeded=True)

        message = str(last_error) if last_error else "no attempts made"
        logger.error("Analysis trigger gave up after %d attempts: %s", max_attempts, message)
        self.event_bus.emit(ErrorOccurredEvent(
            self.session_id, time.time(), type(last_error).__name__ if last_error else "RuntimeError",
            message, "analysis_trigger", event_type=EventType.ANALYSIS_DISPATCH_FAILED,
        ))
        if on_progress:
            on_progress("Video analysis could not be started.")
        return DispatchResult(segment_index=segment_index, attempts=max_attempts,
                              succeeded=False, error=message)

"""
Live frame analysis: samples the camera preview on an interval while the
session records and sends each still for vision analysis.
"""
import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from ..config import FRAME_SAMPLE_INTERVAL_S
from .clock import Clock, MonotonicClock
from .events import ErrorOccurredEvent, FrameAnalyzedEvent, SessionEventBus
from .services import FrameAnalyzer, MediaHandle

logger = logging.getLogger("frame_sampler")


class FrameSampler:
    """
    Captures one frame every ``interval_s`` and keeps the successful analyses.

    Failures on a single frame are logged and the sampler keeps going. A
    frame analysis already in flight is allowed to finish when the sampler
    is stopped.
    """

    def __init__(self,
                 session_id: str,
                 analyzer: FrameAnalyzer,
                 clock: Optional[Clock] = None,
                 interval_s: float = FRAME_SAMPLE_INTERVAL_S,
                 event_bus: Optional[SessionEventBus] = None):
        self.session_id = session_id
        self.analyzer = analyzer
        self.clock = clock or MonotonicClock()
        self.interval_s = interval_s
        self.event_bus = event_bus or SessionEventBus()
        self.frames: List[Dict[str, Any]] = []
        self._handle: Optional[MediaHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._stopping = False
        self._sampling = False

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self, handle: MediaHandle) -> None:
        if self._task is not None:
            return
        self._handle = handle
        self._stopping = False
        self._task = asyncio.ensure_future(self._run())
        logger.info("Frame analysis started (every %.0fs)", self.interval_s)

    async def _run(self) -> None:
        next_at = self.clock.now() + self.interval_s
        while not self._stopping:
            await self.clock.wait_until(next_at)
            if self._stopping:
                break
            await self.sample_once()
            next_at = self.clock.now() + self.interval_s

    async def sample_once(self) -> Optional[Dict[str, Any]]:
        """Capture and analyze one frame. Returns the stored record, or None."""
        handle = self._handle
        if handle is None or not handle.active:
            return None
        self._sampling = True
        try:
            image = await asyncio.to_thread(handle.capture_frame)
            if not image:
                return None
            result = await asyncio.to_thread(self.analyzer.analyze_frame, self.session_id, image)
        except Exception as e:
            logger.error("Frame analysis failed: %s", e)
            self.event_bus.emit(ErrorOccurredEvent(
                self.session_id, time.time(), type(e).__name__, str(e), "frame_analysis",
            ))
            return None
        finally:
            self._sampling = False

        if not isinstance(result, dict) or result.get("success") is False:
            logger.warning("Frame analysis returned no usable result")
            return None

        record = {"timestamp": int(time.time() * 1000), **result}
        self.frames.append(record)
        self.event_bus.emit(FrameAnalyzedEvent(self.session_id, time.time(), len(self.frames), len(image)))
        return record

    async def stop(self) -> None:
        """Stop sampling. Waits for a frame analysis in flight."""
        task, self._task = self._task, None
        if task is None:
            return
        self._stopping = True
        if not self._sampling:
            task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("Frame analysis stopped (%d frames analyzed)", len(self.frames))

    async def save(self) -> bool:
        """Persist the analyzed frames. Errors are logged, never raised."""
        if not self.frames:
            return False
        try:
            await asyncio.to_thread(self.analyzer.save_frames, self.session_id, list(self.frames))
        except Exception as e:
            logger.error("Failed to save %d analyzed frames: %s", len(self.frames), e)
            self.event_bus.emit(ErrorOccurredEvent(
                self.session_id, time.time(), type(e).__name__, str(e), "frame_analysis",
            ))
            return False
        logger.info("Saved %d analyzed frames", len(self.frames))
        return True

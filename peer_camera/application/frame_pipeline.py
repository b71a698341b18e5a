"""Producer side of preview streaming.

Raw frames are offered from the capture thread and transformed on a single
worker thread. Only the newest raw frame waits for the worker: offering a
frame while another one is pending replaces it. Finished frames land in a
single latest-value slot that the sender observes.
"""
import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from peer_camera.common.logger import setup_logger
from peer_camera.common.observable import MutableObservable, Observable
from peer_camera.domain.camera import RawFrame

logger = setup_logger("FramePipeline")

FrameTransform = Callable[[RawFrame], Optional[bytes]]

_LOG_EVERY = 50


class FramePipeline:
    def __init__(self, transform: FrameTransform, executor: Optional[ThreadPoolExecutor] = None):
        self._transform = transform
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="frame-pipeline")
        self._owns_executor = executor is None

        self._lock = threading.Lock()
        self._pending: Optional[RawFrame] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None

        self._latest: MutableObservable[Optional[bytes]] = MutableObservable(None)
        self.frames_offered = 0
        self.frames_dropped = 0
        self.frames_produced = 0

    @property
    def latest_frame(self) -> Observable[Optional[bytes]]:
        return self._latest

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="frame-pipeline")
        logger.info("Preview pipeline started")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        with self._lock:
            self._pending = None
        self._latest.set(None)
        self.frames_offered = self.frames_dropped = self.frames_produced = 0
        logger.info("Preview pipeline stopped")

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    def offer(self, frame: RawFrame) -> None:
        """Hand over a raw frame. Never blocks; safe from any thread."""
        if self._loop is None or self._wakeup is None:
            return
        with self._lock:
            if self._pending is not None:
                self.frames_dropped += 1
            self._pending = frame
            self.frames_offered += 1
        try:
            self._loop.call_soon_threadsafe(self._wakeup.set)
        except RuntimeError:
            # loop already closed during shutdown
            pass

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            with self._lock:
                frame, self._pending = self._pending, None
            if frame is None:
                continue

            jpeg = await loop.run_in_executor(self._executor, self._safe_transform, frame)
            if jpeg is None:
                continue

            self.frames_produced += 1
            self._latest.set(jpeg)
            if self.frames_produced % _LOG_EVERY == 1:
                logger.debug(
                    f"Frame #{self.frames_produced} encoded ({len(jpeg)} bytes, "
                    f"{self.frames_dropped} dropped so far)"
                )

    def _safe_transform(self, frame: RawFrame) -> Optional[bytes]:
        try:
            return self._transform(frame)
        except Exception as e:
            logger.warning(f"Skipping frame: {e}")
            return None

"""
Stream receiver attached to the controller's stream notifications.
"""
import asyncio
import logging
import time
from typing import List, Optional, Set, Tuple

from aiortc.contrib.media import MediaRecorder, MediaRelay
from aiortc.mediastreams import MediaStreamError, MediaStreamTrack
from av import VideoFrame

from sharecast.media.notifications import StreamAvailable, StreamNotification
from sharecast.media.stream import RemoteMediaStream

logger = logging.getLogger(__name__)


class StreamReceiver:
    """
    Consumes the remote video track while a stream is available and
    optionally records every track to a file.

    Register ``on_notification`` as a controller subscriber.
    """
    def __init__(self, record_path: Optional[str] = None, frame_timeout: float = 2.0):
        self.record_path = record_path
        self.frame_timeout = frame_timeout

        self.stream: Optional[RemoteMediaStream] = None
        self.frame_count = 0
        self.frame_size: Optional[Tuple[int, int]] = None
        self.last_frame_at: Optional[float] = None

        self._relay = MediaRelay()
        self._relayed: List[MediaStreamTrack] = []
        self._recorder: Optional[MediaRecorder] = None
        self._task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    @property
    def attached(self) -> bool:
        return self.stream is not None

    def on_notification(self, notification: StreamNotification) -> None:
        task = asyncio.create_task(self.apply(notification))
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Error applying stream notification: {error}", exc_info=error)

    async def apply(self, notification: StreamNotification) -> None:
        async with self._lock:
            if isinstance(notification, StreamAvailable):
                await self._attach(notification.stream)
            else:
                await self._detach()

    async def _attach(self, stream: RemoteMediaStream) -> None:
        if self.stream is stream:
            return
        await self._detach()

        self.stream = stream
        self.frame_count = 0
        self.frame_size = None

        if self.record_path:
            self._recorder = MediaRecorder(self.record_path)
            for track in stream.tracks:
                self._recorder.addTrack(self._subscribe(track))
            await self._recorder.start()
            logger.info(f"Recording stream {stream.stream_id} to {self.record_path}")

        video = stream.get_track("video")
        if video is not None:
            self._task = asyncio.create_task(self._consume(self._subscribe(video)))
        logger.info(f"Remote stream {stream.stream_id} attached")

    async def _detach(self) -> None:
        if self.stream is None:
            return

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._recorder is not None:
            try:
                await self._recorder.stop()
            except Exception as e:
                logger.warning(f"Error stopping recorder: {e}")
            self._recorder = None

        for track in self._relayed:
            track.stop()
        self._relayed = []

        logger.info(f"Remote stream {self.stream.stream_id} detached after {self.frame_count} frames")
        self.stream = None

    async def close(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        async with self._lock:
            await self._detach()

    def _subscribe(self, track):
        relayed = self._relay.subscribe(track)
        self._relayed.append(relayed)
        return relayed

    async def _consume(self, track) -> None:
        while True:
            try:
                frame: VideoFrame = await asyncio.wait_for(track.recv(), timeout=self.frame_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"No frames received for {self.frame_timeout}s")
                continue
            except MediaStreamError:
                logger.info("Remote video track ended")
                return

            self.frame_count += 1
            self.frame_size = (frame.width, frame.height)
            self.last_frame_at = time.time()

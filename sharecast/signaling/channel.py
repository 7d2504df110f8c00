"""
Signaling channel to the remote screen-share server.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from sharecast.exceptions import MalformedMessageError, TransportError
from sharecast.schemas import SignalingMessage
from sharecast.signaling.codec import decode_message, encode_message
from sharecast.signaling.events import (
    ChannelClosed,
    ChannelFailed,
    ChannelMessage,
    ChannelOpened,
    EngineEvent,
)

logger = logging.getLogger(__name__)

EventSink = Callable[[EngineEvent], None]


class SignalingChannel(ABC):
    """
    Bidirectional message transport.

    Lifecycle and inbound messages are reported by posting events to the sink
    handed over at construction; nothing is ever called back reentrantly.
    """

    @property
    @abstractmethod
    def is_open(self) -> bool:
        ...

    @abstractmethod
    def open(self, endpoint: str) -> None:
        """Start connecting. Completion or failure arrives as an event."""

    @abstractmethod
    def send(self, message: SignalingMessage) -> bool:
        """Queue a message for sending. Returns False if the channel is not open."""

    @abstractmethod
    async def close(self) -> None:
        """Close the channel. Closing twice is a no-op."""


class WebSocketSignalingChannel(SignalingChannel):
    """SignalingChannel over a text WebSocket."""

    def __init__(self, post: EventSink, raw_sdp: bool = True, open_timeout: float = 10.0):
        self._post = post
        self.raw_sdp = raw_sdp
        self.open_timeout = open_timeout

        self._ws = None
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._reader_task: Optional[asyncio.Task] = None
        self._writer_task: Optional[asyncio.Task] = None
        self._opened = False
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._opened and not self._closed

    def open(self, endpoint: str) -> None:
        if self._reader_task is not None or self._closed:
            raise RuntimeError("Signaling channel can only be opened once")
        logger.info(f"Connecting to signaling server {endpoint}")
        self._reader_task = asyncio.create_task(self._run(endpoint))

    def send(self, message: SignalingMessage) -> bool:
        if not self.is_open:
            logger.debug(f"Signaling channel not open, cannot send {type(message).__name__}")
            return False
        self._outbox.put_nowait(encode_message(message, raw_sdp=self.raw_sdp))
        return True

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._opened = False

        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as e:
                logger.warning(f"Error closing signaling socket: {e}")

        for task in (self._writer_task, self._reader_task):
            if task and not task.done() and task is not asyncio.current_task():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        logger.info("Signaling channel closed")

    async def _run(self, endpoint: str) -> None:
        try:
            self._ws = await websockets.connect(endpoint, open_timeout=self.open_timeout)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            if not self._closed:
                self._post(ChannelFailed(TransportError(f"Failed to connect to {endpoint}: {e}")))
            return

        if self._closed:
            await self._ws.close()
            return

        logger.info("Signaling channel connected")
        self._opened = True
        self._writer_task = asyncio.create_task(self._write_loop())
        self._post(ChannelOpened())

        try:
            async for payload in self._ws:
                try:
                    message = decode_message(payload)
                except MalformedMessageError as e:
                    logger.warning(f"Dropping malformed signaling message: {e}")
                    continue
                self._post(ChannelMessage(message))
        except ConnectionClosed as e:
            self._opened = False
            if not self._closed:
                self._post(ChannelFailed(TransportError(f"Signaling connection lost: {e}")))
            return

        self._opened = False
        if not self._closed:
            self._post(ChannelClosed(code=self._ws.close_code, reason=self._ws.close_reason or ""))

    async def _write_loop(self) -> None:
        while True:
            text = await self._outbox.get()
            try:
                await self._ws.send(text)
            except ConnectionClosed:
                # The reader reports the closure
                return
            except Exception as e:
                logger.error(f"Error sending signaling message: {e}", exc_info=True)
                if not self._closed:
                    self._post(ChannelFailed(TransportError(f"Send failed: {e}")))
                return

"""
WebSocket utilities for stream notification consumers.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict

from fastapi import WebSocket

from sharecast.media.notifications import StreamAvailable, StreamNotification

logger = logging.getLogger(__name__)


class NotificationSocketHandler:
    """Handler for pushing stream notifications over a WebSocket."""

    @staticmethod
    def format_notification(notification: StreamNotification) -> Dict[str, Any]:
        """
        Convert a notification to its JSON message.

        Args:
            notification: StreamAvailable or StreamUnavailable

        Returns:
            Message dictionary
        """
        if isinstance(notification, StreamAvailable):
            stream = notification.stream
            return {
                "type": "stream-available",
                "stream_id": stream.stream_id,
                "tracks": stream.track_kinds,
                "timestamp": datetime.utcnow().isoformat(),
            }
        return {
            "type": "stream-unavailable",
            "reason": notification.reason,
            "timestamp": datetime.utcnow().isoformat(),
        }

    @staticmethod
    async def forward_notifications(websocket: WebSocket, publisher_subscribe):
        """
        Forward every notification to the socket until the client leaves.

        Args:
            websocket: Accepted WebSocket connection
            publisher_subscribe: ``subscribe`` callable of the session controller
        """
        queue: asyncio.Queue = asyncio.Queue()
        subscription = publisher_subscribe(queue.put_nowait)

        async def send_loop():
            while True:
                notification = await queue.get()
                await websocket.send_json(NotificationSocketHandler.format_notification(notification))

        async def receive_loop():
            # Returns once the client disconnects
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    return

        sender = asyncio.create_task(send_loop())
        receiver = asyncio.create_task(receive_loop())
        try:
            done, pending = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            for task in done:
                if task.exception() is not None:
                    logger.warning(f"Notification socket closed: {task.exception()}")
        finally:
            subscription.unsubscribe()

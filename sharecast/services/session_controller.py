"""
Session controller: the public entry point for one screen-share session.
"""
import logging
from typing import Optional

from sharecast.config import settings
from sharecast.media.notifications import StreamPublisher, Subscriber, Subscription
from sharecast.media.peer import create_peer_connection
from sharecast.media.session import Session
from sharecast.media.stream import RemoteMediaStream
from sharecast.schemas import SessionState
from sharecast.signaling.channel import WebSocketSignalingChannel
from sharecast.signaling.engine import ChannelFactory, NegotiationEngine, PeerFactory

logger = logging.getLogger(__name__)


def create_signaling_channel(post) -> WebSocketSignalingChannel:
    return WebSocketSignalingChannel(
        post,
        raw_sdp=settings.signaling_raw_sdp,
        open_timeout=settings.signaling_open_timeout,
    )


class SessionController:
    """
    Owns at most one live session at a time.

    ``start()`` and ``stop()`` are safe to call in any order and any number
    of times. Consumers follow the remote stream through ``subscribe()``.
    """

    def __init__(
        self,
        channel_factory: Optional[ChannelFactory] = None,
        peer_factory: Optional[PeerFactory] = None,
        endpoint: Optional[str] = None,
        offer_timeout: Optional[float] = None,
        connect_timeout: Optional[float] = None,
    ):
        """
        Initialize the controller.

        Args:
            channel_factory: Builds the signaling channel for each session
            peer_factory: Builds the peer connection for each session
            endpoint: Signaling server URL, defaults to ``settings.signaling_url``
            offer_timeout: Seconds to wait for an offer, 0 to wait forever
            connect_timeout: Seconds to wait for connectivity after answering, 0 to wait forever
        """
        self.endpoint = endpoint or settings.signaling_url
        self.offer_timeout = settings.offer_timeout_seconds if offer_timeout is None else offer_timeout
        self.connect_timeout = settings.connect_timeout_seconds if connect_timeout is None else connect_timeout

        self._channel_factory = channel_factory or create_signaling_channel
        self._peer_factory = peer_factory or create_peer_connection
        self._publisher = StreamPublisher()
        self._engine: Optional[NegotiationEngine] = None

    @property
    def session(self) -> Optional[Session]:
        return self._engine.session if self._engine else None

    @property
    def engine(self) -> Optional[NegotiationEngine]:
        return self._engine

    @property
    def state(self) -> SessionState:
        return self._engine.state if self._engine else SessionState.IDLE

    @property
    def is_active(self) -> bool:
        return self._engine is not None and not self._engine.closed

    @property
    def current_stream(self) -> Optional[RemoteMediaStream]:
        return self._publisher.current_stream

    async def start(self) -> None:
        """Begin a new session unless one is already active."""
        if self.is_active:
            logger.info(f"Session {self._engine.session.session_id} already active, ignoring start")
            return

        session = Session()
        self._engine = NegotiationEngine(
            session,
            channel_factory=self._channel_factory,
            peer_factory=self._peer_factory,
            notify=self._publisher.publish,
            endpoint=self.endpoint,
            offer_timeout=self.offer_timeout,
            connect_timeout=self.connect_timeout,
        )
        logger.info(f"Starting session {session.session_id} against {self.endpoint}")
        await self._engine.start()

    async def stop(self) -> None:
        """Close the current session, if any, and wait for its resources to be released."""
        if self._engine is None:
            return
        await self._engine.stop()

    def subscribe(self, callback: Subscriber) -> Subscription:
        """
        Follow the remote stream.

        Args:
            callback: Called with StreamAvailable / StreamUnavailable; receives
                the latest notification immediately if there is one

        Returns:
            Subscription handle
        """
        return self._publisher.subscribe(callback)

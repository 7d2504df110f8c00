"""
Negotiation engine.

Drives one answerer-side session through
``idle -> awaiting_offer -> negotiating -> connected -> closed``.

Every signaling and peer connection callback is posted onto one queue and
handled by a single consumer task, so handlers never interleave except at
their own awaits. After each await a handler re-checks whether the session
was closed in the meantime and drops its result if so.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional, Protocol, runtime_checkable

from sharecast.exceptions import (
    ConnectivityLost,
    NegotiationError,
    SessionError,
    SessionTimeoutError,
    TransportError,
)
from sharecast.media.notifications import StreamAvailable, StreamNotification, StreamUnavailable
from sharecast.media.session import Session
from sharecast.media.stream import RemoteMediaStream
from sharecast.schemas import (
    TERMINAL_CONNECTION_STATES,
    Candidate,
    ConnectionState,
    OfferRequest,
    SessionDescription,
    SessionState,
)
from sharecast.signaling.channel import SignalingChannel
from sharecast.signaling.events import (
    ChannelClosed,
    ChannelFailed,
    ChannelMessage,
    ChannelOpened,
    ConnectionStateChanged,
    EngineEvent,
    LocalCandidate,
    PhaseTimeout,
    RemoteTrack,
    StopRequested,
)

logger = logging.getLogger(__name__)

EventSink = Callable[[EngineEvent], None]
ChannelFactory = Callable[[EventSink], SignalingChannel]
PeerFactory = Callable[[EventSink], "PeerConnection"]


@runtime_checkable
class PeerConnection(Protocol):
    """What the engine needs from a peer connection."""

    @property
    def has_remote_description(self) -> bool:
        ...

    async def set_remote_description(self, description: SessionDescription) -> None:
        ...

    async def create_answer(self) -> SessionDescription:
        ...

    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        ...

    async def add_ice_candidate(self, candidate: Candidate) -> None:
        ...

    async def close(self) -> None:
        ...


class NegotiationEngine:
    """
    State machine for a single negotiation attempt.

    The channel is created up front; the peer connection is created lazily
    when the offer arrives, at most once. Both are closed exactly once on
    entry to ``closed``.
    """

    def __init__(
        self,
        session: Session,
        channel_factory: ChannelFactory,
        peer_factory: PeerFactory,
        notify: Callable[[StreamNotification], None],
        endpoint: str,
        offer_timeout: float = 0.0,
        connect_timeout: float = 0.0,
    ):
        self.session = session
        self.endpoint = endpoint
        self.offer_timeout = offer_timeout
        self.connect_timeout = connect_timeout

        self._queue: asyncio.Queue = asyncio.Queue()
        self._notify = notify
        self._peer_factory = peer_factory
        self.channel = channel_factory(self.post)
        self.peer: Optional[PeerConnection] = None

        self._stream: Optional[RemoteMediaStream] = None
        self._stream_published = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._run_task: Optional[asyncio.Task] = None
        self._teardown_task: Optional[asyncio.Task] = None
        self._closed_event = asyncio.Event()

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def closed(self) -> bool:
        return self.session.state is SessionState.CLOSED

    @property
    def stream(self) -> Optional[RemoteMediaStream]:
        return self._stream

    def post(self, event: EngineEvent) -> None:
        """Queue an event. Events posted after close are dropped."""
        if self.closed:
            logger.debug(f"Session {self.session.session_id}: dropping {type(event).__name__} after close")
            return
        self._queue.put_nowait(event)

    async def start(self) -> None:
        """Open the signaling channel and begin waiting for an offer."""
        if self.state is not SessionState.IDLE:
            return

        self._transition(SessionState.AWAITING_OFFER)
        self._run_task = asyncio.create_task(self._run())
        try:
            self.channel.open(self.endpoint)
        except Exception as e:
            logger.error(f"Failed to open signaling channel: {e}", exc_info=True)
            await self._close("transport failed", TransportError(str(e)))
            return
        self._arm_timer(self.offer_timeout, SessionState.AWAITING_OFFER)

    async def stop(self, reason: str = "stopped") -> None:
        """Close the session. Calling it again only waits for the first teardown."""
        await self._close(reason)

    async def wait_closed(self) -> None:
        await self._closed_event.wait()

    async def _run(self) -> None:
        while not self.closed:
            event = await self._queue.get()
            if self.closed:
                break
            try:
                await self.handle_event(event)
            except Exception as e:
                logger.error(f"Unexpected error handling {type(event).__name__}: {e}", exc_info=True)
                await self._close("internal error", SessionError(str(e)))

    async def handle_event(self, event: EngineEvent) -> None:
        """Apply one event to the state machine."""
        if self.closed:
            return

        if isinstance(event, ChannelOpened):
            self._on_channel_opened()
        elif isinstance(event, ChannelMessage):
            await self._on_message(event.message)
        elif isinstance(event, ChannelFailed):
            await self._close("transport failed", event.error)
        elif isinstance(event, ChannelClosed):
            await self._close(
                "transport closed",
                TransportError(f"Signaling channel closed (code={event.code}) {event.reason}".strip()),
            )
        elif isinstance(event, LocalCandidate):
            self._on_local_candidate(event.candidate)
        elif isinstance(event, RemoteTrack):
            self._on_remote_track(event.track)
        elif isinstance(event, ConnectionStateChanged):
            await self._on_connection_state(event.state)
        elif isinstance(event, PhaseTimeout):
            if event.phase is self.state:
                await self._close(
                    "timeout",
                    SessionTimeoutError(f"Timed out in state {event.phase.value}"),
                )
        elif isinstance(event, StopRequested):
            await self._close(event.reason)
        else:
            logger.warning(f"Ignoring unknown event {event!r}")

    def _on_channel_opened(self) -> None:
        if self.state is SessionState.AWAITING_OFFER:
            logger.info(f"Session {self.session.session_id}: requesting offer")
            self.channel.send(OfferRequest())
        self.session.candidates.flush_outbound_if_ready(self.channel)

    async def _on_message(self, message) -> None:
        if isinstance(message, Candidate):
            await self._on_remote_candidate(message)
        elif isinstance(message, SessionDescription):
            if message.type != "offer":
                logger.warning(f"Ignoring unexpected {message.type} description")
            elif self.state is not SessionState.AWAITING_OFFER:
                logger.warning(f"Ignoring offer received in state {self.state.value}")
            else:
                await self._accept_offer(message)
        elif isinstance(message, OfferRequest):
            logger.debug("Ignoring offer request from remote side")
        else:
            logger.warning(f"Ignoring unsupported signaling message {message!r}")

    async def _accept_offer(self, offer: SessionDescription) -> None:
        session = self.session
        logger.info(f"Session {session.session_id}: offer received")
        try:
            if self.peer is None:
                self.peer = self._peer_factory(self.post)

            await self.peer.set_remote_description(offer)
            if self.closed:
                return
            session.remote_description_set = True
            await session.candidates.flush_inbound_if_ready(self.peer)
            if self.closed:
                return

            answer = await self.peer.create_answer()
            if self.closed:
                return
            local = await self.peer.set_local_description(answer)
            if self.closed:
                return
            session.local_description_set = True
        except Exception as e:
            if self.closed:
                logger.debug(f"Discarding negotiation result after close: {e}")
                return
            logger.error(f"Negotiation failed for session {session.session_id}: {e}", exc_info=True)
            await self._close("negotiation failed", NegotiationError(str(e)))
            return

        if not self.channel.send(local):
            logger.warning(f"Session {session.session_id}: answer could not be sent")
        else:
            logger.info(f"Session {session.session_id}: answer sent")
        self._transition(SessionState.NEGOTIATING)
        self._arm_timer(self.connect_timeout, SessionState.NEGOTIATING)

    async def _on_remote_candidate(self, candidate: Candidate) -> None:
        if self.peer is None or not self.session.remote_description_set:
            self.session.candidates.enqueue_inbound(candidate)
            return
        try:
            await self.peer.add_ice_candidate(candidate)
        except Exception as e:
            if self.closed:
                return
            logger.error(f"Remote candidate rejected: {e}", exc_info=True)
            await self._close("negotiation failed", NegotiationError(f"Candidate rejected: {e}"))

    def _on_local_candidate(self, candidate: Candidate) -> None:
        buffer = self.session.candidates
        if buffer.outbound or not self.channel.send(candidate):
            buffer.enqueue_outbound(candidate)
            buffer.flush_outbound_if_ready(self.channel)

    def _on_remote_track(self, track) -> None:
        if self._stream is None:
            self._stream = RemoteMediaStream()
        self._stream.add_track(track)
        logger.info(f"Session {self.session.session_id}: remote {getattr(track, 'kind', 'unknown')} track")
        self._publish_stream()

    async def _on_connection_state(self, state: ConnectionState) -> None:
        if state is ConnectionState.CONNECTED:
            if self.state is SessionState.NEGOTIATING:
                self._cancel_timer()
                self._transition(SessionState.CONNECTED)
                self._publish_stream()
        elif state in TERMINAL_CONNECTION_STATES:
            if self.state in (SessionState.NEGOTIATING, SessionState.CONNECTED):
                await self._close("connectivity lost", ConnectivityLost(f"Peer connection {state.value}"))
        else:
            logger.debug(f"Connection state {state.value} in {self.state.value}")

    def _publish_stream(self) -> None:
        if self._stream_published or self.state is not SessionState.CONNECTED:
            return
        if self._stream is None or not self._stream.tracks:
            return
        self._stream_published = True
        logger.info(f"Session {self.session.session_id}: stream available {self._stream!r}")
        self._notify(StreamAvailable(self._stream))

    def _transition(self, new_state: SessionState) -> None:
        old_state = self.session.state
        self.session.state = new_state
        logger.info(f"Session {self.session.session_id}: {old_state.value} -> {new_state.value}")

    def _arm_timer(self, seconds: float, phase: SessionState) -> None:
        self._cancel_timer()
        if seconds and seconds > 0:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(seconds, self.post, PhaseTimeout(phase))

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _close(self, reason: str, error: Optional[Exception] = None) -> None:
        if self._teardown_task is None:
            session = self.session
            if error is not None:
                logger.warning(f"Session {session.session_id} closing: {reason}: {error}")
            session.close_reason = reason
            session.error = error
            session.closed_at = datetime.utcnow()
            self._transition(SessionState.CLOSED)
            self._cancel_timer()
            # Wake the consumer so it can exit
            self._queue.put_nowait(StopRequested(reason))
            self._teardown_task = asyncio.create_task(self._release(reason))
        await asyncio.shield(self._teardown_task)

    async def _release(self, reason: str) -> None:
        self.session.candidates.clear()
        try:
            self._notify(StreamUnavailable(reason))
        except Exception as e:
            logger.error(f"Stream unavailable notification failed: {e}", exc_info=True)
        self._stream = None

        try:
            await self.channel.close()
        except Exception as e:
            logger.warning(f"Error closing signaling channel: {e}")
        if self.peer is not None:
            try:
                await self.peer.close()
            except Exception as e:
                logger.warning(f"Error closing peer connection: {e}")

        logger.info(f"Session {self.session.session_id} released ({reason})")
        self._closed_event.set()

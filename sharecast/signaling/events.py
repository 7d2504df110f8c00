"""
Events consumed by the negotiation engine.

Signaling channel callbacks, peer connection callbacks, timers and stop
requests are all posted as one of these onto a single queue.
"""
from dataclasses import dataclass
from typing import Any, Optional, Union

from sharecast.schemas import Candidate, ConnectionState, SessionState, SignalingMessage


@dataclass(frozen=True)
class ChannelOpened:
    pass


@dataclass(frozen=True)
class ChannelMessage:
    message: SignalingMessage


@dataclass(frozen=True)
class ChannelFailed:
    error: Exception


@dataclass(frozen=True)
class ChannelClosed:
    code: Optional[int] = None
    reason: str = ""


@dataclass(frozen=True)
class LocalCandidate:
    """A candidate gathered by the local peer connection."""
    candidate: Candidate


@dataclass(frozen=True)
class RemoteTrack:
    """A remote media track surfaced by the peer connection."""
    track: Any


@dataclass(frozen=True)
class ConnectionStateChanged:
    state: ConnectionState


@dataclass(frozen=True)
class PhaseTimeout:
    """A bounded wait expired while the engine was in ``phase``."""
    phase: SessionState


@dataclass(frozen=True)
class StopRequested:
    reason: str = "stopped"


EngineEvent = Union[
    ChannelOpened,
    ChannelMessage,
    ChannelFailed,
    ChannelClosed,
    LocalCandidate,
    RemoteTrack,
    ConnectionStateChanged,
    PhaseTimeout,
    StopRequested,
]

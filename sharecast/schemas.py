"""
Pydantic schemas for signaling messages and API responses.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional, Union
from datetime import datetime
from enum import Enum


# Enums
class SessionState(str, Enum):
    """Lifecycle states of a negotiation attempt."""
    IDLE = "idle"
    AWAITING_OFFER = "awaiting_offer"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    CLOSED = "closed"


class ConnectionState(str, Enum):
    """Aggregate connection state reported by the peer connection."""
    NEW = "new"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"


TERMINAL_CONNECTION_STATES = frozenset({
    ConnectionState.DISCONNECTED,
    ConnectionState.FAILED,
    ConnectionState.CLOSED,
})


# Signaling Schemas
class OfferRequest(BaseModel):
    """Asks the remote side to send an offer. Carries no payload."""


class SessionDescription(BaseModel):
    """An SDP offer or answer."""
    type: Literal["offer", "answer"]
    sdp: str


class Candidate(BaseModel):
    """A trickled ICE candidate."""
    model_config = ConfigDict(populate_by_name=True)

    candidate: str
    sdp_mid: Optional[str] = Field(default=None, alias="sdpMid")
    sdp_mline_index: Optional[int] = Field(default=None, alias="sdpMLineIndex")


SignalingMessage = Union[OfferRequest, SessionDescription, Candidate]


# API Schemas
class SessionStatusResponse(BaseModel):
    """Snapshot of the controller's current session."""
    state: SessionState
    session_id: Optional[str] = None
    stream_available: bool = False
    stream_id: Optional[str] = None
    track_kinds: List[str] = Field(default_factory=list)
    close_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

"""
Shared fixtures: in-memory signaling channel and peer connection.
"""
import asyncio
from typing import List, Optional

import pytest

from sharecast.schemas import Candidate, ConnectionState, SessionDescription
from sharecast.signaling.events import ChannelClosed, ChannelOpened, ChannelMessage, ConnectionStateChanged, RemoteTrack

OFFER_SDP = "v=0\r\no=- 1 2 IN IP4 127.0.0.1\r\ns=-\r\nt=0 0\r\nm=video 9 UDP/TLS/RTP/SAVPF 96\r\n"
ANSWER_SDP = "v=0\r\no=- 3 4 IN IP4 127.0.0.1\r\ns=-\r\nt=0 0\r\nm=video 9 UDP/TLS/RTP/SAVPF 96\r\n"


class FakeChannel:
    """Signaling channel that records what it is asked to do."""

    def __init__(self, post):
        self.post = post
        self.is_open = False
        self.endpoint: Optional[str] = None
        self.sent: list = []
        self.close_calls = 0
        self.fail_open = False

    def open(self, endpoint: str) -> None:
        if self.fail_open:
            raise OSError("connection refused")
        self.endpoint = endpoint

    def send(self, message) -> bool:
        if not self.is_open:
            return False
        self.sent.append(message)
        return True

    async def close(self) -> None:
        self.close_calls += 1
        self.is_open = False

    # Test drivers
    def remote_opens(self) -> None:
        self.is_open = True
        self.post(ChannelOpened())

    def remote_sends(self, message) -> None:
        self.post(ChannelMessage(message))

    def remote_closes(self) -> None:
        self.is_open = False
        self.post(ChannelClosed(code=1006, reason="gone"))


class FakePeer:
    """Peer connection with scripted failures and an optional gate on the remote description."""

    def __init__(self, post, fail_set_remote=False, reject_candidates=False, gate: Optional[asyncio.Event] = None):
        self.post = post
        self.fail_set_remote = fail_set_remote
        self.reject_candidates = reject_candidates
        self.gate = gate
        self.remote_description: Optional[SessionDescription] = None
        self.local_description: Optional[SessionDescription] = None
        self.added_candidates: List[Candidate] = []
        self.close_calls = 0

    @property
    def has_remote_description(self) -> bool:
        return self.remote_description is not None

    async def set_remote_description(self, description: SessionDescription) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_set_remote:
            raise ValueError("bad offer")
        self.remote_description = description

    async def create_answer(self) -> SessionDescription:
        return SessionDescription(type="answer", sdp=ANSWER_SDP)

    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        self.local_description = description
        return description

    async def add_ice_candidate(self, candidate: Candidate) -> None:
        if self.reject_candidates:
            raise ValueError("bad candidate")
        self.added_candidates.append(candidate)

    async def close(self) -> None:
        self.close_calls += 1

    # Test drivers
    def emit_track(self, track) -> None:
        self.post(RemoteTrack(track))

    def emit_state(self, state: ConnectionState) -> None:
        self.post(ConnectionStateChanged(state))


class FakeTrack:
    def __init__(self, kind: str = "video"):
        self.kind = kind


class Harness:
    """Factories that keep every channel and peer they build."""

    def __init__(self):
        self.channels: List[FakeChannel] = []
        self.peers: List[FakePeer] = []
        self.peer_options: dict = {}
        self.fail_open = False

    def channel_factory(self, post) -> FakeChannel:
        channel = FakeChannel(post)
        channel.fail_open = self.fail_open
        self.channels.append(channel)
        return channel

    def peer_factory(self, post) -> FakePeer:
        peer = FakePeer(post, **self.peer_options)
        self.peers.append(peer)
        return peer

    @property
    def channel(self) -> FakeChannel:
        return self.channels[-1]

    @property
    def peer(self) -> FakePeer:
        return self.peers[-1]


async def drain(rounds: int = 20) -> None:
    """Let the engine's consumer task work through its queue."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_candidate(n: int) -> Candidate:
    return Candidate(
        candidate=f"candidate:{n} 1 udp 2122260223 192.168.1.{n} 5000{n} typ host",
        sdp_mid="0",
        sdp_mline_index=0,
    )


@pytest.fixture
def harness() -> Harness:
    return Harness()


@pytest.fixture
def notifications() -> list:
    return []

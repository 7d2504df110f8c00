"""
Negotiation engine state machine tests.
"""
import asyncio

import pytest

from conftest import OFFER_SDP, FakeTrack, drain, make_candidate
from sharecast.exceptions import ConnectivityLost, NegotiationError, SessionTimeoutError, TransportError
from sharecast.media.notifications import StreamAvailable, StreamUnavailable
from sharecast.media.session import Session
from sharecast.schemas import ConnectionState, OfferRequest, SessionDescription, SessionState
from sharecast.signaling.engine import NegotiationEngine, PeerConnection
from sharecast.signaling.events import ChannelFailed, LocalCandidate, RemoteTrack

ENDPOINT = "ws://signaling.test/ws"


def make_engine(harness, notifications, **kwargs) -> NegotiationEngine:
    return NegotiationEngine(
        Session(),
        channel_factory=harness.channel_factory,
        peer_factory=harness.peer_factory,
        notify=notifications.append,
        endpoint=ENDPOINT,
        **kwargs,
    )


async def negotiate(engine, harness):
    await engine.start()
    harness.channel.remote_opens()
    harness.channel.remote_sends(SessionDescription(type="offer", sdp=OFFER_SDP))
    await drain()


async def connect(engine, harness, track=None):
    await negotiate(engine, harness)
    harness.peer.emit_track(track or FakeTrack("video"))
    harness.peer.emit_state(ConnectionState.CONNECTED)
    await drain()


def unavailable_count(notifications) -> int:
    return sum(1 for n in notifications if isinstance(n, StreamUnavailable))


async def test_start_opens_channel_and_requests_offer(harness, notifications):
    """Opening the channel sends the offer request"""
    engine = make_engine(harness, notifications)
    assert engine.state is SessionState.IDLE

    await engine.start()
    assert engine.state is SessionState.AWAITING_OFFER
    assert harness.channel.endpoint == ENDPOINT
    assert harness.peers == []

    harness.channel.remote_opens()
    await drain()
    assert harness.channel.sent == [OfferRequest()]

    await engine.stop()


async def test_offer_produces_answer_and_negotiating_state(harness, notifications):
    """Offer in, answer out, state negotiating"""
    engine = make_engine(harness, notifications)
    await negotiate(engine, harness)

    peer = harness.peer
    assert peer.remote_description == SessionDescription(type="offer", sdp=OFFER_SDP)
    answer = harness.channel.sent[-1]
    assert isinstance(answer, SessionDescription)
    assert answer.type == "answer"
    assert answer.sdp.startswith("v=0")
    assert engine.state is SessionState.NEGOTIATING
    assert engine.session.remote_description_set
    assert engine.session.local_description_set

    await engine.stop()


async def test_peer_connection_created_once(harness, notifications):
    """A second offer does not create another peer connection"""
    engine = make_engine(harness, notifications)
    await negotiate(engine, harness)

    harness.channel.remote_sends(SessionDescription(type="offer", sdp=OFFER_SDP))
    await drain()

    assert len(harness.peers) == 1
    assert engine.state is SessionState.NEGOTIATING
    await engine.stop()


async def test_connected_publishes_stream_once(harness, notifications):
    """Aggregate connected publishes the remote stream exactly once"""
    engine = make_engine(harness, notifications)
    track = FakeTrack("video")
    await connect(engine, harness, track)

    assert engine.state is SessionState.CONNECTED
    assert len(notifications) == 1
    assert isinstance(notifications[0], StreamAvailable)
    assert notifications[0].stream.tracks == [track]

    harness.peer.emit_track(FakeTrack("audio"))
    harness.peer.emit_state(ConnectionState.CONNECTED)
    await drain()

    assert len([n for n in notifications if isinstance(n, StreamAvailable)]) == 1
    assert notifications[0].stream.track_kinds == ["video", "audio"]
    await engine.stop()


async def test_track_after_connected_is_published(harness, notifications):
    """A track arriving after connectivity is still published"""
    engine = make_engine(harness, notifications)
    await negotiate(engine, harness)

    harness.peer.emit_state(ConnectionState.CONNECTED)
    await drain()
    assert engine.state is SessionState.CONNECTED
    assert notifications == []

    harness.peer.emit_track(FakeTrack("video"))
    await drain()
    assert len(notifications) == 1
    assert isinstance(notifications[0], StreamAvailable)
    await engine.stop()


async def test_connection_failure_closes_and_releases(harness, notifications):
    """Connected then failed: closed, both resources released, one unavailable"""
    engine = make_engine(harness, notifications)
    await connect(engine, harness)

    harness.peer.emit_state(ConnectionState.FAILED)
    await drain()

    assert engine.state is SessionState.CLOSED
    assert isinstance(engine.session.error, ConnectivityLost)
    assert harness.channel.close_calls == 1
    assert harness.peer.close_calls == 1
    assert unavailable_count(notifications) == 1
    assert isinstance(notifications[-1], StreamUnavailable)


@pytest.mark.parametrize("state", [ConnectionState.DISCONNECTED, ConnectionState.CLOSED])
async def test_other_terminal_connection_states_close(harness, notifications, state):
    """Disconnected and closed are terminal as well"""
    engine = make_engine(harness, notifications)
    await connect(engine, harness)

    harness.peer.emit_state(state)
    await drain()

    assert engine.state is SessionState.CLOSED
    assert harness.peer.close_calls == 1


async def test_stop_while_awaiting_offer(harness, notifications):
    """Stop before any peer connection exists closes cleanly"""
    engine = make_engine(harness, notifications)
    await engine.start()
    harness.channel.remote_opens()
    await drain()

    await engine.stop()

    assert engine.state is SessionState.CLOSED
    assert engine.session.error is None
    assert engine.peer is None
    assert harness.peers == []
    assert harness.channel.close_calls == 1


async def test_stop_before_start(harness, notifications):
    """Stopping an engine that never started still reaches closed"""
    engine = make_engine(harness, notifications)
    await engine.stop()
    assert engine.state is SessionState.CLOSED
    assert harness.channel.close_calls == 1


@pytest.mark.parametrize("reach", ["awaiting_offer", "negotiating", "connected"])
async def test_stop_is_idempotent(harness, notifications, reach):
    """A second stop does not release anything again"""
    engine = make_engine(harness, notifications)
    if reach == "awaiting_offer":
        await engine.start()
    elif reach == "negotiating":
        await negotiate(engine, harness)
    else:
        await connect(engine, harness)

    await engine.stop()
    await engine.stop()
    await drain()

    assert engine.state is SessionState.CLOSED
    assert harness.channel.close_calls == 1
    if harness.peers:
        assert harness.peer.close_calls == 1
    assert unavailable_count(notifications) == 1


async def test_remote_candidates_buffered_until_remote_description(harness, notifications):
    """Early remote candidates are applied in receipt order after the offer"""
    engine = make_engine(harness, notifications)
    await engine.start()
    harness.channel.remote_opens()
    first, second, third = make_candidate(1), make_candidate(2), make_candidate(3)

    harness.channel.remote_sends(first)
    harness.channel.remote_sends(second)
    await drain()
    assert engine.session.pending_remote_candidates == [first, second]

    harness.channel.remote_sends(SessionDescription(type="offer", sdp=OFFER_SDP))
    await drain()
    assert harness.peer.added_candidates == [first, second]
    assert engine.session.pending_remote_candidates == []

    harness.channel.remote_sends(third)
    await drain()
    assert harness.peer.added_candidates == [first, second, third]
    await engine.stop()


async def test_remote_candidates_relayed_while_connected(harness, notifications):
    """Candidates trickled after connectivity go straight to the peer connection"""
    engine = make_engine(harness, notifications)
    await connect(engine, harness)
    assert engine.state is SessionState.CONNECTED

    late = make_candidate(7)
    harness.channel.remote_sends(late)
    await drain()

    assert harness.peer.added_candidates == [late]
    assert engine.session.pending_remote_candidates == []
    assert engine.state is SessionState.CONNECTED
    await engine.stop()


async def test_peer_factory_builds_peer_connection(harness, notifications):
    """The engine only holds peers that provide the negotiation calls"""
    engine = make_engine(harness, notifications)
    await negotiate(engine, harness)
    assert isinstance(engine.peer, PeerConnection)
    assert not isinstance(object(), PeerConnection)
    await engine.stop()


async def test_local_candidates_buffered_until_channel_open(harness, notifications):
    """Local candidates produced before the channel opens are sent in order once it does"""
    engine = make_engine(harness, notifications)
    await engine.start()
    first, second = make_candidate(1), make_candidate(2)

    engine.post(LocalCandidate(first))
    engine.post(LocalCandidate(second))
    await drain()
    assert engine.session.candidates.outbound == [first, second]
    assert harness.channel.sent == []

    harness.channel.remote_opens()
    await drain()
    assert harness.channel.sent == [OfferRequest(), first, second]
    assert engine.session.candidates.outbound == []
    await engine.stop()


async def test_local_candidate_sent_immediately_when_open(harness, notifications):
    """Connected sessions keep relaying local candidates"""
    engine = make_engine(harness, notifications)
    await connect(engine, harness)

    candidate = make_candidate(7)
    engine.post(LocalCandidate(candidate))
    await drain()

    assert harness.channel.sent[-1] == candidate
    await engine.stop()


async def test_rejected_offer_closes_session(harness, notifications):
    """A failing remote description is a negotiation failure"""
    harness.peer_options = {"fail_set_remote": True}
    engine = make_engine(harness, notifications)
    await negotiate(engine, harness)

    assert engine.state is SessionState.CLOSED
    assert isinstance(engine.session.error, NegotiationError)
    assert engine.session.close_reason == "negotiation failed"
    assert harness.peer.close_calls == 1
    assert harness.channel.close_calls == 1
    assert unavailable_count(notifications) == 1
    assert not any(isinstance(m, SessionDescription) for m in harness.channel.sent)


async def test_rejected_candidate_closes_session(harness, notifications):
    """A candidate the peer connection refuses is a negotiation failure"""
    harness.peer_options = {"reject_candidates": True}
    engine = make_engine(harness, notifications)
    await negotiate(engine, harness)

    harness.channel.remote_sends(make_candidate(1))
    await drain()

    assert engine.state is SessionState.CLOSED
    assert isinstance(engine.session.error, NegotiationError)


async def test_stop_discards_in_flight_negotiation(harness, notifications):
    """A result that completes after stop is never applied"""
    gate = asyncio.Event()
    harness.peer_options = {"gate": gate}
    engine = make_engine(harness, notifications)
    await negotiate(engine, harness)
    assert engine.state is SessionState.AWAITING_OFFER

    await engine.stop()
    gate.set()
    await drain()

    assert engine.state is SessionState.CLOSED
    assert not engine.session.local_description_set
    assert harness.channel.sent == [OfferRequest()]
    assert harness.peer.close_calls == 1


async def test_events_after_close_are_dropped(harness, notifications):
    """Late peer events cannot publish a stream after close"""
    engine = make_engine(harness, notifications)
    await negotiate(engine, harness)
    peer = harness.peer
    await engine.stop()

    peer.emit_track(FakeTrack("video"))
    peer.emit_state(ConnectionState.CONNECTED)
    engine.post(RemoteTrack(FakeTrack("audio")))
    await drain()

    assert engine.state is SessionState.CLOSED
    assert not any(isinstance(n, StreamAvailable) for n in notifications)


async def test_ignored_messages_while_awaiting_offer(harness, notifications):
    """Offer requests and answers from the remote side are not fatal"""
    engine = make_engine(harness, notifications)
    await engine.start()
    harness.channel.remote_opens()
    harness.channel.remote_sends(OfferRequest())
    harness.channel.remote_sends(SessionDescription(type="answer", sdp=OFFER_SDP))
    await drain()

    assert engine.state is SessionState.AWAITING_OFFER
    assert harness.peers == []
    await engine.stop()


async def test_remote_channel_close_is_terminal(harness, notifications):
    """A dropped signaling transport closes the session"""
    engine = make_engine(harness, notifications)
    await connect(engine, harness)

    harness.channel.remote_closes()
    await drain()

    assert engine.state is SessionState.CLOSED
    assert isinstance(engine.session.error, TransportError)
    assert harness.peer.close_calls == 1
    assert isinstance(notifications[-1], StreamUnavailable)


async def test_channel_failure_closes_session(harness, notifications):
    """Failure to reach the signaling server closes the session"""
    engine = make_engine(harness, notifications)
    await engine.start()
    engine.post(ChannelFailed(TransportError("refused")))
    await drain()

    assert engine.state is SessionState.CLOSED
    assert engine.session.close_reason == "transport failed"


async def test_channel_open_raising_closes_session(harness, notifications):
    """A channel that cannot even start opening closes the session"""
    harness.fail_open = True
    engine = make_engine(harness, notifications)
    await engine.start()

    assert engine.state is SessionState.CLOSED
    assert isinstance(engine.session.error, TransportError)


async def test_offer_timeout(harness, notifications):
    """A silent remote side is bounded by the offer timeout"""
    engine = make_engine(harness, notifications, offer_timeout=0.05)
    await engine.start()
    harness.channel.remote_opens()

    await asyncio.wait_for(engine.wait_closed(), timeout=2.0)

    assert engine.state is SessionState.CLOSED
    assert isinstance(engine.session.error, SessionTimeoutError)


async def test_connect_timeout(harness, notifications):
    """Negotiation that never reaches connectivity is bounded too"""
    engine = make_engine(harness, notifications, offer_timeout=5.0, connect_timeout=0.05)
    await negotiate(engine, harness)
    assert engine.state is SessionState.NEGOTIATING

    await asyncio.wait_for(engine.wait_closed(), timeout=2.0)
    assert isinstance(engine.session.error, SessionTimeoutError)
    assert harness.peer.close_calls == 1


async def test_timeout_cancelled_once_connected(harness, notifications):
    """Reaching connected disarms the connect timeout"""
    engine = make_engine(harness, notifications, connect_timeout=0.05)
    await connect(engine, harness)

    await asyncio.sleep(0.1)
    await drain()

    assert engine.state is SessionState.CONNECTED
    await engine.stop()

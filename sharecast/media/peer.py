"""
Peer connection capability backed by aiortc.
"""
import logging
from typing import Callable, Optional

from aiortc import RTCConfiguration, RTCPeerConnection, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp

from sharecast.schemas import Candidate, ConnectionState, SessionDescription
from sharecast.signaling.events import ConnectionStateChanged, EngineEvent, RemoteTrack
from sharecast.utils.ice import build_configuration

logger = logging.getLogger(__name__)


class AiortcPeerConnection:
    """
    Wraps an ``RTCPeerConnection``.

    aiortc callbacks never touch session state; they are turned into engine
    events and posted to the engine's queue. aiortc gathers candidates during
    ``setLocalDescription`` and embeds them in the answer, so no local
    candidate events are produced.
    """

    def __init__(self, post: Callable[[EngineEvent], None], configuration: Optional[RTCConfiguration] = None):
        self._post = post
        self._closed = False
        self.pc = RTCPeerConnection(configuration=configuration or build_configuration())

        @self.pc.on("track")
        def on_track(track):
            logger.info(f"Track received: {track.kind}")
            self._post(RemoteTrack(track))

        @self.pc.on("connectionstatechange")
        async def on_connectionstatechange():
            logger.info(f"Connection state: {self.pc.connectionState}")
            self._post(ConnectionStateChanged(ConnectionState(self.pc.connectionState)))

        @self.pc.on("icegatheringstatechange")
        async def on_icegatheringstatechange():
            logger.debug(f"ICE gathering state: {self.pc.iceGatheringState}")

    @property
    def has_remote_description(self) -> bool:
        return self.pc.remoteDescription is not None

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self.pc.setRemoteDescription(
            RTCSessionDescription(sdp=description.sdp, type=description.type)
        )

    async def create_answer(self) -> SessionDescription:
        answer = await self.pc.createAnswer()
        return SessionDescription(type=answer.type, sdp=answer.sdp)

    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        """Apply the local description and return it with gathered candidates."""
        await self.pc.setLocalDescription(
            RTCSessionDescription(sdp=description.sdp, type=description.type)
        )
        local = self.pc.localDescription
        return SessionDescription(type=local.type, sdp=local.sdp)

    async def add_ice_candidate(self, candidate: Candidate) -> None:
        sdp = candidate.candidate
        if sdp.startswith("candidate:"):
            sdp = sdp[len("candidate:"):]
        if not sdp:
            logger.debug("Remote end-of-candidates received")
            return

        ice_candidate = candidate_from_sdp(sdp)
        ice_candidate.sdpMid = candidate.sdp_mid
        ice_candidate.sdpMLineIndex = candidate.sdp_mline_index
        await self.pc.addIceCandidate(ice_candidate)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.pc.close()
        logger.info("Peer connection closed")


def create_peer_connection(post: Callable[[EngineEvent], None]) -> AiortcPeerConnection:
    return AiortcPeerConnection(post)

"""
Holding area for ICE candidates that arrive before their destination is ready.
"""
import logging
from collections import deque
from typing import Deque, List

from sharecast.schemas import Candidate

logger = logging.getLogger(__name__)


class CandidateBuffer:
    """
    Two independent FIFO queues.

    Outbound candidates wait for the signaling channel to open; inbound
    candidates wait for the remote description to be applied.
    """

    def __init__(self):
        self._outbound: Deque[Candidate] = deque()
        self._inbound: Deque[Candidate] = deque()

    @property
    def outbound(self) -> List[Candidate]:
        return list(self._outbound)

    @property
    def inbound(self) -> List[Candidate]:
        return list(self._inbound)

    def enqueue_outbound(self, candidate: Candidate) -> None:
        self._outbound.append(candidate)
        logger.debug(f"Buffered local candidate ({len(self._outbound)} pending)")

    def enqueue_inbound(self, candidate: Candidate) -> None:
        self._inbound.append(candidate)
        logger.debug(f"Buffered remote candidate ({len(self._inbound)} pending)")

    def flush_outbound_if_ready(self, channel) -> int:
        """
        Send pending local candidates in generation order.

        Stops at the first candidate the channel refuses; it and everything
        after it stay buffered.

        Returns:
            Number of candidates sent
        """
        sent = 0
        while self._outbound and channel.is_open:
            if not channel.send(self._outbound[0]):
                break
            self._outbound.popleft()
            sent += 1
        if sent:
            logger.debug(f"Flushed {sent} local candidates")
        return sent

    async def flush_inbound_if_ready(self, peer) -> int:
        """
        Apply pending remote candidates in receipt order.

        Does nothing until the peer connection has a remote description.
        Errors from the peer connection propagate; the failing candidate
        is not re-queued.

        Returns:
            Number of candidates applied
        """
        if peer is None or not peer.has_remote_description:
            return 0
        applied = 0
        while self._inbound:
            candidate = self._inbound.popleft()
            await peer.add_ice_candidate(candidate)
            applied += 1
        if applied:
            logger.debug(f"Applied {applied} buffered remote candidates")
        return applied

    def clear(self) -> None:
        self._outbound.clear()
        self._inbound.clear()

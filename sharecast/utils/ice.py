"""
ICE server configuration helpers.
"""
import logging
from typing import Any, Dict, List, Optional

from aiortc import RTCConfiguration, RTCIceServer

from sharecast.config import settings

logger = logging.getLogger(__name__)


def build_configuration(
    stun_servers: Optional[List[str]] = None,
    turn_servers: Optional[List[Dict[str, Any]]] = None,
) -> RTCConfiguration:
    """
    Build the peer connection configuration.

    Args:
        stun_servers: STUN urls, defaults to ``settings.stun_servers_list``
        turn_servers: RTCIceServer keyword dicts, defaults to ``settings.turn_servers_list``

    Returns:
        RTCConfiguration for aiortc
    """
    if stun_servers is None:
        stun_servers = settings.stun_servers_list
    if turn_servers is None:
        try:
            turn_servers = settings.turn_servers_list
        except ValueError as e:
            logger.warning(f"Ignoring unparseable TURN server config: {e}")
            turn_servers = []

    ice_servers = [RTCIceServer(**server) for server in turn_servers]
    if stun_servers:
        ice_servers.append(RTCIceServer(urls=stun_servers))

    logger.debug(f"ICE servers: {[s.urls for s in ice_servers]}")
    return RTCConfiguration(iceServers=ice_servers)

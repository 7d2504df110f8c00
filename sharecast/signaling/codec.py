"""
Wire codec for signaling messages.

The screen-share server speaks three payload shapes over a text WebSocket:

* the bare sentinel ``offerreq``,
* a session description, either as bare SDP text or as ``{"type", "sdp"}``,
* an ICE candidate wrapped in a ``{"candidate": {...}}`` JSON envelope.
"""
import json
import logging
from typing import Union

from pydantic import ValidationError

from sharecast.exceptions import MalformedMessageError
from sharecast.schemas import Candidate, OfferRequest, SessionDescription, SignalingMessage

logger = logging.getLogger(__name__)

OFFER_REQUEST_SENTINEL = "offerreq"


def decode_message(payload: Union[str, bytes]) -> SignalingMessage:
    """
    Decode one signaling payload.

    Args:
        payload: Raw text (or UTF-8 bytes) received from the channel

    Returns:
        The decoded message

    Raises:
        MalformedMessageError: If the payload matches none of the known shapes
    """
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedMessageError(f"Payload is not valid UTF-8: {e}") from e

    text = payload.strip()
    if not text:
        raise MalformedMessageError("Empty signaling payload")

    if text.startswith(OFFER_REQUEST_SENTINEL):
        return OfferRequest()

    if text.startswith("v="):
        # Bare SDP text only ever comes from the offering side
        return SessionDescription(type="offer", sdp=payload)

    if text.startswith("{"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedMessageError(f"Invalid JSON payload: {e}") from e
        return _decode_object(data)

    raise MalformedMessageError(f"Unrecognised signaling payload: {text[:32]!r}")


def _decode_object(data: dict) -> SignalingMessage:
    try:
        if "candidate" in data:
            inner = data["candidate"]
            if isinstance(inner, dict):
                return Candidate.model_validate(inner)
            return Candidate.model_validate(data)

        if data.get("type") in ("offer", "answer"):
            return SessionDescription.model_validate(data)

        if data.get("type") == OFFER_REQUEST_SENTINEL:
            return OfferRequest()
    except ValidationError as e:
        raise MalformedMessageError(f"Invalid signaling message: {e}") from e

    raise MalformedMessageError(f"Unknown signaling message keys: {sorted(data)}")


def encode_message(message: SignalingMessage, raw_sdp: bool = True) -> str:
    """
    Encode one signaling message for the wire.

    Args:
        message: Message to encode
        raw_sdp: Write descriptions as bare SDP text instead of a JSON object

    Returns:
        Text payload
    """
    if isinstance(message, OfferRequest):
        return OFFER_REQUEST_SENTINEL

    if isinstance(message, SessionDescription):
        if raw_sdp:
            return message.sdp
        return json.dumps(message.model_dump())

    if isinstance(message, Candidate):
        return json.dumps({"candidate": message.model_dump(by_alias=True)})

    raise TypeError(f"Cannot encode {type(message).__name__}")

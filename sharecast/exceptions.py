"""
Custom exceptions for the sharecast receiver.
"""


class SessionError(Exception):
    """Base exception for anything that ends a session."""
    pass


class TransportError(SessionError):
    """Raised when the signaling channel fails to open, errors, or closes unexpectedly."""
    pass


class NegotiationError(SessionError):
    """Raised when a session description or candidate is rejected."""
    pass


class MalformedMessageError(NegotiationError):
    """Raised when a signaling payload cannot be decoded."""
    pass


class ConnectivityLost(SessionError):
    """Raised when the peer connection reports disconnected, failed or closed."""
    pass


class SessionTimeoutError(SessionError):
    """Raised when the remote peer stays silent past a configured bound."""
    pass

"""
Error taxonomy for signaling, negotiation, and the session lifecycle.

This is a leaf module with no internal dependencies.
"""

from typing import Optional


class PeerLinkError(Exception):
    """Base exception for all PeerLink errors."""
    pass


# =============================================================================
# Signaling
# =============================================================================

class SignalingError(PeerLinkError):
    """Raised when an exchange with the signaling relay fails."""
    pass


class SignalingTimeout(SignalingError):
    """No envelope or acknowledgement arrived in time.

    `relay_reported` is True when the relay itself answered 408, False when
    the local deadline or the HTTP client gave up first.
    """

    def __init__(self, message: str = "Signaling timeout", *, relay_reported: bool = False):
        super().__init__(message)
        self.relay_reported = relay_reported


class RelayRejected(SignalingError):
    """The relay answered with a non-success status."""

    def __init__(self, status: int, detail: str = ""):
        super().__init__(f"Signaling relay rejected request ({status}): {detail}")
        self.status = status
        self.detail = detail


class RoomConflict(SignalingError):
    """Another party already holds the slot this side tried to take."""

    def __init__(self, detail: str = "Room conflict"):
        super().__init__(detail)
        self.status = 409
        self.detail = detail


class RoomExpired(SignalingError):
    """The room was garbage-collected before a counterpart arrived."""

    def __init__(self, detail: str = "Room expired"):
        super().__init__(detail)
        self.status = 410
        self.detail = detail


class RelayUnreachable(SignalingError):
    """The relay could not be reached at all (DNS, refused, reset)."""
    pass


# =============================================================================
# Negotiation
# =============================================================================

class CandidateGatherTimeout(PeerLinkError):
    """Candidate discovery did not finish in time. Informational, never raised."""
    pass


class HandshakeFailed(PeerLinkError):
    """A session description was malformed or could not be applied."""
    pass


class NegotiationTimeout(PeerLinkError):
    """The whole handshake exceeded its overall deadline."""
    pass


# =============================================================================
# Connection lifecycle
# =============================================================================

class ConnectionFailure(PeerLinkError):
    """A failure reported after the handshake, through the `disconnect` event."""

    reason = "Connection lost"

    def __init__(self, reason: Optional[str] = None):
        if reason is not None:
            self.reason = reason
        super().__init__(self.reason)


class IceNegotiationFailed(ConnectionFailure):
    reason = "ICE negotiation failed"


class ChannelClosedUnexpectedly(ConnectionFailure):
    reason = "Data channel closed"


class NotConnected(PeerLinkError):
    """send() was called on a session that is not (or no longer) connecting."""
    pass


class AlreadyConnected(PeerLinkError):
    """init() was called on a session that has already been started."""
    pass


class SessionClosed(PeerLinkError):
    """The session was closed while an operation was still in flight."""
    pass

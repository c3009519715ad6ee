"""
Data models — enums and pure data classes with no business logic.

Depends on: nothing
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


# =============================================================================
# Enums
# =============================================================================

class Role(str, Enum):
    INITIATOR = "initiator"    # creates the offer
    RESPONDER = "responder"    # answers it


class LifecycleState(str, Enum):
    IDLE = "idle"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"


# Everything not listed here is rejected. CLOSED has no way out.
LIFECYCLE_TRANSITIONS: dict[LifecycleState, frozenset] = {
    LifecycleState.IDLE: frozenset({LifecycleState.NEGOTIATING, LifecycleState.CLOSED}),
    LifecycleState.NEGOTIATING: frozenset({
        LifecycleState.CONNECTED, LifecycleState.FAILED, LifecycleState.CLOSED,
    }),
    LifecycleState.CONNECTED: frozenset({
        LifecycleState.DISCONNECTED, LifecycleState.FAILED, LifecycleState.CLOSED,
    }),
    LifecycleState.DISCONNECTED: frozenset({
        LifecycleState.CONNECTED, LifecycleState.FAILED, LifecycleState.CLOSED,
    }),
    LifecycleState.FAILED: frozenset({LifecycleState.CLOSED}),
    LifecycleState.CLOSED: frozenset(),
}


class NegotiationState(str, Enum):
    IDLE = "idle"
    CREATING_LOCAL_DESCRIPTION = "creating_local_description"
    GATHERING_CANDIDATES = "gathering_candidates"
    EXCHANGING_DESCRIPTIONS = "exchanging_descriptions"
    APPLYING_REMOTE_DESCRIPTION = "applying_remote_description"
    COMPLETE = "complete"
    FAILED = "failed"


class PayloadKind(str, Enum):
    """How an inbound channel payload was classified."""
    STRUCTURED = "json"
    PLAIN_TEXT = "data"
    BINARY_CHUNK = "chunk"


# =============================================================================
# Signaling
# =============================================================================

@dataclass
class SignalingEnvelope:
    """One handshake step as carried by the relay."""
    room_id: str
    message: Any
    peer_id: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"roomId": self.room_id, "message": self.message}
        if self.peer_id:
            data["peerId"] = self.peer_id
        return data


# =============================================================================
# Channel payloads
# =============================================================================

Payload = Union[str, bytes]


@dataclass
class OutboundMessage:
    """A payload waiting in the outbound queue until the channel opens."""
    payload: Payload
    enqueued_at: float = field(default_factory=time.time)


@dataclass
class InboundMessage:
    """A classified payload received on the data channel."""
    kind: PayloadKind
    payload: Any
    received_at: float = field(default_factory=time.time)


# =============================================================================
# Lifecycle events
# =============================================================================

@dataclass
class DisconnectEvent:
    """Detail for the `disconnect` event."""
    reason: str
    error: Optional[Exception] = None
    transient: bool = False     # True for a `disconnected` blip that may recover


@dataclass
class ConnectionStateChange:
    """Detail for the `connectionstatechange` event."""
    state: str
    ice_state: Optional[str] = None
    signaling_state: Optional[str] = None


@dataclass
class GatherResult:
    """Outcome of one bounded candidate-gathering wait."""
    complete: bool
    timed_out: bool
    elapsed: float

"""
PeerLink — peer-to-peer session negotiation over an HTTP long-poll relay.

Two peers meet in a room on the relay, decide who offers, trade session
descriptions with bundled ICE candidates, and end up with one reliable
ordered data channel (plus optional media tracks).

    session = Session(SessionConfig.from_env())
    session.on("json", handle)
    await session.init("abc123")
    session.send_json({"hello": "world"})
"""

from peerlink.config import SessionConfig
from peerlink.errors import (
    AlreadyConnected,
    CandidateGatherTimeout,
    ChannelClosedUnexpectedly,
    ConnectionFailure,
    HandshakeFailed,
    IceNegotiationFailed,
    NegotiationTimeout,
    NotConnected,
    PeerLinkError,
    RelayRejected,
    RelayUnreachable,
    RoomConflict,
    RoomExpired,
    SessionClosed,
    SignalingError,
    SignalingTimeout,
)
from peerlink.models import (
    DisconnectEvent,
    LifecycleState,
    NegotiationState,
    PayloadKind,
    Role,
)
from peerlink.session import Session, create_room, join_room

__all__ = [
    "AlreadyConnected",
    "CandidateGatherTimeout",
    "ChannelClosedUnexpectedly",
    "ConnectionFailure",
    "DisconnectEvent",
    "HandshakeFailed",
    "IceNegotiationFailed",
    "LifecycleState",
    "NegotiationState",
    "NegotiationTimeout",
    "NotConnected",
    "PayloadKind",
    "PeerLinkError",
    "RelayRejected",
    "RelayUnreachable",
    "Role",
    "RoomConflict",
    "RoomExpired",
    "Session",
    "SessionClosed",
    "SessionConfig",
    "SignalingError",
    "SignalingTimeout",
    "create_room",
    "join_room",
]

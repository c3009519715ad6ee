"""
Configuration constants, environment variables, and feature flags.

This is a leaf module with no internal dependencies.
"""

import json
import os
from dataclasses import dataclass, field
from typing import Callable, Optional

# =============================================================================
# Signaling
# =============================================================================

SIGNALING_URL = os.environ.get("PEERLINK_SIGNALING_URL", "http://127.0.0.1:8300").rstrip("/")
SIGNAL_SEND_PATH = "/signal/send"
SIGNAL_WAIT_PATH = "/signal/wait"
SIGNAL_HEALTH_PATH = "/signal/health"

ROUND_TRIP_TIMEOUT = float(os.environ.get("PEERLINK_ROUND_TRIP_TIMEOUT", "30"))
WAIT_GRACE = 2.0              # client waits this much longer than the relay's own deadline
PROBE_TIMEOUT = float(os.environ.get("PEERLINK_PROBE_TIMEOUT", "1"))
NEGOTIATION_TIMEOUT = float(os.environ.get("PEERLINK_NEGOTIATION_TIMEOUT", "120"))

ROOM_ID_MAX_LENGTH = 100
ROOM_ID_BYTES = 6             # generated room tokens are 12 hex chars

# =============================================================================
# WebRTC
# =============================================================================

_stun_env = os.environ.get("PEERLINK_STUN_SERVERS", "").strip()
STUN_SERVERS: list[dict] = (
    [{"urls": u.strip()} for u in _stun_env.split(",") if u.strip()]
    if _stun_env else [
        {"urls": "stun:stun.l.google.com:19302"},
        {"urls": "stun:stun1.l.google.com:19302"},
    ]
)
ICE_GATHERING_TIMEOUT = float(os.environ.get("PEERLINK_ICE_GATHERING_TIMEOUT", "15"))

DATA_CHANNEL_LABEL = "app-data"
DATA_CHANNEL_MAX_RETRANSMITS = 30

# =============================================================================
# Relay server
# =============================================================================

DEFAULT_RELAY_HOST = os.environ.get("PEERLINK_HOST", "127.0.0.1")
DEFAULT_RELAY_PORT = int(os.environ.get("PEERLINK_PORT", "8300"))
RELAY_MAX_ROOMS = int(os.environ.get("PEERLINK_MAX_ROOMS", "1000"))
RELAY_WAIT_TIMEOUT = 30.0     # longest a /signal/wait call is held open
RELAY_ROOM_TTL = 120.0        # idle seconds before a room is garbage-collected
RELAY_SWEEP_INTERVAL = 60.0

DEBUG = os.environ.get("PEERLINK_DEBUG", "false").lower() == "true"

# =============================================================================
# Per-session configuration
# =============================================================================

@dataclass
class SessionConfig:
    """Explicit configuration handed to every Session.

    Defaults mirror the module constants above; nothing here is read from
    mutable global state after construction.
    """
    signaling_url: str = SIGNALING_URL
    ice_servers: list[dict] = field(default_factory=lambda: [dict(s) for s in STUN_SERVERS])
    ice_gathering_timeout: float = ICE_GATHERING_TIMEOUT
    round_trip_timeout: float = ROUND_TRIP_TIMEOUT
    wait_grace: float = WAIT_GRACE
    probe_timeout: float = PROBE_TIMEOUT
    negotiation_timeout: Optional[float] = NEGOTIATION_TIMEOUT
    debug: bool = DEBUG
    # Builds the transport-layer peer connection; None means aiortc.
    peer_connection_factory: Optional[Callable] = None

    @property
    def wait_timeout(self) -> float:
        """Client-side deadline for one long-poll wait."""
        return self.round_trip_timeout + self.wait_grace

    @classmethod
    def from_env(cls, **overrides) -> "SessionConfig":
        """Build a config from PEERLINK_* variables read now, not at import time."""
        env = os.environ
        values = {
            "signaling_url": env.get("PEERLINK_SIGNALING_URL", SIGNALING_URL).rstrip("/"),
            "ice_gathering_timeout": float(env.get("PEERLINK_ICE_GATHERING_TIMEOUT", ICE_GATHERING_TIMEOUT)),
            "round_trip_timeout": float(env.get("PEERLINK_ROUND_TRIP_TIMEOUT", ROUND_TRIP_TIMEOUT)),
            "probe_timeout": float(env.get("PEERLINK_PROBE_TIMEOUT", PROBE_TIMEOUT)),
            "negotiation_timeout": float(env.get("PEERLINK_NEGOTIATION_TIMEOUT", NEGOTIATION_TIMEOUT)),
            "debug": env.get("PEERLINK_DEBUG", "false").lower() == "true",
        }
        ice_json = env.get("PEERLINK_ICE_SERVERS_JSON")
        if ice_json:
            values["ice_servers"] = json.loads(ice_json)
        values.update(overrides)
        return cls(**values)

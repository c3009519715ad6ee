"""
Relay composition root — build the signaling relay app and serve it.

Depends on: config, signaling/relay
"""

import os
import sys

import uvicorn
from starlette.applications import Starlette

from peerlink.config import (
    DEFAULT_RELAY_HOST,
    DEFAULT_RELAY_PORT,
    RELAY_MAX_ROOMS,
    RELAY_ROOM_TTL,
    RELAY_SWEEP_INTERVAL,
    RELAY_WAIT_TIMEOUT,
)
from peerlink.signaling.relay import SignalingRelay, create_relay_app


def create_app() -> Starlette:
    """Relay app with limits taken from PEERLINK_* settings."""
    relay = SignalingRelay(
        max_rooms=RELAY_MAX_ROOMS,
        wait_timeout=RELAY_WAIT_TIMEOUT,
        room_ttl=RELAY_ROOM_TTL,
    )
    return create_relay_app(relay, sweep_interval=RELAY_SWEEP_INTERVAL)


def print_startup_banner(host: str, port: int) -> None:
    print(f"[PeerLink] Signaling relay on http://{host}:{port}", file=sys.stderr)
    print(f"[PeerLink] Rooms: max {RELAY_MAX_ROOMS}, idle expiry {RELAY_ROOM_TTL:g}s", file=sys.stderr)
    print(f"[PeerLink] Long-poll limit: {RELAY_WAIT_TIMEOUT:g}s", file=sys.stderr)


def main() -> None:
    """Entry point — serve the relay over HTTP."""
    host = os.environ.get("PEERLINK_HOST", DEFAULT_RELAY_HOST)
    port = int(os.environ.get("PEERLINK_PORT", str(DEFAULT_RELAY_PORT)))
    app = create_app()
    print_startup_banner(host, port)
    uvicorn.run(app, host=host, port=port, log_level="warning")


if __name__ == "__main__":
    main()

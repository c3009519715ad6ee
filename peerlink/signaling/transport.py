"""
Signaling transport — send/await envelopes through the HTTP long-poll relay.

Every call is a single request with its own deadline. Nothing here retries;
callers decide whether a failure is worth a new room.

Depends on: config, errors, models
"""

import asyncio
import sys
import uuid
from typing import Any, Optional

import httpx

from peerlink.config import (
    SIGNAL_SEND_PATH,
    SIGNAL_WAIT_PATH,
    SessionConfig,
)
from peerlink.errors import (
    RelayRejected,
    RelayUnreachable,
    RoomConflict,
    RoomExpired,
    SignalingTimeout,
)
from peerlink.models import SignalingEnvelope


def strip_base_url(url: str) -> str:
    """Strip a trailing slash or /signal suffix from a relay URL."""
    base = url.rstrip("/")
    if base.endswith("/signal"):
        return base[:-len("/signal")]
    return base


class SignalingTransport:
    """Client side of the relay contract for one peer."""

    def __init__(self, base_url: str, *,
                 round_trip_timeout: float = 30.0,
                 wait_grace: float = 2.0,
                 peer_id: Optional[str] = None,
                 client: Optional[httpx.AsyncClient] = None,
                 debug: bool = False):
        self.base_url = strip_base_url(base_url)
        self.round_trip_timeout = round_trip_timeout
        self.wait_grace = wait_grace
        self.peer_id = peer_id or uuid.uuid4().hex
        self.debug = debug
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()

    @classmethod
    def from_config(cls, config: SessionConfig,
                    client: Optional[httpx.AsyncClient] = None) -> "SignalingTransport":
        return cls(
            config.signaling_url,
            round_trip_timeout=config.round_trip_timeout,
            wait_grace=config.wait_grace,
            client=client,
            debug=config.debug,
        )

    # -- Contract --

    async def send_envelope(self, room_id: str, message: Any) -> None:
        """POST this side's envelope. Raises a SignalingError subclass on failure."""
        envelope = SignalingEnvelope(room_id=room_id, message=message, peer_id=self.peer_id)
        resp = await self._request(
            "POST", SIGNAL_SEND_PATH, self.round_trip_timeout,
            json=envelope.to_dict(),
        )
        if resp.status_code == 409:
            raise RoomConflict(resp.text or "Room conflict")
        if not resp.is_success:
            raise RelayRejected(resp.status_code, resp.text)
        if self.debug:
            print(f"[PeerLink] Signaling message sent to room {room_id}", file=sys.stderr)

    async def await_envelope(self, room_id: str, timeout: Optional[float] = None) -> Any:
        """Long-poll for the counterpart's envelope and return its message."""
        relay_wait = timeout if timeout is not None else self.round_trip_timeout
        params = {"roomId": room_id, "peerId": self.peer_id, "timeout": f"{relay_wait:g}"}
        resp = await self._request(
            "GET", SIGNAL_WAIT_PATH, relay_wait + self.wait_grace, params=params,
        )
        if resp.status_code == 408:
            raise SignalingTimeout("Relay reported signaling timeout", relay_reported=True)
        if resp.status_code == 409:
            raise RoomConflict(resp.text or "Room conflict")
        if resp.status_code == 410:
            raise RoomExpired(resp.text or "Room expired")
        if not resp.is_success:
            raise RelayRejected(resp.status_code, resp.text)
        try:
            message = resp.json()["message"]
        except (ValueError, KeyError, TypeError):
            raise RelayRejected(resp.status_code, f"Malformed wait response: {resp.text[:200]}")
        if self.debug:
            print(f"[PeerLink] Signaling message received from room {room_id}", file=sys.stderr)
        return message

    async def probe(self, room_id: str, timeout: float) -> bool:
        """Non-consuming occupancy check. True only if the relay answered 200."""
        params = {"roomId": room_id, "peerId": self.peer_id,
                  "timeout": f"{timeout:g}", "peek": "1"}
        try:
            resp = await self._request("GET", SIGNAL_WAIT_PATH, timeout + 0.5, params=params)
        except SignalingTimeout:
            return False
        except RelayUnreachable as e:
            print(f"[PeerLink] Room check failed: {e}", file=sys.stderr)
            return False
        return resp.status_code == 200

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # -- Internals --

    async def _request(self, method: str, path: str, deadline: float, **kwargs) -> httpx.Response:
        """One HTTP request bounded by deadline, with network failures mapped."""
        url = self.base_url + path
        try:
            return await asyncio.wait_for(
                self._client.request(method, url, timeout=deadline, **kwargs),
                timeout=deadline,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            raise SignalingTimeout(
                f"No response from relay within {deadline:g}s", relay_reported=False,
            ) from None
        except httpx.TransportError as e:
            raise RelayUnreachable(f"Signaling relay unreachable: {e}") from e

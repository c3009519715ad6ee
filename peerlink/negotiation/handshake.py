"""
Offer/answer handshake — one strictly sequential pass per session.

Initiator: create offer -> set local -> gather -> send -> await answer -> apply.
Responder: await offer -> apply -> create answer -> set local -> gather -> send.

Candidates are bundled into the description (non-trickle ICE), so exactly
one envelope travels in each direction.

Depends on: errors, models, negotiation/gatherer, signaling/transport
"""

import asyncio
import sys
from typing import Any, Callable, Optional

from aiortc import RTCSessionDescription

from peerlink.errors import HandshakeFailed, PeerLinkError
from peerlink.models import NegotiationState, Role
from peerlink.negotiation.gatherer import CandidateGatherer
from peerlink.signaling.transport import SignalingTransport


def description_to_message(description) -> dict:
    """Serialize a session description the way browsers do (RTCSessionDescription.toJSON)."""
    return {"type": description.type, "sdp": description.sdp}


def message_to_description(message: Any, expected_type: str) -> RTCSessionDescription:
    """Parse a relayed envelope into a session description of expected_type."""
    if not isinstance(message, dict):
        raise HandshakeFailed(f"Expected {expected_type} description, got {type(message).__name__}")
    sdp = message.get("sdp")
    if not isinstance(sdp, str) or not sdp:
        raise HandshakeFailed(f"Malformed {expected_type} description: missing sdp")
    desc_type = message.get("type") or expected_type
    if desc_type != expected_type:
        raise HandshakeFailed(f"Expected {expected_type} description, got {desc_type}")
    return RTCSessionDescription(sdp=sdp, type=desc_type)


class SessionNegotiationStateMachine:
    """Drives one peer connection through the handshake for a fixed role."""

    def __init__(self, pc, role: Role, room_id: str,
                 signaling: SignalingTransport,
                 gatherer: Optional[CandidateGatherer] = None, *,
                 gather_timeout: float = 15.0,
                 wait_timeout: Optional[float] = None,
                 on_state: Optional[Callable[[NegotiationState], None]] = None,
                 debug: bool = False):
        self.pc = pc
        self.role = role
        self.room_id = room_id
        self.signaling = signaling
        self.gatherer = gatherer or CandidateGatherer(debug=debug)
        self.gather_timeout = gather_timeout
        self.wait_timeout = wait_timeout
        self.debug = debug
        self._on_state = on_state
        self.state = NegotiationState.IDLE
        self.history: list[NegotiationState] = [NegotiationState.IDLE]

    def _set(self, state: NegotiationState) -> None:
        if state == self.state:
            return
        self.state = state
        self.history.append(state)
        if self.debug:
            print(f"[PeerLink] Handshake state: {state.value}", file=sys.stderr)
        if self._on_state is not None:
            self._on_state(state)

    async def run(self) -> None:
        """Run the handshake for self.role. Raises the originating error on failure."""
        if self.state is not NegotiationState.IDLE:
            raise HandshakeFailed(f"Handshake already {self.state.value}")
        try:
            if self.role is Role.INITIATOR:
                await self._run_initiator()
            else:
                await self._run_responder()
        except asyncio.CancelledError:
            self._set(NegotiationState.FAILED)
            raise
        except PeerLinkError:
            self._set(NegotiationState.FAILED)
            raise
        except Exception as e:
            self._set(NegotiationState.FAILED)
            raise HandshakeFailed(f"Handshake failed: {e}") from e
        self._set(NegotiationState.COMPLETE)

    async def _run_initiator(self) -> None:
        await self._create_local("offer")
        await self._gather()
        await self._send_local()
        answer = await self._await_remote("answer")
        await self._apply_remote(answer)

    async def _run_responder(self) -> None:
        offer = await self._await_remote("offer")
        await self._apply_remote(offer)
        await self._create_local("answer")
        await self._gather()
        await self._send_local()

    # -- Steps --

    async def _create_local(self, kind: str) -> None:
        self._set(NegotiationState.CREATING_LOCAL_DESCRIPTION)
        try:
            if kind == "offer":
                description = await self.pc.createOffer()
            else:
                description = await self.pc.createAnswer()
            await self.pc.setLocalDescription(description)
        except PeerLinkError:
            raise
        except Exception as e:
            raise HandshakeFailed(f"Could not create local {kind}: {e}") from e

    async def _gather(self) -> None:
        self._set(NegotiationState.GATHERING_CANDIDATES)
        await self.gatherer.gather(self.pc, self.gather_timeout)

    async def _send_local(self) -> None:
        self._set(NegotiationState.EXCHANGING_DESCRIPTIONS)
        description = self.pc.localDescription
        if description is None:
            raise HandshakeFailed("No local description to send")
        await self.signaling.send_envelope(self.room_id, description_to_message(description))

    async def _await_remote(self, kind: str) -> RTCSessionDescription:
        self._set(NegotiationState.EXCHANGING_DESCRIPTIONS)
        message = await self.signaling.await_envelope(self.room_id, timeout=self.wait_timeout)
        return message_to_description(message, kind)

    async def _apply_remote(self, description: RTCSessionDescription) -> None:
        self._set(NegotiationState.APPLYING_REMOTE_DESCRIPTION)
        try:
            await self.pc.setRemoteDescription(description)
        except Exception as e:
            raise HandshakeFailed(f"Could not apply remote {description.type}: {e}") from e

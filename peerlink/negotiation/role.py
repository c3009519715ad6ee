"""
Role negotiation — who creates the offer.

The probe is a heuristic, not a lock: two peers probing an empty room at the
same moment both become initiator. The relay then rejects the second offer
with 409, which surfaces as RoomConflict from the handshake.

Depends on: models, signaling/transport
"""

import sys
from typing import Optional

from peerlink.models import Role
from peerlink.signaling.transport import SignalingTransport


class RoleNegotiator:

    def __init__(self, signaling: SignalingTransport, probe_timeout: float = 1.0, debug: bool = False):
        self.signaling = signaling
        self.probe_timeout = probe_timeout
        self.debug = debug

    async def decide_role(self, room_id: str, explicit: Optional[Role] = None) -> Role:
        """Return the explicit role, or probe the relay. Never raises."""
        if explicit is not None:
            role = Role(explicit)
            if self.debug:
                print(f"[PeerLink] Role explicitly set to {role.value}", file=sys.stderr)
            return role

        try:
            occupied = await self.signaling.probe(room_id, self.probe_timeout)
        except Exception as e:
            print(f"[PeerLink] Room check failed: {e}", file=sys.stderr)
            occupied = False

        role = Role.RESPONDER if occupied else Role.INITIATOR
        if self.debug:
            print(f"[PeerLink] Auto-detected role: {role.value}", file=sys.stderr)
        return role

"""
Bounded ICE candidate gathering.

Discovery can stall forever behind restrictive NATs, so the wait has a hard
ceiling. On timeout the handshake goes ahead with whatever candidates exist.

aiortc's RTCPeerConnection.setLocalDescription() gathers before it returns,
so with aiortc this wait finds gathering already complete and only the
session's negotiation_timeout bounds discovery. ice_gathering_timeout bounds
peer connections that keep gathering after setLocalDescription() returns.

Depends on: errors, models
"""

import asyncio
import sys
import time

from peerlink.errors import CandidateGatherTimeout
from peerlink.models import GatherResult


class CandidateGatherer:

    def __init__(self, debug: bool = False):
        self.debug = debug

    async def gather(self, pc, timeout: float) -> GatherResult:
        """Wait for pc.iceGatheringState == "complete" or timeout, whichever is first."""
        start = time.monotonic()
        if pc.iceGatheringState == "complete":
            return GatherResult(complete=True, timed_out=False, elapsed=0.0)

        done = asyncio.get_running_loop().create_future()

        def check_state() -> None:
            if pc.iceGatheringState == "complete" and not done.done():
                done.set_result(None)

        pc.on("icegatheringstatechange", check_state)
        try:
            check_state()
            await asyncio.wait_for(done, timeout=max(timeout, 0))
        except asyncio.TimeoutError:
            warning = CandidateGatherTimeout(
                f"ICE gathering not complete after {timeout:g}s"
            )
            print(f"[PeerLink] {warning} - proceeding with available candidates", file=sys.stderr)
            return GatherResult(complete=False, timed_out=True, elapsed=time.monotonic() - start)
        finally:
            try:
                pc.remove_listener("icegatheringstatechange", check_state)
            except KeyError:
                pass

        if self.debug:
            print("[PeerLink] ICE gathering complete", file=sys.stderr)
        return GatherResult(complete=True, timed_out=False, elapsed=time.monotonic() - start)

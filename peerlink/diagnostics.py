"""
Connection diagnostics — state snapshot, byte counters, ICE candidates.

Depends on: nothing
"""

import sys
from typing import Optional

from aiortc.sdp import candidate_from_sdp


def parse_candidates(sdp: Optional[str], origin: str) -> list[dict]:
    """Extract a=candidate lines from an SDP blob."""
    if not sdp:
        return []
    candidates = []
    for line in sdp.splitlines():
        line = line.strip()
        if not line.startswith("a=candidate:"):
            continue
        try:
            c = candidate_from_sdp(line[len("a=candidate:"):])
        except (ValueError, IndexError) as e:
            print(f"[PeerLink] Skipping unparsable candidate {line!r}: {e}", file=sys.stderr)
            continue
        candidates.append({
            "id": c.foundation,
            "type": c.type,
            "ip": c.ip,
            "port": c.port,
            "protocol": c.protocol,
            "priority": c.priority,
            "url": origin,
        })
    return candidates


def ice_candidates(pc) -> dict:
    """Local and remote candidates currently bundled in the descriptions."""
    if pc is None:
        return {"local": [], "remote": []}
    local = pc.localDescription
    remote = pc.remoteDescription
    return {
        "local": parse_candidates(local.sdp if local else None, "local"),
        "remote": parse_candidates(remote.sdp if remote else None, "remote"),
    }


async def collect_stats(pc, channel_state: str = "none") -> Optional[dict]:
    """Snapshot of connection states plus byte counters from pc.getStats()."""
    if pc is None:
        return None
    report = {
        "connectionState": pc.connectionState,
        "iceConnectionState": pc.iceConnectionState,
        "iceGatheringState": pc.iceGatheringState,
        "signalingState": pc.signalingState,
        "dataChannelState": channel_state,
        "bytesReceived": 0,
        "bytesSent": 0,
        "transportBytesReceived": 0,
        "transportBytesSent": 0,
    }
    stats = await pc.getStats()
    for stat in stats.values():
        kind = getattr(stat, "type", None)
        if kind == "inbound-rtp":
            report["bytesReceived"] += getattr(stat, "bytesReceived", 0) or 0
        elif kind == "outbound-rtp":
            report["bytesSent"] += getattr(stat, "bytesSent", 0) or 0
        elif kind == "transport":
            report["transportBytesReceived"] += getattr(stat, "bytesReceived", 0) or 0
            report["transportBytesSent"] += getattr(stat, "bytesSent", 0) or 0
    candidates = ice_candidates(pc)
    report["localCandidates"] = candidates["local"]
    report["remoteCandidates"] = candidates["remote"]
    return report

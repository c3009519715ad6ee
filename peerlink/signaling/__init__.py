"""
Signaling package — relay client and the reference relay server.
"""

from peerlink.signaling.transport import SignalingTransport, strip_base_url
from peerlink.signaling.relay import SignalingRelay, create_relay_app

__all__ = ["SignalingTransport", "SignalingRelay", "create_relay_app", "strip_base_url"]

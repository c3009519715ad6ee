"""
Negotiation package — role decision, candidate gathering, offer/answer handshake.
"""

from peerlink.negotiation.gatherer import CandidateGatherer
from peerlink.negotiation.handshake import (
    SessionNegotiationStateMachine,
    description_to_message,
    message_to_description,
)
from peerlink.negotiation.role import RoleNegotiator

__all__ = [
    "CandidateGatherer",
    "RoleNegotiator",
    "SessionNegotiationStateMachine",
    "description_to_message",
    "message_to_description",
]

"""WebRTC 협상 관련 서비스 모듈"""

from .client import SignalingClient
from .engine import AiortcPeerEngine, PeerConnectionEngine
from .negotiation import Negotiator, PeerLink, SignalingState

__all__ = [
    "AiortcPeerEngine",
    "Negotiator",
    "PeerConnectionEngine",
    "PeerLink",
    "SignalingClient",
    "SignalingState",
]

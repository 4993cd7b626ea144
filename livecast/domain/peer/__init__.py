"""Client-side peer logic.

Top-level API:
- `PeerConnectionManager`: session lifecycle for a streamer or a viewer
- `NegotiationCoordinator`: offer/answer and ICE candidate handling
- `ReconnectionController`: viewer retry scheduling
- `StreamControlSynchronizer`: streamer pause/resume
"""

from .negotiation import NegotiationCoordinator
from .peer_manager import PeerConnectionManager
from .peer_models import OfferProcessingGuard, PeerSession, RetryState
from .peer_state_machine import PeerStateMachine
from .reconnection import ReconnectionController
from .stream_control import StreamControlSynchronizer, ViewerPlaybackState

__all__ = [
    "NegotiationCoordinator",
    "OfferProcessingGuard",
    "PeerConnectionManager",
    "PeerSession",
    "PeerStateMachine",
    "ReconnectionController",
    "RetryState",
    "StreamControlSynchronizer",
    "ViewerPlaybackState",
]

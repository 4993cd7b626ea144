"""Common enums describing peer connections."""

from enum import Enum


class ConnectionState(str, Enum):
    """Peer connection states, as reported by RTCPeerConnection.connectionState.

    State Transition Flow:

    NEW → CONNECTING → CONNECTED → DISCONNECTED → CONNECTED
                ↓           ↓            ↓
              FAILED      FAILED       FAILED → CLOSED

    FAILED and CLOSED are terminal. DISCONNECTED may recover on its own, but
    the viewer treats it as a retry trigger.
    """

    NEW = "new"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"

    def __str__(self) -> str:
        return self.value


class SignalingState(str, Enum):
    """Offer/answer negotiation state of a peer connection."""

    STABLE = "stable"
    HAVE_LOCAL_OFFER = "have-local-offer"
    HAVE_REMOTE_OFFER = "have-remote-offer"
    # Reported by aiortc once the connection has been closed.
    CLOSED = "closed"

    def __str__(self) -> str:
        return self.value


class PeerRole(str, Enum):
    STREAMER = "streamer"
    VIEWER = "viewer"

    def __str__(self) -> str:
        return self.value


__all__ = ["ConnectionState", "PeerRole", "SignalingState"]

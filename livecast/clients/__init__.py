"""Streamer and viewer clients."""

from .status import ClientStatus
from .streamer import StreamerClient
from .viewer import ViewerClient

__all__ = ["ClientStatus", "StreamerClient", "ViewerClient"]

"""Signaling domain models."""

import threading
from dataclasses import dataclass, field

from pydantic import BaseModel


@dataclass(eq=False)
class Room:
    """Registry-owned room record. Mutated only under `lock`."""

    room_id: str
    streamer_id: str
    viewer_ids: set[str] = field(default_factory=set)
    closed: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class RoomSnapshot(BaseModel):
    """Read-only view of a room at query time."""

    room_id: str
    streamer_id: str
    viewer_ids: list[str]


class CreateResult(BaseModel):
    room_id: str
    # Viewers of a room this one replaced (dev mode only).
    dropped_viewer_ids: list[str] = []


class JoinResult(BaseModel):
    room_id: str
    streamer_id: str
    # False when the viewer was already a member (idempotent re-join).
    added: bool
    # Streamer of the room the viewer moved out of, if any.
    previous_streamer_id: str | None = None


class RegistryStats(BaseModel):
    rooms: int
    viewers: int

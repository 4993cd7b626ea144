"""Session registry: the authoritative room table."""

import threading
from collections.abc import Callable

from loguru import logger

from livecast.app_config import DEV_ROOM_ID
from livecast.domain.utils.idgen import new_room_id
from livecast.utils.app_errors import AppErrorCode, HttpStatusCode, SignalingError

from .signaling_models import CreateResult, JoinResult, RegistryStats, Room, RoomSnapshot

ROOM_NOT_FOUND_MESSAGE = "Room does not exist"


class SessionRegistry:
    """In-memory mapping of room -> {streamer, viewers}.

    Locking: `_table_lock` guards only the dictionaries (`_rooms` and the
    viewer index) and is never held while a room is mutated. Each room has its
    own lock for its viewer set and `closed` flag, so operations on different
    rooms never wait on each other. Lock order is always room lock first,
    then table lock.

    All operations are synchronous and never block beyond these short
    critical sections.
    """

    def __init__(
        self,
        *,
        dev_mode: bool = False,
        id_factory: Callable[[], str] = new_room_id,
    ):
        self._dev_mode = dev_mode
        self._id_factory = id_factory
        self._rooms: dict[str, Room] = {}
        self._viewer_rooms: dict[str, str] = {}
        self._table_lock = threading.Lock()

    # ==================== MUTATIONS ====================

    def create_room(self, streamer_id: str) -> CreateResult:
        """Create a room owned by `streamer_id`.

        Dev mode always hands out the fixed id "dev-room-001"; a previous room
        with that id is replaced and its viewers are returned in
        `dropped_viewer_ids`.
        """
        room_id = DEV_ROOM_ID if self._dev_mode else self._id_factory()
        room = Room(room_id=room_id, streamer_id=streamer_id)

        with self._table_lock:
            replaced = self._rooms.get(room_id)
            self._rooms[room_id] = room

        dropped: list[str] = []
        if replaced is not None:
            dropped = self._close_room(replaced)
            logger.warning(
                "Room {} replaced: old streamer={} new streamer={} dropped viewers={}",
                room_id,
                replaced.streamer_id,
                streamer_id,
                len(dropped),
            )

        logger.info("Room {} created, streamer: {}", room_id, streamer_id)
        return CreateResult(room_id=room_id, dropped_viewer_ids=dropped)

    def join_room(self, room_id: str, viewer_id: str) -> JoinResult:
        """Add `viewer_id` to a room.

        Idempotent: joining a room the viewer already belongs to succeeds
        with `added=False`. A viewer belongs to at most one room; joining a
        different room moves it.

        Raises:
            SignalingError(E_ROOM_NOT_FOUND): the room does not exist
        """
        room = self._get_room(room_id)
        if room is None:
            raise SignalingError(
                AppErrorCode.E_ROOM_NOT_FOUND,
                ROOM_NOT_FOUND_MESSAGE,
                status_code=HttpStatusCode.NOT_FOUND,
            )

        with self._table_lock:
            previous_room_id = self._viewer_rooms.get(viewer_id)
        previous_streamer_id = None
        if previous_room_id is not None and previous_room_id != room_id:
            previous_streamer_id = self.remove_viewer(viewer_id)

        with room.lock:
            if room.closed:
                raise SignalingError(
                    AppErrorCode.E_ROOM_NOT_FOUND,
                    ROOM_NOT_FOUND_MESSAGE,
                    status_code=HttpStatusCode.NOT_FOUND,
                )
            added = viewer_id not in room.viewer_ids
            room.viewer_ids.add(viewer_id)
            viewer_count = len(room.viewer_ids)
            with self._table_lock:
                self._viewer_rooms[viewer_id] = room_id

        if added:
            logger.info("Viewer {} joined room {} (viewers: {})", viewer_id, room_id, viewer_count)
        else:
            logger.debug("Viewer {} re-joined room {}", viewer_id, room_id)

        return JoinResult(
            room_id=room_id,
            streamer_id=room.streamer_id,
            added=added,
            previous_streamer_id=previous_streamer_id,
        )

    def remove_streamer(self, streamer_id: str) -> list[str]:
        """Evict every room owned by `streamer_id`.

        Returns the viewers that were still in those rooms, each exactly once.
        A second call for the same streamer returns an empty list.
        """
        with self._table_lock:
            owned = [room for room in self._rooms.values() if room.streamer_id == streamer_id]
            for room in owned:
                del self._rooms[room.room_id]

        viewers: list[str] = []
        for room in owned:
            for viewer_id in self._close_room(room):
                if viewer_id not in viewers:
                    viewers.append(viewer_id)
            logger.info("Room {} closed", room.room_id)

        return viewers

    def remove_viewer(self, viewer_id: str) -> str | None:
        """Remove `viewer_id` from its room and return that room's streamer."""
        with self._table_lock:
            room_id = self._viewer_rooms.get(viewer_id)
            room = self._rooms.get(room_id) if room_id is not None else None

        if room is None:
            return None

        with room.lock:
            if room.closed or viewer_id not in room.viewer_ids:
                return None
            room.viewer_ids.discard(viewer_id)
            with self._table_lock:
                if self._viewer_rooms.get(viewer_id) == room.room_id:
                    del self._viewer_rooms[viewer_id]

        logger.info("Viewer {} left room {}", viewer_id, room.room_id)
        return room.streamer_id

    # ==================== QUERIES ====================

    def get_room(self, room_id: str) -> RoomSnapshot | None:
        room = self._get_room(room_id)
        if room is None:
            return None
        with room.lock:
            if room.closed:
                return None
            return RoomSnapshot(
                room_id=room.room_id,
                streamer_id=room.streamer_id,
                viewer_ids=sorted(room.viewer_ids),
            )

    def room_audience(self, room_id: str, *, exclude: str | None = None) -> list[str]:
        """Every member of a room (streamer first), minus `exclude`."""
        snapshot = self.get_room(room_id)
        if snapshot is None:
            return []
        members = [snapshot.streamer_id, *snapshot.viewer_ids]
        return [member for member in members if member != exclude]

    def is_streamer_of(self, client_id: str, room_id: str) -> bool:
        snapshot = self.get_room(room_id)
        return snapshot is not None and snapshot.streamer_id == client_id

    def stats(self) -> RegistryStats:
        with self._table_lock:
            return RegistryStats(rooms=len(self._rooms), viewers=len(self._viewer_rooms))

    # ==================== INTERNALS ====================

    def _get_room(self, room_id: str) -> Room | None:
        with self._table_lock:
            return self._rooms.get(room_id)

    def _close_room(self, room: Room) -> list[str]:
        with room.lock:
            room.closed = True
            viewers = sorted(room.viewer_ids)
            room.viewer_ids.clear()
            with self._table_lock:
                for viewer_id in viewers:
                    if self._viewer_rooms.get(viewer_id) == room.room_id:
                        del self._viewer_rooms[viewer_id]
        return viewers

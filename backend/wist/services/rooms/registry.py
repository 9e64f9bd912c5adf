"""In-memory table of live rooms.

The registry owns every resident ``Room``: it creates them, rebuilds them
from their durable record on first reference, and drops them when both seats
are empty or the host closes the room. It also tracks which room each
connection is seated in.
"""

import random
import string
import threading
from contextlib import contextmanager
from typing import Dict, Optional, Set

from .errors import RehydrationFailed, RoomNotFound
from .room import Room

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits


def normalize_room_id(room_id) -> str:
    return str(room_id or '').strip().upper()


class RoomRegistry:
    def __init__(self, store, logger, code_length: int = 5):
        self._store = store
        self._logger = logger
        self._code_length = code_length
        self._rooms: Dict[str, Room] = {}
        # Closed room ids; never served or rehydrated again by this process.
        self._closed: Set[str] = set()
        self._seated: Dict[str, str] = {}
        self._lock = threading.Lock()

    def __contains__(self, room_id) -> bool:
        with self._lock:
            return normalize_room_id(room_id) in self._rooms

    def __len__(self) -> int:
        with self._lock:
            return len(self._rooms)

    def get(self, room_id) -> Room:
        room_id = normalize_room_id(room_id)
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None or room_id in self._closed:
                raise RoomNotFound()
            return room

    def get_or_rehydrate(self, room_id) -> Room:
        room_id = normalize_room_id(room_id)
        with self._lock:
            if room_id in self._closed:
                raise RoomNotFound()
            room = self._rooms.get(room_id)
        if room is not None:
            return room

        record = self._store.load_latest(room_id) if room_id else None
        if record is None or record.status == 'closed':
            raise RoomNotFound()
        try:
            room = Room.from_record(record)
        except (ValueError, KeyError, TypeError) as exc:
            self._logger.warning(f"[rehydrate-failed] room={room_id} error={exc!r}")
            raise RehydrationFailed() from exc

        with self._lock:
            if room_id in self._closed:
                raise RoomNotFound()
            resident = self._rooms.setdefault(room_id, room)
        if resident is room:
            self._logger.info(f"[rehydrate] room={room_id} status={room.status.value} rev={room.revision}")
        return resident

    def create(self, host_user_id: int) -> Room:
        while True:
            room_id = self._generate_room_id()
            with self._lock:
                # Another create may have taken the code while the store was queried
                if room_id in self._rooms or room_id in self._closed:
                    continue
                room = Room(room_id, host_user_id)
                self._rooms[room_id] = room
            break
        self._logger.info(f"[room-create] room={room_id} host={host_user_id}")
        return room

    def _taken(self, code: str) -> bool:
        with self._lock:
            return code in self._rooms or code in self._closed

    def _generate_room_id(self) -> str:
        """Generate a short room code unused in memory and in the store."""
        while True:
            code = ''.join(random.choices(ROOM_CODE_ALPHABET, k=self._code_length))
            if not self._taken(code) and not self._store.exists(code):
                return code

    def evict_if_empty(self, room: Room) -> bool:
        """Drop ``room`` from memory when no seat is bound."""
        with room.lock:
            if room.evicted or not room.is_empty:
                return False
            with self._lock:
                if self._rooms.get(room.room_id) is room:
                    del self._rooms[room.room_id]
            room.evicted = True
        self._logger.info(f"[room-evict] room={room.room_id} rev={room.revision}")
        return True

    def discard(self, room: Room) -> None:
        with room.lock:
            with self._lock:
                if self._rooms.get(room.room_id) is room:
                    del self._rooms[room.room_id]
            room.evicted = True

    def remove(self, room_id) -> None:
        """Drop a closed room for good."""
        room_id = normalize_room_id(room_id)
        with self._lock:
            room = self._rooms.pop(room_id, None)
            self._closed.add(room_id)
            for cid in [c for c, r in self._seated.items() if r == room_id]:
                del self._seated[cid]
        if room is not None:
            room.evicted = True
        self._logger.info(f"[room-remove] room={room_id}")

    @contextmanager
    def acquire(self, room_id, rehydrate: bool = True):
        """Yield the resident room for ``room_id`` with its lock held.

        Retries when the instance was evicted between lookup and locking, and
        evicts the room again on exit if it is left with no bound seat.
        """
        while True:
            room = self.get_or_rehydrate(room_id) if rehydrate else self.get(room_id)
            with room.lock:
                if room.evicted:
                    continue
                try:
                    yield room
                finally:
                    self.evict_if_empty(room)
                return

    # ---- connection -> room seat index ----

    def note_seated(self, connection_id: str, room_id: str) -> None:
        with self._lock:
            self._seated[connection_id] = room_id

    def forget_seated(self, connection_id: str, room_id: Optional[str] = None) -> None:
        with self._lock:
            if room_id is None or self._seated.get(connection_id) == room_id:
                self._seated.pop(connection_id, None)

    def room_for_connection(self, connection_id: str) -> Optional[str]:
        with self._lock:
            return self._seated.get(connection_id)

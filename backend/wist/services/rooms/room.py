"""Room data model and the merge rules for shared state.

A Room holds everything two players share: the static world, dynamic object
state, puzzle progress and the last transform of each seat. All mutation
goes through the methods here while the caller holds ``room.lock``.
"""

import copy
import enum
import json
import threading
import time
from typing import Any, Dict, Optional


SNAPSHOT_VERSION = 1


class Seat(str, enum.Enum):
    HOST = 'host'
    CLIENT = 'client'

    @property
    def other(self) -> 'Seat':
        return Seat.CLIENT if self is Seat.HOST else Seat.HOST


class RoomStatus(str, enum.Enum):
    WAITING = 'waiting'
    INVITED = 'invited'
    ACTIVE = 'active'
    CLOSED = 'closed'


def default_world() -> Dict[str, Any]:
    return {
        'spawn_points': {
            'host': {'x': -2, 'y': 0.5, 'z': 0},
            'client': {'x': 2, 'y': 0.5, 'z': 0},
        },
        'blocks': {
            'block_1': {'x': 0, 'y': 0.5, 'z': -2},
            'block_2': {'x': 3, 'y': 0.5, 'z': -1},
        },
        'holes': {
            'hole_A': {'x': 0, 'z': -4, 'filled': False},
            'hole_B': {'x': 4, 'z': -3, 'filled': False},
        },
    }


class PuzzleProgress:
    """Per-seat levels plus the shared level both players have reached.

    ``shared_level`` is always derived, never stored.
    """

    def __init__(self, host_level: int = 1, client_level: int = 1, respawn_token: Any = None):
        self.host_level = host_level
        self.client_level = client_level
        self.respawn_token = respawn_token

    @property
    def shared_level(self) -> int:
        return min(self.host_level, self.client_level)

    def level_of(self, seat: Seat) -> int:
        return self.host_level if seat is Seat.HOST else self.client_level

    def set_level(self, seat: Seat, level: int) -> None:
        if seat is Seat.HOST:
            self.host_level = level
        else:
            self.client_level = level

    def respawn(self, token: Any) -> None:
        # A respawn snaps both players back to the shared checkpoint.
        shared = self.shared_level
        self.respawn_token = token
        self.host_level = shared
        self.client_level = shared

    def to_dict(self) -> Dict[str, Any]:
        return {
            'host_level': self.host_level,
            'client_level': self.client_level,
            'shared_level': self.shared_level,
            'respawn_token': self.respawn_token,
        }


class Room:
    def __init__(self, room_id: str, host_user_id: int, world: Optional[Dict[str, Any]] = None):
        self.room_id = room_id
        self.status = RoomStatus.WAITING
        self.host_user_id = host_user_id
        self.client_user_id: Optional[int] = None
        self.invited_user_id: Optional[int] = None
        self.display_names: Dict[str, str] = {}
        self.connections: Dict[Seat, Optional[str]] = {Seat.HOST: None, Seat.CLIENT: None}
        self.world = world if world is not None else default_world()
        self.objects: Dict[str, Dict[str, Any]] = copy.deepcopy(self.world.get('blocks', {}))
        self.puzzle = PuzzleProgress()
        self.player_positions: Dict[str, Any] = {}
        self.last_mutated_at = time.time()
        self.revision = 0
        # Set once the registry drops this instance; holders must re-resolve.
        self.evicted = False
        self.lock = threading.RLock()

    def __repr__(self):
        return f"<Room {self.room_id} status={self.status.value} rev={self.revision}>"

    # ---- seats ----

    def seat_for_connection(self, connection_id: str) -> Optional[Seat]:
        for seat, bound in self.connections.items():
            if bound is not None and bound == connection_id:
                return seat
        return None

    def seat_for_user(self, user_id: int) -> Optional[Seat]:
        if user_id == self.host_user_id:
            return Seat.HOST
        if self.client_user_id is not None and user_id == self.client_user_id:
            return Seat.CLIENT
        return None

    def bind(self, seat: Seat, connection_id: str, display_name: Optional[str] = None) -> Optional[str]:
        """Bind a seat to a connection and return the connection it replaced."""
        previous = self.connections[seat]
        self.connections[seat] = connection_id
        if display_name:
            self.display_names[seat.value] = display_name
        return previous if previous != connection_id else None

    def unbind(self, seat: Seat) -> None:
        self.connections[seat] = None

    def live_connections(self):
        return [(seat, cid) for seat, cid in self.connections.items() if cid is not None]

    @property
    def is_empty(self) -> bool:
        return not self.live_connections()

    def seat_map(self) -> Dict[str, Any]:
        user_ids = {Seat.HOST: self.host_user_id, Seat.CLIENT: self.client_user_id}
        return {
            seat.value: {
                'user_id': user_ids[seat],
                'display_name': self.display_names.get(seat.value),
                'connected': self.connections[seat] is not None,
            }
            for seat in Seat
        }

    # ---- lifecycle ----

    def invite(self, user_id: int) -> None:
        self.invited_user_id = user_id
        self.status = RoomStatus.INVITED

    def claim_client(self, user_id: int, display_name: Optional[str] = None) -> None:
        # clientUserId is set exactly once; this also consumes a pending invite.
        self.client_user_id = user_id
        if display_name:
            self.display_names[Seat.CLIENT.value] = display_name
        self.status = RoomStatus.ACTIVE

    def close(self) -> None:
        self.status = RoomStatus.CLOSED

    # ---- shared state ----

    def record_transform(self, seat: Seat, transform: Dict[str, Any]) -> None:
        self.player_positions[seat.value] = copy.deepcopy(transform)

    def merge_object(self, object_id: str, partial: Dict[str, Any]) -> Dict[str, Any]:
        """Shallow merge: fields absent from ``partial`` keep their value."""
        merged = dict(self.objects.get(object_id) or {})
        merged.update(copy.deepcopy(partial))
        self.objects[object_id] = merged
        return copy.deepcopy(merged)

    def apply_puzzle(self, seat: Seat, partial: Dict[str, Any]) -> None:
        if 'level_reached' in partial:
            self.puzzle.set_level(seat, partial['level_reached'])
        if 'respawn_token' in partial:
            self.puzzle.respawn(partial['respawn_token'])

    def touch(self) -> None:
        self.revision += 1
        self.last_mutated_at = time.time()

    # ---- views ----

    def state(self) -> Dict[str, Any]:
        return {
            'room_id': self.room_id,
            'world': copy.deepcopy(self.world),
            'puzzle_progress': self.puzzle.to_dict(),
            'objects': copy.deepcopy(self.objects),
            'player_positions': copy.deepcopy(self.player_positions),
        }

    def snapshot(self) -> Dict[str, Any]:
        return {
            'version': SNAPSHOT_VERSION,
            'world': self.world,
            'objects': self.objects,
            'puzzle_progress': {
                'host_level': self.puzzle.host_level,
                'client_level': self.puzzle.client_level,
                'respawn_token': self.puzzle.respawn_token,
            },
            'player_positions': self.player_positions,
            'display_names': self.display_names,
            'last_mutated_at': self.last_mutated_at,
        }

    def record_fields(self) -> Dict[str, Any]:
        """Columns of the durable record, serialized under the room lock."""
        return {
            'host_user_id': self.host_user_id,
            'client_user_id': self.client_user_id,
            'invited_user_id': self.invited_user_id,
            'status': self.status.value,
            'last_level': max(self.puzzle.host_level, self.puzzle.client_level),
            'state_json': json.dumps(self.snapshot()),
            'revision': self.revision,
        }

    @classmethod
    def from_record(cls, record) -> 'Room':
        """Rebuild a room from its durable record.

        Raises ValueError when the record is closed, its snapshot is missing
        or unreadable, or its lifecycle fields contradict each other.
        """
        status = RoomStatus(record.status)
        if status is RoomStatus.CLOSED:
            raise ValueError('record is closed')
        if not record.state_json:
            raise ValueError('missing state snapshot')
        state = json.loads(record.state_json)
        if not isinstance(state, dict):
            raise ValueError('snapshot is not an object')
        if status is RoomStatus.INVITED and (record.invited_user_id is None or record.client_user_id is not None):
            raise ValueError('invited record without a pending invitee')

        progress = state['puzzle_progress']
        host_level = progress['host_level']
        client_level = progress['client_level']
        for level in (host_level, client_level):
            if not is_level(level):
                raise ValueError(f'bad level {level!r}')

        world = state['world']
        objects = state['objects']
        positions = state.get('player_positions') or {}
        names = state.get('display_names') or {}
        if not all(isinstance(v, dict) for v in (world, objects, positions, names)):
            raise ValueError('snapshot sections must be objects')

        room = cls(record.room_id, record.host_user_id, world=world)
        room.status = status
        room.client_user_id = record.client_user_id
        room.invited_user_id = record.invited_user_id
        room.objects = objects
        room.puzzle = PuzzleProgress(host_level, client_level, progress.get('respawn_token'))
        room.player_positions = positions
        room.display_names = names
        room.last_mutated_at = state.get('last_mutated_at') or time.time()
        room.revision = record.revision or 0
        return room


def is_level(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1

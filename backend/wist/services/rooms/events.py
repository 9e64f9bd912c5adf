"""Server to client events.

The protocol surface is a closed set of frozen dataclasses. Each variant has
a fixed wire ``name`` and serializes its fields with ``payload()``.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Dict, Optional


@dataclass(frozen=True)
class Event:
    name: ClassVar[str] = ''

    def payload(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Connected(Event):
    name: ClassVar[str] = 'connected'
    user_id: int
    display_name: str


@dataclass(frozen=True)
class RoomCreated(Event):
    name: ClassVar[str] = 'room_created'
    room_id: str
    seat: str


@dataclass(frozen=True)
class RoomState(Event):
    name: ClassVar[str] = 'room_state'
    room_id: str
    world: Dict[str, Any]
    puzzle_progress: Dict[str, Any]
    objects: Dict[str, Any]
    player_positions: Dict[str, Any]


@dataclass(frozen=True)
class SeatAssigned(Event):
    name: ClassVar[str] = 'seat_assigned'
    room_id: str
    seat: str


@dataclass(frozen=True)
class SeatMapChanged(Event):
    name: ClassVar[str] = 'seat_map_changed'
    room_id: str
    status: str
    seats: Dict[str, Any]


@dataclass(frozen=True)
class SeatRevoked(Event):
    name: ClassVar[str] = 'seat_revoked'
    room_id: str
    seat: str


@dataclass(frozen=True)
class ParticipantLeft(Event):
    name: ClassVar[str] = 'participant_left'
    room_id: str
    seat: str
    seats: Dict[str, Any]


@dataclass(frozen=True)
class InviteSent(Event):
    name: ClassVar[str] = 'invite_sent'
    room_id: str
    target_display_name: str


@dataclass(frozen=True)
class InviteReceived(Event):
    name: ClassVar[str] = 'invite_received'
    room_id: str
    host_display_name: str


@dataclass(frozen=True)
class RemoteTransform(Event):
    name: ClassVar[str] = 'remote_transform'
    room_id: str
    seat: str
    transform: Dict[str, Any]


@dataclass(frozen=True)
class ObjectChanged(Event):
    name: ClassVar[str] = 'object_changed'
    room_id: str
    object_id: str
    state: Dict[str, Any]


@dataclass(frozen=True)
class PuzzleProgressChanged(Event):
    name: ClassVar[str] = 'puzzle_progress_changed'
    room_id: str
    host_level: int
    client_level: int
    shared_level: int
    respawn_token: Any = None


@dataclass(frozen=True)
class RoomClosed(Event):
    name: ClassVar[str] = 'room_closed'
    room_id: str


@dataclass(frozen=True)
class OperationError(Event):
    name: ClassVar[str] = 'error'
    code: str
    message: str
    operation: str
    room_id: Optional[str] = field(default=None)


@dataclass(frozen=True)
class InviteError(OperationError):
    name: ClassVar[str] = 'invite_error'


@dataclass(frozen=True)
class JoinError(OperationError):
    name: ClassVar[str] = 'join_error'


# Error event emitted for a failed inbound operation
ERROR_EVENTS = {
    'invite': InviteError,
    'join_room': JoinError,
}


def error_event_for(operation: str, error, room_id: Optional[str] = None) -> OperationError:
    event_cls = ERROR_EVENTS.get(operation, OperationError)
    return event_cls(code=error.code, message=error.message, operation=operation, room_id=room_id)

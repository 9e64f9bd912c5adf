"""Session protocol: the operations a connected participant may invoke.

Every operation resolves its room through the registry, validates with the
room lock held, mutates, and emits events before releasing the lock, so the
events of one room go out in the order its mutations were applied.
Validation always completes before the first mutation. Durable writes are
handed to the store after the lock is released.
"""

import copy
from numbers import Number
from typing import Any, Callable, Dict, Optional

from . import events
from .errors import (
    InvalidPayload,
    InviteOnlyRejected,
    NoPendingInvite,
    NotHost,
    NotSeated,
    RoomClosed,
    RoomFull,
    RoomNotFound,
    RoomNotInWaitingState,
    TargetUserNotFound,
)
from .identity import Identity
from .registry import normalize_room_id
from .room import Room, RoomStatus, Seat, is_level

Emit = Callable[[str, events.Event], None]


class SessionHandler:
    def __init__(self, registry, store, directory, users, emit: Emit, logger):
        self.registry = registry
        self.store = store
        self.directory = directory
        self.users = users
        self._emit = emit
        self.logger = logger

    # ---- delivery helpers ----

    def send(self, connection_id: Optional[str], event: events.Event) -> None:
        if connection_id:
            self._emit(connection_id, event)

    def _broadcast(self, room: Room, event: events.Event, exclude: Optional[str] = None) -> None:
        for _, cid in room.live_connections():
            if cid != exclude:
                self._emit(cid, event)

    def _send_state(self, connection_id: str, room: Room) -> None:
        self.send(connection_id, events.RoomState(**room.state()))

    @staticmethod
    def _require_seat(room: Room, connection_id: str) -> Seat:
        seat = room.seat_for_connection(connection_id)
        if seat is None:
            raise NotSeated()
        return seat

    @staticmethod
    def _ensure_open(room: Room) -> None:
        if room.status is RoomStatus.CLOSED:
            raise RoomClosed()

    # ---- connection lifecycle ----

    def connect(self, connection_id: str, caller: Identity) -> None:
        self.directory.register(caller.id, connection_id)
        self.send(connection_id, events.Connected(user_id=caller.id, display_name=caller.display_name))

    def disconnect(self, connection_id: str) -> None:
        self.directory.unregister(connection_id)
        room_id = self.registry.room_for_connection(connection_id)
        if room_id:
            self._vacate(connection_id, room_id)
        self.registry.forget_seated(connection_id)

    def _vacate(self, connection_id: str, room_id: str) -> None:
        """Unbind whatever seat ``connection_id`` holds in ``room_id``.

        Durable identity, positions and progress stay; the room is evicted
        from memory if this leaves both seats empty.
        """
        try:
            with self.registry.acquire(room_id, rehydrate=False) as room:
                seat = room.seat_for_connection(connection_id)
                if seat is None:
                    return
                room.unbind(seat)
                room.touch()
                self.registry.forget_seated(connection_id, room.room_id)
                fields = room.record_fields()
                # Staged before eviction so a rejoin never rehydrates an older row
                self.store.stage(room.room_id, fields)
                if room.is_empty:
                    self.logger.info(f"[seat-unbind] room={room.room_id} seat={seat.value} last connection left")
                else:
                    self.logger.info(f"[seat-unbind] room={room.room_id} seat={seat.value}")
                    self._broadcast(room, events.ParticipantLeft(
                        room_id=room.room_id, seat=seat.value, seats=room.seat_map(),
                    ))
        except RoomNotFound:
            self.registry.forget_seated(connection_id, room_id)
            return
        self.store.mirror(room_id, fields)

    def _leave_other_room(self, connection_id: str, keep: Optional[str] = None) -> None:
        current = self.registry.room_for_connection(connection_id)
        if current and current != keep:
            self._vacate(connection_id, current)

    # ---- operations ----

    def create_room(self, connection_id: str, caller: Identity) -> Room:
        self._leave_other_room(connection_id)
        room = self.registry.create(caller.id)
        with room.lock:
            room.bind(Seat.HOST, connection_id, caller.display_name)
            room.touch()
        try:
            self.store.create(room)
        except Exception:
            self.registry.discard(room)
            raise
        self.registry.note_seated(connection_id, room.room_id)
        with room.lock:
            self.send(connection_id, events.RoomCreated(room_id=room.room_id, seat=Seat.HOST.value))
            self._send_state(connection_id, room)
            self.send(connection_id, events.SeatAssigned(room_id=room.room_id, seat=Seat.HOST.value))
        return room

    def join_room(self, connection_id: str, caller: Identity, room_id) -> Seat:
        room_id = normalize_room_id(room_id)
        self._leave_other_room(connection_id, keep=room_id)
        with self.registry.acquire(room_id) as room:
            self._ensure_open(room)
            if room.status is RoomStatus.INVITED and caller.id not in (room.host_user_id, room.invited_user_id):
                raise InviteOnlyRejected()
            seat = room.seat_for_user(caller.id)
            if seat is None and room.client_user_id is not None:
                raise RoomFull()

            if seat is None:
                seat = Seat.CLIENT
                room.claim_client(caller.id, caller.display_name)
                self.logger.info(f"[room-join] room={room_id} user={caller.id} claimed client seat")
            else:
                self.logger.info(f"[room-join] room={room_id} user={caller.id} resumed {seat.value} seat")
            replaced = room.bind(seat, connection_id, caller.display_name)
            room.touch()
            self.registry.note_seated(connection_id, room_id)
            if replaced:
                self.registry.forget_seated(replaced, room_id)
                self.send(replaced, events.SeatRevoked(room_id=room_id, seat=seat.value))

            self.send(connection_id, events.SeatAssigned(room_id=room_id, seat=seat.value))
            self._broadcast(room, events.SeatMapChanged(
                room_id=room_id, status=room.status.value, seats=room.seat_map(),
            ))
            self._broadcast(room, events.RoomState(**room.state()))
            fields = room.record_fields()
        self.store.mirror(room_id, fields)
        return seat

    def invite(self, connection_id: Optional[str], caller: Identity, room_id, target_display_name) -> Identity:
        room_id = normalize_room_id(room_id)
        if not isinstance(target_display_name, str) or not target_display_name.strip():
            raise InvalidPayload('target_display_name is required')
        target = self.users.find_by_display_name(target_display_name)
        with self.registry.acquire(room_id) as room:
            self._ensure_open(room)
            if caller.id != room.host_user_id:
                raise NotHost()
            if room.status is not RoomStatus.WAITING:
                raise RoomNotInWaitingState()
            if target is None:
                raise TargetUserNotFound()
            if target.id == caller.id:
                raise InvalidPayload('You cannot invite yourself')
            room.invite(target.id)
            room.touch()
            fields = room.record_fields()
        self.logger.info(f"[room-invite] room={room_id} host={caller.id} target={target.id}")
        self.store.mirror(room_id, fields)

        self.send(connection_id, events.InviteSent(room_id=room_id, target_display_name=target.display_name))
        notice = events.InviteReceived(room_id=room_id, host_display_name=caller.display_name)
        for cid in self.directory.connections_for(target.id):
            self.send(cid, notice)
        return target

    def accept_invite(self, caller: Identity, room_id) -> Dict[str, Any]:
        """Claim the client seat of a room ``caller`` was invited to.

        The seat is not bound to any connection; the caller resumes it with a
        later ``join_room``.
        """
        room_id = normalize_room_id(room_id)
        with self.registry.acquire(room_id) as room:
            self._ensure_open(room)
            if room.status is not RoomStatus.INVITED:
                if room.client_user_id == caller.id:
                    return room.seat_map()
                raise NoPendingInvite()
            if room.invited_user_id != caller.id:
                raise InviteOnlyRejected()
            room.claim_client(caller.id, caller.display_name)
            room.touch()
            self._broadcast(room, events.SeatMapChanged(
                room_id=room_id, status=room.status.value, seats=room.seat_map(),
            ))
            seats = room.seat_map()
            fields = room.record_fields()
        self.logger.info(f"[invite-accept] room={room_id} user={caller.id}")
        self.store.mirror(room_id, fields)
        return seats

    def record_move(self, connection_id: str, room_id, transform) -> None:
        if not isinstance(transform, dict):
            raise InvalidPayload('transform must be an object')
        with self.registry.acquire(room_id, rehydrate=False) as room:
            self._ensure_open(room)
            seat = self._require_seat(room, connection_id)
            room.record_transform(seat, transform)
            self.send(room.connections[seat.other], events.RemoteTransform(
                room_id=room.room_id, seat=seat.value, transform=copy.deepcopy(transform),
            ))

    def update_object(self, connection_id: str, room_id, object_id, partial_state) -> Dict[str, Any]:
        if not isinstance(object_id, str) or not object_id:
            raise InvalidPayload('object_id is required')
        if not isinstance(partial_state, dict):
            raise InvalidPayload('state must be an object')
        with self.registry.acquire(room_id, rehydrate=False) as room:
            self._ensure_open(room)
            seat = self._require_seat(room, connection_id)
            merged = room.merge_object(object_id, partial_state)
            room.touch()
            self.send(room.connections[seat.other], events.ObjectChanged(
                room_id=room.room_id, object_id=object_id, state=merged,
            ))
            fields = room.record_fields()
        self.store.mirror(room.room_id, fields)
        return merged

    def update_puzzle(self, connection_id: str, room_id, partial) -> Dict[str, Any]:
        if not isinstance(partial, dict) or not ({'level_reached', 'respawn_token'} & set(partial)):
            raise InvalidPayload('level_reached or respawn_token is required')
        if 'level_reached' in partial and not is_level(partial['level_reached']):
            raise InvalidPayload('level_reached must be a positive integer')
        token = partial.get('respawn_token')
        if 'respawn_token' in partial and not isinstance(token, (str, Number)):
            raise InvalidPayload('respawn_token must be a string or number')
        with self.registry.acquire(room_id, rehydrate=False) as room:
            self._ensure_open(room)
            seat = self._require_seat(room, connection_id)
            room.apply_puzzle(seat, partial)
            room.touch()
            progress = room.puzzle.to_dict()
            self.logger.info(
                f"[puzzle] room={room.room_id} seat={seat.value} host={progress['host_level']} "
                f"client={progress['client_level']} shared={progress['shared_level']}"
            )
            self._broadcast(room, events.PuzzleProgressChanged(room_id=room.room_id, **progress))
            fields = room.record_fields()
        self.store.mirror(room.room_id, fields)
        return progress

    def close_room(self, connection_id: Optional[str], caller: Identity, room_id) -> None:
        room_id = normalize_room_id(room_id)
        with self.registry.acquire(room_id) as room:
            self._ensure_open(room)
            if caller.id != room.host_user_id:
                raise NotHost()
            recipients = [cid for _, cid in room.live_connections()]
            room.close()
            self.registry.remove(room_id)
            notice = events.RoomClosed(room_id=room_id)
            for cid in recipients:
                self.send(cid, notice)
            if connection_id and connection_id not in recipients:
                self.send(connection_id, notice)
        self.logger.info(f"[room-close] room={room_id} host={caller.id}")
        self.store.close(room_id)

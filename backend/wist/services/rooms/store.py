"""Durable room records.

Creates and reads ``RoomRecord`` rows inline, and mirrors room snapshots to
them off the hot path: writes are dispatched on a Socket.IO background task
so a slow database never delays a mutation or its broadcast. In TESTING mode
(or with PERSIST_ASYNC off) writes run inline for determinism.

A mirrored snapshot stays staged in memory until its write commits, and
rehydration prefers it over an older row, so a room evicted just before its
last write lands comes back with its newest state.
"""

import threading
from contextlib import nullcontext
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

from flask import current_app, has_app_context

from wist import db, socketio
from wist.models import RoomRecord, utcnow


class RoomStore:
    def __init__(self, app):
        self.app = app
        self._staged: Dict[str, Dict[str, Any]] = {}
        self._staged_lock = threading.Lock()

    # ---- inline reads and creation ----

    def create(self, room) -> RoomRecord:
        now = utcnow()
        record = RoomRecord(room_id=room.room_id, created_at=now, updated_at=now, **room.record_fields())
        db.session.add(record)
        db.session.commit()
        self.app.logger.info(f"[record-create] room={room.room_id} host={room.host_user_id}")
        return record

    def exists(self, room_id: str) -> bool:
        return db.session.query(RoomRecord.id).filter_by(room_id=room_id).first() is not None

    def load(self, room_id: str) -> Optional[RoomRecord]:
        return RoomRecord.query.filter_by(room_id=room_id).first()

    def load_latest(self, room_id: str):
        """The durable record, or a newer staged snapshot of the same room."""
        record = self.load(room_id)
        with self._staged_lock:
            staged = self._staged.get(room_id)
        if record is None or record.status == 'closed' or staged is None:
            return record
        if staged['revision'] <= (record.revision or 0):
            self._settle(room_id, record.revision)
            return record
        self.app.logger.info(
            f"[record-staged] room={room_id} staged={staged['revision']} stored={record.revision}"
        )
        return SimpleNamespace(room_id=room_id, **staged)

    def list_active_for_user(self, user_id: int) -> List[RoomRecord]:
        return (
            RoomRecord.query
            .filter(RoomRecord.status != 'closed')
            .filter(db.or_(RoomRecord.host_user_id == user_id, RoomRecord.client_user_id == user_id))
            .order_by(RoomRecord.updated_at.desc())
            .all()
        )

    def list_invites_for_user(self, user_id: int) -> List[RoomRecord]:
        return (
            RoomRecord.query
            .filter_by(status='invited', invited_user_id=user_id)
            .order_by(RoomRecord.updated_at.desc())
            .all()
        )

    # ---- mirrored writes ----

    def mirror(self, room_id: str, fields: Dict[str, Any]) -> None:
        """Write a snapshot taken by ``Room.record_fields``; failures are logged."""
        self.stage(room_id, fields)
        self._dispatch(self._write_snapshot, room_id, fields)

    def close(self, room_id: str) -> None:
        self._dispatch(self._write_closed, room_id)

    def stage(self, room_id: str, fields: Dict[str, Any]) -> None:
        """Hold ``fields`` as the newest snapshot of ``room_id`` until written."""
        with self._staged_lock:
            staged = self._staged.get(room_id)
            if staged is None or staged['revision'] < fields['revision']:
                self._staged[room_id] = fields

    def _settle(self, room_id: str, revision: Optional[int]) -> None:
        with self._staged_lock:
            staged = self._staged.get(room_id)
            if staged is not None and revision is not None and staged['revision'] <= revision:
                del self._staged[room_id]

    def _dispatch(self, fn, *args) -> None:
        if self.app.config.get('TESTING') or not self.app.config.get('PERSIST_ASYNC', True):
            fn(*args)
        else:
            socketio.start_background_task(fn, *args)

    def _app_scope(self):
        # Inline writes reuse the caller's context and session.
        if has_app_context() and current_app._get_current_object() is self.app:
            return nullcontext()
        return self.app.app_context()

    def _write_snapshot(self, room_id: str, fields: Dict[str, Any]) -> None:
        revision = fields.get('revision')
        with self._app_scope():
            try:
                level = int(fields['last_level'])
                values = {
                    'client_user_id': fields['client_user_id'],
                    'invited_user_id': fields['invited_user_id'],
                    'status': fields['status'],
                    'state_json': fields['state_json'],
                    'revision': revision,
                    'last_level': db.case(
                        (RoomRecord.last_level < level, level),
                        else_=RoomRecord.last_level,
                    ),
                    'updated_at': utcnow(),
                }
                updated = (
                    RoomRecord.query
                    .filter(RoomRecord.room_id == room_id)
                    .filter(RoomRecord.revision < revision)
                    .filter(RoomRecord.status != 'closed')
                    .update(values, synchronize_session=False)
                )
                db.session.commit()
                # Either written, or the row already holds this revision or later
                self._settle(room_id, revision)
                if not updated:
                    self.app.logger.debug(f"[mirror-skip] room={room_id} revision={revision} stale or closed")
            except Exception:
                db.session.rollback()
                self.app.logger.exception(f"[mirror-failed] room={room_id} revision={revision}")

    def _write_closed(self, room_id: str) -> None:
        with self._app_scope():
            try:
                now = utcnow()
                RoomRecord.query.filter_by(room_id=room_id).update(
                    {'status': 'closed', 'closed_at': now, 'updated_at': now},
                    synchronize_session=False,
                )
                db.session.commit()
                with self._staged_lock:
                    self._staged.pop(room_id, None)
                self.app.logger.info(f"[record-close] room={room_id}")
            except Exception:
                db.session.rollback()
                self.app.logger.exception(f"[close-failed] room={room_id}")

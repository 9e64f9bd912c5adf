from functools import wraps
from typing import Any, Dict

from flask import current_app, request
from flask_login import current_user

from wist import socketio
from wist.services.rooms import Identity, SessionHandler
from wist.services.rooms.errors import InvalidPayload, LoginRequired, RehydrationFailed, SessionError
from wist.services.rooms.events import Event, OperationError, error_event_for

NAMESPACE = '/ws'


def deliver(connection_id: str, event: Event) -> None:
    """Emit one protocol event to a single connection."""
    socketio.emit(event.name, event.payload(), to=connection_id, namespace=NAMESPACE)


def _session() -> SessionHandler:
    return current_app.extensions['wist_session']


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _caller() -> Identity:
    if not current_user.is_authenticated:
        raise LoginRequired()
    return Identity(current_user.id, current_user.username)


def _require(data: Dict[str, Any], key: str):
    value = data.get(key)
    if value is None or value == '':
        raise InvalidPayload(f'{key} is required')
    return value


def _guarded(operation: str):
    """Report failures to the originating connection only.

    A SessionError becomes the operation's typed error event. Anything else
    is logged with its traceback and reported as InternalError, so one
    room's fault never reaches other rooms or connections.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(data=None):
            data = data if isinstance(data, dict) else {}
            room_id = data.get('room_id')
            try:
                return fn(data)
            except SessionError as exc:
                if isinstance(exc, RehydrationFailed):
                    current_app.logger.warning(f"[op-rejected] op={operation} room={room_id} rehydration failed")
                else:
                    current_app.logger.info(f"[op-rejected] op={operation} room={room_id} code={exc.code}")
                deliver(_get_sid(), error_event_for(operation, exc, room_id=room_id))
            except Exception:
                current_app.logger.exception(f"[room-fault] op={operation} room={room_id} sid={_get_sid()}")
                deliver(_get_sid(), OperationError(
                    code='InternalError', message='Internal error', operation=operation, room_id=room_id,
                ))
        return wrapper
    return decorator


def handle_connect(auth=None):
    if current_user.is_authenticated:
        _session().connect(_get_sid(), _caller())


def handle_disconnect(reason=None):
    try:
        _session().disconnect(_get_sid())
    except Exception:
        current_app.logger.exception(f"[disconnect-fault] sid={_get_sid()}")


@_guarded('create_room')
def handle_create_room(data):
    _session().create_room(_get_sid(), _caller())


@_guarded('invite')
def handle_invite(data):
    caller = _caller()
    _session().invite(_get_sid(), caller, _require(data, 'room_id'), data.get('target_display_name'))


@_guarded('join_room')
def handle_join_room(data):
    caller = _caller()
    _session().join_room(_get_sid(), caller, _require(data, 'room_id'))


@_guarded('record_move')
def handle_record_move(data):
    _caller()
    _session().record_move(_get_sid(), _require(data, 'room_id'), data.get('transform'))


@_guarded('update_object')
def handle_update_object(data):
    _caller()
    _session().update_object(_get_sid(), _require(data, 'room_id'), data.get('object_id'), data.get('state'))


@_guarded('update_puzzle')
def handle_update_puzzle(data):
    _caller()
    _session().update_puzzle(_get_sid(), _require(data, 'room_id'), data.get('partial'))


@_guarded('close_room')
def handle_close_room(data):
    caller = _caller()
    _session().close_room(_get_sid(), caller, _require(data, 'room_id'))


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on namespace '/ws'."""
    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=NAMESPACE)
    socketio.on_event('create_room', handle_create_room, namespace=NAMESPACE)
    socketio.on_event('invite', handle_invite, namespace=NAMESPACE)
    socketio.on_event('join_room', handle_join_room, namespace=NAMESPACE)
    socketio.on_event('record_move', handle_record_move, namespace=NAMESPACE)
    socketio.on_event('update_object', handle_update_object, namespace=NAMESPACE)
    socketio.on_event('update_puzzle', handle_update_puzzle, namespace=NAMESPACE)
    socketio.on_event('close_room', handle_close_room, namespace=NAMESPACE)

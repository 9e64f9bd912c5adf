from flask import Blueprint, current_app, jsonify
from flask_login import current_user, login_required

from wist.services.rooms import Identity
from wist.services.rooms.errors import RoomNotFound, SessionError
from wist.services.rooms.registry import normalize_room_id

rooms = Blueprint('rooms', __name__)

STATUS_BY_CODE = {
    'RoomNotFound': 404,
    'RoomClosed': 404,
    'NotHost': 403,
    'InviteOnlyRejected': 403,
    'RoomFull': 409,
    'RoomNotInWaitingState': 409,
    'NoPendingInvite': 409,
    'TargetUserNotFound': 404,
    'InvalidPayload': 400,
    'LoginRequired': 401,
}


def _session():
    return current_app.extensions['wist_session']


@rooms.errorhandler(SessionError)
def handle_session_error(exc):
    return jsonify(exc.to_dict()), STATUS_BY_CODE.get(exc.code, 400)


@rooms.route('/active', methods=['GET'])
@login_required
def list_active_rooms():
    """
    Rooms the current user hosts or has joined that are not closed, newest first.
    """
    records = _session().store.list_active_for_user(current_user.id)
    return jsonify([r.to_dict(viewer_id=current_user.id) for r in records]), 200


@rooms.route('/invites', methods=['GET'])
@login_required
def list_invites():
    """
    Rooms with an invite pending for the current user.
    """
    records = _session().store.list_invites_for_user(current_user.id)
    return jsonify([
        {
            'room_id': r.room_id,
            'host_user_id': r.host_user_id,
            'host_username': r.host.username if r.host else None,
            'updated_at': r.updated_at.isoformat() if r.updated_at else None,
        }
        for r in records
    ]), 200


@rooms.route('/<string:room_id>/accept', methods=['POST'])
@login_required
def accept_invite(room_id):
    """
    Accepts a pending invite. The client seat becomes the caller's; the
    caller then joins over the socket to take it.
    """
    caller = Identity(current_user.id, current_user.username)
    seats = _session().accept_invite(caller, room_id)
    return jsonify({'room_id': normalize_room_id(room_id), 'seat': 'client', 'seats': seats}), 200


@rooms.route('/<string:room_id>', methods=['GET'])
@login_required
def get_room(room_id):
    record = _session().store.load(normalize_room_id(room_id))
    if record is None:
        return jsonify(RoomNotFound().to_dict()), 404
    if current_user.id not in (record.host_user_id, record.client_user_id, record.invited_user_id):
        return jsonify({'error': 'Forbidden', 'message': 'You are not in this room'}), 403
    return jsonify(record.to_dict(viewer_id=current_user.id)), 200

"""Caller-attributable errors raised by the session layer.

Every error carries a stable ``code`` that is sent back to the originating
connection (or mapped to an HTTP status by the REST layer). None of them is
fatal: a rejected operation leaves the room untouched.
"""


class SessionError(Exception):
    code = 'SessionError'
    default_message = 'Session error'

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self):
        return {'error': self.code, 'message': self.message}


class RoomNotFound(SessionError):
    code = 'RoomNotFound'
    default_message = 'Room not found'


class RehydrationFailed(RoomNotFound):
    # Reported to callers as RoomNotFound; logged under its own tag.
    default_message = 'Room not found'


class RoomClosed(SessionError):
    code = 'RoomClosed'
    default_message = 'Room is closed'


class RoomFull(SessionError):
    code = 'RoomFull'
    default_message = 'Room is full'


class InviteOnlyRejected(SessionError):
    code = 'InviteOnlyRejected'
    default_message = 'This room is waiting for an invited player'


class NotHost(SessionError):
    code = 'NotHost'
    default_message = 'Only the host can do that'


class RoomNotInWaitingState(SessionError):
    code = 'RoomNotInWaitingState'
    default_message = 'Room is not waiting for a player'


class TargetUserNotFound(SessionError):
    code = 'TargetUserNotFound'
    default_message = 'User not found'


class NoPendingInvite(SessionError):
    code = 'NoPendingInvite'
    default_message = 'No pending invite for this room'


class NotSeated(SessionError):
    code = 'NotSeated'
    default_message = 'Connection does not hold a seat in this room'


class InvalidPayload(SessionError):
    code = 'InvalidPayload'
    default_message = 'Invalid payload'


class LoginRequired(SessionError):
    code = 'LoginRequired'
    default_message = 'Login required'

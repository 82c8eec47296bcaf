"""Errors raised by room operations.

Validation errors are client-correctable and carry the HTTP status the
rooms blueprint answers with. ``ServiceUnavailable`` is raised when a
transaction keeps conflicting after all retries.
"""


class RoomError(Exception):
    status_code = 400
    message = 'Room operation failed'

    def __init__(self, message=None):
        super().__init__(message or self.message)
        self.message = message or self.message

    def to_dict(self):
        return {'error': self.message, 'code': type(self).__name__}


class RoomNotFound(RoomError):
    status_code = 404
    message = 'Room not found. Please check the room code.'


class RoomNotJoinable(RoomError):
    status_code = 409
    message = 'Room is not accepting new players. Game has already started.'


class RoomFull(RoomError):
    status_code = 409
    message = 'Room is full'


class AlreadyJoined(RoomError):
    status_code = 409
    message = 'You are already in this room'


class NotInRoom(RoomError):
    status_code = 404
    message = 'Player is not in this room'


class NotHost(RoomError):
    status_code = 403
    message = 'Only the host can do that'


class CannotKickHost(RoomError):
    message = 'Host cannot be kicked'


class EmptyRoom(RoomError):
    message = 'Cannot start game with no players'


class HostCannotLeave(RoomError):
    message = 'The host cannot leave; cancel or delete the room instead'


class InvalidTransition(RoomError):
    status_code = 409
    message = 'Room cannot change to that state'


class RoomNotActive(RoomError):
    status_code = 409
    message = 'Room is not active'


class ServiceUnavailable(RoomError):
    status_code = 503
    message = 'Service temporarily unavailable. Please try again.'


class PlayerNotFound(RoomError):
    status_code = 404
    message = 'Player data not found'


class InvalidRequest(RoomError):
    message = 'Invalid request'

from flask_socketio import join_room, leave_room, emit
from flask import current_app, request

from playrooms.errors import RoomError
from playrooms.services.rooms import get_room, room_leaderboard
from playrooms.store import NAMESPACE, room_channel


def handle_connect():
    emit('connected', {'message': f'Connected to {NAMESPACE}'})


def handle_disconnect(*args):
    current_app.logger.debug(f"[ws-disconnect] sid={getattr(request, 'sid', None)}")


def handle_subscribe_room(data):
    """Subscribe this socket to a room's channel and send the current state.

    Later ``room_update``/``leaderboard_update`` pushes arrive in commit order.
    """
    room_code = ((data or {}).get('room_code') or '').strip().upper()
    if not room_code:
        emit('error', {'message': 'room_code is required'})
        return
    try:
        room = get_room(room_code)
    except RoomError as err:
        emit('error', {'message': err.message, 'code': type(err).__name__})
        return
    join_room(room_channel(room.code))
    emit('room_snapshot', {
        'room': room.to_dict(),
        'leaderboard': room_leaderboard(room),
    })


def handle_unsubscribe_room(data):
    room_code = ((data or {}).get('room_code') or '').strip().upper()
    if not room_code:
        emit('error', {'message': 'room_code is required'})
        return
    leave_room(room_channel(room_code))
    emit('unsubscribed', {'room_code': room_code})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers() -> None:
    from playrooms import socketio

    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=NAMESPACE)
    socketio.on_event('subscribe_room', handle_subscribe_room, namespace=NAMESPACE)
    socketio.on_event('unsubscribe_room', handle_unsubscribe_room, namespace=NAMESPACE)
    socketio.on_event('ping', handle_ping, namespace=NAMESPACE)

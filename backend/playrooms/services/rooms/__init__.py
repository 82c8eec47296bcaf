from .lifecycle import (
    create_room,
    join_room,
    leave_room,
    kick_player,
    start_room,
    advance_room,
    end_room,
    cancel_room,
    delete_room,
    update_room_settings,
    set_player_ready,
    list_open_rooms,
    get_room,
)
from .scoring import append_submission, validate_submission, compute_points
from .leaderboard import room_leaderboard, global_leaderboard

__all__ = [
    'create_room', 'join_room', 'leave_room', 'kick_player', 'start_room',
    'advance_room', 'end_room', 'cancel_room', 'delete_room',
    'update_room_settings', 'set_player_ready', 'list_open_rooms', 'get_room',
    'append_submission', 'validate_submission', 'compute_points',
    'room_leaderboard', 'global_leaderboard',
]

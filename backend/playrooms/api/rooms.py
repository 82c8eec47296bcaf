import math

from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user

from playrooms.errors import RoomError
from playrooms.services.rooms import (
    advance_room,
    append_submission,
    cancel_room,
    create_room,
    delete_room,
    end_room,
    get_room,
    join_room,
    kick_player,
    leave_room,
    list_open_rooms,
    room_leaderboard,
    set_player_ready,
    start_room,
    update_room_settings,
)
from playrooms.services.rooms.profiles import room_games
from playrooms.services.rooms.scoring import room_submissions
from playrooms.services.rooms.sessions import current_session, session_puzzles

rooms = Blueprint('rooms', __name__)


@rooms.errorhandler(RoomError)
def handle_room_error(err):
    current_app.logger.info(f"[room-error] path={request.path} code={type(err).__name__} message={err.message}")
    return jsonify(err.to_dict()), err.status_code


def _player_id():
    return current_user.get_id()


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@rooms.route('/', methods=['POST'])
@login_required
def create():
    data = _json_body()
    max_players = data.get('max_players')
    try:
        max_players = int(max_players) if max_players is not None else None
    except (TypeError, ValueError):
        return jsonify({'error': 'max_players must be a number'}), 400
    if data.get('settings') is not None and not isinstance(data['settings'], dict):
        return jsonify({'error': 'settings must be an object'}), 400
    if data.get('game_type') is not None and not isinstance(data['game_type'], str):
        return jsonify({'error': 'game_type must be a string'}), 400
    room = create_room(_player_id(), data.get('game_type') or 'mixed', data.get('settings'), max_players)
    return jsonify({'room_code': room.code, 'room': room.to_dict()}), 201


@rooms.route('/', methods=['GET'])
@login_required
def list_rooms():
    return jsonify({'rooms': [r.to_dict(include_players=False) for r in list_open_rooms()]})


@rooms.route('/<string:code>', methods=['GET'])
@login_required
def get_room_state(code):
    return jsonify(get_room(code).to_dict())


@rooms.route('/<string:code>/players', methods=['GET'])
@login_required
def get_players(code):
    room = get_room(code)
    return jsonify({'room_code': room.code, 'players': [p.to_dict() for p in room.players]})


@rooms.route('/<string:code>/join', methods=['POST'])
@login_required
def join(code):
    room = join_room(code, _player_id())
    return jsonify({'success': True, 'room': room.to_dict()})


@rooms.route('/<string:code>/leave', methods=['POST'])
@login_required
def leave(code):
    room = leave_room(code, _player_id())
    return jsonify({'success': True, 'room': room.to_dict()})


@rooms.route('/<string:code>/kick', methods=['POST'])
@login_required
def kick(code):
    data = _json_body()
    target_id = data.get('player_id')
    if not target_id:
        return jsonify({'error': 'player_id is required'}), 400
    room = kick_player(code, _player_id(), target_id)
    return jsonify({'success': True, 'room': room.to_dict()})


@rooms.route('/<string:code>/start', methods=['POST'])
@login_required
def start(code):
    room = start_room(code, _player_id())
    return jsonify({'success': True, 'room': room.to_dict()})


@rooms.route('/<string:code>/advance', methods=['POST'])
@login_required
def advance(code):
    room = advance_room(code, _player_id())
    return jsonify({'success': True, 'room': room.to_dict()})


@rooms.route('/<string:code>/end', methods=['POST'])
@login_required
def end(code):
    data = _json_body()
    room = end_room(code, data.get('results'), host_id=_player_id())
    return jsonify({'success': True, 'room': room.to_dict()})


@rooms.route('/<string:code>/cancel', methods=['POST'])
@login_required
def cancel(code):
    room = cancel_room(code, _player_id())
    return jsonify({'success': True, 'room': room.to_dict()})


@rooms.route('/<string:code>/ready', methods=['POST'])
@login_required
def ready(code):
    data = _json_body()
    room = set_player_ready(code, _player_id(), bool(data.get('is_ready', True)))
    return jsonify({'success': True, 'room': room.to_dict()})


@rooms.route('/<string:code>/settings', methods=['PATCH'])
@login_required
def update_settings(code):
    data = _json_body()
    if not isinstance(data.get('settings'), dict):
        return jsonify({'error': 'settings object is required'}), 400
    room = update_room_settings(code, _player_id(), data['settings'])
    return jsonify({'success': True, 'room': room.to_dict()})


@rooms.route('/<string:code>', methods=['DELETE'])
@login_required
def delete(code):
    room_code = delete_room(code, _player_id())
    return jsonify({'success': True, 'room_code': room_code})


@rooms.route('/<string:code>/puzzles', methods=['GET'])
@login_required
def get_puzzles(code):
    room = get_room(code)
    index = request.args.get('session', type=int)
    return jsonify({
        'room_code': room.code,
        'session_index': room.current_session_index if index is None else index,
        'session': current_session(room) if index is None else None,
        'puzzles': session_puzzles(room, index),
    })


@rooms.route('/<string:code>/submissions', methods=['POST'])
@login_required
def submit(code):
    data = _json_body()
    puzzle_id = data.get('puzzle_id')
    if not puzzle_id or not isinstance(puzzle_id, str):
        return jsonify({'error': 'puzzle_id is required'}), 400
    time_spent = data.get('time_spent')
    try:
        time_spent = float(time_spent) if time_spent is not None else None
    except (TypeError, ValueError):
        return jsonify({'error': 'time_spent must be a number'}), 400
    if time_spent is not None and not math.isfinite(time_spent):
        return jsonify({'error': 'time_spent must be a finite number'}), 400
    is_correct = data.get('is_correct')
    if is_correct is not None and not isinstance(is_correct, bool):
        return jsonify({'error': 'is_correct must be true or false'}), 400
    for field in ('points_earned', 'session_index'):
        value = data.get(field)
        if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
            return jsonify({'error': f'{field} must be a non-negative integer'}), 400
    submission = append_submission(
        code,
        _player_id(),
        puzzle_id,
        answer=data.get('answer'),
        time_spent=time_spent,
        correct_answer=data.get('correct_answer'),
        is_correct=is_correct,
        points_earned=data.get('points_earned'),
        session_index=data.get('session_index'),
    )
    return jsonify({'submission_id': submission.id, 'submission': submission.to_dict()}), 202


@rooms.route('/<string:code>/submissions', methods=['GET'])
@login_required
def list_submissions(code):
    room = get_room(code)
    mine_only = request.args.get('mine') in ('1', 'true')
    subs = room_submissions(room.code, _player_id() if mine_only else None)
    return jsonify({'room_code': room.code, 'submissions': [s.to_dict() for s in subs]})


@rooms.route('/<string:code>/leaderboard', methods=['GET'])
@login_required
def get_leaderboard(code):
    room = get_room(code)
    return jsonify({'room_code': room.code, 'leaderboard': room_leaderboard(room)})


@rooms.route('/<string:code>/games', methods=['GET'])
@login_required
def get_room_games(code):
    room = get_room(code)
    return jsonify({'room_code': room.code, 'games': [g.to_dict() for g in room_games(room.code)]})

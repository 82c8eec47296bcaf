from flask import Blueprint, request, jsonify, current_app
from flask_login import login_user, logout_user, login_required, current_user

from playrooms import db
from playrooms.models import PlayerProfile
from playrooms.services.rooms import global_leaderboard
from playrooms.services.rooms.profiles import (
    all_achievements,
    create_or_update_profile,
    player_achievements,
    player_games,
    record_login,
    register_player,
)

main = Blueprint('main', __name__)


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _bad_text_field(data, *fields):
    for field in fields:
        if data.get(field) is not None and not isinstance(data[field], str):
            return field
    return None


@main.route('/auth/register', methods=['POST'])
def register():
    data = _json_body()
    username = data.get('username')
    password = data.get('password')
    if not isinstance(username, str) or not isinstance(password, str):
        return jsonify({'error': 'Username and password are required'}), 400
    username = username.strip()
    if not username or not password:
        return jsonify({'error': 'Username and password are required'}), 400
    if _bad_text_field(data, 'display_name'):
        return jsonify({'error': 'display_name must be a string'}), 400
    if PlayerProfile.query.filter_by(username=username).first():
        return jsonify({'error': 'Username already exists'}), 400

    profile = register_player(username, password, data.get('display_name'))
    login_user(profile)
    current_app.logger.info(f"[auth-register] player={profile.uid} username={username}")
    return jsonify({'success': True, 'user': profile.to_dict()}), 201


@main.route('/auth/login', methods=['POST'])
def login():
    data = _json_body()
    username, password = data.get('username'), data.get('password')
    if not isinstance(username, str) or not isinstance(password, str):
        return jsonify({'error': 'Invalid credentials'}), 401
    profile = PlayerProfile.query.filter_by(username=username).first()
    if profile is None or not profile.check_password(password):
        return jsonify({'error': 'Invalid credentials'}), 401
    record_login(profile)
    profile = db.session.get(PlayerProfile, profile.uid)
    login_user(profile)
    return jsonify({'success': True, 'user': profile.to_dict()})


@main.route('/auth/anonymous', methods=['POST'])
def sign_in_anonymously():
    data = _json_body()
    bad = _bad_text_field(data, 'display_name', 'photo_url')
    if bad:
        return jsonify({'error': f'{bad} must be a string'}), 400
    uid = current_user.get_id() if current_user.is_authenticated else None
    profile = create_or_update_profile(uid, data.get('display_name'), data.get('photo_url'))
    login_user(profile)
    return jsonify({'success': True, 'user': profile.to_dict()}), 201 if uid is None else 200


@main.route('/auth/me', methods=['GET'])
@login_required
def me():
    return jsonify({'success': True, 'user': current_user.to_dict()})


@main.route('/auth/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'success': True})


@main.route('/players/<string:uid>', methods=['GET'])
def get_player(uid):
    profile = db.session.get(PlayerProfile, uid)
    if profile is None:
        return jsonify({'error': 'Player data not found'}), 404
    return jsonify(profile.to_dict())


@main.route('/players/<string:uid>/games', methods=['GET'])
def get_player_games(uid):
    if db.session.get(PlayerProfile, uid) is None:
        return jsonify({'error': 'Player data not found'}), 404
    limit = request.args.get('limit', 10, type=int)
    games = player_games(uid, max(1, min(limit, 100)))
    return jsonify({'player_id': uid, 'games': [g.to_dict() for g in games]})


@main.route('/players/<string:uid>/achievements', methods=['GET'])
def get_player_achievements(uid):
    profile = db.session.get(PlayerProfile, uid)
    if profile is None:
        return jsonify({'error': 'Player data not found'}), 404
    return jsonify({'player_id': uid, 'achievements': [a.to_dict() for a in player_achievements(profile)]})


@main.route('/achievements', methods=['GET'])
def get_achievements():
    return jsonify({'achievements': [a.to_dict() for a in all_achievements()]})


@main.route('/leaderboard', methods=['GET'])
def get_global_leaderboard():
    try:
        limit = int(request.args.get('limit', 50))
    except (TypeError, ValueError):
        limit = 50
    return jsonify({'leaderboard': global_leaderboard(max(1, min(limit, 200)))})

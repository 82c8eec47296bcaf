"""Room lifecycle: create, join, leave, kick, start, advance, end, cancel, delete.

Each operation reads the room row under ``with_for_update()``, validates,
then writes, all inside one ``run_transaction`` call, so a failed check
never leaves a partial write behind. ``current_players`` is always
recomputed from the membership rows in the same transaction that changes
them. Committed changes are pushed to subscribers as ``room_update``.
"""
from typing import List, Optional

from flask import current_app

from playrooms import db
from playrooms.errors import (
    AlreadyJoined,
    CannotKickHost,
    EmptyRoom,
    HostCannotLeave,
    InvalidRequest,
    InvalidTransition,
    NotHost,
    NotInRoom,
    PlayerNotFound,
    RoomFull,
    RoomNotActive,
    RoomNotFound,
    RoomNotJoinable,
    ServiceUnavailable,
)
from playrooms.models import (
    DEFAULT_ROOM_SETTINGS,
    ROOM_STATUS_ACTIVE,
    ROOM_STATUS_CANCELLED,
    ROOM_STATUS_COMPLETED,
    ROOM_STATUS_WAITING,
    PlayerProfile,
    Room,
    RoomPlayer,
    generate_room_code,
    utcnow,
)
from playrooms.store import broadcast, run_transaction
from .leaderboard import build_results
from .profiles import add_active_room, record_game_completion
from .sessions import advance_cursor, assign_sessions


def _load_room(code: str, lock: bool = True) -> Room:
    query = Room.query.filter_by(code=(code or '').strip().upper())
    if lock:
        query = query.with_for_update()
    room = query.first()
    if room is None:
        raise RoomNotFound()
    return room


def _require_host(room: Room, player_id: str, message: Optional[str] = None) -> None:
    if room.host_id != player_id:
        raise NotHost(message)


def _load_profile(player_id: str) -> PlayerProfile:
    profile = db.session.get(PlayerProfile, player_id) if player_id else None
    if profile is None:
        raise PlayerNotFound()
    return profile


def _new_member(profile: PlayerProfile, is_host: bool = False) -> RoomPlayer:
    return RoomPlayer(
        player_id=profile.uid,
        display_name=profile.display_name or 'Guest',
        photo_url=profile.photo_url,
        joined_at=utcnow(),
        is_host=is_host,
        is_ready=is_host,
        total_score=0,
        completed_challenges='[]',
    )


def _sync_player_count(room: Room) -> None:
    room.current_players = len(room.players)


def _publish(room: Room) -> None:
    broadcast('room_update', {'room': room.to_dict()}, room.code)


def _check_settings(settings) -> None:
    if settings is not None and not isinstance(settings, dict):
        raise InvalidRequest('settings must be an object')


def _check_results(results) -> None:
    """Caller-supplied results must look like the ones built from the leaderboard."""
    if results is None:
        return
    if not isinstance(results, dict) or 'winner_id' not in results:
        raise InvalidRequest('results must be an object with winner_id and top_scores')
    winner_id = results['winner_id']
    top_scores = results.get('top_scores')
    if winner_id is not None and not isinstance(winner_id, str):
        raise InvalidRequest('results.winner_id must be a player id')
    if not isinstance(top_scores, list) or not all(isinstance(row, dict) for row in top_scores):
        raise InvalidRequest('results.top_scores must be a list of objects')


def get_room(code: str) -> Room:
    return _load_room(code, lock=False)


def list_open_rooms(limit: int = 20) -> List[Room]:
    rooms = (
        Room.query.filter_by(status=ROOM_STATUS_WAITING)
        .order_by(Room.created_at.desc(), Room.id.desc())
        .limit(limit)
        .all()
    )
    return [r for r in rooms if not r.settings_dict.get('is_private')]


def create_room(host_id: str, game_type: str = 'mixed', settings: Optional[dict] = None,
                max_players: Optional[int] = None) -> Room:
    _check_settings(settings)
    cfg = current_app.config
    capacity = int(max_players or cfg.get('MAX_PLAYERS', 8))

    def _create():
        host = _load_profile(host_id)
        # A concurrent insert of the same code fails on the unique index and the
        # whole transaction re-runs with a fresh code.
        code = generate_room_code(
            length=int(cfg.get('ROOM_CODE_LENGTH', 6)),
            max_attempts=int(cfg.get('ROOM_CODE_MAX_ATTEMPTS', 10)),
        )
        if code is None:
            raise ServiceUnavailable('Could not allocate a room code. Please try again.')
        merged = dict(DEFAULT_ROOM_SETTINGS)
        merged.update({k: v for k, v in (settings or {}).items() if k in DEFAULT_ROOM_SETTINGS})
        room = Room(
            code=code,
            host_id=host.uid,
            host_name=host.display_name,
            status=ROOM_STATUS_WAITING,
            game_type=game_type or 'mixed',
            max_players=max(1, capacity),
        )
        room.settings_dict = merged
        room.players.append(_new_member(host, is_host=True))
        _sync_player_count(room)
        db.session.add(room)
        db.session.flush()
        return room

    room = run_transaction(_create)
    current_app.logger.info(f"[room-create] room={room.code} host={host_id} max_players={room.max_players}")
    return room


def join_room(code: str, player_id: str) -> Room:
    def _join():
        room = _load_room(code)
        if room.status != ROOM_STATUS_WAITING:
            raise RoomNotJoinable()
        if room.current_players >= room.max_players:
            raise RoomFull(f'Room is full ({room.max_players}/{room.max_players} players)')
        if player_id in room.player_ids:
            raise AlreadyJoined()
        profile = _load_profile(player_id)
        room.players.append(_new_member(profile))
        _sync_player_count(room)
        return room

    room = run_transaction(_join)
    current_app.logger.info(f"[room-join] room={room.code} player={player_id} players={room.current_players}/{room.max_players}")
    _publish(room)
    return room


def _remove_member(room: Room, player_id: str) -> None:
    member = room.member(player_id)
    if member is None:
        raise NotInRoom()
    room.players.remove(member)
    _sync_player_count(room)


def leave_room(code: str, player_id: str) -> Room:
    def _leave():
        room = _load_room(code)
        member = room.member(player_id)
        if member is None:
            raise NotInRoom('Player not in room')
        if member.is_host:
            raise HostCannotLeave()
        _remove_member(room, player_id)
        return room

    room = run_transaction(_leave)
    current_app.logger.info(f"[room-leave] room={room.code} player={player_id} players={room.current_players}")
    _publish(room)
    return room


def kick_player(code: str, host_id: str, target_id: str) -> Room:
    def _kick():
        room = _load_room(code)
        _require_host(room, host_id, 'Only the host can kick players')
        if target_id == room.host_id:
            raise CannotKickHost()
        _remove_member(room, target_id)
        return room

    room = run_transaction(_kick)
    current_app.logger.info(f"[room-kick] room={room.code} target={target_id}")
    broadcast('player_kicked', {'room_code': room.code, 'player_id': target_id}, room.code)
    _publish(room)
    return room


def start_room(code: str, host_id: str) -> Room:
    """Start a waiting room and attach its puzzle sessions.

    Starting an already active room is a no-op: sessions are not reassigned.
    """
    def _start():
        room = _load_room(code)
        _require_host(room, host_id, 'Only the host can start the game')
        if room.status == ROOM_STATUS_ACTIVE:
            return room, False
        if room.status != ROOM_STATUS_WAITING:
            raise InvalidTransition(f'Room is {room.status} and cannot be started')
        if room.current_players < 1:
            raise EmptyRoom()
        sessions = assign_sessions()
        room.status = ROOM_STATUS_ACTIVE
        room.started_at = utcnow()
        room.session_list = sessions
        room.current_session_index = 0
        room.current_challenge_index = 0
        room.total_challenges = sum(len(s.get('challenges') or []) for s in sessions)
        return room, True

    room, started = run_transaction(_start)
    if not started:
        current_app.logger.info(f"[room-start-skip] room={room.code} already active")
        return room

    # Best-effort: lets clients resume the room; never undoes the start
    for pid in room.player_ids:
        try:
            add_active_room(pid, room.code)
        except Exception as exc:
            db.session.rollback()
            current_app.logger.warning(f"[room-start] could not add room {room.code} to player {pid}: {exc}")

    current_app.logger.info(f"[room-start] room={room.code} sessions={[s['template_id'] for s in room.session_list]}")
    _publish(room)
    return room


def advance_room(code: str, host_id: str) -> Room:
    """Host-driven progression to the next puzzle, then the next session.

    Advancing past the last puzzle of the last session ends the room.
    """
    def _advance():
        room = _load_room(code)
        _require_host(room, host_id, 'Only the host can advance the game')
        if room.status != ROOM_STATUS_ACTIVE:
            raise RoomNotActive()
        return room, advance_cursor(room)

    room, moved = run_transaction(_advance)
    if not moved:
        return end_room(room.code, host_id=host_id)
    current_app.logger.info(
        f"[room-advance] room={room.code} session={room.current_session_index} challenge={room.current_challenge_index}"
    )
    _publish(room)
    return room


def end_room(code: str, results: Optional[dict] = None, host_id: Optional[str] = None) -> Room:
    _check_results(results)

    def _end():
        room = _load_room(code)
        if host_id is not None:
            _require_host(room, host_id, 'Only the host can end the game')
        if room.status == ROOM_STATUS_COMPLETED:
            return room, False
        if room.status != ROOM_STATUS_ACTIVE:
            raise InvalidTransition(f'Room is {room.status} and cannot be ended')
        room.status = ROOM_STATUS_COMPLETED
        room.ended_at = utcnow()
        room.results_dict = results if results is not None else build_results(room)
        return room, True

    room, ended = run_transaction(_end)
    if ended:
        record_game_completion(room, room.results_dict)
        current_app.logger.info(f"[room-end] room={room.code} winner={(room.results_dict or {}).get('winner_id')}")
        _publish(room)
    return room


def cancel_room(code: str, host_id: str) -> Room:
    def _cancel():
        room = _load_room(code)
        _require_host(room, host_id, 'Only the host can cancel the room')
        if room.status == ROOM_STATUS_CANCELLED:
            return room, False
        if room.status != ROOM_STATUS_WAITING:
            raise InvalidTransition('Only a waiting room can be cancelled')
        room.status = ROOM_STATUS_CANCELLED
        room.ended_at = utcnow()
        return room, True

    room, cancelled = run_transaction(_cancel)
    if cancelled:
        current_app.logger.info(f"[room-cancel] room={room.code}")
        _publish(room)
    return room


def delete_room(code: str, host_id: str) -> str:
    def _delete():
        room = _load_room(code)
        _require_host(room, host_id, 'Only the host can delete the room')
        room_code = room.code
        # Membership rows and leaderboard entries go with the room
        db.session.delete(room)
        return room_code

    room_code = run_transaction(_delete)
    current_app.logger.info(f"[room-delete] room={room_code}")
    broadcast('room_deleted', {'room_code': room_code}, room_code)
    return room_code


def update_room_settings(code: str, host_id: str, settings: dict) -> Room:
    _check_settings(settings)

    def _update():
        room = _load_room(code)
        _require_host(room, host_id, 'Only the host can update room settings')
        if room.status != ROOM_STATUS_WAITING:
            raise InvalidTransition('Cannot change settings after game has started')
        merged = room.settings_dict
        merged.update({k: v for k, v in (settings or {}).items() if k in DEFAULT_ROOM_SETTINGS})
        room.settings_dict = merged
        return room

    room = run_transaction(_update)
    _publish(room)
    return room


def set_player_ready(code: str, player_id: str, is_ready: bool) -> Room:
    def _ready():
        room = _load_room(code)
        member = room.member(player_id)
        if member is None:
            raise NotInRoom()
        member.is_ready = bool(is_ready)
        return room

    room = run_transaction(_ready)
    _publish(room)
    return room

"""Player profiles: sign-in bookkeeping, end-of-game stats and achievements."""
import math
from typing import Dict, List, Optional

from flask import current_app

from playrooms import db
from playrooms.models import Achievement, GameRecord, PlayerProfile, Room, Submission, utcnow
from playrooms.store import run_transaction

_CONDITIONS = {
    'greater_than': lambda value, target: value > target,
    'equal_to': lambda value, target: value == target,
    'less_than': lambda value, target: value < target,
}

_STAT_FIELDS = {
    'totalScore': 'total_score',
    'gamesPlayed': 'total_games_played',
    'winRate': 'win_rate',
    'currentStreak': 'current_streak',
}


def calculate_experience(score: int, time_spent: float, accuracy: float) -> int:
    exp = int(score) // 10
    if time_spent < 300:
        exp += math.floor(exp * 0.2)
    if accuracy > 90:
        exp += math.floor(exp * 0.3)
    return max(exp, 1)


def calculate_level(experience: int) -> int:
    """Level N needs the sum of floor(100 * k^1.5) for k = 2..N."""
    level = 1
    needed = 0
    while needed <= experience:
        level += 1
        needed += math.floor(100 * math.pow(level, 1.5))
    return level - 1


def refresh_derived_stats(profile: PlayerProfile) -> None:
    games = profile.total_games_played or 0
    if games > 0:
        profile.win_rate = round(profile.games_won / games * 100)
        profile.average_score = round(profile.total_score / games)
    else:
        profile.win_rate = 0
        profile.average_score = 0


def register_player(username: str, password: str, display_name: Optional[str] = None) -> PlayerProfile:
    profile = PlayerProfile(username=username, display_name=display_name or username, is_anonymous_player=False)
    profile.set_password(password)
    return _sign_in_new(profile)


def create_guest(display_name: Optional[str] = None, photo_url: Optional[str] = None) -> PlayerProfile:
    profile = PlayerProfile(display_name=display_name or 'Guest Player', photo_url=photo_url, is_anonymous_player=True)
    return _sign_in_new(profile)


def _sign_in_new(profile: PlayerProfile) -> PlayerProfile:
    profile.login_count = 1
    profile.last_login_at = utcnow()

    def _insert():
        db.session.add(profile)
        return profile

    return run_transaction(_insert)


def record_login(profile: PlayerProfile) -> None:
    uid = profile.uid

    def _touch():
        p = db.session.get(PlayerProfile, uid)
        p.login_count = (p.login_count or 0) + 1
        p.last_login_at = utcnow()

    run_transaction(_touch)


def add_active_room(uid: str, room_code: str) -> None:
    def _add():
        p = PlayerProfile.query.filter_by(uid=uid).with_for_update().first()
        if p is None:
            return
        codes = p.active_room_codes
        if room_code not in codes:
            codes.append(room_code)
            p.active_room_codes = codes

    run_transaction(_add)


def _ranks(results) -> Dict[str, int]:
    rows = results.get('top_scores') if isinstance(results, dict) else None
    ranks = {}
    for position, row in enumerate(rows or [], start=1):
        pid = row.get('player_id') if isinstance(row, dict) else None
        if pid and pid not in ranks:
            ranks[pid] = position
    return ranks


def record_game_completion(room: Room, results: Optional[dict]) -> Dict[str, List[str]]:
    """Fold a finished room into every member's profile and game history.

    Best-effort per player: a failure is logged and the remaining players
    are still updated. Returns newly unlocked achievement names per player.
    """
    winner_id = results.get('winner_id') if isinstance(results, dict) else None
    ranks = _ranks(results)
    game = {
        'room_code': room.code,
        'host_id': room.host_id,
        'game_type': room.game_type,
        'difficulty': room.settings_dict.get('difficulty'),
        'total_puzzles': room.total_challenges or 0,
        'started_at': room.started_at,
        'since': room.created_at,
    }
    members = [(p.player_id, p.display_name, p.total_score, len(p.completed_list)) for p in room.players]
    unlocked = {}
    for player_id, name, score, completed in members:
        try:
            unlocked[player_id] = _complete_for_player(
                game, player_id, name, score, completed, ranks.get(player_id), player_id == winner_id
            )
        except Exception as exc:
            db.session.rollback()
            current_app.logger.warning(f"[profile-skip] room={game['room_code']} player={player_id} error={exc}")
    return unlocked


def _complete_for_player(game, player_id, player_name, score, completed, rank, is_win) -> List[str]:
    room_code = game['room_code']
    query = Submission.query.filter_by(room_code=room_code, player_id=player_id)
    if game['since'] is not None:
        query = query.filter(Submission.submitted_at >= game['since'])
    submissions = query.order_by(Submission.id).all()
    answered = len(submissions)
    correct = sum(1 for s in submissions if s.verified_correct)
    accuracy = (correct / answered * 100) if answered else 0
    time_spent = sum(s.time_spent or 0 for s in submissions)
    experience = calculate_experience(score, time_spent, accuracy)
    answers = [
        {
            'puzzle_id': s.puzzle_id,
            'answer': s.answer,
            'is_correct': bool(s.verified_correct),
            'points': s.points_awarded or 0,
            'time_spent': s.time_spent,
        }
        for s in submissions
    ]

    def _apply():
        p = PlayerProfile.query.filter_by(uid=player_id).with_for_update().first()
        if p is None:
            return None
        p.total_games_played = (p.total_games_played or 0) + 1
        p.best_score = max(p.best_score or 0, score)
        p.total_play_time = (p.total_play_time or 0) + int(time_spent // 60)
        if is_win:
            p.games_won = (p.games_won or 0) + 1
            p.current_streak = (p.current_streak or 0) + 1
        else:
            p.current_streak = 0
        p.best_streak = max(p.best_streak or 0, p.current_streak)
        p.experience = (p.experience or 0) + experience
        p.level = calculate_level(p.experience)
        p.active_room_codes = [c for c in p.active_room_codes if c != room_code]
        refresh_derived_stats(p)

        record = (
            GameRecord.query.filter_by(room_code=room_code, player_id=player_id).first()
            or GameRecord(room_code=room_code, player_id=player_id)
        )
        record.player_name = player_name
        record.host_id = game['host_id']
        record.game_type = game['game_type']
        record.difficulty = game['difficulty']
        record.score = score or 0
        record.accuracy = round(accuracy)
        record.time_spent = time_spent
        record.puzzles_completed = completed
        record.total_puzzles = game['total_puzzles']
        record.rank = rank
        record.is_winner = is_win
        record.answer_list = answers
        record.started_at = game['started_at']
        record.ended_at = utcnow()
        db.session.add(record)
        return p.uid

    if run_transaction(_apply) is None:
        return []
    current_app.logger.info(
        f"[profile-game] player={player_id} room={room_code} score={score} rank={rank} win={is_win} exp+={experience}"
    )
    return check_and_unlock_achievements(player_id)


def check_and_unlock_achievements(uid: str) -> List[str]:
    def _unlock():
        p = PlayerProfile.query.filter_by(uid=uid).with_for_update().first()
        if p is None:
            return []
        owned = p.achievement_ids
        names = []
        for achievement in Achievement.query.order_by(Achievement.id).all():
            if achievement.id in owned:
                continue
            field = _STAT_FIELDS.get(achievement.requirement_type)
            check = _CONDITIONS.get(achievement.requirement_condition)
            if field is None or check is None:
                continue
            if check(getattr(p, field) or 0, achievement.requirement_value):
                owned.append(achievement.id)
                p.experience = (p.experience or 0) + (achievement.reward_experience or 0)
                names.append(achievement.name)
        if names:
            p.achievement_ids = owned
            p.level = calculate_level(p.experience)
        return names

    names = run_transaction(_unlock)
    if names:
        current_app.logger.info(f"[achievements] player={uid} unlocked={names}")
    return names


def create_or_update_profile(uid: Optional[str] = None, display_name: Optional[str] = None,
                             photo_url: Optional[str] = None) -> PlayerProfile:
    """Sign-in hook: bump the login counters of a known profile or create a guest one."""
    profile = db.session.get(PlayerProfile, uid) if uid else None
    if profile is None:
        return create_guest(display_name, photo_url)
    record_login(profile)
    if display_name or photo_url:
        def _rename():
            p = db.session.get(PlayerProfile, uid)
            if display_name:
                p.display_name = display_name
            if photo_url:
                p.photo_url = photo_url

        run_transaction(_rename)
    return db.session.get(PlayerProfile, uid)


def player_games(uid: str, limit: int = 10) -> List[GameRecord]:
    """Most recent finished games of one player."""
    return (
        GameRecord.query.filter_by(player_id=uid)
        .order_by(GameRecord.ended_at.desc(), GameRecord.id.desc())
        .limit(limit)
        .all()
    )


def room_games(room_code: str) -> List[GameRecord]:
    return (
        GameRecord.query.filter_by(room_code=(room_code or '').strip().upper())
        .order_by(GameRecord.score.desc(), GameRecord.id)
        .all()
    )


def all_achievements() -> List[Achievement]:
    return Achievement.query.order_by(Achievement.id).all()


def player_achievements(profile: PlayerProfile) -> List[Achievement]:
    owned = set(profile.achievement_ids)
    return [a for a in all_achievements() if a.id in owned]

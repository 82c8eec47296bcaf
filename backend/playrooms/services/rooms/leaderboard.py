from typing import List

from playrooms.models import PlayerProfile, Room
from playrooms.store import broadcast


def _row(player_id: str, member, entry) -> dict:
    if entry is not None:
        points = entry.points or 0
    else:
        points = (member.total_score if member else 0) or 0
    return {
        'player_id': player_id,
        'display_name': (member.display_name if member else None) or (entry.display_name if entry else None) or 'Player',
        'photo_url': (member.photo_url if member else None) or (entry.photo_url if entry else None),
        'points': points,
        'last_submission': (member.last_submission_dict if member else None)
        or (entry.last_submission_dict if entry else None),
        'in_room': member is not None,
    }


def room_leaderboard(room: Room) -> List[dict]:
    """Ranked view over every current member plus players who left after scoring.

    Members without a leaderboard entry yet show with their room score (0
    before any answer). Current membership data wins over the denormalized
    copy on the entry. Ties keep join order, then entry order for players
    who left.
    """
    entries = {e.player_id: e for e in room.leaderboard_entries}
    rows = [_row(m.player_id, m, entries.get(m.player_id)) for m in room.players]
    members = set(room.player_ids)
    rows.extend(_row(e.player_id, None, e) for e in room.leaderboard_entries if e.player_id not in members)
    rows.sort(key=lambda r: r['points'], reverse=True)
    for rank, row in enumerate(rows, start=1):
        row['rank'] = rank
    return rows


def build_results(room: Room) -> dict:
    """Final ranking snapshot stored on the room when it completes."""
    rows = room_leaderboard(room)
    winner = rows[0] if rows else None
    return {
        'winner_id': winner['player_id'] if winner else None,
        'winner_name': winner['display_name'] if winner else None,
        'top_scores': [
            {'player_id': r['player_id'], 'player_name': r['display_name'], 'score': r['points']}
            for r in rows
        ],
    }


def publish_leaderboard(room: Room) -> None:
    broadcast('leaderboard_update', {'room_code': room.code, 'leaderboard': room_leaderboard(room)}, room.code)


def global_leaderboard(limit: int = 50) -> List[dict]:
    profiles = (
        PlayerProfile.query.order_by(PlayerProfile.total_score.desc(), PlayerProfile.created_at)
        .limit(limit)
        .all()
    )
    return [
        {
            'rank': rank,
            'uid': p.uid,
            'display_name': p.display_name,
            'photo_url': p.photo_url,
            'total_score': p.total_score,
            'level': p.level,
        }
        for rank, p in enumerate(profiles, start=1)
    ]

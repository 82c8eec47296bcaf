import random
from typing import List, Optional

from flask import current_app

from playrooms.models import Puzzle, Room, SessionTemplate

DIFFICULTIES = ('easy', 'medium', 'hard')


def assign_sessions(per_session: Optional[int] = None) -> List[dict]:
    """Pick one template per difficulty (easy, medium, hard) for a starting room.

    Difficulties without a template are skipped. Each session keeps the
    template's puzzle order, trimmed to ``per_session`` puzzles.
    """
    if per_session is None:
        per_session = int(current_app.config.get('CHALLENGES_PER_SESSION', 4))
    sessions = []
    for difficulty in DIFFICULTIES:
        templates = (
            SessionTemplate.query.filter_by(difficulty=difficulty)
            .order_by(SessionTemplate.template_id)
            .all()
        )
        if not templates:
            continue
        template = random.choice(templates)
        sessions.append({
            'template_id': template.template_id,
            'difficulty': difficulty,
            'challenges': template.challenge_ids[:per_session],
        })
    if not sessions:
        current_app.logger.warning("[sessions] no session templates available; room starts without puzzles")
    return sessions


def current_session(room: Room) -> Optional[dict]:
    sessions = room.session_list
    idx = room.current_session_index or 0
    if 0 <= idx < len(sessions):
        return sessions[idx]
    return None


def session_puzzles(room: Room, index: Optional[int] = None) -> List[dict]:
    """Puzzles of one session in play order, without their answers."""
    sessions = room.session_list
    idx = room.current_session_index if index is None else index
    if not (0 <= idx < len(sessions)):
        return []
    ids = sessions[idx].get('challenges') or []
    found = {p.challenge_id: p for p in Puzzle.query.filter(Puzzle.challenge_id.in_(ids)).all()} if ids else {}
    return [found[cid].to_dict() for cid in ids if cid in found]


def advance_cursor(room: Room) -> bool:
    """Move the room to its next puzzle, rolling over into the next session.

    Returns False when the room is already on the last puzzle of its last session.
    """
    sessions = room.session_list
    session = current_session(room)
    if session is None:
        return False
    if room.current_challenge_index + 1 < len(session.get('challenges') or []):
        room.current_challenge_index += 1
        return True
    if room.current_session_index + 1 < len(sessions):
        room.current_session_index += 1
        room.current_challenge_index = 0
        return True
    return False

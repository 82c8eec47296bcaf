import json
import math
from typing import Optional

from flask import current_app

from playrooms import db
from playrooms.errors import InvalidRequest, NotInRoom, RoomNotActive, RoomNotFound
from playrooms.models import (
    ROOM_STATUS_ACTIVE,
    LeaderboardEntry,
    PlayerProfile,
    Puzzle,
    Room,
    RoomPlayer,
    Submission,
    utcnow,
)
from playrooms.store import append_record, broadcast, on_create, run_transaction
from .leaderboard import publish_leaderboard
from .puzzles import puzzle_from_record

SUBMISSION_KIND = 'submission'


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_points(max_score: int, time_limit: int, time_spent: Optional[float], correct: bool) -> int:
    """Time-weighted award for one answer.

    A correct answer earns between 68% (at or past the limit) and 100%
    (instant) of ``max_score``; a wrong one earns nothing.
    """
    if not correct:
        return 0
    spent = max(0.0, float(time_spent or 0))
    if time_limit and time_limit > 0:
        speed = max(0.2, (time_limit - min(spent, time_limit)) / time_limit)
    else:
        speed = 1.0
    return round_half_up(max_score * (0.6 + 0.4 * speed))


def append_submission(room_code: str, player_id: str, puzzle_id: str, answer=None,
                      time_spent: Optional[float] = None, correct_answer=None,
                      is_correct: Optional[bool] = None, points_earned: Optional[int] = None,
                      session_index: Optional[int] = None) -> Submission:
    """Record an answer attempt; scoring happens in the create trigger.

    The client-reported ``time_spent`` is stored and later trusted for the
    speed bonus. ``submitted_at`` is always stamped by the server.
    """
    if time_spent is not None and not math.isfinite(time_spent):
        raise InvalidRequest('time_spent must be a finite number')
    room = Room.query.filter_by(code=(room_code or '').strip().upper()).first()
    if room is None:
        raise RoomNotFound()
    if room.status != ROOM_STATUS_ACTIVE:
        raise RoomNotActive('Answers are only accepted while the room is active')
    if room.member(player_id) is None:
        raise NotInRoom()
    submission = Submission(
        room_code=room.code,
        player_id=player_id,
        puzzle_id=puzzle_id or 'unknown',
        answer=None if answer is None else str(answer),
        correct_answer=None if correct_answer is None else str(correct_answer),
        is_correct=is_correct,
        points_earned=points_earned,
        time_spent=time_spent,
        session_index=room.current_session_index if session_index is None else session_index,
        submitted_at=utcnow(),
    )
    append_record(SUBMISSION_KIND, submission)
    current_app.logger.info(
        f"[submit] room={room.code} player={player_id} puzzle={submission.puzzle_id} submission={submission.id}"
    )
    return submission


def validate_submission(submission_id: int) -> Optional[Submission]:
    """Score one submission exactly once.

    Runs for every new submission (possibly more than once for the same
    one). Failures are written onto the submission as ``verified=False``
    with a reason and never touch any score.
    """
    submission = db.session.get(Submission, submission_id)
    if submission is None:
        current_app.logger.warning(f"[score-skip] submission={submission_id} not found")
        return None
    if submission.verified is not None:
        return submission

    try:
        record = db.session.get(Puzzle, submission.puzzle_id)
        if record is None:
            _reject(submission_id, 'puzzle_not_found')
            return db.session.get(Submission, submission_id)
        puzzle = puzzle_from_record(record)
        correct = puzzle.is_correct(submission.answer, submission.time_spent)
        points = compute_points(puzzle.max_score, puzzle.time_limit, submission.time_spent, correct)
        outcome = run_transaction(_apply_score, submission_id, correct, points, puzzle.correct_answer)
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception(f"[score-error] submission={submission_id}")
        _reject(submission_id, str(exc) or type(exc).__name__)
        return db.session.get(Submission, submission_id)

    submission = db.session.get(Submission, submission_id)
    current_app.logger.info(
        f"[score] submission={submission_id} outcome={outcome} correct={submission.verified_correct} "
        f"points={submission.points_awarded}"
    )
    if outcome == 'scored':
        room = Room.query.filter_by(code=submission.room_code).first()
        if room is not None:
            publish_leaderboard(room)
            broadcast('room_update', {'room': room.to_dict()}, room.code)
    return submission


def _stamp(submission: Submission, verified: bool, correct: Optional[bool], points: int, reason: Optional[str]) -> None:
    submission.verified = verified
    submission.verified_correct = correct
    submission.points_awarded = points
    submission.reason = reason
    submission.verified_at = utcnow()


def _apply_score(submission_id: int, correct: bool, points: int, canonical_answer: str) -> str:
    submission = Submission.query.filter_by(id=submission_id).with_for_update().first()
    if submission is None or submission.verified is not None:
        return 'skipped'

    # Serializes with end_room: no points land after the results snapshot
    room = Room.query.filter_by(code=submission.room_code).with_for_update().first()
    if room is None or room.status != ROOM_STATUS_ACTIVE:
        _stamp(submission, False, correct, 0, 'room_not_active')
        return 'rejected'

    membership = (
        RoomPlayer.query.filter_by(room_id=room.id, player_id=submission.player_id)
        .with_for_update()
        .first()
    )
    if membership is None:
        _stamp(submission, False, correct, 0, 'player_not_in_room')
        return 'rejected'

    completed = membership.completed_list
    if submission.puzzle_id in completed:
        _stamp(submission, True, correct, 0, 'already_scored')
        return 'duplicate'

    summary = json.dumps({
        'puzzle_id': submission.puzzle_id,
        'answer': submission.answer,
        'correct_answer': canonical_answer,
        'is_correct': correct,
        'points_earned': points,
        'time_spent': submission.time_spent,
        'session_index': submission.session_index,
        'submitted_at': submission.submitted_at.isoformat() if submission.submitted_at else None,
    })

    membership.total_score = (membership.total_score or 0) + points
    completed.append(submission.puzzle_id)
    membership.completed_list = completed
    membership.last_submission = summary

    PlayerProfile.query.filter_by(uid=submission.player_id).update(
        {PlayerProfile.total_score: PlayerProfile.total_score + points},
        synchronize_session=False,
    )

    entry = (
        LeaderboardEntry.query.filter_by(room_id=membership.room_id, player_id=submission.player_id)
        .with_for_update()
        .first()
    )
    if entry is None:
        entry = LeaderboardEntry(room_id=membership.room_id, player_id=submission.player_id, points=0)
        db.session.add(entry)
    entry.points = (entry.points or 0) + points
    entry.display_name = membership.display_name
    entry.photo_url = membership.photo_url
    entry.last_submission = summary

    _stamp(submission, True, correct, points, None)
    return 'scored'


def _reject(submission_id: int, reason: str) -> None:
    def _mark():
        submission = db.session.get(Submission, submission_id)
        if submission is not None and submission.verified is None:
            _stamp(submission, False, None, 0, reason[:256])

    run_transaction(_mark)
    current_app.logger.info(f"[score-reject] submission={submission_id} reason={reason}")


def room_submissions(room_code: str, player_id: Optional[str] = None):
    query = Submission.query.filter_by(room_code=(room_code or '').strip().upper())
    if player_id is not None:
        query = query.filter_by(player_id=player_id)
    return query.order_by(Submission.id).all()


def register_scoring_trigger() -> None:
    on_create(SUBMISSION_KIND, validate_submission)

import threading

import pytest
from sqlalchemy.orm.exc import StaleDataError

from playrooms import db
from playrooms.errors import RoomFull, ServiceUnavailable, NotHost
from playrooms.models import LeaderboardEntry, PlayerProfile, RoomPlayer, Submission, utcnow
from playrooms.services import rooms as svc
from playrooms.services.rooms.profiles import register_player
from playrooms.store import run_transaction


def test_conflict_is_retried(app_ctx):
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise StaleDataError('row changed underneath')
        return 'ok'

    assert run_transaction(flaky) == 'ok'
    assert len(calls) == 2


def test_conflicts_exhaust_retries(app_ctx):
    calls = []

    def always_stale():
        calls.append(1)
        raise StaleDataError('row changed underneath')

    with pytest.raises(ServiceUnavailable):
        run_transaction(always_stale)
    assert len(calls) == app_ctx.config['TRANSACTION_MAX_RETRIES']


def test_domain_errors_are_not_retried(app_ctx):
    calls = []

    def not_allowed():
        calls.append(1)
        raise NotHost()

    with pytest.raises(NotHost):
        run_transaction(not_allowed)
    assert calls == [1]


def test_join_retries_after_conflicting_write(make_player, monkeypatch):
    from playrooms.services.rooms import lifecycle

    host, guest = make_player('hana'), make_player('gus')
    room = svc.create_room(host)
    real_sync = lifecycle._sync_player_count
    attempts = []

    def conflicting_sync(target):
        attempts.append(1)
        if len(attempts) == 1:
            raise StaleDataError('room row version changed')
        real_sync(target)

    monkeypatch.setattr(lifecycle, '_sync_player_count', conflicting_sync)
    room = svc.join_room(room.code, guest)
    assert len(attempts) == 2
    assert room.player_ids == [host, guest]
    assert room.current_players == 2


def test_concurrent_joins_for_last_slot(file_app):
    with file_app.app_context():
        host = register_player('hana', 'secret').uid
        first = register_player('gus', 'secret').uid
        second = register_player('ida', 'secret').uid
        code = svc.create_room(host, max_players=2).code

    barrier = threading.Barrier(2)
    outcomes = {}

    def _join(player_id):
        with file_app.app_context():
            barrier.wait()
            try:
                svc.join_room(code, player_id)
                outcomes[player_id] = 'joined'
            except RoomFull:
                outcomes[player_id] = 'full'
            finally:
                db.session.remove()

    threads = [threading.Thread(target=_join, args=(pid,)) for pid in (first, second)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert sorted(outcomes.values()) == ['full', 'joined']
    with file_app.app_context():
        room = svc.get_room(code)
        assert room.current_players == 2
        assert len(room.player_ids) == 2
        assert RoomPlayer.query.count() == 2


def test_concurrent_answers_to_one_puzzle_score_once(file_app):
    with file_app.app_context():
        host = register_player('hana', 'secret').uid
        guest = register_player('gus', 'secret').uid
        code = svc.create_room(host).code
        svc.join_room(code, guest)
        svc.start_room(code, host)
        # Rows added directly so that neither is scored before the threads run
        pending = [
            Submission(room_code=code, player_id=guest, puzzle_id='mcq-001', answer='Mars',
                       time_spent=0, session_index=0, submitted_at=utcnow())
            for _ in range(2)
        ]
        db.session.add_all(pending)
        db.session.commit()
        ids = [s.id for s in pending]

    barrier = threading.Barrier(2)

    def _validate(submission_id):
        with file_app.app_context():
            barrier.wait()
            try:
                svc.validate_submission(submission_id)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=_validate, args=(sid,)) for sid in ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    with file_app.app_context():
        scored = [db.session.get(Submission, sid) for sid in ids]
        assert all(s.verified for s in scored)
        assert sorted(s.points_awarded for s in scored) == [0, 100]
        assert {s.reason for s in scored} == {None, 'already_scored'}
        assert svc.get_room(code).member(guest).total_score == 100
        assert db.session.get(PlayerProfile, guest).total_score == 100
        assert LeaderboardEntry.query.filter_by(player_id=guest).one().points == 100

"""Transactional access to rooms, plus change notifications and create triggers.

``run_transaction`` is the only way room and membership rows get written.
Version counters on ``Room`` and ``RoomPlayer`` turn concurrent writers of
the same row into ``StaleDataError``; those, locked-database errors and
unique-constraint races are rolled back and the whole body is re-run.
"""
import time
from collections import defaultdict
from typing import Callable, Dict, List

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from playrooms import db, socketio
from playrooms.errors import RoomError, ServiceUnavailable

NAMESPACE = '/ws'
RETRYABLE_ERRORS = (StaleDataError, OperationalError, IntegrityError)

_create_handlers: Dict[str, List[Callable[[int], None]]] = defaultdict(list)


def run_transaction(fn, *args, **kwargs):
    """Run ``fn`` and commit, re-running it on write conflicts.

    Domain errors raised by ``fn`` roll back and propagate untouched.
    """
    cfg = current_app.config
    max_retries = max(1, int(cfg.get('TRANSACTION_MAX_RETRIES', 5)))
    delay_ms = int(cfg.get('TRANSACTION_RETRY_DELAY_MS', 20))
    name = getattr(fn, '__name__', 'txn')
    for attempt in range(1, max_retries + 1):
        try:
            result = fn(*args, **kwargs)
            db.session.commit()
            return result
        except RoomError:
            db.session.rollback()
            raise
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            current_app.logger.info(
                f"[txn-retry] fn={name} attempt={attempt}/{max_retries} error={type(exc).__name__}"
            )
            if attempt < max_retries and delay_ms > 0:
                time.sleep(delay_ms * attempt / 1000.0)
        except Exception:
            db.session.rollback()
            raise
    current_app.logger.warning(f"[txn-exhausted] fn={name} retries={max_retries}")
    raise ServiceUnavailable()


def room_channel(room_code: str) -> str:
    return f"room:{room_code}"


def broadcast(event: str, payload: dict, room_code: str) -> None:
    """Push a committed change to every client subscribed to the room."""
    socketio.emit(event, payload, to=room_channel(room_code), namespace=NAMESPACE)


def on_create(kind: str, handler: Callable[[int], None]) -> None:
    """Register ``handler(record_id)`` to run once per new record of ``kind``."""
    if handler not in _create_handlers[kind]:
        _create_handlers[kind].append(handler)


def append_record(kind: str, instance):
    """Insert an append-only record, then fire the create handlers for it."""
    def _insert():
        db.session.add(instance)
        db.session.flush()
        return instance.id

    record_id = run_transaction(_insert)
    fire_created(kind, record_id)
    return instance


def fire_created(kind: str, record_id: int) -> None:
    app = current_app._get_current_object()
    for handler in list(_create_handlers.get(kind, [])):
        if app.config.get('TRIGGERS_INLINE'):
            handler(record_id)
        else:
            socketio.start_background_task(_run_handler, app, handler, record_id)


def _run_handler(app, handler, record_id):
    with app.app_context():
        app.logger.info(f"[trigger-fire] handler={handler.__name__} record={record_id}")
        handler(record_id)

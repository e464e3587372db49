import time
from typing import Dict, List, Optional, Set, Tuple

from olympics import db, socketio
from olympics.models import Game
from olympics.socketio_events import emit_transitions
from .session import SessionSettings, TIMED_STATUSES, advance_due_games, advance_game


_scheduled_keys: Set[Tuple[int, str]] = set()


def schedule_game_timer(app, game_id: int) -> None:
    """Schedule the next deadline-driven transition of the given game.

    - No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set
    - Ensures a single timer per (game_id, status)
    - Fires at ``game.next_transition_at``, advances, then re-arms itself
      until the game is finished

    Timers live only as long as this process. The deadline is persisted, so
    a lost timer is recovered by the ``advance-games`` sweep or by the next
    request touching the game.
    """
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return

    with app.app_context():
        game = db.session.get(Game, game_id)
        if not game or game.status not in TIMED_STATUSES or game.next_transition_at is None:
            return

        status = game.status
        deadline = game.next_transition_at
        key = (game.id, status)
        if key in _scheduled_keys:
            app.logger.info(f"[timer-skip] game={game.id} status={status} already scheduled")
            return
        _scheduled_keys.add(key)
        app.logger.info(
            f"[timer-set] game={game.id} status={status} deadline={deadline} in={max(0.0, deadline - time.time()):.2f}s"
        )

    socketio.start_background_task(_worker, app, game_id, status, deadline)


def _worker(app, gid: int, expected_status: str, deadline: float) -> None:
    delay = max(0.0, deadline - time.time())
    if delay:
        time.sleep(delay)
    with app.app_context():
        _scheduled_keys.discard((gid, expected_status))
        app.logger.info(f"[timer-fire] game={gid} expected_status={expected_status}")
        try:
            entered = advance_game(db.session, gid, settings=SessionSettings.from_config(app.config))
        except Exception:
            db.session.rollback()
            app.logger.exception(f"[timer-error] game={gid} expected_status={expected_status}")
            return
        if not entered:
            app.logger.info(f"[timer-abort] game={gid} nothing to advance from {expected_status}")
        else:
            emit_transitions(gid, entered)
    schedule_game_timer(app, gid)


def run_sweep(app, now: Optional[float] = None) -> Dict[int, List[str]]:
    """Advance every overdue game and notify its room of each status entered.

    Needs an app context."""
    advanced = advance_due_games(db.session, now=now, settings=SessionSettings.from_config(app.config))
    for gid, entered in advanced.items():
        emit_transitions(gid, entered)
        schedule_game_timer(app, gid)
    return advanced

"""Row Harder! session lifecycle.

waiting -> starting -> in_progress -> finished, never backwards. Every
operation receives the persistence handle and the resolved caller
explicitly and derives its decisions from freshly read rows; the only state
carried between requests is what is stored on ``Game``.

Status changes go through :func:`transition`, a compare-and-swap on
(status, version) that reports whether it applied. Deadlines for the
countdown and play phases are persisted in ``Game.next_transition_at`` and
applied by :func:`advance_game`, which is driven by in-process timers, the
``flask advance-games`` sweep, and lazily by any call touching the game.
"""

import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from olympics.errors import BadRequest, NotFound, StateConflict, Unauthorized
from olympics.models import Game, GameParticipant, Participant, from_epoch, utcnow
from .scoring import bonus_points, ensure_event, rank_game_participants, record_score

NEXT_STATUS = {
    'waiting': 'starting',
    'starting': 'in_progress',
    'in_progress': 'finished',
}
TIMED_STATUSES = ('starting', 'in_progress')


@dataclass(frozen=True)
class SessionSettings:
    countdown_sec: float = 3
    duration_sec: float = 10
    bonus_points: int = 1
    event_name: str = 'Row Harder!'
    event_description: Optional[str] = 'Secret button mashing competition'

    @classmethod
    def from_config(cls, config) -> 'SessionSettings':
        return cls(
            countdown_sec=float(config.get('COUNTDOWN_DURATION_SEC', 3)),
            duration_sec=float(config.get('GAME_DURATION_SEC', 10)),
            bonus_points=int(config.get('WINNER_BONUS_POINTS', 1)),
            event_name=config.get('MINIGAME_EVENT_NAME', 'Row Harder!'),
            event_description=config.get('MINIGAME_EVENT_DESCRIPTION'),
        )


DEFAULT_SETTINGS = SessionSettings()


def _require_participant(caller: Optional[Participant], action: str) -> Participant:
    if caller is None:
        raise Unauthorized(f'You must have a participant profile to {action}')
    return caller


def _get_game(session, game_id: int) -> Game:
    game = session.get(Game, game_id)
    if game is None:
        raise NotFound('Game not found')
    return game


def _membership(session, game_id: int, participant_id: int) -> Optional[GameParticipant]:
    return session.execute(
        select(GameParticipant).filter_by(game_id=game_id, participant_id=participant_id)
    ).scalar_one_or_none()


def _is_due(game: Game, now: float) -> bool:
    return (
        game.status in TIMED_STATUSES
        and game.next_transition_at is not None
        and game.next_transition_at <= now
    )


def transition(session, game: Game, expected: str, **values) -> bool:
    """Move ``game`` from ``expected`` to its successor status.

    The UPDATE only matches while the row still has the status and version
    we read, so a concurrent writer makes it a no-op. Returns whether the
    write applied; ``game`` is refreshed either way. Does not commit.
    """
    target = NEXT_STATUS[expected]
    result = session.execute(
        update(Game)
        .where(Game.id == game.id, Game.status == expected, Game.version == game.version)
        .values(status=target, version=Game.version + 1, **values)
        .execution_options(synchronize_session=False)
    )
    applied = result.rowcount == 1
    session.refresh(game)
    if applied:
        current_app.logger.info(f"[transition] game={game.id} {expected} -> {target} version={game.version}")
    else:
        current_app.logger.info(
            f"[transition-lost] game={game.id} expected={expected} actual={game.status} version={game.version}"
        )
    return applied


def advance_game(session, game_id: int, now: Optional[float] = None,
                 settings: SessionSettings = DEFAULT_SETTINGS) -> List[str]:
    """Apply every transition of ``game_id`` whose deadline has passed.

    A game stranded past both deadlines walks starting -> in_progress ->
    finished in one call. Returns the statuses entered, in order.
    """
    now = time.time() if now is None else now
    game = session.get(Game, game_id)
    entered: List[str] = []
    if game is None:
        return entered
    while _is_due(game, now):
        deadline = game.next_transition_at
        if game.status == 'starting':
            applied = transition(session, game, 'starting',
                                 next_transition_at=deadline + settings.duration_sec)
        else:
            applied = transition(session, game, 'in_progress',
                                 finished_at=from_epoch(deadline), next_transition_at=None)
        if not applied:
            break
        entered.append(game.status)
    if entered:
        session.commit()
    return entered


def advance_due_games(session, now: Optional[float] = None,
                      settings: SessionSettings = DEFAULT_SETTINGS) -> Dict[int, List[str]]:
    """Reconciliation sweep: advance every timed game whose deadline passed."""
    now = time.time() if now is None else now
    due_ids = session.execute(
        select(Game.id)
        .where(Game.status.in_(TIMED_STATUSES), Game.next_transition_at <= now)
        .order_by(Game.id)
    ).scalars().all()
    advanced: Dict[int, List[str]] = {}
    for game_id in due_ids:
        entered = advance_game(session, game_id, now=now, settings=settings)
        if entered:
            advanced[game_id] = entered
    if due_ids:
        current_app.logger.info(f"[sweep] due={len(due_ids)} advanced={len(advanced)}")
    return advanced


def _apply_due(session, game: Game, now: Optional[float], settings: SessionSettings) -> None:
    now = time.time() if now is None else now
    if _is_due(game, now):
        advance_game(session, game.id, now=now, settings=settings)


def create_game(session, caller: Optional[Participant]) -> Game:
    _require_participant(caller, 'create a game')
    game = Game(status='waiting')
    session.add(game)
    session.flush()
    session.add(GameParticipant(game_id=game.id, participant_id=caller.id, tap_count=0))
    session.commit()
    current_app.logger.info(f"[game-create] game={game.id} creator={caller.id}")
    return game


def join_game(session, game_id: int, caller: Optional[Participant]) -> Game:
    """Add the caller to a waiting game. Joining twice is a no-op."""
    _require_participant(caller, 'join a game')
    game = _get_game(session, game_id)
    if game.status != 'waiting':
        raise StateConflict('Cannot join a game that has already started')
    if _membership(session, game.id, caller.id) is not None:
        return game
    session.add(GameParticipant(game_id=game.id, participant_id=caller.id, tap_count=0))
    try:
        session.commit()
    except IntegrityError:
        # A concurrent join by the same participant won the unique constraint
        session.rollback()
        current_app.logger.info(f"[game-join] game={game_id} participant={caller.id} already joined")
        return _get_game(session, game_id)
    current_app.logger.info(f"[game-join] game={game.id} participant={caller.id}")
    return game


def get_game(session, game_id: int, now: Optional[float] = None,
             settings: SessionSettings = DEFAULT_SETTINGS) -> Game:
    game = _get_game(session, game_id)
    _apply_due(session, game, now, settings)
    return game


def get_active_games(session, statuses: Iterable[str] = ('waiting',), now: Optional[float] = None,
                     settings: SessionSettings = DEFAULT_SETTINGS) -> List[Game]:
    statuses = tuple(statuses)
    if any(s in TIMED_STATUSES for s in statuses):
        advance_due_games(session, now=now, settings=settings)
    return session.execute(
        select(Game)
        .where(Game.status.in_(statuses))
        .order_by(Game.created_at.desc(), Game.id.desc())
    ).scalars().all()


def start_game(session, game_id: int, caller: Optional[Participant], now: Optional[float] = None,
               settings: SessionSettings = DEFAULT_SETTINGS) -> Game:
    """Begin the countdown; play starts ``countdown_sec`` from now.

    ``started_at`` records when play begins. Scheduling the in-process timer
    is left to the caller.
    """
    _require_participant(caller, 'start a game')
    game = _get_game(session, game_id)
    if game.status != 'waiting':
        raise StateConflict('Game has already started or is not in a waiting state.')
    if _membership(session, game.id, caller.id) is None:
        raise Unauthorized('You must be a participant in the game to start it')
    now = time.time() if now is None else now
    play_at = now + settings.countdown_sec
    if not transition(session, game, 'waiting', started_at=from_epoch(play_at), next_transition_at=play_at):
        session.rollback()
        raise StateConflict('Game has already started or is not in a waiting state.')
    session.commit()
    current_app.logger.info(f"[game-start] game={game.id} by={caller.id} play_at={play_at}")
    return game


def update_tap_count(session, game_id: int, caller: Optional[Participant], tap_count,
                     now: Optional[float] = None, settings: SessionSettings = DEFAULT_SETTINGS) -> GameParticipant:
    """Overwrite the caller's running tap total (last write wins)."""
    _require_participant(caller, 'update tap count')
    if isinstance(tap_count, bool) or not isinstance(tap_count, int) or tap_count < 0:
        raise BadRequest('tap_count must be a non-negative integer')
    game = _get_game(session, game_id)
    _apply_due(session, game, now, settings)
    if game.status != 'in_progress':
        raise StateConflict('Cannot update tap count for a game that is not in progress')
    membership = _membership(session, game.id, caller.id)
    if membership is None:
        raise Unauthorized('You are not a participant in this game')
    # Conditional on the game still being in progress at write time
    result = session.execute(
        update(GameParticipant)
        .where(
            GameParticipant.id == membership.id,
            GameParticipant.game_id.in_(
                select(Game.id).where(Game.id == game.id, Game.status == 'in_progress')
            ),
        )
        .values(tap_count=tap_count)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.rollback()
        raise StateConflict('Cannot update tap count for a game that is not in progress')
    session.commit()
    session.refresh(membership)
    return membership


def finish_game(session, game_id: int, caller: Optional[Participant], now: Optional[float] = None,
                settings: SessionSettings = DEFAULT_SETTINGS) -> Game:
    """Rank a finished game and write its scores exactly once.

    The first caller claims the game by setting ``reconciled_at`` inside the
    scoring transaction; the UPDATE takes the row lock, so a concurrent
    caller waits and then finds the claim taken. Later calls return the
    stored results without touching the Score ledger.
    """
    _require_participant(caller, 'finish a game')
    game = _get_game(session, game_id)
    _apply_due(session, game, now, settings)
    if game.status != 'finished':
        raise StateConflict(f'Game is not finished yet. Current status: {game.status}')
    if _membership(session, game.id, caller.id) is None:
        raise Unauthorized('You must be a participant in the game to finalize its results.')

    claimed = session.execute(
        update(Game)
        .where(Game.id == game.id, Game.status == 'finished', Game.reconciled_at.is_(None))
        .values(reconciled_at=utcnow())
        .execution_options(synchronize_session=False)
    ).rowcount == 1
    if not claimed:
        session.rollback()
        current_app.logger.info(f"[finish-noop] game={game_id} already reconciled")
        return _get_game(session, game_id)

    try:
        members = session.execute(
            select(GameParticipant).filter_by(game_id=game.id)
        ).scalars().all()
        ranked = rank_game_participants(members)
        event = ensure_event(session, settings.event_name, settings.event_description)
        for gp, rank in ranked:
            awarded = bonus_points(rank, len(ranked), settings.bonus_points)
            gp.rank = rank
            gp.score_awarded = awarded
            session.add(gp)
            record_score(session, gp.participant_id, event.id, rank, awarded)
        session.commit()
    except Exception:
        session.rollback()
        raise
    current_app.logger.info(
        f"[finish] game={game_id} players={len(ranked)} "
        f"winners={[gp.participant_id for gp, rank in ranked if rank == 1]}"
    )
    session.refresh(game)
    return game

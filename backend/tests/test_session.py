import pytest
from sqlalchemy import update

from olympics import db
from olympics.errors import BadRequest, NotFound, StateConflict, Unauthorized
from olympics.models import Event, Game, GameParticipant, Score
from olympics.services.games import session as gs
from olympics.services.games.session import SessionSettings

T0 = 1_700_000_000.0
SETTINGS = SessionSettings(countdown_sec=3, duration_sec=10)


def _players(make_participant, *names):
    return [make_participant(n) for n in names]


def _play(players, taps, now=T0):
    """Create a game with ``players``, run it to finished with the given taps."""
    creator = players[0]
    game = gs.create_game(db.session, creator)
    for p in players[1:]:
        gs.join_game(db.session, game.id, p)
    gs.start_game(db.session, game.id, creator, now=now, settings=SETTINGS)
    playing = now + SETTINGS.countdown_sec
    for p, count in zip(players, taps):
        gs.update_tap_count(db.session, game.id, p, count, now=playing, settings=SETTINGS)
    done = playing + SETTINGS.duration_sec
    gs.advance_game(db.session, game.id, now=done, settings=SETTINGS)
    return game, done


def _ranks(game):
    return {gp.participant_id: (gp.rank, gp.score_awarded) for gp in game.participants}


def test_create_game_adds_creator(make_participant):
    alice, = _players(make_participant, 'Alice')
    game = gs.create_game(db.session, alice)
    assert game.status == 'waiting'
    assert [(gp.participant_id, gp.tap_count) for gp in game.participants] == [(alice.id, 0)]


def test_create_game_requires_participant(flask_app):
    with pytest.raises(Unauthorized):
        gs.create_game(db.session, None)


def test_join_is_idempotent(make_participant):
    alice, bob = _players(make_participant, 'Alice', 'Bob')
    game = gs.create_game(db.session, alice)
    gs.join_game(db.session, game.id, bob)
    gs.join_game(db.session, game.id, bob)
    assert GameParticipant.query.filter_by(game_id=game.id, participant_id=bob.id).count() == 1
    assert len(game.participants) == 2


def test_join_rejects_missing_and_started_games(make_participant):
    alice, bob = _players(make_participant, 'Alice', 'Bob')
    with pytest.raises(NotFound):
        gs.join_game(db.session, 999, bob)
    game = gs.create_game(db.session, alice)
    gs.start_game(db.session, game.id, alice, now=T0, settings=SETTINGS)
    with pytest.raises(StateConflict, match='already started'):
        gs.join_game(db.session, game.id, bob)


def test_start_sets_countdown_deadline(make_participant):
    alice, = _players(make_participant, 'Alice')
    game = gs.create_game(db.session, alice)
    gs.start_game(db.session, game.id, alice, now=T0, settings=SETTINGS)
    assert game.status == 'starting'
    assert game.next_transition_at == T0 + 3
    assert game.started_at is not None
    assert game.version == 2


def test_start_requires_membership_and_waiting(make_participant):
    alice, bob = _players(make_participant, 'Alice', 'Bob')
    game = gs.create_game(db.session, alice)
    with pytest.raises(Unauthorized):
        gs.start_game(db.session, game.id, bob, now=T0, settings=SETTINGS)
    gs.start_game(db.session, game.id, alice, now=T0, settings=SETTINGS)
    with pytest.raises(StateConflict):
        gs.start_game(db.session, game.id, alice, now=T0, settings=SETTINGS)
    with pytest.raises(NotFound):
        gs.start_game(db.session, 12345, alice, now=T0, settings=SETTINGS)


def test_advance_walks_each_state_in_order(make_participant):
    alice, = _players(make_participant, 'Alice')
    game = gs.create_game(db.session, alice)
    gs.start_game(db.session, game.id, alice, now=T0, settings=SETTINGS)

    assert gs.advance_game(db.session, game.id, now=T0 + 2.9, settings=SETTINGS) == []
    assert game.status == 'starting'

    assert gs.advance_game(db.session, game.id, now=T0 + 3, settings=SETTINGS) == ['in_progress']
    assert game.next_transition_at == T0 + 13

    assert gs.advance_game(db.session, game.id, now=T0 + 13, settings=SETTINGS) == ['finished']
    assert game.finished_at is not None
    assert game.next_transition_at is None

    # Terminal
    assert gs.advance_game(db.session, game.id, now=T0 + 1000, settings=SETTINGS) == []
    assert game.status == 'finished'


def test_stranded_game_catches_up_through_every_state(make_participant):
    alice, = _players(make_participant, 'Alice')
    game = gs.create_game(db.session, alice)
    gs.start_game(db.session, game.id, alice, now=T0, settings=SETTINGS)
    version = game.version

    advanced = gs.advance_due_games(db.session, now=T0 + 3600, settings=SETTINGS)

    assert advanced == {game.id: ['in_progress', 'finished']}
    assert game.status == 'finished'
    assert game.version == version + 2


def test_transition_reports_lost_race(make_participant):
    alice, = _players(make_participant, 'Alice')
    game = gs.create_game(db.session, alice)
    gs.start_game(db.session, game.id, alice, now=T0, settings=SETTINGS)
    assert (game.status, game.version) == ('starting', 2)

    # Another writer bumps the row behind our back; our copy is now stale
    db.session.execute(
        update(Game).where(Game.id == game.id).values(version=Game.version + 1)
        .execution_options(synchronize_session=False)
    )
    assert game.version == 2

    assert not gs.transition(db.session, game, 'starting', next_transition_at=T0 + 13)
    assert (game.status, game.version) == ('starting', 3)


def test_tap_count_only_accepted_while_in_progress(make_participant):
    alice, = _players(make_participant, 'Alice')
    game = gs.create_game(db.session, alice)
    with pytest.raises(StateConflict):
        gs.update_tap_count(db.session, game.id, alice, 5, now=T0, settings=SETTINGS)

    gs.start_game(db.session, game.id, alice, now=T0, settings=SETTINGS)
    with pytest.raises(StateConflict):
        gs.update_tap_count(db.session, game.id, alice, 5, now=T0 + 1, settings=SETTINGS)

    gp = gs.update_tap_count(db.session, game.id, alice, 5, now=T0 + 4, settings=SETTINGS)
    assert gp.tap_count == 5
    # Overwrite, not increment; regressions are allowed (last write wins)
    gp = gs.update_tap_count(db.session, game.id, alice, 3, now=T0 + 5, settings=SETTINGS)
    assert gp.tap_count == 3

    with pytest.raises(StateConflict):
        gs.update_tap_count(db.session, game.id, alice, 9, now=T0 + 14, settings=SETTINGS)
    assert game.status == 'finished'


def test_tap_count_validation_and_membership(make_participant):
    alice, bob = _players(make_participant, 'Alice', 'Bob')
    game = gs.create_game(db.session, alice)
    gs.start_game(db.session, game.id, alice, now=T0, settings=SETTINGS)
    for bad in (-1, 2.5, '7', True):
        with pytest.raises(BadRequest):
            gs.update_tap_count(db.session, game.id, alice, bad, now=T0 + 4, settings=SETTINGS)
    with pytest.raises(Unauthorized):
        gs.update_tap_count(db.session, game.id, bob, 1, now=T0 + 4, settings=SETTINGS)
    with pytest.raises(NotFound):
        gs.update_tap_count(db.session, 999, alice, 1, now=T0 + 4, settings=SETTINGS)


def test_finish_rejected_until_finished(make_participant):
    alice, = _players(make_participant, 'Alice')
    game = gs.create_game(db.session, alice)
    gs.start_game(db.session, game.id, alice, now=T0, settings=SETTINGS)
    with pytest.raises(StateConflict, match='Current status: in_progress'):
        gs.finish_game(db.session, game.id, alice, now=T0 + 5, settings=SETTINGS)


def test_finish_requires_membership(make_participant):
    alice, bob, eve = _players(make_participant, 'Alice', 'Bob', 'Eve')
    game, done = _play([alice, bob], [3, 1])
    with pytest.raises(Unauthorized):
        gs.finish_game(db.session, game.id, eve, now=done, settings=SETTINGS)


def test_finish_applies_overdue_transition(make_participant):
    alice, bob = _players(make_participant, 'Alice', 'Bob')
    game = gs.create_game(db.session, alice)
    gs.join_game(db.session, game.id, bob)
    gs.start_game(db.session, game.id, alice, now=T0, settings=SETTINGS)
    # No timer ran; the client's own clock expired
    finished = gs.finish_game(db.session, game.id, bob, now=T0 + 20, settings=SETTINGS)
    assert finished.status == 'finished'
    assert finished.reconciled_at is not None


def test_finish_distinct_tap_counts(make_participant):
    a, b, c = _players(make_participant, 'A', 'B', 'C')
    game, done = _play([a, b, c], [5, 12, 8])
    gs.finish_game(db.session, game.id, a, now=done, settings=SETTINGS)
    assert _ranks(game) == {b.id: (1, 1), c.id: (2, 0), a.id: (3, 0)}


def test_finish_tie_shares_rank_and_bonus(make_participant):
    a, b, c = _players(make_participant, 'A', 'B', 'C')
    game, done = _play([a, b, c], [42, 42, 10])
    result = gs.finish_game(db.session, game.id, c, now=done, settings=SETTINGS)
    assert _ranks(result) == {a.id: (1, 1), b.id: (1, 1), c.id: (3, 0)}


def test_single_player_gets_no_bonus(make_participant):
    solo, = _players(make_participant, 'Solo')
    game, done = _play([solo], [99])
    gs.finish_game(db.session, game.id, solo, now=done, settings=SETTINGS)
    assert _ranks(game) == {solo.id: (1, 0)}
    score = Score.query.filter_by(participant_id=solo.id).one()
    assert (score.rank, score.points) == (1, 0)


def test_second_finish_does_not_double_award(make_participant):
    a, b = _players(make_participant, 'A', 'B')
    game, done = _play([a, b], [10, 4])
    gs.finish_game(db.session, game.id, a, now=done, settings=SETTINGS)
    again = gs.finish_game(db.session, game.id, b, now=done + 1, settings=SETTINGS)

    assert again.status == 'finished'
    assert _ranks(again) == {a.id: (1, 1), b.id: (2, 0)}
    score = Score.query.filter_by(participant_id=a.id).one()
    assert score.points == 1


def test_scores_accumulate_across_games(make_participant):
    a, b = _players(make_participant, 'A', 'B')
    first, done = _play([a, b], [10, 4])
    gs.finish_game(db.session, first.id, a, now=done, settings=SETTINGS)
    second, done = _play([a, b], [2, 9], now=done + 60)
    gs.finish_game(db.session, second.id, a, now=done, settings=SETTINGS)

    event = Event.query.filter_by(name='Row Harder!').one()
    a_score = Score.query.filter_by(participant_id=a.id, event_id=event.id).one()
    b_score = Score.query.filter_by(participant_id=b.id, event_id=event.id).one()
    assert (a_score.points, a_score.rank) == (1, 1)
    assert (b_score.points, b_score.rank) == (1, 1)
    assert Event.query.filter_by(name='Row Harder!').count() == 1


def test_active_games_lists_waiting_newest_first(make_participant):
    alice, = _players(make_participant, 'Alice')
    older = gs.create_game(db.session, alice)
    newer = gs.create_game(db.session, alice)
    started = gs.create_game(db.session, alice)
    gs.start_game(db.session, started.id, alice, now=T0, settings=SETTINGS)

    waiting = gs.get_active_games(db.session, ['waiting'])
    assert [g.id for g in waiting] == [newer.id, older.id]

    running = gs.get_active_games(db.session, ['waiting', 'starting', 'in_progress'], now=T0 + 1,
                                  settings=SETTINGS)
    assert started.id in [g.id for g in running]


def test_get_game_advances_due_game(make_participant):
    alice, = _players(make_participant, 'Alice')
    game = gs.create_game(db.session, alice)
    gs.start_game(db.session, game.id, alice, now=T0, settings=SETTINGS)
    fetched = gs.get_game(db.session, game.id, now=T0 + 4, settings=SETTINGS)
    assert fetched.status == 'in_progress'
    assert isinstance(db.session.get(Game, game.id).next_transition_at, float)

from flask import Blueprint, jsonify, request, current_app
from olympics import db
from olympics.auth import current_participant
from olympics.errors import BadRequest
from olympics.services.games import session as game_session
from olympics.services.games.session import SessionSettings, TIMED_STATUSES
from olympics.services.games.scheduler import schedule_game_timer
from olympics.socketio_events import emit_game_update, emit_transitions


games = Blueprint('games', __name__)


def _settings() -> SessionSettings:
    return SessionSettings.from_config(current_app.config)


def _truthy(value) -> bool:
    return str(value).lower() in ('1', 'true', 'yes', 'on')


def _advance(game_id: int) -> None:
    """Apply overdue transitions now and push each one to the game's room."""
    entered = game_session.advance_game(db.session, game_id, settings=_settings())
    emit_transitions(game_id, entered)


@games.route('/create', methods=['POST'])
def create_game():
    game = game_session.create_game(db.session, current_participant())
    emit_game_update(game.id, game.status)
    return jsonify(game.to_dict()), 201


@games.route('/active', methods=['GET'])
def get_active_games():
    statuses = list(current_app.config.get('ACTIVE_GAME_STATUSES') or ['waiting'])
    if _truthy(request.args.get('include_running', '')):
        statuses = ['waiting', *TIMED_STATUSES]
        advanced = game_session.advance_due_games(db.session, settings=_settings())
        for game_id, entered in advanced.items():
            emit_transitions(game_id, entered)
    active = game_session.get_active_games(db.session, statuses, settings=_settings())
    return jsonify([g.to_dict() for g in active])


@games.route('/<int:game_id>', methods=['GET'])
def get_game(game_id):
    _advance(game_id)
    game = game_session.get_game(db.session, game_id, settings=_settings())
    return jsonify(game.to_dict(by_rank=game.status == 'finished'))


@games.route('/<int:game_id>/join', methods=['POST'])
def join_game(game_id):
    game = game_session.join_game(db.session, game_id, current_participant())
    emit_game_update(game.id, game.status)
    return jsonify(game.to_dict())


@games.route('/<int:game_id>/start', methods=['POST'])
def start_game(game_id):
    game = game_session.start_game(db.session, game_id, current_participant(), settings=_settings())
    emit_game_update(game.id, game.status)
    schedule_game_timer(current_app._get_current_object(), game.id)
    return jsonify(game.to_dict())


@games.route('/<int:game_id>/taps', methods=['POST'])
def update_tap_count(game_id):
    caller = current_participant()
    data = request.get_json(silent=True) or {}
    if 'tap_count' not in data:
        raise BadRequest('tap_count is required')
    _advance(game_id)
    membership = game_session.update_tap_count(
        db.session, game_id, caller, data.get('tap_count'), settings=_settings()
    )
    emit_game_update(game_id, 'in_progress')
    return jsonify(membership.to_dict())


@games.route('/<int:game_id>/finish', methods=['POST'])
def finish_game(game_id):
    _advance(game_id)
    game = game_session.finish_game(db.session, game_id, current_participant(), settings=_settings())
    emit_game_update(game.id, game.status)
    return jsonify(game.to_dict(by_rank=True))

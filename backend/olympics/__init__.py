from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import time
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
socketio = SocketIO(async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from olympics.errors import register_error_handlers, Unauthorized
    register_error_handlers(flask_app)

    # Import and register blueprints here
    from olympics.main import main
    flask_app.register_blueprint(main)

    from olympics.api.games import games
    flask_app.register_blueprint(games, url_prefix='/api/games')

    from olympics.api.events import events, scores
    flask_app.register_blueprint(events, url_prefix='/api/events')
    flask_app.register_blueprint(scores, url_prefix='/api/scores')

    from olympics.api.participants import participants
    flask_app.register_blueprint(participants, url_prefix='/api/participants')

    from olympics.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    # Flask-Login user loader
    from olympics.models import User, Participant

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        raise Unauthorized('You must be logged in to perform this action')

    @click.command('seed-events')
    def seed_events_command():
        """Creates the minigame event if it is missing."""
        from olympics.services.games.scoring import ensure_event
        event = ensure_event(
            db.session,
            flask_app.config['MINIGAME_EVENT_NAME'],
            flask_app.config.get('MINIGAME_EVENT_DESCRIPTION'),
        )
        db.session.commit()
        print(f'Event "{event.name}" ready (id={event.id})')

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from olympics.services.games.scoring import ensure_event
        db.drop_all()
        db.create_all()

        # Seed users, each with a participant profile
        for name in ['alice', 'bob', 'carol']:
            email = f'{name}@example.com'
            user = User(email=email)
            user.set_password('password')
            db.session.add(user)
            db.session.flush()
            db.session.add(Participant(
                user_id=user.id,
                email=email,
                name=name.capitalize(),
                is_admin=(email == flask_app.config.get('ADMIN_EMAIL')),
            ))
        ensure_event(
            db.session,
            flask_app.config['MINIGAME_EVENT_NAME'],
            flask_app.config.get('MINIGAME_EVENT_DESCRIPTION'),
        )
        db.session.commit()
        print('Database has been reset and seeded!')

    @click.command('advance-games')
    @click.option('--watch', is_flag=True, help='Keep sweeping every SWEEP_INTERVAL_SEC.')
    def advance_games_command(watch):
        """Applies overdue countdown/play transitions (recovers lost timers)."""
        from olympics.services.games.scheduler import run_sweep
        interval = float(flask_app.config.get('SWEEP_INTERVAL_SEC', 1))
        while True:
            advanced = run_sweep(flask_app)
            for game_id, entered in advanced.items():
                print(f'game {game_id}: {" -> ".join(entered)}')
            if not watch:
                break
            time.sleep(interval)

    flask_app.cli.add_command(seed_events_command)
    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(advance_games_command)

    return flask_app

from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:8081",
    "http://127.0.0.1:8081",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # One lobby context per app: record store, change feed, settings, logger
    from betparty.services.lobbies.context import EXTENSION_KEY, GameSettings, LobbyContext
    from betparty.services.lobbies.store import SqlRecordStore
    from betparty.services.lobbies.sync import ChangeFeed

    feed = ChangeFeed(logger=flask_app.logger)
    lobby_ctx = LobbyContext(
        store=SqlRecordStore(feed=feed, logger=flask_app.logger),
        feed=feed,
        settings=GameSettings.from_config(flask_app.config),
        logger=flask_app.logger,
    )
    flask_app.extensions[EXTENSION_KEY] = lobby_ctx

    # Push every committed lobby row to the clients watching it
    def _emit_lobby_update(lobby_id, snapshot):
        socketio.emit('lobby_update', snapshot, to=f"lobby:{lobby_id}", namespace='/ws')

    feed.listen(_emit_lobby_update)

    # Import and register blueprints here
    from betparty.main import main
    flask_app.register_blueprint(main)

    from betparty.api.lobbies import lobbies
    # Mount lobby routes under /api to match frontend API client
    flask_app.register_blueprint(lobbies, url_prefix='/api/lobbies')

    # Register Socket.IO event handlers
    from betparty.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    # Flask-Login user loader
    from betparty.models import Game, User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, user_id)

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'You need to be signed in', 'kind': 'not_authenticated'}), 401

    @click.command('db-reset')
    @click.option('--demo-lobby', is_flag=True, help='Also open a waiting lobby hosted by the first seed user.')
    def db_reset_command(demo_lobby):
        """Drops, recreates, and seeds the database."""
        from betparty.services.lobbies.state_machine import create_lobby, join_lobby
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            # Seed users with the starting balance
            seeded = []
            for name in ('testuser1', 'testuser2', 'testuser3'):
                user = User(username=name, balance=lobby_ctx.settings.starting_balance)
                user.set_password('password')
                db.session.add(user)
                seeded.append(user.id)

            # Seed a few upcoming games to build lobbies on
            kickoff = lobby_ctx.now() + 3600
            games = []
            for offset, (league, away, home) in enumerate([
                ('NFL', 'NE', 'ATL'),
                ('NFL', 'KC', 'BUF'),
                ('NBA', 'BOS', 'LAL'),
            ]):
                game = Game(league=league, away=away, home=home, start_time=kickoff + offset * 86400)
                db.session.add(game)
                games.append(game.id)
            db.session.commit()

            if demo_lobby:
                lobby = create_lobby(lobby_ctx, seeded[0], game_id=games[0])
                for user_id in seeded[1:]:
                    join_lobby(lobby_ctx, lobby.code, user_id)
                click.echo(f'Demo lobby {lobby.code} is open.')
            click.echo('Database has been reset and seeded!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app

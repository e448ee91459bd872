from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
allowed_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # One change feed per application; store writes publish to it
    from liquidity.feed import ChangeFeed
    from liquidity.store import FEED_EXTENSION
    flask_app.extensions[FEED_EXTENSION] = ChangeFeed()

    from liquidity.main import main
    flask_app.register_blueprint(main)

    from liquidity.api.games import games
    flask_app.register_blueprint(games, url_prefix='/api/games')

    # Socket.IO handlers and the feed -> room relay
    from liquidity.socketio_events import register_socketio_handlers, relay_changes
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))
    relay_changes(flask_app.extensions[FEED_EXTENSION])

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates the game tables."""
        import liquidity.models  # noqa: F401
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            print('Database has been reset!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app

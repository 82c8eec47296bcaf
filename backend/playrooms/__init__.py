from flask import Flask
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
socketio = SocketIO(async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(flask_app.config.get('LOG_LEVEL', 'INFO'))

    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from playrooms.main import main
    flask_app.register_blueprint(main, url_prefix='/api')

    from playrooms.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/api/rooms')

    from playrooms.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    # Server-side triggers: newly appended submissions are scored asynchronously
    from playrooms.services.rooms.scoring import register_scoring_trigger
    register_scoring_trigger()

    from playrooms.models import PlayerProfile

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(PlayerProfile, user_id)

    @login_manager.unauthorized_handler
    def unauthorized():
        return {'error': 'Authentication required'}, 401

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from playrooms.seed import load_catalog, seed_catalog, seed_demo_players
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            counts = seed_catalog(load_catalog(flask_app.config['CATALOG_PATH']))
            seed_demo_players(['testuser1', 'testuser2', 'testuser3'], 'password')
            print(f'Database has been reset and seeded! {counts}')

    @click.command('seed-catalog')
    def seed_catalog_command():
        """Upserts puzzles, session templates and achievements from the catalog file."""
        from playrooms.seed import load_catalog, seed_catalog
        with flask_app.app_context():
            counts = seed_catalog(load_catalog(flask_app.config['CATALOG_PATH']))
            print(f'Catalog seeded: {counts}')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(seed_catalog_command)

    return flask_app

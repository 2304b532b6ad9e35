from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from sqlalchemy import inspect
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
socketio = SocketIO(async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS', [])

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Match services: registry, state machine, settlement and the socket gateway
    from wagerplay.socketio_events import SocketIOTransport, register_socketio_handlers
    from wagerplay.services.matches import init_match_services
    from wagerplay.services.matches.scheduler import defer_with_delay

    defer = None
    if not flask_app.config.get('TESTING'):
        defer = defer_with_delay(flask_app, float(flask_app.config.get('BOT_MOVE_DELAY_SEC', 0.5)))
    gateway = init_match_services(flask_app, SocketIOTransport(), defer=defer)
    register_socketio_handlers()

    from wagerplay.models import MatchRecord, User

    # Pick up matches that outlived the previous process
    with flask_app.app_context():
        if inspect(db.engine).has_table(MatchRecord.__tablename__):
            gateway.restore()

    from wagerplay.main import main
    flask_app.register_blueprint(main)

    from wagerplay.api.matches import matches
    flask_app.register_blueprint(matches, url_prefix='/api')

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            # Seed users
            for u in ['testuser1', 'testuser2', 'testuser3']:
                user = User(username=u, balance=1000)
                user.set_password('password')
                db.session.add(user)
            admin = User(username='admin', is_admin=True)
            admin.set_password('password')
            db.session.add(admin)
            db.session.add(User(
                username=flask_app.config['BOT_USERNAME'],
                is_bot=True,
                balance=flask_app.config['BOT_INITIAL_BALANCE'],
            ))

            db.session.commit()
        print('Database has been reset and seeded!')

    @click.command('sweep')
    def sweep_command():
        """Runs one pass of the waiting/invite/disconnect timeouts."""
        from wagerplay.services.matches.scheduler import sweep_once
        print(sweep_once(flask_app))

    @click.command('settle-failed')
    def settle_failed_command():
        """Retries settlement for matches marked failed."""
        from wagerplay.services.matches import get_settlement, get_state_machine
        with flask_app.app_context():
            results = get_settlement().retry_failed(get_state_machine().get)
        for match in results:
            print(f"{match.id}: {match.settlement_status}")

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(sweep_command)
    flask_app.cli.add_command(settle_failed_command)

    return flask_app

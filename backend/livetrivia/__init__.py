from flask import Flask, current_app, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
login_manager = LoginManager()
migrate = Migrate()
socketio = SocketIO(async_mode=None)

def create_app(config_class=Config, **service_options):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []

    db.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Import and register blueprints here
    from livetrivia.main import main
    flask_app.register_blueprint(main)

    from livetrivia.api.lobbies import lobbies
    from livetrivia.api.questions import questions
    from livetrivia.api.sessions import sessions
    flask_app.register_blueprint(lobbies, url_prefix='/api/lobbies')
    flask_app.register_blueprint(questions, url_prefix='/api/questions')
    flask_app.register_blueprint(sessions, url_prefix='/api/sessions')

    # Service graph: store, timers, scoring and the session orchestrator
    from livetrivia.services import build_services
    flask_app.extensions['livetrivia'] = build_services(flask_app, **service_options)

    from livetrivia.socketio_events import register_socketio_handlers
    register_socketio_handlers(flask_app.config.get('SOCKETIO_NAMESPACE', '/ws'))

    from livetrivia.auth import bearer_token
    from livetrivia.errors import AuthenticationFailure, TriviaError

    # Flask-Login: identities come from bearer tokens, never from a session cookie
    @login_manager.request_loader
    def load_identity(request):
        token = bearer_token(request.headers.get('Authorization'))
        if not token:
            return None
        try:
            return current_app.extensions['livetrivia'].verifier.verify(token)
        except AuthenticationFailure:
            return None

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Access token required'}), 401

    @flask_app.errorhandler(TriviaError)
    def handle_trivia_error(exc):
        if exc.status_code >= 500:
            flask_app.logger.error(f"[http-error] {type(exc).__name__}: {exc.message}")
        return jsonify(exc.to_dict()), exc.status_code

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates the lobby, round, question and session tables."""
        import livetrivia.models  # noqa: F401
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            click.echo('Database has been reset!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app

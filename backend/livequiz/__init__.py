import time

from flask import Flask, Response, g, jsonify, request
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from config import Config

db = SQLAlchemy()
migrate = Migrate()
# Session timers block on threading.Event, so eventlet/gevent hubs are not supported
socketio = SocketIO(async_mode='threading')

def create_app(config_class=Config, **collaborators):
    """Build the application.

    ``collaborators`` may override the quiz resolver, stats sink, identity
    resolver or code generator used by the session engine (see
    ``LiveSessionEngine``); by default they talk HTTP to the configured
    services.
    """
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS', [])

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Import models so metadata is complete for migrations and create_all
    from livequiz import models  # noqa: F401

    from livequiz.engine import LiveSessionEngine
    LiveSessionEngine.init_app(flask_app, socketio, **collaborators)

    from livequiz.api.sessions import sessions
    flask_app.register_blueprint(sessions, url_prefix='/api/sessions')

    # Register Socket.IO event handlers on the initialized socketio instance
    from livequiz.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    @flask_app.route('/health')
    def health():
        return jsonify({'status': 'OK', 'service': 'livequiz'})

    from livequiz import metrics

    @flask_app.route('/metrics')
    def prometheus_metrics():
        return Response(generate_latest(), content_type=CONTENT_TYPE_LATEST)

    @flask_app.before_request
    def start_request_timer():
        g.request_started = time.perf_counter()

    @flask_app.after_request
    def record_request_metrics(response):
        started = g.pop('request_started', None)
        if started is not None and request.path != '/metrics':
            route = request.url_rule.rule if request.url_rule else 'unmatched'
            metrics.observe_request(route, request.method, response.status_code, time.perf_counter() - started)
        return response

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates all tables."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            print('Database has been reset!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app

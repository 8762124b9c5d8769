from flask import current_app

from livequiz.collaborators import HttpQuizResolver, HttpStatsSink, JoinPayloadIdentityResolver
from livequiz.services.sessions.notifier import EventNotifier
from livequiz.services.sessions.rooms import RoomBroadcaster
from livequiz.services.sessions.scheduler import ProgressionScheduler
from livequiz.services.sessions.store import SessionStore, generate_code


SOCKET_NAMESPACE = '/ws'


class LiveSessionEngine:
    """Per-app bundle of the session services, stored in ``app.extensions``."""

    def __init__(self, app, socketio, quiz_resolver=None, stats_sink=None,
                 identity_resolver=None, code_generator=None):
        cfg = app.config
        timeout = float(cfg.get('COLLABORATOR_TIMEOUT_SEC', 5))
        inline = cfg.get('TESTING') and not cfg.get('ENABLE_SCHEDULER_IN_TESTS')

        self.store = SessionStore(
            max_attempts=int(cfg.get('CODE_MAX_ATTEMPTS', 10)),
            code_generator=code_generator or generate_code,
        )
        self.rooms = RoomBroadcaster(socketio.emit, namespace=SOCKET_NAMESPACE)
        self.notifier = EventNotifier(
            stats_sink or HttpStatsSink(
                cfg.get('ANALYTICS_SERVICE_URL', 'http://localhost:3005'),
                cfg.get('USER_SERVICE_URL', 'http://localhost:3004'),
                timeout=timeout,
            ),
            identity_resolver or JoinPayloadIdentityResolver(),
            spawn=None if inline else socketio.start_background_task,
            logger=app.logger,
        )
        self.scheduler = ProgressionScheduler(
            app,
            self.store,
            self.rooms,
            self.notifier,
            quiz_resolver or HttpQuizResolver(cfg.get('QUIZ_SERVICE_URL', 'http://localhost:3002'), timeout=timeout),
            spawn=socketio.start_background_task,
        )

    @classmethod
    def init_app(cls, app, socketio, **collaborators):
        engine = cls(app, socketio, **collaborators)
        app.extensions['livequiz'] = engine
        return engine


def get_engine() -> LiveSessionEngine:
    return current_app.extensions['livequiz']

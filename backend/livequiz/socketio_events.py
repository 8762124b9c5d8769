from functools import wraps

from flask import current_app, request
from flask_socketio import emit

from livequiz import metrics, socketio
from livequiz.engine import SOCKET_NAMESPACE, get_engine
from livequiz.errors import LiveSessionError, UnauthorizedActionError, ValidationError
from livequiz.services.sessions.rooms import HOST_TAG, player_id_from_tag, player_tag


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _guarded(handler):
    """Transport boundary: turn any failure into an `error` event for the sender only."""
    @wraps(handler)
    def wrapper(data=None):
        try:
            return handler(data if isinstance(data, dict) else {})
        except LiveSessionError as exc:
            current_app.logger.info(
                f"[socket-error] event={handler.__name__} sid={_get_sid()} type={exc.error_type} message={exc.message}"
            )
            emit('error', exc.to_dict())
        except Exception as exc:
            current_app.logger.exception(f"[socket-crash] event={handler.__name__} sid={_get_sid()} error={exc}")
            emit('error', {'type': 'InternalError', 'message': 'Internal server error'})
    return wrapper


def _code(data) -> str:
    code = str(data.get('code') or '').strip()
    if not code:
        raise ValidationError('code is required')
    return code


def _require_host(session, data) -> None:
    """The sender must be tagged host in the session's room or present the host id."""
    membership = get_engine().rooms.membership(_get_sid())
    if membership == (session.code, HOST_TAG):
        return
    get_engine().store.assert_host(session, data.get('hostId'))


def _require_player(code, player_id) -> None:
    membership = get_engine().rooms.membership(_get_sid())
    if not membership or membership[0] != code or player_id_from_tag(membership[1]) != str(player_id):
        raise UnauthorizedActionError('Sender is not this player in this session')


def handle_connect(auth=None):
    metrics.socket_connected(SOCKET_NAMESPACE)
    emit('connected', {'message': 'Connected to /ws', 'sid': _get_sid()})


def handle_disconnect(reason=None):
    metrics.socket_disconnected(SOCKET_NAMESPACE)
    left = get_engine().rooms.leave(_get_sid())
    if not left:
        return
    code, tag = left
    player_id = player_id_from_tag(tag)
    if player_id is not None:
        # Player record stays so the client can rejoin-session
        get_engine().rooms.send_to_all(code, 'player-left', {'playerId': player_id})
    current_app.logger.info(f"[disconnect] code={code} tag={tag}")


# ---- Host events ----

@_guarded
def handle_create_session(data):
    engine = get_engine()
    session = engine.store.create(data.get('quizRef'), data.get('hostId'))
    engine.rooms.join(session.code, _get_sid(), HOST_TAG)
    emit('session-created', {'session': session.to_dict()})
    engine.notifier.session_created(session)


@_guarded
def handle_host_join(data):
    engine = get_engine()
    session = engine.store.get(_code(data))
    engine.store.assert_host(session, data.get('hostId'))
    engine.rooms.join(session.code, _get_sid(), HOST_TAG)
    emit('joined', {'code': session.code, 'role': 'host'})


@_guarded
def handle_start_session(data):
    engine = get_engine()
    session = engine.store.get(_code(data))
    _require_host(session, data)
    engine.scheduler.start(session.code)


@_guarded
def handle_end_session(data):
    engine = get_engine()
    session = engine.store.get(_code(data))
    _require_host(session, data)
    engine.scheduler.end(session.code, reason='host_ended')


@_guarded
def handle_show_leaderboard(data):
    engine = get_engine()
    session = engine.store.get(_code(data))
    _require_host(session, data)
    engine.scheduler.show_leaderboard(session.code)


# ---- Player events ----

@_guarded
def handle_join_session(data):
    engine = get_engine()
    sid = _get_sid()
    player = dict(data.get('player') or {})
    if not player.get('id'):
        player['id'] = sid
    result = engine.store.join(_code(data), player)
    code = result.session.code
    engine.rooms.join(code, sid, player_tag(result.player.player_key))
    emit('joined-session', {'session': result.session.to_dict(), 'player': result.player.to_dict()})
    if result.created:
        engine.rooms.send_to_all_except(code, sid, 'player-joined', result.player.to_dict())
        engine.notifier.player_joined(result.session, result.player)


@_guarded
def handle_rejoin_session(data):
    # The player id works as a bearer token: whoever presents it is that player
    engine = get_engine()
    session = engine.store.get(_code(data))
    player = engine.store.get_player(session, data.get('playerId'))
    engine.rooms.join(session.code, _get_sid(), player_tag(player.player_key))
    emit('joined', {'code': session.code, 'role': 'player', 'playerId': player.player_key})


@_guarded
def handle_leave_session(data):
    engine = get_engine()
    code = _code(data)
    player_id = str(data.get('playerId') or '')
    _require_player(code, player_id)
    removed = engine.store.leave(code, player_id)
    engine.rooms.leave(_get_sid(), code)
    emit('left', {'code': code})
    if removed:
        engine.rooms.send_to_all(code, 'player-left', {'playerId': removed})


@_guarded
def handle_submit_answer(data):
    engine = get_engine()
    code = _code(data)
    player_id = data.get('playerId')
    _require_player(code, player_id)
    engine.scheduler.submit_answer(
        code,
        player_id,
        data.get('questionIndex'),
        data.get('answer'),
        data.get('elapsedSeconds'),
        sender=_get_sid(),
    )


# ---- Any endpoint ----

@_guarded
def handle_sync_state(data):
    emit('session-state', get_engine().scheduler.snapshot(_code(data)))


def handle_ping(data=None):
    emit('pong', data or {})


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on the `/ws` namespace."""
    handlers = {
        'connect': handle_connect,
        'disconnect': handle_disconnect,
        'create-session': handle_create_session,
        'host-join': handle_host_join,
        'start-session': handle_start_session,
        'end-session': handle_end_session,
        'show-leaderboard': handle_show_leaderboard,
        'join-session': handle_join_session,
        'rejoin-session': handle_rejoin_session,
        'leave-session': handle_leave_session,
        'submit-answer': handle_submit_answer,
        'sync-state': handle_sync_state,
        'ping': handle_ping,
    }
    for event, handler in handlers.items():
        socketio.on_event(event, handler, namespace=SOCKET_NAMESPACE)

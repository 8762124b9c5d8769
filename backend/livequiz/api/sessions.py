from flask import Blueprint, jsonify, request, current_app

from livequiz.engine import get_engine
from livequiz.errors import LiveSessionError, ValidationError
from livequiz.services.sessions.leaderboard import rank_dicts


sessions = Blueprint('sessions', __name__)


@sessions.errorhandler(LiveSessionError)
def handle_live_session_error(exc):
    current_app.logger.info(f"[http-error] path={request.path} type={exc.error_type} message={exc.message}")
    return jsonify({'success': False, 'error': exc.to_dict()}), exc.status_code


@sessions.route('', methods=['POST'])
def create_session():
    data = request.get_json(silent=True) or {}
    engine = get_engine()
    session = engine.store.create(data.get('quizRef'), data.get('hostId'))
    engine.notifier.session_created(session)
    return jsonify(session.to_dict()), 201


@sessions.route('/history', methods=['GET'])
def host_history():
    host_id = request.args.get('hostId')
    if not host_id:
        raise ValidationError('hostId is required')
    history = get_engine().store.history_for_host(host_id)
    return jsonify([s.to_dict(include_players=False) for s in history])


@sessions.route('/id/<int:session_id>', methods=['GET'])
def get_session_by_id(session_id):
    session = get_engine().store.get_by_id(session_id)
    return jsonify(session.to_dict())


@sessions.route('/id/<int:session_id>', methods=['DELETE'])
def delete_session(session_id):
    host_id = request.args.get('hostId') or (request.get_json(silent=True) or {}).get('hostId')
    code = get_engine().scheduler.delete(session_id, host_id)
    return jsonify({'success': True, 'code': code})


@sessions.route('/<string:code>', methods=['GET'])
def get_session(code):
    # Consumers re-fetch through here (or `sync-state`) after reconnecting
    return jsonify(get_engine().scheduler.snapshot(code))


@sessions.route('/<string:code>/leaderboard', methods=['GET'])
def get_leaderboard(code):
    session = get_engine().store.get(code)
    return jsonify({'code': session.code, 'status': session.status, 'leaderboard': rank_dicts(session.players)})

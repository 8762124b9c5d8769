"""Session store: the durable record of sessions, players and answers.

Concurrency guarantees come from the database rather than from in-process
locks, so they hold across workers:

- join codes are unique among unfinished sessions via the unique
  ``active_code`` column, which is cleared on finish;
- a player id is unique within a session via ``uq_player_session_key``;
- one answer per player and question via ``uq_answer_player_question``
  (first writer wins, later writers read the stored record back);
- score increments are a single ``score = score + :points`` UPDATE;
- start and finish are conditional UPDATEs, so exactly one caller wins.
"""

import random
from typing import NamedTuple, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from livequiz import db
from livequiz import metrics
from livequiz.errors import (
    AlreadyStartedError,
    CodeExhaustedError,
    DuplicateSubmissionError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedActionError,
    ValidationError,
)
from livequiz.models import AnswerRecord, LiveSession, Player, utcnow


CODE_LENGTH = 6


def generate_code() -> str:
    """Sample a 6-digit join code uniformly (no leading zero)."""
    return str(random.randint(10 ** (CODE_LENGTH - 1), 10 ** CODE_LENGTH - 1))


class JoinResult(NamedTuple):
    session: LiveSession
    player: Player
    created: bool


class SessionStore:
    def __init__(self, max_attempts: int = 10, code_generator=generate_code):
        self.max_attempts = max_attempts
        self.code_generator = code_generator

    # ---- Queries ----

    def get(self, code) -> LiveSession:
        """Resolve a code to its live session, falling back to the newest finished one."""
        code = str(code or '').strip()
        if not code:
            raise ValidationError('code is required')
        session = LiveSession.query.filter_by(active_code=code).populate_existing().first()
        if session is None:
            session = (
                LiveSession.query.filter_by(code=code)
                .order_by(LiveSession.id.desc())
                .populate_existing()
                .first()
            )
        if session is None:
            raise NotFoundError(f'Session {code} not found')
        return session

    def get_by_id(self, session_id) -> LiveSession:
        session = db.session.get(LiveSession, session_id)
        if session is None:
            raise NotFoundError(f'Session {session_id} not found')
        return session

    def history_for_host(self, host_id):
        return (
            LiveSession.query.filter_by(host_id=str(host_id))
            .order_by(LiveSession.created_at.desc(), LiveSession.id.desc())
            .all()
        )

    def get_player(self, session: LiveSession, player_id) -> Player:
        player = Player.query.filter_by(session_id=session.id, player_key=str(player_id)).populate_existing().first()
        if player is None:
            raise NotFoundError(f'Player {player_id} not found in session {session.code}')
        return player

    def player_count(self, session: LiveSession) -> int:
        return Player.query.filter_by(session_id=session.id).count()

    def answered_count(self, session: LiveSession, question_index: int) -> int:
        return AnswerRecord.query.filter_by(
            session_id=session.id, question_index=question_index, is_timeout=False
        ).count()

    def players_without_answer(self, session: LiveSession, question_index: int):
        answered = db.select(AnswerRecord.player_id).where(
            AnswerRecord.session_id == session.id,
            AnswerRecord.question_index == question_index,
        )
        return (
            Player.query.filter(Player.session_id == session.id, Player.id.not_in(answered))
            .order_by(Player.id)
            .all()
        )

    @staticmethod
    def assert_host(session: LiveSession, host_id) -> None:
        if host_id is None or str(session.host_id) != str(host_id):
            raise UnauthorizedActionError()

    # ---- Mutations ----

    def create(self, quiz_ref, host_id) -> LiveSession:
        if not quiz_ref or not host_id:
            raise ValidationError('quizRef and hostId are required')
        for attempt in range(1, self.max_attempts + 1):
            code = self.code_generator()
            if LiveSession.query.filter_by(active_code=code).first():
                current_app.logger.info(f"[code-collision] code={code} attempt={attempt}")
                continue
            session = LiveSession(
                code=code,
                active_code=code,
                quiz_ref=str(quiz_ref),
                host_id=str(host_id),
                status='waiting',
            )
            db.session.add(session)
            try:
                db.session.commit()
            except IntegrityError:
                db.session.rollback()
                current_app.logger.info(f"[code-collision] code={code} attempt={attempt} (insert race)")
                continue
            current_app.logger.info(f"[session-create] code={code} host={host_id} quiz={quiz_ref}")
            metrics.session_created()
            return session
        raise CodeExhaustedError(f'No free session code after {self.max_attempts} attempts')

    def join(self, code, player: dict) -> JoinResult:
        """Add a player to a waiting session.

        Joining again with the same player id returns the existing record.
        """
        player = player or {}
        player_key = str(player.get('id') or '').strip()
        display_name = str(player.get('displayName') or player.get('nickname') or '').strip()
        if not player_key or not display_name:
            raise ValidationError('player id and displayName are required')
        if len(display_name) > 64:
            raise ValidationError('displayName must be at most 64 characters')

        session = self.get(code)
        if session.status != 'waiting':
            raise AlreadyStartedError(f'Session {session.code} already started')

        existing = Player.query.filter_by(session_id=session.id, player_key=player_key).first()
        if existing:
            return JoinResult(session, existing, False)

        user_id = player.get('userId')
        new_player = Player(
            session_id=session.id,
            player_key=player_key,
            user_id=str(user_id) if user_id else None,
            display_name=display_name,
            avatar_token=player.get('avatarToken') or player.get('avatar'),
            score=0,
        )
        db.session.add(new_player)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            existing = Player.query.filter_by(session_id=session.id, player_key=player_key).first()
            if existing is None:
                raise
            return JoinResult(session, existing, False)
        current_app.logger.info(f"[join] code={session.code} player={player_key}")
        return JoinResult(session, new_player, True)

    def leave(self, code, player_id) -> Optional[str]:
        """Remove a player from the lobby. Returns the removed player id, if any."""
        session = self.get(code)
        if session.status != 'waiting':
            raise InvalidStateError('Players can only leave before the session starts')
        player = Player.query.filter_by(session_id=session.id, player_key=str(player_id)).first()
        if player is None:
            return None
        db.session.delete(player)
        db.session.commit()
        return str(player_id)

    def start(self, code) -> LiveSession:
        session = self.get(code)
        updated = LiveSession.query.filter(
            LiveSession.id == session.id, LiveSession.status == 'waiting'
        ).update({'status': 'active', 'started_at': utcnow()}, synchronize_session=False)
        db.session.commit()
        if not updated:
            raise AlreadyStartedError(f'Session {session.code} already started')
        db.session.refresh(session)
        return session

    def record_answer(self, code, player_id, question_index, answer, elapsed,
                      is_correct=False, points=0, is_timeout=False):
        """Store one answer and credit its points.

        Returns ``(record, created)``. A repeat for the same player and
        question leaves score and record untouched and returns the original.
        """
        session = self.get(code)
        if session.status != 'active':
            raise InvalidStateError(f'Session {session.code} is not active')
        player = self.get_player(session, player_id)
        try:
            return self._insert_answer(session, player, question_index, answer, elapsed,
                                       is_correct, points, is_timeout), True
        except DuplicateSubmissionError:
            record = AnswerRecord.query.filter_by(
                player_id=player.id, question_index=question_index
            ).one()
            return record, False

    def _insert_answer(self, session, player, question_index, answer, elapsed,
                       is_correct, points, is_timeout) -> AnswerRecord:
        if AnswerRecord.query.filter_by(player_id=player.id, question_index=question_index).first():
            raise DuplicateSubmissionError()
        record = AnswerRecord(
            session_id=session.id,
            player_id=player.id,
            question_index=int(question_index),
            submitted_answer=answer,
            is_timeout=bool(is_timeout),
            is_correct=bool(is_correct),
            points_awarded=int(points or 0),
            elapsed_seconds=float(elapsed or 0),
        )
        db.session.add(record)
        try:
            db.session.flush()
            if points:
                Player.query.filter_by(id=player.id).update(
                    {Player.score: Player.score + int(points)}, synchronize_session=False
                )
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise DuplicateSubmissionError()
        return record

    def finish(self, code, reason='completed'):
        """Mark the session finished. Returns ``(session, changed)``.

        ``changed`` is True only for the call that performed the transition.
        """
        session = self.get(code)
        changed = LiveSession.query.filter(
            LiveSession.id == session.id, LiveSession.status != 'finished'
        ).update(
            {
                'status': 'finished',
                'finished_at': utcnow(),
                'active_code': None,
                'finish_reason': reason,
            },
            synchronize_session=False,
        )
        db.session.commit()
        db.session.refresh(session)
        if changed:
            current_app.logger.info(f"[finish] code={session.code} reason={reason}")
        return session, bool(changed)

    def delete(self, session_id) -> str:
        session = self.get_by_id(session_id)
        code = session.code
        # players and their answers go with the session via relationship cascades
        db.session.delete(session)
        db.session.commit()
        current_app.logger.info(f"[delete] session={session_id} code={code}")
        return code

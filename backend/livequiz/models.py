from datetime import datetime, timezone

from livequiz import db


def utcnow():
    return datetime.now(timezone.utc)


class LiveSession(db.Model):
    __tablename__ = 'live_session'
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(6), nullable=False, index=True)
    # Mirrors `code` until the session finishes, then NULL. The unique
    # constraint keeps codes unique among sessions that are not finished.
    active_code = db.Column(db.String(6), unique=True, nullable=True)
    quiz_ref = db.Column(db.String(128), nullable=False)
    host_id = db.Column(db.String(128), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default='waiting')  # waiting, active, finished
    finish_reason = db.Column(db.String(32), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    started_at = db.Column(db.DateTime, nullable=True)
    finished_at = db.Column(db.DateTime, nullable=True)
    players = db.relationship(
        'Player', back_populates='session', order_by='Player.id',
        cascade='all, delete-orphan',
    )

    def to_dict(self, include_players=True):
        data = {
            'id': self.id,
            'code': self.code,
            'quizRef': self.quiz_ref,
            'hostId': self.host_id,
            'status': self.status,
            'finishReason': self.finish_reason,
            'createdAt': _iso(self.created_at),
            'startedAt': _iso(self.started_at),
            'finishedAt': _iso(self.finished_at),
        }
        if include_players:
            data['players'] = [p.to_dict() for p in self.players]
        return data


class Player(db.Model):
    __tablename__ = 'player'
    __table_args__ = (
        db.UniqueConstraint('session_id', 'player_key', name='uq_player_session_key'),
    )
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('live_session.id'), nullable=False, index=True)
    player_key = db.Column(db.String(128), nullable=False)
    user_id = db.Column(db.String(128), nullable=True)
    display_name = db.Column(db.String(64), nullable=False)
    avatar_token = db.Column(db.String(64), nullable=True)
    score = db.Column(db.Integer, nullable=False, default=0)
    joined_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    session = db.relationship('LiveSession', back_populates='players')
    answers = db.relationship(
        'AnswerRecord', back_populates='player', order_by='AnswerRecord.question_index',
        cascade='all, delete-orphan',
    )

    def to_dict(self, include_answers=False):
        data = {
            'id': self.player_key,
            'displayName': self.display_name,
            'avatarToken': self.avatar_token,
            'score': self.score or 0,
            'isAuthenticated': self.user_id is not None,
            'joinedAt': _iso(self.joined_at),
        }
        if include_answers:
            data['answers'] = [a.to_dict() for a in self.answers]
        return data


class AnswerRecord(db.Model):
    __tablename__ = 'answer_record'
    __table_args__ = (
        db.UniqueConstraint('player_id', 'question_index', name='uq_answer_player_question'),
    )
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('live_session.id'), nullable=False, index=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    question_index = db.Column(db.Integer, nullable=False)
    # int, sorted list of ints, or NULL for the timeout marker
    submitted_answer = db.Column(db.JSON, nullable=True)
    is_timeout = db.Column(db.Boolean, nullable=False, default=False)
    is_correct = db.Column(db.Boolean, nullable=False, default=False)
    points_awarded = db.Column(db.Integer, nullable=False, default=0)
    elapsed_seconds = db.Column(db.Float, nullable=False, default=0.0)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    player = db.relationship('Player', back_populates='answers')

    def to_dict(self):
        return {
            'questionIndex': self.question_index,
            'submittedAnswer': self.submitted_answer,
            'isTimeout': self.is_timeout,
            'isCorrect': self.is_correct,
            'pointsAwarded': self.points_awarded,
            'elapsedSeconds': self.elapsed_seconds,
        }


def _iso(value):
    return value.isoformat() if value else None

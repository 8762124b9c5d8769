"""Per-session question progression.

Each started session gets a :class:`SessionRun` and, outside tests, one
background task that walks it through the question cycle::

    waiting -> question_active(i) -> reveal(i) -> question_active(i+1) ... -> finished

Every step (``open_question``, ``reveal``, ``advance``) takes the run lock
and checks that the run is still in the state it expects, the same way a
stage timer checks the expected stage/round before transitioning. Host "end"
sets the run's cancellation event, which wakes the task out of its wait and
makes every later step a no-op.

Answer intake is serialized with the transitions through the same lock, so
an answer is either recorded before the reveal or rejected after it.
"""

import threading
import time
from typing import Dict, Optional

from livequiz import db
from livequiz import metrics
from livequiz.errors import (
    InvalidStateError,
    LiveSessionError,
    NotFoundError,
    UpstreamDependencyError,
    ValidationError,
)
from .leaderboard import rank
from .scoring import evaluate, normalize_answer


WAITING = 'waiting'
QUESTION_ACTIVE = 'question_active'
REVEAL = 'reveal'
HALTED = 'halted'
FINISHED = 'finished'


class SessionRun:
    """In-memory progression state for one active session."""

    def __init__(self, code: str, session_id: int):
        self.code = code
        self.session_id = session_id
        self.state = WAITING
        self.question_index: Optional[int] = None
        self.question_started_at: Optional[float] = None
        self.deadline: Optional[float] = None
        self.questions = None
        self.cancelled = threading.Event()
        self.lock = threading.RLock()

    def total_questions(self) -> int:
        return len(self.questions) if self.questions is not None else 0


class ProgressionScheduler:
    def __init__(self, app, store, rooms, notifier, quiz_resolver, spawn):
        self.app = app
        self.store = store
        self.rooms = rooms
        self.notifier = notifier
        self.quiz_resolver = quiz_resolver
        self.spawn = spawn
        self._runs: Dict[str, SessionRun] = {}
        self._runs_lock = threading.Lock()

    # ---- Registry ----

    def get_run(self, code) -> Optional[SessionRun]:
        with self._runs_lock:
            return self._runs.get(str(code))

    def _pop_run(self, code) -> Optional[SessionRun]:
        with self._runs_lock:
            return self._runs.pop(str(code), None)

    def _forget(self, run: SessionRun) -> None:
        with self._runs_lock:
            if self._runs.get(run.code) is run:
                self._runs.pop(run.code, None)

    def _auto_progression(self) -> bool:
        config = self.app.config
        return not (config.get('TESTING') and not config.get('ENABLE_SCHEDULER_IN_TESTS'))

    # ---- Host commands ----

    def start(self, code):
        """Activate a waiting session and kick off its question cycle."""
        session = self.store.start(code)
        metrics.session_started()
        run = SessionRun(session.code, session.id)
        with self._runs_lock:
            self._runs[run.code] = run
        self.rooms.send_to_all(run.code, 'session-started', {'session': session.to_dict()})
        self.notifier.session_started(session)
        if self._auto_progression():
            self.app.logger.info(
                f"[timer-set] code={run.code} stage=grace duration={self.app.config.get('QUESTION_GRACE_SEC', 3)}s"
            )
            self.spawn(self._drive, run)
        return session

    def end(self, code, reason='host_ended'):
        """Finish a session now, from any state. Safe to call more than once."""
        session = self.store.get(code)
        run = self._pop_run(session.code) if session.status != FINISHED else None
        total = 0
        if run is not None:
            run.cancelled.set()
            with run.lock:
                run.state = FINISHED
                total = run.total_questions()
            self.app.logger.info(f"[timer-cancel] code={run.code} reason={reason}")
        return self._finalize(session.code, reason, total)

    def delete(self, session_id, host_id):
        session = self.store.get_by_id(session_id)
        self.store.assert_host(session, host_id)
        code = session.code
        if session.status != FINISHED:
            run = self._pop_run(code)
            if run is not None:
                run.cancelled.set()
                with run.lock:
                    run.state = FINISHED
            self.rooms.send_to_all(code, 'session-deleted', {'code': code})
            self.rooms.drop_room(code)
            if session.status == 'active':
                metrics.session_stopped()
        self.store.delete(session_id)
        return code

    def show_leaderboard(self, code):
        session = self._fresh_session(code)
        board = [r.to_dict() for r in rank(session.players)]
        self.rooms.send_to_all(session.code, 'leaderboard-update', {'leaderboard': board})
        return board

    def cancel_all(self) -> None:
        with self._runs_lock:
            runs = list(self._runs.values())
            self._runs.clear()
        for run in runs:
            run.cancelled.set()

    # ---- Background driver ----

    def _drive(self, run: SessionRun) -> None:
        with self.app.app_context():
            try:
                self._drive_steps(run)
            except Exception as exc:
                # keep the failure inside this session
                self.app.logger.exception(f"[timer-crash] code={run.code} error={exc}")
                self._halt(run, LiveSessionError('Session progression failed'))

    def _drive_steps(self, run: SessionRun) -> None:
        if not self.prepare(run.code):
            return
        if self._wait(run, 'grace', self.app.config.get('QUESTION_GRACE_SEC', 3)):
            return
        index = 0
        if not self.open_question(run.code, index):
            return
        while True:
            limit = run.questions[index].time_limit_seconds
            if self._wait(run, 'question', limit):
                return
            if not self.reveal(run.code, index):
                return
            if self._wait(run, 'reveal', self.app.config.get('REVEAL_DURATION_SEC', 7)):
                return
            if not self.advance(run.code, index) or run.state == FINISHED:
                return
            index += 1

    def _wait(self, run: SessionRun, stage: str, seconds) -> bool:
        """Sleep for a stage. Returns True if the run was cancelled meanwhile."""
        cancelled = run.cancelled.wait(max(0.0, float(seconds)))
        if cancelled:
            self.app.logger.info(f"[timer-abort] code={run.code} stage={stage} cancelled")
        else:
            self.app.logger.info(
                f"[timer-fire] code={run.code} stage={stage} question={run.question_index}"
            )
        return cancelled

    # ---- State machine steps ----

    def prepare(self, code) -> bool:
        """Load the quiz for a started session. Halts the run on failure."""
        run = self.get_run(code)
        if run is None:
            return False
        try:
            session = self.store.get(code)
            questions = self.quiz_resolver.get_questions_by_ref(session.quiz_ref)
            if not questions:
                raise NotFoundError(f'Quiz {session.quiz_ref} has no questions')
        except LiveSessionError as exc:
            self._halt(run, exc)
            return False
        with run.lock:
            if run.cancelled.is_set():
                return False
            run.questions = list(questions)
        self.app.logger.info(f"[quiz-loaded] code={run.code} questions={len(run.questions)}")
        return True

    def open_question(self, code, index: int) -> bool:
        run = self.get_run(code)
        if run is None or run.questions is None or not 0 <= index < len(run.questions):
            return False
        with run.lock:
            expected = WAITING if index == 0 else REVEAL
            if run.cancelled.is_set() or run.state != expected or (
                index > 0 and run.question_index != index - 1
            ):
                self.app.logger.info(
                    f"[timer-abort] code={run.code} open={index} state={run.state} question={run.question_index}"
                )
                return False
            question = run.questions[index]
            now = time.time()
            run.state = QUESTION_ACTIVE
            run.question_index = index
            run.question_started_at = now
            run.deadline = now + question.time_limit_seconds
            self.rooms.send_to_all(run.code, 'question-started', {
                'questionIndex': index,
                'totalQuestions': len(run.questions),
                'question': question.to_public_dict(),
                'timeLimitSeconds': question.time_limit_seconds,
                'deadline': run.deadline,
            })
        self.app.logger.info(
            f"[question] code={run.code} index={index} limit={question.time_limit_seconds}s deadline={run.deadline}"
        )
        return True

    def reveal(self, code, index: int) -> bool:
        """Close question ``index``: mark timeouts, reveal the answer, push scores."""
        run = self.get_run(code)
        if run is None:
            return False
        with run.lock:
            if run.cancelled.is_set() or run.state != QUESTION_ACTIVE or run.question_index != index:
                self.app.logger.info(
                    f"[timer-abort] code={run.code} reveal={index} state={run.state} question={run.question_index}"
                )
                return False
            question = run.questions[index]
            run.state = REVEAL
            run.deadline = time.time() + float(self.app.config.get('REVEAL_DURATION_SEC', 7))
            session = self.store.get(run.code)
            for player in self.store.players_without_answer(session, index):
                self.store.record_answer(
                    run.code, player.player_key, index, None, question.time_limit_seconds,
                    is_timeout=True,
                )
            self.rooms.send_to_all(run.code, 'answer-revealed', {
                'questionIndex': index,
                'questionKind': question.kind.value,
                'correctAnswer': question.correct.indexes(),
                'correctAnswerText': question.correct_text(),
            })
            session = self._fresh_session(run.code)
            self.rooms.send_to_all(run.code, 'leaderboard-update', {
                'questionIndex': index,
                'leaderboard': [r.to_dict() for r in rank(session.players)],
            })
        self.app.logger.info(f"[reveal] code={run.code} index={index} answer={question.correct.indexes()}")
        return True

    def advance(self, code, index: int) -> bool:
        """Leave the reveal of ``index``: open the next question or finish."""
        run = self.get_run(code)
        if run is None:
            return False
        with run.lock:
            if run.cancelled.is_set() or run.state != REVEAL or run.question_index != index:
                self.app.logger.info(
                    f"[timer-abort] code={run.code} advance={index} state={run.state} question={run.question_index}"
                )
                return False
            if index + 1 < len(run.questions):
                return self.open_question(run.code, index + 1)
            run.state = FINISHED
            run.cancelled.set()
            total = run.total_questions()
        self._forget(run)
        self._finalize(run.code, 'completed', total)
        return True

    def _halt(self, run: SessionRun, exc: LiveSessionError) -> None:
        with run.lock:
            if run.state == FINISHED:
                return
            run.state = HALTED
            run.deadline = None
        self.app.logger.error(f"[halt] code={run.code} error={exc.error_type}: {exc.message}")
        self.rooms.send_to_host(run.code, 'session-error', exc.to_dict())

    def _finalize(self, code, reason, total_questions=0):
        session, changed = self.store.finish(code, reason)
        if not changed:
            return session
        if session.started_at is not None:
            metrics.session_stopped()
        session = self._fresh_session(session.code)
        leaderboard = rank(session.players)
        self.rooms.send_to_all(session.code, 'session-finished', {
            'reason': reason,
            'leaderboard': [r.to_dict() for r in leaderboard],
        })
        self.rooms.drop_room(session.code)
        self.notifier.session_finished(session, leaderboard, total_questions)
        return session

    def _fresh_session(self, code):
        # scores may have been bumped by another thread's session
        db.session.expire_all()
        return self.store.get(code)

    # ---- Answer intake ----

    def submit_answer(self, code, player_id, question_index, answer, elapsed_seconds=None, sender=None):
        """Score and record one answer for the active question.

        The submitter gets ``answer-result``; only the host channel gets the
        per-player detail and the answered count.
        """
        try:
            question_index = int(question_index)
        except (TypeError, ValueError):
            raise ValidationError('questionIndex must be an integer')
        normalized = normalize_answer(answer)
        run = self.get_run(code)
        if run is None:
            self.store.get(code)
            raise InvalidStateError('Session is not accepting answers')

        with run.lock:
            if run.cancelled.is_set() or run.state != QUESTION_ACTIVE:
                raise InvalidStateError('Not accepting answers at this time')
            if question_index != run.question_index:
                raise InvalidStateError(f'Question {question_index} is not the active question')
            question = run.questions[question_index]
            elapsed = self._elapsed(run, question, elapsed_seconds)
            evaluation = evaluate(question, normalized, elapsed)
            record, created = self.store.record_answer(
                run.code, player_id, question_index, normalized, elapsed,
                is_correct=evaluation.is_correct, points=evaluation.points,
            )
            session = self.store.get(run.code)
            player = self.store.get_player(session, player_id)
            result = {
                'questionIndex': question_index,
                'isCorrect': record.is_correct,
                'points': record.points_awarded,
                'score': player.score or 0,
                'correctAnswer': question.correct.indexes(),
                'selectedAnswer': record.submitted_answer,
                'duplicate': not created,
            }
            if sender:
                self.rooms.send_to_one(sender, 'answer-result', result)
            if created:
                self.rooms.send_to_host(run.code, 'player-answered', {
                    'questionIndex': question_index,
                    'playerId': player.player_key,
                    'isCorrect': record.is_correct,
                    'points': record.points_awarded,
                    'elapsedSeconds': record.elapsed_seconds,
                })
                self.rooms.send_to_host(run.code, 'answer-progress', {
                    'questionIndex': question_index,
                    'answered': self.store.answered_count(session, question_index),
                    'total': self.store.player_count(session),
                })
        if created:
            self.notifier.answer_submitted(session, player, record)
        return record, created

    @staticmethod
    def _elapsed(run: SessionRun, question, reported) -> float:
        """Client-reported elapsed time, or server-measured if absent, clamped to the limit."""
        if reported is None or isinstance(reported, bool):
            elapsed = time.time() - (run.question_started_at or time.time())
        else:
            try:
                elapsed = float(reported)
            except (TypeError, ValueError):
                raise ValidationError('elapsedSeconds must be a number')
        return min(max(0.0, elapsed), float(question.time_limit_seconds))

    # ---- State query ----

    def snapshot(self, code) -> dict:
        """Current session state for a (re)connecting client."""
        session = self._fresh_session(code)
        run = self.get_run(session.code) if session.status != FINISHED else None
        phase = {'state': session.status, 'questionIndex': None, 'deadline': None, 'totalQuestions': None}
        if run is not None:
            with run.lock:
                phase.update({
                    'state': run.state,
                    'questionIndex': run.question_index,
                    'deadline': run.deadline,
                    'totalQuestions': run.total_questions() if run.questions is not None else None,
                })
                if run.state == QUESTION_ACTIVE:
                    phase['question'] = run.questions[run.question_index].to_public_dict()
        elif session.status == 'active':
            phase['state'] = HALTED
        return {
            'session': session.to_dict(),
            'phase': phase,
            'leaderboard': [r.to_dict() for r in rank(session.players)],
        }

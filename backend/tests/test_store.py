import threading

import pytest

from livequiz import db
from livequiz.errors import (
    AlreadyStartedError,
    CodeExhaustedError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedActionError,
    ValidationError,
)
from livequiz.models import AnswerRecord, LiveSession, Player


def alice():
    return {'id': 'p1', 'displayName': 'Alice', 'avatarToken': 'fox'}


def bob():
    return {'id': 'p2', 'displayName': 'Bob', 'avatarToken': 'owl'}


def test_create_assigns_six_digit_code(engine):
    session = engine.store.create('quiz-1', 'host-1')
    assert len(session.code) == 6 and session.code.isdigit()
    assert session.status == 'waiting'
    assert session.active_code == session.code


def test_create_requires_quiz_and_host(engine):
    with pytest.raises(ValidationError):
        engine.store.create('', 'host-1')


def test_create_retries_on_collision(engine, code_queue):
    code_queue.extend(['482913', '482913', '100200'])
    first = engine.store.create('quiz-1', 'host-1')
    second = engine.store.create('quiz-1', 'host-2')
    assert first.code == '482913'
    assert second.code == '100200'


def test_create_gives_up_after_bounded_attempts(engine, code_queue):
    code_queue.extend(['482913'] * 10)
    engine.store.create('quiz-1', 'host-1')
    with pytest.raises(CodeExhaustedError):
        engine.store.create('quiz-1', 'host-2')


def test_code_reusable_once_session_finished(engine, code_queue):
    code_queue.extend(['482913', '482913'])
    old = engine.store.create('quiz-1', 'host-1')
    engine.store.finish(old.code, 'completed')
    new = engine.store.create('quiz-1', 'host-2')
    assert new.code == old.code
    assert new.id != old.id
    # The code now resolves to the live session
    assert engine.store.get('482913').id == new.id


def test_unfinished_codes_are_unique(engine):
    sessions = [engine.store.create('quiz-1', f'host-{i}') for i in range(20)]
    active = [s.active_code for s in LiveSession.query.filter(LiveSession.status != 'finished').all()]
    assert len(active) == len(set(active)) == len(sessions)


def test_join_appends_players_in_order(engine):
    session = engine.store.create('quiz-1', 'host-1')
    engine.store.join(session.code, alice())
    result = engine.store.join(session.code, bob())
    assert result.created
    assert [p.player_key for p in result.session.players] == ['p1', 'p2']
    assert all(p.score == 0 for p in result.session.players)


def test_join_same_player_is_idempotent(engine):
    session = engine.store.create('quiz-1', 'host-1')
    first = engine.store.join(session.code, alice())
    again = engine.store.join(session.code, alice())
    assert not again.created
    assert again.player.id == first.player.id
    assert Player.query.filter_by(session_id=session.id).count() == 1


def test_join_unknown_session(engine):
    with pytest.raises(NotFoundError):
        engine.store.join('000000', alice())


def test_join_after_start_rejected(engine):
    session = engine.store.create('quiz-1', 'host-1')
    engine.store.start(session.code)
    with pytest.raises(AlreadyStartedError):
        engine.store.join(session.code, alice())


def test_join_requires_display_name(engine):
    session = engine.store.create('quiz-1', 'host-1')
    with pytest.raises(ValidationError):
        engine.store.join(session.code, {'id': 'p1'})


def test_leave_only_in_lobby(engine):
    session = engine.store.create('quiz-1', 'host-1')
    engine.store.join(session.code, alice())
    assert engine.store.leave(session.code, 'p1') == 'p1'
    assert engine.store.leave(session.code, 'p1') is None
    engine.store.join(session.code, bob())
    engine.store.start(session.code)
    with pytest.raises(InvalidStateError):
        engine.store.leave(session.code, 'p2')


def test_start_sets_active_once(engine):
    session = engine.store.create('quiz-1', 'host-1')
    started = engine.store.start(session.code)
    assert started.status == 'active'
    assert started.started_at is not None
    with pytest.raises(AlreadyStartedError):
        engine.store.start(session.code)


def test_start_unknown_session(engine):
    with pytest.raises(NotFoundError):
        engine.store.start('999999')


def test_record_answer_credits_points(engine):
    session = engine.store.create('quiz-1', 'host-1')
    engine.store.join(session.code, alice())
    engine.store.start(session.code)
    record, created = engine.store.record_answer(session.code, 'p1', 0, 1, 5.0, is_correct=True, points=1375)
    assert created
    assert record.points_awarded == 1375
    assert engine.store.get_player(session, 'p1').score == 1375


def test_second_record_answer_is_noop(engine):
    session = engine.store.create('quiz-1', 'host-1')
    engine.store.join(session.code, alice())
    engine.store.start(session.code)
    first, _ = engine.store.record_answer(session.code, 'p1', 0, 1, 5.0, is_correct=True, points=1375)
    again, created = engine.store.record_answer(session.code, 'p1', 0, 2, 1.0, is_correct=True, points=1450)
    assert not created
    assert again.id == first.id
    assert again.submitted_answer == 1
    assert again.points_awarded == 1375
    assert engine.store.get_player(session, 'p1').score == 1375
    assert AnswerRecord.query.count() == 1


def test_record_answer_requires_active_session(engine):
    session = engine.store.create('quiz-1', 'host-1')
    engine.store.join(session.code, alice())
    with pytest.raises(InvalidStateError):
        engine.store.record_answer(session.code, 'p1', 0, 1, 1.0)


def test_record_answer_unknown_player(engine):
    session = engine.store.create('quiz-1', 'host-1')
    engine.store.start(session.code)
    with pytest.raises(NotFoundError):
        engine.store.record_answer(session.code, 'ghost', 0, 1, 1.0)


def test_finish_is_idempotent(engine):
    session = engine.store.create('quiz-1', 'host-1')
    engine.store.start(session.code)
    finished, changed = engine.store.finish(session.code, 'completed')
    assert changed
    assert finished.status == 'finished'
    first_finished_at = finished.finished_at
    again, changed_again = engine.store.finish(session.code, 'host_ended')
    assert not changed_again
    assert again.finished_at == first_finished_at
    assert again.finish_reason == 'completed'
    assert again.active_code is None


def test_delete_removes_players_and_answers(engine):
    session = engine.store.create('quiz-1', 'host-1')
    engine.store.join(session.code, alice())
    engine.store.start(session.code)
    engine.store.record_answer(session.code, 'p1', 0, 1, 1.0, is_correct=True, points=1000)
    engine.store.delete(session.id)
    db.session.expire_all()
    assert LiveSession.query.count() == 0
    assert Player.query.count() == 0
    assert AnswerRecord.query.count() == 0
    with pytest.raises(NotFoundError):
        engine.store.get_by_id(session.id)


def test_assert_host(engine):
    session = engine.store.create('quiz-1', 'host-1')
    engine.store.assert_host(session, 'host-1')
    with pytest.raises(UnauthorizedActionError):
        engine.store.assert_host(session, 'someone-else')
    with pytest.raises(UnauthorizedActionError):
        engine.store.assert_host(session, None)


def test_history_for_host_newest_first(engine):
    a = engine.store.create('quiz-1', 'host-1')
    b = engine.store.create('quiz-2', 'host-1')
    engine.store.create('quiz-3', 'host-2')
    assert [s.id for s in engine.store.history_for_host('host-1')] == [b.id, a.id]


class TestConcurrentAnswers:
    @pytest.fixture()
    def config_class(self, tmp_path):
        from conftest import TestConfig

        class FileConfig(TestConfig):
            SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'answers.db'}"
        return FileConfig

    @staticmethod
    def run_together(flask_app, calls):
        """Run each call on its own thread, all released at once."""
        barrier = threading.Barrier(len(calls))
        results, errors = [], []

        def worker(call):
            with flask_app.app_context():
                barrier.wait()
                try:
                    results.append(call())
                except Exception as exc:
                    errors.append(exc)

        threads = [threading.Thread(target=worker, args=(call,)) for call in calls]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)
        return results, errors

    def test_racing_duplicates_keep_first_answer(self, flask_app, engine):
        session = engine.store.create('quiz-1', 'host-1')
        engine.store.join(session.code, alice())
        engine.store.start(session.code)
        code = session.code

        calls = [
            (lambda: engine.store.record_answer(code, 'p1', 0, 1, 0.0, is_correct=True, points=1000))
            for _ in range(8)
        ]
        results, errors = self.run_together(flask_app, calls)

        assert errors == []
        assert sorted(created for _, created in results) == [False] * 7 + [True]
        db.session.expire_all()
        assert AnswerRecord.query.count() == 1
        assert engine.store.get_player(session, 'p1').score == 1000

    def test_simultaneous_players_each_credited(self, flask_app, engine):
        session = engine.store.create('quiz-1', 'host-1')
        keys = [f'p{i}' for i in range(6)]
        for key in keys:
            engine.store.join(session.code, {'id': key, 'displayName': key.upper()})
        engine.store.start(session.code)
        code = session.code

        def submit(key, points):
            return lambda: engine.store.record_answer(code, key, 0, 1, 1.0, is_correct=True, points=points)

        results, errors = self.run_together(
            flask_app, [submit(key, 1000 + i) for i, key in enumerate(keys)]
        )

        assert errors == []
        assert all(created for _, created in results)
        db.session.expire_all()
        assert {key: engine.store.get_player(session, key).score for key in keys} == {
            key: 1000 + i for i, key in enumerate(keys)
        }

    def test_concurrent_increments_for_one_player_add_up(self, flask_app, engine):
        session = engine.store.create('quiz-1', 'host-1')
        engine.store.join(session.code, alice())
        engine.store.start(session.code)
        code = session.code

        def submit(index):
            return lambda: engine.store.record_answer(code, 'p1', index, 1, 0.0, is_correct=True, points=100)

        results, errors = self.run_together(flask_app, [submit(i) for i in range(5)])

        assert errors == []
        assert len(results) == 5
        db.session.expire_all()
        assert engine.store.get_player(session, 'p1').score == 500

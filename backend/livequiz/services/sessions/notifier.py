"""Best-effort lifecycle notifications to the stats/analytics collaborator.

Payloads are built synchronously from ORM state, then handed to ``spawn``
(a background task launcher) so delivery never holds up a socket handler or
a session timer. Every failure is logged and dropped.
"""

import logging


class EventNotifier:
    def __init__(self, sink, identity_resolver, spawn=None, logger=None):
        self.sink = sink
        self.identity_resolver = identity_resolver
        # None delivers inline (tests)
        self.spawn = spawn
        self.logger = logger or logging.getLogger(__name__)

    # ---- Lifecycle hooks ----

    def session_created(self, session):
        self._dispatch([('session_created', session.host_id, self._base(session))])

    def session_started(self, session):
        meta = self._base(session)
        meta['playerCount'] = len(session.players)
        self._dispatch([('game_created', session.host_id, meta)])

    def player_joined(self, session, player):
        user_id = self._resolve(session, player)
        if not user_id:
            return
        meta = self._base(session)
        meta['nickname'] = player.display_name
        self._dispatch([('game_joined', user_id, meta)])

    def answer_submitted(self, session, player, record):
        user_id = self._resolve(session, player)
        if not user_id:
            return
        meta = self._base(session)
        meta.update({
            'questionIndex': record.question_index,
            'isCorrect': record.is_correct,
            'points': record.points_awarded,
            'elapsedSeconds': record.elapsed_seconds,
        })
        self._dispatch([('answer_submitted', user_id, meta)])

    def session_finished(self, session, leaderboard, total_questions):
        """Report the end of a session: ``game_ended`` for the host and
        ``game_completed`` for every attributed player."""
        duration = 0
        if session.started_at and session.finished_at:
            duration = int((session.finished_at - session.started_at).total_seconds())
        host_meta = self._base(session)
        host_meta.update({
            'totalPlayers': len(session.players),
            'duration': duration,
            'reason': session.finish_reason,
            'winner': leaderboard[0].display_name if leaderboard else None,
        })
        deliveries = [('game_ended', session.host_id, host_meta)]

        ranks = {entry.id: entry.rank for entry in leaderboard}
        for player in session.players:
            user_id = self._resolve(session, player)
            if not user_id:
                continue
            correct = sum(1 for a in player.answers if a.is_correct)
            accuracy = (correct / total_questions * 100) if total_questions else 0.0
            rank = ranks.get(player.player_key)
            meta = self._base(session)
            meta.update({
                'score': player.score or 0,
                'rank': rank,
                'totalPlayers': len(session.players),
                'accuracy': round(accuracy, 2),
                'correctAnswers': correct,
                'totalQuestions': total_questions,
                'isHost': user_id == str(session.host_id),
                'won': rank == 1,
            })
            deliveries.append(('game_completed', user_id, meta))
        self._dispatch(deliveries)

    # ---- Internals ----

    @staticmethod
    def _base(session):
        return {'sessionId': session.id, 'pin': session.code, 'quizId': session.quiz_ref}

    def _resolve(self, session, player):
        try:
            return self.identity_resolver.resolve(session, player)
        except Exception as exc:
            self.logger.warning(f"[identity-failed] code={session.code} player={player.player_key} error={exc}")
            return None

    def _dispatch(self, deliveries):
        if not deliveries:
            return
        if self.spawn is None:
            self._deliver(deliveries)
            return
        try:
            self.spawn(self._deliver, deliveries)
        except Exception as exc:
            self.logger.warning(f"[notify-failed] could not schedule delivery error={exc}")

    def _deliver(self, deliveries):
        for event_type, user_id, metadata in deliveries:
            try:
                self.sink.notify(event_type, user_id, metadata)
            except Exception as exc:
                self.logger.warning(f"[notify-failed] event={event_type} user={user_id} error={exc}")
            else:
                self.logger.info(f"[notify] event={event_type} user={user_id}")

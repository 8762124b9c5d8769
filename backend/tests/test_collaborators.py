import pytest
import requests

from livequiz.collaborators import HttpQuizResolver, HttpStatsSink
from livequiz.errors import NotFoundError, UpstreamDependencyError
from livequiz.services.sessions.scoring import MultiAnswer, SingleAnswer


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f'{self.status_code} error')


class FakeHttp:
    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse()
        self.error = error
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append(('GET', url, None))
        if self.error:
            raise self.error
        return self.response

    def post(self, url, json=None, timeout=None):
        self.calls.append(('POST', url, json))
        if self.error:
            raise self.error
        return self.response


def test_quiz_resolver_parses_questions():
    http = FakeHttp(FakeResponse(payload={'questions': [
        {'type': 'Single Choice', 'options': ['a', 'b'], 'correctAnswer': 1},
        {'type': 'Multiple Choice', 'options': ['a', 'b', 'c'], 'correctAnswer': [0, 2], 'timeLimit': 30},
    ]}))
    questions = HttpQuizResolver('http://quiz:3002/', http=http).get_questions_by_ref('abc')
    assert http.calls[0][1] == 'http://quiz:3002/quizzes/abc'
    assert questions[0].correct == SingleAnswer(1)
    assert questions[1].correct == MultiAnswer(frozenset({0, 2}))
    assert questions[1].time_limit_seconds == 30


@pytest.mark.parametrize('http,error', [
    (FakeHttp(error=requests.ConnectionError('refused')), UpstreamDependencyError),
    (FakeHttp(FakeResponse(404)), NotFoundError),
    (FakeHttp(FakeResponse(500)), UpstreamDependencyError),
    (FakeHttp(FakeResponse(payload=ValueError('not json'))), UpstreamDependencyError),
    (FakeHttp(FakeResponse(payload={'title': 'no questions'})), UpstreamDependencyError),
    (FakeHttp(FakeResponse(payload={'questions': [{'type': 'Essay'}]})), UpstreamDependencyError),
])
def test_quiz_resolver_failures(http, error):
    with pytest.raises(error):
        HttpQuizResolver('http://quiz', http=http).get_questions_by_ref('abc')


def test_stats_sink_posts_event_and_stats_update():
    http = FakeHttp()
    sink = HttpStatsSink('http://analytics', 'http://users', http=http)
    sink.notify('game_completed', 'user-1', {'sessionId': 7, 'score': 1375})
    (_, events_url, event), (_, webhook_url, update) = http.calls
    assert events_url == 'http://analytics/events'
    assert event['eventType'] == 'game_completed'
    assert event['relatedEntityId'] == '7'
    assert webhook_url == 'http://users/webhook/update-stats'
    assert update == {'userId': 'user-1', 'eventType': 'game_completed', 'metadata': {'sessionId': 7, 'score': 1375}}


def test_stats_sink_raises_on_http_error():
    sink = HttpStatsSink('http://analytics', 'http://users', http=FakeHttp(FakeResponse(503)))
    with pytest.raises(requests.HTTPError):
        sink.notify('game_ended', 'host-1', {})

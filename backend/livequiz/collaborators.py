"""Clients for the services the engine depends on but does not own."""

from typing import List, Optional

import requests

from livequiz.errors import NotFoundError, UpstreamDependencyError, ValidationError
from livequiz.services.sessions.scoring import Question


class HttpQuizResolver:
    """Resolves a quiz reference to its questions through the quiz service."""

    def __init__(self, base_url: str, timeout: float = 5.0, http=None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.http = http or requests.Session()

    def get_questions_by_ref(self, quiz_ref) -> List[Question]:
        url = f"{self.base_url}/quizzes/{quiz_ref}"
        try:
            response = self.http.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise UpstreamDependencyError(f'Quiz service unreachable: {exc}') from exc
        if response.status_code == 404:
            raise NotFoundError(f'Quiz {quiz_ref} not found')
        if response.status_code >= 400:
            raise UpstreamDependencyError(f'Quiz service returned {response.status_code}')
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamDependencyError('Quiz service returned invalid JSON') from exc
        raw_questions = payload.get('questions') if isinstance(payload, dict) else None
        if not isinstance(raw_questions, list):
            raise UpstreamDependencyError(f'Quiz {quiz_ref} has no question list')
        try:
            return [Question.from_dict(q) for q in raw_questions]
        except ValidationError as exc:
            raise UpstreamDependencyError(f'Quiz {quiz_ref} is malformed: {exc.message}') from exc


class HttpStatsSink:
    """Reports events to the analytics service and the user stats webhook."""

    def __init__(self, analytics_url: str, user_service_url: str, timeout: float = 5.0, http=None):
        self.analytics_url = analytics_url.rstrip('/')
        self.user_service_url = user_service_url.rstrip('/')
        self.timeout = timeout
        self.http = http or requests.Session()

    def notify(self, event_type: str, user_id: str, metadata: dict) -> None:
        related_id = metadata.get('sessionId')
        self.http.post(
            f"{self.analytics_url}/events",
            json={
                'eventType': event_type,
                'userId': user_id,
                'relatedEntityType': 'game',
                'relatedEntityId': str(related_id) if related_id is not None else None,
                'metadata': metadata,
            },
            timeout=self.timeout,
        ).raise_for_status()
        self.http.post(
            f"{self.user_service_url}/webhook/update-stats",
            json={'userId': user_id, 'eventType': event_type, 'metadata': metadata},
            timeout=self.timeout,
        ).raise_for_status()


class JoinPayloadIdentityResolver:
    """Attributes a player to the authenticated user id given at join time."""

    def resolve(self, session, player) -> Optional[str]:
        return player.user_id

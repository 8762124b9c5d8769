"""Error taxonomy for the live session engine.

Every error carries the HTTP status used by the REST blueprint and a
``to_dict()`` payload used for the socket ``error`` event.
"""


class LiveSessionError(Exception):
    status_code = 500
    error_type = 'LiveSessionError'

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    default_message = 'Live session error'

    def to_dict(self):
        return {'type': self.error_type, 'message': self.message}


class ValidationError(LiveSessionError):
    status_code = 400
    error_type = 'ValidationError'
    default_message = 'Invalid request payload'


class NotFoundError(LiveSessionError):
    status_code = 404
    error_type = 'NotFoundError'
    default_message = 'Not found'


class InvalidStateError(LiveSessionError):
    status_code = 409
    error_type = 'InvalidStateError'
    default_message = 'Operation not valid for the current session state'


class AlreadyStartedError(InvalidStateError):
    error_type = 'AlreadyStartedError'
    default_message = 'Session already started'


class UnauthorizedActionError(LiveSessionError):
    status_code = 403
    error_type = 'UnauthorizedActionError'
    default_message = 'Only the host may perform this action'


class DuplicateSubmissionError(LiveSessionError):
    """Raised internally for a repeated answer; callers treat it as a no-op."""
    status_code = 200
    error_type = 'DuplicateSubmissionError'
    default_message = 'Answer already recorded'


class UpstreamDependencyError(LiveSessionError):
    status_code = 502
    error_type = 'UpstreamDependencyError'
    default_message = 'Upstream service unavailable'


class CodeExhaustedError(LiveSessionError):
    status_code = 503
    error_type = 'CodeExhaustedError'
    default_message = 'Could not allocate a unique session code'

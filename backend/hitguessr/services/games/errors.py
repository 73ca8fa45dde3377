"""Typed rejections raised by the game coordinator.

Every error carries a ``kind`` (the broad family a client switches on), a
stable ``code`` and an HTTP status so the same exception can be rendered as a
Socket.IO ``error`` event or as a JSON response.
"""


class GameError(Exception):
    kind = 'game'
    code = 'game_error'
    status_code = 400

    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {'message': self.message, 'kind': self.kind, 'code': self.code}


class InvalidRequestError(GameError):
    kind = 'invalid_request'
    code = 'invalid_request'
    status_code = 400


class AuthenticationError(GameError):
    kind = 'authentication'
    code = 'authentication_failed'
    status_code = 401


class AuthorizationError(GameError):
    kind = 'authorization'
    code = 'access_denied'
    status_code = 403


class NotFoundError(GameError):
    kind = 'not_found'
    code = 'not_found'
    status_code = 404


class InvalidStateError(GameError):
    kind = 'invalid_state'
    code = 'invalid_state'
    status_code = 409


class DuplicateSubmissionError(GameError):
    kind = 'duplicate_submission'
    code = 'duplicate_answer'
    status_code = 409


class UpstreamProviderError(GameError):
    kind = 'upstream'
    code = 'track_provider_failed'
    status_code = 502


class PersistenceError(UpstreamProviderError):
    code = 'persistence_failed'

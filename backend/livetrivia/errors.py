"""Failure taxonomy shared by the socket gateway and the HTTP read model.

Every error carries the HTTP status it maps to; socket handlers turn the
same errors into an ``error`` event for the originating connection.
"""


class TriviaError(Exception):
    status_code = 500

    def __init__(self, message: str = 'Internal error'):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'error': self.message}


class AuthenticationFailure(TriviaError):
    status_code = 401


class NotFoundFailure(TriviaError):
    status_code = 404


class ValidationFailure(TriviaError):
    status_code = 400


class StateConflict(TriviaError):
    """Action is not valid for the lobby's current state."""
    status_code = 409


class HostRequired(StateConflict):
    status_code = 403

    def __init__(self, message: str = 'Only the host can do that'):
        super().__init__(message)


class StoreFailure(TriviaError):
    """The durable store is unreachable or rejected a write."""
    status_code = 503

    def __init__(self, message: str = 'Storage is unavailable, please retry'):
        super().__init__(message)

"""
Error types raised by the Campus Idle services.

Every service failure is one of these. The Flask app turns them into JSON
responses using ``status_code`` and ``kind``.
"""


class MarketError(Exception):
    """Base class for all client-visible service errors."""
    status_code = 400
    kind = 'error'

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__

    def to_dict(self):
        return {'success': False, 'error': self.kind, 'message': self.message}


class ValidationError(MarketError):
    """Invalid input."""
    status_code = 400
    kind = 'validation_error'


class AuthenticationError(MarketError):
    """Invalid username or password."""
    status_code = 401
    kind = 'authentication_error'


class AuthorizationError(MarketError):
    """You are not allowed to do that."""
    status_code = 403
    kind = 'authorization_error'


class NotFoundError(MarketError):
    """Not found."""
    status_code = 404
    kind = 'not_found'


class ConflictError(MarketError):
    """Already exists."""
    status_code = 409
    kind = 'conflict'


class StateError(MarketError):
    """That action is not allowed in the current state."""
    status_code = 409
    kind = 'state_error'

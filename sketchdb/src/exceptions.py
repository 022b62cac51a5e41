"""
Exception types shared by the core and the collaboration server
"""
from typing import List, Optional


class SketchDBError(Exception):
    """Base class for all SketchDB errors"""


class SchemaValidationError(SketchDBError):
    """Raised by the generator when the pre-flight validation finds problems.

    All violations are collected before raising so the user sees every
    problem in one pass.
    """

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Schema validation failed:\n" + "\n".join(self.errors))


class SQLGenerationError(SketchDBError):
    """Raised when one or more tables failed to render after validation passed"""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("SQL generation failed for some tables:\n" + "\n".join(self.errors))


class DiagramEditError(SketchDBError, ValueError):
    """Raised by the table manager when an edit is rejected"""


class CollaborationError(SketchDBError):
    """Error reported back to a single socket connection as an ``error`` event"""

    error_type = 'error'
    default_message = 'Collaboration error'

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self):
        return {'type': self.error_type, 'message': self.message}


class AuthenticationError(CollaborationError):
    """Handshake failure; the connection is terminated"""

    error_type = 'auth-failed'

    MESSAGES = {
        'auth-required': 'Authentication required',
        'invalid': 'Invalid token',
        'expired': 'Token expired',
        'user-not-found': 'User not found',
        'unverified': 'Email not verified',
    }

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or self.MESSAGES.get(reason, 'Authentication failed'))

    def to_dict(self):
        return {'type': self.error_type, 'reason': self.reason, 'message': self.message}


class ConnectionRejected(CollaborationError):
    error_type = 'server-full'
    default_message = 'Server is at capacity. Please try again later.'


class RoomFullError(CollaborationError):
    error_type = 'room-full'

    def __init__(self, capacity: int):
        self.capacity = capacity
        super().__init__(
            f"This diagram has reached capacity ({capacity} users). Please try again later."
        )


class AccessDenied(CollaborationError):
    error_type = 'access-denied'
    default_message = 'Access denied'


class DiagramNotFound(CollaborationError):
    error_type = 'not-found'
    default_message = 'Diagram not found'


class RateLimited(CollaborationError):
    error_type = 'rate-limited'
    default_message = 'Too many operations, slow down'


class InvalidRequest(CollaborationError):
    error_type = 'invalid-request'
    default_message = 'Diagram ID required'

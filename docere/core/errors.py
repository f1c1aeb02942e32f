from __future__ import annotations


class ClassroomError(Exception):
    """Base class for failures reported back to the acting user."""


class Unauthenticated(ClassroomError):
    pass


class Unauthorized(ClassroomError, PermissionError):
    pass


class ValidationError(ClassroomError, ValueError):
    pass


class SessionNotOpen(ClassroomError):
    pass


class SessionExpired(ClassroomError):
    pass


class AlreadyMarked(ClassroomError):
    pass


class AlreadySubmitted(ClassroomError):
    pass


class DeadlineNotSet(ClassroomError):
    pass


class RecordNotFound(ClassroomError):
    pass


class RemoteUnavailable(ClassroomError):
    """The document store could not be reached or rejected the request."""


class ConfigurationError(RuntimeError):
    """Raised at startup when a required collaborator is missing."""

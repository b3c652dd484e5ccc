"""Error kinds raised by the LMS core.

The core never deals in status codes; ``server`` maps each kind to one.
"""


class LMSError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(LMSError):
    """Referenced entity does not exist (or is hidden from the caller)."""


class ForbiddenError(LMSError):
    """Role, ownership or enrollment precondition failed."""


class ValidationError(LMSError):
    """Malformed input, e.g. an out-of-range reorder target."""


class ConflictError(LMSError):
    """Operation would break a uniqueness rule."""


class InternalError(LMSError):
    """A collaborator failed unexpectedly."""

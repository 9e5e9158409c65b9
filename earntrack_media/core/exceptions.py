"""Shared exceptions for the media pipeline.

Services raise these; routers translate them into HTTP responses using
``status_code``. Worker code records them on the failing job instead.
"""

from fastapi import HTTPException


class MediaPipelineError(Exception):
    """Base class for media pipeline errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(MediaPipelineError):
    """Raised for a disallowed upload type/size or a malformed request."""

    status_code = 400


class NotFoundError(MediaPipelineError):
    """Raised when a video asset does not exist."""

    status_code = 404


class UnauthorizedError(NotFoundError):
    """Raised when a video asset belongs to another owner.

    Reported exactly like a missing asset so ownership is not leaked.
    """

    status_code = 404


class StorageError(MediaPipelineError):
    """Raised when an object store operation fails."""

    status_code = 500


class TranscodeError(MediaPipelineError):
    """Raised when the transcoding engine fails.

    Never surfaces through HTTP; the worker stores the message on the job.
    """

    status_code = 500


class InvalidStateTransitionError(MediaPipelineError):
    """Raised when a status change would move a record backwards.

    Attributes:
        from_status: Current status
        to_status: Status that was attempted
    """

    status_code = 409

    def __init__(self, from_status, to_status):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition: {getattr(from_status, 'value', from_status)} "
            f"-> {getattr(to_status, 'value', to_status)}"
        )


def to_http_exception(exc: MediaPipelineError) -> HTTPException:
    """HTTP error carrying the exception's status code and message."""
    return HTTPException(status_code=exc.status_code, detail=exc.message)

"""Exception hierarchy shared by the caption pipeline services.

Every error carries an HTTP ``status_code`` and a short machine-readable
``code`` so the API layer can translate it into the standard error envelope
without inspecting messages.
"""

from __future__ import annotations


class CaptionPipelineError(Exception):
    """Base class for all pipeline errors."""

    status_code: int = 500
    error_type: str = "server_error"
    code: str = "internal_error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class NotFoundError(CaptionPipelineError):
    """A referenced upload, transcript, translation, video or caption set is missing."""

    status_code = 404
    error_type = "invalid_request_error"
    code = "not_found"


class ConflictError(CaptionPipelineError):
    """The resource is not in a state that allows the operation."""

    status_code = 409
    error_type = "invalid_request_error"
    code = "conflict"


class ForbiddenError(CaptionPipelineError):
    """The operation is disabled by configuration."""

    status_code = 403
    error_type = "invalid_request_error"
    code = "forbidden"


class CaptionConfigurationError(CaptionPipelineError):
    """Unknown caption template or missing required runtime setting."""

    status_code = 400
    error_type = "invalid_request_error"
    code = "invalid_configuration"


class StorageError(CaptionPipelineError):
    """Object storage rejected an upload."""

    code = "storage_error"


class WorkerUnreachableError(CaptionPipelineError):
    """The rendering worker could not be contacted."""

    status_code = 502
    code = "WORKER_UNREACHABLE"


class WorkerRejectedError(CaptionPipelineError):
    """The rendering worker answered with a non-2xx response."""

    status_code = 502
    code = "WORKER_REJECTED"

    def __init__(self, message: str, *, reason: str = "") -> None:
        super().__init__(message)
        self.reason = reason


class CallbackDeliveryError(CaptionPipelineError):
    """An integration callback could not be delivered within its retry budget."""

    status_code = 502
    code = "callback_failed"

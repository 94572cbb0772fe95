"""Error taxonomy shared by every pipeline stage.

Each error carries a message, an optional cause and the HTTP status a
stage replies with. The queue treats any non-2xx reply as a failed
delivery; 4xx replies are not retried, 5xx replies are.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    status_code: int = 500
    terminal: bool = False

    def __init__(self, message: str, cause: BaseException | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause
        if status_code is not None:
            self.status_code = status_code

    def __str__(self) -> str:
        return self.message


# --- Validation: malformed or disallowed input, never retried ---


class ValidationError(PipelineError):
    status_code = 400


class UnsupportedMediaType(ValidationError):
    status_code = 415


class BodyTooLarge(ValidationError):
    status_code = 413


class InvalidTask(ValidationError):
    """Task delivery without the X-Taskname header."""


# --- Identity: zero-valued request ids where a real one is required ---


class IdentityError(PipelineError):
    status_code = 500


class ZeroIdError(IdentityError):
    def __init__(self, message: str = "zero-valued request_id", cause: BaseException | None = None) -> None:
        super().__init__(message, cause)


# --- Terminal errors: the request ends with status ERROR ---


class MediaUnsupported(PipelineError):
    status_code = 400
    terminal = True


class BadMediaUri(MediaUnsupported):
    pass


class ExternalPermanent(PipelineError):
    status_code = 400
    terminal = True


# --- Retried errors ---


class ExternalTransient(PipelineError):
    status_code = 503


class InternalError(PipelineError):
    status_code = 500


class InvalidTimestamp(InternalError):
    pass


class TimestampsKeyExists(PipelineError):
    """A write-once timestamp key was written a second time."""

    status_code = 409

    def __init__(self, key: str) -> None:
        super().__init__(f"Timestamps key exists: {key}")
        self.key = key


# --- Repository ---


class NotFoundError(PipelineError):
    status_code = 404


class CreateError(ExternalTransient):
    pass


class FindError(ExternalTransient):
    pass


class UpdateError(ExternalTransient):
    pass


# --- Queue ---


class QueueError(ExternalTransient):
    pass


# --- Ingress ---


class AcceptError(PipelineError):
    """Storage or queue I/O failed while accepting a client request."""

    status_code = 500

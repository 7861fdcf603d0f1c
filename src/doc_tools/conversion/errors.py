from os import PathLike
from typing import Iterable


class OperationError(Exception):
    """A request that could not produce an artifact.

    Carries the message shown to the caller, the underlying cause, and any
    paths created along the way that still need removing.
    """

    status_code = 500
    code = "operation_failed"

    def __init__(
        self,
        message: str,
        cause: BaseException | str | None = None,
        paths: Iterable[str | PathLike[str] | None] = (),
    ) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.paths = [p for p in paths if p is not None]

    @property
    def cause_text(self) -> str | None:
        if self.cause is None:
            return None
        if isinstance(self.cause, BaseException):
            return str(self.cause) or type(self.cause).__name__
        return self.cause


class ValidationError(OperationError):
    status_code = 400
    code = "invalid_request"


class PayloadTooLargeError(ValidationError):
    status_code = 413
    code = "payload_too_large"


class AuthError(OperationError):
    status_code = 400
    code = "incorrect_password"


class ConversionError(OperationError):
    status_code = 500
    code = "conversion_failed"

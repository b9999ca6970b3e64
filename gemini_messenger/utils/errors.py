"""
Structured errors shared by the backend adapter, the failover loop and the CLI.

Every failure coming out of the transport is converted once, at the boundary,
into a BackendError whose `kind` tells callers what to do with it:

- CAPACITY: the model is rate limited, out of quota or overloaded. Try the next candidate.
- FATAL: credentials, malformed request, safety rejection. Stop immediately.
- PROVIDER: a tool provider failed. Never raised into a turn, reported to the model instead.
"""

from enum import Enum
from typing import List, Optional

from google.genai import errors as genai_errors


class ErrorKind(str, Enum):
    CAPACITY = "capacity"
    FATAL = "fatal"
    PROVIDER = "provider"


class BackendError(Exception):
    """
    Attributes:
        kind: ErrorKind discriminant.
        message: human readable message.
        code: HTTP status code reported by the backend, if any.
        model: model identifier the error belongs to, if any.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        code: Optional[int] = None,
        model: Optional[str] = None,
    ):
        self.kind = kind
        self.message = message
        self.code = code
        self.model = model
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind == ErrorKind.CAPACITY

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, code={self.code!r}, model={self.model!r}, message={self.message!r})"


class ConfigurationError(BackendError):
    """Missing credentials or invalid setup. Always fatal."""

    def __init__(self, message: str):
        super().__init__(ErrorKind.FATAL, message)


class CandidatesExhaustedError(BackendError):
    """
    Every candidate failed with a capacity error.

    The message is the last candidate's failure message, not a summary of all of them.
    """

    def __init__(self, candidates: List[str], last_error: BackendError):
        self.candidates = list(candidates)
        self.last_error = last_error
        super().__init__(
            ErrorKind.CAPACITY,
            last_error.message,
            code=last_error.code,
            model=last_error.model,
        )


# HTTP codes and RPC statuses meaning "this model cannot take the request right now"
CAPACITY_CODES = {429, 503}
CAPACITY_STATUSES = {"RESOURCE_EXHAUSTED", "UNAVAILABLE"}


def classify_api_error(exc: genai_errors.APIError, model: Optional[str] = None) -> BackendError:
    """Converts a google-genai APIError into a BackendError using its structured fields."""
    code = getattr(exc, "code", None)
    status = (getattr(exc, "status", None) or "").upper()
    message = getattr(exc, "message", None) or str(exc)
    if code in CAPACITY_CODES or status in CAPACITY_STATUSES:
        kind = ErrorKind.CAPACITY
    else:
        kind = ErrorKind.FATAL
    return BackendError(kind, message, code=code, model=model)


__all__ = [
    "ErrorKind",
    "BackendError",
    "ConfigurationError",
    "CandidatesExhaustedError",
    "classify_api_error",
]

"""
Error Outcomes for Proxy Gatekeeper.

Every failed resolution or authorization ends in exactly one ErrorOutcome.
The outcome is terminal for the request: nothing is retried.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Machine-readable error codes written to the response body."""

    INVALID_REQUEST = "invalid_request"
    ACCESS_DENIED = "access_denied"
    INVALID_TOKEN = "invalid_token"
    MISSING_AUTHORIZATION = "missing_authorization"
    INVALID_AUTHORIZATION = "invalid_authorization"
    GATEWAY_TIMEOUT = "gateway_timeout"


_STATUS_BY_KIND: dict[str, int] = {
    ErrorKind.INVALID_REQUEST.value: 400,
    ErrorKind.ACCESS_DENIED.value: 403,
    ErrorKind.INVALID_TOKEN.value: 401,
    ErrorKind.MISSING_AUTHORIZATION.value: 401,
    ErrorKind.INVALID_AUTHORIZATION.value: 401,
    ErrorKind.GATEWAY_TIMEOUT.value: 504,
}


def status_for(code: str | ErrorKind) -> int:
    """
    Map an error code to its HTTP status.

    Unclassified codes map to 500.
    """
    if isinstance(code, ErrorKind):
        code = code.value
    return _STATUS_BY_KIND.get(code, 500)


@dataclass(frozen=True)
class ErrorOutcome:
    """
    Classified failure for a single request.

    Only the code and a short message are exposed to the caller;
    verification library internals never end up here.
    """

    code: str
    message: str | None = None

    @classmethod
    def of(cls, kind: ErrorKind, message: str | None = None) -> ErrorOutcome:
        """Build an outcome from an ErrorKind."""
        return cls(code=kind.value, message=message)

    @property
    def status(self) -> int:
        """HTTP status for this outcome."""
        return status_for(self.code)

    def to_body(self) -> dict[str, Any]:
        """Response body: {"error": ..., "error_description": ...}."""
        return {"error": self.code, "error_description": self.message}


class GatekeeperError(Exception):
    """Base class for failures raised inside gatekeeper collaborators."""

    kind: ErrorKind = ErrorKind.INVALID_REQUEST

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.kind.value)
        self.message = message

    def to_outcome(self) -> ErrorOutcome:
        """Convert to the ErrorOutcome written to the client."""
        return ErrorOutcome.of(self.kind, self.message)


class KeyExchangeError(GatekeeperError):
    """The API key could not be exchanged for a bearer credential."""


class KeyExchangeUnavailable(KeyExchangeError):
    """Transport failure or timeout talking to the verification service."""

    kind = ErrorKind.GATEWAY_TIMEOUT


class KeyExchangeRejected(KeyExchangeError):
    """The verification service answered with a non-200 status."""

    kind = ErrorKind.ACCESS_DENIED

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TokenVerificationError(GatekeeperError):
    """Signature verification failed."""

    kind = ErrorKind.INVALID_TOKEN


class TokenExpiredError(TokenVerificationError):
    """The token signature is valid but its expiration has passed."""

    kind = ErrorKind.ACCESS_DENIED


class InvalidTokenError(TokenVerificationError):
    """Malformed token, bad signature, wrong algorithm or missing key."""

    kind = ErrorKind.INVALID_TOKEN

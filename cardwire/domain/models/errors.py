"""Error taxonomy for calls against the card API.

Every failure raised by cardwire is a ``CardApiError`` carrying an
``ErrorKind``. Callers can either catch the concrete subclasses or dispatch
on ``error.kind``; both views always agree.
"""

import json
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Type


class ErrorKind(str, Enum):
    """Classification of a failed call."""

    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    CLIENT = "client"
    RATE_LIMITED = "rate_limited"
    SERVER = "server"
    NETWORK = "network"
    PARSE = "parse"
    KEY_SET = "key_set"
    VERIFICATION = "verification"
    CONFIGURATION = "configuration"


# Kinds the request executor retries with backoff.
TRANSIENT_KINDS = frozenset({ErrorKind.RATE_LIMITED, ErrorKind.SERVER, ErrorKind.NETWORK})


class CardApiError(Exception):
    """Base class for all card API failures."""

    kind: ErrorKind = ErrorKind.CLIENT

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        error_code: Optional[str] = None,
        details: Any = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.error_code = error_code
        self.details = details
        self.retry_after = retry_after

    @property
    def is_transient(self) -> bool:
        return self.kind in TRANSIENT_KINDS

    def to_dict(self) -> Dict[str, Any]:
        """Structured view used by the CLI and the tool registry."""
        data: Dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.status is not None:
            data["status"] = self.status
        if self.error_code:
            data["error_code"] = self.error_code
        if self.details:
            data["details"] = self.details
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, status={self.status!r}, message={self.message!r})"


class AuthenticationError(CardApiError):
    """Credential missing, rejected or expired (HTTP 401, failed /auth)."""
    kind = ErrorKind.AUTHENTICATION


class AuthorizationError(CardApiError):
    """Role lacks permission for the resource (HTTP 403)."""
    kind = ErrorKind.AUTHORIZATION


class NotFoundError(CardApiError):
    kind = ErrorKind.NOT_FOUND


class ValidationError(CardApiError):
    """Request rejected with field-level details (HTTP 422)."""
    kind = ErrorKind.VALIDATION


class ClientRequestError(CardApiError):
    """Any other 4xx response. Not retried."""
    kind = ErrorKind.CLIENT


class RateLimitError(CardApiError):
    kind = ErrorKind.RATE_LIMITED


class ServerError(CardApiError):
    kind = ErrorKind.SERVER


class NetworkError(CardApiError):
    """Connection refused, DNS failure, connect or read timeout."""
    kind = ErrorKind.NETWORK


class ResponseParseError(CardApiError):
    """A response body that should be JSON could not be decoded."""
    kind = ErrorKind.PARSE


class KeySetError(CardApiError):
    """The published verification key set could not be fetched."""
    kind = ErrorKind.KEY_SET


class VerificationError(CardApiError):
    """A credential failed signature or claim verification."""
    kind = ErrorKind.VERIFICATION


class ConfigurationError(CardApiError):
    """Invalid settings or arguments, raised before any network activity."""
    kind = ErrorKind.CONFIGURATION


_STATUS_ERRORS: Dict[int, Type[CardApiError]] = {
    401: AuthenticationError,
    403: AuthorizationError,
    404: NotFoundError,
    422: ValidationError,
    429: RateLimitError,
}


def parse_error_body(body: str) -> Dict[str, Any]:
    """Decodes an error body, falling back to the raw text as the message."""
    try:
        data = json.loads(body) if body else {}
    except ValueError:
        return {"error": "unknown", "message": body}
    if not isinstance(data, dict):
        return {"error": "unknown", "message": body}
    return data


def parse_retry_after(headers: Mapping[str, str]) -> Optional[float]:
    value = headers.get("retry-after") or headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        # HTTP-date form is not used by the card API
        return None


def classify_response(status: int, body: str, headers: Optional[Mapping[str, str]] = None) -> CardApiError:
    """Maps a non-2xx response to the matching error.

    Args:
        status: HTTP status code (must not be 2xx).
        body: Raw response body text.
        headers: Response headers, used for the ``Retry-After`` hint.

    Returns:
        The classified error, ready to be raised.
    """
    data = parse_error_body(body)
    error_code = data.get("error")
    if error_code is not None and not isinstance(error_code, str):
        error_code = str(error_code)

    if 500 <= status <= 599:
        message = data.get("message") or error_code or "Server error"
        return ServerError(str(message), status=status, error_code=error_code, details=data.get("details"))

    message = data.get("message") or error_code or "Request failed"
    error_class = _STATUS_ERRORS.get(status)
    if error_class is None:
        error_class = ClientRequestError if 400 <= status <= 499 else CardApiError
        if error_class is CardApiError:
            message = f"Unexpected HTTP status: {status}"

    retry_after = parse_retry_after(headers or {}) if status == 429 else None
    return error_class(
        str(message),
        status=status,
        error_code=error_code,
        details=data.get("details"),
        retry_after=retry_after,
    )

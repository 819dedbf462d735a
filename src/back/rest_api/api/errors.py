"""Error taxonomy for the request pipeline.

Every failure inside the pipeline is raised as an ``ApiError`` carrying an
``ErrorKind``. The pipeline converts it into the ``{code, msg}`` envelope
with the matching HTTP status; nothing below the pipeline writes error
responses directly.
"""
from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Machine-readable failure categories."""

    UNAUTHORIZED = 'unauthorized'  # No or invalid credentials
    FORBIDDEN = 'forbidden'  # Identity lacks capability, inactive, or validator refused
    NOT_FOUND = 'not_found'  # No filesystem entry / no route
    METHOD_NOT_ALLOWED = 'method_not_allowed'  # Endpoint exists, method does not
    BAD_REQUEST = 'bad_request'  # Malformed body or JSON
    SCRIPT_FAILURE = 'script_failure'  # Handler raised
    INTERNAL_ERROR = 'internal_error'  # Unexpected engine fault

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]

    @property
    def default_message(self) -> str:
        return _DEFAULT_MESSAGES[self]


_HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.METHOD_NOT_ALLOWED: 405,
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.SCRIPT_FAILURE: 500,
    ErrorKind.INTERNAL_ERROR: 500,
}

_DEFAULT_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.UNAUTHORIZED: 'Unauthorized',
    ErrorKind.FORBIDDEN: 'Forbidden',
    ErrorKind.NOT_FOUND: 'Not found',
    ErrorKind.METHOD_NOT_ALLOWED: 'Method not allowed',
    ErrorKind.BAD_REQUEST: 'Bad request',
    ErrorKind.SCRIPT_FAILURE: 'Script failed',
    ErrorKind.INTERNAL_ERROR: 'Internal server error',
}


class ApiError(Exception):
    """A pipeline failure with a taxonomy entry and a client-safe message."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str | None = None,
        *,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.kind = kind
        self.message = message or kind.default_message
        self.headers = headers or {}
        super().__init__(self.message)

    @property
    def http_status(self) -> int:
        return self.kind.http_status

    def to_envelope(self) -> dict:
        """Convert to the ``{code, msg}`` response envelope."""
        return {'code': self.http_status, 'msg': self.message}

    def __repr__(self) -> str:
        return f'ApiError({self.kind.value!r}, {self.message!r})'


def unauthorized(realm: str, message: str | None = None) -> ApiError:
    """Build a 401 error carrying the Basic-auth challenge header."""
    return ApiError(
        ErrorKind.UNAUTHORIZED,
        message,
        headers={'WWW-Authenticate': f'Basic realm="{realm}"'},
    )


def forbidden(message: str | None = None) -> ApiError:
    return ApiError(ErrorKind.FORBIDDEN, message)


def not_found(message: str | None = None) -> ApiError:
    return ApiError(ErrorKind.NOT_FOUND, message)


def method_not_allowed(message: str | None = None) -> ApiError:
    return ApiError(ErrorKind.METHOD_NOT_ALLOWED, message)


def bad_request(message: str | None = None) -> ApiError:
    return ApiError(ErrorKind.BAD_REQUEST, message)

"""Request, response and token dataclasses plus the exception hierarchy."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass
class Request:
    """HTTP request representation.

    Attributes:
        method: HTTP method (GET, POST, etc.).
        url: The absolute request URL.
        headers: Request headers.
        body: Pre-serialized request body.
        timeout: Request-specific timeout in seconds.
    """

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str | None = None
    timeout: float | None = None

    def __post_init__(self) -> None:
        """Normalize method to uppercase."""
        self.method = self.method.upper()


@dataclass
class Response:
    """HTTP response representation.

    Attributes:
        status_code: HTTP status code.
        headers: Response headers with lower-cased names.
        content: Raw response content as bytes.
        url: The URL that produced this response (redirects are not followed).
        set_cookie: Every ``Set-Cookie`` header value, in order.
        elapsed: Request duration in seconds.
        request: The original request object.
    """

    status_code: int
    headers: dict[str, str]
    content: bytes
    url: str
    set_cookie: list[str] = field(default_factory=list)
    elapsed: float = 0.0
    request: Request | None = None

    @property
    def text(self) -> str:
        """Decode content as UTF-8 text."""
        return self.content.decode("utf-8", errors="replace")

    @property
    def location(self) -> str | None:
        """Value of the ``Location`` header, if any."""
        return self.headers.get("location")

    def json(self) -> Any:
        """Parse content as JSON."""
        import json as json_module
        return json_module.loads(self.content)


@dataclass
class APIResponse(Generic[T]):
    """Uniform wrapper returned by the API clients.

    ``body`` is a passthrough of whatever the service returned. When the call
    failed, ``error`` holds the error text (for HTTP errors, the response body).

    Attributes:
        status_code: HTTP status code, 0 when no response was received.
        body: Response body (raw text or decoded JSON).
        error: Error description, None on success.
    """

    status_code: int
    body: T | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        """True if no error was recorded."""
        return self.error is None


@dataclass(frozen=True)
class Credential:
    """Username/password pair for one account."""

    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credential(username={self.username!r}, password='***')"


@dataclass(frozen=True)
class AuthToken:
    """OAuth token triple.

    Attributes:
        access_token: Bearer token sent with API calls.
        refresh_token: Token used to obtain a new access token.
        expires_at: Absolute expiry as epoch milliseconds.
    """

    access_token: str
    refresh_token: str
    expires_at: int

    @classmethod
    def from_token_response(cls, payload: Any, now_ms: int | None = None) -> "AuthToken":
        """Build a token from a token endpoint JSON payload.

        Args:
            payload: Decoded JSON body with access_token, refresh_token and expires_in.
            now_ms: Current time in epoch milliseconds (defaults to now).

        Returns:
            A fully populated AuthToken.

        Raises:
            AuthProtocolError: If any field is missing or malformed.
        """
        if not isinstance(payload, dict):
            raise AuthProtocolError("Token response is not a JSON object")

        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        expires_in = payload.get("expires_in")

        if not access_token or not isinstance(access_token, str):
            raise AuthProtocolError("Token response missing access_token")
        if not isinstance(refresh_token, str):
            raise AuthProtocolError("Token response missing refresh_token")
        if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)):
            raise AuthProtocolError("Token response missing expires_in")

        if now_ms is None:
            now_ms = now_millis()
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=int(now_ms + expires_in * 1000),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthToken":
        """Rebuild a token exported with ``to_dict``."""
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token", ""),
            expires_at=int(data["expires_at"]),
        )

    def to_dict(self) -> dict[str, Any]:
        """Export as a plain dict that another client can adopt."""
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
        }

    def is_expired(self, now_ms: int | None = None) -> bool:
        """Check whether the access token has expired."""
        if now_ms is None:
            now_ms = now_millis()
        return self.expires_at <= now_ms

    def __repr__(self) -> str:
        return f"AuthToken(access_token='***', refresh_token='***', expires_at={self.expires_at})"


def now_millis() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class ZwiftClientError(Exception):
    """Base exception for zwift_client errors."""
    pass


class ConfigurationError(ZwiftClientError, ValueError):
    """Invalid or missing configuration (credentials, options)."""
    pass


class AuthNotSetError(ConfigurationError):
    """An authenticated call was made without a live token."""

    def __init__(self, message: str = "Auth token not set"):
        super().__init__(message)


class AuthenticationError(ZwiftClientError):
    """The service rejected the supplied credentials."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AuthProtocolError(ZwiftClientError):
    """A login or token hop returned something unexpected."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SessionExpiredError(ZwiftClientError):
    """The cookie session expired and re-authentication did not help."""

    def __init__(self, url: str, status_code: int):
        super().__init__(
            f"Session expired and re-authentication failed for {url} (HTTP {status_code})"
        )
        self.url = url
        self.status_code = status_code


class TransportError(ZwiftClientError):
    """Error during HTTP transport (connection, timeout, etc.)."""

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message)
        self.original_error = original_error


class PoolExhaustedError(ZwiftClientError):
    """No connection in the pool could authenticate."""

    def __init__(self, attempts: int, last_error: Exception | None = None):
        super().__init__(f"No valid connection found after trying {attempts} connection(s)")
        self.attempts = attempts
        self.last_error = last_error

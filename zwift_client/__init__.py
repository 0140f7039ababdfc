"""Async clients for the Zwift REST API and the ZwiftPower portal.

This package provides:

- ZwiftAPI: bearer-token client (password / refresh-token OAuth exchange,
  optional background refresh, paged list fetching)
- ZwiftPowerAPI: cookie-session client (SSO redirect-chain login with
  self-healing re-authentication)
- ConnectionPool: one client pair per credential, round-robin selection
  with failover-on-authenticate
- Pluggable transports: httpx (default) or curl_cffi (TLS impersonation)

Basic usage:

    from zwift_client import ConnectionPool, Credential

    async with ConnectionPool([Credential("a@example.com", "pw1"),
                               Credential("b@example.com", "pw2")]) as pool:
        api = await pool.next_authenticated()
        profile = await api.get_profile(12345)

        zp = await pool.next_power_authenticated()
        results = await zp.get_event_results("3859519")
"""

from .base import RequestClient
from .config import PoolConfig, ZwiftConfig, ZwiftPowerConfig
from .cookie_jar import Cookie, CookieJar
from .models import (
    APIResponse,
    AuthenticationError,
    AuthNotSetError,
    AuthProtocolError,
    AuthToken,
    ConfigurationError,
    Credential,
    PoolExhaustedError,
    Request,
    Response,
    SessionExpiredError,
    TransportError,
    ZwiftClientError,
)
from .pool import ConnectionPool, PoolEntry
from .transport import CurlTransport, HttpxTransport, Transport
from .zwift import AuthState, ZwiftAPI
from .zwift_power import ZwiftPowerAPI

__version__ = "0.1.0"

__all__ = [
    # Clients
    "ZwiftAPI",
    "ZwiftPowerAPI",
    "ConnectionPool",
    "PoolEntry",
    "RequestClient",
    "AuthState",
    # Configuration
    "ZwiftConfig",
    "ZwiftPowerConfig",
    "PoolConfig",
    # Models
    "Request",
    "Response",
    "APIResponse",
    "AuthToken",
    "Credential",
    "Cookie",
    "CookieJar",
    # Exceptions
    "ZwiftClientError",
    "ConfigurationError",
    "AuthNotSetError",
    "AuthenticationError",
    "AuthProtocolError",
    "SessionExpiredError",
    "TransportError",
    "PoolExhaustedError",
    # Transports
    "Transport",
    "HttpxTransport",
    "CurlTransport",
    # Version
    "__version__",
]

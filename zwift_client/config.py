"""Configuration dataclasses for the API clients and the connection pool."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Sequence

from .models import ConfigurationError, Credential

if TYPE_CHECKING:
    from .transport import Transport


@dataclass
class ZwiftConfig:
    """Configuration for ZwiftAPI.

    Attributes:
        auth_host: Host serving the OAuth token endpoint.
        api_host: Host serving the REST API.
        timeout: Default per-call timeout in seconds. None disables it.
        auto_refresh_auth: Whether to refresh the token in the background
                           shortly before it expires.
        refresh_margin: Seconds before expiry at which the background refresh runs.
        min_refresh_delay: Shortest wait before a background refresh, used when the
                           token lives shorter than refresh_margin.
        client_id: OAuth client id sent to the token endpoint.
        platform: Value of the ``Platform`` identification header.
        source: Value of the ``Source`` identification header.
        user_agent: Value of the ``User-Agent`` identification header.
        default_page_size: Items requested per page by fetch_paged().
        default_page_limit: Maximum pages fetched by fetch_paged(), 0 = unlimited.
    """

    # Hosts
    auth_host: str = "secure.zwift.com"
    api_host: str = "us-or-rly101.zwift.com"

    # Timeouts
    timeout: float | None = 30.0

    # Token refresh
    auto_refresh_auth: bool = False
    refresh_margin: float = 10.0
    min_refresh_delay: float = 1.0

    # Client identification
    client_id: str = "Zwift Game Client"
    platform: str = "OSX"
    source: str = "Game Client"
    user_agent: str = (
        "CNL/3.30.8 (macOS 13 Ventura; Darwin Kernel 22.4.0) zwift/1.0.110983 curl/7.78.0"
    )

    # Pagination
    default_page_size: int = 100
    default_page_limit: int = 10

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not self.auth_host or not self.api_host:
            raise ConfigurationError("auth_host and api_host must be set")
        if self.timeout is not None and self.timeout < 0:
            raise ConfigurationError("timeout must be >= 0")
        if self.refresh_margin < 0:
            raise ConfigurationError("refresh_margin must be >= 0")
        if self.min_refresh_delay < 0:
            raise ConfigurationError("min_refresh_delay must be >= 0")
        if self.default_page_size < 1:
            raise ConfigurationError("default_page_size must be >= 1")
        if self.default_page_limit < 0:
            raise ConfigurationError("default_page_limit must be >= 0")

    @property
    def client_headers(self) -> dict[str, str]:
        """Identification headers sent on every API call."""
        return {
            "Platform": self.platform,
            "Source": self.source,
            "User-Agent": self.user_agent,
        }


@dataclass
class ZwiftPowerConfig:
    """Configuration for ZwiftPowerAPI.

    Attributes:
        base_url: Portal origin; relative redirects resolve against it.
        login_host: Host the login form is posted to (pinned in the Host header).
        sso_url: URL that starts the SSO redirect chain.
        timeout: Per-request timeout in seconds. None disables it.
    """

    base_url: str = "https://zwiftpower.com/"
    login_host: str = "secure.zwift.com"
    sso_url: str = (
        "https://zwiftpower.com/ucp.php?mode=login&login=external&oauth_service=oauthzpsso"
    )
    timeout: float | None = 30.0

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not self.base_url.startswith(("https://", "http://")):
            raise ConfigurationError("base_url must be an absolute http(s) URL")
        if not self.base_url.endswith("/"):
            self.base_url += "/"
        if self.timeout is not None and self.timeout < 0:
            raise ConfigurationError("timeout must be >= 0")


@dataclass
class PoolConfig:
    """Configuration for ConnectionPool.

    Attributes:
        credentials: One credential per pooled account. Must not be empty.
        debug: Log pool selection decisions at INFO instead of DEBUG.
        zwift: Config shared by every pooled ZwiftAPI.
        zwift_power: Config shared by every pooled ZwiftPowerAPI.
        transport_factory: Builds a fresh transport for each client. None uses
                           the default httpx transport.
    """

    credentials: Sequence[Credential] = field(default_factory=list)
    debug: bool = False
    zwift: ZwiftConfig = field(default_factory=ZwiftConfig)
    zwift_power: ZwiftPowerConfig = field(default_factory=ZwiftPowerConfig)
    transport_factory: Callable[[], "Transport"] | None = None

    def __post_init__(self) -> None:
        """Normalize credentials and reject an empty pool."""
        self.credentials = [
            c if isinstance(c, Credential) else Credential(c["username"], c["password"])
            for c in (self.credentials or [])
        ]
        if len(self.credentials) == 0:
            raise ConfigurationError("No credentials provided")

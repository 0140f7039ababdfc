"""Shared test fixtures and configuration."""

import json
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, urlparse

import pytest

from zwift_client import (
    Cookie,
    CookieJar,
    Response,
    ZwiftAPI,
    ZwiftConfig,
    ZwiftPowerAPI,
)
from zwift_client.transport import HttpxTransport


def make_response(
    status_code: int = 200,
    body: str | bytes = "",
    headers: dict[str, str] | None = None,
    set_cookie: list[str] | None = None,
    url: str = "https://example.com",
) -> Response:
    """Build a transport-level Response."""
    content = body.encode("utf-8") if isinstance(body, str) else body
    return Response(
        status_code=status_code,
        headers={k.lower(): v for k, v in (headers or {}).items()},
        content=content,
        url=url,
        set_cookie=list(set_cookie or []),
    )


def json_response(payload: Any, status_code: int = 200) -> Response:
    """Build a JSON Response."""
    return make_response(
        status_code=status_code,
        body=json.dumps(payload),
        headers={"Content-Type": "application/json"},
    )


def token_response(
    access_token: str = "access-1",
    refresh_token: str = "refresh-1",
    expires_in: float = 3600,
) -> Response:
    """Build a token endpoint success Response."""
    return json_response({
        "access_token": access_token,
        "refresh_token": refresh_token,
        "expires_in": expires_in,
    })


def redirect(location: str, set_cookie: list[str] | None = None) -> Response:
    """Build a 302 Response."""
    return make_response(302, headers={"Location": location}, set_cookie=set_cookie)


def form_fields(request) -> dict[str, str]:
    """Decode a form-encoded request body."""
    return {k: v[0] for k, v in parse_qs(request.body or "").items()}


def query_params(request) -> dict[str, str]:
    """Decode the query string of a request URL."""
    return {k: v[0] for k, v in parse_qs(urlparse(request.url).query, keep_blank_values=True).items()}


def sent_requests(transport: MagicMock) -> list:
    """Requests passed to a mock transport, in order."""
    return [call.args[0] for call in transport.request.await_args_list]


# ============== ZwiftPower login flow ==============

SSO_LOCATION = "https://secure.zwift.com/auth/realms/zwift/protocol/openid-connect/auth?client_id=zwiftpower"
LOGIN_ACTION = (
    "https://secure.zwift.com/auth/realms/zwift/login-actions/authenticate"
    "?session_code=abc&amp;execution=def&amp;client_id=zwiftpower"
)
CALLBACK_LOCATION = "https://zwiftpower.com/ucp.php?mode=login&login=external&code=xyz"
SESSION_SET_COOKIE = [
    "phpbb3_lswlk_sid=session123; path=/; domain=.zwiftpower.com; secure; HttpOnly",
    "phpbb3_lswlk_u=2822923; path=/; domain=.zwiftpower.com; secure; HttpOnly",
]

LOGIN_PAGE = f"""<!DOCTYPE html>
<html>
<head><title>Log in to Zwift</title></head>
<body>
  <form id="kc-form-login" class="form" onsubmit="return true;" action="{LOGIN_ACTION}" method="post">
    <input type="text" name="username">
    <input type="password" name="password">
  </form>
</body>
</html>
"""


def login_flow_responses() -> list[Response]:
    """The four responses of a full SSO login."""
    return [
        redirect(SSO_LOCATION),
        make_response(200, LOGIN_PAGE, headers={"Content-Type": "text/html"}),
        redirect(CALLBACK_LOCATION),
        redirect("/", set_cookie=SESSION_SET_COOKIE),
    ]


def session_cookies(user_id: str = "2822923") -> str:
    """A serialized jar holding a ZwiftPower session."""
    jar = CookieJar()
    jar.set(Cookie(name="phpbb3_lswlk_sid", value="saved-session", domain="zwiftpower.com", host_only=False))
    jar.set(Cookie(name="phpbb3_lswlk_u", value=user_id, domain="zwiftpower.com", host_only=False))
    return jar.serialize()


# ============== Mock Fixtures ==============

@pytest.fixture
def mock_transport() -> MagicMock:
    """Mock transport for testing without network."""
    transport = MagicMock(spec=HttpxTransport)
    transport.is_closed = False
    transport.request = AsyncMock(return_value=make_response(200, "OK"))
    transport.close = AsyncMock()
    return transport


@pytest.fixture
def transport_factory() -> Callable[[], MagicMock]:
    """Factory producing independent mock transports."""
    def factory() -> MagicMock:
        transport = MagicMock(spec=HttpxTransport)
        transport.is_closed = False
        transport.request = AsyncMock(return_value=make_response(200, "OK"))
        transport.close = AsyncMock()
        return transport

    return factory


# ============== Client Fixtures ==============

@pytest.fixture
def zwift_api(mock_transport: MagicMock) -> ZwiftAPI:
    """ZwiftAPI with credentials and a mocked transport."""
    return ZwiftAPI("rider@example.com", "secret", transport=mock_transport)


@pytest.fixture
def auto_refresh_api(mock_transport: MagicMock) -> ZwiftAPI:
    """ZwiftAPI with background refresh enabled."""
    return ZwiftAPI(
        "rider@example.com",
        "secret",
        config=ZwiftConfig(auto_refresh_auth=True, min_refresh_delay=0.01),
        transport=mock_transport,
    )


@pytest.fixture
def zwift_power_api(mock_transport: MagicMock) -> ZwiftPowerAPI:
    """ZwiftPowerAPI with credentials and a mocked transport."""
    return ZwiftPowerAPI("rider@example.com", "p@ss word&", transport=mock_transport)

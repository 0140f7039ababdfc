"""ZwiftPower portal client with SSO cookie-session authentication.

ZwiftPower is a phpBB site whose login is delegated to the Zwift SSO. A
session is established by walking a fixed redirect chain:

1. GET the SSO initiation URL, expect 302.
2. GET its Location. A 200 is the HTML login page: scrape the form action
   and POST the credentials to it, expect 302. A 302 means the SSO session
   is still valid.
3. GET the final Location, expect 302. The portal now sets its session cookies.

Basic usage:

    from zwift_client import ZwiftPowerAPI

    async with ZwiftPowerAPI("rider@example.com", "secret") as zp:
        cookies = await zp.authenticate()
        results = await zp.get_event_results("3859519")

    # Reuse the session elsewhere
    other = ZwiftPowerAPI()
    await other.authenticate(cookies)
"""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import urlencode, urljoin, urlparse

from bs4 import BeautifulSoup

from .base import RequestClient
from .config import ZwiftPowerConfig
from .models import (
    APIResponse,
    AuthProtocolError,
    ConfigurationError,
    Response,
    SessionExpiredError,
)
from .transport import Transport

logger = logging.getLogger(__name__)

SESSION_COOKIE = "phpbb3_lswlk_sid"
USER_COOKIE = "phpbb3_lswlk_u"
# phpBB assigns user id 1 to anonymous visitors
ANONYMOUS_USER_ID = "1"

LOGIN_FORM_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Content-Type": "application/x-www-form-urlencoded",
}


def looks_like_html(body: str) -> bool:
    """Heuristic for an HTML page served where JSON was expected."""
    head = body.lstrip()[:256].lower()
    return head.startswith("<!doctype html") or head.startswith("<html")


def extract_form_action(html: str) -> str | None:
    """Return the ``action`` of the first form on a page, entities unescaped."""
    soup = BeautifulSoup(html, "html.parser")
    form = soup.find("form", action=True)
    if form is None:
        return None
    return form["action"]


def to_json(response: APIResponse[str]) -> APIResponse[Any]:
    """Decode a raw-body response as JSON, folding parse errors into ``error``."""
    if not response.body:
        return APIResponse(status_code=response.status_code, error=response.error)
    try:
        return APIResponse(
            status_code=response.status_code,
            body=json.loads(response.body),
            error=response.error,
        )
    except ValueError:
        logger.error("Error parsing JSON: %.200s", response.body)
        return APIResponse(
            status_code=response.status_code,
            error=f"Error parsing JSON: {response.body}",
        )


class ZwiftPowerAPI:
    """Client for the ZwiftPower portal.

    Authentication state lives entirely in the cookie jar of the owned
    RequestClient. ``get_authenticated()`` logs in on demand and re-logs in
    once when the session turns out to have expired.

    Args:
        username: Zwift account username (e-mail).
        password: Zwift account password.
        config: Portal URLs and timeout.
        transport: Transport for the underlying RequestClient.
    """

    def __init__(
        self,
        username: str | None = None,
        password: str | None = None,
        config: ZwiftPowerConfig | None = None,
        transport: Transport | None = None,
    ) -> None:
        self._username = username or ""
        self._password = password or ""
        self._config = config or ZwiftPowerConfig()
        self._client = RequestClient(transport=transport)

    @property
    def config(self) -> ZwiftPowerConfig:
        return self._config

    @property
    def username(self) -> str:
        return self._username

    @property
    def request_client(self) -> RequestClient:
        return self._client

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    def is_authenticated(self) -> bool:
        """True if the jar holds a portal session for a logged-in user. No network call."""
        cookies = self._client.cookie_jar.get_cookies(self._config.base_url, all_paths=True)
        names = {c.name: c.value for c in cookies}
        user_id = names.get(USER_COOKIE, "")
        return SESSION_COOKIE in names and bool(user_id) and user_id != ANONYMOUS_USER_ID

    def export_cookies(self) -> str:
        """Serialized jar, suitable for ``authenticate()`` on another instance."""
        return self._client.cookie_jar.serialize()

    def _fix_redirect(self, location: str) -> str:
        """Resolve a relative Location against the portal origin."""
        if urlparse(location).scheme:
            return location
        return urljoin(self._config.base_url, location)

    def _expect(self, response: Response, status: int, hop: str) -> None:
        if response.status_code != status:
            raise AuthProtocolError(
                f"{hop}: expected {status} got {response.status_code}",
                status_code=response.status_code,
            )

    def _location(self, response: Response, hop: str) -> str:
        location = response.location
        if not location:
            raise AuthProtocolError(f"{hop}: expected location header")
        return self._fix_redirect(location)

    async def _submit_login(self, url: str) -> Response:
        body = urlencode({"username": self._username, "password": self._password})
        headers = dict(LOGIN_FORM_HEADERS)
        headers["Host"] = self._config.login_host
        return await self._client.request(
            url, body, method="POST", headers=headers, timeout=self._config.timeout
        )

    async def authenticate(self, cookies: str | None = None) -> str:
        """Establish a portal session.

        Args:
            cookies: Serialized jar from ``export_cookies()`` or an earlier
                     ``authenticate()``. If it already holds a session, no
                     network call is made.

        Returns:
            The serialized cookie jar.

        Raises:
            ConfigurationError: No usable session and no username/password.
            AuthProtocolError: A hop returned an unexpected status or no Location.
            TransportError: Network failure.
        """
        if cookies:
            try:
                self._client.set_cookies(cookies)
            except ValueError as e:
                raise ConfigurationError(f"Invalid serialized cookies: {e}") from e
            if self.is_authenticated():
                logger.debug("Reusing supplied ZwiftPower session for %s", self._username)
                return cookies

        if not (self._username and self._password):
            raise ConfigurationError("Login credentials not set")

        timeout = self._config.timeout

        leg1 = await self._client.request(self._config.sso_url, timeout=timeout)
        self._expect(leg1, 302, "SSO initiation")
        leg1_location = self._location(leg1, "SSO initiation")

        leg2 = await self._client.request(leg1_location, timeout=timeout)
        if leg2.status_code == 200:
            submit_url = extract_form_action(leg2.text)
            if not submit_url:
                raise AuthProtocolError("Login page: expected login submit URL")
            logger.debug("Submitting ZwiftPower login form for %s", self._username)
            submit = await self._submit_login(urljoin(leg1_location, submit_url))
            self._expect(submit, 302, "Login submit")
            leg3_location = self._location(submit, "Login submit")
        elif leg2.status_code == 302:
            logger.debug("SSO session still valid for %s", self._username)
            leg3_location = self._location(leg2, "SSO redirect")
        else:
            raise AuthProtocolError(
                f"SSO redirect: expected 200 or 302 got {leg2.status_code}",
                status_code=leg2.status_code,
            )

        leg3 = await self._client.request(leg3_location, timeout=timeout)
        self._expect(leg3, 302, "Session callback")

        logger.debug("ZwiftPower session established for %s", self._username)
        return self.export_cookies()

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    @staticmethod
    def _session_lost(response: Response, expect_json: bool) -> bool:
        if response.status_code in (401, 403):
            return True
        return expect_json and response.status_code == 200 and looks_like_html(response.text)

    async def get_authenticated(
        self,
        url: str,
        body: str | None = None,
        *,
        method: str | None = None,
        headers: dict[str, str] | None = None,
        expect_json: bool = False,
    ) -> APIResponse[str]:
        """Request a portal URL inside an authenticated session.

        Logs in first if needed. If the response shows the session was lost
        (401/403, or an HTML page where JSON was expected), the cookies are
        cleared and the login plus request are retried exactly once.

        Raises:
            SessionExpiredError: The retry failed the same way.
            ConfigurationError, AuthProtocolError, TransportError: From the login flow.
        """
        if not self.is_authenticated():
            await self.authenticate()
        response = await self._client.request(
            url, body, method=method, headers=headers, timeout=self._config.timeout
        )

        if self._session_lost(response, expect_json):
            logger.info(
                "ZwiftPower session for %s expired (HTTP %d), re-authenticating",
                self._username,
                response.status_code,
            )
            self._client.clear_cookies()
            await self.authenticate()
            response = await self._client.request(
                url, body, method=method, headers=headers, timeout=self._config.timeout
            )
            if self._session_lost(response, expect_json):
                raise SessionExpiredError(url, response.status_code)

        status = response.status_code
        return APIResponse(
            status_code=status,
            body=response.text,
            error=response.text if (status == 0 or status >= 400) else None,
        )

    async def _get_json(self, url: str) -> APIResponse[Any]:
        return to_json(await self.get_authenticated(url, expect_json=True))

    # -------------------------------------------------------------------------
    # Domain calls
    # -------------------------------------------------------------------------

    async def get_critical_power_profile(
        self,
        athlete_id: int | str,
        event_id: int | str = "",
        power_type: str = "watts",
    ) -> APIResponse[Any]:
        """Critical power curve for an athlete, optionally within one event."""
        query = urlencode({
            "do": "critical_power_profile",
            "zwift_id": athlete_id,
            "zwift_event_id": event_id,
            "type": power_type,
        })
        return await self._get_json(urljoin(self._config.base_url, f"api3.php?{query}"))

    async def get_event_results(self, event_id: int | str) -> APIResponse[Any]:
        return await self._get_json(
            urljoin(self._config.base_url, f"cache3/results/{event_id}_zwift.json")
        )

    async def get_event_view_results(self, event_id: int | str) -> APIResponse[Any]:
        return await self._get_json(
            urljoin(self._config.base_url, f"cache3/results/{event_id}_view.json")
        )

    async def get_activity_results(self, athlete_id: int | str) -> APIResponse[Any]:
        """Recent activities for this athlete."""
        return await self._get_json(
            urljoin(self._config.base_url, f"cache3/profile/{athlete_id}_all.json")
        )

    async def get_activity_analysis(
        self,
        event_id: int | str,
        athlete_id: int | str,
    ) -> APIResponse[Any]:
        query = urlencode({"do": "analysis", "zwift_id": athlete_id, "zwift_event_id": event_id})
        return await self._get_json(urljoin(self._config.base_url, f"api3.php?{query}"))

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Close the transport."""
        await self._client.close()

    async def __aenter__(self) -> "ZwiftPowerAPI":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

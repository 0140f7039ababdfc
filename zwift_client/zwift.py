"""Zwift REST API client with OAuth password / refresh-token authentication.

Basic usage:

    from zwift_client import ZwiftAPI

    async with ZwiftAPI("rider@example.com", "secret") as api:
        await api.authenticate()
        profile = await api.get_profile(12345)
        print(profile.body["firstName"])

    # Hand a token to another instance without a second login
    other = ZwiftAPI()
    await other.authenticate(api.auth_token)
"""

from __future__ import annotations

import asyncio
import inspect
import json as json_module
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Mapping, Union
from urllib.parse import urlencode

from .base import RequestClient
from .config import ZwiftConfig
from .models import (
    APIResponse,
    AuthenticationError,
    AuthNotSetError,
    AuthProtocolError,
    AuthToken,
    ConfigurationError,
    TransportError,
    now_millis,
)
from .transport import Transport

logger = logging.getLogger(__name__)

TOKEN_PATH = "/auth/realms/zwift/protocol/openid-connect/token"

QueryValue = Union[str, int, float, bool, None]
Query = Union[Mapping[str, QueryValue], Iterable[tuple[str, QueryValue]]]
OnPage = Callable[[list[Any]], Union[bool, None, Awaitable[Union[bool, None]]]]

# Distinguishes "use the configured timeout" from an explicit None
_DEFAULT_TIMEOUT: Any = object()


class AuthState(str, Enum):
    """Lifecycle of a ZwiftAPI token."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"
    FAILED = "failed"


def _query_value(value: QueryValue) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _query_pairs(query: Query | None) -> list[tuple[str, str]]:
    """Flatten a query mapping or pair sequence into string pairs."""
    if not query:
        return []
    items = query.items() if isinstance(query, Mapping) else query
    return [(str(k), _query_value(v)) for k, v in items]


def _has_header(headers: Mapping[str, str], name: str) -> bool:
    return any(k.lower() == name for k in headers)


class ZwiftAPI:
    """Client for the Zwift REST API.

    Holds one OAuth token at a time. ``authenticate()`` obtains it (adopting
    a supplied token, refreshing, or logging in with username/password);
    ``fetch()`` and friends attach it as a bearer header. Ordinary HTTP
    errors are returned in the APIResponse wrapper, not raised.

    Concurrent ``authenticate()`` calls on one instance race on the stored
    token; the last writer wins.

    Args:
        username: Account username (e-mail).
        password: Account password.
        config: Hosts, timeouts and refresh behavior.
        transport: Transport for the underlying RequestClient.
    """

    def __init__(
        self,
        username: str | None = None,
        password: str | None = None,
        config: ZwiftConfig | None = None,
        transport: Transport | None = None,
    ) -> None:
        self._username = username or ""
        self._password = password or ""
        self._config = config or ZwiftConfig()
        self._client = RequestClient(transport=transport)

        self._auth_token: AuthToken | None = None
        self._state = AuthState.UNAUTHENTICATED
        self._refresh_task: asyncio.Task | None = None
        self._closed = False

    @property
    def config(self) -> ZwiftConfig:
        return self._config

    @property
    def username(self) -> str:
        return self._username

    @property
    def auth_token(self) -> AuthToken | None:
        """The held token, suitable for ``authenticate()`` on another instance."""
        return self._auth_token

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def request_client(self) -> RequestClient:
        return self._client

    def _has_credentials(self) -> bool:
        return bool(self._username and self._password)

    def _settle_state(self) -> None:
        self._state = (
            AuthState.AUTHENTICATED if self.is_authenticated() else AuthState.UNAUTHENTICATED
        )

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    async def authenticate(
        self,
        auth_token: AuthToken | Mapping[str, Any] | None = None,
    ) -> AuthToken:
        """Make sure a live token is held.

        Args:
            auth_token: Token exported from another client. Adopted as-is when
                        unexpired, without any network call.

        Returns:
            The held token.

        Raises:
            ConfigurationError: No usable token and no username/password.
            AuthenticationError: The server rejected the credentials.
            AuthProtocolError: The token endpoint answered unexpectedly.
            TransportError: Network failure or timeout.
        """
        if auth_token is not None:
            if not isinstance(auth_token, AuthToken):
                try:
                    auth_token = AuthToken.from_dict(dict(auth_token))
                except (KeyError, TypeError, ValueError) as e:
                    raise ConfigurationError(f"Invalid auth token: {e!r}") from e
            self._cancel_refresh()
            self._auth_token = auth_token
            if self.is_authenticated():
                logger.debug("Adopted supplied auth token for %s", self._username or "<anonymous>")
                self._state = AuthState.AUTHENTICATED
                self._schedule_refresh(auth_token.expires_at)
                return auth_token
        elif self.is_authenticated():
            return self._auth_token

        if self._auth_token is not None and self._auth_token.refresh_token:
            return await self._refresh_with_fallback()

        if self._has_credentials():
            return await self._password_login()

        self._state = AuthState.FAILED
        raise ConfigurationError("Login credentials not set")

    async def refresh_token(self) -> AuthToken:
        """Exchange the held refresh token for a new token.

        Raises:
            ConfigurationError: If no refresh token is held.
        """
        if self._auth_token is None or not self._auth_token.refresh_token:
            raise ConfigurationError("No auth token to refresh")
        return await self._exchange(
            {
                "client_id": self._config.client_id,
                "grant_type": "refresh_token",
                "refresh_token": self._auth_token.refresh_token,
            },
            AuthState.REFRESHING,
        )

    async def _password_login(self) -> AuthToken:
        logger.debug("Logging in as %s", self._username)
        return await self._exchange(
            {
                "client_id": self._config.client_id,
                "grant_type": "password",
                "password": self._password,
                "username": self._username,
            },
            AuthState.AUTHENTICATING,
        )

    async def _refresh_with_fallback(self) -> AuthToken:
        """Refresh; on failure fall back to a password login when possible."""
        try:
            return await self.refresh_token()
        except (AuthenticationError, AuthProtocolError, TransportError) as e:
            if self._closed or not self._has_credentials():
                raise
            logger.warning("Token refresh failed for %s (%s), logging in again", self._username, e)
        return await self._password_login()

    async def _exchange(self, form: dict[str, str], state: AuthState) -> AuthToken:
        """POST a grant to the token endpoint and store the resulting token."""
        self._state = state
        try:
            r = await self.fetch(
                TOKEN_PATH,
                host=self._config.auth_host,
                no_auth=True,
                method="POST",
                ok=[200, 401],
                headers={"accept": "application/json"},
                body=urlencode(form),
            )
        except TransportError:
            self._settle_state()
            raise

        try:
            payload = json_module.loads(r.body) if r.body else None
        except ValueError:
            payload = None

        if r.status_code == 401:
            self._state = AuthState.FAILED
            description = payload.get("error_description") if isinstance(payload, dict) else None
            raise AuthenticationError(description or "Login failed", status_code=401)
        if r.status_code != 200:
            self._state = AuthState.FAILED
            raise AuthProtocolError(
                f"Token request failed with HTTP {r.status_code}", status_code=r.status_code
            )

        try:
            token = AuthToken.from_token_response(payload)
        except AuthProtocolError:
            self._state = AuthState.FAILED
            raise

        if self._closed:
            raise TransportError("Client is closed")
        self._auth_token = token
        self._state = AuthState.AUTHENTICATED
        self._schedule_refresh(token.expires_at)
        return token

    def is_authenticated(self) -> bool:
        """True if a non-empty, unexpired access token is held. No network probe."""
        token = self._auth_token
        return token is not None and bool(token.access_token) and not token.is_expired()

    def clear_auth(self) -> None:
        """Drop the held token and cancel any scheduled refresh."""
        self._cancel_refresh()
        self._auth_token = None
        self._state = AuthState.UNAUTHENTICATED

    # -------------------------------------------------------------------------
    # Scheduled refresh
    # -------------------------------------------------------------------------

    def _schedule_refresh(self, expires_at: int) -> None:
        if not self._config.auto_refresh_auth or self._closed:
            return
        # A refresh that reschedules itself must not cancel itself
        if self._refresh_task is not asyncio.current_task():
            self._cancel_refresh()

        remaining = (expires_at - now_millis()) / 1000
        delay = remaining - self._config.refresh_margin
        if delay < self._config.min_refresh_delay:
            delay = max(remaining / 2, self._config.min_refresh_delay)
        self._refresh_task = asyncio.get_running_loop().create_task(self._refresh_later(delay))
        logger.debug("Scheduled token refresh for %s in %.1fs", self._username, delay)

    async def _refresh_later(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            await self._refresh_with_fallback()
        except (ConfigurationError, AuthenticationError, AuthProtocolError, TransportError) as e:
            logger.warning("Background token refresh failed for %s: %s", self._username, e)
        finally:
            if self._refresh_task is asyncio.current_task():
                self._refresh_task = None

    def _cancel_refresh(self) -> None:
        task, self._refresh_task = self._refresh_task, None
        if task is not None and not task.done():
            task.cancel()

    @property
    def refresh_scheduled(self) -> bool:
        """True while a background refresh is pending."""
        return self._refresh_task is not None and not self._refresh_task.done()

    # -------------------------------------------------------------------------
    # Request plumbing
    # -------------------------------------------------------------------------

    def _build_url(self, path: str, host: str | None, query: Query | None) -> str:
        if path.startswith(("https://", "http://")):
            url = path
        else:
            url = f"https://{host or self._config.api_host}/{path.lstrip('/')}"
        query_string = urlencode(_query_pairs(query))
        if query_string:
            url += ("&" if "?" in url else "?") + query_string
        return url

    async def fetch(
        self,
        path: str,
        *,
        host: str | None = None,
        no_auth: bool = False,
        method: str | None = None,
        json: Any = None,
        api_version: str | None = None,
        query: Query | None = None,
        timeout: float | None = _DEFAULT_TIMEOUT,
        ok: Iterable[int] | None = None,
        headers: Mapping[str, str] | None = None,
        body: str | None = None,
    ) -> APIResponse[str]:
        """Issue one API call and return the raw body.

        Args:
            path: Path on the API host, or an absolute URL.
            host: Host override (e.g. the auth host).
            no_auth: Skip the bearer header and the authentication check.
            method: HTTP method. Defaults to POST with a body, GET without.
            json: Value serialized as the JSON request body.
            api_version: Sent as ``Zwift-Api-Version``.
            query: Query parameters appended to the URL.
            timeout: Seconds before the call is cancelled. None disables it.
            ok: Status codes counted as success. Default: any status < 400.
            headers: Extra headers, overriding the client identification headers.
            body: Pre-serialized body, sent form-encoded unless a Content-Type is given.

        Returns:
            APIResponse whose ``error`` echoes the body when the status is not ok.

        Raises:
            AuthNotSetError: Authenticated call without a live token.
            TransportError: Network failure or timeout.
        """
        request_headers = dict(self._config.client_headers)
        if headers:
            request_headers.update(headers)

        if not no_auth:
            if not self.is_authenticated():
                raise AuthNotSetError()
            request_headers["Authorization"] = f"Bearer {self._auth_token.access_token}"

        if json is not None:
            body = json_module.dumps(json)
            request_headers["Content-Type"] = "application/json"
        elif body and not _has_header(request_headers, "content-type"):
            request_headers["Content-Type"] = "application/x-www-form-urlencoded"

        if api_version:
            request_headers["Zwift-Api-Version"] = api_version

        url = self._build_url(path, host, query)
        if timeout is _DEFAULT_TIMEOUT:
            timeout = self._config.timeout

        call = self._client.request(
            url, body, method=method, headers=request_headers, timeout=timeout or None
        )
        if timeout:
            try:
                resp = await asyncio.wait_for(call, timeout)
            except asyncio.TimeoutError as e:
                logger.error("Request to %s timed out after %ss", url, timeout)
                raise TransportError(f"Request to {url} timed out after {timeout}s", e) from e
        else:
            resp = await call

        status = resp.status_code
        text = resp.text
        allowed = list(ok) if ok is not None else None
        if not status or (allowed is not None and status not in allowed) or (
            allowed is None and status >= 400
        ):
            return APIResponse(status_code=status, body=text, error=text)
        return APIResponse(status_code=status, body=text)

    async def fetch_json(self, path: str, **options: Any) -> APIResponse[Any]:
        """Like ``fetch`` but decodes the body as JSON.

        204 and 404 responses carry no body. Transport failures and JSON
        decode errors are folded into the returned wrapper.

        Raises:
            AuthNotSetError: Authenticated call without a live token.
        """
        headers = {
            k: v for k, v in (options.pop("headers", None) or {}).items() if k.lower() != "accept"
        }
        headers["accept"] = "application/json"
        try:
            r = await self.fetch(path, headers=headers, **options)
        except TransportError as e:
            return APIResponse(status_code=0, error=str(e))

        if r.status_code in (204, 404) or not r.body:
            return APIResponse(status_code=r.status_code, error=r.error)
        try:
            decoded = json_module.loads(r.body)
        except ValueError:
            logger.error("Error parsing JSON from %s", path)
            return APIResponse(
                status_code=r.status_code,
                error=r.error or f"Error parsing JSON: {r.body[:200]}",
            )
        return APIResponse(status_code=r.status_code, body=decoded, error=r.error)

    async def fetch_paged(
        self,
        path: str,
        *,
        start: int = 0,
        limit: int | None = None,
        page_limit: int | None = None,
        on_page: OnPage | None = None,
        query: Query | None = None,
        **options: Any,
    ) -> APIResponse[list[Any]]:
        """Fetch every page of a ``start``/``limit`` paginated list.

        Args:
            path: Path of the list endpoint.
            start: Offset of the first item.
            limit: Page size. Defaults to ``config.default_page_size``.
            page_limit: Maximum pages; 0 means unlimited. Defaults to
                        ``config.default_page_limit``.
            on_page: Called with each non-empty page (sync or async). Returning
                     ``False`` stops pagination.
            query: Extra query parameters.
            **options: Passed through to ``fetch_json``.

        Returns:
            APIResponse with all items in order, or the first failing page's response.
        """
        limit = limit or self._config.default_page_size
        if page_limit is None:
            page_limit = self._config.default_page_limit
        base_query = [(k, v) for k, v in _query_pairs(query) if k not in ("start", "limit")]

        results: list[Any] = []
        offset = start
        pages = 0
        while True:
            page_query = base_query + [("limit", str(limit)), ("start", str(offset))]
            resp = await self.fetch_json(path, query=page_query, **options)
            if resp.error is not None or resp.status_code >= 400 or resp.body is None:
                return resp

            page = resp.body
            if not isinstance(page, list):
                return APIResponse(
                    status_code=resp.status_code,
                    error=f"Expected a list from {path}, got {type(page).__name__}",
                )
            results.extend(page)

            if on_page is not None and page:
                outcome = on_page(page)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
                if outcome is False:
                    break

            pages += 1
            if len(page) < limit or (page_limit and pages >= page_limit):
                break
            offset += len(page)

        return APIResponse(status_code=200, body=results)

    # -------------------------------------------------------------------------
    # Domain calls
    # -------------------------------------------------------------------------

    async def get_profile(self, athlete_id: int | str, **options: Any) -> APIResponse[Any]:
        return await self.fetch_json(f"/api/profiles/{athlete_id}", **options)

    async def get_power_profile(self) -> APIResponse[Any]:
        return await self.fetch_json("/api/power-curve/power-profile")

    async def get_activities(self, athlete_id: int | str) -> APIResponse[Any]:
        return await self.fetch_json(f"/api/profiles/{athlete_id}/activities")

    async def get_activity(
        self,
        activity_id: int | str,
        fetch_snapshots: bool = False,
        fetch_event: bool = False,
    ) -> APIResponse[Any]:
        return await self.fetch_json(
            f"/api/activities/{activity_id}",
            query={"fetchSnapshots": fetch_snapshots, "fetchEvent": fetch_event},
        )

    async def get_game_info(self) -> APIResponse[Any]:
        return await self.fetch_json("/api/game_info", api_version="2.7")

    async def search_profiles(self, search_text: str, **options: Any) -> APIResponse[list[Any]]:
        """Search athletes by name."""
        options.setdefault("method", "POST")
        options.setdefault("json", {"query": search_text})
        return await self.fetch_paged("/api/search/profiles", **options)

    async def get_following(self, athlete_id: int | str, **options: Any) -> APIResponse[list[Any]]:
        """Athletes followed by ``athlete_id``."""
        return await self.fetch_paged(f"/api/profiles/{athlete_id}/followees", **options)

    async def get_followers(self, athlete_id: int | str, **options: Any) -> APIResponse[list[Any]]:
        """Athletes following ``athlete_id``."""
        return await self.fetch_paged(f"/api/profiles/{athlete_id}/followers", **options)

    async def set_following(self, them: int | str, us: int | str) -> APIResponse[Any]:
        """Make athlete ``us`` follow athlete ``them``."""
        return await self.fetch_json(
            f"/api/profiles/{us}/following/{them}",
            method="POST",
            json={"followeeId": them, "followerId": us},
        )

    async def get_notifications(self) -> APIResponse[Any]:
        return await self.fetch_json("/api/notifications")

    async def get_private_event_feed(
        self,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> APIResponse[Any]:
        query = {
            "organizer_only_past_events": False,
            "start_date": start_date,
            "end_date": end_date,
        }
        return await self.fetch_json("/api/private_event/feed", query=query)

    async def get_private_event(self, event_id: int | str) -> APIResponse[Any]:
        return await self.fetch_json(f"/api/private_event/{event_id}")

    async def get_event_subgroup_results(self, subgroup_id: int | str) -> APIResponse[list[Any]]:
        return await self.fetch_paged(
            "/api/race-results/entries",
            query={"event_subgroup_id": subgroup_id},
        )

    async def get_event(self, event_id: int | str) -> APIResponse[Any]:
        return await self.fetch_json(f"/api/events/{event_id}")

    async def get_event_subgroup_entrants(self, subgroup_id: int | str) -> APIResponse[list[Any]]:
        return await self.fetch_paged(
            f"/api/events/subgroups/entrants/{subgroup_id}",
            query={"type": "all", "participation": "signed_up"},
        )

    async def get_activity_fitness_data(self, url: str) -> APIResponse[Any]:
        """Fetch the fitness data file referenced by an activity (absolute URL or path)."""
        return await self.fetch_json(url)

    async def event_subgroup_signup(self, subgroup_id: int | str) -> APIResponse[Any]:
        return await self.fetch_json(f"/api/events/subgroups/signup/{subgroup_id}", method="POST")

    async def get_activity_feed(self) -> APIResponse[Any]:
        return await self.fetch_json(
            "/api/activity-feed/feed/",
            query={"limit": 30, "includeInProgress": False, "feedType": "JUST_ME"},
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Cancel the scheduled or in-flight refresh and close the transport."""
        self._closed = True
        self._cancel_refresh()
        await self._client.close()

    async def __aenter__(self) -> "ZwiftAPI":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

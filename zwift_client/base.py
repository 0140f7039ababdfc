"""Low-level request client: one HTTP(S) request plus cookie jar bookkeeping."""

from __future__ import annotations

import logging
from typing import Any

from .cookie_jar import CookieJar
from .models import Request, Response, TransportError
from .transport import HttpxTransport, Transport

logger = logging.getLogger(__name__)


class RequestClient:
    """Issues single requests through an injected transport.

    Outgoing requests carry the jar's cookies for the request URL, and every
    ``Set-Cookie`` header of the response is written back into the jar.
    Redirects are returned to the caller, never followed.

    Args:
        transport: Transport used for the network call. Defaults to HttpxTransport.
        cookie_jar: Initial jar. Defaults to an empty one.
    """

    def __init__(
        self,
        transport: Transport | None = None,
        cookie_jar: CookieJar | None = None,
    ) -> None:
        self._transport: Transport = transport if transport is not None else HttpxTransport()
        self._cookie_jar = cookie_jar if cookie_jar is not None else CookieJar()

    @property
    def cookie_jar(self) -> CookieJar:
        """The jar holding this client's cookies."""
        return self._cookie_jar

    @property
    def transport(self) -> Transport:
        """The injected transport."""
        return self._transport

    def set_cookies(self, cookies: str) -> None:
        """Replace the jar with one rebuilt from a serialized blob.

        Raises:
            ValueError: If ``cookies`` is not a serialized jar.
        """
        self._cookie_jar = CookieJar.deserialize(cookies)

    def clear_cookies(self) -> None:
        """Remove every cookie from the jar."""
        self._cookie_jar.remove_all()

    def _merge_cookie_header(self, url: str, headers: dict[str, str]) -> None:
        jar_cookies = self._cookie_jar.get_cookie_string(url)
        if not jar_cookies:
            return
        for name in list(headers):
            if name.lower() == "cookie":
                caller_value = headers.pop(name)
                headers["Cookie"] = f"{caller_value}; {jar_cookies}" if caller_value else jar_cookies
                return
        headers["Cookie"] = jar_cookies

    def store_set_cookie(self, url: str, set_cookie: str | list[str] | None) -> None:
        """Apply one Set-Cookie value or an ordered list of them to the jar."""
        if not set_cookie:
            return
        if isinstance(set_cookie, str):
            set_cookie = [set_cookie]
        for header in set_cookie:
            if self._cookie_jar.set_cookie(header, url) is None:
                logger.debug("Ignored Set-Cookie header for %s: %r", url, header)

    async def request(
        self,
        url: str,
        body: str | None = None,
        *,
        method: str | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> Response:
        """Issue one request.

        Args:
            url: Absolute request URL.
            body: Pre-serialized request body.
            method: HTTP method. Defaults to POST with a body, GET without.
            headers: Request headers. A ``Cookie`` header is merged with the jar.
            timeout: Request timeout in seconds.

        Returns:
            Response object (3xx responses included).

        Raises:
            TransportError: On connection or transport errors.
        """
        request_headers: dict[str, str] = dict(headers) if headers else {}
        self._merge_cookie_header(url, request_headers)
        if body:
            for name in [n for n in request_headers if n.lower() == "content-length"]:
                del request_headers[name]
            request_headers["content-length"] = str(len(body.encode("utf-8")))

        request = Request(
            method=method or ("POST" if body else "GET"),
            url=url,
            headers=request_headers,
            body=body,
            timeout=timeout,
        )

        try:
            response = await self._transport.request(request, timeout=timeout)
        except TransportError as e:
            logger.error("Error [%s]: %s", url, e)
            raise

        self.store_set_cookie(url, response.set_cookie)
        return response

    async def close(self) -> None:
        """Close the transport."""
        await self._transport.close()

    async def __aenter__(self) -> "RequestClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

"""httpx-based transport (the default)."""

from __future__ import annotations

import logging
import time

import httpx

from ..models import Request, Response, TransportError
from .base import BaseTransport

logger = logging.getLogger(__name__)


class HttpxTransport(BaseTransport):
    """Async httpx wrapper with lazy client initialization.

    The underlying ``httpx.AsyncClient`` has redirects disabled and an empty
    cookie jar that is cleared after every call, so that cookie state lives
    only in the caller's CookieJar.
    """

    def __init__(
        self,
        default_timeout: float = 30.0,
        connect_timeout: float = 10.0,
        verify_ssl: bool = True,
        http2: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize httpx transport.

        Args:
            default_timeout: Default request timeout in seconds.
            connect_timeout: Connection timeout in seconds.
            verify_ssl: Whether to verify SSL certificates.
            http2: Whether to use HTTP/2 (requires the ``h2`` package).
            transport: Custom httpx transport, e.g. ``httpx.MockTransport``.
        """
        super().__init__(default_timeout, connect_timeout, verify_ssl)
        self._http2 = http2
        self._httpx_transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create async client (lazy initialization)."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._default_timeout, connect=self._connect_timeout),
                verify=self._verify_ssl,
                http2=self._http2,
                follow_redirects=False,
                transport=self._httpx_transport,
            )
        return self._client

    async def request(self, request: Request, timeout: float | None = None) -> Response:
        """Execute an asynchronous HTTP request.

        Args:
            request: The request to execute.
            timeout: Request timeout in seconds.

        Returns:
            Response object.

        Raises:
            TransportError: On connection or transport errors.
        """
        if self._closed:
            raise TransportError("Transport is closed")

        client = self._get_client()
        effective_timeout = timeout or request.timeout or self._default_timeout
        content = request.body.encode("utf-8") if request.body is not None else None

        start_time = time.monotonic()
        try:
            resp = await client.request(
                method=request.method,
                url=request.url,
                headers=request.headers or None,
                content=content,
                timeout=httpx.Timeout(effective_timeout, connect=self._connect_timeout),
            )
        except httpx.HTTPError as e:
            raise TransportError(
                f"Request failed: {type(e).__name__}: {e}",
                original_error=e,
            ) from e
        finally:
            client.cookies.clear()

        elapsed = time.monotonic() - start_time
        logger.debug("%s %s -> %d (%.2fs)", request.method, request.url, resp.status_code, elapsed)
        return self._convert_response(resp, request, elapsed)

    def _convert_response(
        self,
        httpx_resp: httpx.Response,
        request: Request,
        elapsed: float,
    ) -> Response:
        """Convert httpx.Response to our Response model."""
        return Response(
            status_code=httpx_resp.status_code,
            headers={k.lower(): v for k, v in httpx_resp.headers.items()},
            content=httpx_resp.content,
            url=str(httpx_resp.url),
            set_cookie=httpx_resp.headers.get_list("set-cookie"),
            elapsed=elapsed,
            request=request,
        )

    async def close(self) -> None:
        """Close async client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        await super().close()

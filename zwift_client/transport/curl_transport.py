"""curl_cffi transport implementation with TLS fingerprinting support."""

from __future__ import annotations

import logging
import time
from typing import Any

from ..models import Request, Response, TransportError
from .base import BaseTransport

try:
    from curl_cffi.requests import AsyncSession

    CURL_AVAILABLE = True
except ImportError:
    CURL_AVAILABLE = False
    AsyncSession = None

logger = logging.getLogger(__name__)


class CurlTransport(BaseTransport):
    """Transport using curl_cffi to impersonate a browser's TLS fingerprint.

    Useful for the ZwiftPower portal, which serves HTML to browsers. Install
    with ``pip install zwift-client[curl]``.
    """

    def __init__(
        self,
        impersonate: str | None = "chrome",
        default_timeout: float = 30.0,
        connect_timeout: float = 10.0,
        verify_ssl: bool = True,
    ):
        """Initialize curl transport.

        Args:
            impersonate: Browser to impersonate (e.g., "chrome", "safari").
            default_timeout: Default request timeout.
            connect_timeout: Connection timeout.
            verify_ssl: Whether to verify SSL certificates.

        Raises:
            ImportError: If curl_cffi is not installed.
        """
        if not CURL_AVAILABLE:
            raise ImportError(
                "curl_cffi is required for CurlTransport. "
                "Install with: pip install curl_cffi"
            )
        super().__init__(default_timeout, connect_timeout, verify_ssl)
        self._impersonate = impersonate
        self._session: Any = None

    def _get_session(self) -> Any:
        """Get or create async session."""
        if self._session is None:
            self._session = AsyncSession(impersonate=self._impersonate)
        return self._session

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

        session = self._get_session()
        effective_timeout = timeout or request.timeout or self._default_timeout

        start_time = time.monotonic()
        try:
            raw_response = await session.request(
                method=request.method,
                url=request.url,
                headers=request.headers or {},
                data=request.body.encode("utf-8") if request.body is not None else None,
                timeout=(self._connect_timeout, effective_timeout),
                verify=self._verify_ssl,
                allow_redirects=False,
            )
        except Exception as e:
            raise TransportError(
                f"Request failed: {type(e).__name__}: {e}",
                original_error=e,
            ) from e
        finally:
            session.cookies.clear()

        elapsed = time.monotonic() - start_time
        logger.debug(
            "%s %s -> %d (%.2fs)", request.method, request.url, raw_response.status_code, elapsed
        )
        return self._convert_response(raw_response, request, elapsed)

    def _convert_response(
        self,
        raw_response: Any,
        request: Request,
        elapsed: float,
    ) -> Response:
        """Convert curl_cffi response to our Response model."""
        return Response(
            status_code=raw_response.status_code,
            headers={k.lower(): v for k, v in raw_response.headers.items()},
            content=raw_response.content,
            url=str(raw_response.url),
            set_cookie=list(raw_response.headers.get_list("set-cookie")),
            elapsed=elapsed,
            request=request,
        )

    async def close(self) -> None:
        """Close async session."""
        if self._session is not None:
            await self._session.close()
            self._session = None
        await super().close()

"""Tests for transport layer."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from zwift_client import Request, TransportError
from zwift_client.transport import CurlTransport, HttpxTransport, Transport
from zwift_client.transport.base import BaseTransport


class TestHttpxTransport:
    """Tests for HttpxTransport against httpx.MockTransport."""

    @pytest.mark.asyncio
    async def test_request_success(self):
        """Test a request is sent and converted."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, headers={"Content-Type": "application/json"}, text='{"ok": true}')

        transport = HttpxTransport(transport=httpx.MockTransport(handler))
        response = await transport.request(Request(
            method="POST",
            url="https://example.com/api",
            headers={"X-Test": "1"},
            body="a=1&b=%C3%A9",
        ))

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json"
        assert response.json() == {"ok": True}
        assert seen[0].method == "POST"
        assert seen[0].headers["x-test"] == "1"
        assert seen[0].content == b"a=1&b=%C3%A9"
        await transport.close()

    @pytest.mark.asyncio
    async def test_redirects_not_followed(self):
        """Test 3xx responses are returned as-is."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(302, headers={"Location": "https://example.com/next"})

        transport = HttpxTransport(transport=httpx.MockTransport(handler))
        response = await transport.request(Request(method="GET", url="https://example.com/"))

        assert response.status_code == 302
        assert response.location == "https://example.com/next"
        await transport.close()

    @pytest.mark.asyncio
    async def test_every_set_cookie_header_kept(self):
        """Test multiple Set-Cookie headers are preserved in order."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers=[
                ("Set-Cookie", "a=1; Path=/"),
                ("Set-Cookie", "b=2; Path=/"),
            ])

        transport = HttpxTransport(transport=httpx.MockTransport(handler))
        response = await transport.request(Request(method="GET", url="https://example.com/"))

        assert response.set_cookie == ["a=1; Path=/", "b=2; Path=/"]
        await transport.close()

    @pytest.mark.asyncio
    async def test_no_cookies_retained_between_requests(self):
        """Test the httpx client never replays cookies on its own."""
        cookie_headers = []

        def handler(request: httpx.Request) -> httpx.Response:
            cookie_headers.append(request.headers.get("cookie"))
            return httpx.Response(200, headers={"Set-Cookie": "sid=abc; Path=/"})

        transport = HttpxTransport(transport=httpx.MockTransport(handler))
        await transport.request(Request(method="GET", url="https://example.com/"))
        await transport.request(Request(method="GET", url="https://example.com/"))

        assert cookie_headers == [None, None]
        await transport.close()

    @pytest.mark.asyncio
    async def test_http_error_wrapped(self):
        """Test httpx errors become TransportError."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        transport = HttpxTransport(transport=httpx.MockTransport(handler))

        with pytest.raises(TransportError, match="ConnectError") as exc_info:
            await transport.request(Request(method="GET", url="https://example.com/"))

        assert isinstance(exc_info.value.original_error, httpx.ConnectError)
        await transport.close()

    @pytest.mark.asyncio
    async def test_closed_raises(self):
        """Test request on closed transport raises."""
        transport = HttpxTransport()
        await transport.close()

        with pytest.raises(TransportError, match="closed"):
            await transport.request(Request(method="GET", url="https://example.com"))

    @pytest.mark.asyncio
    async def test_context_manager(self):
        """Test async context manager."""
        async with HttpxTransport() as transport:
            assert not transport.is_closed

        assert transport.is_closed

    def test_satisfies_protocol(self):
        """Test runtime protocol check."""
        assert isinstance(HttpxTransport(), Transport)


class TestCurlTransport:
    """Tests for CurlTransport."""

    def test_init_defaults(self):
        """Test transport initialization with defaults."""
        with patch("zwift_client.transport.curl_transport.CURL_AVAILABLE", True):
            with patch("zwift_client.transport.curl_transport.AsyncSession"):
                transport = CurlTransport()

                assert transport._default_timeout == 30.0
                assert transport._connect_timeout == 10.0
                assert transport._impersonate == "chrome"
                assert not transport.is_closed

    def test_unavailable_raises(self):
        """Test error when curl_cffi is missing."""
        with patch("zwift_client.transport.curl_transport.CURL_AVAILABLE", False):
            with pytest.raises(ImportError, match="curl_cffi"):
                CurlTransport()

    @pytest.mark.asyncio
    async def test_closed_raises(self):
        """Test request on closed transport raises."""
        with patch("zwift_client.transport.curl_transport.CURL_AVAILABLE", True):
            with patch("zwift_client.transport.curl_transport.AsyncSession"):
                transport = CurlTransport()
                await transport.close()

                with pytest.raises(TransportError, match="closed"):
                    await transport.request(Request(method="GET", url="https://example.com"))


class TestCurlTransportWithMockSession:
    """Tests for CurlTransport with mocked session."""

    @pytest.fixture
    def mock_async_session(self):
        """Create mock async curl session."""
        session = MagicMock()
        response = MagicMock()
        response.status_code = 302
        response.headers = MagicMock()
        response.headers.items.return_value = [("Location", "/next"), ("Set-Cookie", "a=1")]
        response.headers.get_list.return_value = ["a=1", "b=2"]
        response.content = b""
        response.url = "https://example.com/"
        session.request = AsyncMock(return_value=response)
        session.close = AsyncMock()
        return session

    @pytest.mark.asyncio
    async def test_request_success(self, mock_async_session):
        """Test successful async request."""
        with patch("zwift_client.transport.curl_transport.CURL_AVAILABLE", True):
            with patch("zwift_client.transport.curl_transport.AsyncSession", return_value=mock_async_session):
                transport = CurlTransport(default_timeout=20.0, connect_timeout=5.0)
                response = await transport.request(Request(
                    method="POST", url="https://example.com/", body="x=1",
                ))

                assert response.status_code == 302
                assert response.location == "/next"
                assert response.set_cookie == ["a=1", "b=2"]

                kwargs = mock_async_session.request.call_args.kwargs
                assert kwargs["allow_redirects"] is False
                assert kwargs["data"] == b"x=1"
                assert kwargs["timeout"] == (5.0, 20.0)
                mock_async_session.cookies.clear.assert_called_once()

                await transport.close()
                mock_async_session.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_request_error_handling(self, mock_async_session):
        """Test async request error handling."""
        mock_async_session.request.side_effect = Exception("Connection failed")

        with patch("zwift_client.transport.curl_transport.CURL_AVAILABLE", True):
            with patch("zwift_client.transport.curl_transport.AsyncSession", return_value=mock_async_session):
                transport = CurlTransport()

                with pytest.raises(TransportError, match="Connection failed"):
                    await transport.request(Request(method="GET", url="https://example.com"))


class TestBaseTransport:
    """Tests for BaseTransport abstract class."""

    def test_cannot_instantiate(self):
        """Test that BaseTransport cannot be instantiated directly."""
        with pytest.raises(TypeError):
            BaseTransport()

"""Transport layer implementations."""

from .base import BaseTransport, Transport
from .curl_transport import CURL_AVAILABLE, CurlTransport
from .httpx_transport import HttpxTransport

__all__ = ["Transport", "BaseTransport", "HttpxTransport", "CurlTransport", "CURL_AVAILABLE"]

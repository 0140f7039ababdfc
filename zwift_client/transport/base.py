"""Abstract transport protocol for HTTP requests."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Protocol, runtime_checkable

from ..models import Request, Response


@runtime_checkable
class Transport(Protocol):
    """Protocol defining the transport interface.

    Transports handle the actual HTTP communication. They never follow
    redirects and never keep cookies: both are the caller's job.
    """

    async def request(self, request: Request, timeout: float | None = None) -> Response:
        """Execute an HTTP request.

        Args:
            request: The request to execute.
            timeout: Request timeout in seconds.

        Returns:
            Response object.

        Raises:
            TransportError: On connection or transport errors.
        """
        ...

    async def close(self) -> None:
        """Close resources."""
        ...


class BaseTransport(ABC):
    """Abstract base class for transport implementations.

    Provides common functionality and enforces the transport interface.
    """

    def __init__(
        self,
        default_timeout: float = 30.0,
        connect_timeout: float = 10.0,
        verify_ssl: bool = True,
    ):
        """Initialize transport.

        Args:
            default_timeout: Default request timeout.
            connect_timeout: Connection timeout.
            verify_ssl: Whether to verify SSL certificates.
        """
        self._default_timeout = default_timeout
        self._connect_timeout = connect_timeout
        self._verify_ssl = verify_ssl
        self._closed = False

    @property
    def is_closed(self) -> bool:
        """Check if transport has been closed."""
        return self._closed

    @abstractmethod
    async def request(self, request: Request, timeout: float | None = None) -> Response:
        """Execute an HTTP request."""
        raise NotImplementedError

    async def close(self) -> None:
        """Close resources."""
        self._closed = True

    async def __aenter__(self) -> "BaseTransport":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

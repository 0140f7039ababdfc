"""Multi-credential connection pool with round-robin selection and failover."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Sequence, TypeVar, Union

from .config import PoolConfig
from .models import (
    AuthenticationError,
    AuthProtocolError,
    ConfigurationError,
    Credential,
    PoolExhaustedError,
    TransportError,
)
from .zwift import ZwiftAPI
from .zwift_power import ZwiftPowerAPI

logger = logging.getLogger(__name__)

C = TypeVar("C", ZwiftAPI, ZwiftPowerAPI)

# Failures that make the pool move on to the next credential
_CANDIDATE_ERRORS = (ConfigurationError, AuthenticationError, AuthProtocolError, TransportError)


@dataclass
class PoolEntry:
    """One credential and the pair of clients built from it."""

    credential: Credential
    zwift: ZwiftAPI
    zwift_power: ZwiftPowerAPI


class ConnectionPool:
    """Round-robin pool of ZwiftAPI / ZwiftPowerAPI clients, one pair per credential.

    ``next_client()`` and ``next_power_client()`` only rotate. The
    ``*_authenticated()`` variants probe at most one full rotation and return
    the first client that is (or becomes) authenticated, so a locked-out or
    rate-limited account is skipped in favor of the next one.

    Each client type has its own cursor. Cursors are plain integers with no
    locking: concurrent callers may observe the same value.

    Args:
        config: PoolConfig, or a sequence of Credential / {"username", "password"} items.
    """

    def __init__(
        self,
        config: PoolConfig | Sequence[Union[Credential, dict[str, str]]],
    ) -> None:
        if not isinstance(config, PoolConfig):
            config = PoolConfig(credentials=list(config or []))
        self._config = config
        self._log_level = logging.INFO if config.debug else logging.DEBUG

        factory = config.transport_factory
        self._entries: list[PoolEntry] = [
            PoolEntry(
                credential=cred,
                zwift=ZwiftAPI(
                    cred.username,
                    cred.password,
                    config=config.zwift,
                    transport=factory() if factory else None,
                ),
                zwift_power=ZwiftPowerAPI(
                    cred.username,
                    cred.password,
                    config=config.zwift_power,
                    transport=factory() if factory else None,
                ),
            )
            for cred in config.credentials
        ]
        if not self._entries:
            raise ConfigurationError("No credentials provided")

        self._zwift_cursor = 0
        self._zwift_power_cursor = 0
        self._log("Constructed %d connections", len(self._entries))

    def _log(self, msg: str, *args: Any) -> None:
        logger.log(self._log_level, "ConnectionPool: " + msg, *args)

    @property
    def entries(self) -> list[PoolEntry]:
        return list(self._entries)

    @property
    def zwift_cursor(self) -> int:
        """Index of the ZwiftAPI handed out last."""
        return self._zwift_cursor

    @property
    def zwift_power_cursor(self) -> int:
        """Index of the ZwiftPowerAPI handed out last."""
        return self._zwift_power_cursor

    def __len__(self) -> int:
        return len(self._entries)

    # -------------------------------------------------------------------------
    # Round-robin
    # -------------------------------------------------------------------------

    def next_client(self) -> ZwiftAPI:
        """Rotate to the next ZwiftAPI. No authentication."""
        self._zwift_cursor = (self._zwift_cursor + 1) % len(self._entries)
        self._log("next_client returning connection [%d]", self._zwift_cursor)
        return self._entries[self._zwift_cursor].zwift

    def next_power_client(self) -> ZwiftPowerAPI:
        """Rotate to the next ZwiftPowerAPI. No authentication."""
        self._zwift_power_cursor = (self._zwift_power_cursor + 1) % len(self._entries)
        self._log("next_power_client returning connection [%d]", self._zwift_power_cursor)
        return self._entries[self._zwift_power_cursor].zwift_power

    # -------------------------------------------------------------------------
    # Round-robin with failover
    # -------------------------------------------------------------------------

    async def _probe(self, cursor: int, pick: Callable[[PoolEntry], C], kind: str) -> tuple[int, C]:
        """Try each candidate once starting after ``cursor``; return (index, client)."""
        n = len(self._entries)
        start = (cursor + 1) % n
        last_error: Exception | None = None

        for i in range(n):
            idx = (start + i) % n
            client = pick(self._entries[idx])
            if client.is_authenticated():
                self._log("%s: connection [%d] already authenticated", kind, idx)
                return idx, client

            self._log("%s trying connection [%d]", kind, idx)
            try:
                await client.authenticate()
            except _CANDIDATE_ERRORS as e:
                logger.warning(
                    "ConnectionPool: %s connection [%d] (%s) failed to authenticate: %s",
                    kind,
                    idx,
                    client.username,
                    e,
                )
                last_error = e
                continue

            self._log("%s returning connection [%d]", kind, idx)
            return idx, client

        raise PoolExhaustedError(n, last_error)

    async def next_authenticated(self) -> ZwiftAPI:
        """Next ZwiftAPI that authenticates, failing over through the pool.

        Raises:
            PoolExhaustedError: No credential authenticated in one full rotation.
        """
        idx, client = await self._probe(
            self._zwift_cursor, lambda e: e.zwift, "next_authenticated"
        )
        self._zwift_cursor = idx
        return client

    async def next_power_authenticated(self) -> ZwiftPowerAPI:
        """Next ZwiftPowerAPI that authenticates, failing over through the pool.

        Raises:
            PoolExhaustedError: No credential authenticated in one full rotation.
        """
        idx, client = await self._probe(
            self._zwift_power_cursor, lambda e: e.zwift_power, "next_power_authenticated"
        )
        self._zwift_power_cursor = idx
        return client

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Close every client in the pool."""
        await asyncio.gather(
            *(entry.zwift.close() for entry in self._entries),
            *(entry.zwift_power.close() for entry in self._entries),
        )

    async def __aenter__(self) -> "ConnectionPool":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

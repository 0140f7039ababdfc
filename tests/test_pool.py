"""Tests for ConnectionPool."""

import logging
from unittest.mock import AsyncMock

import pytest

from conftest import json_response, token_response
from zwift_client import (
    AuthenticationError,
    AuthProtocolError,
    AuthToken,
    ConfigurationError,
    ConnectionPool,
    Credential,
    PoolConfig,
    PoolExhaustedError,
    TransportError,
)
from zwift_client.models import now_millis


def make_credentials(n: int) -> list[Credential]:
    return [Credential(f"rider{i}@example.com", f"pw{i}") for i in range(n)]


@pytest.fixture
def pool_factory(transport_factory):
    """Build pools backed by mock transports."""
    def build(n: int = 3, debug: bool = False) -> ConnectionPool:
        return ConnectionPool(PoolConfig(
            credentials=make_credentials(n),
            debug=debug,
            transport_factory=transport_factory,
        ))

    return build


def mock_authenticate(pool: ConnectionPool, valid: set[int], kind: str = "zwift") -> list[AsyncMock]:
    """Replace authenticate() on every client; only ``valid`` slots succeed."""
    mocks = []
    for idx, entry in enumerate(pool.entries):
        client = getattr(entry, kind)
        if idx in valid:
            mock = AsyncMock(return_value=None)
        else:
            mock = AsyncMock(side_effect=AuthenticationError("Invalid user credentials", 401))
        client.authenticate = mock
        mocks.append(mock)
    return mocks


class TestConstruction:
    """Tests for building the pool."""

    def test_empty_credentials(self):
        """Test an empty pool is rejected."""
        with pytest.raises(ConfigurationError, match="No credentials"):
            ConnectionPool([])

    def test_one_pair_per_credential(self, transport_factory):
        """Test each credential gets its own clients and transports."""
        factory_calls = []

        def counting_factory():
            factory_calls.append(1)
            return transport_factory()

        pool = ConnectionPool(PoolConfig(
            credentials=make_credentials(3), transport_factory=counting_factory
        ))

        assert len(pool) == 3
        assert len(factory_calls) == 6
        assert [e.zwift.username for e in pool.entries] == [
            "rider0@example.com", "rider1@example.com", "rider2@example.com",
        ]
        assert pool.entries[1].zwift_power.username == "rider1@example.com"
        assert pool.zwift_cursor == 0
        assert pool.zwift_power_cursor == 0

    def test_dict_credentials(self):
        """Test plain dict credentials are accepted."""
        pool = ConnectionPool([{"username": "a@example.com", "password": "pw"}])

        assert pool.entries[0].credential == Credential("a@example.com", "pw")

    def test_debug_logs_at_info(self, pool_factory, caplog):
        """Test debug mode raises pool logging to INFO."""
        caplog.set_level(logging.INFO, logger="zwift_client.pool")

        pool_factory(debug=True)

        assert "ConnectionPool: Constructed 3 connections" in caplog.text

    def test_quiet_by_default(self, pool_factory, caplog):
        """Test pool logging stays at DEBUG otherwise."""
        caplog.set_level(logging.INFO, logger="zwift_client.pool")

        pool = pool_factory()
        pool.next_client()

        assert "ConnectionPool" not in caplog.text


class TestRoundRobin:
    """Tests for next_client() / next_power_client()."""

    def test_rotation(self, pool_factory):
        """Test the cursor advances and wraps."""
        pool = pool_factory(3)

        clients = [pool.next_client() for _ in range(4)]

        assert clients[0] is pool.entries[1].zwift
        assert clients[1] is pool.entries[2].zwift
        assert clients[2] is pool.entries[0].zwift
        assert clients[3] is clients[0]
        assert pool.zwift_cursor == 1

    def test_independent_cursors(self, pool_factory):
        """Test the two client kinds rotate separately."""
        pool = pool_factory(3)

        pool.next_client()
        pool.next_client()
        power = pool.next_power_client()

        assert pool.zwift_cursor == 2
        assert pool.zwift_power_cursor == 1
        assert power is pool.entries[1].zwift_power

    def test_single_credential(self, pool_factory):
        """Test a pool of one always returns the same client."""
        pool = pool_factory(1)

        assert pool.next_client() is pool.next_client()


class TestFailover:
    """Tests for next_authenticated() / next_power_authenticated()."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("valid_slot", range(4))
    @pytest.mark.parametrize("cursor", range(4))
    async def test_finds_only_valid_slot(self, pool_factory, valid_slot, cursor):
        """Test the single valid credential is found from any starting point."""
        pool = pool_factory(4)
        pool._zwift_cursor = cursor
        mocks = mock_authenticate(pool, {valid_slot})

        client = await pool.next_authenticated()

        assert client is pool.entries[valid_slot].zwift
        assert pool.zwift_cursor == valid_slot
        tried = [i for i, m in enumerate(mocks) if m.await_count]
        expected = []
        idx = (cursor + 1) % 4
        while True:
            expected.append(idx)
            if idx == valid_slot:
                break
            idx = (idx + 1) % 4
        assert sorted(tried) == sorted(expected)
        assert all(m.await_count <= 1 for m in mocks)

    @pytest.mark.asyncio
    async def test_all_invalid(self, pool_factory):
        """Test exhaustion after exactly one attempt per credential."""
        pool = pool_factory(3)
        mocks = mock_authenticate(pool, set())

        with pytest.raises(PoolExhaustedError) as exc_info:
            await pool.next_authenticated()

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, AuthenticationError)
        assert [m.await_count for m in mocks] == [1, 1, 1]
        assert pool.zwift_cursor == 0

    @pytest.mark.asyncio
    async def test_already_authenticated_skips_login(self, pool_factory):
        """Test a client holding a live token is returned without authenticate()."""
        pool = pool_factory(3)
        mocks = mock_authenticate(pool, {0, 1, 2})
        pool.entries[1].zwift._auth_token = AuthToken("a", "r", now_millis() + 3_600_000)

        client = await pool.next_authenticated()

        assert client is pool.entries[1].zwift
        mocks[1].assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        TransportError("connection refused"),
        AuthProtocolError("Token request failed with HTTP 503", 503),
        ConfigurationError("Login credentials not set"),
    ])
    async def test_other_failures_skipped(self, pool_factory, error):
        """Test network and protocol failures also move to the next credential."""
        pool = pool_factory(2)
        pool.entries[1].zwift.authenticate = AsyncMock(side_effect=error)
        pool.entries[0].zwift.authenticate = AsyncMock(return_value=None)

        client = await pool.next_authenticated()

        assert client is pool.entries[0].zwift

    @pytest.mark.asyncio
    async def test_power_failover(self, pool_factory):
        """Test ZwiftPower clients fail over on their own cursor."""
        pool = pool_factory(3)
        mocks = mock_authenticate(pool, {0}, kind="zwift_power")

        client = await pool.next_power_authenticated()

        assert client is pool.entries[0].zwift_power
        assert pool.zwift_power_cursor == 0
        assert pool.zwift_cursor == 0
        assert [m.await_count for m in mocks] == [1, 1, 1]

    @pytest.mark.asyncio
    async def test_power_all_invalid(self, pool_factory):
        """Test ZwiftPower exhaustion."""
        pool = pool_factory(2)
        mock_authenticate(pool, set(), kind="zwift_power")

        with pytest.raises(PoolExhaustedError):
            await pool.next_power_authenticated()

    @pytest.mark.asyncio
    async def test_failover_through_token_endpoint(self, pool_factory):
        """Test a rejected login falls through to the next account end to end."""
        pool = pool_factory(3)
        pool.entries[1].zwift.request_client.transport.request.return_value = json_response(
            {"error_description": "Invalid user credentials"}, 401
        )
        pool.entries[2].zwift.request_client.transport.request.return_value = token_response("good")

        client = await pool.next_authenticated()

        assert client is pool.entries[2].zwift
        assert client.auth_token.access_token == "good"
        assert client.is_authenticated()


class TestLifecycle:
    """Tests for closing the pool."""

    @pytest.mark.asyncio
    async def test_close_all(self, transport_factory):
        """Test every transport is closed."""
        transports = []

        def recording_factory():
            transport = transport_factory()
            transports.append(transport)
            return transport

        async with ConnectionPool(PoolConfig(
            credentials=make_credentials(2), transport_factory=recording_factory
        )):
            pass

        assert len(transports) == 4
        for transport in transports:
            transport.close.assert_awaited_once()

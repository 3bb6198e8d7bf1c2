from unittest.mock import AsyncMock, MagicMock

import pytest

from dutyledger.services.postgres import PostgresConnectionTester


@pytest.mark.asyncio
async def test_postgres_connection_tester(monkeypatch):
    connection_mock = AsyncMock()

    class DummyAcquire:
        async def __aenter__(self):
            return connection_mock

        async def __aexit__(self, exc_type, exc, tb):
            return False

    pool_mock = MagicMock()
    pool_mock.acquire.return_value = DummyAcquire()
    pool_mock.close = AsyncMock()

    captured: dict[str, object] = {}

    async def create_pool(**kwargs):
        captured.update(kwargs)
        return pool_mock

    monkeypatch.setattr("dutyledger.services.postgres.asyncpg.create_pool", create_pool)

    tester = PostgresConnectionTester("postgresql://test", min_size=2, max_size=4)
    assert await tester.test_connection() is True
    connection_mock.execute.assert_awaited_with("SELECT 1")
    assert captured == {"dsn": "postgresql://test", "min_size": 2, "max_size": 4}

    assert await tester.get_pool() is pool_mock
    await tester.close()
    pool_mock.close.assert_awaited()


@pytest.mark.asyncio
async def test_close_without_pool_is_noop():
    tester = PostgresConnectionTester("postgresql://test")
    await tester.close()

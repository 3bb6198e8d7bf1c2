from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest


class DummyTransaction:
    def __init__(self):
        self.entered = 0

    async def __aenter__(self):
        self.entered += 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class DummyAcquire:
    def __init__(self, connection):
        self._connection = connection

    async def __aenter__(self):
        return self._connection

    async def __aexit__(self, exc_type, exc, tb):
        return False


class DummyPool:
    def __init__(self, connection):
        self._connection = connection

    def acquire(self):
        return DummyAcquire(self._connection)


@pytest.fixture
def connection():
    connection = AsyncMock()
    connection.transaction = MagicMock(return_value=DummyTransaction())
    return connection


@pytest.fixture
def pool(connection):
    return DummyPool(connection)

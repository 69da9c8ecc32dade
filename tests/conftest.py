import os
import tempfile

# Settings validate these at import time
os.environ.setdefault("NETBOX_URL", "http://netbox.test:8080")
os.environ.setdefault("NETBOX_TOKEN", "0123456789abcdef0123456789abcdef01234567")
os.environ.setdefault("LOG_FILE", os.path.join(tempfile.gettempdir(), "ipam_reconciler_test.log"))

import pytest

from tests.fakes import (
    FakeDeploymentMappingStore, FakeLedger, FakeRegistry, FakeRegistryCache
)


class FakeCursor:
    """Records statements; results are queued by the test"""

    def __init__(self):
        self.executed = []
        self.fetchone_results = []
        self.fetchall_results = []
        self.errors = []
        self.rowcount = 0

    def _next_error(self):
        if self.errors:
            error = self.errors.pop(0)
            if error is not None:
                raise error

    async def execute(self, query, params=None):
        self.executed.append((" ".join(query.split()), params))
        self._next_error()

    async def executemany(self, query, params):
        self.executed.append((" ".join(query.split()), list(params)))
        self._next_error()

    async def fetchone(self):
        return self.fetchone_results.pop(0) if self.fetchone_results else None

    async def fetchall(self):
        return self.fetchall_results.pop(0) if self.fetchall_results else []

    @property
    def queries(self):
        return [query for query, _ in self.executed]

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeConnection:
    def __init__(self, cursor):
        self._cursor = cursor
        self.begins = 0
        self.commits = 0
        self.rollbacks = 0

    def cursor(self, *args):
        return self._cursor

    async def begin(self):
        self.begins += 1

    async def commit(self):
        self.commits += 1

    async def rollback(self):
        self.rollbacks += 1


class _Acquire:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakePool:
    """Stand-in for aiomysql.Pool sharing one connection and cursor"""

    def __init__(self):
        self.cursor = FakeCursor()
        self.conn = FakeConnection(self.cursor)

    def acquire(self):
        return _Acquire(self.conn)


@pytest.fixture
def fake_pool():
    return FakePool()


@pytest.fixture
def cache():
    return FakeRegistryCache()


@pytest.fixture
def ledger(cache):
    return FakeLedger(cache)


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def mappings():
    return FakeDeploymentMappingStore()

"""Shared fixtures for the Deposit Watcher tests."""

from contextlib import asynccontextmanager
from typing import Dict, Optional, Set

import pytest

from deposit_watcher.config import WatcherConfig
from deposit_watcher.errors import DuplicateDepositError, StorageError
from deposit_watcher.metrics import IngestionMetrics


class FakeTransaction:
    """In-memory transaction: writes become visible on commit only."""

    def __init__(self, storage: "FakeStorage"):
        self.storage = storage
        self.pending: Dict[str, dict] = {}
        self.active = True

    async def fetchrow(self, query: str, *args):
        self.storage.queries.append(query)
        tx_hash = args[0]
        if self.storage.hide_existing:
            return None
        if tx_hash in self.storage.deposits or tx_hash in self.pending:
            return {"id": 1}
        return None

    async def execute(self, query: str, *args):
        self.storage.queries.append(query)
        if self.storage.fail_insert:
            raise StorageError("insert failed")
        tx_hash = args[0]
        if tx_hash in self.storage.deposits:
            raise DuplicateDepositError(f"duplicate key value: {tx_hash}")
        self.pending[tx_hash] = {
            "tx_hash": args[0],
            "to_address": args[1],
            "asset": args[2],
            "amount": args[3],
            "confirmations": args[4],
            "created_at": args[5],
        }

    async def commit(self):
        self.storage.deposits.update(self.pending)
        self.pending = {}
        self.active = False
        self.storage.commits += 1

    async def rollback(self):
        self.pending = {}
        self.active = False
        self.storage.rollbacks += 1


class FakeStorage:
    """Storage double holding deposits and monitored addresses in dicts."""

    def __init__(self):
        self.deposits: Dict[str, dict] = {}
        self.monitored: Set[str] = set()
        self.queries = []
        self.transactions_opened = 0
        self.commits = 0
        self.rollbacks = 0
        self.fail_insert = False
        self.fail_begin = False
        self.fail_lookup = False
        self.hide_existing = False

    async def fetchval(self, query: str, *args):
        self.queries.append(query)
        if self.fail_lookup:
            raise StorageError("lookup failed")
        return 1 if args[0] in self.monitored else 0

    @asynccontextmanager
    async def transaction(self):
        if self.fail_begin:
            raise StorageError("could not acquire connection")
        self.transactions_opened += 1
        tx = FakeTransaction(self)
        try:
            yield tx
        finally:
            if tx.active:
                await tx.rollback()


@pytest.fixture
def fake_storage():
    """Empty in-memory storage."""
    return FakeStorage()


@pytest.fixture
def metrics():
    """Fresh in-memory metrics sink."""
    return IngestionMetrics()


@pytest.fixture
def config():
    """Configuration with fast polling for tests."""
    return WatcherConfig(
        tron_node_url="https://api.trongrid.test",
        tron_api_key="test-key",
        page_size=100,
        fetch_timeout_seconds=5,
        min_fetch_interval_seconds=0,
        poll_delay_seconds=0,
    )

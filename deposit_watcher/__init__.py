"""Deposit Watcher - Idempotent TRC-20 deposit ingestion from TronGrid."""

from .address_monitor import AddressMonitor
from .audit import FanOutAuditLog, FileAuditLog, RedisDepositPublisher
from .config import WatcherConfig, DEFAULT_CONFIG
from .events import (
    CycleSummary,
    Deposit,
    RecordOutcome,
    RecordResult,
    RejectReason,
    TransferEvent,
)
from .feed_client import TronGridClient
from .loop import IngestionLoop, LoopState
from .metrics import IngestionMetrics
from .rate_limiter import RateLimiter
from .recorder import DepositRecorder
from .storage import PostgresStorage, connect_storage

__all__ = [
    "AddressMonitor",
    "FanOutAuditLog",
    "FileAuditLog",
    "RedisDepositPublisher",
    "WatcherConfig",
    "DEFAULT_CONFIG",
    "CycleSummary",
    "Deposit",
    "RecordOutcome",
    "RecordResult",
    "RejectReason",
    "TransferEvent",
    "TronGridClient",
    "IngestionLoop",
    "LoopState",
    "IngestionMetrics",
    "RateLimiter",
    "DepositRecorder",
    "PostgresStorage",
    "connect_storage",
]

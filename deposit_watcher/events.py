"""Event and record types for the Deposit Watcher."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
import json


class RecordOutcome(str, Enum):
    """Terminal outcome of recording one transfer event."""
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    REJECTED = "rejected"


class RejectReason(str, Enum):
    """Why an event did not produce a deposit."""
    INVALID_DATA = "invalid_data"
    UNMONITORED = "unmonitored"
    STORAGE_ERROR = "storage_error"


@dataclass
class TransferEvent:
    """A single token transfer as reported by the ledger feed."""

    tx_hash: str
    to_address: Optional[str]  # raw on-chain encoding (hex)
    amount: int  # smallest token unit
    asset: str = "USDT"
    from_address: Optional[str] = None
    block_number: Optional[int] = None
    block_timestamp: Optional[int] = None  # milliseconds

    @classmethod
    def from_trongrid(cls, entry: dict, asset: str = "USDT") -> "TransferEvent":
        """
        Build an event from one item of a TronGrid ``/events`` response.

        Unparseable amounts decode as 0 so the recorder rejects them.
        """
        result = entry.get("result") or {}
        try:
            amount = int(str(result.get("value", "0")), 10)
        except (TypeError, ValueError):
            amount = 0

        return cls(
            tx_hash=entry.get("transaction_id", ""),
            to_address=result.get("to") or None,
            amount=max(amount, 0),
            asset=asset,
            from_address=result.get("from") or None,
            block_number=entry.get("block_number"),
            block_timestamp=entry.get("block_timestamp"),
        )


@dataclass
class Deposit:
    """A credited deposit. One row per ledger transaction."""

    tx_hash: str
    to_address: str  # canonical base58
    asset: str
    amount: int
    confirmations: int = 4
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> str:
        """Serialize to JSON for Redis."""
        return json.dumps({
            "tx_hash": self.tx_hash,
            "to_address": self.to_address,
            "asset": self.asset,
            "amount": str(self.amount),
            "confirmations": self.confirmations,
            "created_at": self.created_at.isoformat(),
        })

    @classmethod
    def from_json(cls, data: str) -> "Deposit":
        """Deserialize from JSON."""
        parsed = json.loads(data)
        return cls(
            tx_hash=parsed["tx_hash"],
            to_address=parsed["to_address"],
            asset=parsed["asset"],
            amount=int(parsed["amount"]),
            confirmations=parsed.get("confirmations", 4),
            created_at=datetime.fromisoformat(parsed["created_at"]),
        )


@dataclass
class RecordResult:
    """Result of DepositRecorder.record()."""

    outcome: RecordOutcome
    tx_hash: str
    reason: Optional[RejectReason] = None
    deposit: Optional[Deposit] = None

    @classmethod
    def created(cls, deposit: Deposit) -> "RecordResult":
        return cls(RecordOutcome.CREATED, deposit.tx_hash, deposit=deposit)

    @classmethod
    def already_exists(cls, tx_hash: str) -> "RecordResult":
        return cls(RecordOutcome.ALREADY_EXISTS, tx_hash)

    @classmethod
    def rejected(cls, tx_hash: str, reason: RejectReason) -> "RecordResult":
        return cls(RecordOutcome.REJECTED, tx_hash, reason=reason)

    @property
    def is_error(self) -> bool:
        """True for outcomes that count against events_errored."""
        return self.reason == RejectReason.STORAGE_ERROR

    def __str__(self) -> str:
        if self.reason:
            return f"{self.tx_hash}: {self.outcome.value} ({self.reason.value})"
        return f"{self.tx_hash}: {self.outcome.value}"


@dataclass
class CycleSummary:
    """Tallies for one fetch-filter-record pass."""

    fetched: int = 0
    created: int = 0
    duplicates: int = 0
    rejected: int = 0
    errored: int = 0
    duration_seconds: float = 0.0

    def add(self, result: RecordResult) -> None:
        """Count one event outcome."""
        if result.outcome == RecordOutcome.CREATED:
            self.created += 1
        elif result.outcome == RecordOutcome.ALREADY_EXISTS:
            self.duplicates += 1
        elif result.is_error:
            self.errored += 1
        else:
            self.rejected += 1

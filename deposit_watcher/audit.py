"""Audit sinks for finalized deposits."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Protocol, Union

from .events import Deposit

logger = logging.getLogger(__name__)


class AuditLog(Protocol):
    """Protocol for anything that receives finalized deposits."""
    async def append(self, deposit: Deposit) -> None: ...


class FileAuditLog:
    """Appends one line per new deposit to a text file."""

    def __init__(self, path: Union[str, Path] = "deposits-log.txt"):
        self.path = Path(path)

    @staticmethod
    def format_line(deposit: Deposit, now: datetime = None) -> str:
        now = now or datetime.now(timezone.utc)
        return (
            f"{now.isoformat()} - New deposit: Tx Hash {deposit.tx_hash}, "
            f"Address {deposit.to_address}, Amount {deposit.amount}\n"
        )

    def _write(self, line: str) -> None:
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line)

    async def append(self, deposit: Deposit) -> None:
        await asyncio.to_thread(self._write, self.format_line(deposit))
        logger.debug(f"Deposit logged to {self.path}")


class RedisClientProtocol:
    """Protocol for async Redis client."""
    async def publish(self, channel: str, message: str) -> int: ...
    async def lpush(self, key: str, *values: str) -> int: ...


@dataclass
class RedisChannels:
    """Redis channel/key names for deposit notifications."""

    # Pub/Sub channel
    DEPOSITS: str = "tron:deposits"

    # List key for queue-based consumers
    DEPOSIT_QUEUE: str = "queue:deposits"


class RedisDepositPublisher:
    """
    Publishes new deposits to Redis for downstream services.

    Uses Pub/Sub for real-time listeners and a List for consumers that need
    every deposit even if they were offline.
    """

    def __init__(self, redis_client: RedisClientProtocol):
        """
        Initialize the publisher.

        Args:
            redis_client: Async Redis client instance
        """
        self.redis = redis_client
        self.channels = RedisChannels()

    async def append(self, deposit: Deposit) -> None:
        message = deposit.to_json()
        await self.redis.publish(self.channels.DEPOSITS, message)
        await self.redis.lpush(self.channels.DEPOSIT_QUEUE, message)
        logger.debug(f"Published deposit: {deposit.tx_hash[:16]}...")


class FanOutAuditLog:
    """Forwards each deposit to several audit logs. One failing sink does not stop the rest."""

    def __init__(self, sinks: List[AuditLog]):
        self.sinks = list(sinks)

    async def append(self, deposit: Deposit) -> None:
        for sink in self.sinks:
            try:
                await sink.append(deposit)
            except Exception as e:
                logger.error(
                    f"Audit sink {type(sink).__name__} failed for {deposit.tx_hash}: {e}"
                )

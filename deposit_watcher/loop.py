"""Ingestion Loop - Rate-limited fetch, filter, record cycles."""

import asyncio
import logging
import time
from enum import Enum
from typing import List, Optional, Protocol

from .config import WatcherConfig, DEFAULT_CONFIG
from .events import CycleSummary, RecordResult, TransferEvent
from .metrics import MetricsSink
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    """Scheduler state."""
    IDLE = "idle"
    FETCHING = "fetching"


class FeedClientProtocol(Protocol):
    """Protocol for the ledger feed client."""
    async def fetch_recent_transfers(self, contract_address: str) -> List[TransferEvent]: ...


class RecorderProtocol(Protocol):
    """Protocol for the deposit recorder."""
    async def record(self, event: TransferEvent) -> RecordResult: ...


class IngestionLoop:
    """
    Drives the watcher until stopped.

    Each pass fetches one page of recent transfers and records the events
    one at a time, awaiting each to a terminal outcome before starting the
    next. Two events carrying the same tx_hash are therefore never recorded
    concurrently.

    No error inside a pass stops the loop; the next poll retries naturally.

    Usage:
        loop = IngestionLoop(client, recorder, metrics, config)
        await loop.run_forever()      # until loop.stop()
        summary = await loop.run_cycle()  # a single pass
    """

    def __init__(
        self,
        feed_client: FeedClientProtocol,
        recorder: RecorderProtocol,
        metrics: MetricsSink,
        config: WatcherConfig = DEFAULT_CONFIG,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        """
        Initialize the loop.

        Args:
            feed_client: Source of transfer events
            recorder: Deposit recorder
            metrics: Sink for per-event counts and cycle timings
            config: Watcher configuration (contract, intervals)
            rate_limiter: Fetch limiter (one in flight, min spacing from config)
        """
        self.feed_client = feed_client
        self.recorder = recorder
        self.metrics = metrics
        self.config = config
        self.rate_limiter = rate_limiter or RateLimiter(
            max_concurrent=1,
            min_interval=config.min_fetch_interval_seconds,
        )

        self._state = LoopState.IDLE
        self._running = False
        self._stop_event = asyncio.Event()
        self._cycle_count = 0
        self._last_summary: Optional[CycleSummary] = None

    async def run_cycle(self) -> CycleSummary:
        """
        Run one fetch-filter-record pass.

        Returns:
            Tallies for the pass
        """
        summary = CycleSummary()
        start = time.perf_counter()
        self._state = LoopState.FETCHING

        try:
            events = await self.feed_client.fetch_recent_transfers(self.config.contract_address)
            summary.fetched = len(events)

            for event in events:
                await self._process_event(event, summary)
        except Exception as e:
            logger.exception(f"Ingestion cycle failed: {e}")
        finally:
            summary.duration_seconds = time.perf_counter() - start
            self.metrics.observe_cycle_duration(summary.duration_seconds)
            self._state = LoopState.IDLE
            self._cycle_count += 1
            self._last_summary = summary

        if summary.created or summary.errored:
            logger.info(
                f"Cycle {self._cycle_count}: fetched={summary.fetched} "
                f"created={summary.created} duplicates={summary.duplicates} "
                f"rejected={summary.rejected} errored={summary.errored}"
            )
        return summary

    async def _process_event(self, event: TransferEvent, summary: CycleSummary) -> None:
        try:
            result = await self.recorder.record(event)
        except Exception as e:
            logger.error(f"Failed to process event {event.tx_hash}: {e}")
            summary.errored += 1
            self.metrics.increment_errored()
            return

        summary.add(result)
        if result.is_error:
            self.metrics.increment_errored()
        else:
            self.metrics.increment_processed()

    async def run_forever(self) -> None:
        """Schedule passes through the rate limiter until stop() is called."""
        self._running = True
        self._stop_event.clear()
        logger.info(
            f"Ingestion loop started (contract {self.config.contract_address}, "
            f"delay {self.config.poll_delay_seconds}s)"
        )

        while self._running:
            await self.rate_limiter.schedule(self.run_cycle)
            if not self._running:
                break
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.config.poll_delay_seconds
                )
            except asyncio.TimeoutError:
                pass

        logger.info(f"Ingestion loop stopped after {self._cycle_count} cycles")

    def stop(self) -> None:
        """Ask the loop to exit after the current pass."""
        self._running = False
        self._stop_event.set()

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def last_summary(self) -> Optional[CycleSummary]:
        return self._last_summary

"""Tests for the Ingestion Loop."""

import asyncio

import pytest
from unittest.mock import AsyncMock

from deposit_watcher.address import to_base58
from deposit_watcher.address_monitor import AddressMonitor
from deposit_watcher.events import RecordResult, RejectReason, TransferEvent
from deposit_watcher.loop import IngestionLoop, LoopState
from deposit_watcher.recorder import DepositRecorder


RAW_TO = "0xa614f803b6fd780986a42c78ec9c7f77e6ded13c"


def make_event(tx_hash, amount=1000) -> TransferEvent:
    return TransferEvent(tx_hash=tx_hash, to_address=RAW_TO, amount=amount)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def mock_feed():
    """Feed client returning no events by default."""
    feed = AsyncMock()
    feed.fetch_recent_transfers = AsyncMock(return_value=[])
    return feed


@pytest.fixture
def mock_recorder():
    """Recorder that creates nothing and rejects nothing."""
    recorder = AsyncMock()
    recorder.record = AsyncMock(
        side_effect=lambda event: RecordResult.already_exists(event.tx_hash)
    )
    return recorder


@pytest.fixture
def ingestion_loop(mock_feed, mock_recorder, metrics, config):
    return IngestionLoop(mock_feed, mock_recorder, metrics, config)


# ============================================================================
# Unit Tests - Single cycle
# ============================================================================

class TestRunCycle:
    """Tests for one fetch-filter-record pass."""

    @pytest.mark.asyncio
    async def test_fetches_configured_contract(self, ingestion_loop, mock_feed, config):
        await ingestion_loop.run_cycle()

        mock_feed.fetch_recent_transfers.assert_awaited_once_with(config.contract_address)

    @pytest.mark.asyncio
    async def test_every_event_recorded_in_order(self, ingestion_loop, mock_feed, mock_recorder):
        mock_feed.fetch_recent_transfers.return_value = [make_event("A"), make_event("B")]

        summary = await ingestion_loop.run_cycle()

        recorded = [call.args[0].tx_hash for call in mock_recorder.record.await_args_list]
        assert recorded == ["A", "B"]
        assert summary.fetched == 2
        assert summary.duplicates == 2
        assert ingestion_loop.last_summary is summary

    @pytest.mark.asyncio
    async def test_events_processed_sequentially(self, mock_feed, metrics, config):
        """No two record() calls overlap, even when each one suspends."""
        in_flight = 0
        peak = 0

        async def slow_record(event):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return RecordResult.already_exists(event.tx_hash)

        recorder = AsyncMock()
        recorder.record = AsyncMock(side_effect=slow_record)
        mock_feed.fetch_recent_transfers.return_value = [make_event(str(i)) for i in range(5)]
        loop = IngestionLoop(mock_feed, recorder, metrics, config)

        await loop.run_cycle()

        assert peak == 1
        assert recorder.record.await_count == 5

    @pytest.mark.asyncio
    async def test_per_event_metrics(self, mock_feed, metrics, config):
        outcomes = {
            "ok": RecordResult.already_exists("ok"),
            "bad": RecordResult.rejected("bad", RejectReason.INVALID_DATA),
            "db": RecordResult.rejected("db", RejectReason.STORAGE_ERROR),
        }
        recorder = AsyncMock()
        recorder.record = AsyncMock(side_effect=lambda event: outcomes[event.tx_hash])
        mock_feed.fetch_recent_transfers.return_value = [
            make_event("ok"), make_event("bad"), make_event("db"),
        ]
        loop = IngestionLoop(mock_feed, recorder, metrics, config)

        summary = await loop.run_cycle()

        assert metrics.events_processed == 2
        assert metrics.events_errored == 1
        assert summary.rejected == 1
        assert summary.errored == 1

    @pytest.mark.asyncio
    async def test_recorder_exception_does_not_stop_batch(self, mock_feed, metrics, config):
        recorder = AsyncMock()
        recorder.record = AsyncMock(side_effect=[
            RuntimeError("unexpected"),
            RecordResult.already_exists("B"),
        ])
        mock_feed.fetch_recent_transfers.return_value = [make_event("A"), make_event("B")]
        loop = IngestionLoop(mock_feed, recorder, metrics, config)

        summary = await loop.run_cycle()

        assert recorder.record.await_count == 2
        assert summary.errored == 1
        assert metrics.events_errored == 1
        assert metrics.events_processed == 1

    @pytest.mark.asyncio
    async def test_state_transitions(self, ingestion_loop, mock_feed):
        seen = []

        async def fetch(contract):
            seen.append(ingestion_loop.state)
            return []

        mock_feed.fetch_recent_transfers.side_effect = fetch
        assert ingestion_loop.state == LoopState.IDLE

        await ingestion_loop.run_cycle()

        assert seen == [LoopState.FETCHING]
        assert ingestion_loop.state == LoopState.IDLE

    @pytest.mark.asyncio
    async def test_cycle_duration_observed(self, ingestion_loop, metrics):
        await ingestion_loop.run_cycle()
        await ingestion_loop.run_cycle()

        assert metrics.cycle_duration.count == 2
        assert ingestion_loop.cycle_count == 2

    @pytest.mark.asyncio
    async def test_fetch_exception_returns_to_idle(self, ingestion_loop, mock_feed):
        mock_feed.fetch_recent_transfers.side_effect = RuntimeError("client bug")

        summary = await ingestion_loop.run_cycle()

        assert summary.fetched == 0
        assert ingestion_loop.state == LoopState.IDLE


# ============================================================================
# Unit Tests - Scheduling
# ============================================================================

class TestRunForever:
    """Tests for the long-running scheduler."""

    @pytest.mark.asyncio
    async def test_survives_consecutive_fetch_failures(self, mock_feed, mock_recorder, metrics, config):
        """After N failed cycles the loop still attempts cycle N+1."""
        failures = 4
        calls = 0
        loop = None

        async def fetch(contract):
            nonlocal calls
            calls += 1
            if calls <= failures:
                raise RuntimeError("upstream down")
            loop.stop()
            return [make_event("late")]

        mock_feed.fetch_recent_transfers.side_effect = fetch
        loop = IngestionLoop(mock_feed, mock_recorder, metrics, config)

        await asyncio.wait_for(loop.run_forever(), timeout=2)

        assert calls == failures + 1
        mock_recorder.record.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_interrupts_delay(self, mock_feed, mock_recorder, metrics, config):
        config.poll_delay_seconds = 60
        loop = IngestionLoop(mock_feed, mock_recorder, metrics, config)

        task = asyncio.create_task(loop.run_forever())
        while loop.cycle_count == 0:
            await asyncio.sleep(0.001)
        loop.stop()

        await asyncio.wait_for(task, timeout=1)
        assert loop.cycle_count == 1
        assert loop.is_running is False


# ============================================================================
# Integration Tests
# ============================================================================

class TestLoopWithRecorder:
    """Loop and recorder together over in-memory storage."""

    @pytest.mark.asyncio
    async def test_redelivered_batches_credit_once(self, fake_storage, metrics, config, mock_feed):
        fake_storage.monitored.add(to_base58(RAW_TO))
        recorder = DepositRecorder(fake_storage, AddressMonitor(fake_storage))
        batch = [make_event("T2", 7), make_event("T1", 5000000), make_event("T1", 5000000)]
        mock_feed.fetch_recent_transfers.return_value = batch
        loop = IngestionLoop(mock_feed, recorder, metrics, config)

        first = await loop.run_cycle()
        second = await loop.run_cycle()

        assert first.created == 2
        assert first.duplicates == 1
        assert second.created == 0
        assert second.duplicates == 3
        assert sorted(fake_storage.deposits) == ["T1", "T2"]
        assert metrics.events_processed == 6

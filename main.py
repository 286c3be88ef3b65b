#!/usr/bin/env python3
"""
TRC-20 Deposit Watcher

Polls TronGrid for confirmed USDT transfers, keeps those addressed to
monitored accounts and records each one as a deposit exactly once.

Startup is two-phase: every collaborator is constructed and checked first,
then injected into the ingestion loop.

Usage:
    python main.py                  # Run until SIGINT/SIGTERM
    python main.py --once           # Run a single polling cycle
    python main.py --init-schema    # Create tables and exit
    python main.py --no-redis       # Skip Redis deposit notifications
"""

import asyncio
import logging
import os
import signal
import sys
from typing import Optional

import aiohttp
from dotenv import load_dotenv

from deposit_watcher import (
    AddressMonitor,
    DepositRecorder,
    FanOutAuditLog,
    FileAuditLog,
    IngestionLoop,
    IngestionMetrics,
    RedisDepositPublisher,
    TronGridClient,
    WatcherConfig,
    connect_storage,
)
from deposit_watcher.errors import ConfigError

# Load environment variables
load_dotenv()

# Configure logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("deposit-watcher")


class DepositWatcherEngine:
    """
    Owns the process resources and the ingestion loop.

    Resources (PostgreSQL pool, HTTP session, Redis) are opened in setup()
    and closed in shutdown(). Nothing is stored in module globals.
    """

    def __init__(self, config: WatcherConfig, use_redis: bool = True):
        """
        Initialize the engine.

        Args:
            config: Watcher configuration
            use_redis: Publish new deposits to Redis when it is reachable
        """
        self.config = config
        self.use_redis = use_redis

        self.metrics = IngestionMetrics()
        self.storage = None
        self.http_session: Optional[aiohttp.ClientSession] = None
        self.redis = None
        self.loop: Optional[IngestionLoop] = None
        self._stop_requested = False

    async def setup(self) -> None:
        """Open connections and build the pipeline. Raises on fatal errors."""
        self.config.validate()
        if not self.config.tron_api_key:
            logger.warning("⚠️ TRON_API_KEY not set - TronGrid will rate-limit requests")

        # PostgreSQL (fatal if unreachable)
        self.storage = await connect_storage(self.config, self.metrics)
        await self.storage.ensure_schema()
        logger.info("✅ PostgreSQL connected")

        # HTTP session for TronGrid
        self.http_session = aiohttp.ClientSession()
        logger.info("✅ HTTP client ready")

        # Redis (optional)
        if self.use_redis:
            try:
                import redis.asyncio as redis
                self.redis = redis.Redis(
                    host=self.config.redis_host,
                    port=self.config.redis_port,
                    decode_responses=True,
                )
                await self.redis.ping()
                logger.info("✅ Redis connected")
            except Exception as e:
                logger.warning(f"⚠️ Redis connection failed (optional): {e}")
                if self.redis is not None:
                    await self.redis.close()
                self.redis = None

        self.loop = self._build_loop()
        logger.info("✅ All systems initialized")

    def _build_loop(self) -> IngestionLoop:
        sinks = [FileAuditLog(self.config.deposit_log_path)]
        if self.redis is not None:
            sinks.append(RedisDepositPublisher(self.redis))

        client = TronGridClient(
            session=self.http_session,
            config=self.config,
            metrics=self.metrics,
        )
        recorder = DepositRecorder(
            storage=self.storage,
            address_monitor=AddressMonitor(self.storage),
            audit_log=FanOutAuditLog(sinks),
            initial_confirmations=self.config.initial_confirmations,
        )
        return IngestionLoop(client, recorder, self.metrics, self.config)

    async def run(self, once: bool = False) -> None:
        """Run one cycle or loop until stopped."""
        if self._stop_requested:
            return
        if once:
            summary = await self.loop.run_cycle()
            logger.info(
                f"Single cycle done: fetched={summary.fetched} created={summary.created} "
                f"duplicates={summary.duplicates} rejected={summary.rejected} "
                f"errored={summary.errored}"
            )
            return

        logger.info("🔄 Watching for deposits...")
        await self.loop.run_forever()

    def stop(self) -> None:
        self._stop_requested = True
        if self.loop:
            self.loop.stop()

    async def shutdown(self) -> None:
        """Close every resource that was opened."""
        logger.info("Shutting down...")
        if self.http_session:
            await self.http_session.close()
        if self.redis:
            await self.redis.close()
        if self.storage:
            await self.storage.close()

        snapshot = self.metrics.snapshot()
        logger.info(
            f"Processed {snapshot['events_processed']} events "
            f"({snapshot['events_errored']} errored, "
            f"{snapshot['db_query_errors']} db errors, "
            f"{self.metrics.events_per_second:.2f} events/s)"
        )
        if self.loop and self.loop.last_summary:
            last = self.loop.last_summary
            logger.info(
                f"Last cycle: fetched={last.fetched} created={last.created} "
                f"duplicates={last.duplicates} rejected={last.rejected} errored={last.errored}"
            )
        logger.info("👋 Shutdown complete")


# ============================================================================
# Main Entry Point
# ============================================================================

def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="TRC-20 Deposit Watcher"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single polling cycle and exit",
    )
    parser.add_argument(
        "--init-schema",
        action="store_true",
        help="Create the deposit tables and exit",
    )
    parser.add_argument(
        "--no-redis",
        action="store_true",
        help="Do not publish deposits to Redis",
    )

    args = parser.parse_args()

    config = WatcherConfig()
    engine = DepositWatcherEngine(config, use_redis=not args.no_redis)

    async def run():
        event_loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                event_loop.add_signal_handler(sig, engine.stop)
            except NotImplementedError:
                # Windows: fall back to KeyboardInterrupt
                pass

        try:
            if args.init_schema:
                config.validate()
                engine.storage = await connect_storage(config, engine.metrics)
                await engine.storage.ensure_schema()
                return
            await engine.setup()
            await engine.run(once=args.once)
        finally:
            await engine.shutdown()

    try:
        asyncio.run(run())
    except ConfigError as e:
        logger.critical(f"❌ Invalid configuration: {e}")
        sys.exit(2)
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.critical(f"❌ Startup failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

"""TronGrid Client - Fetches confirmed TRC-20 transfer events."""

import asyncio
import logging
import time
from typing import Dict, List, Optional

import aiohttp

from .config import WatcherConfig, DEFAULT_CONFIG
from .errors import UpstreamMalformed, UpstreamUnavailable
from .events import TransferEvent
from .metrics import MetricsSink

logger = logging.getLogger(__name__)


class TronGridClient:
    """
    Client for the TronGrid contract events API.

    Returns the most recent page of confirmed ``Transfer`` events for a
    contract, newest first. Failures are logged and reported, never raised:
    the caller gets an empty page and tries again next cycle.

    API Docs: https://developers.tron.network/reference/events-by-contract-address
    """

    EVENTS_PATH = "/v1/contracts/{contract}/events"
    METRIC_ENDPOINT = "/v1/contracts/events"
    MAX_PAGE_SIZE = 200

    def __init__(
        self,
        session: aiohttp.ClientSession = None,
        config: WatcherConfig = DEFAULT_CONFIG,
        metrics: Optional[MetricsSink] = None,
    ):
        """
        Initialize TronGrid client.

        Args:
            session: Optional aiohttp session (created if not provided)
            config: Watcher configuration (node URL, API key, page size, timeout)
            metrics: Sink for fetch latency
        """
        self._session = session
        self._owns_session = session is None
        self.config = config
        self.metrics = metrics
        self.base_url = config.tron_node_url.rstrip("/")
        self.page_size = max(1, min(config.page_size, self.MAX_PAGE_SIZE))
        self.timeout = aiohttp.ClientTimeout(total=config.fetch_timeout_seconds)

    def _get_headers(self) -> Dict[str, str]:
        """Get headers for API requests."""
        headers = {"Accept": "application/json"}
        if self.config.tron_api_key:
            headers["TRON-PRO-API-KEY"] = self.config.tron_api_key
        return headers

    async def __aenter__(self):
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._owns_session and self._session:
            await self._session.close()

    async def fetch_recent_transfers(self, contract_address: str) -> List[TransferEvent]:
        """
        Fetch the latest confirmed transfers for a token contract.

        Args:
            contract_address: Base58 address of the TRC-20 contract

        Returns:
            Events ordered newest first, or an empty list on any failure
        """
        start = time.perf_counter()
        status = "unknown"
        try:
            status, payload = await self._request_events(contract_address)
            events = self._parse_events(payload)
        except UpstreamUnavailable as e:
            status = e.status
            logger.error(f"Failed to fetch transfer events: {e}")
            return []
        except UpstreamMalformed as e:
            status = "malformed"
            logger.error(f"Malformed transfer events payload, skipping batch: {e}")
            return []
        finally:
            if self.metrics:
                self.metrics.observe_fetch_latency(time.perf_counter() - start, str(status))

        if not events:
            logger.info("No new events found.")
        return events

    async def _request_events(self, contract_address: str):
        """
        Perform the HTTP request.

        Returns:
            (status, decoded JSON body)

        Raises:
            UpstreamUnavailable: network error, timeout or non-200 status
            UpstreamMalformed: body is not JSON
        """
        if self._session is None:
            raise UpstreamUnavailable("HTTP session not open")

        url = self.base_url + self.EVENTS_PATH.format(contract=contract_address)
        params = {
            "event_name": "Transfer",
            "only_confirmed": "true",
            "limit": str(self.page_size),
            "order_by": "block_timestamp,desc",
        }

        try:
            async with self._session.get(
                url, params=params, headers=self._get_headers(), timeout=self.timeout
            ) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise UpstreamUnavailable(
                        f"TronGrid returned {response.status}: {error_text[:200]}",
                        status=str(response.status),
                    )
                try:
                    payload = await response.json(content_type=None)
                except ValueError as e:
                    raise UpstreamMalformed(f"Response is not JSON: {e}") from e
                return str(response.status), payload
        except asyncio.TimeoutError as e:
            raise UpstreamUnavailable(
                f"Timed out after {self.config.fetch_timeout_seconds}s", status="timeout"
            ) from e
        except aiohttp.ClientError as e:
            raise UpstreamUnavailable(f"Network error: {e}") from e

    def _parse_events(self, payload) -> List[TransferEvent]:
        """Decode the ``data`` array of an events response."""
        if not isinstance(payload, dict):
            raise UpstreamMalformed(f"Expected JSON object, got {type(payload).__name__}")

        data = payload.get("data")
        if not isinstance(data, list):
            raise UpstreamMalformed("Response has no 'data' list")

        events = []
        for entry in data:
            if not isinstance(entry, dict):
                raise UpstreamMalformed(f"Event entry is not an object: {entry!r:.80}")
            result = entry.get("result")
            if result is not None and not isinstance(result, dict):
                raise UpstreamMalformed(f"Event result is not an object: {result!r:.80}")
            events.append(TransferEvent.from_trongrid(entry, asset=self.config.asset))
        return events

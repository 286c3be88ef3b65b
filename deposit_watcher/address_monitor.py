"""Address Monitor - Checks destinations against the monitored address table."""

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class DatabaseClient(Protocol):
    """Protocol for database client."""
    async def fetchval(self, query: str, *args) -> Any: ...


class AddressMonitor:
    """
    Answers whether a canonical address belongs to an active account.

    The table is owned by the account service; this class only reads it.
    Lookups fail closed: an error means "not monitored", because crediting
    an address we could not verify is worse than missing a deposit that can
    be replayed later.
    """

    QUERY = """
        SELECT COUNT(*)
        FROM monitored_address
        WHERE address = $1
          AND active = TRUE
          AND account_id IS NOT NULL
          AND account_id <> 0
    """

    def __init__(self, db_client: DatabaseClient):
        """
        Initialize the monitor.

        Args:
            db_client: Storage exposing fetchval()
        """
        self.db = db_client

    async def is_monitored(self, address: str) -> bool:
        """
        Check if an address is monitored.

        Args:
            address: Canonical base58 address

        Returns:
            True only if an active, owned row exists
        """
        if not address:
            return False

        try:
            count = await self.db.fetchval(self.QUERY, address)
        except Exception as e:
            logger.error(f"Error checking if address is monitored ({address}): {e}")
            return False

        return bool(count)

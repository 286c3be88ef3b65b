"""Deposit Recorder - Idempotent, transactional deposit creation."""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from .address import to_base58
from .address_monitor import AddressMonitor
from .audit import AuditLog
from .errors import DuplicateDepositError, InvalidEventData, StorageError
from .events import Deposit, RecordResult, RejectReason, TransferEvent
from .storage import Storage

logger = logging.getLogger(__name__)


class DepositRecorder:
    """
    Records each qualifying transfer as a deposit exactly once.

    Flow per event:
    1. Validate destination and amount (no storage access)
    2. Check the destination is monitored
    3. In one transaction: look up tx_hash, insert if absent, commit

    The lookup and insert share one transaction, so sequential calls for the
    same tx_hash never create two rows. The unique constraint on
    deposit.tx_hash backs this up against other writers; hitting it counts
    as AlreadyExists.

    Usage:
        recorder = DepositRecorder(storage, AddressMonitor(storage), audit_log)
        result = await recorder.record(event)
    """

    SELECT_EXISTING = "SELECT id FROM deposit WHERE tx_hash = $1"
    INSERT_DEPOSIT = """
        INSERT INTO deposit (tx_hash, to_address, asset, amount, confirmations, created_at)
        VALUES ($1, $2, $3, $4, $5, $6)
    """

    def __init__(
        self,
        storage: Storage,
        address_monitor: AddressMonitor,
        audit_log: Optional[AuditLog] = None,
        initial_confirmations: int = 4,
    ):
        """
        Initialize the recorder.

        Args:
            storage: Storage exposing transaction()
            address_monitor: Monitored-address filter
            audit_log: Receives each created deposit (best-effort)
            initial_confirmations: Confirmation count stored on new deposits
        """
        self.storage = storage
        self.address_monitor = address_monitor
        self.audit_log = audit_log
        self.initial_confirmations = initial_confirmations

    @staticmethod
    def validate(event: TransferEvent) -> str:
        """
        Check an event can become a deposit.

        Returns:
            The canonical destination address

        Raises:
            InvalidEventData: missing destination, non-positive amount or
                undecodable address
        """
        if not event.to_address or event.amount <= 0:
            raise InvalidEventData(
                f"to_address or amount is missing for transaction {event.tx_hash}"
            )
        if not event.tx_hash:
            raise InvalidEventData("transaction id is missing")
        try:
            return to_base58(event.to_address)
        except ValueError as e:
            raise InvalidEventData(f"bad destination {event.to_address!r}: {e}") from e

    async def record(self, event: TransferEvent) -> RecordResult:
        """
        Record a transfer event.

        Args:
            event: Transfer from the ledger feed

        Returns:
            RecordResult: created, already_exists, or rejected with a reason
        """
        try:
            to_address = self.validate(event)
        except InvalidEventData as e:
            logger.error(f"Invalid transaction data: {e}")
            return RecordResult.rejected(event.tx_hash, RejectReason.INVALID_DATA)

        if not await self.address_monitor.is_monitored(to_address):
            logger.info(f"Address is not monitored, skipping {event.tx_hash}: {to_address}")
            return RecordResult.rejected(event.tx_hash, RejectReason.UNMONITORED)

        deposit = Deposit(
            tx_hash=event.tx_hash,
            to_address=to_address,
            asset=event.asset,
            amount=event.amount,
            confirmations=self.initial_confirmations,
            created_at=datetime.now(timezone.utc),
        )

        try:
            async with self.storage.transaction() as tx:
                existing = await tx.fetchrow(self.SELECT_EXISTING, event.tx_hash)
                if existing is not None:
                    await tx.rollback()
                    logger.info(f"Deposit already exists for transaction: {event.tx_hash}")
                    return RecordResult.already_exists(event.tx_hash)

                await tx.execute(
                    self.INSERT_DEPOSIT,
                    deposit.tx_hash,
                    deposit.to_address,
                    deposit.asset,
                    Decimal(deposit.amount),
                    deposit.confirmations,
                    deposit.created_at,
                )
                await tx.commit()
        except DuplicateDepositError:
            logger.warning(f"Deposit for {event.tx_hash} was inserted concurrently")
            return RecordResult.already_exists(event.tx_hash)
        except StorageError as e:
            logger.error(f"Error processing transaction {event.tx_hash}: {e}")
            return RecordResult.rejected(event.tx_hash, RejectReason.STORAGE_ERROR)

        logger.info(
            f"New deposit added: {deposit.tx_hash} -> {deposit.to_address} "
            f"({deposit.amount} {deposit.asset})"
        )
        await self._audit(deposit)
        return RecordResult.created(deposit)

    async def _audit(self, deposit: Deposit) -> None:
        if not self.audit_log:
            return
        try:
            await self.audit_log.append(deposit)
        except Exception as e:
            logger.error(f"Failed to write deposit {deposit.tx_hash} to audit log: {e}")

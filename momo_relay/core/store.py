"""
Transaction store.

Every mutating call runs in its own single-row database transaction and is
committed before it returns, so a caller never acts on a write that is not
durable yet. Database failures surface as ``StorageError``.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from momo_relay.database.models import Transaction, TransactionStatus

logger = structlog.get_logger(__name__)


class StorageError(Exception):
    """Raised when the transaction store cannot complete an operation."""

    pass


class TokenConflict(StorageError):
    """Raised when a gateway token is already recorded on another transaction."""

    def __init__(self, token: str):
        super().__init__(f"Token {token} is already assigned to another transaction")
        self.token = token


class TransactionNotFound(Exception):
    """Raised when no transaction carries the requested token."""

    def __init__(self, token: str):
        super().__init__(f"No transaction for token {token}")
        self.token = token


class TransactionStore:
    """Durable table of payment transactions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(
        self,
        order_ref: str,
        order_number: str,
        amount: Decimal,
        customer_phone: str,
        customer_name: str,
        return_url: Optional[str],
        timestamp: datetime,
    ) -> int:
        """
        Persist a provisional transaction (``initiating``, no token).

        Returns:
            int: Internal transaction id

        Raises:
            StorageError: If the row could not be committed
        """
        tx = Transaction(
            order_ref=order_ref,
            order_number=order_number,
            amount=amount,
            customer_phone=customer_phone,
            customer_name=customer_name,
            return_url=return_url,
            status=TransactionStatus.INITIATING,
            is_processed=False,
            created_at=timestamp,
            updated_at=timestamp,
        )
        try:
            async with self.session_factory() as db:
                db.add(tx)
                await db.commit()
        except SQLAlchemyError as e:
            logger.error("transaction_create_failed", order_ref=order_ref, error=str(e))
            raise StorageError(f"Failed to create transaction: {e}") from e

        logger.debug("transaction_created", transaction_id=tx.id, order_ref=order_ref)
        return tx.id

    async def get(self, transaction_id: int) -> Optional[Transaction]:
        try:
            async with self.session_factory() as db:
                return await db.get(Transaction, transaction_id)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load transaction {transaction_id}: {e}") from e

    async def find_by_token(self, token: str) -> Optional[Transaction]:
        """
        Look a transaction up by gateway token.

        Args:
            token: Gateway token

        Returns:
            Optional[Transaction]: Detached row, or None
        """
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Transaction).where(Transaction.gateway_token == token)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to look up token {token}: {e}") from e

    async def set_token(
        self,
        transaction_id: int,
        token: str,
        status: str,
        timestamp: datetime,
        error_message: Optional[str] = None,
    ) -> None:
        """
        Record the gateway token of an ``initiating`` transaction.

        The update only matches rows whose token is still NULL, so a token
        is written at most once.

        Raises:
            TokenConflict: If the token belongs to another transaction
            StorageError: If the row is missing or already has a token
        """
        stmt = (
            update(Transaction)
            .where(Transaction.id == transaction_id)
            .where(Transaction.gateway_token.is_(None))
            .values(
                gateway_token=token,
                status=status,
                error_message=error_message[:500] if error_message else None,
                updated_at=timestamp,
            )
        )
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                await db.commit()
        except IntegrityError as e:
            logger.error("transaction_token_conflict", transaction_id=transaction_id, token=token)
            raise TokenConflict(token) from e
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to record token for {transaction_id}: {e}") from e

        if result.rowcount != 1:
            raise StorageError(
                f"Transaction {transaction_id} not found or token already set"
            )

        logger.debug(
            "transaction_token_recorded",
            transaction_id=transaction_id,
            token=token,
            status=status,
        )

    async def mark_failed(
        self, transaction_id: int, error_message: str, timestamp: datetime
    ) -> None:
        """Mark a transaction whose gateway call failed before a token existed."""
        stmt = (
            update(Transaction)
            .where(Transaction.id == transaction_id)
            .where(Transaction.status == TransactionStatus.INITIATING)
            .values(
                status=TransactionStatus.FAILED,
                error_message=error_message[:500],
                updated_at=timestamp,
            )
        )
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                await db.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to mark {transaction_id} as failed: {e}") from e

        if result.rowcount != 1:
            raise StorageError(f"Transaction {transaction_id} is no longer initiating")

    async def apply_transition(
        self,
        transaction_id: int,
        new_status: str,
        event: str,
        fees: Optional[Decimal],
        timestamp: datetime,
        terminal: bool,
        gateway_transaction_number: Optional[str] = None,
    ) -> bool:
        """
        Apply a webhook transition with a compare-and-set on ``is_processed``.

        Only rows that are not processed yet are touched, so two concurrent
        deliveries cannot both settle the same transaction. A non-terminal
        event additionally skips rows whose ``last_event`` already equals it.

        Args:
            transaction_id: Transaction to update
            new_status: Status the event maps to
            event: Webhook event type
            fees: Fees reported by the gateway
            timestamp: Time of the transition
            terminal: Whether the event settles the transaction
            gateway_transaction_number: Gateway-side transaction number

        Returns:
            bool: True if this call applied the transition, False if another
            writer had already processed the row or applied the same event
        """
        values = {
            "status": new_status,
            "last_event": event,
            "fees": fees,
            "updated_at": timestamp,
        }
        if gateway_transaction_number:
            values["gateway_transaction_number"] = gateway_transaction_number
        if terminal:
            values["is_processed"] = True
            values["processed_at"] = timestamp
        if new_status == TransactionStatus.PAID:
            values["paid_at"] = timestamp

        stmt = (
            update(Transaction)
            .where(Transaction.id == transaction_id)
            .where(Transaction.is_processed == False)  # noqa: E712
            .values(**values)
        )
        if not terminal:
            # A non-terminal event applies once per distinct event
            stmt = stmt.where(
                or_(Transaction.last_event.is_(None), Transaction.last_event != event)
            )
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                await db.commit()
        except SQLAlchemyError as e:
            logger.error(
                "transaction_transition_failed",
                transaction_id=transaction_id,
                event=event,
                error=str(e),
            )
            raise StorageError(f"Failed to apply {event} to {transaction_id}: {e}") from e

        return result.rowcount == 1

    async def list_pending(self, limit: int = 50) -> List[Transaction]:
        """Pending, unsettled transactions, oldest first."""
        stmt = (
            select(Transaction)
            .where(Transaction.status == TransactionStatus.PENDING)
            .where(Transaction.is_processed == False)  # noqa: E712
            .order_by(Transaction.created_at, Transaction.id)
            .limit(limit)
        )
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list pending transactions: {e}") from e

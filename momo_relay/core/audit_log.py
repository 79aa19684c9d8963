"""
Webhook audit log.

Append-only record of every inbound notification. Rows are written before
any correlation attempt so a delivery that cannot be resolved is still on
file for replay.
"""
from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from momo_relay.core.store import StorageError
from momo_relay.database.models import WebhookRecord

logger = structlog.get_logger(__name__)

OUTCOME_RECEIVED = "received"


class WebhookAuditLog:
    """Append-only ``webhook_log`` table access."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def append(
        self,
        event_type: str,
        gateway_token: str,
        raw_payload: str,
        received_at: datetime,
        ip_address: Optional[str] = None,
        http_method: Optional[str] = "POST",
    ) -> int:
        """
        Record an inbound notification with outcome ``received``.

        Returns:
            int: Audit record id

        Raises:
            StorageError: If the record could not be committed
        """
        record = WebhookRecord(
            event_type=event_type,
            gateway_token=gateway_token,
            raw_payload=raw_payload,
            received_at=received_at,
            is_duplicate=False,
            outcome=OUTCOME_RECEIVED,
            ip_address=ip_address,
            http_method=http_method,
        )
        try:
            async with self.session_factory() as db:
                db.add(record)
                await db.commit()
        except SQLAlchemyError as e:
            logger.error(
                "webhook_audit_append_failed",
                event_type=event_type,
                token=gateway_token,
                error=str(e),
            )
            raise StorageError(f"Failed to record webhook: {e}") from e

        return record.id

    async def set_outcome(
        self, record_id: int, outcome: str, is_duplicate: bool = False
    ) -> None:
        """Set the resolution of a record. The only mutation the log allows."""
        stmt = (
            update(WebhookRecord)
            .where(WebhookRecord.id == record_id)
            .values(outcome=outcome[:500], is_duplicate=is_duplicate)
        )
        try:
            async with self.session_factory() as db:
                await db.execute(stmt)
                await db.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to update webhook record {record_id}: {e}") from e

    async def get(self, record_id: int) -> Optional[WebhookRecord]:
        try:
            async with self.session_factory() as db:
                return await db.get(WebhookRecord, record_id)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load webhook record {record_id}: {e}") from e

    async def list_for_token(self, gateway_token: str) -> List[WebhookRecord]:
        """Every delivery for a token, in arrival order."""
        stmt = (
            select(WebhookRecord)
            .where(WebhookRecord.gateway_token == gateway_token)
            .order_by(WebhookRecord.received_at, WebhookRecord.id)
        )
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to query webhook log: {e}") from e

"""
FusionPay webhook processor with audit logging and idempotent settlement.

Implements:
- Audit record written before anything else
- Token resolution with a bounded sleep-then-recheck (tenacity)
- Duplicate detection on (token, event)
- Atomic transition through a compare-and-set on ``is_processed``
- One order notification per paid transaction
- Replay of stored deliveries
"""
import time
from typing import Dict, Optional

import structlog
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from momo_relay.core.audit_log import WebhookAuditLog
from momo_relay.core.clock import Clock, utcnow
from momo_relay.core.store import TransactionNotFound, TransactionStore
from momo_relay.core.types import WebhookEvent, WebhookOutcome, WebhookResult
from momo_relay.database.models import Transaction, TransactionStatus
from momo_relay.integrations.order_notifier import OrderNotifier
from momo_relay.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

EVENT_STATUS_MAP: Dict[str, str] = {
    "payin.session.completed": TransactionStatus.PAID,
    "payin.session.cancelled": TransactionStatus.FAILED,
    "payin.session.pending": TransactionStatus.PENDING,
}

OUTCOME_NOT_FOUND = "error: transaction not found"
OUTCOME_DUPLICATE = "duplicate, ignored"
OUTCOME_SUPERSEDED = "superseded, ignored"
OUTCOME_UNRECOGNIZED = "unrecognized event, ignored"


class ReplayError(Exception):
    """Raised when a stored delivery cannot be replayed."""

    pass


class WebhookProcessor:
    """
    Applies gateway notifications to transactions exactly once.

    A notification can arrive before the token it carries has been written
    back by the orchestrator, so a lookup miss is retried after a short
    fixed delay before the delivery is reported as unresolvable.
    """

    def __init__(
        self,
        store: TransactionStore,
        audit_log: WebhookAuditLog,
        notifier: OrderNotifier,
        clock: Clock = utcnow,
        resolve_attempts: int = 2,
        resolve_delay_seconds: float = 3.0,
    ):
        """
        Initialize webhook processor.

        Args:
            store: Transaction store
            audit_log: Webhook audit log
            notifier: Order-management notification hook
            clock: Time source
            resolve_attempts: Token lookups before giving up
            resolve_delay_seconds: Fixed delay between lookups
        """
        self.store = store
        self.audit_log = audit_log
        self.notifier = notifier
        self.clock = clock
        self.resolve_attempts = resolve_attempts
        self.resolve_delay_seconds = resolve_delay_seconds

        logger.info(
            "webhook_processor_initialized",
            resolve_attempts=resolve_attempts,
            resolve_delay_seconds=resolve_delay_seconds,
        )

    @staticmethod
    def _before_resolve_retry(retry_state: RetryCallState) -> None:
        metrics.record_resolve_retry()
        logger.info(
            "webhook_token_not_visible_yet",
            attempt=retry_state.attempt_number,
        )

    async def _resolve(self, token: str) -> Transaction:
        """
        Find the transaction for ``token``, waiting once for a late write.

        Raises:
            TransactionNotFound: If the token is still unknown after the
                last attempt
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransactionNotFound),
            stop=stop_after_attempt(self.resolve_attempts),
            wait=wait_fixed(self.resolve_delay_seconds),
            before_sleep=self._before_resolve_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                transaction = await self.store.find_by_token(token)
                if transaction is None:
                    raise TransactionNotFound(token)
        return transaction

    async def handle(
        self,
        event: WebhookEvent,
        raw_payload: Optional[str] = None,
        ip_address: Optional[str] = None,
        http_method: str = "POST",
    ) -> WebhookResult:
        """
        Process one webhook delivery.

        Args:
            event: Parsed notification
            raw_payload: Body as received; re-serialized from ``event`` if absent
            ip_address: Sender address, for the audit record
            http_method: Method the delivery came in with

        Returns:
            WebhookResult: How the delivery was resolved

        Raises:
            StorageError: If the audit log or the store failed
        """
        start_time = time.time()
        if raw_payload is None:
            raw_payload = event.model_dump_json(by_alias=True)

        metrics.record_webhook_received(event.event)
        record_id = await self.audit_log.append(
            event_type=event.event,
            gateway_token=event.token,
            raw_payload=raw_payload,
            received_at=self.clock(),
            ip_address=ip_address,
            http_method=http_method,
        )
        log = logger.bind(record_id=record_id, token=event.token, event_type=event.event)
        log.info("processing_webhook_event")

        try:
            transaction = await self._resolve(event.token)
        except TransactionNotFound:
            await self.audit_log.set_outcome(record_id, OUTCOME_NOT_FOUND)
            log.error("webhook_transaction_not_found", attempts=self.resolve_attempts)
            result = WebhookResult(outcome=WebhookOutcome.NOT_FOUND, record_id=record_id)
        else:
            log = log.bind(transaction_id=transaction.id)
            result = await self._apply(record_id, transaction, event, log)

        metrics.record_webhook_processed(
            event.event, result.outcome.value, time.time() - start_time
        )
        return result

    async def _apply(
        self,
        record_id: int,
        transaction: Transaction,
        event: WebhookEvent,
        log: structlog.stdlib.BoundLogger,
    ) -> WebhookResult:
        if transaction.is_processed or transaction.last_event == event.event:
            return await self._already_settled(record_id, transaction, event, log)

        new_status = EVENT_STATUS_MAP.get(event.event)
        if new_status is None:
            await self.audit_log.set_outcome(record_id, OUTCOME_UNRECOGNIZED)
            log.warning("webhook_event_unrecognized")
            return WebhookResult(
                outcome=WebhookOutcome.UNRECOGNIZED,
                record_id=record_id,
                transaction_id=transaction.id,
                status=transaction.status,
            )

        applied = await self.store.apply_transition(
            transaction.id,
            new_status=new_status,
            event=event.event,
            fees=event.fees,
            timestamp=self.clock(),
            terminal=new_status in TransactionStatus.TERMINAL,
            gateway_transaction_number=event.gateway_transaction_number or None,
        )
        if not applied:
            # Another delivery won the compare-and-set between our read and write
            current = await self.store.get(transaction.id)
            return await self._already_settled(record_id, current, event, log)

        log.info(
            "webhook_transition_applied",
            previous_status=transaction.status,
            new_status=new_status,
        )

        if new_status == TransactionStatus.PAID:
            await self._notify_paid(transaction, log)

        await self.audit_log.set_outcome(record_id, f"applied: {new_status}")
        return WebhookResult(
            outcome=WebhookOutcome.APPLIED,
            record_id=record_id,
            transaction_id=transaction.id,
            status=new_status,
        )

    async def _already_settled(
        self,
        record_id: int,
        transaction: Transaction,
        event: WebhookEvent,
        log: structlog.stdlib.BoundLogger,
    ) -> WebhookResult:
        """Classify a delivery the transaction has already seen or moved past."""
        if transaction.last_event == event.event:
            await self.audit_log.set_outcome(record_id, OUTCOME_DUPLICATE, is_duplicate=True)
            log.info("webhook_duplicate_ignored", status=transaction.status)
            outcome = WebhookOutcome.DUPLICATE
        else:
            await self.audit_log.set_outcome(record_id, OUTCOME_SUPERSEDED)
            log.warning(
                "webhook_superseded_ignored",
                status=transaction.status,
                last_event=transaction.last_event,
            )
            outcome = WebhookOutcome.SUPERSEDED

        return WebhookResult(
            outcome=outcome,
            record_id=record_id,
            transaction_id=transaction.id,
            status=transaction.status,
        )

    async def _notify_paid(
        self, transaction: Transaction, log: structlog.stdlib.BoundLogger
    ) -> None:
        # Payment is committed at this point; hook failures are only logged
        try:
            await self.notifier.payment_confirmed(transaction.order_ref, transaction.id)
        except Exception as e:
            log.error(
                "order_notification_failed",
                order_ref=transaction.order_ref,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def handle_webhook(self, event: WebhookEvent) -> bool:
        """
        Process a delivery and report whether the sender may stop retrying.

        Returns:
            bool: False only when the transaction could not be resolved
        """
        result = await self.handle(event)
        return result.accepted

    async def replay(self, record_id: int) -> WebhookResult:
        """
        Run a stored delivery through ``handle`` again.

        The replay is itself audited as a new record.

        Raises:
            ReplayError: If the record is missing or its payload is unparsable
        """
        record = await self.audit_log.get(record_id)
        if record is None:
            raise ReplayError(f"Webhook record {record_id} not found")

        try:
            event = WebhookEvent.model_validate_json(record.raw_payload)
        except ValidationError as e:
            raise ReplayError(f"Webhook record {record_id} is not a valid event: {e}") from e

        logger.info("replaying_webhook", record_id=record_id, token=record.gateway_token)
        return await self.handle(
            event,
            raw_payload=record.raw_payload,
            ip_address=record.ip_address,
            http_method="REPLAY",
        )

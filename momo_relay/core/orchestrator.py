"""
Payment orchestrator.

Owns the initiation flow:
1. Validate input (no side effects on rejection)
2. Persist a provisional transaction (``initiating``)
3. Call the gateway
4. Record the token and the resulting status, or the classified failure
5. Return a typed result

Step 2 is committed before step 3 starts, so every remote session has a
local row even if the process dies mid-call. Steps 3-4 run in a shielded
task: a caller that goes away does not leave the gateway outcome
unrecorded.
"""
import asyncio
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Set

import structlog

from momo_relay.core.clock import Clock, utcnow
from momo_relay.core.store import TokenConflict, TransactionStore
from momo_relay.core.types import InitiateErrorCode, InitiateResult, PaymentRequest
from momo_relay.database.models import Transaction, TransactionStatus
from momo_relay.integrations.gateway_client import (
    CallbackUrls,
    FusionPayClient,
    GatewayError,
    digits_only,
)
from momo_relay.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class PaymentValidationError(Exception):
    """Raised when a payment request is rejected before any side effect."""

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


@dataclass(frozen=True)
class PaymentVerification:
    """Gateway and local view of a payment, looked up by token."""

    token: str
    status: str  # "verified" or "error"
    transaction: Optional[Transaction]
    gateway_response: Optional[Dict[str, Any]]


class PaymentOrchestrator:
    """
    Starts payments on the gateway.

    Writes only the pre-gateway fields of a transaction: the row itself, the
    gateway token and the ``initiating -> pending | failed`` move.
    """

    def __init__(
        self,
        gateway_client: FusionPayClient,
        store: TransactionStore,
        webhook_url: str,
        clock: Clock = utcnow,
        min_amount: Decimal = Decimal("200"),
        min_phone_digits: int = 8,
    ):
        """
        Initialize payment orchestrator.

        Args:
            gateway_client: FusionPay client
            store: Transaction store
            webhook_url: URL the gateway will post notifications to
            clock: Time source for row timestamps
            min_amount: Amounts must be strictly greater than this
            min_phone_digits: Minimum digits in the payer phone number
        """
        self.gateway_client = gateway_client
        self.store = store
        self.webhook_url = webhook_url
        self.clock = clock
        self.min_amount = Decimal(str(min_amount))
        self.min_phone_digits = min_phone_digits
        self._inflight: Set[asyncio.Task] = set()

        logger.info("payment_orchestrator_initialized", webhook_url=webhook_url)

    def validate_request(self, request: PaymentRequest) -> None:
        """
        Validate payment request parameters.

        Raises:
            PaymentValidationError: Listing every problem found
        """
        errors = []

        try:
            amount_ok = Decimal(request.amount) > self.min_amount
        except (InvalidOperation, TypeError):
            amount_ok = False
        if not amount_ok:
            errors.append(f"Amount must be greater than {self.min_amount}")

        if not request.phone.strip():
            errors.append("Customer phone is required")
        elif len(digits_only(request.phone)) < self.min_phone_digits:
            errors.append(f"Phone number must be at least {self.min_phone_digits} digits")

        if not request.customer_name.strip():
            errors.append("Customer name is required")

        if not request.order_ref.strip():
            errors.append("Order ID is required")

        if not request.return_url.strip():
            errors.append("Return URL is required")

        if errors:
            raise PaymentValidationError(errors)

    async def initiate(self, request: PaymentRequest) -> InitiateResult:
        """
        Start a payment for one order.

        Args:
            request: Validated-shape payment request

        Returns:
            InitiateResult: Success with token and redirect URL, or the
            classified failure

        Raises:
            StorageError: If the transaction could not be persisted
        """
        start_time = time.time()
        correlation_id = str(uuid.uuid4())
        log = logger.bind(correlation_id=correlation_id, order_ref=request.order_ref)

        log.info("payment_initiation_started", amount=str(request.amount))

        try:
            self.validate_request(request)
        except PaymentValidationError as e:
            log.warning("payment_validation_failed", errors=e.errors)
            metrics.record_payment_initiation(
                InitiateErrorCode.VALIDATION_ERROR.value, time.time() - start_time
            )
            return InitiateResult(
                success=False,
                error_message=str(e),
                error_code=InitiateErrorCode.VALIDATION_ERROR,
                errors=e.errors,
            )

        now = self.clock()
        transaction_id = await self.store.create(
            order_ref=request.order_ref,
            order_number=request.order_number or f"ORDER_{time.time_ns() // 100}",
            amount=Decimal(request.amount),
            customer_phone=digits_only(request.phone),
            customer_name=request.customer_name.strip(),
            return_url=request.return_url,
            timestamp=now,
        )
        log = log.bind(transaction_id=transaction_id)
        log.info("transaction_persisted", status=TransactionStatus.INITIATING)

        task = asyncio.ensure_future(self._settle(transaction_id, request, log))
        self._inflight.add(task)
        task.add_done_callback(self._on_settled)

        result = await asyncio.shield(task)

        metrics.record_payment_initiation(
            "success" if result.success else result.error_code.value,
            time.time() - start_time,
        )
        return result

    async def _settle(
        self, transaction_id: int, request: PaymentRequest, log: Any
    ) -> InitiateResult:
        """Call the gateway and durably record whatever it answered."""
        try:
            session = await self.gateway_client.create_session(
                order_ref=request.order_ref,
                amount=Decimal(request.amount),
                phone=request.phone,
                customer_name=request.customer_name.strip(),
                callback_urls=CallbackUrls(
                    return_url=request.return_url, webhook_url=self.webhook_url
                ),
                transaction_id=transaction_id,
            )
        except GatewayError as e:
            error_message = str(e)
            await self.store.mark_failed(transaction_id, error_message, self.clock())
            log.error(
                "payment_initiation_failed",
                error=error_message,
                error_type=e.error_type.value,
            )
            return InitiateResult(
                success=False,
                transaction_id=transaction_id,
                error_message=error_message,
                error_code=InitiateErrorCode(e.error_type.value),
            )

        error_message = None
        if not session.success:
            error_message = session.message or "Payment rejected by gateway"

        try:
            await self.store.set_token(
                transaction_id,
                session.token,
                TransactionStatus.PENDING if session.success else TransactionStatus.FAILED,
                self.clock(),
                error_message=error_message,
            )
        except TokenConflict:
            conflict_message = f"duplicate gateway token {session.token}"
            await self.store.mark_failed(transaction_id, conflict_message, self.clock())
            log.error("payment_token_conflict", token=session.token)
            return InitiateResult(
                success=False,
                transaction_id=transaction_id,
                message=session.message,
                error_message=conflict_message,
                error_code=InitiateErrorCode.DUPLICATE_TOKEN,
            )

        if session.success:
            log.info("payment_initiated", token=session.token)
            return InitiateResult(
                success=True,
                transaction_id=transaction_id,
                token=session.token,
                redirect_url=session.redirect_url,
                message=session.message,
            )

        log.warning("payment_rejected_by_gateway", token=session.token, error=error_message)
        return InitiateResult(
            success=False,
            transaction_id=transaction_id,
            token=session.token,
            message=session.message,
            error_message=error_message,
            error_code=InitiateErrorCode.GATEWAY_REJECTED,
        )

    def _on_settled(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "payment_settlement_error",
                error=str(error),
                error_type=type(error).__name__,
            )

    async def drain(self) -> None:
        """Wait for settlements whose callers have gone away."""
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    async def verify(self, token: str) -> PaymentVerification:
        """
        Ask the gateway about a payment and pair it with the local row.

        Gateway failures are reported as status ``error``, not raised.
        """
        transaction = await self.store.find_by_token(token)
        try:
            gateway_response = await self.gateway_client.verify_payment(token)
        except GatewayError as e:
            logger.warning("payment_verification_failed", token=token, error=str(e))
            return PaymentVerification(token, "error", transaction, None)

        return PaymentVerification(token, "verified", transaction, gateway_response)

    async def pending_transactions(self, limit: int = 50) -> List[Transaction]:
        return await self.store.list_pending(limit)

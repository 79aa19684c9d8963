"""
Tests for the payment orchestrator.
"""
import asyncio
import json
from decimal import Decimal

import httpx
import pytest

from momo_relay.core.orchestrator import PaymentValidationError
from momo_relay.core.types import InitiateErrorCode, PaymentRequest, WebhookOutcome
from momo_relay.database.models import TransactionStatus


def _request(**overrides) -> PaymentRequest:
    fields = {
        "order_ref": "order-1",
        "amount": Decimal("5000"),
        "phone": "0712345678",
        "customer_name": "Awa Kone",
        "return_url": "https://shop.test/thank-you",
    }
    fields.update(overrides)
    return PaymentRequest(**fields)


class TestValidation:
    """Input validation happens before anything is written."""

    @pytest.mark.unit
    def test_valid_request(self, orchestrator) -> None:
        orchestrator.validate_request(_request())

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"amount": Decimal("200")}, "Amount must be greater than 200"),
            ({"amount": Decimal("-5")}, "Amount must be greater than 200"),
            ({"phone": "  "}, "Customer phone is required"),
            ({"phone": "+225 1234"}, "Phone number must be at least 8 digits"),
            ({"customer_name": ""}, "Customer name is required"),
            ({"order_ref": ""}, "Order ID is required"),
            ({"return_url": ""}, "Return URL is required"),
        ],
    )
    def test_invalid_request(self, orchestrator, overrides, message) -> None:
        with pytest.raises(PaymentValidationError) as exc_info:
            orchestrator.validate_request(_request(**overrides))

        assert message in exc_info.value.errors

    @pytest.mark.unit
    def test_all_problems_reported(self, orchestrator) -> None:
        with pytest.raises(PaymentValidationError) as exc_info:
            orchestrator.validate_request(
                _request(amount=Decimal("10"), phone="", customer_name="", order_ref="", return_url="")
            )

        assert len(exc_info.value.errors) == 5

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rejected_request_has_no_side_effects(
        self, orchestrator, fake_gateway, row_count
    ) -> None:
        result = await orchestrator.initiate(_request(amount=Decimal("100")))

        assert result.success is False
        assert result.error_code == InitiateErrorCode.VALIDATION_ERROR
        assert result.transaction_id is None
        assert result.errors == ["Amount must be greater than 200"]
        assert fake_gateway.requests == []
        assert await row_count() == 0


class TestInitiate:
    """Test suite for PaymentOrchestrator.initiate."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_successful_initiation(
        self, orchestrator, store, fake_gateway, payment_request
    ) -> None:
        result = await orchestrator.initiate(payment_request)

        assert result.success is True
        assert result.token == "tok-1"
        assert result.redirect_url == "https://pay.test/checkout/tok-1"
        assert result.error_code is None

        tx = await store.get(result.transaction_id)
        assert tx.status == TransactionStatus.PENDING
        assert tx.gateway_token == "tok-1"
        assert tx.order_ref == payment_request.order_ref
        assert tx.order_number == "#1042"
        assert tx.customer_phone == "2250712345678"
        assert tx.is_processed is False

        body = fake_gateway.last_json()
        assert body["webhook_url"] == "https://relay.test/api/webhook/fusionpay"
        assert body["personal_info"] == [
            {"orderId": payment_request.order_ref, "transactionId": result.transaction_id}
        ]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_default_order_number(self, orchestrator, store) -> None:
        result = await orchestrator.initiate(_request(order_number=None))

        tx = await store.get(result.transaction_id)
        assert tx.order_number.startswith("ORDER_")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_row_is_initiating_during_gateway_call(
        self, orchestrator, store, fake_gateway, payment_request
    ) -> None:
        """The transaction is durable before the gateway is called, and not yet a success."""
        observed = {}

        async def observe(request: httpx.Request) -> httpx.Response:
            transaction_id = json.loads(request.content)["personal_info"][0]["transactionId"]
            observed["tx"] = await store.get(transaction_id)
            return fake_gateway.open_session(request)

        fake_gateway.responder = observe

        result = await orchestrator.initiate(payment_request)

        assert observed["tx"].id == result.transaction_id
        assert observed["tx"].status == TransactionStatus.INITIATING
        assert observed["tx"].gateway_token is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_gateway_timeout(self, orchestrator, store, fake_gateway, payment_request) -> None:
        def time_out(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        fake_gateway.responder = time_out

        result = await orchestrator.initiate(payment_request)

        assert result.success is False
        assert result.error_code == InitiateErrorCode.TIMEOUT
        assert result.error_message == "timeout"
        assert result.token is None

        tx = await store.get(result.transaction_id)
        assert tx.status == TransactionStatus.FAILED
        assert tx.error_message == "timeout"
        assert tx.gateway_token is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_gateway_http_error(self, orchestrator, store, fake_gateway, payment_request) -> None:
        fake_gateway.responder = lambda request: httpx.Response(500, text="boom")

        result = await orchestrator.initiate(payment_request)

        assert result.success is False
        assert result.error_code == InitiateErrorCode.HTTP_STATUS
        tx = await store.get(result.transaction_id)
        assert tx.status == TransactionStatus.FAILED
        assert tx.error_message == "gateway http error: 500"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_malformed_gateway_response(
        self, orchestrator, store, fake_gateway, payment_request
    ) -> None:
        fake_gateway.responder = lambda request: httpx.Response(200, json={"statut": True})

        result = await orchestrator.initiate(payment_request)

        assert result.success is False
        assert result.error_code == InitiateErrorCode.MALFORMED_RESPONSE
        tx = await store.get(result.transaction_id)
        assert tx.status == TransactionStatus.FAILED
        assert tx.error_message.startswith("malformed gateway response")
        assert tx.gateway_token is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_gateway_transport_error(
        self, orchestrator, store, fake_gateway, payment_request
    ) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        fake_gateway.responder = refuse

        result = await orchestrator.initiate(payment_request)

        assert result.error_code == InitiateErrorCode.TRANSPORT
        assert (await store.get(result.transaction_id)).status == TransactionStatus.FAILED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_gateway_rejection_records_token(
        self, orchestrator, store, fake_gateway, payment_request
    ) -> None:
        fake_gateway.responder = lambda request: httpx.Response(
            200,
            json={"statut": False, "token": "tok-r", "url": "https://pay.test/r", "message": "numero invalide"},
        )

        result = await orchestrator.initiate(payment_request)

        assert result.success is False
        assert result.error_code == InitiateErrorCode.GATEWAY_REJECTED
        assert result.error_message == "numero invalide"
        assert result.token == "tok-r"

        tx = await store.find_by_token("tok-r")
        assert tx.id == result.transaction_id
        assert tx.status == TransactionStatus.FAILED
        assert tx.error_message == "numero invalide"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reused_gateway_token_fails_the_attempt(
        self, orchestrator, store, make_transaction, payment_request
    ) -> None:
        """The gateway hands out a token another transaction already holds."""
        existing_id = await make_transaction(token="tok-1")

        result = await orchestrator.initiate(payment_request)

        assert result.success is False
        assert result.error_code == InitiateErrorCode.DUPLICATE_TOKEN
        assert result.error_message == "duplicate gateway token tok-1"
        assert result.token is None
        assert result.transaction_id != existing_id

        tx = await store.get(result.transaction_id)
        assert tx.status == TransactionStatus.FAILED
        assert tx.gateway_token is None
        assert tx.error_message == "duplicate gateway token tok-1"

        existing = await store.find_by_token("tok-1")
        assert existing.id == existing_id
        assert existing.status == TransactionStatus.PENDING

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_caller_cancellation_keeps_gateway_outcome(
        self, orchestrator, store, fake_gateway, payment_request
    ) -> None:
        """A caller that goes away mid-call still gets its token recorded."""
        entered = asyncio.Event()
        release = asyncio.Event()

        async def slow(request: httpx.Request) -> httpx.Response:
            entered.set()
            await release.wait()
            return fake_gateway.open_session(request)

        fake_gateway.responder = slow

        caller = asyncio.create_task(orchestrator.initiate(payment_request))
        await entered.wait()
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        release.set()
        await orchestrator.drain()

        pending = await store.list_pending()
        assert len(pending) == 1
        assert pending[0].gateway_token == "tok-1"
        assert pending[0].status == TransactionStatus.PENDING

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timeout_then_late_webhook_is_not_found(
        self, orchestrator, processor, store, fake_gateway, payment_request, make_event
    ) -> None:
        """
        Gateway times out but created the session anyway.

        The webhook carries a token nobody recorded: it is reported as not
        found and the failed transaction stays failed.
        """

        def time_out(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        fake_gateway.responder = time_out
        result = await orchestrator.initiate(payment_request)

        webhook = await processor.handle(make_event("payin.session.completed", token="tok-ghost"))

        assert webhook.outcome == WebhookOutcome.NOT_FOUND
        assert webhook.accepted is False
        tx = await store.get(result.transaction_id)
        assert tx.status == TransactionStatus.FAILED
        assert tx.is_processed is False


class TestVerify:
    """Test suite for verification and listing."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_verify_known_payment(self, orchestrator, fake_gateway, payment_request) -> None:
        result = await orchestrator.initiate(payment_request)
        fake_gateway.responder = lambda request: httpx.Response(
            200, json={"statut": True, "data": {"statut": "pending"}}
        )

        verification = await orchestrator.verify(result.token)

        assert verification.status == "verified"
        assert verification.transaction.id == result.transaction_id
        assert verification.gateway_response["data"]["statut"] == "pending"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_verify_gateway_failure(self, orchestrator, fake_gateway) -> None:
        fake_gateway.responder = lambda request: httpx.Response(503, text="down")

        verification = await orchestrator.verify("tok-unknown")

        assert verification.status == "error"
        assert verification.transaction is None
        assert verification.gateway_response is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_pending_transactions(self, orchestrator, fake_gateway) -> None:
        await orchestrator.initiate(_request(order_ref="order-1"))
        await orchestrator.initiate(_request(order_ref="order-2"))
        fake_gateway.responder = lambda request: httpx.Response(500)
        await orchestrator.initiate(_request(order_ref="order-3"))

        pending = await orchestrator.pending_transactions()

        assert [tx.order_ref for tx in pending] == ["order-1", "order-2"]

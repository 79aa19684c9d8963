"""
Pytest configuration and fixtures.
"""
import inspect
import itertools
import json
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncGenerator, Awaitable, Callable, List, Optional
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from momo_relay.config import Settings
from momo_relay.core.audit_log import WebhookAuditLog
from momo_relay.core.clock import utcnow
from momo_relay.core.orchestrator import PaymentOrchestrator
from momo_relay.core.store import TransactionStore
from momo_relay.core.types import PaymentRequest, WebhookEvent
from momo_relay.core.webhook_processor import WebhookProcessor
from momo_relay.database.connection import create_session_factory, init_db
from momo_relay.database.models import Transaction, TransactionStatus
from momo_relay.integrations.gateway_client import FusionPayClient
from momo_relay.integrations.order_notifier import OrderNotifier

GATEWAY_BASE_URL = "https://gateway.test/api/v1/"
WEBHOOK_URL = "https://relay.test/api/webhook/fusionpay"


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: fast tests of a single component")
    config.addinivalue_line("markers", "race: concurrency and ordering scenarios")
    config.addinivalue_line("markers", "integration: tests through the HTTP API")


class FakeGateway:
    """
    Stand-in for the FusionPay API behind ``httpx.MockTransport``.

    Every request is recorded. By default a session is created with a fresh
    token; set ``responder`` to change what the gateway answers.
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self._tokens = itertools.count(1)
        self.responder: Callable[[httpx.Request], Any] = self.open_session

    def open_session(self, request: httpx.Request) -> httpx.Response:
        token = f"tok-{next(self._tokens)}"
        return httpx.Response(
            200,
            json={
                "statut": True,
                "token": token,
                "url": f"https://pay.test/checkout/{token}",
                "message": "paiement en cours",
            },
        )

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responder(request)
        if inspect.isawaitable(response):
            response = await response
        return response

    def last_json(self) -> Any:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'relay.db'}",
        fusionpay_api_base_url=GATEWAY_BASE_URL,
        public_api_base_url="https://relay.test/",
        gateway_timeout_seconds=5.0,
        webhook_resolve_attempts=2,
        webhook_resolve_delay_seconds=0.05,
        app_name="momo-relay-test",
        app_env="test",
        log_level="DEBUG",
        allowed_origins="https://shop.test",
    )


@pytest_asyncio.fixture
async def engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, Any]:
    """Temporary SQLite database with the relay schema."""
    engine = create_async_engine(test_settings.database_url, poolclass=NullPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> TransactionStore:
    return TransactionStore(session_factory)


@pytest.fixture
def audit_log(session_factory: async_sessionmaker[AsyncSession]) -> WebhookAuditLog:
    return WebhookAuditLog(session_factory)


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture
async def gateway_http_client(fake_gateway: FakeGateway) -> AsyncGenerator[httpx.AsyncClient, Any]:
    async with httpx.AsyncClient(
        transport=httpx.MockTransport(fake_gateway), base_url=GATEWAY_BASE_URL
    ) as client:
        yield client


@pytest.fixture
def gateway_client(gateway_http_client: httpx.AsyncClient) -> FusionPayClient:
    return FusionPayClient(
        base_url=GATEWAY_BASE_URL,
        timeout_seconds=5.0,
        product_name="Commande",
        http_client=gateway_http_client,
    )


@pytest.fixture
def orchestrator(gateway_client: FusionPayClient, store: TransactionStore) -> PaymentOrchestrator:
    return PaymentOrchestrator(
        gateway_client=gateway_client,
        store=store,
        webhook_url=WEBHOOK_URL,
    )


@pytest.fixture
def notifier_callback() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def notifier(notifier_callback: AsyncMock) -> OrderNotifier:
    return OrderNotifier(callback=notifier_callback)


@pytest.fixture
def processor(
    store: TransactionStore, audit_log: WebhookAuditLog, notifier: OrderNotifier
) -> WebhookProcessor:
    return WebhookProcessor(
        store=store,
        audit_log=audit_log,
        notifier=notifier,
        resolve_attempts=2,
        resolve_delay_seconds=0.05,
    )


@pytest.fixture
def payment_request() -> PaymentRequest:
    """Sample payment request."""
    return PaymentRequest(
        order_ref="5812345678901",
        order_number="#1042",
        amount=Decimal("15000"),
        phone="+225 07 12 34 56 78",
        customer_name="Awa Kone",
        return_url="https://shop.test/thank-you",
    )


@pytest.fixture
def make_transaction(
    store: TransactionStore,
) -> Callable[..., Awaitable[int]]:
    """Factory for transactions, with their token recorded unless ``token`` is None."""

    async def _make(
        token: Optional[str] = "tok-1",
        order_ref: str = "order-1",
        amount: Decimal = Decimal("5000"),
    ) -> int:
        now = utcnow()
        transaction_id = await store.create(
            order_ref=order_ref,
            order_number=f"#{order_ref}",
            amount=amount,
            customer_phone="0712345678",
            customer_name="Awa Kone",
            return_url="https://shop.test/thank-you",
            timestamp=now,
        )
        if token is not None:
            await store.set_token(transaction_id, token, TransactionStatus.PENDING, now)
        return transaction_id

    return _make


def webhook_event(event: str, token: str = "tok-1", **overrides: Any) -> WebhookEvent:
    """A FusionPay notification as the gateway would send it."""
    body = {
        "event": event,
        "tokenPay": token,
        "numeroSend": "0712345678",
        "nomclient": "Awa Kone",
        "numeroTransaction": "MF-889900",
        "Montant": 5000,
        "frais": 100,
        "personal_Info": [{"orderId": "order-1", "transactionId": 1}],
        "createdAt": "2025-01-06T10:00:00Z",
    }
    body.update(overrides)
    return WebhookEvent.model_validate(body)


@pytest.fixture
def make_event() -> Callable[..., WebhookEvent]:
    return webhook_event


async def count_rows(
    session_factory: async_sessionmaker[AsyncSession], model: Any = Transaction
) -> int:
    async with session_factory() as db:
        result = await db.execute(select(func.count()).select_from(model))
        return result.scalar_one()


@pytest.fixture
def row_count(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[int]]:
    async def _count(model: Any = Transaction) -> int:
        return await count_rows(session_factory, model)

    return _count

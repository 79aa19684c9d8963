"""
Service wiring.

Builds the explicit set of collaborators the API hands to its routes. Each
component receives what it needs through its constructor; nothing here is
module-level state.
"""
from dataclasses import dataclass
from typing import Optional

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from momo_relay.config import Settings
from momo_relay.core.audit_log import WebhookAuditLog
from momo_relay.core.clock import Clock, utcnow
from momo_relay.core.orchestrator import PaymentOrchestrator
from momo_relay.core.store import TransactionStore
from momo_relay.core.webhook_processor import WebhookProcessor
from momo_relay.integrations.gateway_client import FusionPayClient
from momo_relay.integrations.order_notifier import OrderNotifier
from momo_relay.monitoring.health import HealthCheck

logger = structlog.get_logger(__name__)


@dataclass
class RelayServices:
    """Everything a request handler may need."""

    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    store: TransactionStore
    audit_log: WebhookAuditLog
    gateway_client: FusionPayClient
    notifier: OrderNotifier
    orchestrator: PaymentOrchestrator
    webhook_processor: WebhookProcessor
    health_check: HealthCheck

    async def aclose(self) -> None:
        """Let detached gateway settlements finish, then release the HTTP client."""
        await self.orchestrator.drain()
        await self.gateway_client.close()


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    http_client: Optional[httpx.AsyncClient] = None,
    notifier: Optional[OrderNotifier] = None,
    clock: Clock = utcnow,
) -> RelayServices:
    """
    Assemble the relay components from settings.

    Args:
        settings: Application settings
        session_factory: Async session factory bound to the relay database
        http_client: Optional client for the gateway (tests inject a mock transport)
        notifier: Order notification hook; logs only when omitted
        clock: Time source shared by all components

    Returns:
        RelayServices: Wired components
    """
    store = TransactionStore(session_factory)
    audit_log = WebhookAuditLog(session_factory)
    gateway_client = FusionPayClient(
        base_url=settings.fusionpay_api_base_url,
        timeout_seconds=settings.gateway_timeout_seconds,
        product_name=settings.product_name,
        http_client=http_client,
    )
    notifier = notifier or OrderNotifier()

    orchestrator = PaymentOrchestrator(
        gateway_client=gateway_client,
        store=store,
        webhook_url=settings.webhook_url,
        clock=clock,
        min_amount=settings.min_payment_amount,
        min_phone_digits=settings.min_phone_digits,
    )
    webhook_processor = WebhookProcessor(
        store=store,
        audit_log=audit_log,
        notifier=notifier,
        clock=clock,
        resolve_attempts=settings.webhook_resolve_attempts,
        resolve_delay_seconds=settings.webhook_resolve_delay_seconds,
    )

    logger.info("relay_services_built", app_env=settings.app_env)

    return RelayServices(
        settings=settings,
        session_factory=session_factory,
        store=store,
        audit_log=audit_log,
        gateway_client=gateway_client,
        notifier=notifier,
        orchestrator=orchestrator,
        webhook_processor=webhook_processor,
        health_check=HealthCheck(session_factory),
    )

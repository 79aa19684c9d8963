"""
API routes for the payment relay.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import ValidationError

from momo_relay import __version__
from momo_relay.core.types import WebhookEvent, WebhookResult
from momo_relay.core.webhook_processor import ReplayError
from momo_relay.services import RelayServices

from .schemas import (
    HealthCheckResponse,
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    PaymentErrorResponse,
    PendingTransactionsResponse,
    TransactionSummary,
    VerifyPaymentResponse,
    WebhookLogEntry,
    WebhookResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
payment_router = APIRouter(prefix="/api/payment", tags=["payment"])
webhook_router = APIRouter(prefix="/api/webhook", tags=["webhook"])
monitoring_router = APIRouter(tags=["monitoring"])


def get_services(request: Request) -> RelayServices:
    """Components wired at startup."""
    return request.app.state.services


def _webhook_response(result: WebhookResult) -> WebhookResponse:
    return WebhookResponse(
        status=result.outcome.value,
        record_id=result.record_id,
        transaction_id=result.transaction_id,
        transaction_status=result.status,
    )


@payment_router.post(
    "/initiate",
    response_model=InitiatePaymentResponse,
    responses={status.HTTP_400_BAD_REQUEST: {"model": PaymentErrorResponse}},
    summary="Initiate a payment",
    description="Create a transaction and open a FusionPay payment session",
)
async def initiate_payment(
    body: InitiatePaymentRequest,
    services: RelayServices = Depends(get_services),
) -> Any:
    """
    Start a payment for an order.

    Validation problems and gateway failures both answer 400; the body says
    which one it was.
    """
    logger.info("api_initiate_payment_request", order_id=body.order_id)

    result = await services.orchestrator.initiate(body.to_payment_request())

    if not result.success:
        error = PaymentErrorResponse(
            error=result.error_message,
            error_code=result.error_code.value if result.error_code else None,
            errors=result.errors,
            transaction_id=result.transaction_id,
        )
        logger.warning(
            "api_initiate_payment_failed",
            order_id=body.order_id,
            error_code=error.error_code,
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error.model_dump(mode="json", by_alias=True),
        )

    logger.info(
        "api_initiate_payment_success",
        order_id=body.order_id,
        transaction_id=result.transaction_id,
    )
    return InitiatePaymentResponse(
        payment_url=result.redirect_url,
        token=result.token,
        transaction_id=result.transaction_id,
        message=result.message,
    )


@payment_router.get(
    "/verify/{token}",
    response_model=VerifyPaymentResponse,
    summary="Verify a payment",
    description="Ask FusionPay about a payment and return the local transaction",
)
async def verify_payment(
    token: str,
    services: RelayServices = Depends(get_services),
) -> VerifyPaymentResponse:
    verification = await services.orchestrator.verify(token)
    tx = verification.transaction
    return VerifyPaymentResponse(
        token=token,
        status=verification.status,
        transaction=TransactionSummary.from_transaction(tx) if tx is not None else None,
        gateway=verification.gateway_response,
        timestamp=datetime.now(timezone.utc),
    )


@payment_router.get(
    "/transactions/pending",
    response_model=PendingTransactionsResponse,
    summary="List pending transactions",
)
async def pending_transactions(
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    services: RelayServices = Depends(get_services),
) -> PendingTransactionsResponse:
    """Oldest unsettled transactions first."""
    transactions = await services.orchestrator.pending_transactions(
        limit or services.settings.pending_transactions_limit
    )
    return PendingTransactionsResponse(
        count=len(transactions),
        transactions=[TransactionSummary.from_transaction(tx) for tx in transactions],
        timestamp=datetime.now(timezone.utc),
    )


@payment_router.get("/health", summary="Payment API health")
async def payment_health(
    services: RelayServices = Depends(get_services),
) -> Dict[str, Any]:
    return {
        "status": "healthy",
        "service": services.settings.app_name,
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": "SQLite" if services.settings.is_sqlite else "PostgreSQL",
    }


@webhook_router.post(
    "/fusionpay",
    response_model=WebhookResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"description": "Unparsable notification"},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": WebhookResponse},
    },
    summary="FusionPay webhook endpoint",
    description="Handle FusionPay payment notifications",
)
async def fusionpay_webhook(
    request: Request,
    services: RelayServices = Depends(get_services),
) -> Any:
    """
    Handle a FusionPay notification.

    Answers 500 when the token cannot be resolved so that the gateway
    delivers the notification again later.
    """
    body = await request.body()

    try:
        event = WebhookEvent.model_validate_json(body)
    except ValidationError as e:
        logger.warning("api_webhook_invalid_payload", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook data"
        )

    logger.info("api_webhook_received", event_type=event.event, token=event.token)

    result = await services.webhook_processor.handle(
        event,
        raw_payload=body.decode("utf-8", errors="replace"),
        ip_address=request.client.host if request.client else None,
        http_method=request.method,
    )
    response = _webhook_response(result)

    if not result.accepted:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=response.model_dump(mode="json", by_alias=True),
        )
    return response


@webhook_router.get("/test", summary="Webhook endpoint check")
async def webhook_test() -> Dict[str, Any]:
    return {
        "message": "Webhook endpoint is working",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "url": "/api/webhook/fusionpay",
    }


@webhook_router.get(
    "/log/{token}",
    response_model=List[WebhookLogEntry],
    summary="Webhook deliveries for a token",
)
async def webhook_log(
    token: str,
    services: RelayServices = Depends(get_services),
) -> List[WebhookLogEntry]:
    records = await services.audit_log.list_for_token(token)
    return [WebhookLogEntry.from_record(record) for record in records]


@webhook_router.post(
    "/replay/{record_id}",
    response_model=WebhookResponse,
    summary="Replay a stored webhook delivery",
)
async def replay_webhook(
    record_id: int,
    services: RelayServices = Depends(get_services),
) -> WebhookResponse:
    try:
        result = await services.webhook_processor.replay(record_id)
    except ReplayError as e:
        logger.warning("api_webhook_replay_rejected", record_id=record_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return _webhook_response(result)


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(services: RelayServices = Depends(get_services)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await services.health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
    description="Kubernetes liveness probe endpoint",
)
async def liveness(services: RelayServices = Depends(get_services)) -> Dict[str, Any]:
    """Liveness probe endpoint."""
    return await services.health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
    description="Kubernetes readiness probe endpoint",
)
async def readiness(services: RelayServices = Depends(get_services)) -> Dict[str, Any]:
    """Readiness probe endpoint."""
    result = await services.health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

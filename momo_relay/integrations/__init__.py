"""External integrations for the payment relay."""
from .gateway_client import (
    CallbackUrls,
    FusionPayClient,
    GatewayError,
    GatewayErrorType,
    GatewayHttpError,
    GatewayMalformedResponse,
    GatewaySession,
    GatewayTimeout,
    GatewayTransportError,
)
from .order_notifier import OrderNotifier

__all__ = [
    "CallbackUrls",
    "FusionPayClient",
    "GatewayError",
    "GatewayErrorType",
    "GatewayHttpError",
    "GatewayMalformedResponse",
    "GatewaySession",
    "GatewayTimeout",
    "GatewayTransportError",
    "OrderNotifier",
]

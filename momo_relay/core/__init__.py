"""Payment lifecycle and webhook idempotency engine."""
from .audit_log import WebhookAuditLog
from .orchestrator import PaymentOrchestrator, PaymentValidationError, PaymentVerification
from .store import StorageError, TransactionNotFound, TransactionStore
from .types import (
    InitiateErrorCode,
    InitiateResult,
    PaymentRequest,
    WebhookEvent,
    WebhookOutcome,
    WebhookResult,
)
from .webhook_processor import ReplayError, WebhookProcessor

__all__ = [
    "InitiateErrorCode",
    "InitiateResult",
    "PaymentOrchestrator",
    "PaymentRequest",
    "PaymentValidationError",
    "PaymentVerification",
    "ReplayError",
    "StorageError",
    "TransactionNotFound",
    "TransactionStore",
    "WebhookAuditLog",
    "WebhookEvent",
    "WebhookOutcome",
    "WebhookProcessor",
    "WebhookResult",
]

"""
Pydantic schemas for API request/response models.

JSON keys are camelCase, the shape the checkout front-end already sends
and reads; snake_case names are accepted on input as well.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from momo_relay.core.types import PaymentRequest
from momo_relay.database.models import Transaction, WebhookRecord

CAMEL_CASE = {"alias_generator": to_camel, "populate_by_name": True}


class InitiatePaymentRequest(BaseModel):
    """
    Request schema for starting a payment.

    Fields default to empty so that missing values reach the payment
    validation and come back as a 400 listing every problem.
    """

    amount: Decimal = Field(default=Decimal("0"), description="Amount to collect")
    customer_phone: str = Field(default="", description="Payer phone number")
    customer_name: str = Field(default="", description="Payer name")
    order_id: str = Field(default="", description="External order identifier")
    order_number: Optional[str] = Field(default=None, description="Human order number")
    return_url: str = Field(default="", description="Where the payer lands after paying")

    model_config = {
        **CAMEL_CASE,
        "json_schema_extra": {
            "examples": [
                {
                    "amount": 15000,
                    "customerPhone": "+225 07 12 34 56 78",
                    "customerName": "Awa Kone",
                    "orderId": "5812345678901",
                    "orderNumber": "#1042",
                    "returnUrl": "https://shop.example.com/thank-you",
                }
            ]
        },
    }

    def to_payment_request(self) -> PaymentRequest:
        return PaymentRequest(
            order_ref=self.order_id,
            order_number=self.order_number or None,
            amount=self.amount,
            phone=self.customer_phone,
            customer_name=self.customer_name,
            return_url=self.return_url,
        )


class InitiatePaymentResponse(BaseModel):
    """Response schema for a payment session that can be paid."""

    success: bool = Field(default=True)
    payment_url: str = Field(..., description="Gateway payment page")
    token: str = Field(..., description="Gateway token")
    transaction_id: int = Field(..., description="Local transaction id")
    message: str = Field(default="", description="Gateway message")

    model_config = CAMEL_CASE


class PaymentErrorResponse(BaseModel):
    """Response schema for a rejected or failed initiation."""

    success: bool = Field(default=False)
    error: Optional[str] = Field(default=None, description="Failure description")
    error_code: Optional[str] = Field(default=None, description="Failure classification")
    errors: List[str] = Field(default_factory=list, description="Validation problems")
    transaction_id: Optional[int] = Field(default=None, description="Local transaction id")
    message: str = Field(default="Payment initiation failed")

    model_config = CAMEL_CASE


class TransactionSummary(BaseModel):
    """Public view of a transaction."""

    id: int
    order_id: str
    order_number: str
    token: Optional[str] = None
    amount: Decimal
    status: str
    is_processed: bool
    last_event: Optional[str] = None
    customer_phone: str
    error_message: Optional[str] = None
    created_at: datetime
    paid_at: Optional[datetime] = None

    model_config = CAMEL_CASE

    @classmethod
    def from_transaction(cls, tx: Transaction) -> "TransactionSummary":
        return cls(
            id=tx.id,
            order_id=tx.order_ref,
            order_number=tx.order_number,
            token=tx.gateway_token,
            amount=tx.amount,
            status=tx.status,
            is_processed=tx.is_processed,
            last_event=tx.last_event,
            customer_phone=tx.customer_phone,
            error_message=tx.error_message,
            created_at=tx.created_at,
            paid_at=tx.paid_at,
        )


class VerifyPaymentResponse(BaseModel):
    """Response schema for payment verification."""

    token: str
    status: str = Field(..., description="verified, or error when the gateway could not answer")
    transaction: Optional[TransactionSummary] = None
    gateway: Optional[Dict[str, Any]] = Field(default=None, description="Gateway answer")
    timestamp: datetime

    model_config = CAMEL_CASE


class PendingTransactionsResponse(BaseModel):
    """Response schema for the pending transactions listing."""

    count: int
    transactions: List[TransactionSummary]
    timestamp: datetime

    model_config = CAMEL_CASE


class WebhookResponse(BaseModel):
    """Response schema for webhook processing."""

    status: str = Field(..., description="Processing outcome")
    record_id: int = Field(..., description="Audit record id")
    transaction_id: Optional[int] = Field(default=None, description="Resolved transaction")
    transaction_status: Optional[str] = Field(default=None, description="Status after processing")

    model_config = CAMEL_CASE


class WebhookLogEntry(BaseModel):
    """One audited webhook delivery."""

    id: int
    event_type: str
    gateway_token: str
    received_at: datetime
    is_duplicate: bool
    outcome: str
    ip_address: Optional[str] = None
    http_method: Optional[str] = None

    model_config = CAMEL_CASE

    @classmethod
    def from_record(cls, record: WebhookRecord) -> "WebhookLogEntry":
        return cls(
            id=record.id,
            event_type=record.event_type,
            gateway_token=record.gateway_token,
            received_at=record.received_at,
            is_duplicate=record.is_duplicate,
            outcome=record.outcome,
            ip_address=record.ip_address,
            http_method=record.http_method,
        )


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")

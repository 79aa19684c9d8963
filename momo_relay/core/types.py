"""
Typed inputs and results of the payment engine.

Raw gateway JSON is parsed here, at the boundary; the engine only ever sees
these models.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PaymentRequest(BaseModel):
    """A request to collect ``amount`` for one order."""

    order_ref: str = Field(..., description="External order identifier")
    order_number: Optional[str] = Field(default=None, description="Human order number")
    amount: Decimal = Field(..., description="Amount to collect")
    phone: str = Field(..., description="Payer phone number")
    customer_name: str = Field(..., description="Payer name")
    return_url: str = Field(..., description="Where the payer lands after paying")


class WebhookEvent(BaseModel):
    """
    FusionPay notification body.

    ``tokenPay`` may arrive as a string or a number and amounts may arrive as
    numeric strings, so both are coerced.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event: str = Field(..., min_length=1)
    token: str = Field(..., alias="tokenPay", min_length=1)
    payer_phone: str = Field(default="", alias="numeroSend")
    customer_name: str = Field(default="", alias="nomclient")
    gateway_transaction_number: str = Field(default="", alias="numeroTransaction")
    amount: Decimal = Field(default=Decimal("0"), alias="Montant")
    fees: Decimal = Field(default=Decimal("0"), alias="frais")
    personal_info: Any = Field(default=None, alias="personal_Info")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    @field_validator("token", "payer_phone", "gateway_transaction_number", mode="before")
    @classmethod
    def coerce_to_str(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        if isinstance(v, str):
            return v.strip()
        if v is None:
            return ""
        return v

    @field_validator("amount", "fees", mode="before")
    @classmethod
    def empty_amount_is_zero(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return Decimal("0")
        return v

    @property
    def correlating_order_ref(self) -> Optional[str]:
        """``orderId`` echoed back from ``personal_info``, when present."""
        info = self.personal_info
        if isinstance(info, list) and info:
            info = info[0]
        if isinstance(info, dict):
            order_id = info.get("orderId")
            return str(order_id) if order_id is not None else None
        return None


class InitiateErrorCode(str, Enum):
    """Why an initiation did not produce a payable session."""

    VALIDATION_ERROR = "validation_error"
    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"
    MALFORMED_RESPONSE = "malformed_response"
    TRANSPORT = "transport"
    GATEWAY_REJECTED = "gateway_rejected"
    DUPLICATE_TOKEN = "duplicate_token"


class InitiateResult(BaseModel):
    """Definitive answer to a payment initiation."""

    success: bool
    transaction_id: Optional[int] = None
    token: Optional[str] = None
    redirect_url: Optional[str] = None
    message: str = ""
    error_message: Optional[str] = None
    error_code: Optional[InitiateErrorCode] = None
    errors: list[str] = Field(default_factory=list)


class WebhookOutcome(str, Enum):
    """How a webhook delivery was resolved."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    SUPERSEDED = "superseded"
    UNRECOGNIZED = "unrecognized"
    NOT_FOUND = "not_found"

    @property
    def accepted(self) -> bool:
        """True when the sender should not redeliver."""
        return self is not WebhookOutcome.NOT_FOUND


class WebhookResult(BaseModel):
    """Result of processing one webhook delivery."""

    outcome: WebhookOutcome
    record_id: int
    transaction_id: Optional[int] = None
    status: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.outcome.accepted

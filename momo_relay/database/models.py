"""SQLAlchemy database models for the payment relay."""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class TransactionStatus:
    """Allowed values of ``Transaction.status``."""

    INITIATING = "initiating"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"

    TERMINAL = frozenset({PAID, FAILED})


class Transaction(Base):
    """
    Payment transactions table.

    One row per payment attempt for one order. The row is written before the
    gateway is called; the gateway token is recorded once the session exists
    and is the key webhooks are correlated on.
    """

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_ref: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    order_number: Mapped[str] = mapped_column(String(100), nullable=False)
    gateway_token: Mapped[str | None] = mapped_column(
        String(100), unique=True, nullable=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    customer_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    return_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransactionStatus.INITIATING
    )
    is_processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_event: Mapped[str | None] = mapped_column(String(100), nullable=True)
    fees: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    gateway_transaction_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    error_message: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now(), index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        onupdate=func.now(),
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="positive_amount"),
        CheckConstraint(
            "status IN ('initiating', 'pending', 'paid', 'failed')",
            name="valid_status",
        ),
        Index("idx_transactions_status_processed", "status", "is_processed"),
    )

    def __repr__(self) -> str:
        """String representation of Transaction."""
        return (
            f"<Transaction(id={self.id}, order_ref={self.order_ref}, "
            f"token={self.gateway_token}, status={self.status})>"
        )


class WebhookRecord(Base):
    """
    Webhook audit log table.

    Append-only: one row per inbound notification, written before any
    correlation attempt. Only ``is_duplicate`` and ``outcome`` are updated
    afterwards.
    """

    __tablename__ = "webhook_log"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    gateway_token: Mapped[str] = mapped_column(String(100), nullable=False)
    raw_payload: Mapped[str] = mapped_column(Text, nullable=False)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    is_duplicate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    outcome: Mapped[str] = mapped_column(String(500), nullable=False, default="received")
    ip_address: Mapped[str | None] = mapped_column(String(50), nullable=True)
    http_method: Mapped[str | None] = mapped_column(String(10), nullable=True)

    __table_args__ = (
        Index("idx_webhook_log_token_event_received", "gateway_token", "event_type", "received_at"),
        Index("idx_webhook_log_duplicate", "is_duplicate"),
    )

    def __repr__(self) -> str:
        """String representation of WebhookRecord."""
        return (
            f"<WebhookRecord(id={self.id}, event={self.event_type}, "
            f"token={self.gateway_token}, duplicate={self.is_duplicate})>"
        )

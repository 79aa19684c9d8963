"""Database package for the payment relay."""
from .connection import close_db, get_session_factory, init_db
from .models import Base, Transaction, TransactionStatus, WebhookRecord

__all__ = [
    "Base",
    "Transaction",
    "TransactionStatus",
    "WebhookRecord",
    "close_db",
    "get_session_factory",
    "init_db",
]

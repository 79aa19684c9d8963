"""
Order-management notification hook.

The relay does not synchronize orders itself. It tells the order side that
a payment was confirmed, exactly once per transaction, and leaves the rest
to the collaborator behind this interface.
"""
from typing import Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)

PaymentConfirmedCallback = Callable[[str, int], Awaitable[None]]


class OrderNotifier:
    """
    Dispatches "payment confirmed" notifications to the order system.

    Pass ``callback`` to plug in a real integration; without one the
    notification is only logged.
    """

    def __init__(self, callback: Optional[PaymentConfirmedCallback] = None):
        self.callback = callback or self._default_callback

    async def _default_callback(self, order_ref: str, transaction_id: int) -> None:
        logger.info(
            "order_payment_confirmed_default",
            order_ref=order_ref,
            transaction_id=transaction_id,
        )

    async def payment_confirmed(self, order_ref: str, transaction_id: int) -> None:
        """
        Notify the order system that ``order_ref`` has been paid.

        Args:
            order_ref: External order identifier
            transaction_id: Local transaction that settled it
        """
        logger.info(
            "order_notification_dispatched",
            order_ref=order_ref,
            transaction_id=transaction_id,
        )
        await self.callback(order_ref, transaction_id)

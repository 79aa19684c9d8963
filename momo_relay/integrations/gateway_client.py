"""
FusionPay API client with outcome classification.

Implements:
- Payment session creation ("pay-in")
- Payment status verification by token
- Bounded request timeout
- Error classification (timeout, HTTP status, malformed body, transport)

The client never retries. Creating a session is not idempotent on the
gateway side, so a retry could open a second remote session for the same
transaction; callers start a new transaction instead.
"""
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

import httpx
import structlog

from momo_relay.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class GatewayErrorType(Enum):
    """Classification of gateway call failures."""

    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"
    MALFORMED_RESPONSE = "malformed_response"
    TRANSPORT = "transport"


class GatewayError(Exception):
    """Base exception for gateway-related errors."""

    def __init__(
        self,
        message: str,
        error_type: GatewayErrorType,
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize gateway error.

        Args:
            message: Error message
            error_type: Classification of error
            original_error: Underlying httpx exception, if any
        """
        super().__init__(message)
        self.error_type = error_type
        self.original_error = original_error


class GatewayTimeout(GatewayError):
    """The gateway did not answer within the configured timeout."""

    def __init__(self, original_error: Optional[Exception] = None):
        super().__init__("timeout", GatewayErrorType.TIMEOUT, original_error)


class GatewayHttpError(GatewayError):
    """The gateway answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str = ""):
        super().__init__(f"gateway http error: {status_code}", GatewayErrorType.HTTP_STATUS)
        self.status_code = status_code
        self.body = body


class GatewayMalformedResponse(GatewayError):
    """A 2xx response whose body lacks the fields a session needs."""

    def __init__(self, detail: str):
        super().__init__(f"malformed gateway response: {detail}", GatewayErrorType.MALFORMED_RESPONSE)


class GatewayTransportError(GatewayError):
    """Connection-level failure (DNS, refused connection, protocol error)."""

    def __init__(self, original_error: Exception):
        super().__init__(
            f"gateway unreachable: {original_error}",
            GatewayErrorType.TRANSPORT,
            original_error,
        )


@dataclass(frozen=True)
class CallbackUrls:
    """Where the gateway sends the customer and the notifications."""

    return_url: str
    webhook_url: str


@dataclass(frozen=True)
class GatewaySession:
    """Well-formed answer to a session creation request."""

    success: bool
    token: str
    redirect_url: str
    message: str = ""


def digits_only(phone: str) -> str:
    """FusionPay expects phone numbers as bare digits, e.g. ``771234567``."""
    return "".join(ch for ch in phone if ch.isdigit())


class FusionPayClient:
    """
    Wrapper for the FusionPay pay-in API.

    Features:
    - Single bounded attempt per call
    - Strict parsing of the session response
    - Typed error classification
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 45.0,
        product_name: str = "Commande",
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize FusionPay client.

        Args:
            base_url: Pay-in API URL; session creation posts to it directly
            timeout_seconds: Upper bound for one request
            product_name: Article name shown on the payment page
            http_client: Optional pre-built client (tests, connection reuse)
        """
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds
        self.product_name = product_name
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers={"Accept": "application/json"},
        )

        logger.info(
            "fusionpay_client_initialized",
            base_url=base_url,
            timeout_seconds=timeout_seconds,
        )

    def _build_session_payload(
        self,
        order_ref: str,
        amount: Decimal,
        phone: str,
        customer_name: str,
        callback_urls: CallbackUrls,
        transaction_id: int,
    ) -> Dict[str, Any]:
        """Request body in the gateway's wire format (amounts in whole units)."""
        total = int(amount)
        return {
            "totalPrice": total,
            "article": [{"name": self.product_name, "price": total}],
            "numeroSend": digits_only(phone),
            "nomclient": customer_name,
            "personal_info": [{"orderId": order_ref, "transactionId": transaction_id}],
            "return_url": callback_urls.return_url,
            "webhook_url": callback_urls.webhook_url,
        }

    async def _send(self, operation: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Perform one HTTP request and classify transport-level failures.

        Raises:
            GatewayTimeout: If the request exceeded the timeout
            GatewayTransportError: On any other httpx transport failure
            GatewayHttpError: On a non-2xx status
        """
        start_time = time.time()
        try:
            response = await self._client.request(
                method, url, timeout=self.timeout_seconds, **kwargs
            )
        except httpx.TimeoutException as e:
            metrics.record_gateway_call(operation, "timeout", time.time() - start_time)
            logger.error("gateway_timeout", operation=operation, timeout_seconds=self.timeout_seconds)
            raise GatewayTimeout(e) from e
        except httpx.TransportError as e:
            metrics.record_gateway_call(operation, "transport_error", time.time() - start_time)
            logger.error("gateway_transport_error", operation=operation, error=str(e))
            raise GatewayTransportError(e) from e

        duration = time.time() - start_time
        if not response.is_success:
            metrics.record_gateway_call(operation, "http_error", duration)
            logger.error(
                "gateway_http_error",
                operation=operation,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise GatewayHttpError(response.status_code, response.text)

        metrics.record_gateway_call(operation, "ok", duration)
        return response

    @staticmethod
    def _parse_json(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise GatewayMalformedResponse("body is not JSON") from e
        if not isinstance(data, dict):
            raise GatewayMalformedResponse("body is not a JSON object")
        return data

    @classmethod
    def parse_session(cls, response: httpx.Response) -> GatewaySession:
        """
        Strictly parse a session creation response.

        The boolean ``statut`` flag, the ``token`` and the redirect ``url``
        must all be present; anything less is never treated as success.

        Raises:
            GatewayMalformedResponse: If a required field is missing or mistyped
        """
        data = cls._parse_json(response)

        statut = data.get("statut")
        if not isinstance(statut, bool):
            raise GatewayMalformedResponse("missing boolean 'statut'")

        token = data.get("token")
        if isinstance(token, int) and not isinstance(token, bool):
            token = str(token)
        if not isinstance(token, str) or not token.strip():
            raise GatewayMalformedResponse("missing 'token'")

        url = data.get("url")
        if not isinstance(url, str) or not url.strip():
            raise GatewayMalformedResponse("missing 'url'")

        message = data.get("message")
        return GatewaySession(
            success=statut,
            token=token.strip(),
            redirect_url=url.strip(),
            message=message if isinstance(message, str) else "",
        )

    async def create_session(
        self,
        order_ref: str,
        amount: Decimal,
        phone: str,
        customer_name: str,
        callback_urls: CallbackUrls,
        transaction_id: int,
    ) -> GatewaySession:
        """
        Create a payment session on the gateway.

        Args:
            order_ref: External order identifier
            amount: Amount to collect
            phone: Payer phone number (formatted to digits before sending)
            customer_name: Payer name
            callback_urls: Return and webhook URLs
            transaction_id: Local transaction id, echoed back in personal_info

        Returns:
            GatewaySession: Parsed, well-formed gateway answer

        Raises:
            GatewayError: Classified failure (see module docstring)
        """
        payload = self._build_session_payload(
            order_ref, amount, phone, customer_name, callback_urls, transaction_id
        )

        logger.info(
            "creating_gateway_session",
            order_ref=order_ref,
            transaction_id=transaction_id,
            amount=str(amount),
        )
        logger.debug("gateway_session_request", payload=payload)

        response = await self._send("create_session", "POST", "", json=payload)
        session = self.parse_session(response)

        logger.info(
            "gateway_session_created",
            transaction_id=transaction_id,
            token=session.token,
            gateway_success=session.success,
        )
        return session

    async def verify_payment(self, token: str) -> Dict[str, Any]:
        """
        Fetch the gateway's view of a payment by token.

        Args:
            token: Gateway token

        Returns:
            Dict[str, Any]: Decoded gateway answer

        Raises:
            GatewayError: Classified failure
        """
        logger.info("verifying_gateway_payment", token=token)
        response = await self._send("verify_payment", "GET", f"paiementNotif/{token}")
        return self._parse_json(response)

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

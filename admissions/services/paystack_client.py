"""
Paystack API Client

This module provides integration with the Paystack payment gateway for:
- Payment initialization
- Payment verification
- Transaction listing
- Webhook signature validation

Documentation: https://paystack.com/docs/api/
"""
import os
import hmac
import time
import uuid
import hashlib
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Any, Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from ..core.config import settings
from ..core.exceptions import GatewayError

logger = logging.getLogger(__name__)

SUBSCRIPTION_REFERENCE_PREFIX = "SUB"
APPLICATION_FEE_REFERENCE_PREFIX = "APP"


class PaystackClient:
    """
    Client for interacting with the Paystack API.

    One instance is created at application startup and handed to services
    through FastAPI dependencies.
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        callback_url: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.secret_key = secret_key or os.environ.get("PAYSTACK_SECRET_KEY")
        # Paystack signs webhooks with the account secret key unless told otherwise
        self.webhook_secret = webhook_secret or os.environ.get("PAYSTACK_WEBHOOK_SECRET") or self.secret_key
        self.callback_url = callback_url or os.environ.get(
            "PAYMENT_CALLBACK_URL", f"{settings.FRONTEND_URL}/payment/callback"
        )
        self.base_url = (base_url or settings.PAYSTACK_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.PAYSTACK_TIMEOUT_SECONDS
        self._transport = transport

        if not self.secret_key:
            logger.warning("PAYSTACK_SECRET_KEY not set - payment processing will fail")

        logger.info(f"Paystack client initialized with callback URL: {self.callback_url}")

    def _get_headers(self) -> Dict[str, str]:
        """Get HTTP headers for Paystack API requests"""
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True
    )
    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Single HTTP round trip; transport errors and timeouts are retried"""
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport
        ) as client:
            return await client.request(method, path, headers=self._get_headers(), **kwargs)

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            return response.json()
        except ValueError:
            return {}

    @staticmethod
    def naira_to_kobo(amount) -> int:
        """Convert major units to kobo, rounding half up"""
        return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    @staticmethod
    def kobo_to_naira(kobo: int) -> Decimal:
        return (Decimal(kobo) / 100).quantize(Decimal("0.01"))

    @staticmethod
    def generate_reference(prefix: str = SUBSCRIPTION_REFERENCE_PREFIX) -> str:
        """Unique reference: PREFIX-<epoch ms>-<random hex>"""
        return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"

    async def initialize_transaction(
        self,
        email: str,
        amount: Decimal,
        reference: str,
        metadata: Optional[Dict[str, Any]] = None,
        currency: str = "NGN"
    ) -> Dict[str, Any]:
        """
        Initialize a payment transaction with Paystack.

        Args:
            email: Customer's email address
            amount: Amount in major units (NGN); converted to kobo here
            reference: Unique transaction reference
            metadata: Additional transaction metadata (user_id, subscription_id, payment_type)
            currency: Currency code

        Returns:
            Dict containing authorization_url, access_code and reference

        Raises:
            GatewayError: If Paystack rejects the request or cannot be reached
        """
        payload = {
            "email": email,
            "amount": self.naira_to_kobo(amount),
            "reference": reference,
            "callback_url": self.callback_url,
            "currency": currency,
            "metadata": {
                **(metadata or {}),
                "cancel_action": f"{settings.FRONTEND_URL}/student"
            }
        }

        logger.info(
            "Initializing Paystack transaction",
            extra={"reference": reference, "email": email, "amount": str(amount), "currency": currency}
        )

        try:
            response = await self._send("POST", "/transaction/initialize", json=payload)
        except httpx.HTTPError as e:
            logger.error(f"HTTP error initializing transaction: {e}", extra={"reference": reference})
            raise GatewayError(f"Failed to connect to Paystack: {str(e)}") from e

        data = self._json(response)
        if response.status_code == 200 and data.get("status"):
            logger.info(
                "Transaction initialized successfully",
                extra={"reference": reference, "authorization_url": data["data"].get("authorization_url")}
            )
            return data["data"]

        error_message = data.get("message") or "Failed to initialize payment"
        logger.error(
            f"Paystack initialization failed: {error_message}",
            extra={"reference": reference, "status_code": response.status_code}
        )
        raise GatewayError(error_message, status_code=response.status_code, response_data=data)

    async def verify_transaction(self, reference: str) -> Dict[str, Any]:
        """
        Verify a payment transaction with Paystack.

        Safe to call repeatedly for the same reference.

        Returns:
            Paystack's transaction object: status, amount (kobo), paid_at,
            channel, gateway_response, customer, metadata

        Raises:
            GatewayError: If verification cannot be performed
        """
        logger.info("Verifying transaction", extra={"reference": reference})

        try:
            response = await self._send("GET", f"/transaction/verify/{reference}")
        except httpx.HTTPError as e:
            logger.error(f"HTTP error verifying transaction: {e}", extra={"reference": reference})
            raise GatewayError(f"Failed to connect to Paystack: {str(e)}") from e

        data = self._json(response)
        if response.status_code == 200 and data.get("status"):
            transaction_data = data["data"]
            logger.info(
                "Transaction verified",
                extra={
                    "reference": reference,
                    "status": transaction_data.get("status"),
                    "amount": transaction_data.get("amount")
                }
            )
            return transaction_data

        error_message = data.get("message") or "Failed to verify payment"
        logger.error(
            f"Transaction verification failed: {error_message}",
            extra={"reference": reference, "status_code": response.status_code}
        )
        raise GatewayError(error_message, status_code=response.status_code, response_data=data)

    async def list_transactions(self, per_page: int = 50, page: int = 1) -> Dict[str, Any]:
        """List transactions on the Paystack account (data + pagination meta)"""
        try:
            response = await self._send("GET", "/transaction", params={"perPage": per_page, "page": page})
        except httpx.HTTPError as e:
            raise GatewayError(f"Failed to connect to Paystack: {str(e)}") from e

        data = self._json(response)
        if response.status_code == 200 and data.get("status"):
            return {"data": data.get("data", []), "meta": data.get("meta", {})}

        raise GatewayError(
            data.get("message") or "Failed to list transactions",
            status_code=response.status_code,
            response_data=data
        )

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        """
        Verify that a webhook request is from Paystack.

        Paystack signs webhook payloads with HMAC SHA512 over the raw body.
        """
        if not self.webhook_secret:
            logger.error("Webhook secret not configured - cannot verify signature")
            return False

        if not signature:
            logger.warning("No signature provided in webhook request")
            return False

        computed_signature = hmac.new(
            key=self.webhook_secret.encode("utf-8"),
            msg=payload,
            digestmod=hashlib.sha512
        ).hexdigest()

        # Headers arrive latin-1 decoded, so compare bytes rather than str
        is_valid = hmac.compare_digest(
            computed_signature.encode("utf-8"),
            signature.encode("utf-8", "surrogateescape")
        )

        if not is_valid:
            logger.warning(
                "Webhook signature verification failed",
                extra={"provided_signature": signature[:20] + "..."}
            )

        return is_valid

"""External payment processor communication layer."""
import httpx
import logging
import time
from typing import Dict, Any, Optional

from config import PAYMENT_PROVIDER_URL, PAYMENT_PROVIDER_SECRET_KEY
from exceptions import PaymentProcessorError
from monitoring import payment_duration_histogram

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = "succeeded"


class PaymentProcessorClient:
    """Client for the payment processor's payment-intent API."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str = PAYMENT_PROVIDER_URL,
        secret_key: str = PAYMENT_PROVIDER_SECRET_KEY
    ):
        """
        Initialize payment processor client.

        Args:
            http_client: Async HTTP client
            base_url: Processor API root
            secret_key: Bearer key for the processor
        """
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.secret_key = secret_key

    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        description: str,
        metadata: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        """
        Create a payment intent.

        Args:
            amount: Amount in the smallest currency unit
            currency: Currency code
            description: Text shown on the processor dashboard
            metadata: Identifiers echoed back by the processor

        Returns:
            Intent data with ``id``, ``status``, ``client_secret``, ``amount``, ``currency``

        Raises:
            PaymentProcessorError: If the processor call fails
        """
        return await self._call(
            "create_intent",
            "POST",
            "/v1/payment_intents",
            json={
                "amount": amount,
                "currency": currency,
                "description": description,
                "metadata": metadata or {},
                "automatic_payment_methods": {"enabled": True}
            }
        )

    async def retrieve_payment_intent(self, payment_intent_id: str) -> Dict[str, Any]:
        """
        Fetch the current state of a payment intent.

        Raises:
            PaymentProcessorError: If the processor call fails
        """
        return await self._call("retrieve_intent", "GET", f"/v1/payment_intents/{payment_intent_id}")

    async def cancel_payment_intent(self, payment_intent_id: str) -> Dict[str, Any]:
        """
        Cancel a payment intent.

        Raises:
            PaymentProcessorError: If the processor call fails
        """
        return await self._call("cancel_intent", "POST", f"/v1/payment_intents/{payment_intent_id}/cancel")

    async def _call(self, operation: str, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        # HTTPXClientInstrumentor already creates spans for HTTP calls
        start_time = time.time()
        status = "success"
        status_code = None
        try:
            response = await self.http_client.request(
                method,
                f"{self.base_url}{path}",
                json=json,
                headers={"Authorization": f"Bearer {self.secret_key}"}
            )
            status_code = response.status_code
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            status = "error"
            logger.error("Payment processor call failed", extra={
                "operation": operation,
                "status_code": status_code,
                "error": str(e)
            })
            raise PaymentProcessorError(operation, e) from e
        finally:
            payment_duration_histogram.record(
                time.time() - start_time,
                {
                    "operation": operation,
                    "status": status,
                    "status_code": str(status_code) if status_code else "0"
                }
            )

"""
Paystack Service - hosted checkout and transaction verification via the Paystack API.
"""

import hmac
import hashlib
import logging
from typing import Any, Dict, List, Optional

import httpx

from app.config import settings
from app.exceptions import GatewayError
from app.services.gateway import GatewayTransaction, GatewayVerification

logger = logging.getLogger(__name__)


class PaystackService:
    """GatewayAdapter backed by the Paystack REST API."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key if secret_key is not None else settings.paystack_secret_key
        self.base_url = (base_url or settings.paystack_base_url).rstrip("/")
        self.timeout = timeout or settings.paystack_timeout_seconds
        self.transport = transport

        if not self.secret_key:
            logger.warning("PAYSTACK_SECRET_KEY not configured, gateway calls will be rejected")

    async def initialize_transaction(
        self,
        amount_minor_units: int,
        email: str,
        reference: str,
        callback_url: str,
        metadata: Dict[str, Any],
        channels: List[str],
        currency: str,
    ) -> GatewayTransaction:
        """
        Create a hosted transaction.

        Raises GatewayError unless Paystack reports success.
        """
        payload = {
            "amount": amount_minor_units,
            "email": email,
            "reference": reference,
            "callback_url": callback_url,
            "metadata": metadata,
            "channels": channels,
            "currency": currency,
        }

        data = await self._request("POST", "/transaction/initialize", json=payload)

        logger.info(f"Paystack transaction initialized: {reference}")
        return GatewayTransaction(
            authorization_url=data["authorization_url"],
            access_code=data["access_code"],
            reference=data.get("reference") or reference,
        )

    async def verify_transaction(self, reference: str) -> GatewayVerification:
        """Fetch the authoritative status of a transaction."""
        data = await self._request("GET", f"/transaction/verify/{reference}")

        raw_metadata = data.get("metadata")
        if not isinstance(raw_metadata, dict):
            # Paystack sends "" or null when no metadata was attached
            raw_metadata = {}

        gateway_id = data.get("id")

        return GatewayVerification(
            status=data.get("status") or "",
            reference=data.get("reference") or reference,
            amount_minor_units=int(data.get("amount") or 0),
            currency=data.get("currency"),
            paid_at=data.get("paid_at") or data.get("paidAt"),
            channel=data.get("channel"),
            gateway_fees=data.get("fees"),
            gateway_id=str(gateway_id) if gateway_id is not None else None,
            gateway_response=data.get("gateway_response"),
            ip_address=data.get("ip_address"),
            raw_metadata=raw_metadata,
        )

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> Dict[str, Any]:
        """Call Paystack and unwrap the `{status, message, data}` envelope."""
        if not self.secret_key:
            raise GatewayError("Paystack secret key is not configured")

        headers = {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = await client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"Paystack request timeout: {method} {path}")
            raise GatewayError("Payment gateway timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"Paystack transport error: {e}")
            raise GatewayError(f"Payment gateway unreachable: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code != 200 or not body.get("status"):
            message = body.get("message") or f"HTTP {response.status_code}"
            logger.error(f"Paystack error on {method} {path}: {response.status_code} {message}")
            raise GatewayError(f"Payment gateway rejected the request: {message}")

        return body.get("data") or {}


def verify_paystack_signature(payload: bytes, signature: Optional[str], secret: str) -> bool:
    """
    Verify a Paystack webhook signature (HMAC SHA512 of the raw body).
    """
    if not signature or not secret:
        return False

    expected_signature = hmac.new(
        secret.encode(),
        payload,
        hashlib.sha512,
    ).hexdigest()

    return hmac.compare_digest(expected_signature, signature)

"""
Payment gateway contract.

PaymentService talks to the gateway only through GatewayAdapter; the
concrete Paystack client lives in paystack_service.py.
"""

import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

from app.config import settings

logger = logging.getLogger(__name__)


class GatewayTransaction(BaseModel):
    """Hosted checkout created by the gateway."""

    authorization_url: str
    access_code: str
    reference: str


class GatewayVerification(BaseModel):
    """Authoritative transaction state reported by the gateway."""

    status: str
    reference: str
    amount_minor_units: int = 0
    currency: Optional[str] = None
    paid_at: Optional[datetime] = None
    channel: Optional[str] = None
    gateway_fees: Optional[int] = None
    gateway_id: Optional[str] = None
    gateway_response: Optional[str] = None
    ip_address: Optional[str] = None
    raw_metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def amount(self) -> Decimal:
        return from_minor_units(self.amount_minor_units)


class GatewayMetadata(BaseModel):
    """
    Audit blob stored on a payment record.

    Known fields are typed; whatever else the gateway sent goes into `raw`,
    which is dropped when the serialized blob exceeds the configured size.
    """

    model_config = ConfigDict(extra="forbid")

    source: str
    event: Optional[str] = None
    channel: Optional[str] = None
    currency: Optional[str] = None
    gateway_fees: Optional[int] = None
    gateway_response: Optional[str] = None
    ip_address: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)

    def to_blob(self, max_bytes: Optional[int] = None) -> Dict[str, Any]:
        limit = max_bytes or settings.gateway_metadata_max_bytes
        blob = self.model_dump(mode="json", exclude_none=True)

        if len(json.dumps(blob, default=str)) > limit:
            logger.warning(f"Gateway metadata over {limit} bytes, dropping raw payload")
            blob["raw"] = {}
            blob["raw_truncated"] = True

        return blob

    @classmethod
    def from_verification(cls, verification: GatewayVerification) -> "GatewayMetadata":
        return cls(
            source="verify",
            channel=verification.channel,
            currency=verification.currency,
            gateway_fees=verification.gateway_fees,
            gateway_response=verification.gateway_response,
            ip_address=verification.ip_address,
            raw=verification.raw_metadata,
        )


class GatewayAdapter(Protocol):
    """What the payment core needs from a payment gateway."""

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
        ...

    async def verify_transaction(self, reference: str) -> GatewayVerification:
        ...


def to_minor_units(amount: Decimal) -> int:
    """Convert a major-unit amount (cedis) to minor units (pesewas)."""
    return int((Decimal(amount) * 100).to_integral_value())


def from_minor_units(amount_minor_units: int) -> Decimal:
    return (Decimal(amount_minor_units) / 100).quantize(Decimal("0.01"))

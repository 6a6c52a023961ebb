from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.services.gateway import GatewayAdapter
from app.services.payment_service import PaymentService


async def verify_admin_key(x_admin_key: Optional[str] = Header(None)) -> None:
    """Verify admin API key from header."""
    if not settings.admin_api_key or x_admin_key != settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin key",
        )


def get_gateway() -> Optional[GatewayAdapter]:
    """Gateway used by PaymentService. None means the configured Paystack client."""
    return None


async def get_payment_service(
    db: AsyncSession = Depends(get_db),
    gateway: Optional[GatewayAdapter] = Depends(get_gateway),
) -> PaymentService:
    return PaymentService(db, gateway=gateway)

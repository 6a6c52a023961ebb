"""
Paystack Webhook Handler.
Verifies signatures and applies charge events to payment records.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from app.api.deps import get_payment_service
from app.config import settings
from app.exceptions import NotFoundError, PersistenceError
from app.services.payment_service import PaymentService
from app.services.paystack_service import verify_paystack_signature

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/paystack")
async def paystack_webhook(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
):
    """
    Handle Paystack webhook events.

    Key events:
    - charge.success: Payment completed
    - charge.failed: Payment declined

    Answers 200 once the signature checks out so Paystack stops retrying,
    unless the payment status could not be saved. Duplicate deliveries
    are no-ops.
    """
    body = await request.body()
    signature = request.headers.get("x-paystack-signature")

    if not verify_paystack_signature(body, signature, settings.paystack_secret_key):
        logger.error("Invalid Paystack webhook signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = await request.json()
        event = payload.get("event")
        logger.info(f"Paystack webhook received: {event}")

        outcome = await service.handle_webhook(payload)

        if outcome is None:
            return {"status": "ignored"}
        if not outcome.applied:
            return {"status": "duplicate", "reference": outcome.payment.reference}

        return {
            "status": "ok",
            "reference": outcome.payment.reference,
            "payment_status": outcome.payment.status,
            "reconciliation_pending": outcome.reconciliation_pending,
        }

    except NotFoundError as e:
        logger.warning(f"Paystack webhook for unknown payment: {e}")
        return {"status": "ignored", "message": str(e)}
    except PersistenceError:
        # 500 so Paystack redelivers; the record is still pending
        raise
    except Exception as e:
        logger.error(f"Error processing Paystack webhook: {e}", exc_info=True)
        # Return 200 to prevent excessive retries
        return {"status": "error", "message": str(e)}

"""
Admin Reconciliation Endpoints.
Inspect and re-drive plan updates that failed after payment confirmation.
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import verify_admin_key
from app.config import settings
from app.database import get_db
from app.services.reconciliation_service import ReconciliationService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/reconciliation/tasks")
async def list_reconciliation_tasks(
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    _: None = Depends(verify_admin_key),
):
    tasks = await ReconciliationService(db).list_pending_tasks(limit)

    return {
        "status": "success",
        "count": len(tasks),
        "tasks": [
            {
                "payment_reference": t.payment_reference,
                "status": t.status,
                "attempts": t.attempts,
                "last_error": t.last_error,
                "created_at": t.created_at.isoformat() if t.created_at else None,
                "updated_at": t.updated_at.isoformat() if t.updated_at else None,
            }
            for t in tasks
        ],
    }


@router.post("/reconciliation/redrive")
async def redrive_reconciliation_tasks(
    db: AsyncSession = Depends(get_db),
    _: None = Depends(verify_admin_key),
):
    """Retry pending plan updates now instead of waiting for the worker."""
    resolved = await ReconciliationService(db).redrive_pending(settings.reconciliation_batch_size)
    logger.info(f"Admin re-drive resolved {resolved} reconciliation tasks")
    return {"status": "success", "resolved": resolved}

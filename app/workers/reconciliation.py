"""
Reconciliation Re-drive Worker.

Runs every 15 minutes to retry plan updates left pending after a
confirmed payment.
"""

import logging
from app.workers.celery_app import celery_app
from app.config import settings
from app.database import close_db, get_db_context

logger = logging.getLogger(__name__)


async def redrive(limit: int) -> int:
    async with get_db_context() as db:
        from app.services.reconciliation_service import ReconciliationService

        service = ReconciliationService(db)
        return await service.redrive_pending(limit)


@celery_app.task(bind=True, max_retries=3)
def redrive_pending_reconciliations(self):
    """Re-drive pending reconciliation tasks in one batch."""
    import asyncio

    async def run():
        try:
            return await redrive(settings.reconciliation_batch_size)
        finally:
            # Pooled connections belong to this event loop
            await close_db()

    try:
        count = asyncio.run(run())
        logger.info(f"Resolved {count} reconciliation tasks")
        return {"success": True, "count": count}
    except Exception as e:
        logger.error(f"Reconciliation re-drive failed: {e}")
        self.retry(exc=e, countdown=60)

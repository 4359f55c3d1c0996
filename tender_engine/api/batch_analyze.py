"""Batch analysis trigger, called by the scheduler (cron) or a worker."""

from fastapi import APIRouter, Depends, HTTPException

from tender_engine.core.auth_middleware import require_worker
from tender_engine.core.batch_scheduler import run_batch
from tender_engine.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.api_route("/batch-analyze", methods=["GET", "POST"], dependencies=[Depends(require_worker)])
async def batch_analyze() -> dict:
    """
    Run one deadline-bounded pass over the eligible analysis jobs.

    Returns:
        Dict with processed, failed and remaining counts

    Raises:
        HTTPException 401: Missing worker credentials
        HTTPException 500: If the job queue could not be loaded
    """
    try:
        result = await run_batch()
        return result.to_dict()

    except Exception as e:
        logger.exception(f"Batch analysis failed: {e}")
        raise HTTPException(status_code=500, detail="Batch analysis failed") from e

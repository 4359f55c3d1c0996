"""API endpoints for batch analysis job inspection."""

from fastapi import APIRouter, Depends, HTTPException, Query

from tender_engine.core.auth_middleware import require_worker
from tender_engine.core.logging import get_logger
from tender_engine.db.analysis_jobs import JobStatus, get_job, list_jobs

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_worker)])


@router.get("/{notice_id}")
async def get_analysis_job(notice_id: str) -> dict:
    """
    Get the analysis job of a notice.

    Raises:
        HTTPException 404: If no job exists for the notice
        HTTPException 500: If database error
    """
    try:
        job = get_job(notice_id)

        if not job:
            raise HTTPException(status_code=404, detail="Job not found")

        return job

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to get analysis job {notice_id}")
        raise HTTPException(status_code=500, detail="Failed to retrieve job status")


@router.get("")
async def list_analysis_jobs(
    status: JobStatus | None = Query(None, description="Filter by job status"),
    limit: int = Query(50, description="Maximum number of jobs to return", ge=1, le=200),
) -> dict:
    """
    List analysis jobs, most recently updated first.

    Returns:
        Dict with jobs array and count
    """
    try:
        jobs = list_jobs(status=status.value if status else None, limit=limit)

        return {"jobs": jobs, "count": len(jobs)}

    except Exception:
        logger.exception("Failed to list analysis jobs")
        raise HTTPException(status_code=500, detail="Failed to retrieve jobs")

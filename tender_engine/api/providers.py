"""Provider cascade metrics."""

from fastapi import APIRouter, Depends

from tender_engine.core.auth_middleware import require_worker
from tender_engine.core.metrics import provider_metrics

router = APIRouter()


@router.get("/metrics", dependencies=[Depends(require_worker)])
async def get_provider_metrics() -> dict:
    """Attempt, success and latency counters per generation provider."""
    return {"providers": provider_metrics.snapshot()}

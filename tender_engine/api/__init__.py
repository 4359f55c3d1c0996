"""API router for v1 endpoints."""

from fastapi import APIRouter

from tender_engine.api import analysis_jobs, analyze_full, batch_analyze, providers

router = APIRouter()

# Interactive five-stage analysis over SSE
router.include_router(analyze_full.router, prefix="/ai", tags=["analysis"])

# Scheduled batch analysis of the open-tender backlog
router.include_router(batch_analyze.router, prefix="/ai", tags=["batch"])

# Batch job inspection
router.include_router(analysis_jobs.router, prefix="/ai/analysis-jobs", tags=["analysis_jobs"])

# Provider cascade metrics
router.include_router(providers.router, prefix="/ai/providers", tags=["providers"])

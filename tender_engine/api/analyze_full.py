"""
SSE endpoint for the full five-stage tender analysis.

Streams pipeline progress as it happens:
parser -> intelligence -> analyst -> writer -> reviewer

Each event is one ``data: {json}`` frame; the stream always ends with
``data: [DONE]``. A client disconnect cancels the run.
"""

import asyncio
import json

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from tender_engine.core.auth_middleware import AuthContext, require_auth
from tender_engine.core.config import get_settings
from tender_engine.core.document_processing import (
    EmptyDocument,
    ExtractionError,
    extract_pdf_text,
    looks_like_pdf,
)
from tender_engine.core.entitlements import require_feature
from tender_engine.core.event_bus import EventBus
from tender_engine.core.events import SSE_DONE_FRAME, to_sse_frame
from tender_engine.core.logging import get_logger
from tender_engine.core.rate_limiter import check_ai_rate_limit
from tender_engine.core.result_adapter import pipeline_run_to_analysis
from tender_engine.core.schemas_analysis import AnalysisOptions, CompanyProfileInput
from tender_engine.db.analysis_jobs import save_analysis
from tender_engine.db.notices import get_notice
from tender_engine.graphs.analysis_pipeline_graph import PipelineRun, run_analysis_pipeline

logger = get_logger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


def _parse_form_json(raw: str | None, model, field_name: str):
    if raw is None or raw.strip() == "":
        return None
    try:
        return model.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid {field_name}: {e}") from e


async def _run_and_store(run: PipelineRun, bus: EventBus, notice_id: str | None) -> None:
    """Run the pipeline, then persist the result when it is tied to a notice."""
    await run_analysis_pipeline(run, bus)

    if not notice_id or run.token.cancelled or run.parsed is None:
        return
    try:
        payload = pipeline_run_to_analysis(run).to_payload()
        await asyncio.to_thread(save_analysis, notice_id, payload, "upload", run.pdf_size_bytes)
        logger.info(f"Stored interactive analysis for notice {notice_id}", extra={"run_id": run.run_id})
    except Exception as e:
        logger.error(f"Failed to store analysis for notice {notice_id}: {e}", extra={"run_id": run.run_id})


async def _sse_generator(run: PipelineRun, bus: EventBus, notice_id: str | None):
    """
    Generate SSE frames for one pipeline run.

    SSE format:
    data: {json event}

    """
    task = asyncio.create_task(_run_and_store(run, bus, notice_id))
    finished = False
    try:
        async for event in bus:
            yield to_sse_frame(event)
        await task
        finished = True
        yield SSE_DONE_FRAME
    finally:
        if not finished:
            logger.info("Client disconnected, cancelling run", extra={"run_id": run.run_id})
            run.token.cancel("Client disconnected")
            bus.detach()


@router.post("/analyze-full")
async def analyze_full(
    file: UploadFile = File(...),
    profile: str = Form(...),
    options: str | None = Form(default=None),
    notice_id: str | None = Form(default=None),
    auth: AuthContext = Depends(require_auth),
):
    """
    Analyse an uploaded tender document through the five-stage pipeline.

    Returns SSE stream with events:
    - agent_start / agent_done / agent_error: stage lifecycle
    - parser_result, intelligence_result, analysis_result, review_result
    - section_stream / section_done / section_error: writer output
    - pipeline_done / pipeline_error: terminal event

    Args:
        file: Tender document (PDF, max 20 MB)
        profile: Company profile as JSON
        options: Optional analysis options as JSON (sections, tone, length)
        notice_id: Optional notice the result is stored against

    Returns:
        StreamingResponse with SSE events

    Raises:
        HTTPException 400: Invalid form data or unreadable PDF
        HTTPException 401: Not authenticated
        HTTPException 403: Plan does not include DCE analysis
        HTTPException 404: Unknown notice_id
        HTTPException 413: File too large
        HTTPException 422: PDF without extractable text
        HTTPException 429: Rate limited
    """
    settings = get_settings()

    try:
        plan = require_feature(auth.email, "dce-analysis")
        check_ai_rate_limit(auth.email)

        company = _parse_form_json(profile, CompanyProfileInput, "profile")
        if company is None:
            raise HTTPException(status_code=400, detail="Missing company profile")
        analysis_options = _parse_form_json(options, AnalysisOptions, "options") or AnalysisOptions()

        if notice_id and get_notice(notice_id) is None:
            raise HTTPException(status_code=404, detail="Notice not found")

        file_bytes = await file.read()
        if not file_bytes:
            raise HTTPException(status_code=400, detail="Empty file")
        if len(file_bytes) > settings.MAX_UPLOAD_BYTES:
            raise HTTPException(
                status_code=413,
                detail=f"File exceeds {settings.MAX_UPLOAD_BYTES // (1024 * 1024)} MB",
            )
        if not looks_like_pdf(file_bytes) and file.content_type != "application/pdf":
            raise HTTPException(status_code=400, detail="Only PDF documents are supported")

        try:
            extraction = await extract_pdf_text(
                file_bytes, size_limit=settings.MAX_UPLOAD_BYTES, filename=file.filename or "dce.pdf"
            )
        except EmptyDocument as e:
            raise HTTPException(
                status_code=422, detail="No text found in the PDF (scanned document?)"
            ) from e
        except ExtractionError as e:
            raise HTTPException(status_code=400, detail=f"Unreadable PDF: {e}") from e

        run = PipelineRun(
            text=extraction.text,
            profile=company,
            options=analysis_options,
            filename=file.filename,
            page_count=extraction.page_count,
            pdf_size_bytes=len(file_bytes),
            user_email=auth.email,
            plan=plan.value,
        )
        bus = EventBus(maxsize=settings.EVENT_QUEUE_SIZE, run_id=run.run_id)

        logger.info(
            f"Starting full analysis of {file.filename} ({extraction.page_count} pages)",
            extra={"run_id": run.run_id, "extra_data": {"plan": plan.value}},
        )

        return StreamingResponse(
            _sse_generator(run, bus, notice_id),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Failed to set up analysis stream: {e}")
        raise HTTPException(status_code=500, detail="Failed to set up analysis stream") from e

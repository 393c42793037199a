"""
Thin API routes for PDF OCR.

No business logic: validates the request, runs DocumentPipeline, tells the
record store about the outcome, and maps pipeline errors to HTTP status
codes.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from visionocr.core.config import settings
from visionocr.core.errors import (
    AcquisitionError,
    AggregateFailure,
    ChunkingError,
    ExtractionError,
    OCRPipelineError,
    RasterizationError,
)
from visionocr.pipeline.cancellation import CancellationToken
from visionocr.pipeline.orchestrator import DocumentPipeline
from visionocr.schemas.api import ProcessFileRequest, ProcessFileResponse
from visionocr.services.record_store import RecordStoreUpdater, get_record_updater
from visionocr.utils.logging import get_logger

logger = get_logger("visionocr.api.ocr")

router = APIRouter(prefix="/ocr", tags=["OCR"])


def get_pipeline() -> DocumentPipeline:
    """FastAPI dependency: a fresh pipeline per request."""
    return DocumentPipeline()


def _status_for(error: OCRPipelineError) -> int:
    if error.error_code == "TIMEOUT_ERROR":
        return status.HTTP_504_GATEWAY_TIMEOUT
    if isinstance(error, (AcquisitionError, RasterizationError, ChunkingError)):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(error, (ExtractionError, AggregateFailure)):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _error_response(code: int, body: ProcessFileResponse) -> JSONResponse:
    return JSONResponse(status_code=code, content=body.model_dump(mode="json"))


@router.get("/config")
async def ocr_config():
    """Effective, non-secret OCR configuration."""
    return {
        "model": settings.openai_model_name,
        "detail": settings.openai_detail_mode,
        "timeout_seconds": settings.openai_timeout_seconds,
        "max_retries": settings.max_vision_retries,
        "retry_backoff_seconds": settings.retry_backoff_seconds,
        "dpi": settings.pdf_dpi,
        "max_pages": settings.max_pages_per_doc,
        "max_parallel_calls": settings.max_parallel_vision_calls,
        "long_side_max_px": settings.long_side_max_px,
        "aspect_trigger": settings.aspect_trigger,
        "overlap_pct": settings.overlap_pct,
        "rasterizer_strategies": settings.rasterizer_strategies,
        "api_key_configured": bool(settings.openai_api_key),
    }


@router.post("/process", response_model=ProcessFileResponse)
async def process_file(
    request: ProcessFileRequest,
    pipeline: DocumentPipeline = Depends(get_pipeline),
    updater: RecordStoreUpdater = Depends(get_record_updater),
):
    """
    OCR the PDF at ``file_url`` and store the text on ``record_id``.

    Answers 422 for document problems or empty output, 502 when the vision
    backend failed, 504 on timeouts.
    """
    logger.info("[OCR-API] Processing record %s", request.record_id)

    deadline = request.deadline_seconds or pipeline.config.pipeline_deadline_seconds
    try:
        result = await pipeline.process(
            request.file_url,
            token=CancellationToken(deadline),
            max_pages=request.max_pages,
        )
    except OCRPipelineError as e:
        logger.error("[OCR-API] Record %s failed: %s", request.record_id, e)
        record_updated = await _mark_failed(updater, request.record_id, e.error_code, str(e))
        return _error_response(
            _status_for(e),
            ProcessFileResponse(
                status="error",
                record_id=request.record_id,
                file_url=request.file_url,
                record_updated=record_updated,
                message="PDF processing failed",
                error=str(e),
                error_code=e.error_code,
                stage=e.stage,
            ),
        )

    text = result.extracted_text
    if not text.strip():
        logger.warning("[OCR-API] No text extracted for record %s", request.record_id)
        record_updated = await _mark_failed(
            updater, request.record_id, "OCR_FAILED", "No text could be extracted from the PDF"
        )
        return _error_response(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            ProcessFileResponse(
                status="error",
                record_id=request.record_id,
                file_url=request.file_url,
                extracted_text_length=0,
                total_pages=result.total_pages,
                processed_pages=result.processed_pages,
                record_updated=record_updated,
                processing_summary=result.summary,
                message="No text could be extracted from the PDF",
                error_code="OCR_FAILED",
            ),
        )

    try:
        record_updated = await updater.mark_processed(
            request.record_id, text, pages=result.processed_pages
        )
    except Exception as e:
        logger.warning("[OCR-API] Record update failed (text still returned): %s", e)
        record_updated = False

    logger.info(
        "[OCR-API] Record %s done: %d chars, %d/%d pages",
        request.record_id, len(text), result.processed_pages, result.total_pages,
    )
    return ProcessFileResponse(
        status="success",
        record_id=request.record_id,
        file_url=request.file_url,
        extracted_text_length=len(text),
        total_pages=result.total_pages,
        processed_pages=result.processed_pages,
        record_updated=record_updated,
        processing_summary=result.summary,
        message="PDF processed successfully",
    )


async def _mark_failed(
    updater: RecordStoreUpdater, record_id: str, error_code: str, message: str
) -> bool:
    try:
        return await updater.mark_failed(record_id, error_code, message)
    except Exception as e:
        logger.warning("[OCR-API] Could not mark record %s as failed: %s", record_id, e)
        return False

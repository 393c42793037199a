"""
Concurrency-bounded chunk extraction.

Every chunk of every page is dispatched at once; the shared limiter caps
how many backend calls are in flight.  A chunk that still fails after its
retries becomes a sentinel result and the run continues.  Only when no
chunk at all succeeded does extraction raise AggregateFailure.
"""

from __future__ import annotations

import asyncio
from typing import Sequence

from visionocr.core.config import Settings, settings
from visionocr.core.errors import AggregateFailure, PipelineCancelled
from visionocr.pdf_processing.concurrency import ConcurrencyLimiter
from visionocr.pdf_processing.retry import RetryPolicy, run_with_retry
from visionocr.pdf_processing.vision_client import OCR_INSTRUCTION, TextExtractionBackend
from visionocr.pipeline.cancellation import CancellationToken
from visionocr.schemas.document import ExtractionResult, ImageChunk
from visionocr.utils.logging import get_logger
from visionocr.utils.timing import Timer

logger = get_logger("visionocr.pdf_processing.extractor")


def sentinel_text(chunk: ImageChunk) -> str:
    return f"[ERROR: Could not extract text from {chunk.id}]"


async def extract_chunk(
    chunk: ImageChunk,
    backend: TextExtractionBackend,
    *,
    limiter: ConcurrencyLimiter,
    policy: RetryPolicy,
    token: CancellationToken,
    detail: str,
    instruction: str = OCR_INSTRUCTION,
) -> ExtractionResult:
    """Extract one chunk; returns a sentinel result instead of raising."""
    token.raise_if_cancelled("extracting")

    async with limiter.slot():
        token.raise_if_cancelled("extracting")

        async def call():
            return await token.guard(
                backend.extract_text(chunk.data, instruction, detail=detail)
            )

        with Timer() as t:
            outcome = await run_with_retry(
                call, policy, label=f"[EXTRACT] {chunk.id}", sleep=token.sleep
            )

    if outcome.succeeded:
        response = outcome.value
        logger.debug(
            "[EXTRACT] %s done in %.0fms (%d tokens, %d chars)",
            chunk.id, t.elapsed_ms, response.token_usage.total, len(response.text),
        )
        return ExtractionResult(
            text=response.text,
            token_usage=response.token_usage,
            processing_time_ms=t.elapsed_ms,
            success=True,
            chunk_index=chunk.chunk_index,
            page_index=chunk.page_index,
            chunk_id=chunk.id,
            attempts=outcome.attempts,
        )

    return ExtractionResult(
        text=sentinel_text(chunk),
        processing_time_ms=t.elapsed_ms,
        success=False,
        chunk_index=chunk.chunk_index,
        page_index=chunk.page_index,
        chunk_id=chunk.id,
        attempts=outcome.attempts,
        error=str(outcome.error),
    )


async def extract_chunks(
    chunks: Sequence[ImageChunk],
    backend: TextExtractionBackend,
    *,
    config: Settings | None = None,
    limiter: ConcurrencyLimiter | None = None,
    token: CancellationToken | None = None,
    policy: RetryPolicy | None = None,
) -> list[ExtractionResult]:
    """
    Extract text from every chunk under one shared limiter.

    Results come back in (page_index, chunk_index) order regardless of
    completion order.

    Raises:
        AggregateFailure: every chunk failed permanently
        PipelineCancelled: the token fired before all chunks finished
    """
    cfg = config or settings
    limiter = limiter or ConcurrencyLimiter(cfg.max_parallel_vision_calls)
    token = token or CancellationToken()
    policy = policy or RetryPolicy.from_settings(cfg)

    if not chunks:
        return []

    logger.info(
        "[EXTRACT] Dispatching %d chunks (max %d in flight, %d attempt(s) each)",
        len(chunks), limiter.max_concurrency, policy.max_attempts,
    )

    tasks = [
        asyncio.ensure_future(
            extract_chunk(
                chunk, backend,
                limiter=limiter, policy=policy, token=token,
                detail=cfg.openai_detail_mode,
            )
        )
        for chunk in chunks
    ]
    # Full join before aggregating; on cancellation the pending tasks are
    # cancelled and awaited so no call outlives the run.
    try:
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    cancelled = next((o for o in outcomes if isinstance(o, PipelineCancelled)), None)
    if cancelled is not None:
        raise cancelled

    results: list[ExtractionResult] = []
    for outcome in outcomes:
        if isinstance(outcome, BaseException):
            raise outcome
        results.append(outcome)

    results.sort(key=lambda r: r.sort_key)

    failed = [r for r in results if not r.success]
    if len(failed) == len(results):
        raise AggregateFailure(
            f"All {len(results)} chunks failed text extraction",
            errors=[f"{r.chunk_id}: {r.error}" for r in failed],
        )

    logger.info(
        "[EXTRACT] %d/%d chunks succeeded (peak %d in flight)",
        len(results) - len(failed), len(results), limiter.peak_in_flight,
    )
    return results

"""
Pipeline Orchestrator: top-level entry point.

Drives one document through
Downloading → Rasterizing → Chunking → Extracting → Reassembling,
ending in Done or Failed.  The cancellation token is checked on every
transition and handed down to rasterization and extraction.

Callers get either a complete PDFProcessingResult or a single
OCRPipelineError whose ``stage`` names where the run stopped.
"""

from __future__ import annotations

import asyncio
import functools
import time
from enum import Enum

import httpx

from visionocr.core.config import Settings, settings
from visionocr.core.errors import OCRPipelineError
from visionocr.pdf_processing.acquirer import acquire_document
from visionocr.pdf_processing.chunker import chunk_page
from visionocr.pdf_processing.concurrency import ConcurrencyLimiter
from visionocr.pdf_processing.extractor import extract_chunks
from visionocr.pdf_processing.rasterizer import RasterizerStrategy, rasterize_pdf
from visionocr.pdf_processing.reassembler import build_summary, reassemble
from visionocr.pdf_processing.vision_client import TextExtractionBackend, get_vision_backend
from visionocr.pipeline.cancellation import CancellationToken
from visionocr.schemas.document import ImageChunk, PDFProcessingResult
from visionocr.utils.logging import get_logger
from visionocr.utils.timing import Timer

logger = get_logger("visionocr.pipeline.orchestrator")


class PipelineState(str, Enum):
    IDLE = "idle"
    DOWNLOADING = "downloading"
    RASTERIZING = "rasterizing"
    CHUNKING = "chunking"
    EXTRACTING = "extracting"
    REASSEMBLING = "reassembling"
    DONE = "done"
    FAILED = "failed"


class DocumentPipeline:
    """
    One pipeline per caller; ``process()`` may be called again once the
    previous run has finished.  A new ConcurrencyLimiter is created for
    every run.
    """

    def __init__(
        self,
        config: Settings | None = None,
        backend: TextExtractionBackend | None = None,
        strategies: list[RasterizerStrategy] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.config = config or settings
        self._backend = backend
        self.strategies = strategies
        self.http_client = http_client
        self.state = PipelineState.IDLE
        self.state_history: list[PipelineState] = [PipelineState.IDLE]
        self.stage_timings: dict[str, float] = {}

    @property
    def backend(self) -> TextExtractionBackend:
        if self._backend is None:
            self._backend = get_vision_backend()
        return self._backend

    def _enter(self, state: PipelineState, token: CancellationToken | None = None) -> None:
        if token is not None:
            token.raise_if_cancelled(state.value)
        self.state = state
        self.state_history.append(state)

    async def process(
        self,
        source: str,
        *,
        token: CancellationToken | None = None,
        max_pages: int | None = None,
    ) -> PDFProcessingResult:
        """
        Run the full pipeline for ``source``.

        Args:
            source: URL, data URI, file URL or local path of the PDF
            token: Cancellation token; defaults to one bounded by
                PIPELINE_DEADLINE_SECONDS
            max_pages: Optional per-call cap below MAX_PAGES_PER_DOC

        Raises:
            OCRPipelineError: any terminal failure, tagged with its stage
        """
        cfg = self.config
        token = token or CancellationToken(cfg.pipeline_deadline_seconds)
        self.state = PipelineState.IDLE
        self.state_history = [PipelineState.IDLE]
        self.stage_timings = {}

        try:
            result = await self._run(source, cfg, token, max_pages, time.perf_counter())
        except OCRPipelineError as e:
            self._enter(PipelineState.FAILED)
            logger.error("[PIPELINE] Failed during %s: %s", e.stage, e)
            raise
        except Exception as e:
            stage = self.state.value
            self._enter(PipelineState.FAILED)
            logger.exception("[PIPELINE] Unexpected error during %s", stage)
            raise OCRPipelineError(f"Unexpected error: {e}", stage=stage) from e

        self._enter(PipelineState.DONE)
        s = result.summary
        logger.info(
            "[PIPELINE] Done in %.0fms | pages=%d/%d, chunks=%d/%d ok, tokens=%d, peak=%d",
            s.total_processing_time_ms, result.processed_pages, result.total_pages,
            s.successful_chunks, s.total_chunks, s.total_tokens_used, s.peak_concurrency,
        )
        return result

    async def _run(
        self,
        source: str,
        cfg: Settings,
        token: CancellationToken,
        max_pages: int | None,
        started: float,
    ) -> PDFProcessingResult:
        # ── Downloading ─────────────────────────────────────────────
        self._enter(PipelineState.DOWNLOADING, token)
        with Timer() as t:
            document = await token.guard(
                acquire_document(source, config=cfg, client=self.http_client),
                stage=PipelineState.DOWNLOADING.value,
            )
        self.stage_timings["downloading"] = t.elapsed_s

        # ── Rasterizing (CPU-bound, off the event loop) ─────────────
        self._enter(PipelineState.RASTERIZING, token)
        loop = asyncio.get_running_loop()
        with Timer() as t:
            raster = await token.guard(
                loop.run_in_executor(
                    None,
                    functools.partial(
                        rasterize_pdf,
                        document.data,
                        config=cfg,
                        strategies=self.strategies,
                        max_pages=max_pages,
                    ),
                ),
                stage=PipelineState.RASTERIZING.value,
            )
        self.stage_timings["rasterizing"] = t.elapsed_s
        del document

        # ── Chunking (sequential, per page) ─────────────────────────
        self._enter(PipelineState.CHUNKING, token)
        chunks: list[ImageChunk] = []
        with Timer() as t:
            for page in raster.pages:
                token.raise_if_cancelled(PipelineState.CHUNKING.value)
                chunks.extend(chunk_page(page, cfg))
        self.stage_timings["chunking"] = t.elapsed_s
        total_pages, processed_pages = raster.total_pages, len(raster.pages)
        rasterizer = raster.strategy
        del raster
        logger.info(
            "[PIPELINE] %d pages chunked into %d chunks (%.2fs)",
            processed_pages, len(chunks), t.elapsed_s,
        )

        # ── Extracting (cross-page concurrency) ─────────────────────
        self._enter(PipelineState.EXTRACTING, token)
        limiter = ConcurrencyLimiter(cfg.max_parallel_vision_calls)
        with Timer() as t:
            results = await extract_chunks(
                chunks, self.backend, config=cfg, limiter=limiter, token=token
            )
        self.stage_timings["extracting"] = t.elapsed_s

        # ── Reassembling ────────────────────────────────────────────
        self._enter(PipelineState.REASSEMBLING, token)
        pages, text = reassemble(results)
        summary = build_summary(
            pages,
            total_processing_time_ms=(time.perf_counter() - started) * 1000,
            peak_concurrency=limiter.peak_in_flight,
            rasterizer=rasterizer,
        )

        return PDFProcessingResult(
            total_pages=total_pages,
            processed_pages=processed_pages,
            extracted_text=text,
            per_page_results=pages,
            summary=summary,
        )


# ── Convenience entry points ────────────────────────────────────────

async def process_pdf_from_url(
    source: str,
    *,
    config: Settings | None = None,
    backend: TextExtractionBackend | None = None,
    max_pages: int | None = None,
    deadline_seconds: float | None = None,
) -> PDFProcessingResult:
    """Process one PDF and return the full result with summary."""
    cfg = config or settings
    pipeline = DocumentPipeline(config=cfg, backend=backend)
    token = CancellationToken(
        deadline_seconds if deadline_seconds is not None else cfg.pipeline_deadline_seconds
    )
    return await pipeline.process(source, token=token, max_pages=max_pages)


async def process_pdf_for_raw_text(
    source: str,
    *,
    config: Settings | None = None,
    backend: TextExtractionBackend | None = None,
    max_pages: int | None = None,
    deadline_seconds: float | None = None,
) -> str:
    """Process one PDF and return only the extracted text."""
    result = await process_pdf_from_url(
        source,
        config=config,
        backend=backend,
        max_pages=max_pages,
        deadline_seconds=deadline_seconds,
    )
    return result.extracted_text

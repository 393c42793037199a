"""
Reassembly of chunk results into page and document text.

Pure functions of the results: order comes from (page_index,
chunk_index), never from completion order.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable

from visionocr.schemas.document import ExtractionResult, PageResult, ProcessingSummary

PAGE_BREAK = "\n\n--- PAGE BREAK ---\n\n"


def group_pages(results: Iterable[ExtractionResult]) -> list[PageResult]:
    """Group chunk results by page, each page's chunks in chunk order."""
    by_page: dict[int, list[ExtractionResult]] = defaultdict(list)
    for result in results:
        by_page[result.page_index].append(result)

    pages: list[PageResult] = []
    for page_index in sorted(by_page):
        chunks = sorted(by_page[page_index], key=lambda r: r.chunk_index)
        pages.append(
            PageResult(
                page_index=page_index,
                text="\n".join(c.text for c in chunks).strip(),
                chunks=chunks,
                processing_time_ms=sum(c.processing_time_ms for c in chunks),
            )
        )
    return pages


def reassemble(results: Iterable[ExtractionResult]) -> tuple[list[PageResult], str]:
    """Return the per-page results and the full document text."""
    pages = group_pages(results)
    return pages, PAGE_BREAK.join(p.text for p in pages)


def build_summary(
    pages: list[PageResult],
    *,
    total_processing_time_ms: float,
    peak_concurrency: int = 0,
    rasterizer: str | None = None,
) -> ProcessingSummary:
    chunks = [c for p in pages for c in p.chunks]
    successful = sum(1 for c in chunks if c.success)

    errors = [
        f"Page {c.page_index + 1}, Chunk {c.chunk_index + 1} ({c.chunk_id}): {c.error or 'unknown error'}"
        for c in chunks
        if not c.success
    ]

    return ProcessingSummary(
        total_tokens_used=sum(c.token_usage.total for c in chunks),
        total_processing_time_ms=round(total_processing_time_ms, 2),
        average_chunks_per_page=round(len(chunks) / len(pages), 2) if pages else 0.0,
        success_rate_percent=round(successful / len(chunks) * 100, 2) if chunks else 100.0,
        errors=errors,
        total_chunks=len(chunks),
        successful_chunks=successful,
        failed_chunks=len(chunks) - successful,
        peak_concurrency=peak_concurrency,
        rasterizer=rasterizer,
    )

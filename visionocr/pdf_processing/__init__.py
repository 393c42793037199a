"""
PDF to text processing stages.

Key Components:
- acquirer: loads and validates PDF bytes (URL, data URI, local path)
- rasterizer: ordered rasterization strategies (PyMuPDF, pdftoppm)
- chunker: splits oversized pages into overlapping strips
- concurrency: per-run limiter shared by every vision call
- retry: retry policy with exponential backoff
- vision_client: OpenAI vision backend
- extractor: bounded, partial-failure tolerant chunk extraction
- reassembler: orders results into page and document text
"""

from visionocr.pdf_processing.acquirer import acquire_document
from visionocr.pdf_processing.rasterizer import rasterize_pdf, RasterizationResult
from visionocr.pdf_processing.chunker import chunk_page, plan_chunks
from visionocr.pdf_processing.concurrency import ConcurrencyLimiter
from visionocr.pdf_processing.retry import RetryPolicy, run_with_retry
from visionocr.pdf_processing.extractor import extract_chunks
from visionocr.pdf_processing.reassembler import reassemble, build_summary, PAGE_BREAK

__all__ = [
    'acquire_document',
    'rasterize_pdf',
    'RasterizationResult',
    'chunk_page',
    'plan_chunks',
    'ConcurrencyLimiter',
    'RetryPolicy',
    'run_with_retry',
    'extract_chunks',
    'reassemble',
    'build_summary',
    'PAGE_BREAK',
]

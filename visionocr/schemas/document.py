"""
Schemas for the data that flows between pipeline stages.

PDFDocument → PageImage → ImageChunk → ExtractionResult → PageResult,
finally wrapped in PDFProcessingResult.  Nothing here outlives a single
pipeline run.
"""

from __future__ import annotations

import hashlib

from pydantic import BaseModel, Field


class PDFDocument(BaseModel):
    """Validated raw PDF bytes handed from the acquirer to the rasterizer."""
    data: bytes
    source: str

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.data).hexdigest()


class PageImage(BaseModel):
    """One rasterized page (PNG bytes)."""
    buffer: bytes
    width: int
    height: int
    page_index: int


class ImageChunk(BaseModel):
    """
    A rectangular region of a page, encoded as PNG.

    ``origin_x``/``origin_y`` are page coordinates; ``width``/``height``
    are the dimensions of the encoded image, which differ from the page
    region only when ``scale`` < 1.
    """
    data: bytes
    width: int
    height: int
    origin_x: int = 0
    origin_y: int = 0
    chunk_index: int
    page_index: int
    id: str
    scale: float = 1.0

    class Config:
        frozen = True


class TokenUsage(BaseModel):
    input: int = 0
    output: int = 0
    total: int = 0


class ExtractionResult(BaseModel):
    """Outcome of one chunk; failures carry sentinel text and the error."""
    text: str
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    processing_time_ms: float = 0.0
    success: bool = True
    chunk_index: int
    page_index: int
    chunk_id: str = ""
    attempts: int = 1
    error: str | None = None

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.page_index, self.chunk_index)


class PageResult(BaseModel):
    page_index: int
    text: str
    chunks: list[ExtractionResult] = Field(default_factory=list)
    processing_time_ms: float = 0.0


class ProcessingSummary(BaseModel):
    total_tokens_used: int = 0
    total_processing_time_ms: float = 0.0
    average_chunks_per_page: float = 0.0
    success_rate_percent: float = 100.0
    errors: list[str] = Field(default_factory=list)
    total_chunks: int = 0
    successful_chunks: int = 0
    failed_chunks: int = 0
    peak_concurrency: int = 0
    rasterizer: str | None = None


class PDFProcessingResult(BaseModel):
    """Final pipeline output."""
    total_pages: int
    processed_pages: int
    extracted_text: str
    per_page_results: list[PageResult] = Field(default_factory=list)
    summary: ProcessingSummary = Field(default_factory=ProcessingSummary)

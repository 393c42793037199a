"""
Pydantic schemas for every pipeline boundary.
"""

from visionocr.schemas.document import (
    PDFDocument,
    PageImage,
    ImageChunk,
    TokenUsage,
    ExtractionResult,
    PageResult,
    ProcessingSummary,
    PDFProcessingResult,
)
from visionocr.schemas.api import ProcessFileRequest, ProcessFileResponse

__all__ = [
    # Pipeline data
    "PDFDocument",
    "PageImage",
    "ImageChunk",
    "TokenUsage",
    "ExtractionResult",
    "PageResult",
    "ProcessingSummary",
    "PDFProcessingResult",
    # API
    "ProcessFileRequest",
    "ProcessFileResponse",
]

"""
External API contract for the OCR endpoints.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator

from visionocr.schemas.document import ProcessingSummary

# Local paths and file:// URLs are for the CLI and library callers only.
REMOTE_SOURCE_PREFIXES = ("http://", "https://", "data:")


class ProcessFileRequest(BaseModel):
    file_url: str = Field(..., min_length=1)
    record_id: str = Field(..., min_length=1)
    max_pages: int | None = Field(None, gt=0)  # Further caps MAX_PAGES_PER_DOC for this call
    deadline_seconds: float | None = Field(None, gt=0)

    @field_validator("file_url")
    @classmethod
    def _check_remote_source(cls, value: str) -> str:
        value = value.strip()
        if not value.lower().startswith(REMOTE_SOURCE_PREFIXES):
            raise ValueError("file_url must be an http(s) URL or a data: URI")
        return value


class ProcessFileResponse(BaseModel):
    status: Literal["success", "error"]
    record_id: str
    file_url: str = ""
    extracted_text_length: int | None = None
    total_pages: int | None = None
    processed_pages: int | None = None
    record_updated: bool = False
    processing_summary: ProcessingSummary | None = None
    message: str | None = None
    error: str | None = None
    error_code: str | None = None
    stage: str | None = None

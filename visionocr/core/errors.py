"""
Error taxonomy for the OCR pipeline.

Every exception carries the pipeline ``stage`` it belongs to and an
``error_code`` understood by the record-store hook, so callers get one
exception that names what failed.
"""

from __future__ import annotations


class OCRPipelineError(Exception):
    """Base class for every error raised out of the pipeline."""

    stage: str = "processing"
    error_code: str = "PROCESSING_ERROR"

    def __init__(self, message: str, *, stage: str | None = None):
        super().__init__(message)
        if stage is not None:
            self.stage = stage

    def __str__(self) -> str:
        return f"[{self.stage}] {super().__str__()}"


# ── Acquisition (terminal, never retried) ───────────────────────────
class AcquisitionError(OCRPipelineError):
    stage = "downloading"


class InvalidDocument(AcquisitionError):
    """Bytes were fetched but do not start with the %PDF magic header."""
    error_code = "PDF_CORRUPTED"


class AcquisitionTimeout(AcquisitionError):
    error_code = "TIMEOUT_ERROR"


# ── Rasterization (terminal) ────────────────────────────────────────
class RasterizationError(OCRPipelineError):
    stage = "rasterizing"
    error_code = "PDF_CORRUPTED"

    def __init__(self, message: str, *, errors: dict[str, str] | None = None):
        super().__init__(message)
        self.errors = dict(errors or {})


# ── Chunking (recovered locally) ────────────────────────────────────
class ChunkingError(OCRPipelineError):
    stage = "chunking"


# ── Extraction (recovered per chunk) ────────────────────────────────
class ExtractionError(OCRPipelineError):
    stage = "extracting"
    error_code = "OCR_FAILED"
    retryable = True


class RateLimitedError(ExtractionError):
    pass


class BackendTimeoutError(ExtractionError):
    pass


class BackendUnavailableError(ExtractionError):
    pass


class InvalidRequestError(ExtractionError):
    """Malformed input; retrying the same request cannot succeed."""
    retryable = False


class AggregateFailure(OCRPipelineError):
    """Raised only when not a single chunk in the document was extracted."""

    stage = "extracting"
    error_code = "OCR_FAILED"

    def __init__(self, message: str, *, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = list(errors or [])


# ── Cancellation ────────────────────────────────────────────────────
class PipelineCancelled(OCRPipelineError):
    error_code = "TIMEOUT_ERROR"

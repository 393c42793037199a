import asyncio
from pathlib import Path

import pytest

from visionocr.core.errors import (
    AggregateFailure,
    InvalidDocument,
    InvalidRequestError,
    OCRPipelineError,
    PipelineCancelled,
    RasterizationError,
)
from visionocr.pdf_processing.rasterizer import PyMuPDFRasterizer, RasterizationResult
from visionocr.pdf_processing.reassembler import PAGE_BREAK
from visionocr.schemas.document import PageImage
from visionocr.pipeline import orchestrator
from visionocr.pipeline.cancellation import CancellationToken
from visionocr.pipeline.orchestrator import (
    DocumentPipeline,
    PipelineState,
    process_pdf_for_raw_text,
)

from tests.helpers import FakeBackend, make_pdf, make_settings

HAPPY_PATH = [
    PipelineState.IDLE,
    PipelineState.DOWNLOADING,
    PipelineState.RASTERIZING,
    PipelineState.CHUNKING,
    PipelineState.EXTRACTING,
    PipelineState.REASSEMBLING,
    PipelineState.DONE,
]


class BrokenRasterizer:
    name = "broken"

    def rasterize(self, pdf_bytes: bytes, dpi: int, max_pages: int) -> RasterizationResult:
        raise RuntimeError("cannot render")


class FailingBackend:
    async def extract_text(self, image: bytes, instruction: str, *, detail: str):
        raise InvalidRequestError("rejected")


def _write_pdf(tmp_path: Path, pages: int = 1, **kwargs) -> str:
    path = tmp_path / "doc.pdf"
    path.write_bytes(make_pdf(pages, **kwargs))
    return str(path)


def _pipeline(backend=None, strategies=None, **overrides) -> DocumentPipeline:
    cfg = make_settings(**{"pdf_dpi": 36, **overrides})
    return DocumentPipeline(
        config=cfg,
        backend=backend or FakeBackend(text="Hello"),
        strategies=strategies or [PyMuPDFRasterizer()],
    )


def test_processes_multi_page_document(tmp_path: Path) -> None:
    pipeline = _pipeline()

    result = asyncio.run(pipeline.process(_write_pdf(tmp_path, pages=3)))

    assert result.total_pages == 3
    assert result.processed_pages == 3
    assert result.extracted_text == PAGE_BREAK.join(["Hello"] * 3)
    assert [p.page_index for p in result.per_page_results] == [0, 1, 2]
    assert result.summary.total_chunks == 3
    assert result.summary.success_rate_percent == 100.0
    assert result.summary.total_tokens_used == 45
    assert result.summary.rasterizer == "pymupdf"
    assert result.summary.peak_concurrency >= 1
    assert pipeline.state is PipelineState.DONE
    assert pipeline.state_history == HAPPY_PATH
    assert set(pipeline.stage_timings) == {"downloading", "rasterizing", "chunking", "extracting"}


def test_truncates_to_max_pages(tmp_path: Path) -> None:
    pipeline = _pipeline(max_pages_per_doc=2)

    result = asyncio.run(pipeline.process(_write_pdf(tmp_path, pages=4)))

    assert result.total_pages == 4
    assert result.processed_pages == 2
    assert result.extracted_text.count("--- PAGE BREAK ---") == 1


def test_wide_page_is_chunked(tmp_path: Path) -> None:
    pipeline = _pipeline(pdf_dpi=72)
    source = _write_pdf(tmp_path, width=4096, height=1024)

    result = asyncio.run(pipeline.process(source))

    assert result.summary.total_chunks == 3
    assert [c.chunk_id for c in result.per_page_results[0].chunks] == ["p1c1", "p1c2", "p1c3"]
    assert result.per_page_results[0].text == "Hello\nHello\nHello"


def test_invalid_document_fails_in_downloading(tmp_path: Path) -> None:
    path = tmp_path / "doc.pdf"
    path.write_bytes(b"not a pdf")
    pipeline = _pipeline()

    with pytest.raises(InvalidDocument):
        asyncio.run(pipeline.process(str(path)))
    assert pipeline.state_history == [
        PipelineState.IDLE, PipelineState.DOWNLOADING, PipelineState.FAILED
    ]


def test_rasterization_failure_is_terminal(tmp_path: Path) -> None:
    backend = FakeBackend()
    pipeline = _pipeline(backend=backend, strategies=[BrokenRasterizer()])

    with pytest.raises(RasterizationError) as exc_info:
        asyncio.run(pipeline.process(_write_pdf(tmp_path)))

    assert exc_info.value.stage == "rasterizing"
    assert pipeline.state is PipelineState.FAILED
    assert backend.calls == []


def test_all_chunks_failing_fails_the_run(tmp_path: Path) -> None:
    pipeline = _pipeline(backend=FailingBackend())

    with pytest.raises(AggregateFailure):
        asyncio.run(pipeline.process(_write_pdf(tmp_path, pages=2)))
    assert pipeline.state_history[-2:] == [PipelineState.EXTRACTING, PipelineState.FAILED]


def test_cancelled_token_stops_before_downloading(tmp_path: Path) -> None:
    pipeline = _pipeline()

    async def run():
        token = CancellationToken()
        token.cancel()
        await pipeline.process(_write_pdf(tmp_path), token=token)

    with pytest.raises(PipelineCancelled) as exc_info:
        asyncio.run(run())
    assert exc_info.value.stage == "downloading"
    assert pipeline.state_history == [PipelineState.IDLE, PipelineState.FAILED]


def test_unexpected_error_is_wrapped_with_stage(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def explode(page, cfg):
        raise ValueError("bad geometry")

    monkeypatch.setattr(orchestrator, "chunk_page", explode)
    pipeline = _pipeline()

    with pytest.raises(OCRPipelineError) as exc_info:
        asyncio.run(pipeline.process(_write_pdf(tmp_path)))

    error = exc_info.value
    assert error.stage == "chunking"
    assert error.error_code == "PROCESSING_ERROR"
    assert isinstance(error.__cause__, ValueError)


def test_process_pdf_for_raw_text(tmp_path: Path) -> None:
    text = asyncio.run(
        process_pdf_for_raw_text(
            _write_pdf(tmp_path, pages=2),
            config=make_settings(pdf_dpi=36, rasterizer_strategies=["pymupdf"]),
            backend=FakeBackend(text="Line"),
        )
    )
    assert text == "Line" + PAGE_BREAK + "Line"


class LabelledPagesRasterizer:
    """Renders each page as the bytes ``page-N`` so a backend can target one page."""

    name = "labelled"

    def __init__(self, page_count: int):
        self.page_count = page_count

    def rasterize(self, pdf_bytes: bytes, dpi: int, max_pages: int) -> RasterizationResult:
        pages = [
            PageImage(buffer=f"page-{n + 1}".encode(), width=100, height=100, page_index=n)
            for n in range(min(self.page_count, max_pages))
        ]
        return RasterizationResult(pages=pages, total_pages=self.page_count, strategy=self.name)


def test_one_failed_chunk_out_of_ten_is_reported_not_raised(tmp_path: Path) -> None:
    backend = FakeBackend(errors={"page-7": InvalidRequestError("unreadable")}, text="ok")
    pipeline = _pipeline(
        backend=backend,
        strategies=[LabelledPagesRasterizer(10)],
        max_parallel_vision_calls=3,
    )

    result = asyncio.run(pipeline.process(_write_pdf(tmp_path)))

    summary = result.summary
    assert pipeline.state_history == HAPPY_PATH
    assert summary.total_chunks == 10
    assert summary.successful_chunks == 9
    assert summary.failed_chunks == 1
    assert len(summary.errors) == 1
    assert summary.errors[0].startswith("Page 7, Chunk 1 (p7c1): ")
    assert "unreadable" in summary.errors[0]

    texts = result.extracted_text.split(PAGE_BREAK)
    assert len(texts) == 10
    assert texts[6] == "[ERROR: Could not extract text from p7c1]"
    assert all(t == "ok" for i, t in enumerate(texts) if i != 6)
    assert backend.calls.count("page-7") == 1

import base64
from pathlib import Path
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from visionocr import __version__
from visionocr.api.ocr import get_pipeline
from visionocr.core.errors import InvalidRequestError
from visionocr.main import app
from visionocr.pdf_processing.rasterizer import PyMuPDFRasterizer
from visionocr.pipeline.orchestrator import DocumentPipeline
from visionocr.services.record_store import get_record_updater

from tests.helpers import FakeBackend, make_pdf, make_settings


class RecordingUpdater:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.processed: list[tuple] = []
        self.failed: list[tuple] = []

    async def mark_processed(self, record_id: str, text: str, *, pages: int) -> bool:
        if self.fail:
            raise RuntimeError("record store down")
        self.processed.append((record_id, text, pages))
        return True

    async def mark_failed(self, record_id: str, error_code: str, message: str) -> bool:
        self.failed.append((record_id, error_code))
        return True


class RejectingBackend:
    async def extract_text(self, image: bytes, instruction: str, *, detail: str):
        raise InvalidRequestError("rejected")


def _data_uri(data: bytes) -> str:
    return "data:application/pdf;base64," + base64.b64encode(data).decode()


@pytest.fixture
def pdf_uri() -> str:
    return _data_uri(make_pdf(1))


@pytest.fixture
def updater() -> RecordingUpdater:
    return RecordingUpdater()


@pytest.fixture
def client(updater: RecordingUpdater) -> Iterator[TestClient]:
    app.dependency_overrides[get_record_updater] = lambda: updater
    yield TestClient(app)
    app.dependency_overrides.clear()


def _use_backend(backend) -> None:
    cfg = make_settings(pdf_dpi=36)
    app.dependency_overrides[get_pipeline] = lambda: DocumentPipeline(
        config=cfg, backend=backend, strategies=[PyMuPDFRasterizer()]
    )


def test_health(client: TestClient) -> None:
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "service": "visionocr", "version": __version__}


def test_config_hides_secrets(client: TestClient) -> None:
    r = client.get("/api/v1/ocr/config")
    assert r.status_code == 200
    payload = r.json()
    assert payload["model"]
    assert payload["max_parallel_calls"] > 0
    assert "openai_api_key" not in payload


def test_process_success_updates_record(
    client: TestClient, updater: RecordingUpdater, pdf_uri: str
) -> None:
    _use_backend(FakeBackend(text="Hello"))

    r = client.post("/api/v1/ocr/process", json={"file_url": pdf_uri, "record_id": "rec42"})

    assert r.status_code == 200
    payload = r.json()
    assert payload["status"] == "success"
    assert payload["record_id"] == "rec42"
    assert payload["extracted_text_length"] == 5
    assert payload["record_updated"] is True
    assert payload["processing_summary"]["total_chunks"] == 1
    assert updater.processed == [("rec42", "Hello", 1)]


def test_record_store_failure_still_returns_text(pdf_uri: str) -> None:
    app.dependency_overrides[get_record_updater] = lambda: RecordingUpdater(fail=True)
    _use_backend(FakeBackend(text="Hello"))
    try:
        r = TestClient(app).post(
            "/api/v1/ocr/process", json={"file_url": pdf_uri, "record_id": "rec42"}
        )
    finally:
        app.dependency_overrides.clear()

    assert r.status_code == 200
    assert r.json()["record_updated"] is False


def test_invalid_pdf_is_422(client: TestClient, updater: RecordingUpdater) -> None:
    _use_backend(FakeBackend())

    r = client.post(
        "/api/v1/ocr/process", json={"file_url": _data_uri(b"GIF89a"), "record_id": "rec1"}
    )

    assert r.status_code == 422
    payload = r.json()
    assert payload["status"] == "error"
    assert payload["error_code"] == "PDF_CORRUPTED"
    assert payload["stage"] == "downloading"
    assert updater.failed == [("rec1", "PDF_CORRUPTED")]


def test_empty_text_is_422(client: TestClient, updater: RecordingUpdater, pdf_uri: str) -> None:
    _use_backend(FakeBackend(text=""))

    r = client.post("/api/v1/ocr/process", json={"file_url": pdf_uri, "record_id": "rec1"})

    assert r.status_code == 422
    assert r.json()["error_code"] == "OCR_FAILED"
    assert updater.processed == []
    assert updater.failed == [("rec1", "OCR_FAILED")]


def test_backend_failure_is_502(client: TestClient, updater: RecordingUpdater, pdf_uri: str) -> None:
    _use_backend(RejectingBackend())

    r = client.post("/api/v1/ocr/process", json={"file_url": pdf_uri, "record_id": "rec1"})

    assert r.status_code == 502
    assert r.json()["error_code"] == "OCR_FAILED"
    assert updater.failed == [("rec1", "OCR_FAILED")]


def test_deadline_is_504(client: TestClient, updater: RecordingUpdater, pdf_uri: str) -> None:
    _use_backend(FakeBackend(delay=5.0))

    r = client.post(
        "/api/v1/ocr/process",
        json={"file_url": pdf_uri, "record_id": "rec1", "deadline_seconds": 0.2},
    )

    assert r.status_code == 504
    assert r.json()["error_code"] == "TIMEOUT_ERROR"
    assert updater.failed == [("rec1", "TIMEOUT_ERROR")]


def test_request_validation(client: TestClient) -> None:
    r = client.post("/api/v1/ocr/process", json={"file_url": "https://x/doc.pdf"})
    assert r.status_code == 422


@pytest.mark.parametrize("source_kind", ["path", "file_url"])
def test_server_local_sources_are_rejected(
    client: TestClient, updater: RecordingUpdater, tmp_path: Path, source_kind: str
) -> None:
    path = tmp_path / "private.pdf"
    path.write_bytes(make_pdf(1))
    backend = FakeBackend(text="secret")
    _use_backend(backend)
    source = str(path) if source_kind == "path" else path.as_uri()

    r = client.post("/api/v1/ocr/process", json={"file_url": source, "record_id": "rec1"})

    assert r.status_code == 422
    assert backend.calls == []
    assert updater.processed == []
    assert updater.failed == []

"""
Shared builders for the unit tests.
"""

from __future__ import annotations

import asyncio
import io

import fitz
from PIL import Image

from visionocr.core.config import Settings
from visionocr.pdf_processing.vision_client import BackendResponse
from visionocr.schemas.document import ImageChunk, TokenUsage


def make_settings(**overrides) -> Settings:
    """Settings isolated from any .env file, with fast retries."""
    values = {"retry_backoff_seconds": 0.0, "openai_api_key": "sk-test"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_png(width: int, height: int, color: str = "white") -> bytes:
    out = io.BytesIO()
    Image.new("RGB", (width, height), color).save(out, format="PNG")
    return out.getvalue()


def make_pdf(page_count: int, width: float = 612, height: float = 792) -> bytes:
    doc = fitz.open()
    for i in range(page_count):
        page = doc.new_page(width=width, height=height)
        page.insert_text((72, 72), f"Page {i + 1}")
    data = doc.tobytes()
    doc.close()
    return data


def make_chunk(page_index: int, chunk_index: int) -> ImageChunk:
    """A chunk whose image bytes are its own id, so fake backends can tell chunks apart."""
    chunk_id = f"p{page_index + 1}c{chunk_index + 1}"
    return ImageChunk(
        data=chunk_id.encode(),
        width=10,
        height=10,
        chunk_index=chunk_index,
        page_index=page_index,
        id=chunk_id,
    )


class FakeBackend:
    """
    In-memory text-extraction backend.

    ``errors`` maps a chunk id to the exception to raise (every attempt);
    ``flaky`` maps a chunk id to the number of leading attempts that fail
    with the given exception before succeeding.
    """

    def __init__(
        self,
        *,
        errors: dict[str, Exception] | None = None,
        flaky: dict[str, tuple[int, Exception]] | None = None,
        delay: float = 0.0,
        text: str | None = None,
    ):
        self.errors = errors or {}
        self.flaky = dict(flaky or {})
        self.delay = delay
        self.text = text
        self.calls: list[str] = []
        self.instructions: list[str] = []
        self.details: list[str] = []
        self.in_flight = 0
        self.peak_in_flight = 0

    async def extract_text(self, image: bytes, instruction: str, *, detail: str) -> BackendResponse:
        key = image.decode(errors="replace") if len(image) < 64 else f"image-{len(self.calls)}"
        self.calls.append(key)
        self.instructions.append(instruction)
        self.details.append(detail)

        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            else:
                await asyncio.sleep(0)

            if key in self.errors:
                raise self.errors[key]
            if key in self.flaky:
                remaining, error = self.flaky[key]
                if remaining > 0:
                    self.flaky[key] = (remaining - 1, error)
                    raise error
        finally:
            self.in_flight -= 1

        text = self.text if self.text is not None else f"text of {key}"
        return BackendResponse(text=text, token_usage=TokenUsage(input=10, output=5, total=15))

"""
PDF → page images.

Strategies are tried in the configured order; the first one that yields
pages wins.  If every strategy fails, a single RasterizationError carries
each strategy's error so the caller sees all of them.

Pages beyond ``max_pages_per_doc`` are dropped silently.
"""

from __future__ import annotations

import re
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Protocol

import fitz
from PIL import Image
from pydantic import BaseModel, Field

from visionocr.core.config import Settings, settings
from visionocr.core.errors import RasterizationError
from visionocr.schemas.document import PageImage
from visionocr.utils.logging import get_logger
from visionocr.utils.timing import timed

logger = get_logger("visionocr.pdf_processing.rasterizer")

PDFTOPPM_TIMEOUT_SECONDS = 300


class RasterizationResult(BaseModel):
    pages: list[PageImage] = Field(default_factory=list)
    total_pages: int = 0  # Page count of the document, before truncation
    strategy: str = ""


class RasterizerStrategy(Protocol):
    name: str

    def rasterize(self, pdf_bytes: bytes, dpi: int, max_pages: int) -> RasterizationResult:
        ...


class PyMuPDFRasterizer:
    """Renders pages in-process with PyMuPDF."""

    name = "pymupdf"

    def rasterize(self, pdf_bytes: bytes, dpi: int, max_pages: int) -> RasterizationResult:
        pages: list[PageImage] = []
        with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
            if doc.needs_pass:
                raise RuntimeError("PDF is password protected")

            total_pages = doc.page_count
            matrix = fitz.Matrix(dpi / 72, dpi / 72)
            for page_index in range(min(total_pages, max_pages)):
                pix = doc.load_page(page_index).get_pixmap(matrix=matrix, alpha=False)
                pages.append(PageImage(
                    buffer=pix.tobytes("png"),
                    width=pix.width,
                    height=pix.height,
                    page_index=page_index,
                ))
                logger.debug(
                    "[RASTER] Page %d: %dx%dpx", page_index + 1, pix.width, pix.height
                )

        return RasterizationResult(pages=pages, total_pages=total_pages, strategy=self.name)


class PdftoppmRasterizer:
    """Shells out to poppler's ``pdftoppm`` (and ``pdfinfo`` for the page count)."""

    name = "pdftoppm"

    def rasterize(self, pdf_bytes: bytes, dpi: int, max_pages: int) -> RasterizationResult:
        binary = shutil.which("pdftoppm")
        if binary is None:
            raise RuntimeError("pdftoppm not found on PATH (install poppler-utils)")

        with tempfile.TemporaryDirectory(prefix="visionocr_") as tmp:
            tmp_dir = Path(tmp)
            pdf_path = tmp_dir / "document.pdf"
            pdf_path.write_bytes(pdf_bytes)

            command = [
                binary, "-png", "-r", str(dpi), "-l", str(max_pages),
                str(pdf_path), str(tmp_dir / "page"),
            ]
            logger.info("[RASTER] Running pdftoppm with DPI %d, max %d pages", dpi, max_pages)
            try:
                subprocess.run(
                    command, check=True, capture_output=True, timeout=PDFTOPPM_TIMEOUT_SECONDS
                )
            except subprocess.CalledProcessError as e:
                stderr = (e.stderr or b"").decode("utf-8", errors="replace").strip()
                raise RuntimeError(f"pdftoppm exited with {e.returncode}: {stderr}") from e

            images = sorted(tmp_dir.glob("page-*.png"), key=_page_number)
            pages: list[PageImage] = []
            for page_index, image_path in enumerate(images):
                buffer = image_path.read_bytes()
                with Image.open(image_path) as img:
                    width, height = img.size
                pages.append(PageImage(
                    buffer=buffer, width=width, height=height, page_index=page_index
                ))

            total_pages = _pdfinfo_page_count(pdf_path) or len(pages)

        return RasterizationResult(pages=pages, total_pages=total_pages, strategy=self.name)


def _page_number(path: Path) -> int:
    return int(path.stem.rsplit("-", 1)[-1])


def _pdfinfo_page_count(pdf_path: Path) -> int | None:
    binary = shutil.which("pdfinfo")
    if binary is None:
        return None
    try:
        completed = subprocess.run(
            [binary, str(pdf_path)], check=True, capture_output=True, timeout=60
        )
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
        logger.debug("[RASTER] pdfinfo failed: %s", e)
        return None
    match = re.search(rb"^Pages:\s+(\d+)", completed.stdout, re.MULTILINE)
    return int(match.group(1)) if match else None


STRATEGIES: dict[str, type] = {
    PyMuPDFRasterizer.name: PyMuPDFRasterizer,
    PdftoppmRasterizer.name: PdftoppmRasterizer,
}


def build_strategies(names: list[str]) -> list[RasterizerStrategy]:
    """Instantiate strategies by configured name, preserving order."""
    return [STRATEGIES[name]() for name in names]


@timed("rasterize_pdf")
def rasterize_pdf(
    pdf_bytes: bytes,
    *,
    config: Settings | None = None,
    strategies: list[RasterizerStrategy] | None = None,
    max_pages: int | None = None,
) -> RasterizationResult:
    """
    Convert PDF bytes to an ordered, zero-indexed list of page images.

    Args:
        pdf_bytes: Validated PDF bytes
        config: Settings override (DPI, max pages, strategy order)
        strategies: Explicit strategy list; defaults to RASTERIZER_STRATEGIES
        max_pages: Optional per-call cap, never above MAX_PAGES_PER_DOC

    Raises:
        RasterizationError: every strategy failed or produced no pages
    """
    cfg = config or settings
    if strategies is None:
        strategies = build_strategies(cfg.rasterizer_strategies)
    page_cap = cfg.max_pages_per_doc if max_pages is None else min(max_pages, cfg.max_pages_per_doc)

    errors: dict[str, str] = {}
    for strategy in strategies:
        try:
            result = strategy.rasterize(pdf_bytes, cfg.pdf_dpi, page_cap)
        except Exception as e:
            logger.warning("[RASTER] Strategy '%s' failed: %s", strategy.name, e)
            errors[strategy.name] = str(e) or type(e).__name__
            continue

        if not result.pages:
            logger.warning("[RASTER] Strategy '%s' produced no pages", strategy.name)
            errors[strategy.name] = "No images were generated from PDF"
            continue

        if result.total_pages > len(result.pages):
            logger.info(
                "[RASTER] Document has %d pages, processing first %d",
                result.total_pages, len(result.pages),
            )
        logger.info(
            "[RASTER] PDF conversion completed with '%s': %d pages at %d DPI",
            result.strategy, len(result.pages), cfg.pdf_dpi,
        )
        return result

    summary = "; ".join(f"{name}: {message}" for name, message in errors.items())
    raise RasterizationError(f"Failed to convert PDF to images ({summary})", errors=errors)

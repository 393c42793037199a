"""
Image chunking.

Pages whose long side fits ``long_side_max_px`` go to the backend whole.
Larger pages are cut into overlapping strips: along the width when the
page is wider than ``aspect_trigger`` (left-to-right), otherwise along
the height (top-to-bottom).

The geometry (``plan_chunks``) depends only on the page dimensions and
settings, so the same PDF and configuration always produce the same chunk
boundaries.  ``chunk_page`` crops the planned boxes with Pillow.
"""

from __future__ import annotations

import io
import math
from enum import Enum

from PIL import Image
from pydantic import BaseModel, Field

from visionocr.core.config import Settings, settings
from visionocr.core.errors import ChunkingError
from visionocr.schemas.document import ImageChunk, PageImage
from visionocr.utils.logging import get_logger

logger = get_logger("visionocr.pdf_processing.chunker")


class SplitStrategy(str, Enum):
    SINGLE = "single"
    HORIZONTAL = "horizontal"  # Strips advance along x (wide pages)
    VERTICAL = "vertical"  # Strips advance along y (tall pages)


class ChunkBox(BaseModel):
    x: int
    y: int
    width: int
    height: int


class ChunkPlan(BaseModel):
    strategy: SplitStrategy
    boxes: list[ChunkBox] = Field(default_factory=list)
    overlap_px: int = 0
    aspect_ratio: float = 0.0


def chunk_id(page_index: int, chunk_index: int) -> str:
    return f"p{page_index + 1}c{chunk_index + 1}"


def split_axis(length: int, max_extent: int, overlap_pct: float) -> tuple[list[tuple[int, int]], int]:
    """
    Split ``length`` pixels into overlapping ``(start, extent)`` spans.

    Returns the spans and the overlap in pixels.  The loop stops once the
    next span would start inside the final overlap band, i.e. it would only
    repeat pixels the previous span already covers.
    """
    extent = min(length, max_extent)
    overlap = math.floor(extent * overlap_pct)
    spans: list[tuple[int, int]] = []

    start = 0
    while start < length:
        end = min(start + extent, length)
        spans.append((start, end - start))
        start = end - overlap
        if start >= length - overlap:
            break

    return spans, overlap


def plan_chunks(width: int, height: int, config: Settings | None = None) -> ChunkPlan:
    """Compute chunk boxes for a ``width`` x ``height`` page."""
    cfg = config or settings
    max_px = cfg.long_side_max_px

    if width <= max_px and height <= max_px:
        return ChunkPlan(
            strategy=SplitStrategy.SINGLE,
            boxes=[ChunkBox(x=0, y=0, width=width, height=height)],
            aspect_ratio=width / height if height else 0.0,
        )

    aspect_ratio = width / height
    if aspect_ratio > cfg.aspect_trigger:
        spans, overlap = split_axis(width, max_px, cfg.overlap_pct)
        boxes = [ChunkBox(x=x, y=0, width=w, height=height) for x, w in spans]
        strategy = SplitStrategy.HORIZONTAL
    else:
        spans, overlap = split_axis(height, max_px, cfg.overlap_pct)
        boxes = [ChunkBox(x=0, y=y, width=width, height=h) for y, h in spans]
        strategy = SplitStrategy.VERTICAL

    return ChunkPlan(
        strategy=strategy, boxes=boxes, overlap_px=overlap, aspect_ratio=aspect_ratio
    )


def chunk_page(page: PageImage, config: Settings | None = None) -> list[ImageChunk]:
    """
    Split one page image into chunks.

    A box that fails to crop is skipped; if chunking as a whole fails the
    page is returned as a single chunk.
    """
    cfg = config or settings
    page_num = page.page_index + 1

    try:
        plan = plan_chunks(page.width, page.height, cfg)
        logger.info(
            "[CHUNK] Page %d: %dx%dpx, aspect %.2f, strategy=%s",
            page_num, page.width, page.height, plan.aspect_ratio, plan.strategy.value,
        )

        if plan.strategy is SplitStrategy.SINGLE:
            return [_whole_page_chunk(page)]

        chunks = _crop_plan(page, plan, cfg.long_side_max_px)
        if not chunks:
            raise ChunkingError(f"Every chunk of page {page_num} failed to crop")

        logger.info(
            "[CHUNK] Page %d: %d chunks (overlap %dpx)", page_num, len(chunks), plan.overlap_px
        )
        return chunks

    except Exception as e:
        logger.error(
            "[CHUNK] Chunking failed for page %d, using whole page: %s", page_num, e
        )
        return [_whole_page_chunk(page)]


def _whole_page_chunk(page: PageImage) -> ImageChunk:
    return ImageChunk(
        data=page.buffer,
        width=page.width,
        height=page.height,
        origin_x=0,
        origin_y=0,
        chunk_index=0,
        page_index=page.page_index,
        id=chunk_id(page.page_index, 0),
    )


def _crop_plan(page: PageImage, plan: ChunkPlan, max_px: int) -> list[ImageChunk]:
    try:
        image = Image.open(io.BytesIO(page.buffer))
        image.load()
    except Exception as e:
        raise ChunkingError(f"Could not decode page {page.page_index + 1}: {e}") from e

    chunks: list[ImageChunk] = []
    with image:
        for chunk_index, box in enumerate(plan.boxes):
            try:
                chunks.append(_crop_chunk(image, box, page.page_index, chunk_index, max_px))
            except ChunkingError as e:
                logger.warning(
                    "[CHUNK] Failed to create chunk %s, skipping: %s",
                    chunk_id(page.page_index, chunk_index), e,
                )
    return chunks


def _crop_chunk(
    image: Image.Image, box: ChunkBox, page_index: int, chunk_index: int, max_px: int
) -> ImageChunk:
    try:
        region = image.crop((box.x, box.y, box.x + box.width, box.y + box.height))

        # The cross axis of a strip can still exceed the limit (e.g. a
        # 3000x2000 page cut along its height); shrink it to fit.
        scale = 1.0
        long_side = max(region.width, region.height)
        if long_side > max_px:
            scale = max_px / long_side
            region = region.resize(
                (max(1, math.floor(region.width * scale)), max(1, math.floor(region.height * scale))),
                Image.Resampling.LANCZOS,
            )

        out = io.BytesIO()
        region.save(out, format="PNG")
    except (OSError, ValueError) as e:
        raise ChunkingError(str(e)) from e

    chunk = ImageChunk(
        data=out.getvalue(),
        width=region.width,
        height=region.height,
        origin_x=box.x,
        origin_y=box.y,
        chunk_index=chunk_index,
        page_index=page_index,
        id=chunk_id(page_index, chunk_index),
        scale=scale,
    )
    logger.debug(
        "[CHUNK] %s: %dx%dpx at (%d, %d)", chunk.id, box.width, box.height, box.x, box.y
    )
    return chunk

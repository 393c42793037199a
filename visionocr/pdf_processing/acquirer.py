"""
Document acquisition.

Resolves a source reference (http(s) URL, ``data:`` URI, ``file://`` URL
or plain filesystem path) into validated PDF bytes.  Nothing here is
retried: a malformed or unreachable document fails the run immediately.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
from pathlib import Path
from urllib.parse import unquote, unquote_to_bytes, urlparse

import httpx

from visionocr.core.config import Settings, settings
from visionocr.core.errors import AcquisitionError, AcquisitionTimeout, InvalidDocument
from visionocr.schemas.document import PDFDocument
from visionocr.utils.logging import get_logger

logger = get_logger("visionocr.pdf_processing.acquirer")

PDF_MAGIC = b"%PDF"
USER_AGENT = "visionocr-pdf-processor/1.0"


async def acquire_document(
    source: str,
    *,
    config: Settings | None = None,
    client: httpx.AsyncClient | None = None,
) -> PDFDocument:
    """
    Load a PDF from ``source`` and validate its header.

    Args:
        source: URL, data URI, file URL or local path
        config: Settings override (defaults to the module settings)
        client: Optional shared ``httpx.AsyncClient`` for network sources

    Raises:
        InvalidDocument: bytes do not start with ``%PDF``
        AcquisitionTimeout: network fetch exceeded the download timeout
        AcquisitionError: anything else that prevents loading the bytes
    """
    cfg = config or settings
    source = (source or "").strip()
    if not source:
        raise AcquisitionError("Empty document source")

    preview = source[:50] + ("..." if len(source) > 50 else "")
    logger.info("[ACQUIRE] Loading PDF from: %s", preview)

    if source.startswith(("http://", "https://")):
        data = await _download(source, cfg, client)
    elif source.startswith("data:"):
        data = _decode_data_uri(source)
    else:
        data = _read_local(source)

    if len(data) > cfg.max_document_bytes:
        raise AcquisitionError(
            f"Document is {len(data)} bytes, above the {cfg.max_document_bytes} byte limit"
        )

    if not data.startswith(PDF_MAGIC):
        raise InvalidDocument("Downloaded file is not a valid PDF (missing %PDF header)")

    document = PDFDocument(data=data, source=source)
    logger.info(
        "[ACQUIRE] PDF loaded (%dKB, sha256=%s...)",
        round(document.size_bytes / 1024),
        document.checksum[:12],
    )
    return document


async def _download(url: str, cfg: Settings, client: httpx.AsyncClient | None) -> bytes:
    # The timeout bounds the whole transfer, not each read.
    try:
        if client is not None:
            return await asyncio.wait_for(
                _fetch(client, url, cfg), timeout=cfg.download_timeout_seconds
            )
        async with httpx.AsyncClient(timeout=cfg.download_timeout_seconds) as own_client:
            return await asyncio.wait_for(
                _fetch(own_client, url, cfg), timeout=cfg.download_timeout_seconds
            )
    except (asyncio.TimeoutError, httpx.TimeoutException) as e:
        raise AcquisitionTimeout(
            f"PDF download timed out after {cfg.download_timeout_seconds}s"
        ) from e
    except httpx.HTTPError as e:
        raise AcquisitionError(f"PDF download failed: {e}") from e


async def _fetch(client: httpx.AsyncClient, url: str, cfg: Settings) -> bytes:
    limit = cfg.max_document_bytes
    async with client.stream(
        "GET",
        url,
        headers={"User-Agent": USER_AGENT},
        timeout=cfg.download_timeout_seconds,
        follow_redirects=True,
    ) as response:
        if response.status_code < 200 or response.status_code >= 300:
            raise AcquisitionError(
                f"Failed to download PDF: {response.status_code} {response.reason_phrase}"
            )

        declared = response.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > limit:
            raise AcquisitionError(
                f"Document is {declared} bytes, above the {limit} byte limit"
            )

        data = bytearray()
        async for block in response.aiter_bytes():
            data.extend(block)
            if len(data) > limit:
                raise AcquisitionError(
                    f"Download passed the {limit} byte limit, aborting"
                )

    logger.debug("[ACQUIRE] Downloaded %d bytes from %s", len(data), url)
    return bytes(data)


def _decode_data_uri(uri: str) -> bytes:
    header, sep, payload = uri.partition(",")
    if not sep:
        raise AcquisitionError("Invalid PDF data URI format (no payload)")
    if "application/pdf" not in header and "base64" not in header:
        raise AcquisitionError("Invalid PDF data URI format")

    if "base64" in header:
        try:
            return base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError) as e:
            raise AcquisitionError(f"Invalid base64 payload in data URI: {e}") from e
    return unquote_to_bytes(payload)


def _read_local(source: str) -> bytes:
    if source.startswith("file://"):
        path = Path(unquote(urlparse(source).path))
    else:
        path = Path(source).expanduser()

    if not path.is_file():
        raise AcquisitionError(f"Local file not found: {path}")

    try:
        return path.read_bytes()
    except OSError as e:
        raise AcquisitionError(f"Could not read local file {path}: {e}") from e

#!/usr/bin/env python3
"""
Run the OCR pipeline on one PDF from the command line.

USAGE:
    python process_pdf.py <source> [--max-pages N] [--deadline SECONDS] [--json]
    python process_pdf.py --check-connection

EXAMPLES:
    python process_pdf.py https://example.com/invoice.pdf
    python process_pdf.py ./scans/report.pdf --max-pages 5 --json

<source> may be an http(s) URL, a data: URI, a file:// URL or a local path.
Prints the extracted text, or the full result as JSON with --json.
"""

import argparse
import asyncio
import sys

from visionocr.core.config import settings
from visionocr.core.errors import OCRPipelineError
from visionocr.pdf_processing.vision_client import get_vision_backend
from visionocr.pipeline.orchestrator import process_pdf_from_url
from visionocr.utils.logging import setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Extract text from a PDF with a vision model")
    parser.add_argument(
        "source", nargs="?", help="URL, data URI, file URL or local path of the PDF"
    )
    parser.add_argument("--max-pages", type=int, default=None, help="Process at most N pages")
    parser.add_argument(
        "--deadline", type=float, default=None, help="Abort the run after SECONDS"
    )
    parser.add_argument("--json", action="store_true", help="Print the full result as JSON")
    parser.add_argument(
        "--check-connection",
        action="store_true",
        help="Send one tiny image to the vision model and exit",
    )
    return parser


def check_connection() -> int:
    try:
        backend = get_vision_backend()
    except RuntimeError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    if asyncio.run(backend.check_connection()):
        print(f"✅ Vision model {settings.openai_model_name} answered", file=sys.stderr)
        return 0
    print(f"❌ Vision model {settings.openai_model_name} did not answer", file=sys.stderr)
    return 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(settings.log_level)

    if args.check_connection:
        return check_connection()
    if not args.source:
        parser.error("source is required unless --check-connection is given")

    try:
        result = asyncio.run(
            process_pdf_from_url(
                args.source, max_pages=args.max_pages, deadline_seconds=args.deadline
            )
        )
    except OCRPipelineError as e:
        print(f"❌ {e.error_code}: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(result.model_dump_json(indent=2))
    else:
        print(result.extracted_text)

    s = result.summary
    print(
        f"✅ {result.processed_pages}/{result.total_pages} pages, "
        f"{s.successful_chunks}/{s.total_chunks} chunks, {s.total_tokens_used} tokens, "
        f"{s.total_processing_time_ms / 1000:.1f}s",
        file=sys.stderr,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""
OpenAI Vision client.

Sends one chunk image plus a fixed layout-preserving instruction to a
vision-capable chat model and returns the text with token usage.

SDK retries are disabled: the extractor owns the retry policy.  SDK
errors are mapped onto the ExtractionError classes so the policy can tell
transient failures (rate limit, timeout, connection, 5xx) from invalid
requests.
"""

from __future__ import annotations

import base64
import threading
from typing import Any, Protocol

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from visionocr.core.config import Settings, settings
from visionocr.core.errors import (
    BackendTimeoutError,
    BackendUnavailableError,
    ExtractionError,
    InvalidRequestError,
    RateLimitedError,
)
from visionocr.schemas.document import TokenUsage
from visionocr.utils.logging import get_logger

logger = get_logger("visionocr.pdf_processing.vision_client")

OCR_INSTRUCTION = (
    "Extract all text from this image. Preserve the original formatting, spacing, "
    "and layout as much as possible. Include all visible text including headers, "
    "footers, tables, and any annotations. Return only the extracted text with no "
    "additional commentary."
)

# 1x1 white PNG used by check_connection()
_PROBE_IMAGE = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChAGA8Yy8AgAAAABJRU5ErkJggg=="
)


def png_data_uri(image: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(image).decode("ascii")


class BackendResponse(BaseModel):
    text: str
    token_usage: TokenUsage = Field(default_factory=TokenUsage)


class TextExtractionBackend(Protocol):
    async def extract_text(self, image: bytes, instruction: str, *, detail: str) -> BackendResponse:
        ...


def classify_openai_error(error: Exception) -> ExtractionError:
    """Map an OpenAI SDK exception onto the extraction error taxonomy."""
    if isinstance(error, openai.RateLimitError):
        return RateLimitedError(f"Rate limit exceeded: {error}")
    if isinstance(error, openai.APITimeoutError):
        return BackendTimeoutError(f"Vision API request timed out: {error}")
    if isinstance(error, openai.APIConnectionError):
        return BackendUnavailableError(f"Vision API connection failed: {error}")
    if isinstance(error, openai.InternalServerError):
        return BackendUnavailableError(f"Vision API server error: {error}")
    if isinstance(error, openai.APIStatusError):
        if error.status_code == 408:
            return BackendTimeoutError(f"Vision API request timed out: {error}")
        if error.status_code >= 500:
            return BackendUnavailableError(f"Vision API server error: {error}")
        return InvalidRequestError(f"Invalid request to Vision API ({error.status_code}): {error}")
    if isinstance(error, openai.APIError):
        return BackendUnavailableError(f"Vision API call failed: {error}")
    return InvalidRequestError(f"Vision API call failed: {error}")


class OpenAIVisionBackend:
    """Text-extraction backend on top of ``openai.AsyncOpenAI``."""

    def __init__(self, config: Settings | None = None, client: Any | None = None):
        self.config = config or settings
        if client is None:
            if not self.config.openai_api_key:
                raise RuntimeError("OpenAI API key not configured (OPENAI_API_KEY).")
            client = AsyncOpenAI(
                api_key=self.config.openai_api_key,
                base_url=self.config.openai_base_url,
                timeout=self.config.openai_timeout_seconds,
                max_retries=0,
            )
            logger.info(
                "[VISION] OpenAI client initialized (model=%s, base_url=%s, timeout=%ss)",
                self.config.openai_model_name,
                self.config.openai_base_url or "default",
                self.config.openai_timeout_seconds,
            )
        self.client = client

    async def extract_text(
        self, image: bytes, instruction: str = OCR_INSTRUCTION, *, detail: str | None = None
    ) -> BackendResponse:
        data_uri = png_data_uri(image)
        try:
            response = await self.client.chat.completions.create(
                model=self.config.openai_model_name,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": instruction},
                            {
                                "type": "image_url",
                                "image_url": {
                                    "url": data_uri,
                                    "detail": detail or self.config.openai_detail_mode,
                                },
                            },
                        ],
                    }
                ],
                max_tokens=self.config.openai_max_tokens,
                temperature=self.config.openai_temperature,
            )
        except openai.OpenAIError as e:
            raise classify_openai_error(e) from e

        text = ""
        if response.choices:
            text = (response.choices[0].message.content or "").strip()

        usage = response.usage
        token_usage = TokenUsage(
            input=getattr(usage, "prompt_tokens", 0) or 0,
            output=getattr(usage, "completion_tokens", 0) or 0,
            total=getattr(usage, "total_tokens", 0) or 0,
        )
        return BackendResponse(text=text, token_usage=token_usage)

    async def check_connection(self) -> bool:
        """Send a 1x1 probe image and report whether the model answered."""
        try:
            response = await self.extract_text(
                _PROBE_IMAGE, "What do you see in this image?", detail="low"
            )
        except ExtractionError as e:
            logger.error("[VISION] Connection test failed: %s", e)
            return False
        logger.info(
            "[VISION] Connection test completed (model=%s, tokens=%d)",
            self.config.openai_model_name, response.token_usage.total,
        )
        return bool(response.text)


# Singleton instance
_backend_lock = threading.Lock()
_backend_instance: OpenAIVisionBackend | None = None


def get_vision_backend() -> OpenAIVisionBackend:
    """Get or create the OpenAI vision backend singleton."""
    global _backend_instance
    if _backend_instance is not None:
        return _backend_instance
    with _backend_lock:
        if _backend_instance is None:
            _backend_instance = OpenAIVisionBackend()
        return _backend_instance

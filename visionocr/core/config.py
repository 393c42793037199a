from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

RASTERIZER_STRATEGY_NAMES = ("pymupdf", "pdftoppm")


class Settings(BaseSettings):
    app_name: str = "visionocr"
    environment: str = "development"
    host: str = "127.0.0.1"
    port: int = 8001
    log_level: str = "INFO"

    # ── OpenAI vision backend ───────────────────────────────────────
    openai_api_key: str | None = None
    openai_base_url: str | None = None  # Optional proxy / Azure-compatible endpoint
    openai_model_name: str = "gpt-4o"
    openai_detail_mode: str = "high"  # Mandatory "high" for OCR quality
    openai_timeout_seconds: float = Field(90.0, gt=0)  # Per-call timeout
    openai_max_tokens: int = Field(4096, gt=0)
    openai_temperature: float = Field(0.1, ge=0, le=2)
    max_vision_retries: int = Field(1, ge=0)  # Retries after the first attempt
    retry_backoff_seconds: float = Field(2.0, ge=0)  # Base for base * 2^(attempt-1)

    # ── PDF acquisition / rasterization ─────────────────────────────
    download_timeout_seconds: float = Field(30.0, gt=0)
    max_document_bytes: int = Field(200 * 1024 * 1024, gt=0)  # 200 MB
    pdf_dpi: int = Field(150, gt=0)
    max_pages_per_doc: int = Field(50, gt=0)  # Pages beyond this are dropped silently
    rasterizer_strategies: list[str] = Field(default_factory=lambda: ["pymupdf", "pdftoppm"])

    # ── Image chunking ──────────────────────────────────────────────
    long_side_max_px: int = Field(2048, gt=0)
    aspect_trigger: float = Field(2.7, gt=0)  # width/height above this splits along width
    overlap_pct: float = Field(0.05, ge=0, lt=1)

    # ── Concurrency / deadlines ─────────────────────────────────────
    max_parallel_vision_calls: int = Field(5, gt=0)
    pipeline_deadline_seconds: float | None = Field(None, gt=0)  # None = no pipeline-wide deadline

    class Config:
        env_file = ".env"
        extra = "ignore"  # Ignore extra environment variables that aren't in the Settings class

    @field_validator("openai_detail_mode")
    @classmethod
    def _check_detail_mode(cls, value: str) -> str:
        value = value.lower()
        if value not in ("low", "high", "auto"):
            raise ValueError("OPENAI_DETAIL_MODE must be one of: low, high, auto")
        return value

    @field_validator("rasterizer_strategies")
    @classmethod
    def _check_strategies(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("RASTERIZER_STRATEGIES must name at least one strategy")
        unknown = [name for name in value if name not in RASTERIZER_STRATEGY_NAMES]
        if unknown:
            raise ValueError(f"Unknown rasterizer strategies: {unknown}")
        return value

    @property
    def max_vision_attempts(self) -> int:
        return self.max_vision_retries + 1


settings = Settings()

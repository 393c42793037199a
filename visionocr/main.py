from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from visionocr import __version__
from visionocr.core.config import settings
from visionocr.utils.logging import get_logger, setup_logging

from visionocr.api.health import router as health_router
from visionocr.api.ocr import router as ocr_router

setup_logging(settings.log_level)
logger = get_logger("visionocr.main")

app = FastAPI(
    title=settings.app_name,
    description="PDF OCR through a vision-capable language model",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router, prefix="/api")  # /api/health
app.include_router(ocr_router, prefix="/api/v1")  # /api/v1/ocr/...


@app.on_event("startup")
async def on_startup():
    logger.info(
        "Starting %s (model=%s, max %d parallel vision calls, %d DPI, max %d pages)",
        settings.app_name,
        settings.openai_model_name,
        settings.max_parallel_vision_calls,
        settings.pdf_dpi,
        settings.max_pages_per_doc,
    )
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set; OCR requests will fail until it is configured")


@app.get("/")
async def root():
    return {"service": settings.app_name, "version": __version__, "health": "/api/health"}

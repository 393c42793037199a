from __future__ import annotations

from fastapi import APIRouter

from visionocr import __version__

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check():
    """Liveness only; the vision backend is not contacted."""
    return {"status": "ok", "service": "visionocr", "version": __version__}

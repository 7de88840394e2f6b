"""Stats endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from facetrack.api.schemas.models import StatsSchema
from facetrack.api.services.engine import OverlayEngine
from facetrack.api.services.state import get_engine

router = APIRouter()


@router.get("/stats", response_model=StatsSchema)
def stats(engine: OverlayEngine = Depends(get_engine)) -> StatsSchema:
    """Return runtime statistics plus at most one pending error notification."""

    return StatsSchema(**engine.stats(), notification=engine.pop_notification())

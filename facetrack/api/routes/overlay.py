"""Overlay geometry, viewport and camera endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from facetrack.api.schemas.models import FacingSchema, GeometrySchema, ViewportSchema
from facetrack.api.services.engine import OverlayEngine
from facetrack.api.services.state import get_engine

router = APIRouter()


@router.get("/overlay/geometry", response_model=GeometrySchema)
def overlay_geometry(engine: OverlayEngine = Depends(get_engine)) -> GeometrySchema:
    """Return the current annotations mapped into viewport pixels."""

    return GeometrySchema.from_geometry(engine.current_geometry(), engine.state.viewport())


@router.get("/overlay/layer.png")
def overlay_layer(engine: OverlayEngine = Depends(get_engine)) -> Response:
    """Transparent viewport-sized PNG of the annotations; 204 when nothing can be drawn."""

    png = engine.overlay_layer_png()
    if png is None:
        return Response(status_code=204)
    return Response(content=png, media_type="image/png", headers={"Cache-Control": "no-store"})


@router.post("/overlay/viewport", response_model=GeometrySchema)
def resize_viewport(size: ViewportSchema, engine: OverlayEngine = Depends(get_engine)) -> GeometrySchema:
    """Update the viewport after a layout pass and return the remapped geometry.

    A zero-sized viewport is accepted; the response is then not drawable.
    """

    viewport = engine.resize(size.width, size.height)
    return GeometrySchema.from_geometry(engine.current_geometry(), viewport)


@router.post("/camera/facing")
def switch_facing(body: FacingSchema, engine: OverlayEngine = Depends(get_engine)) -> dict[str, object]:
    """Switch between front and back camera; clears the overlay immediately."""

    session = engine.switch_camera(body.facing)
    return {"facing": engine.facing, "mirrored": engine.is_mirrored, "session": session}

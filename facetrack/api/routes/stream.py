from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from facetrack.api.schemas.models import GeometrySchema
from facetrack.api.services.engine import OverlayEngine
from facetrack.api.services.state import get_engine

router = APIRouter()

logger = logging.getLogger(__name__)


def _is_closed_send_error(exc: BaseException) -> bool:
    # Uvicorn raises this when an ASGI websocket.send happens after close.
    if not isinstance(exc, RuntimeError):
        return False
    msg = str(exc)
    return "Unexpected ASGI message 'websocket.send'" in msg or "response already completed" in msg


@router.get("/stream/video")
async def stream_video():
    async def generator():
        engine: OverlayEngine = await asyncio.to_thread(get_engine)
        async for chunk in engine.mjpeg_generator():
            yield chunk

    return StreamingResponse(
        generator(),
        media_type="multipart/x-mixed-replace; boundary=frame",
        headers={
            "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
            "Pragma": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


@router.websocket("/stream/overlay")
async def stream_overlay(ws: WebSocket):
    """Push the mapped overlay geometry after every render pass."""

    await ws.accept()
    engine: OverlayEngine = await asyncio.to_thread(get_engine)
    try:
        async for geometry in engine.geometry_stream():
            viewport = engine.state.viewport() if hasattr(engine, "state") else None
            payload = GeometrySchema.from_geometry(geometry, viewport).model_dump()
            try:
                await ws.send_json(payload)
            except Exception as e:
                if _is_closed_send_error(e) or isinstance(e, WebSocketDisconnect):
                    return
                raise
    except WebSocketDisconnect:
        return
    except Exception:
        logger.exception("Overlay websocket crashed")
        try:
            await ws.close(code=1011)
        except Exception:
            pass

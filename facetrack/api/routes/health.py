"""Health check endpoints."""

from fastapi import APIRouter

from facetrack.api.services.state import peek_engine

router = APIRouter()


@router.get("/health")
def health() -> dict[str, object]:
    """Liveness plus overlay engine status; never starts the engine."""

    engine = peek_engine()
    if engine is None:
        return {"status": "ok", "engine": "idle", "session": None, "error": None}
    return {
        "status": "ok",
        "engine": "running" if engine.running else "stopped",
        "session": engine.state.session,
        "error": engine.last_error,
    }

"""In-process state for settings and the overlay engine.

FastAPI routes use this module to access (and hot-reload) the singleton
`OverlayEngine` instance.
"""

from __future__ import annotations

from threading import RLock
from typing import Any

from facetrack.api.services.engine import OverlayEngine
from facetrack.core.config.settings import OverlaySettings, load_settings, settings_to_dict

_settings: OverlaySettings | None = None
_engine: OverlayEngine | None = None
_lock = RLock()


def get_settings() -> OverlaySettings:
    """Return cached settings, loading them on first use."""

    global _settings
    with _lock:
        if _settings is None:
            _settings = load_settings()
    return _settings


def reload_settings(data: dict | None = None) -> OverlaySettings:
    """Reload settings and restart the engine if it is running.

    Restarting ends the overlay session, so results computed under the old
    detector conventions are never drawn with the new ones. The viewport from the
    last layout pass and the selected camera survive the restart unless the new
    settings change them explicitly.

    Args:
        data: Optional patch dict merged into the loaded settings.
    """

    global _settings, _engine
    with _lock:
        base = load_settings()
        if data:
            _settings = OverlaySettings(**{**settings_to_dict(base), **data})
        else:
            _settings = base
        if _engine:
            previous = _engine
            previous.stop()
            _engine = OverlayEngine(_settings, **_carried_runtime(previous, _settings))
            _engine.start()
    return _settings


def _carried_runtime(previous: OverlayEngine, settings: OverlaySettings) -> dict[str, Any]:
    carried: dict[str, Any] = {}
    if settings.viewport == previous.settings.viewport:
        carried["viewport"] = previous.state.viewport()
    if settings.camera_facing == previous.settings.camera_facing:
        carried["facing"] = previous.facing
    return carried


def get_engine() -> OverlayEngine:
    """Return the singleton engine instance, creating and starting it if needed."""

    global _engine
    with _lock:
        if _engine is None:
            _engine = OverlayEngine(get_settings())
            _engine.start()
    return _engine


def stop_engine() -> None:
    """Stop and discard the singleton engine instance (if present)."""

    global _engine
    with _lock:
        if _engine is not None:
            _engine.stop()
            _engine = None


def peek_engine() -> OverlayEngine | None:
    """Return the engine if one exists, without creating it."""

    with _lock:
        return _engine

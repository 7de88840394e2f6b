"""Configuration endpoints.

Every successful change restarts the overlay engine, which starts a new overlay
session: annotations computed under the previous detector conventions are cleared.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from facetrack.api.schemas.models import ConfigSchema
from facetrack.api.services.state import get_settings, reload_settings
from facetrack.core.config.presets import list_presets, preset_patch
from facetrack.core.config.settings import OverlaySettings, settings_to_dict

router = APIRouter()


def _apply(patch: dict[str, Any]) -> ConfigSchema:
    try:
        settings: OverlaySettings = reload_settings(patch)
    except ValidationError as exc:
        raise HTTPException(
            status_code=422, detail=exc.errors(include_url=False, include_context=False)
        ) from None
    return ConfigSchema(**settings_to_dict(settings))


@router.get("/config", response_model=ConfigSchema)
def get_config() -> ConfigSchema:
    """Return the current effective configuration."""

    return ConfigSchema(**settings_to_dict(get_settings()))


@router.get("/config/presets")
def get_presets() -> dict[str, list[dict[str, object]]]:
    """Return the detector convention presets."""

    return {"presets": list_presets()}


@router.post("/config/presets/{preset_id}", response_model=ConfigSchema)
def apply_preset(preset_id: str) -> ConfigSchema:
    """Apply a preset on top of the loaded configuration."""

    try:
        patch = preset_patch(preset_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Unknown preset") from None
    return _apply(patch)


@router.post("/config", response_model=ConfigSchema)
def update_config(cfg: ConfigSchema) -> ConfigSchema:
    """Replace the in-memory settings and restart the engine.

    The viewport from the last layout pass and the selected camera are kept unless
    the payload changes `viewport` or `camera_facing`. Persist configuration via
    environment variables or the YAML config file.
    """

    return _apply(cfg.model_dump())

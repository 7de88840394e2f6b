"""Runtime configuration.

Settings are loaded from YAML defaults and overridden by environment variables
prefixed with `FTO_`.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, cast

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from facetrack.core.geometry.fit import ScaleMode
from facetrack.core.geometry.mapper import DetectorConvention, MirrorConvention
from facetrack.core.types import VALID_ROTATIONS, Viewport


class OverlaySettings(BaseSettings):
    """Runtime configuration loaded from YAML defaults and `FTO_` env overrides."""

    video_source: str = Field("webcam", description="webcam|file")
    video_path: str | None = None
    camera_facing: str = Field("front", description="front|back")
    front_camera_index: int = 0
    back_camera_index: int = 1
    model_name: str = Field("yolo11n-pose.pt")
    confidence: float = 0.4
    keypoint_confidence: float = 0.5

    # Clockwise rotation that makes the camera buffer upright.
    rotation_degrees: int = 0
    # True: rotate pixels before detection (points come back upright).
    # False: detect on the raw buffer and carry the rotation as metadata.
    rotate_before_detection: bool = True
    normalized_points: bool = False
    # flip: the detector sees unmirrored pixels, the overlay is reflected for display.
    # upstream: the detector input is mirrored like the preview, no reflection.
    # Fixed per capture session; validate against the real preview output.
    mirror_convention: str = Field("flip", description="flip|upstream")
    scale_mode: str = Field("fill", description="fill|fit")
    viewport: str = Field("390x844", description="initial viewport, WxH")

    detection_workers: int = 2
    # Optional cap for the detection submit rate. Use 0 to run as fast as possible.
    target_fps: float = 15.0
    jpeg_quality: int = 70
    draw_face_points: bool = False

    model_config = SettingsConfigDict(env_prefix="FTO_", validate_assignment=True)

    @field_validator("video_source")
    def _validate_source(cls, v: str) -> str:
        if v not in {"webcam", "file"}:
            raise ValueError("video_source must be webcam|file")
        return v

    @field_validator("camera_facing")
    def _validate_facing(cls, v: str) -> str:
        v2 = str(v).strip().lower()
        if v2 not in {"front", "back"}:
            raise ValueError("camera_facing must be front|back")
        return v2

    @field_validator("confidence", "keypoint_confidence")
    def _validate_confidence(cls, v: float) -> float:
        if not 0.0 < v <= 1.0:
            raise ValueError("confidence must be in (0, 1]")
        return v

    @field_validator("rotation_degrees")
    def _validate_rotation(cls, v: int) -> int:
        if int(v) % 360 not in VALID_ROTATIONS:
            raise ValueError("rotation_degrees must be 0|90|180|270")
        return int(v) % 360

    @field_validator("mirror_convention")
    def _validate_mirror(cls, v: str) -> str:
        return MirrorConvention(str(v).strip().lower()).value

    @field_validator("scale_mode")
    def _validate_scale_mode(cls, v: str) -> str:
        return ScaleMode(str(v).strip().lower()).value

    @field_validator("viewport")
    def _validate_viewport(cls, v: str) -> str:
        parse_size(v)  # will raise if invalid
        return v

    @field_validator("detection_workers")
    def _validate_workers(cls, v: int) -> int:
        if v < 1:
            raise ValueError("detection_workers must be >= 1")
        return v

    @field_validator("target_fps")
    def _validate_target_fps(cls, v: float) -> float:
        if v < 0:
            raise ValueError("target_fps must be >= 0")
        return float(v)

    @field_validator("jpeg_quality")
    def _validate_jpeg_quality(cls, v: int) -> int:
        if not 10 <= v <= 100:
            raise ValueError("jpeg_quality must be in [10, 100]")
        return v


def settings_to_dict(settings: OverlaySettings) -> dict[str, Any]:
    return cast(dict[str, Any], settings.model_dump())


def parse_size(size: str) -> tuple[int, int]:
    """Parse a size string like "390x844" into (width, height)."""

    if "x" not in size.lower():
        raise ValueError("size must be formatted as <width>x<height>, e.g., 390x844")
    w, h = size.lower().split("x", 1)
    w_i, h_i = int(w), int(h)
    if w_i <= 0 or h_i <= 0:
        raise ValueError("size values must be > 0")
    return w_i, h_i


def viewport_from_settings(settings: OverlaySettings) -> Viewport:
    w, h = parse_size(settings.viewport)
    return Viewport(w, h)


def convention_from_settings(settings: OverlaySettings) -> DetectorConvention:
    return DetectorConvention(
        normalized=bool(settings.normalized_points),
        rotation_in_metadata=not settings.rotate_before_detection,
    )


def _config_path() -> Path:
    """Return the YAML configuration path (defaults to config/overlay.config.yml)."""

    return Path(os.getenv("FTO_CONFIG", "config/overlay.config.yml"))


def load_settings() -> OverlaySettings:
    """Load settings from YAML and environment variables.

    YAML provides defaults; environment variables override.
    """

    data: dict[str, Any] = {}
    path = _config_path()
    if path.exists():
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    env_settings = OverlaySettings()
    env_overrides: dict[str, Any] = {
        name: getattr(env_settings, name) for name in env_settings.model_fields_set
    }

    merged = {**data, **env_overrides}
    return OverlaySettings(**merged)

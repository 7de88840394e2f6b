"""Pydantic models for the HTTP/WS API."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from facetrack.core.config.settings import parse_size
from facetrack.core.overlay.draw import OverlayGeometry
from facetrack.core.types import Viewport


class PathSchema(BaseModel):
    """One contour, already in viewport pixels."""

    name: str
    closed: bool
    points: list[tuple[float, float]]


class MarkerSchema(BaseModel):
    name: str
    center: tuple[float, float]


class FaceSchema(BaseModel):
    paths: list[PathSchema]
    markers: list[MarkerSchema]


class GeometrySchema(BaseModel):
    """Mapped overlay geometry for one draw pass.

    `drawable` is False when the frame geometry or viewport is degenerate and the
    client must not draw annotations for this pass.
    """

    drawable: bool
    viewport: tuple[float, float] | None = None
    content_rect: tuple[float, float, float, float] | None = None
    session: int = 0
    timestamp: float = 0.0
    faces: list[FaceSchema] = Field(default_factory=list)

    @classmethod
    def from_geometry(cls, geometry: OverlayGeometry | None, viewport: Viewport | None = None) -> GeometrySchema:
        if geometry is None:
            vp = (viewport.width, viewport.height) if viewport is not None else None
            return cls(drawable=False, viewport=vp)
        faces = [
            FaceSchema(
                paths=[
                    PathSchema(
                        name=path.name,
                        closed=path.closed,
                        points=[(float(x), float(y)) for x, y in path.points],
                    )
                    for path in face.paths
                ],
                markers=[MarkerSchema(name=m.name, center=m.center) for m in face.markers],
            )
            for face in geometry.faces
        ]
        return cls(
            drawable=True,
            viewport=(geometry.viewport.width, geometry.viewport.height),
            content_rect=geometry.content_rect,
            session=geometry.session,
            timestamp=geometry.timestamp,
            faces=faces,
        )


class ViewportSchema(BaseModel):
    """Resize request from the UI layout pass."""

    width: float = Field(ge=0)
    height: float = Field(ge=0)


class FacingSchema(BaseModel):
    facing: str

    @field_validator("facing")
    @classmethod
    def _validate_facing(cls, v: str) -> str:
        v2 = v.strip().lower()
        if v2 not in {"front", "back"}:
            raise ValueError("facing must be front|back")
        return v2


class StatsSchema(BaseModel):
    """High-level runtime stats payload."""

    faces: int
    detect_fps: float
    facing: str
    mirrored: bool
    session: int
    redraws: int
    error: str | None = None
    notification: str | None = None


class ConfigSchema(BaseModel):
    """Runtime configuration payload."""

    video_source: str
    video_path: str | None = None
    camera_facing: str = "front"
    front_camera_index: int = Field(default=0, ge=0)
    back_camera_index: int = Field(default=1, ge=0)
    model_name: str
    confidence: float = Field(gt=0.0, le=1.0)
    keypoint_confidence: float = Field(default=0.5, gt=0.0, le=1.0)
    rotation_degrees: int = 0
    rotate_before_detection: bool = True
    normalized_points: bool = False
    mirror_convention: str = "flip"
    scale_mode: str = "fill"
    viewport: str = "390x844"
    detection_workers: int = Field(default=2, ge=1)
    target_fps: float = Field(default=15.0, ge=0)
    jpeg_quality: int = Field(default=70, ge=10, le=100)
    draw_face_points: bool = False

    @field_validator("video_source")
    @classmethod
    def _validate_source(cls, v: str) -> str:
        if v not in {"webcam", "file"}:
            raise ValueError("video_source must be webcam|file")
        return v

    @field_validator("rotation_degrees")
    @classmethod
    def _validate_rotation(cls, v: int) -> int:
        if v % 360 not in {0, 90, 180, 270}:
            raise ValueError("rotation_degrees must be 0|90|180|270")
        return v % 360

    @field_validator("mirror_convention")
    @classmethod
    def _validate_mirror(cls, v: str) -> str:
        if v not in {"flip", "upstream"}:
            raise ValueError("mirror_convention must be flip|upstream")
        return v

    @field_validator("scale_mode")
    @classmethod
    def _validate_scale_mode(cls, v: str) -> str:
        if v not in {"fill", "fit"}:
            raise ValueError("scale_mode must be fill|fit")
        return v

    @field_validator("camera_facing")
    @classmethod
    def _validate_facing(cls, v: str) -> str:
        v2 = v.strip().lower()
        if v2 not in {"front", "back"}:
            raise ValueError("camera_facing must be front|back")
        return v2

    @field_validator("viewport")
    @classmethod
    def _validate_viewport(cls, v: str) -> str:
        parse_size(v)
        return v

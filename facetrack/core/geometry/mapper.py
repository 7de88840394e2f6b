"""Detector space -> screen space coordinate mapping.

A point reported by the detector goes through, in order:

1. logical (upright) pixel space: normalized coordinates are scaled by the frame
   dimensions, and raw-buffer coordinates are rotated upright when the detector
   signals rotation through metadata instead of baking it into the points;
2. content space: uniform scale from `fit_viewport`;
3. optional horizontal mirror inside the content bounds;
4. viewport space: centering offsets.

`CoordinateMapper` holds no mutable state and is safe to share between threads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from facetrack.core.errors import DegenerateGeometry
from facetrack.core.geometry.fit import ScaleMode, ViewportFit, fit_viewport
from facetrack.core.types import FrameGeometry, Point, Rect, Viewport

EMPTY_POINT: Point = (0.0, 0.0)
EMPTY_RECT: Rect = (0.0, 0.0, 0.0, 0.0)


class MirrorConvention(str, Enum):
    """What `DetectionResult.is_mirrored` means for a capture session.

    FLIP: the detector saw unmirrored pixels while the preview shows a mirror
    image, so mapped x is reflected inside the content area.
    UPSTREAM: the buffer handed to the detector was already mirrored the same way
    as the preview, so the flag is informational and nothing is reflected.
    """

    FLIP = "flip"
    UPSTREAM = "upstream"


@dataclass(frozen=True)
class DetectorConvention:
    """How a detector expresses point coordinates.

    Attributes:
        normalized: Points are in [0, 1] relative to the frame size instead of pixels.
        rotation_in_metadata: Points are in raw buffer axes and
            `FrameGeometry.rotation_degrees` still has to be applied. When False the
            points (and the geometry's width/height) are already upright.
    """

    normalized: bool = False
    rotation_in_metadata: bool = False


@dataclass(frozen=True)
class CoordinateMapper:
    geometry: FrameGeometry
    viewport: Viewport
    is_mirrored: bool = False
    convention: DetectorConvention = field(default_factory=DetectorConvention)
    mirror: MirrorConvention = MirrorConvention.FLIP
    scale_mode: ScaleMode = ScaleMode.FILL

    @property
    def logical_size(self) -> tuple[float, float]:
        """Upright source dimensions the viewport fit is computed against."""

        g = self.geometry
        if self.convention.rotation_in_metadata and g.is_sideways:
            return float(g.height), float(g.width)
        return float(g.width), float(g.height)

    @property
    def fit(self) -> ViewportFit | None:
        if self.geometry.is_empty or self.viewport.is_empty:
            return None
        src_w, src_h = self.logical_size
        return fit_viewport(src_w, src_h, self.viewport.width, self.viewport.height, self.scale_mode)

    @property
    def drawable(self) -> bool:
        return self.fit is not None

    @property
    def flips_x(self) -> bool:
        return bool(self.is_mirrored) and MirrorConvention(self.mirror) is MirrorConvention.FLIP

    def require_fit(self) -> ViewportFit:
        """Return the viewport fit or raise `DegenerateGeometry`."""

        fit = self.fit
        if fit is None:
            raise DegenerateGeometry(
                f"cannot map {self.geometry.width}x{self.geometry.height} "
                f"into viewport {self.viewport.width}x{self.viewport.height}"
            )
        return fit

    def content_rect(self) -> Rect:
        """Viewport-space rectangle covered by the scaled camera image."""

        fit = self.fit
        if fit is None:
            return EMPTY_RECT
        return (fit.offset_x, fit.offset_y, fit.content_width, fit.content_height)

    def _to_logical(self, x, y):
        g = self.geometry
        w, h = float(g.width), float(g.height)
        if self.convention.normalized:
            x = x * w
            y = y * h
        if not self.convention.rotation_in_metadata:
            return x, y
        rotation = g.rotation_degrees
        if rotation == 90:
            return h - y, x
        if rotation == 180:
            return w - x, h - y
        if rotation == 270:
            return y, w - x
        return x, y

    def map_points(self, points: np.ndarray) -> np.ndarray:
        """Map an (N, 2) array of detector-space points to viewport space.

        Returns an array of the same shape; all zeros when the geometry or the
        viewport has no area.
        """

        pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        fit = self.fit
        if fit is None:
            return np.zeros_like(pts)
        x, y = self._to_logical(pts[:, 0], pts[:, 1])
        x = x * fit.scale
        y = y * fit.scale
        if self.flips_x:
            x = fit.content_width - x
        return np.column_stack((x + fit.offset_x, y + fit.offset_y))

    def map_point(self, x: float, y: float) -> Point:
        fit = self.fit
        if fit is None:
            return EMPTY_POINT
        lx, ly = self._to_logical(float(x), float(y))
        cx = lx * fit.scale
        cy = ly * fit.scale
        if self.flips_x:
            cx = fit.content_width - cx
        return (cx + fit.offset_x, cy + fit.offset_y)

    def map_rect(self, rect: Rect) -> Rect:
        """Map an (x, y, width, height) rectangle.

        The origin is transformed like a point and the size is rescaled on its own,
        picking whichever corner becomes the new top-left after rotation or mirroring.
        """

        fit = self.fit
        if fit is None:
            return EMPTY_RECT
        x, y, rw, rh = (float(v) for v in rect)
        g = self.geometry
        if self.convention.normalized:
            x, rw = x * g.width, rw * g.width
            y, rh = y * g.height, rh * g.height
        if self.convention.rotation_in_metadata:
            w, h = float(g.width), float(g.height)
            rotation = g.rotation_degrees
            if rotation == 90:
                x, y, rw, rh = h - (y + rh), x, rh, rw
            elif rotation == 180:
                x, y = w - (x + rw), h - (y + rh)
            elif rotation == 270:
                x, y, rw, rh = y, w - (x + rw), rh, rw
        cx, cy = x * fit.scale, y * fit.scale
        cw, ch = rw * fit.scale, rh * fit.scale
        if self.flips_x:
            cx = fit.content_width - cx - cw
        return (cx + fit.offset_x, cy + fit.offset_y, cw, ch)

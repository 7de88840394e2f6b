"""Overlay rendering (OpenCV).

`build_overlay_geometry` is the draw-time query: it reads one `OverlaySnapshot`,
maps every face through a `CoordinateMapper` and returns viewport-space geometry
ready to stroke or fill. The drawing helpers below only consume that geometry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import cv2
import numpy as np

from facetrack.core.errors import DegenerateGeometry
from facetrack.core.geometry.fit import ScaleMode, fit_viewport
from facetrack.core.geometry.mapper import CoordinateMapper, DetectorConvention, MirrorConvention
from facetrack.core.landmarks import CONTOUR_NAMES, MARKER_LANDMARKS
from facetrack.core.overlay.state import OverlaySnapshot
from facetrack.core.types import DetectionResult, Face, Point, Rect, Viewport

logger = logging.getLogger(__name__)

CONTOUR_COLOR = (0, 255, 0)  # green
MARKER_COLOR = (255, 0, 0)  # blue
POINT_COLOR = (0, 0, 255)  # red

_DRAW_RANK = {name: i for i, name in enumerate(CONTOUR_NAMES)}

_ROTATE_CODES = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


@dataclass(frozen=True)
class OverlayStyle:
    contour_color: tuple[int, int, int] = CONTOUR_COLOR
    marker_color: tuple[int, int, int] = MARKER_COLOR
    point_color: tuple[int, int, int] = POINT_COLOR
    line_width: int = 2
    marker_radius: int = 3
    draw_points: bool = False


@dataclass(frozen=True, eq=False)
class MappedPath:
    name: str
    points: np.ndarray  # (N, 2) viewport coordinates
    closed: bool


@dataclass(frozen=True)
class MappedMarker:
    name: str
    center: Point


@dataclass(frozen=True, eq=False)
class MappedFace:
    paths: tuple[MappedPath, ...]
    markers: tuple[MappedMarker, ...]
    points: np.ndarray


@dataclass(frozen=True, eq=False)
class OverlayGeometry:
    viewport: Viewport
    content_rect: Rect
    faces: tuple[MappedFace, ...] = field(default_factory=tuple)
    session: int = 0
    timestamp: float = 0.0


def make_mapper(
    result: DetectionResult,
    viewport: Viewport,
    *,
    convention: DetectorConvention | None = None,
    mirror: MirrorConvention = MirrorConvention.FLIP,
    scale_mode: ScaleMode = ScaleMode.FILL,
) -> CoordinateMapper:
    """Build the mapper for one result using the geometry that produced it."""

    return CoordinateMapper(
        geometry=result.geometry,
        viewport=viewport,
        is_mirrored=result.is_mirrored,
        convention=convention or DetectorConvention(),
        mirror=mirror,
        scale_mode=scale_mode,
    )


def map_face(face: Face, mapper: CoordinateMapper) -> MappedFace:
    mapped = mapper.map_points(face.points)
    n = len(mapped)
    paths = []
    ordered = sorted(face.contours.items(), key=lambda item: _DRAW_RANK.get(item[0], len(_DRAW_RANK)))
    for name, contour in ordered:
        idx = [i for i in contour.indices if 0 <= i < n]
        if len(idx) < 2:
            continue
        paths.append(MappedPath(name=name, points=mapped[idx], closed=contour.closed))
    markers = []
    for name in MARKER_LANDMARKS:
        i = face.landmarks.get(name)
        if i is None or not 0 <= i < n:
            continue
        markers.append(MappedMarker(name=name, center=(float(mapped[i, 0]), float(mapped[i, 1]))))
    return MappedFace(paths=tuple(paths), markers=tuple(markers), points=mapped)


def build_overlay_geometry(
    snapshot: OverlaySnapshot,
    *,
    convention: DetectorConvention | None = None,
    mirror: MirrorConvention = MirrorConvention.FLIP,
    scale_mode: ScaleMode = ScaleMode.FILL,
) -> OverlayGeometry | None:
    """Map the snapshot's faces into viewport space.

    Returns an `OverlayGeometry` with no faces when there is nothing to show (the
    draw pass then clears prior annotations), or None when the frame geometry or
    the viewport is degenerate and the draw must be skipped.
    """

    viewport = snapshot.viewport
    if viewport is None or viewport.is_empty:
        logger.debug("Skipping overlay draw: no usable viewport (%s)", viewport)
        return None
    result = snapshot.result
    if result is None:
        return OverlayGeometry(viewport=viewport, content_rect=(0.0, 0.0, 0.0, 0.0), session=snapshot.session)

    mapper = make_mapper(result, viewport, convention=convention, mirror=mirror, scale_mode=scale_mode)
    try:
        mapper.require_fit()
    except DegenerateGeometry as exc:
        logger.debug("Skipping overlay draw: %s", exc)
        return None
    faces = tuple(map_face(face, mapper) for face in result.faces)
    return OverlayGeometry(
        viewport=viewport,
        content_rect=mapper.content_rect(),
        faces=faces,
        session=snapshot.session,
        timestamp=result.timestamp,
    )


def draw_overlays(
    canvas: np.ndarray,
    geometry: OverlayGeometry | None,
    style: OverlayStyle | None = None,
) -> np.ndarray:
    """Return a copy of `canvas` with contours and markers drawn."""

    if geometry is None or not geometry.faces:
        return canvas

    style = style or OverlayStyle()
    img = canvas.copy()
    for face in geometry.faces:
        for path in face.paths:
            pts = np.round(path.points).astype(np.int32).reshape(-1, 1, 2)
            cv2.polylines(img, [pts], path.closed, style.contour_color, style.line_width, cv2.LINE_AA)
        if style.draw_points:
            for x, y in face.points:
                cv2.circle(img, (int(round(x)), int(round(y))), 1, style.point_color, -1)
        for marker in face.markers:
            cx, cy = marker.center
            cv2.circle(img, (int(round(cx)), int(round(cy))), style.marker_radius, style.marker_color, -1)
    return img


def render_overlay_layer(geometry: OverlayGeometry | None, style: OverlayStyle | None = None) -> np.ndarray | None:
    """Draw the geometry on a fresh transparent BGRA layer of viewport size.

    Every pass starts from an empty layer, so a result without faces leaves no
    stale annotations behind. Returns None when the draw is skipped.
    """

    if geometry is None:
        return None
    w = max(1, int(round(geometry.viewport.width)))
    h = max(1, int(round(geometry.viewport.height)))
    layer = np.zeros((h, w, 4), dtype=np.uint8)
    if not geometry.faces:
        return layer
    style = style or OverlayStyle()
    opaque = OverlayStyle(
        contour_color=(*style.contour_color, 255),
        marker_color=(*style.marker_color, 255),
        point_color=(*style.point_color, 255),
        line_width=style.line_width,
        marker_radius=style.marker_radius,
        draw_points=style.draw_points,
    )
    return draw_overlays(layer, geometry, opaque)


def compose_preview(
    frame: np.ndarray,
    viewport: Viewport,
    *,
    rotation_degrees: int = 0,
    mirrored: bool = False,
    scale_mode: ScaleMode = ScaleMode.FILL,
) -> np.ndarray | None:
    """Place a raw camera frame into the viewport the way the preview does.

    The frame is rotated upright, mirrored for display when requested, scaled
    uniformly and centered (cropping overflow in fill mode, letterboxing in fit
    mode). Returns None when the frame or viewport has no area.
    """

    code = _ROTATE_CODES.get(int(rotation_degrees) % 360)
    upright = cv2.rotate(frame, code) if code is not None else frame
    if mirrored:
        upright = cv2.flip(upright, 1)
    src_h, src_w = upright.shape[:2]
    fit = fit_viewport(src_w, src_h, viewport.width, viewport.height, scale_mode)
    if fit is None:
        return None

    out_w, out_h = int(round(viewport.width)), int(round(viewport.height))
    content_w = max(1, int(round(fit.content_width)))
    content_h = max(1, int(round(fit.content_height)))
    scaled = cv2.resize(upright, (content_w, content_h), interpolation=cv2.INTER_LINEAR)

    out = np.zeros((out_h, out_w) + upright.shape[2:], dtype=upright.dtype)
    ox, oy = int(round(fit.offset_x)), int(round(fit.offset_y))
    # Intersect the placed content with the viewport.
    dx0, dy0 = max(ox, 0), max(oy, 0)
    dx1, dy1 = min(ox + content_w, out_w), min(oy + content_h, out_h)
    if dx1 <= dx0 or dy1 <= dy0:
        return out
    out[dy0:dy1, dx0:dx1] = scaled[dy0 - oy : dy1 - oy, dx0 - ox : dx1 - ox]
    return out

"""Shared type definitions used across the overlay core.

This module intentionally centralizes small, stable value types (frame geometry,
viewport, faces, detection results) so detector/mapper/renderer code can stay
strongly typed and free of shared mutable state.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

import numpy as np

Frame = np.ndarray

Point = tuple[float, float]
Rect = tuple[float, float, float, float]  # x, y, width, height

VALID_ROTATIONS = (0, 90, 180, 270)


@dataclass(frozen=True)
class FrameGeometry:
    """Dimensions and rotation of the buffer a detection was produced from."""

    width: float
    height: float
    rotation_degrees: int = 0

    def __post_init__(self) -> None:
        rotation = int(self.rotation_degrees) % 360
        if rotation not in VALID_ROTATIONS:
            raise ValueError("rotation_degrees must be one of 0, 90, 180, 270")
        object.__setattr__(self, "rotation_degrees", rotation)

    @property
    def is_empty(self) -> bool:
        return not (self.width > 0 and self.height > 0)

    @property
    def is_sideways(self) -> bool:
        return self.rotation_degrees in (90, 270)


@dataclass(frozen=True)
class Viewport:
    """Current render target size in pixels."""

    width: float
    height: float

    @property
    def is_empty(self) -> bool:
        return not (self.width > 0 and self.height > 0)


@dataclass(frozen=True)
class Contour:
    """A named polyline expressed as indices into `Face.points`."""

    indices: tuple[int, ...]
    closed: bool = False


@dataclass(frozen=True, eq=False)
class Face:
    """One detected face in detector space.

    `points` has shape (N, 2). Contours and landmarks refer to rows of `points`
    by index, so a face can be mapped to screen space with one vectorized call.
    """

    points: np.ndarray
    contours: Mapping[str, Contour] = field(default_factory=dict)
    landmarks: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        pts = np.array(self.points, dtype=np.float64).reshape(-1, 2)
        pts.setflags(write=False)
        object.__setattr__(self, "points", pts)

    @classmethod
    def from_polylines(
        cls,
        polylines: Mapping[str, Sequence[Point]],
        *,
        closed: frozenset[str] | set[str] = frozenset(),
        landmarks: Mapping[str, Point] | None = None,
    ) -> Face:
        """Build a face from inline point lists (detectors that emit contours directly)."""

        points: list[Point] = []
        contours: dict[str, Contour] = {}
        for name, pts in polylines.items():
            start = len(points)
            points.extend((float(x), float(y)) for x, y in pts)
            contours[name] = Contour(tuple(range(start, len(points))), closed=name in closed)
        marks: dict[str, int] = {}
        for name, (x, y) in (landmarks or {}).items():
            marks[name] = len(points)
            points.append((float(x), float(y)))
        return cls(points=np.asarray(points, dtype=np.float64), contours=contours, landmarks=marks)


@dataclass(frozen=True)
class DetectionResult:
    """Detector output for exactly one input buffer."""

    faces: tuple[Face, ...]
    geometry: FrameGeometry
    is_mirrored: bool = False
    timestamp: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "faces", tuple(self.faces))


@dataclass(frozen=True, order=True)
class FrameTicket:
    """Identifies one detection submission within a capture session."""

    session: int
    seq: int

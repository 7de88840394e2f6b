"""Detector capability and frame preparation.

The overlay core only ever talks to a `FaceDetector`; concrete engines live in
sibling modules and are injected by the runtime.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import cv2
import numpy as np

from facetrack.core.geometry.mapper import DetectorConvention
from facetrack.core.types import DetectionResult, Frame, FrameGeometry

_ROTATE_CODES = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


class FaceDetector(Protocol):
    """Minimal detector interface expected by the overlay engine."""

    convention: DetectorConvention

    def detect(self, frame: Frame, geometry: FrameGeometry, *, is_mirrored: bool = False) -> DetectionResult:
        """Return the faces found in `frame`, tagged with `geometry`.

        Implementations raise `DetectorFailure` when the underlying engine fails.
        """


@dataclass(frozen=True)
class PreparedFrame:
    """A buffer ready for the detector plus the geometry to tag results with."""

    image: np.ndarray
    geometry: FrameGeometry


def prepare_frame(
    frame: Frame,
    rotation_degrees: int = 0,
    *,
    rotate: bool = True,
    mirror: bool = False,
) -> PreparedFrame:
    """Turn a raw camera buffer into detector input.

    Args:
        frame: Raw buffer (H, W[, C]) as delivered by the capture source.
        rotation_degrees: Clockwise rotation that makes the buffer upright.
        rotate: Rotate pixels before detection. The resulting geometry has the
            upright dimensions and the rotation is recorded as already baked into
            the points. Otherwise the raw buffer is kept and the rotation travels
            as metadata.
        mirror: Mirror the image horizontally *as displayed* before detection.
    """

    rotation = int(rotation_degrees) % 360
    h, w = frame.shape[:2]
    if rotate:
        code = _ROTATE_CODES.get(rotation)
        image = cv2.rotate(frame, code) if code is not None else frame
        if mirror:
            image = cv2.flip(image, 1)
        out_h, out_w = image.shape[:2]
        return PreparedFrame(image=image, geometry=FrameGeometry(out_w, out_h, rotation))

    image = frame
    if mirror:
        # A horizontal flip of the upright image is a vertical flip of a sideways buffer.
        image = cv2.flip(frame, 0 if rotation in (90, 270) else 1)
    return PreparedFrame(image=image, geometry=FrameGeometry(w, h, rotation))

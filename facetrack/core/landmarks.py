"""Contour names, contour kinds and keypoint topologies."""

from __future__ import annotations

import numpy as np

from facetrack.core.types import Contour, Face

# Known contour names in drawing order. Unknown names are drawn after these.
CONTOUR_NAMES = (
    "face",
    "brow_line",
    "left_eyebrow_top",
    "left_eyebrow_bottom",
    "right_eyebrow_top",
    "right_eyebrow_bottom",
    "left_eye",
    "right_eye",
    "nose_bridge",
    "nose_bottom",
    "upper_lip_top",
    "upper_lip_bottom",
    "lower_lip_top",
    "lower_lip_bottom",
    "left_cheek",
    "right_cheek",
)

CLOSED_CONTOURS = frozenset(
    {
        "face",
        "left_eye",
        "right_eye",
        "upper_lip_top",
        "upper_lip_bottom",
        "lower_lip_top",
        "lower_lip_bottom",
    }
)

# Landmarks drawn as filled markers instead of polylines.
MARKER_LANDMARKS = ("nose_base",)

# COCO pose keypoint indices for the head.
COCO_NOSE = 0
COCO_LEFT_EYE = 1
COCO_RIGHT_EYE = 2
COCO_LEFT_EAR = 3
COCO_RIGHT_EAR = 4
COCO_FACE_KEYPOINTS = (COCO_NOSE, COCO_LEFT_EYE, COCO_RIGHT_EYE, COCO_LEFT_EAR, COCO_RIGHT_EAR)


def face_from_coco_keypoints(keypoints: np.ndarray, min_confidence: float = 0.5) -> Face | None:
    """Build a `Face` from COCO pose keypoints (K, 2) or (K, 3).

    Keypoints below `min_confidence` are left out of every contour; returns None
    when neither eye is visible.
    """

    kp = np.asarray(keypoints, dtype=np.float64)
    if kp.ndim != 2 or kp.shape[0] < len(COCO_FACE_KEYPOINTS) or kp.shape[1] < 2:
        return None
    head = kp[: len(COCO_FACE_KEYPOINTS)]
    if head.shape[1] >= 3:
        visible = head[:, 2] >= min_confidence
    else:
        visible = np.ones(len(head), dtype=bool)
    if not (visible[COCO_LEFT_EYE] or visible[COCO_RIGHT_EYE]):
        return None

    def _chain(*indices: int) -> tuple[int, ...]:
        return tuple(i for i in indices if visible[i])

    contours: dict[str, Contour] = {}
    brow = _chain(COCO_LEFT_EAR, COCO_LEFT_EYE, COCO_RIGHT_EYE, COCO_RIGHT_EAR)
    if len(brow) >= 2:
        contours["brow_line"] = Contour(brow, closed=False)
    bridge = _chain(COCO_LEFT_EYE, COCO_NOSE, COCO_RIGHT_EYE)
    if len(bridge) >= 2:
        contours["nose_bridge"] = Contour(bridge, closed=False)
    landmarks = {"nose_base": COCO_NOSE} if visible[COCO_NOSE] else {}
    return Face(points=head[:, :2], contours=contours, landmarks=landmarks)

"""Ultralytics YOLO pose integration.

The head keypoints of a COCO pose model (nose, eyes, ears) are turned into a
`Face` with an open brow line, an open nose bridge and a `nose_base` marker.
Torch stays an optional runtime dependency: ONNX exports run without it.
"""

from __future__ import annotations

import importlib
import logging
import os
import time
from contextlib import nullcontext
from typing import Any

import numpy as np
from ultralytics import YOLO

from facetrack.core.errors import DetectorFailure
from facetrack.core.geometry.mapper import DetectorConvention
from facetrack.core.landmarks import face_from_coco_keypoints
from facetrack.core.types import DetectionResult, Face, FrameGeometry

logger = logging.getLogger(__name__)

YOLO_POSE_DEFAULT_MODEL = "yolo11n-pose.pt"


def _to_numpy(value: Any) -> np.ndarray | None:
    if value is None:
        return None
    if hasattr(value, "cpu"):
        value = value.cpu()
    return value.numpy() if hasattr(value, "numpy") else np.asarray(value)


class YoloFaceDetector:
    """Face keypoint detector wrapper around an Ultralytics pose model.

    Points are reported in the coordinate space of the image passed to `detect`,
    in pixels or normalized to [0, 1] depending on `normalized`. Whether that
    image was rotated upright beforehand is the caller's business and is recorded
    in `convention.rotation_in_metadata`.
    """

    _torch_threads_configured: bool = False

    def __init__(
        self,
        model_name: str = YOLO_POSE_DEFAULT_MODEL,
        conf: float = 0.4,
        *,
        normalized: bool = False,
        rotation_in_metadata: bool = False,
        keypoint_conf: float = 0.5,
    ):
        """Create a detector.

        Args:
            model_name: Pose model path/name understood by Ultralytics (e.g.
                `yolo11n-pose.pt` or an `.onnx` export).
            conf: Person confidence threshold applied inside the predictor.
            normalized: Emit [0, 1] points instead of pixels.
            rotation_in_metadata: Frames are handed over unrotated and the
                rotation only travels in `FrameGeometry`.
            keypoint_conf: Minimum keypoint confidence for a point to be drawn.
        """

        self._configure_torch_threads_from_env()

        self.model_name = model_name
        self.is_onnx = model_name.lower().endswith(".onnx")
        self.device: str = "cpu"
        self.convention = DetectorConvention(normalized=normalized, rotation_in_metadata=rotation_in_metadata)
        self.keypoint_conf = float(keypoint_conf)
        self._torch_inference_mode: Any | None = None
        if not self.is_onnx:
            try:
                torch = importlib.import_module("torch")
                self._torch_inference_mode = torch.inference_mode
            except Exception:
                self._torch_inference_mode = None
        try:
            self.model = YOLO(model_name, task="pose")
        except Exception as exc:
            raise DetectorFailure(f"Failed to load pose model {model_name}: {exc}") from exc

        if not self.is_onnx:
            try:
                self.model.to(self.device)
            except Exception:
                # predict(device='cpu') still enforces CPU.
                pass
        self.conf = conf
        self._predict_kwargs = {
            "conf": self.conf,
            "verbose": False,
            "classes": [0],
            "device": self.device,
        }

        if not self.is_onnx:
            try:
                self.model.fuse()
            except Exception:
                pass

    @classmethod
    def _configure_torch_threads_from_env(cls) -> None:
        """Configure torch thread counts from environment variables (one-time)."""

        if cls._torch_threads_configured:
            return
        cls._torch_threads_configured = True
        threads_s = os.getenv("FTO_TORCH_THREADS")
        if threads_s is None or not threads_s.strip():
            return
        try:
            torch = importlib.import_module("torch")
            torch.set_num_threads(max(1, int(threads_s)))
        except Exception:
            logger.warning("Ignoring FTO_TORCH_THREADS=%r", threads_s)

    def detect(self, frame: np.ndarray, geometry: FrameGeometry, *, is_mirrored: bool = False) -> DetectionResult:
        """Run inference on one frame and return its faces.

        Raises:
            DetectorFailure: The Ultralytics predictor raised.
        """

        infer_ctx = self._torch_inference_mode() if self._torch_inference_mode is not None else nullcontext()
        try:
            with infer_ctx:
                results = self.model.predict(frame, **self._predict_kwargs)
        except Exception as exc:
            raise DetectorFailure(f"Pose inference failed: {exc}") from exc

        faces = self._faces_from_results(results)
        return DetectionResult(faces=tuple(faces), geometry=geometry, is_mirrored=is_mirrored, timestamp=time.time())

    def _faces_from_results(self, results: Any) -> list[Face]:
        if not results:
            return []
        # Single-frame inference => first result.
        kpts = getattr(results[0], "keypoints", None)
        if kpts is None:
            return []
        data = _to_numpy(getattr(kpts, "data", None))
        if data is None or data.ndim != 3 or data.shape[0] == 0:
            return []
        if self.convention.normalized:
            xyn = _to_numpy(getattr(kpts, "xyn", None))
            if xyn is None or xyn.shape[:2] != data.shape[:2]:
                return []
            data = np.concatenate([xyn[..., :2], data[..., 2:3]], axis=-1) if data.shape[-1] >= 3 else xyn

        faces: list[Face] = []
        for person in data:
            face = face_from_coco_keypoints(person, min_confidence=self.keypoint_conf)
            if face is not None:
                faces.append(face)
        return faces

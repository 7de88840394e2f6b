"""Annotate a video file offline.

Runs the detector on every frame, maps the faces into a viewport exactly like the
live engine does, and writes the annotated viewport video and/or a JSON dump of
the mapped geometry.

    python -m facetrack.tools.run_on_video --input clip.mp4 --viewport 390x844 \
        --output-video out.mp4 --output-json out.json
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

import cv2

from facetrack.api.schemas.models import GeometrySchema
from facetrack.core.config.settings import parse_size
from facetrack.core.detectors.base import prepare_frame
from facetrack.core.geometry.fit import ScaleMode
from facetrack.core.geometry.mapper import DetectorConvention, MirrorConvention
from facetrack.core.overlay.draw import OverlayStyle, build_overlay_geometry, compose_preview, draw_overlays
from facetrack.core.overlay.state import OverlayState
from facetrack.core.types import DetectionResult, FrameGeometry, Viewport

logger = logging.getLogger(__name__)


class _DummyDetector:
    def __init__(self, convention: DetectorConvention) -> None:
        self.convention = convention

    def detect(self, frame, geometry: FrameGeometry, *, is_mirrored: bool = False):
        return DetectionResult(faces=(), geometry=geometry, is_mirrored=is_mirrored)


def run(args) -> int:
    cap = cv2.VideoCapture(args.input)
    if not cap.isOpened():
        raise SystemExit(f"Cannot open video {args.input}")

    width, height = parse_size(args.viewport)
    viewport = Viewport(width, height)
    convention = DetectorConvention(normalized=args.normalized, rotation_in_metadata=args.metadata_rotation)
    mirror = MirrorConvention(args.mirror_convention)
    scale_mode = ScaleMode(args.scale_mode)
    if args.mock:
        detector = _DummyDetector(convention)
    else:
        from facetrack.core.detectors.yolo import YoloFaceDetector

        detector = YoloFaceDetector(
            args.model,
            conf=args.conf,
            normalized=args.normalized,
            rotation_in_metadata=args.metadata_rotation,
        )

    state = OverlayState(viewport=viewport)
    style = OverlayStyle()
    writer = None
    if args.output_video:
        out_path = Path(args.output_video)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        fps = float(cap.get(cv2.CAP_PROP_FPS) or 0.0) or 30.0
        writer = cv2.VideoWriter(str(out_path), cv2.VideoWriter_fourcc(*"mp4v"), fps, (width, height))

    outputs = []
    try:
        while True:
            ok, frame = cap.read()
            if not ok:
                break
            ticket = state.submit()
            prepared = prepare_frame(
                frame,
                args.rotation,
                rotate=not args.metadata_rotation,
                mirror=args.mirrored and mirror is MirrorConvention.UPSTREAM,
            )
            state.publish(detector.detect(prepared.image, prepared.geometry, is_mirrored=args.mirrored), ticket)
            geometry = build_overlay_geometry(
                state.snapshot(), convention=convention, mirror=mirror, scale_mode=scale_mode
            )
            outputs.append(GeometrySchema.from_geometry(geometry, viewport).model_dump())
            if writer is not None:
                preview = compose_preview(
                    frame,
                    viewport,
                    rotation_degrees=args.rotation,
                    mirrored=args.mirrored,
                    scale_mode=scale_mode,
                )
                if preview is not None:
                    writer.write(draw_overlays(preview, geometry, style))
            if args.max_frames and len(outputs) >= args.max_frames:
                break
    finally:
        cap.release()
        if writer is not None:
            writer.release()

    if args.output_json:
        json_path = Path(args.output_json)
        json_path.parent.mkdir(parents=True, exist_ok=True)
        with open(json_path, "w", encoding="utf-8") as f:
            json.dump(outputs, f, indent=2)
    logger.info("Processed %d frames from %s", len(outputs), args.input)
    print(f"Processed {len(outputs)} frames")
    return len(outputs)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Draw face overlays on a video file.")
    p.add_argument("--input", required=True)
    p.add_argument("--output-video", default=None)
    p.add_argument("--output-json", default=None)
    p.add_argument("--viewport", default="390x844", help="WxH of the target viewport")
    p.add_argument("--rotation", type=int, default=0, choices=(0, 90, 180, 270))
    p.add_argument("--mirrored", action="store_true", help="display the feed as a mirror image")
    p.add_argument("--metadata-rotation", action="store_true", help="detect on the raw buffer")
    p.add_argument("--normalized", action="store_true", help="detector emits [0, 1] points")
    p.add_argument("--mirror-convention", default="flip", choices=("flip", "upstream"))
    p.add_argument("--scale-mode", default="fill", choices=("fill", "fit"))
    p.add_argument("--model", default="yolo11n-pose.pt")
    p.add_argument("--conf", type=float, default=0.4)
    p.add_argument("--max-frames", type=int, default=0)
    p.add_argument("--mock", action="store_true", help="use a detector that finds no faces")
    return p


def main(argv: list[str] | None = None) -> None:
    logging.basicConfig(level=logging.INFO)
    run(build_parser().parse_args(argv))


if __name__ == "__main__":
    main()

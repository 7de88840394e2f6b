from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import deque
from collections.abc import AsyncGenerator, Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import cv2
import numpy as np

from facetrack.core.config.settings import (
    OverlaySettings,
    convention_from_settings,
    viewport_from_settings,
)
from facetrack.core.detectors.base import FaceDetector, prepare_frame
from facetrack.core.errors import DetectorFailure, StaleResult
from facetrack.core.geometry.fit import ScaleMode
from facetrack.core.geometry.mapper import MirrorConvention
from facetrack.core.overlay.draw import (
    OverlayGeometry,
    OverlayStyle,
    build_overlay_geometry,
    compose_preview,
    draw_overlays,
    render_overlay_layer,
)
from facetrack.core.overlay.state import OverlayState
from facetrack.core.types import DetectionResult, FrameTicket, Viewport
from facetrack.core.video_sources.base import FileSource, VideoSource, WebcamSource

logger = logging.getLogger(__name__)

FACINGS = ("front", "back")


class OverlayEngine:
    """Runs the capture -> detect -> render pipeline.

    - capture thread keeps only the newest camera frame
    - dispatch thread hands frames to a small detector pool; results may complete
      out of order and are published through `OverlayState` (stale ones dropped)
    - render thread wakes on redraw requests, maps the latest result into the
      viewport and JPEG-encodes the annotated preview
    """

    def __init__(
        self,
        settings: OverlaySettings,
        *,
        detector_factory: Callable[[OverlaySettings], FaceDetector] | None = None,
        source_factory: Callable[[OverlaySettings, str], VideoSource] | None = None,
        viewport: Viewport | None = None,
        facing: str | None = None,
    ) -> None:
        """Create a stopped engine.

        `viewport` and `facing` override the configured values; a settings reload
        uses them to keep the current layout and camera.
        """

        self.settings = settings
        self.convention = convention_from_settings(settings)
        self.mirror = MirrorConvention(settings.mirror_convention)
        self.scale_mode = ScaleMode(settings.scale_mode)
        self.style = OverlayStyle(draw_points=bool(settings.draw_face_points))
        self.state = OverlayState(viewport=viewport if viewport is not None else viewport_from_settings(settings))
        self.facing = facing or settings.camera_facing
        self._detector_factory = detector_factory or _default_detector
        self._source_factory = source_factory or _default_source
        self.detector: FaceDetector | None = None
        self.source: VideoSource | None = None
        self.running = False
        self.last_error: str | None = None

        self._capture_thread: threading.Thread | None = None
        self._dispatch_thread: threading.Thread | None = None
        self._render_thread: threading.Thread | None = None
        self._executor: ThreadPoolExecutor | None = None

        self._lock = threading.Lock()
        self._source_lock = threading.Lock()
        self._capture_lock = threading.Lock()
        self._capture_event = threading.Event()
        # (frame, session, mirrored) as seen by the source that produced the frame.
        self._latest_captured: tuple[np.ndarray, int, bool] | None = None
        self._preview_frame: np.ndarray | None = None
        self._preview_seq = 0
        self._inflight = 0
        self._latest_frame: bytes | None = None
        self._latest_geometry: OverlayGeometry | None = None
        self._render_seq = 0
        self._notifications: deque[str] = deque(maxlen=16)
        self._detect_times: deque[float] = deque()
        self._detect_fps = 0.0

    @property
    def is_mirrored(self) -> bool:
        """Front-facing feeds are shown as a mirror image."""

        return self.facing == "front"

    def start(self) -> None:
        """Start background threads.

        Safe to call multiple times; subsequent calls while running are ignored.
        """

        if self.running:
            return
        try:
            self.source = self._source_factory(self.settings, self.facing)
        except Exception:
            self._report_error("Failed to initialize video source")
            logger.exception(self.last_error)
            return
        try:
            self.detector = self._detector_factory(self.settings)
        except Exception as exc:
            self._report_error(str(exc) if isinstance(exc, DetectorFailure) else "Failed to initialize detector")
            logger.exception("Detector initialization failed")
            self.source.close()
            self.source = None
            return

        self.running = True
        self.last_error = None
        self._executor = ThreadPoolExecutor(
            max_workers=int(self.settings.detection_workers), thread_name_prefix="detect"
        )
        self._capture_thread = threading.Thread(target=self._capture_loop, daemon=True)
        self._dispatch_thread = threading.Thread(target=self._dispatch_loop, daemon=True)
        self._render_thread = threading.Thread(target=self._render_loop, daemon=True)
        self._capture_thread.start()
        self._dispatch_thread.start()
        self._render_thread.start()
        logger.info("Overlay engine started (facing=%s, mirrored=%s)", self.facing, self.is_mirrored)

    def stop(self) -> None:
        """Stop background threads, drop in-flight results and close the source."""

        self.running = False
        # Teardown: nothing still in flight may publish, and the overlay clears now.
        self.state.begin_session()
        self._capture_event.set()
        self.state.signal.wake()
        for thread in (self._capture_thread, self._dispatch_thread, self._render_thread):
            if thread and thread.is_alive():
                thread.join(timeout=2)
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        with self._source_lock:
            if self.source:
                self.source.close()
                self.source = None

    def switch_camera(self, facing: str) -> int:
        """Switch camera-facing; returns the new overlay session number.

        Results still in flight for the previous camera are invalidated and the
        overlay is cleared before the new camera delivers its first frame.
        """

        facing = str(facing).strip().lower()
        if facing not in FACINGS:
            raise ValueError("facing must be front|back")
        # Held across the swap: a read still in progress on the old source
        # finishes under the old session and is discarded at dispatch.
        with self._source_lock:
            old = self.source
            self.facing = facing
            if self.running:
                try:
                    self.source = self._source_factory(self.settings, facing)
                except Exception:
                    self.source = None
                    self._report_error(f"Failed to open {facing} camera")
                    logger.exception(self.last_error)
            session = self.state.begin_session()
            with self._capture_lock:
                self._latest_captured = None
                self._preview_frame = None
            if old is not None:
                old.close()
        logger.info("Switched to %s camera (mirrored=%s)", facing, self.is_mirrored)
        return session

    def resize(self, width: float, height: float) -> Viewport:
        viewport = Viewport(float(width), float(height))
        self.state.resize(viewport)
        return viewport

    def _capture_loop(self) -> None:
        """Continuously read frames from the configured source."""

        logger.debug("Capture loop started")
        while self.running:
            with self._source_lock:
                source = self.source
                frame = source.read() if source is not None else None
                session = self.state.session
                mirrored = self.is_mirrored
            if frame is None:
                time.sleep(0.01)
                continue
            with self._capture_lock:
                if session != self.state.session:
                    continue
                self._latest_captured = (frame, session, mirrored)
                self._preview_frame = frame
                self._preview_seq += 1
            self._capture_event.set()

    def _dispatch_loop(self) -> None:
        """Hand the newest frame to the detector pool whenever a worker is free."""

        logger.debug("Dispatch loop started")
        interval = 1.0 / self.settings.target_fps if self.settings.target_fps > 0 else 0.0
        last_submit = 0.0
        while self.running:
            if not self._capture_event.wait(timeout=0.5):
                continue
            with self._lock:
                busy = self._inflight >= int(self.settings.detection_workers)
            if busy:
                time.sleep(0.002)
                continue
            with self._capture_lock:
                captured = self._latest_captured
                self._latest_captured = None
                self._capture_event.clear()
            if captured is None or not self.running:
                continue
            frame, frame_session, mirrored = captured
            ticket = self.state.submit()
            if ticket.session != frame_session:
                # Frame from a camera that was switched away while it waited.
                continue
            executor = self._executor
            if executor is None:
                continue
            with self._lock:
                self._inflight += 1
            try:
                executor.submit(self._detect_job, frame, ticket, mirrored)
            except RuntimeError:
                with self._lock:
                    self._inflight -= 1
                continue
            if interval > 0:
                now = time.perf_counter()
                wait = interval - (now - last_submit)
                last_submit = now
                if wait > 0:
                    time.sleep(wait)

    def _detect_job(self, frame: np.ndarray, ticket: FrameTicket, is_mirrored: bool) -> None:
        try:
            detector = self.detector
            if detector is None:
                return
            prepared = prepare_frame(
                frame,
                self.settings.rotation_degrees,
                rotate=bool(self.settings.rotate_before_detection),
                mirror=is_mirrored and self.mirror is MirrorConvention.UPSTREAM,
            )
            result = detector.detect(prepared.image, prepared.geometry, is_mirrored=is_mirrored)
        except DetectorFailure as exc:
            self._report_error(str(exc))
            return
        except Exception:
            self._report_error("Detection failed")
            logger.exception(self.last_error)
            return
        finally:
            with self._lock:
                self._inflight -= 1
        self.handle_result(result, ticket)

    def handle_result(self, result: DetectionResult, ticket: FrameTicket) -> bool:
        """Publish a detector callback; returns False when it was stale and dropped."""

        try:
            self.state.publish(result, ticket)
        except StaleResult as exc:
            logger.debug("Dropping stale detection result: %s", exc)
            return False
        now = time.perf_counter()
        with self._lock:
            self.last_error = None
            self._detect_times.append(now)
            while self._detect_times and (now - self._detect_times[0]) > 1.0:
                self._detect_times.popleft()
            if len(self._detect_times) >= 2:
                span = now - self._detect_times[0]
                if span > 0:
                    self._detect_fps = float((len(self._detect_times) - 1) / span)
        return True

    def report_failure(self, error: BaseException | str) -> None:
        """Detector error callback: notify the UI once, keep the last good overlay."""

        self._report_error(str(error))

    def _report_error(self, message: str) -> None:
        logger.warning("Overlay error: %s", message)
        with self._lock:
            self.last_error = message
            self._notifications.append(message)

    def pop_notification(self) -> str | None:
        """Return the oldest pending error notification (each is delivered once)."""

        with self._lock:
            return self._notifications.popleft() if self._notifications else None

    def current_geometry(self) -> OverlayGeometry | None:
        """Draw-time query: map the current state into viewport space."""

        return build_overlay_geometry(
            self.state.snapshot(),
            convention=self.convention,
            mirror=self.mirror,
            scale_mode=self.scale_mode,
        )

    def overlay_layer_png(self) -> bytes | None:
        """Encode the current annotations as a transparent viewport-sized PNG.

        For clients that composite the overlay over their own camera preview.
        Returns None when the draw is skipped.
        """

        layer = render_overlay_layer(self.current_geometry(), self.style)
        if layer is None:
            return None
        ok, png = cv2.imencode(".png", layer)
        return png.tobytes() if ok else None

    def render_once(self) -> OverlayGeometry | None:
        """Run one render pass: map the latest result and encode the annotated preview."""

        snapshot = self.state.snapshot()
        geometry = build_overlay_geometry(
            snapshot,
            convention=self.convention,
            mirror=self.mirror,
            scale_mode=self.scale_mode,
        )
        with self._capture_lock:
            frame = self._preview_frame
        frame_bytes: bytes | None = None
        if frame is not None and snapshot.viewport is not None:
            preview = compose_preview(
                frame,
                snapshot.viewport,
                rotation_degrees=self.settings.rotation_degrees,
                mirrored=self.is_mirrored,
                scale_mode=self.scale_mode,
            )
            if preview is not None:
                annotated = draw_overlays(preview, geometry, self.style)
                encode_param = [int(cv2.IMWRITE_JPEG_QUALITY), int(self.settings.jpeg_quality)]
                ok, jpg = cv2.imencode(".jpg", annotated, encode_param)
                if ok:
                    frame_bytes = jpg.tobytes()
        with self._lock:
            self._latest_geometry = geometry
            self._render_seq += 1
            if frame_bytes is not None:
                self._latest_frame = frame_bytes
        return geometry

    def _render_loop(self) -> None:
        logger.debug("Render loop started")
        last_preview_seq = -1
        while self.running:
            requested = self.state.signal.wait(timeout=1.0 / 30.0)
            with self._capture_lock:
                preview_seq = self._preview_seq
            if not self.running:
                break
            if not requested and preview_seq == last_preview_seq:
                continue
            last_preview_seq = preview_seq
            try:
                self.render_once()
            except Exception:
                logger.exception("Render pass failed")

    def latest_frame(self) -> bytes | None:
        """Return the latest encoded JPEG preview (or `None` if not ready)."""

        with self._lock:
            return self._latest_frame

    def latest_geometry(self) -> OverlayGeometry | None:
        """Return the geometry drawn by the most recent render pass."""

        with self._lock:
            return self._latest_geometry

    def stats(self) -> dict[str, object]:
        result = self.state.latest_result()
        with self._lock:
            return {
                "faces": len(result.faces) if result is not None else 0,
                "detect_fps": float(self._detect_fps),
                "facing": self.facing,
                "mirrored": self.is_mirrored,
                "session": self.state.session,
                "redraws": self.state.signal.requests,
                "error": self.last_error,
            }

    async def mjpeg_generator(self) -> AsyncGenerator[bytes, None]:
        """Yield MJPEG multipart chunks for HTTP streaming."""

        last_sent = None
        while True:
            frame = self.latest_frame()
            if frame is not None and frame != last_sent:
                yield (b"--frame\r\n" b"Content-Type: image/jpeg\r\n\r\n" + frame + b"\r\n")
                last_sent = frame
            await asyncio.sleep(0.02)

    async def geometry_stream(self) -> AsyncGenerator[OverlayGeometry | None, None]:
        """Yield the geometry of each new render pass for WebSocket streaming."""

        last_seq = -1
        while True:
            with self._lock:
                seq = self._render_seq
                geometry = self._latest_geometry
            if seq != last_seq:
                last_seq = seq
                yield geometry
            await asyncio.sleep(0.02)


def _default_detector(settings: OverlaySettings) -> FaceDetector:
    from facetrack.core.detectors.yolo import YoloFaceDetector

    return YoloFaceDetector(
        settings.model_name,
        settings.confidence,
        normalized=bool(settings.normalized_points),
        rotation_in_metadata=not settings.rotate_before_detection,
        keypoint_conf=settings.keypoint_confidence,
    )


def _default_source(settings: OverlaySettings, facing: str) -> VideoSource:
    if settings.video_source == "file" and settings.video_path:
        video_path = Path(settings.video_path)
        if not video_path.exists():
            raise RuntimeError(f"Video path not found: {video_path}")
        return FileSource(str(video_path))
    index = settings.front_camera_index if facing == "front" else settings.back_camera_index
    return WebcamSource(index)

"""Camera/file capture adapters.

The engine consumes frames through `VideoSource`, so the capture implementation can
be swapped without touching the overlay pipeline.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod

import cv2

from facetrack.core.types import Frame

logger = logging.getLogger(__name__)


class VideoSource(ABC):
    """Base interface for anything that can produce camera frames."""

    @abstractmethod
    def read(self) -> Frame | None:
        """Return the next frame, or `None` when unavailable."""

        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError


class OpenCVSource(VideoSource):
    """A `VideoSource` backed by `cv2.VideoCapture`."""

    def __init__(self, source: str | int) -> None:
        self.cap = cv2.VideoCapture(source)
        if not self.cap.isOpened():
            raise RuntimeError(f"Failed to open video source: {source}")

    def read(self) -> Frame | None:
        ok, frame = self.cap.read()
        if not ok:
            return None
        return frame

    def close(self) -> None:
        self.cap.release()


class WebcamSource(OpenCVSource):
    """Webcam capture that only ever hands out the newest frame.

    A reader thread keeps draining the driver buffer so a slow consumer sees the
    latest frame instead of a backlog.
    """

    def __init__(self, index: int = 0) -> None:
        super().__init__(index)
        try:
            self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        except Exception:
            pass
        logger.info("Opened camera index=%s", index)

        self._lock = threading.Lock()
        self._running = True
        self._latest_frame: Frame | None = None
        self._latest_seq = 0
        self._delivered_seq = 0
        self._reader_thread = threading.Thread(target=self._reader_loop, daemon=True)
        self._reader_thread.start()

    def _reader_loop(self) -> None:
        while self._running:
            ok, frame = self.cap.read()
            if not ok:
                time.sleep(0.01)
                continue
            with self._lock:
                self._latest_frame = frame
                self._latest_seq += 1

    def read(self) -> Frame | None:
        """Return the most recent frame, or None if nothing new arrived since the last call."""

        with self._lock:
            frame = self._latest_frame
            seq = self._latest_seq
        if frame is None or seq == self._delivered_seq:
            return None
        self._delivered_seq = seq
        return frame

    def close(self) -> None:
        self._running = False
        try:
            if self._reader_thread.is_alive():
                self._reader_thread.join(timeout=1)
        finally:
            self.cap.release()


class FileSource(OpenCVSource):
    """Video file played back in real time, looping at EOF."""

    def __init__(self, path: str) -> None:
        super().__init__(path)
        self._start_perf: float | None = None
        self._frame_index = 0
        fps = float(self.cap.get(cv2.CAP_PROP_FPS) or 0.0)
        self._source_fps = fps if fps > 0.0 else None

    def _pace(self) -> None:
        if self._source_fps is None or self._start_perf is None:
            return
        delay = self._frame_index / self._source_fps - (time.perf_counter() - self._start_perf)
        if delay > 0:
            time.sleep(delay)

    def read(self) -> Frame | None:
        if self._start_perf is None:
            self._start_perf = time.perf_counter()
            self._frame_index = 0

        ok, frame = self.cap.read()
        if not ok:
            # EOF: rewind and start the clock over.
            self.cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
            self._start_perf = time.perf_counter()
            self._frame_index = 0
            ok, frame = self.cap.read()
            if not ok:
                return None
        self._frame_index += 1
        self._pace()
        return frame

"""Latest-value cell shared by the detection producer and the render consumer.

Writers never wait for readers: each publish or resize swaps one reference under
a short mutex and raises the redraw signal. Readers take a snapshot at draw time,
so a burst of publishes collapses into whatever is current when the next draw runs.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from facetrack.core.errors import StaleResult
from facetrack.core.types import DetectionResult, FrameTicket, Viewport

logger = logging.getLogger(__name__)


class RedrawSignal:
    """Coalescing redraw request flag.

    `request()` may be called from any thread. `wait()` returns True once at least
    one request is pending and consumes all pending requests at once.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._requests = 0
        self._listeners: list[Callable[[], None]] = []

    @property
    def requests(self) -> int:
        """Total number of redraw requests since creation."""

        with self._lock:
            return self._requests

    def add_listener(self, callback: Callable[[], None]) -> None:
        with self._lock:
            self._listeners.append(callback)

    def request(self) -> None:
        with self._lock:
            self._requests += 1
            listeners = list(self._listeners)
        self._event.set()
        for callback in listeners:
            try:
                callback()
            except Exception:
                logger.exception("Redraw listener failed")

    def wait(self, timeout: float | None = None) -> bool:
        if not self._event.wait(timeout):
            return False
        self._event.clear()
        return True

    def wake(self) -> None:
        """Unblock a waiter without counting a redraw (used on shutdown)."""

        self._event.set()


@dataclass(frozen=True)
class OverlaySnapshot:
    """What a render pass sees: the current result and viewport."""

    result: DetectionResult | None
    viewport: Viewport | None
    session: int


class OverlayState:
    """Atomic-swap holder for the latest `DetectionResult` and `Viewport`.

    Each submission gets a `FrameTicket`. A result is published only if its ticket
    belongs to the current session and is newer than the ticket of the result
    already on display; otherwise `publish` raises `StaleResult`.
    """

    def __init__(self, viewport: Viewport | None = None, signal: RedrawSignal | None = None) -> None:
        self.signal = signal or RedrawSignal()
        self._lock = threading.Lock()
        self._result: DetectionResult | None = None
        self._viewport = viewport
        self._session = 0
        self._next_seq = 0
        self._published: FrameTicket | None = None

    @property
    def session(self) -> int:
        with self._lock:
            return self._session

    def submit(self) -> FrameTicket:
        """Reserve a ticket for a frame that is about to be handed to the detector."""

        with self._lock:
            self._next_seq += 1
            return FrameTicket(self._session, self._next_seq)

    def publish(self, result: DetectionResult, ticket: FrameTicket) -> None:
        """Replace the current result with `result` and request a redraw.

        Raises:
            StaleResult: `ticket` is from an ended session, or a result for a later
                submission is already published.
        """

        with self._lock:
            if ticket.session != self._session:
                raise StaleResult(f"ticket {ticket} is from ended session (current {self._session})")
            if self._published is not None and ticket <= self._published:
                raise StaleResult(f"ticket {ticket} superseded by {self._published}")
            self._result = result
            self._published = ticket
        self.signal.request()

    def resize(self, viewport: Viewport) -> None:
        with self._lock:
            self._viewport = viewport
        self.signal.request()

    def begin_session(self) -> int:
        """End the current capture session and clear the displayed result.

        Tickets issued before this call can no longer publish. Returns the new
        session number.
        """

        with self._lock:
            self._session += 1
            self._result = None
            self._published = None
            session = self._session
        logger.info("Overlay session %d started; cleared previous annotations", session)
        self.signal.request()
        return session

    def snapshot(self) -> OverlaySnapshot:
        with self._lock:
            return OverlaySnapshot(result=self._result, viewport=self._viewport, session=self._session)

    def latest_result(self) -> DetectionResult | None:
        with self._lock:
            return self._result

    def viewport(self) -> Viewport | None:
        with self._lock:
            return self._viewport

"""Error taxonomy for the overlay core.

None of these are fatal: the worst case is that annotations stop being drawn
while the camera preview keeps running.
"""

from __future__ import annotations


class OverlayError(Exception):
    """Base class for overlay pipeline errors."""


class DegenerateGeometry(OverlayError, ValueError):
    """A width or height in the pipeline is zero or negative; skip the draw."""


class StaleResult(OverlayError):
    """A detection result belongs to a superseded submission or an ended session."""


class DetectorFailure(OverlayError, RuntimeError):
    """The external detection engine reported an error."""

"""Aspect-fill / aspect-fit placement of a source rectangle inside a viewport."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum


class ScaleMode(str, Enum):
    """How the preview places the camera image inside the viewport."""

    FILL = "fill"  # cover the viewport, crop overflow, centered
    FIT = "fit"  # letterbox inside the viewport, centered


@dataclass(frozen=True)
class ViewportFit:
    """Uniform scale plus centering offsets (content space -> viewport space)."""

    scale: float
    offset_x: float
    offset_y: float
    content_width: float
    content_height: float


def _positive(*values: float) -> bool:
    return all(math.isfinite(v) and v > 0 for v in values)


def fit_viewport(
    src_w: float,
    src_h: float,
    dst_w: float,
    dst_h: float,
    mode: ScaleMode | str = ScaleMode.FILL,
) -> ViewportFit | None:
    """Compute the placement of a `src_w x src_h` image in a `dst_w x dst_h` viewport.

    In fill mode a relatively wider source is matched on height (overflow split
    evenly left/right, so `offset_x <= 0`); otherwise it is matched on width. Fit
    mode takes the opposite branch and yields non-negative offsets.

    Returns:
        The fit, or `None` when any dimension is not a positive finite number.
        Callers treat `None` as "do not draw".
    """

    if not _positive(src_w, src_h, dst_w, dst_h):
        return None

    src_wider = (src_w / src_h) > (dst_w / dst_h)
    match_height = src_wider if ScaleMode(mode) is ScaleMode.FILL else not src_wider

    if match_height:
        scale = dst_h / src_h
        content_w = src_w * scale
        return ViewportFit(
            scale=scale,
            offset_x=(dst_w - content_w) / 2.0,
            offset_y=0.0,
            content_width=content_w,
            content_height=float(dst_h),
        )

    scale = dst_w / src_w
    content_h = src_h * scale
    return ViewportFit(
        scale=scale,
        offset_x=0.0,
        offset_y=(dst_h - content_h) / 2.0,
        content_width=float(dst_w),
        content_height=content_h,
    )

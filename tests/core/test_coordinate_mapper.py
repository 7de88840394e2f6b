from __future__ import annotations

import numpy as np
import pytest

from facetrack.core.errors import DegenerateGeometry
from facetrack.core.geometry.fit import ScaleMode
from facetrack.core.geometry.mapper import (
    EMPTY_POINT,
    EMPTY_RECT,
    CoordinateMapper,
    DetectorConvention,
    MirrorConvention,
)
from facetrack.core.types import FrameGeometry, Viewport

PORTRAIT = FrameGeometry(1080, 1920, 0)
PHONE = Viewport(390, 844)
RAW_LANDSCAPE_90 = FrameGeometry(1920, 1080, 90)
METADATA = DetectorConvention(rotation_in_metadata=True)


def _mapper(**kwargs) -> CoordinateMapper:
    params = {"geometry": PORTRAIT, "viewport": PHONE}
    params.update(kwargs)
    return CoordinateMapper(**params)


@pytest.mark.parametrize("mode", [ScaleMode.FILL, ScaleMode.FIT])
def test_center_point_lands_on_viewport_center(mode):
    x, y = _mapper(scale_mode=mode).map_point(540, 960)
    assert x == pytest.approx(195)
    assert y == pytest.approx(422)


def test_fit_mode_center_matches_scaled_point_plus_offset():
    mapper = _mapper(scale_mode=ScaleMode.FIT)
    fit = mapper.require_fit()
    assert fit.scale == pytest.approx(390 / 1080)
    x, y = mapper.map_point(540, 960)
    assert y == pytest.approx(960 * fit.scale + fit.offset_y)
    assert 960 * fit.scale == pytest.approx(346.67, abs=0.01)


def test_mirroring_reflects_x_inside_content_and_keeps_y():
    plain = _mapper()
    mirrored = _mapper(is_mirrored=True)
    fit = plain.require_fit()
    ux, uy = plain.map_point(100, 200)
    mx, my = mirrored.map_point(100, 200)
    assert my == pytest.approx(uy)
    assert mx - fit.offset_x == pytest.approx(fit.content_width - (ux - fit.offset_x))


@pytest.mark.parametrize(
    "geometry,convention",
    [
        (PORTRAIT, DetectorConvention()),
        (RAW_LANDSCAPE_90, METADATA),
        (FrameGeometry(1920, 1080, 270), METADATA),
        (FrameGeometry(640, 480, 180), METADATA),
    ],
)
def test_mirroring_is_an_involution(geometry, convention):
    rng = np.random.default_rng(7)
    pts = rng.uniform(0, 1, size=(32, 2)) * [geometry.width, geometry.height]
    plain = CoordinateMapper(geometry, PHONE, False, convention)
    mirrored = CoordinateMapper(geometry, PHONE, True, convention)
    fit = plain.require_fit()
    m = mirrored.map_points(pts)
    reflected_x = fit.content_width - (m[:, 0] - fit.offset_x) + fit.offset_x
    np.testing.assert_allclose(reflected_x, plain.map_points(pts)[:, 0])
    np.testing.assert_allclose(m[:, 1], plain.map_points(pts)[:, 1])


def test_upstream_mirror_convention_does_not_reflect():
    plain = _mapper()
    upstream = _mapper(is_mirrored=True, mirror=MirrorConvention.UPSTREAM)
    assert upstream.flips_x is False
    assert upstream.map_point(100, 200) == plain.map_point(100, 200)


@pytest.mark.parametrize("mirrored", [False, True])
@pytest.mark.parametrize("mode", [ScaleMode.FILL, ScaleMode.FIT])
@pytest.mark.parametrize(
    "geometry,convention",
    [
        (PORTRAIT, DetectorConvention()),
        (RAW_LANDSCAPE_90, METADATA),
        (FrameGeometry(1920, 1080, 270), METADATA),
        (FrameGeometry(1, 1, 0), DetectorConvention(normalized=True)),
    ],
)
def test_interior_points_map_inside_content_rect(geometry, convention, mode, mirrored):
    rng = np.random.default_rng(3)
    pts = rng.uniform(0.01, 0.99, size=(64, 2)) * [geometry.width, geometry.height]
    mapper = CoordinateMapper(geometry, PHONE, mirrored, convention, scale_mode=mode)
    ox, oy, cw, ch = mapper.content_rect()
    out = mapper.map_points(pts)
    assert np.all(out[:, 0] > ox) and np.all(out[:, 0] < ox + cw)
    assert np.all(out[:, 1] > oy) and np.all(out[:, 1] < oy + ch)


def test_mapping_is_idempotent():
    mapper = _mapper(is_mirrored=True)
    assert mapper.map_point(321.5, 654.25) == mapper.map_point(321.5, 654.25)
    again = CoordinateMapper(PORTRAIT, PHONE, True)
    assert again.map_point(321.5, 654.25) == mapper.map_point(321.5, 654.25)


def test_map_points_matches_map_point():
    mapper = CoordinateMapper(RAW_LANDSCAPE_90, PHONE, True, METADATA)
    pts = np.array([[0.0, 0.0], [400.0, 300.0], [1920.0, 1080.0]])
    out = mapper.map_points(pts)
    for (x, y), (mx, my) in zip(pts, out):
        assert mapper.map_point(x, y) == pytest.approx((mx, my))


def test_metadata_rotation_swaps_logical_dimensions():
    mapper = CoordinateMapper(RAW_LANDSCAPE_90, PHONE, False, METADATA)
    assert mapper.logical_size == (1080.0, 1920.0)
    upright = CoordinateMapper(RAW_LANDSCAPE_90, PHONE, False, DetectorConvention())
    assert upright.logical_size == (1920.0, 1080.0)


def test_rotation_90_front_and_back_camera():
    viewport = Viewport(540, 960)  # scale 0.5, no offsets
    front = CoordinateMapper(RAW_LANDSCAPE_90, viewport, True, METADATA)
    back = CoordinateMapper(RAW_LANDSCAPE_90, viewport, False, METADATA)
    # Front camera: screen x follows raw y, screen y follows raw x.
    assert front.map_point(400, 300) == pytest.approx((150, 200))
    # Back camera: raw y runs right-to-left across the screen.
    assert back.map_point(400, 300) == pytest.approx((390, 200))


def test_rotation_180_and_270():
    m180 = CoordinateMapper(FrameGeometry(640, 480, 180), Viewport(640, 480), False, METADATA)
    assert m180.map_point(40, 30) == pytest.approx((600, 450))
    m270 = CoordinateMapper(FrameGeometry(1920, 1080, 270), Viewport(1080, 1920), False, METADATA)
    assert m270.map_point(400, 300) == pytest.approx((300, 1520))


def test_normalized_points_scale_by_frame_size():
    mapper = CoordinateMapper(FrameGeometry(1000, 500), Viewport(1000, 500), False, DetectorConvention(normalized=True))
    assert mapper.map_point(0.5, 0.5) == pytest.approx((500, 250))
    assert mapper.map_point(0.1, 0.2) == pytest.approx((100, 100))


def test_normalized_metadata_rotation_uses_raw_dimensions():
    mapper = CoordinateMapper(
        RAW_LANDSCAPE_90,
        Viewport(1080, 1920),
        False,
        DetectorConvention(normalized=True, rotation_in_metadata=True),
    )
    # (0.25, 0.5) of a 1920x1080 buffer is raw (480, 540) -> upright (540, 480)
    assert mapper.map_point(0.25, 0.5) == pytest.approx((540, 480))


@pytest.mark.parametrize("mirrored", [False, True])
@pytest.mark.parametrize(
    "geometry,convention",
    [
        (PORTRAIT, DetectorConvention()),
        (RAW_LANDSCAPE_90, METADATA),
        (FrameGeometry(640, 480, 180), METADATA),
        (FrameGeometry(1920, 1080, 270), METADATA),
    ],
)
def test_rect_origin_is_top_left_of_mapped_corners(geometry, convention, mirrored):
    mapper = CoordinateMapper(geometry, PHONE, mirrored, convention)
    x, y, w, h = 100.0, 200.0, 50.0, 80.0
    corners = np.array([[x, y], [x + w, y], [x, y + h], [x + w, y + h]])
    mapped = mapper.map_points(corners)
    rx, ry, rw, rh = mapper.map_rect((x, y, w, h))
    assert rx == pytest.approx(mapped[:, 0].min())
    assert ry == pytest.approx(mapped[:, 1].min())
    assert rw == pytest.approx(mapped[:, 0].max() - mapped[:, 0].min())
    assert rh == pytest.approx(mapped[:, 1].max() - mapped[:, 1].min())


@pytest.mark.parametrize(
    "geometry,viewport",
    [
        (PORTRAIT, Viewport(0, 844)),
        (PORTRAIT, Viewport(390, 0)),
        (FrameGeometry(0, 1920), PHONE),
        (FrameGeometry(1080, -1), PHONE),
    ],
)
def test_zero_area_returns_empty_result(geometry, viewport):
    mapper = CoordinateMapper(geometry, viewport, True)
    assert mapper.drawable is False
    assert mapper.map_point(540, 960) == EMPTY_POINT
    assert mapper.map_rect((1, 2, 3, 4)) == EMPTY_RECT
    assert mapper.content_rect() == EMPTY_RECT
    out = mapper.map_points(np.array([[1.0, 2.0], [3.0, 4.0]]))
    assert out.shape == (2, 2)
    assert not np.any(out)
    with pytest.raises(DegenerateGeometry):
        mapper.require_fit()


def test_mapper_accepts_plain_string_conventions():
    mapper = CoordinateMapper(PORTRAIT, PHONE, True, mirror="upstream", scale_mode="fit")
    assert mapper.flips_x is False
    assert mapper.require_fit().scale == pytest.approx(390 / 1080)

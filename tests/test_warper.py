"""
Tests for PerspectiveWarper
"""

import cv2
import numpy as np
import pytest

from docscan.errors import InvalidGeometry
from docscan.models import WHITE, DocumentBounds, PixelBuffer, Point
from docscan.warper import PerspectiveWarper, check_quadrilateral, sample_bilinear


def rect_bounds(left, top, right, bottom):
    return DocumentBounds(
        top_left=Point(left, top), top_right=Point(right, top),
        bottom_left=Point(left, bottom), bottom_right=Point(right, bottom),
        confidence=1.0,
    )


@pytest.fixture
def warper():
    return PerspectiveWarper()


@pytest.fixture
def pattern_frame():
    """200x150 frame where every pixel value encodes its position"""
    ys, xs = np.mgrid[0:150, 0:200]
    img = np.stack([xs % 256, ys % 256, (xs + ys) % 256], axis=-1).astype(np.uint8)
    return PixelBuffer.from_array(img)


def test_bilinear_sample_exact_pixel(pattern_frame):
    assert PerspectiveWarper.bilinear_sample(pattern_frame, 37, 81) == (37, 81, 118, 255)
    assert PerspectiveWarper.bilinear_sample(pattern_frame, 199, 149) == (199, 149, 348 % 256, 255)


def test_bilinear_sample_blends_neighbours():
    img = np.zeros((2, 2, 3), dtype=np.uint8)
    img[:, 1] = 100
    frame = PixelBuffer.from_array(img)

    assert PerspectiveWarper.bilinear_sample(frame, 0.5, 0.0)[:3] == (50, 50, 50)
    assert PerspectiveWarper.bilinear_sample(frame, 0.25, 0.7)[:3] == (25, 25, 25)


def test_bilinear_sample_outside_is_white(pattern_frame):
    assert PerspectiveWarper.bilinear_sample(pattern_frame, -0.5, 10) == WHITE
    assert PerspectiveWarper.bilinear_sample(pattern_frame, 10, 150.5) == WHITE


def test_output_dimensions_follow_longest_edges(warper):
    bounds = DocumentBounds(
        top_left=Point(10, 10), top_right=Point(110, 10),
        bottom_left=Point(0, 60), bottom_right=Point(130, 60),
    )
    width, height = warper.output_dimensions(bounds)
    assert width == 130
    assert height == round(np.hypot(20, 50))


def test_output_dimensions_scale_down_only():
    warper = PerspectiveWarper(max_output_dimension=50)
    assert warper.output_dimensions(rect_bounds(0, 0, 100, 50)) == (50, 25)
    assert warper.output_dimensions(rect_bounds(0, 0, 40, 20)) == (40, 20)


def test_quality_lowers_size_limit():
    warper = PerspectiveWarper(max_output_dimension=100)
    assert warper.output_dimensions(rect_bounds(0, 0, 100, 50), quality=0.5) == (50, 25)
    assert warper.output_dimensions(rect_bounds(0, 0, 100, 50), quality=1.0) == (100, 50)


def test_axis_aligned_rectify_is_a_crop(warper, pattern_frame):
    bounds = rect_bounds(20, 10, 119, 89)
    out = warper.warp(pattern_frame, bounds)

    assert abs(out.width - 100) <= 1
    assert abs(out.height - 80) <= 1
    # corners map onto corners without shift
    assert tuple(out.data[0, 0]) == tuple(pattern_frame.data[10, 20])
    assert tuple(out.data[0, -1]) == tuple(pattern_frame.data[10, 119])
    assert tuple(out.data[-1, -1]) == tuple(pattern_frame.data[89, 119])
    assert tuple(out.data[-1, 0]) == tuple(pattern_frame.data[89, 20])


def test_region_outside_frame_is_white(warper, pattern_frame):
    bounds = rect_bounds(-20, -20, 79, 59)
    out = warper.warp(pattern_frame, bounds)

    assert tuple(out.data[0, 0]) == WHITE
    assert tuple(out.data[-1, -1]) == tuple(pattern_frame.data[59, 79])


def test_warp_does_not_touch_input(warper, pattern_frame):
    before = pattern_frame.to_bytes()
    warper.warp(pattern_frame, rect_bounds(30, 30, 150, 120))
    assert pattern_frame.to_bytes() == before


def test_collinear_corners_rejected(warper, pattern_frame):
    bounds = DocumentBounds(
        top_left=Point(0, 0), top_right=Point(50, 50),
        bottom_left=Point(0, 100), bottom_right=Point(100, 100),
    )
    with pytest.raises(InvalidGeometry):
        warper.warp(pattern_frame, bounds)


def test_crossed_corners_rejected(warper, pattern_frame):
    # top_right and bottom_right swapped: the perimeter crosses itself
    bounds = DocumentBounds(
        top_left=Point(10, 10), top_right=Point(100, 100),
        bottom_left=Point(10, 100), bottom_right=Point(100, 10),
    )
    with pytest.raises(InvalidGeometry):
        warper.warp(pattern_frame, bounds)


def test_counter_clockwise_quad_accepted():
    bounds = DocumentBounds(
        top_left=Point(0, 0), top_right=Point(0, 100),
        bottom_left=Point(100, 0), bottom_right=Point(100, 100),
    )
    check_quadrilateral(bounds)


def test_tilted_quad_rectifies(warper):
    img = np.full((300, 400, 3), 30, dtype=np.uint8)
    quad = np.array([[120, 60], [300, 80], [320, 240], [90, 220]], dtype=np.int32)
    cv2.fillConvexPoly(img, quad, (230, 230, 230))
    frame = PixelBuffer.from_array(img)

    bounds = DocumentBounds(
        top_left=Point(120, 60), top_right=Point(300, 80),
        bottom_left=Point(90, 220), bottom_right=Point(320, 240),
    )
    out = warper.warp(frame, bounds)

    # interior of the rectified image is the bright document
    h, w = out.height, out.width
    assert out.data[h // 4:3 * h // 4, w // 4:3 * w // 4, :3].min() == 230


class _NoWholeCopy(np.ndarray):
    """Source array that refuses to be converted as a whole."""

    def astype(self, dtype, *args, **kwargs):
        if self.shape == (150, 200, 4):
            raise AssertionError("whole source image converted")
        return np.asarray(self).astype(dtype, *args, **kwargs)


def test_sampling_converts_only_gathered_neighbours(pattern_frame):
    data = np.array(pattern_frame.data).view(_NoWholeCopy)
    ys, xs = np.mgrid[0:3, 0:4].astype(np.float64)
    samples = sample_bilinear(data, xs + 10.5, ys + 20)

    assert samples.shape == (3, 4, 4)
    expected = PerspectiveWarper.bilinear_sample(pattern_frame, 10.5, 20)
    assert tuple(int(v) for v in samples[0, 0]) == expected

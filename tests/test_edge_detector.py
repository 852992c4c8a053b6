"""
Tests for EdgeDetector
"""

import numpy as np
import pytest

from conftest import make_frame
from docscan.edge_detector import EdgeDetector
from docscan.models import PixelBuffer


@pytest.fixture
def edge_detector():
    return EdgeDetector()


def test_blank_frame_has_no_edges(edge_detector, blank_frame):
    points = edge_detector.detect(blank_frame)
    assert points.shape == (0, 2)


def test_rectangle_edges_hug_the_outline(edge_detector, document_frame):
    points = edge_detector.detect(document_frame)

    assert len(points) > 1000
    xs, ys = points[:, 0], points[:, 1]
    on_vertical = np.isin(xs, [159, 160, 479, 480])
    on_horizontal = np.isin(ys, [119, 120, 359, 360])
    assert np.all(on_vertical | on_horizontal)


def test_points_are_in_row_major_order(edge_detector, document_frame):
    points = edge_detector.detect(document_frame)
    ys = points[:, 1]
    assert np.all(np.diff(ys) >= 0)


def test_border_pixels_are_never_reported(edge_detector):
    img = np.zeros((50, 60, 3), dtype=np.uint8)
    img[:, 0] = 255          # bright first column
    img[0, :] = 255          # bright first row
    points = edge_detector.detect(PixelBuffer.from_array(img))

    assert len(points) > 0
    assert points[:, 0].min() >= 1
    assert points[:, 1].min() >= 1
    assert points[:, 0].max() <= 58
    assert points[:, 1].max() <= 48


def test_threshold_on_luma_scale(edge_detector):
    # a vertical step of d gives a Sobel magnitude of 4d
    weak = make_frame(100, 80, background=100, rects=[(50, 0, 99, 79, 110)])
    strong = make_frame(100, 80, background=100, rects=[(50, 0, 99, 79, 120)])

    assert len(edge_detector.detect(weak)) == 0
    assert len(edge_detector.detect(strong)) > 0


def test_gradient_magnitude_matches_sobel(edge_detector):
    frame = make_frame(20, 20, background=0, rects=[(10, 0, 19, 19, 255)])
    magnitude = edge_detector.gradient_magnitude(frame)

    assert magnitude.shape == (20, 20)
    assert magnitude[10, 9] == pytest.approx(4 * 255)
    assert magnitude[10, 10] == pytest.approx(4 * 255)
    assert magnitude[10, 5] == 0
    assert magnitude[0, 10] == 0    # border row


def test_tiny_frame(edge_detector):
    frame = PixelBuffer.blank(2, 2)
    assert len(edge_detector.detect(frame)) == 0


def test_detect_points_returns_point_records(edge_detector, document_frame):
    points = edge_detector.detect_points(document_frame)
    assert len(points) == len(edge_detector.detect(document_frame))
    assert isinstance(points[0].x, float)

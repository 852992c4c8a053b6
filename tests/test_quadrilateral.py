"""
Tests for QuadrilateralExtractor and perspective assessment
"""

import math

import pytest

from docscan.errors import InsufficientLines
from docscan.models import DocumentBounds, Line, Point
from docscan.quadrilateral import (
    QuadrilateralExtractor,
    assess_perspective,
    fallback_bounds,
    intersect,
    order_by_angle,
)
from docscan.warper import check_quadrilateral


HALF_PI = math.pi / 2


@pytest.fixture
def extractor():
    return QuadrilateralExtractor()


def box_lines(left, top, right, bottom, votes=200):
    return [
        Line(rho=top, theta=HALF_PI, votes=votes),
        Line(rho=left, theta=0.0, votes=votes),
        Line(rho=bottom, theta=HALF_PI, votes=votes),
        Line(rho=right, theta=0.0, votes=votes),
    ]


def test_intersect_axis_lines():
    point = intersect(Line(100, 0.0, 1), Line(50, HALF_PI, 1))
    assert point.x == pytest.approx(100)
    assert point.y == pytest.approx(50)


def test_intersect_parallel_lines():
    assert intersect(Line(10, 0.3, 1), Line(40, 0.3, 1)) is None


def test_group_lines():
    lines = [
        Line(0, 0.0, 1),
        Line(0, HALF_PI, 1),
        Line(0, math.pi / 4, 1),            # diagonal, in neither group
        Line(0, math.radians(170), 1),
        Line(0, math.radians(70), 1),
    ]
    horizontal, vertical = QuadrilateralExtractor.group_lines(lines)

    assert [l.theta for l in horizontal] == [0.0, math.radians(170)]
    assert [l.theta for l in vertical] == [HALF_PI, math.radians(70)]


def test_extract_axis_aligned_box(extractor):
    bounds = extractor.extract(box_lines(100, 50, 300, 250), 400, 300)

    assert bounds.top_left.as_tuple() == pytest.approx((100, 50))
    assert bounds.top_right.as_tuple() == pytest.approx((300, 50))
    assert bounds.bottom_right.as_tuple() == pytest.approx((300, 250))
    assert bounds.bottom_left.as_tuple() == pytest.approx((100, 250))
    assert bounds.confidence == pytest.approx(1.0)
    assert extractor.is_detected(bounds.confidence)


def test_extracted_corners_form_simple_quad(extractor):
    # slightly tilted box; the right side is expressed with a negative rho
    lines = [
        Line(rho=60, theta=math.radians(95), votes=150),
        Line(rho=90, theta=math.radians(3), votes=150),
        Line(rho=260, theta=math.radians(88), votes=150),
        Line(rho=-330, theta=math.radians(177), votes=150),
    ]
    bounds = extractor.extract(lines, 400, 300)

    check_quadrilateral(bounds)
    assert bounds.top_left.x < bounds.top_right.x
    assert bounds.top_left.y < bounds.bottom_left.y


def test_weak_lines_and_large_area_lower_confidence(extractor):
    # mean votes 60 -> strength 0.6; quad covers 90% of the frame -> area score 0.5
    lines = box_lines(10, 10, 390, 290, votes=60)
    bounds = extractor.extract(lines, 400, 300)

    assert bounds.confidence == pytest.approx(0.7 * 0.6 + 0.3 * 0.5)
    assert not extractor.is_detected(bounds.confidence)


def test_too_few_lines(extractor):
    with pytest.raises(InsufficientLines):
        extractor.extract(box_lines(100, 50, 300, 250)[:3], 400, 300)


def test_one_orientation_only(extractor):
    lines = [Line(rho=r, theta=0.0, votes=100) for r in (10, 80, 150, 220)]
    with pytest.raises(InsufficientLines):
        extractor.extract(lines, 400, 300)


def test_fallback_bounds():
    bounds = fallback_bounds(640, 480)

    assert bounds.top_left.as_tuple() == pytest.approx((64, 48))
    assert bounds.top_right.as_tuple() == pytest.approx((576, 48))
    assert bounds.bottom_right.as_tuple() == pytest.approx((576, 432))
    assert bounds.bottom_left.as_tuple() == pytest.approx((64, 432))
    assert bounds.confidence == 0.3


def test_order_by_angle_rotated_square():
    diamond = [Point(100, 200), Point(200, 300), Point(300, 200), Point(200, 100)]
    ordered = order_by_angle(diamond)

    assert [p.as_tuple() for p in ordered] == [(200, 100), (300, 200), (200, 300), (100, 200)]


def test_from_points_orders_corners():
    bounds = DocumentBounds.from_points([(300, 250), (100, 50), (100, 250), (300, 50)])
    assert bounds.top_left == Point(100, 50)
    assert bounds.top_right == Point(300, 50)
    assert bounds.bottom_left == Point(100, 250)
    assert bounds.bottom_right == Point(300, 250)
    assert bounds.area() == pytest.approx(200 * 200)


def test_assess_rectangle_has_no_distortion():
    rect = DocumentBounds.from_points([(0, 0), (200, 0), (200, 100), (0, 100)])
    assessment = assess_perspective(rect)

    assert assessment.distortion == pytest.approx(0.0)
    assert assessment.recommended.sharpen is False
    assert assessment.recommended.denoise_level == 0.3


def test_assess_trapezoid_is_distorted():
    trapezoid = DocumentBounds(
        top_left=Point(80, 0), top_right=Point(120, 0),
        bottom_left=Point(0, 100), bottom_right=Point(200, 100),
    )
    assessment = assess_perspective(trapezoid)

    assert 0.2 < assessment.distortion <= 1.0
    assert assessment.recommended.sharpen is True

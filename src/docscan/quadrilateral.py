"""
Quadrilateral extraction from ranked Hough lines.
"""

import math
from typing import List, Optional, Sequence, Tuple

from loguru import logger

from docscan.errors import InsufficientLines
from docscan.models import DocumentBounds, EnhancementOptions, Line, PerspectiveAssessment, Point


# Below this |det| two lines are treated as parallel
PARALLEL_EPSILON = 1e-10


def intersect(line1: Line, line2: Line) -> Optional[Point]:
    """
    Intersection of two polar lines, or None when they are (nearly) parallel.

    Solves x*cos(t) + y*sin(t) = rho for both lines.
    """
    cos1, sin1 = math.cos(line1.theta), math.sin(line1.theta)
    cos2, sin2 = math.cos(line2.theta), math.sin(line2.theta)

    det = cos1 * sin2 - sin1 * cos2
    if abs(det) < PARALLEL_EPSILON:
        return None

    x = (sin2 * line1.rho - sin1 * line2.rho) / det
    y = (cos1 * line2.rho - cos2 * line1.rho) / det
    return Point(x, y)


def order_by_angle(points: Sequence[Point]) -> List[Point]:
    """
    Order points by polar angle around their centroid, starting with the
    point nearest the image origin (smallest x + y).

    In image coordinates (y down) increasing atan2 runs clockwise on
    screen, so four corners come out as top-left, top-right, bottom-right,
    bottom-left.
    """
    cx = sum(p.x for p in points) / len(points)
    cy = sum(p.y for p in points) / len(points)
    ordered = sorted(points, key=lambda p: math.atan2(p.y - cy, p.x - cx))

    start = min(range(len(ordered)), key=lambda i: ordered[i].x + ordered[i].y)
    return ordered[start:] + ordered[:start]


def fallback_bounds(width: int, height: int, margin: float = 0.1,
                    confidence: float = 0.3) -> DocumentBounds:
    """Centered rectangle inset by `margin` of the frame on every side."""
    left, right = width * margin, width * (1 - margin)
    top, bottom = height * margin, height * (1 - margin)
    return DocumentBounds(
        top_left=Point(left, top),
        top_right=Point(right, top),
        bottom_left=Point(left, bottom),
        bottom_right=Point(right, bottom),
        confidence=confidence,
    )


class QuadrilateralExtractor:
    """
    Groups lines by orientation, intersects the two strongest of each
    group and scores the resulting quadrilateral.
    """

    def __init__(
        self,
        min_lines: int = 4,
        detection_threshold: float = 0.6,
        fallback_margin: float = 0.1,
        fallback_confidence: float = 0.3,
    ):
        self.min_lines = min_lines
        self.detection_threshold = detection_threshold
        self.fallback_margin = fallback_margin
        self.fallback_confidence = fallback_confidence

    @staticmethod
    def group_lines(lines: Sequence[Line]) -> Tuple[List[Line], List[Line]]:
        """
        Split lines into (horizontal, vertical) groups, keeping rank order.

        Groups are named after the line normal: |cos(theta)| < 0.5 is
        "vertical", |sin(theta)| < 0.5 or > 0.866 is "horizontal". The two
        tests overlap for theta in (60, 120) degrees; such lines go to the
        vertical group only, so no line is ever intersected with itself.
        Lines matching neither test (diagonals) are dropped.
        """
        horizontal: List[Line] = []
        vertical: List[Line] = []
        for line in lines:
            c = abs(math.cos(line.theta))
            s = abs(math.sin(line.theta))
            if c < 0.5:
                vertical.append(line)
            elif s < 0.5 or s > 0.866:
                horizontal.append(line)
        return horizontal, vertical

    def extract(self, lines: Sequence[Line], width: int, height: int) -> DocumentBounds:
        """
        Build document corners from ranked lines.

        Raises:
            InsufficientLines: too few lines overall or per group, or fewer
                than four non-parallel intersections
        """
        if len(lines) < self.min_lines:
            raise InsufficientLines(f"{len(lines)} lines found (need {self.min_lines})")

        horizontal, vertical = self.group_lines(lines)
        if len(horizontal) < 2 or len(vertical) < 2:
            raise InsufficientLines(
                f"{len(horizontal)} horizontal / {len(vertical)} vertical lines (need 2 each)"
            )

        corners = []
        for h_line in horizontal[:2]:
            for v_line in vertical[:2]:
                point = intersect(h_line, v_line)
                if point is not None:
                    corners.append(point)

        if len(corners) < 4:
            raise InsufficientLines(f"Only {len(corners)} line intersections")

        tl, tr, br, bl = order_by_angle(corners)
        bounds = DocumentBounds(top_left=tl, top_right=tr, bottom_left=bl, bottom_right=br)
        confidence = self.score(lines, bounds, width, height)

        logger.debug(
            f"[Quad] Corners TL({tl.x:.1f},{tl.y:.1f}) TR({tr.x:.1f},{tr.y:.1f}) "
            f"BR({br.x:.1f},{br.y:.1f}) BL({bl.x:.1f},{bl.y:.1f}) confidence={confidence:.3f}"
        )
        return DocumentBounds(
            top_left=tl, top_right=tr, bottom_left=bl, bottom_right=br,
            confidence=confidence,
        )

    @staticmethod
    def score(lines: Sequence[Line], bounds: DocumentBounds, width: int, height: int) -> float:
        """
        0.7 * line strength + 0.3 * area score, in [0, 1].

        Line strength is the mean vote count over all ranked lines, saturating
        at 100. The area score is 1 when the quad covers 10%-80% of the frame.
        """
        mean_votes = sum(line.votes for line in lines) / len(lines)
        line_strength = min(mean_votes / 100.0, 1.0)

        frame_area = float(width * height)
        area_ratio = bounds.area() / frame_area if frame_area > 0 else 0.0
        area_score = 1.0 if 0.1 < area_ratio < 0.8 else 0.5

        return max(0.0, min(1.0, 0.7 * line_strength + 0.3 * area_score))

    def fallback(self, width: int, height: int) -> DocumentBounds:
        return fallback_bounds(width, height, self.fallback_margin, self.fallback_confidence)

    def is_detected(self, confidence: float) -> bool:
        return confidence > self.detection_threshold


def _angle_between(a: float, b: float) -> float:
    """Absolute difference of two directions, wrapped into [0, pi]."""
    d = abs(a - b) % (2 * math.pi)
    return min(d, 2 * math.pi - d)


def assess_perspective(bounds: DocumentBounds) -> PerspectiveAssessment:
    """
    Distortion score from how far opposite edges are from parallel.

    0 means top/bottom and left/right edges are parallel (a rectangle or
    parallelogram); the score saturates at 1 when the two angle
    differences add up to pi.
    """
    tl, tr, bl, br = bounds.top_left, bounds.top_right, bounds.bottom_left, bounds.bottom_right

    top = math.atan2(tr.y - tl.y, tr.x - tl.x)
    bottom = math.atan2(br.y - bl.y, br.x - bl.x)
    left = math.atan2(bl.y - tl.y, bl.x - tl.x)
    right = math.atan2(br.y - tr.y, br.x - tr.x)

    distortion = min((_angle_between(top, bottom) + _angle_between(left, right)) / math.pi, 1.0)

    recommended = EnhancementOptions(
        auto_contrast=distortion > 0.3,
        sharpen=distortion > 0.2,
        denoise_level=0.5 if distortion > 0.4 else 0.3,
        remove_glare=distortion > 0.5,
        remove_shadows=distortion > 0.4,
    )
    logger.debug(f"[Quad] Perspective distortion {distortion:.3f}")
    return PerspectiveAssessment(distortion=distortion, recommended=recommended)

"""
Homography estimation (Direct Linear Transform).

The 3x3 matrix H maps a source point (x, y) to
    ((h0 x + h1 y + h2) / w, (h3 x + h4 y + h5) / w),  w = h6 x + h7 y + 1
so H[2][2] is 1 by construction and eight unknowns remain, two equations
per correspondence.
"""

import itertools
from typing import Sequence, Tuple, Union

import numpy as np
from loguru import logger

from docscan.errors import InvalidGeometry
from docscan.models import Point


PIVOT_EPSILON = 1e-10

PointLike = Union[Point, Sequence[float]]


def _as_array(points: Sequence[PointLike]) -> np.ndarray:
    return np.array(
        [p.as_tuple() if isinstance(p, Point) else tuple(p) for p in points],
        dtype=np.float64,
    )


def check_non_degenerate(points: np.ndarray, label: str = "points"):
    """
    Raise InvalidGeometry when two points coincide or three are collinear.

    Tolerances scale with the spread of the points so the same test works
    for unit squares and for full-resolution frames.
    """
    span = float(np.ptp(points, axis=0).max()) if len(points) else 0.0
    scale = max(span, 1.0)

    for i, j in itertools.combinations(range(len(points)), 2):
        if np.hypot(*(points[i] - points[j])) < 1e-9 * scale:
            raise InvalidGeometry(f"Duplicate {label}: {points[i].tolist()}")

    for i, j, k in itertools.combinations(range(len(points)), 3):
        a, b, c = points[i], points[j], points[k]
        cross = (b[0] - a[0]) * (c[1] - a[1]) - (b[1] - a[1]) * (c[0] - a[0])
        if abs(cross) < 1e-9 * scale * scale:
            raise InvalidGeometry(
                f"Collinear {label}: {a.tolist()}, {b.tolist()}, {c.tolist()}"
            )


def gaussian_solve(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    Solve a x = b by Gaussian elimination with partial pivoting.

    Raises:
        InvalidGeometry: a pivot falls below PIVOT_EPSILON (singular system)
    """
    n = len(b)
    m = np.hstack([np.asarray(a, dtype=np.float64), np.asarray(b, dtype=np.float64).reshape(n, 1)])

    for col in range(n):
        pivot = col + int(np.argmax(np.abs(m[col:, col])))
        if abs(m[pivot, col]) < PIVOT_EPSILON:
            raise InvalidGeometry(f"Singular system (pivot {m[pivot, col]:.3e} in column {col})")
        if pivot != col:
            m[[col, pivot]] = m[[pivot, col]]
        m[col + 1:] -= np.outer(m[col + 1:, col] / m[col, col], m[col])

    x = np.zeros(n)
    for row in range(n - 1, -1, -1):
        x[row] = (m[row, n] - m[row, row + 1:n] @ x[row + 1:]) / m[row, row]
    return x


class HomographySolver:
    """Builds, inverts and applies 3x3 projective transforms."""

    def solve(self, src: Sequence[PointLike], dst: Sequence[PointLike]) -> np.ndarray:
        """
        Homography mapping each src point onto the matching dst point.

        Args:
            src: 4 source points, in order
            dst: 4 destination points, same order

        Returns:
            3x3 float64 matrix with H[2][2] == 1

        Raises:
            InvalidGeometry: degenerate correspondences or singular system
        """
        src_pts = _as_array(src)
        dst_pts = _as_array(dst)
        if src_pts.shape != (4, 2) or dst_pts.shape != (4, 2):
            raise InvalidGeometry(
                f"Need 4 source and 4 destination points, got {len(src_pts)} and {len(dst_pts)}"
            )

        check_non_degenerate(src_pts, "source points")
        check_non_degenerate(dst_pts, "destination points")

        a = np.zeros((8, 8))
        b = np.zeros(8)
        for i, ((sx, sy), (dx, dy)) in enumerate(zip(src_pts, dst_pts)):
            a[2 * i] = [sx, sy, 1, 0, 0, 0, -dx * sx, -dx * sy]
            a[2 * i + 1] = [0, 0, 0, sx, sy, 1, -dy * sx, -dy * sy]
            b[2 * i] = dx
            b[2 * i + 1] = dy

        h = gaussian_solve(a, b)
        matrix = np.append(h, 1.0).reshape(3, 3)
        logger.debug(f"[Homography] Solved H = {np.round(matrix, 6).tolist()}")
        return matrix

    def invert(self, matrix: np.ndarray) -> np.ndarray:
        """
        Inverse via the adjugate, normalised so element [2][2] is 1
        whenever that element is non-zero.

        Raises:
            InvalidGeometry: the matrix is singular
        """
        m = np.asarray(matrix, dtype=np.float64)
        adjugate = np.array([
            np.cross(m[1], m[2]),
            np.cross(m[2], m[0]),
            np.cross(m[0], m[1]),
        ]).T
        det = float(m[0] @ np.cross(m[1], m[2]))
        if abs(det) < PIVOT_EPSILON:
            raise InvalidGeometry(f"Homography is singular (det={det:.3e})")

        inverse = adjugate / det
        if abs(inverse[2, 2]) > PIVOT_EPSILON:
            inverse = inverse / inverse[2, 2]
        return inverse

    def transform_point(self, matrix: np.ndarray, point: PointLike) -> Point:
        """
        Apply H to one point.

        Raises:
            InvalidGeometry: the point maps to infinity (w ~ 0)
        """
        x, y = point.as_tuple() if isinstance(point, Point) else point
        m = matrix
        w = m[2, 0] * x + m[2, 1] * y + m[2, 2]
        if abs(w) < PIVOT_EPSILON:
            raise InvalidGeometry(f"Point ({x}, {y}) maps to infinity")
        return Point(
            float((m[0, 0] * x + m[0, 1] * y + m[0, 2]) / w),
            float((m[1, 0] * x + m[1, 1] * y + m[1, 2]) / w),
        )

    def transform_grid(self, matrix: np.ndarray, xs: np.ndarray, ys: np.ndarray
                       ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Apply H to arrays of coordinates.

        Returns:
            (mapped_x, mapped_y, valid) where valid is False wherever w ~ 0;
            the mapped coordinates there are NaN.
        """
        m = matrix
        w = m[2, 0] * xs + m[2, 1] * ys + m[2, 2]
        valid = np.abs(w) >= PIVOT_EPSILON
        safe_w = np.where(valid, w, 1.0)
        mapped_x = np.where(valid, (m[0, 0] * xs + m[0, 1] * ys + m[0, 2]) / safe_w, np.nan)
        mapped_y = np.where(valid, (m[1, 0] * xs + m[1, 1] * ys + m[1, 2]) / safe_w, np.nan)
        return mapped_x, mapped_y, valid

"""
Perspective rectification.

Every destination pixel is mapped back into the source frame through the
inverse homography and bilinearly sampled from its 4 nearest neighbours.
Samples that land outside the source frame are white.
"""

from typing import Tuple

import numpy as np
from loguru import logger

from docscan.errors import InvalidGeometry
from docscan.homography import HomographySolver, check_non_degenerate
from docscan.models import WHITE, DocumentBounds, PixelBuffer
from docscan.utils import to_uint8


# Coordinates this close to an integer are treated as that integer,
# so pixel-exact mappings do not pick up blending from float noise.
SNAP_EPSILON = 1e-9

# Lowest quality factor honoured when deriving the output size limit
MIN_QUALITY = 0.1


def _snap(values: np.ndarray) -> np.ndarray:
    nearest = np.rint(values)
    return np.where(np.abs(values - nearest) < SNAP_EPSILON, nearest, values)


def sample_bilinear(data: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    """
    Bilinear samples of an (H, W, C) uint8 array at fractional coordinates.

    NaN coordinates and coordinates outside [0, W-1] x [0, H-1] produce
    white. Integer coordinates return the stored pixel unchanged.

    Returns:
        uint8 array of shape xs.shape + (C,)
    """
    height, width, channels = data.shape
    xs = _snap(np.asarray(xs, dtype=np.float64))
    ys = _snap(np.asarray(ys, dtype=np.float64))

    with np.errstate(invalid="ignore"):
        inside = (xs >= 0) & (xs <= width - 1) & (ys >= 0) & (ys <= height - 1)
    xs = np.where(inside, xs, 0.0)
    ys = np.where(inside, ys, 0.0)

    x0 = np.floor(xs).astype(np.intp)
    y0 = np.floor(ys).astype(np.intp)
    x1 = np.minimum(x0 + 1, width - 1)
    y1 = np.minimum(y0 + 1, height - 1)
    fx = (xs - x0)[..., None]
    fy = (ys - y0)[..., None]

    # gather in uint8, cast only the neighbours
    blended = (
        data[y0, x0].astype(np.float64) * (1 - fx) * (1 - fy)
        + data[y0, x1].astype(np.float64) * fx * (1 - fy)
        + data[y1, x0].astype(np.float64) * (1 - fx) * fy
        + data[y1, x1].astype(np.float64) * fx * fy
    )

    background = np.asarray(WHITE[:channels], dtype=np.uint8)
    return np.where(inside[..., None], to_uint8(blended), background)


def check_quadrilateral(bounds: DocumentBounds):
    """
    Raise InvalidGeometry unless the corners form a convex quadrilateral
    in perimeter order (TL, TR, BR, BL).

    A crossed or concave quad cannot be the projective image of a
    rectangle, so its homography would fold the output.
    """
    pts = np.array([p.as_tuple() for p in bounds.corners()], dtype=np.float64)
    if not np.all(np.isfinite(pts)):
        raise InvalidGeometry("Quadrilateral has non-finite corners")
    check_non_degenerate(pts, "corners")

    crosses = []
    for i in range(4):
        a, b, c = pts[i], pts[(i + 1) % 4], pts[(i + 2) % 4]
        crosses.append((b[0] - a[0]) * (c[1] - b[1]) - (b[1] - a[1]) * (c[0] - b[0]))
    if not (all(c > 0 for c in crosses) or all(c < 0 for c in crosses)):
        raise InvalidGeometry("Quadrilateral is self-intersecting or concave")


class PerspectiveWarper:
    """Resamples the document quadrilateral into an upright rectangle."""

    # Destination pixels processed per batch
    BATCH_PIXELS = 1 << 18

    def __init__(self, max_output_dimension: int = 4096, solver: HomographySolver = None):
        """
        Args:
            max_output_dimension: Longest output side at quality 1.0
            solver: Homography solver (default: a new HomographySolver)
        """
        self.max_output_dimension = max_output_dimension
        self.solver = solver or HomographySolver()

    def output_dimensions(self, bounds: DocumentBounds, quality: float = 1.0) -> Tuple[int, int]:
        """
        (width, height) of the rectified image.

        Width is the longer of the top/bottom edges, height the longer of
        the left/right edges. The result only shrinks, when its longest side
        exceeds max_output_dimension * quality.
        """
        top = bounds.top_left.distance_to(bounds.top_right)
        bottom = bounds.bottom_left.distance_to(bounds.bottom_right)
        left = bounds.top_left.distance_to(bounds.bottom_left)
        right = bounds.top_right.distance_to(bounds.bottom_right)

        width = max(top, bottom)
        height = max(left, right)

        limit = self.max_output_dimension * max(MIN_QUALITY, min(quality, 1.0))
        longest = max(width, height)
        if longest > limit:
            scale = limit / longest
            width *= scale
            height *= scale

        return max(1, int(round(width))), max(1, int(round(height)))

    def warp(self, buffer: PixelBuffer, bounds: DocumentBounds, quality: float = 1.0) -> PixelBuffer:
        """
        Rectify `bounds` of `buffer` into a new buffer.

        Raises:
            InvalidGeometry: degenerate quadrilateral or singular homography
        """
        check_quadrilateral(bounds)
        out_w, out_h = self.output_dimensions(bounds, quality)
        if out_w < 2 or out_h < 2:
            raise InvalidGeometry(f"Quadrilateral too small to rectify ({out_w}x{out_h})")

        dst = [(0, 0), (out_w - 1, 0), (out_w - 1, out_h - 1), (0, out_h - 1)]
        matrix = self.solver.solve(bounds.corners(), dst)
        inverse = self.solver.invert(matrix)

        out = np.empty((out_h, out_w, 4), dtype=np.uint8)
        rows_per_batch = max(1, self.BATCH_PIXELS // out_w)
        columns = np.arange(out_w, dtype=np.float64)

        for r0 in range(0, out_h, rows_per_batch):
            r1 = min(out_h, r0 + rows_per_batch)
            ys, xs = np.meshgrid(np.arange(r0, r1, dtype=np.float64), columns, indexing="ij")
            src_x, src_y, _ = self.solver.transform_grid(inverse, xs, ys)
            out[r0:r1] = sample_bilinear(buffer.data, src_x, src_y)

        logger.info(
            f"[Warper] Rectified {buffer.width}x{buffer.height} -> {out_w}x{out_h} "
            f"(quality={quality:.2f})"
        )
        return PixelBuffer(out_w, out_h, out)

    @staticmethod
    def bilinear_sample(buffer: PixelBuffer, x: float, y: float) -> Tuple[int, int, int, int]:
        """RGBA value of `buffer` at one fractional coordinate."""
        value = sample_bilinear(buffer.data, np.array([x]), np.array([y]))[0]
        return tuple(int(v) for v in value)

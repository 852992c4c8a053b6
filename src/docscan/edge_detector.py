"""
Sobel edge detection on the luma plane.
"""

from typing import List

import cv2
import numpy as np
from loguru import logger

from docscan.models import PixelBuffer, Point


class EdgeDetector:
    """
    Turns a pixel buffer into the set of pixels whose Sobel gradient
    magnitude exceeds a threshold.

    The first/last row and column are never evaluated. An empty or small
    result is not an error here; the caller decides whether enough
    points were found to continue.
    """

    def __init__(self, threshold: float = 50.0):
        """
        Args:
            threshold: Minimum gradient magnitude on a 0-255 luma scale
        """
        self.threshold = threshold

    def gradient_magnitude(self, buffer: PixelBuffer) -> np.ndarray:
        """
        sqrt(gx^2 + gy^2) for every interior pixel, 0 on the border.

        cv2.Sobel with ksize=3 correlates with [[-1,0,1],[-2,0,2],[-1,0,1]]
        and its transpose.
        """
        magnitude = np.zeros((buffer.height, buffer.width), dtype=np.float64)
        if buffer.width < 3 or buffer.height < 3:
            return magnitude

        luma = buffer.luma()
        gx = cv2.Sobel(luma, cv2.CV_64F, 1, 0, ksize=3)
        gy = cv2.Sobel(luma, cv2.CV_64F, 0, 1, ksize=3)
        magnitude[1:-1, 1:-1] = np.sqrt(gx[1:-1, 1:-1] ** 2 + gy[1:-1, 1:-1] ** 2)
        return magnitude

    def detect(self, buffer: PixelBuffer) -> np.ndarray:
        """
        Edge points as an (N, 2) array of [x, y], in row-major scan order.
        """
        magnitude = self.gradient_magnitude(buffer)
        ys, xs = np.nonzero(magnitude > self.threshold)
        points = np.column_stack([xs, ys]).astype(np.float64)
        logger.debug(f"[EdgeDetector] {len(points)} edge points above {self.threshold}")
        return points

    def detect_points(self, buffer: PixelBuffer) -> List[Point]:
        """Same as detect() but as Point records."""
        return [Point(float(x), float(y)) for x, y in self.detect(buffer)]

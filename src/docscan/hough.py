"""
Hough transform line finder.

Every edge point votes once per theta bucket into the rho bucket of
rho = x*cos(theta) + y*sin(theta). Cells above the vote threshold are
ranked by votes; equal votes keep bucket scan order (rho-major, then
theta) so results are reproducible.
"""

import math
from typing import List, Tuple

import numpy as np
from loguru import logger

from docscan.models import Line


class HoughLineFinder:
    """Ranks candidate straight lines from an edge point set."""

    # Points voted per batch; bounds the (batch x theta) temporary arrays
    BATCH_SIZE = 4096

    def __init__(
        self,
        rho_resolution: float = 1.0,
        theta_resolution: float = math.pi / 180,
        vote_threshold: int = 50,
        max_lines: int = 10,
        min_rho_separation: float = 20.0,
        min_theta_separation: float = math.radians(5),
    ):
        """
        Args:
            rho_resolution: Accumulator rho bucket size in pixels
            theta_resolution: Accumulator theta bucket size in radians
            vote_threshold: A cell needs strictly more votes to be a candidate
            max_lines: Maximum number of ranked lines returned
            min_rho_separation: Peak suppression distance in pixels (0 disables)
            min_theta_separation: Peak suppression angle in radians (0 disables)
        """
        self.rho_resolution = rho_resolution
        self.theta_resolution = theta_resolution
        self.vote_threshold = vote_threshold
        self.max_lines = max_lines
        self.min_rho_separation = min_rho_separation
        self.min_theta_separation = min_theta_separation

    def accumulate(self, points: np.ndarray, width: int, height: int) -> Tuple[np.ndarray, float]:
        """
        Build the vote accumulator.

        Returns:
            (accumulator of shape (rho_steps, theta_steps), max_rho)
        """
        max_rho = math.sqrt(width * width + height * height)
        rho_steps = int(math.ceil(2 * max_rho / self.rho_resolution))
        # round, not ceil: pi / (pi/180) is 180.00000000000003 in floating point
        theta_steps = int(round(math.pi / self.theta_resolution))

        thetas = np.arange(theta_steps) * self.theta_resolution
        cos_t = np.cos(thetas)
        sin_t = np.sin(thetas)
        theta_idx = np.arange(theta_steps)

        votes = np.zeros(rho_steps * theta_steps, dtype=np.int64)
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)

        for start in range(0, len(points), self.BATCH_SIZE):
            batch = points[start:start + self.BATCH_SIZE]
            rho = batch[:, 0:1] * cos_t + batch[:, 1:2] * sin_t
            # half-up rounding of (rho + max_rho) / resolution
            rho_idx = np.floor((rho + max_rho) / self.rho_resolution + 0.5).astype(np.int64)
            valid = (rho_idx >= 0) & (rho_idx < rho_steps)
            flat = (rho_idx * theta_steps + theta_idx)[valid]
            votes += np.bincount(flat, minlength=rho_steps * theta_steps)

        return votes.reshape(rho_steps, theta_steps), max_rho

    def find_lines(self, points: np.ndarray, width: int, height: int) -> List[Line]:
        """
        Up to max_lines lines ranked by votes, highest first.

        Args:
            points: (N, 2) array of [x, y] edge points
            width: Image width
            height: Image height
        """
        if len(points) == 0:
            return []

        accumulator, max_rho = self.accumulate(points, width, height)

        # np.nonzero walks the accumulator in C order: rho outer, theta inner
        rho_idx, theta_idx = np.nonzero(accumulator > self.vote_threshold)
        if len(rho_idx) == 0:
            logger.debug("[Hough] No accumulator cell above threshold")
            return []

        cell_votes = accumulator[rho_idx, theta_idx]
        ranking = np.argsort(-cell_votes, kind="stable")

        lines: List[Line] = []
        for k in ranking:
            rho = float(rho_idx[k] * self.rho_resolution - max_rho)
            theta = float(theta_idx[k] * self.theta_resolution)
            if self._is_suppressed(rho, theta, lines):
                continue
            lines.append(Line(rho=rho, theta=theta, votes=int(cell_votes[k])))
            if len(lines) >= self.max_lines:
                break

        logger.debug(
            f"[Hough] {len(rho_idx)} candidate cells -> {len(lines)} lines "
            f"(top votes: {[l.votes for l in lines[:4]]})"
        )
        return lines

    def _is_suppressed(self, rho: float, theta: float, accepted: List[Line]) -> bool:
        """True when (rho, theta) sits within the separation window of an accepted line."""
        for line in accepted:
            d_theta = abs(theta - line.theta)
            if d_theta <= self.min_theta_separation and abs(rho - line.rho) <= self.min_rho_separation:
                return True
            # (rho, theta) and (-rho, theta - pi) are the same line
            if math.pi - d_theta <= self.min_theta_separation and abs(rho + line.rho) <= self.min_rho_separation:
                return True
        return False

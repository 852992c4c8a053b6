"""
Image quality analysis.

Measures global brightness/contrast from a 256-bucket luma histogram,
flags glare and shadows from its tails, and estimates sharpness
(Laplacian variance) and noise (background patch sigma). The resulting
ImageAnalysis carries the EnhancementOptions these measurements call for.
"""

import cv2
import numpy as np
from loguru import logger

from docscan.models import EnhancementOptions, ImageAnalysis, PixelBuffer


# ─── Histogram ────────────────────────────────────────────────────────────────

class LumaHistogram:
    """256-bucket histogram of rounded luma values."""

    CLIP_FRACTION = 0.01   # more than 1% of pixels at 0 or 255 → clipped

    def __init__(self, buffer: PixelBuffer):
        levels = np.floor(buffer.luma() + 0.5).astype(np.int64).clip(0, 255)
        self.counts = np.bincount(levels.ravel(), minlength=256)
        self.total = int(levels.size)

    def mean(self) -> float:
        if self.total == 0:
            return 0.0
        return float(np.arange(256) @ self.counts) / self.total

    def std(self) -> float:
        if self.total == 0:
            return 0.0
        mean = self.mean()
        variance = float(((np.arange(256) - mean) ** 2) @ self.counts) / self.total
        return float(np.sqrt(variance))

    def percentile(self, p: float) -> int:
        """First bucket whose cumulative count reaches p% of all pixels."""
        cumulative = np.cumsum(self.counts)
        idx = int(np.searchsorted(cumulative, self.total * p / 100.0, side="left"))
        return min(idx, 255)

    def clipping(self):
        """(shadows_clipped, highlights_clipped)"""
        limit = self.total * self.CLIP_FRACTION
        return bool(self.counts[0] > limit), bool(self.counts[255] > limit)


# ─── Analyzer ─────────────────────────────────────────────────────────────────

class ImageQualityAnalyzer:
    """
    Pure function of one buffer: same pixels in, same ImageAnalysis out.
    """

    # Recommendation thresholds
    LOW_CONTRAST   = 0.5   # contrast below → auto_contrast
    DARK_MEAN      = 100   # brightness below → auto_brightness
    BRIGHT_MEAN    = 180   # brightness above → auto_brightness
    SOFT_SHARPNESS = 0.6   # sharpness below → sharpen
    OUTPUT_QUALITY = 0.95

    def __init__(
        self,
        glare_percentile_threshold: int = 240,
        glare_spread: int = 200,
        shadow_percentile_threshold: int = 30,
        shadow_spread: int = 150,
        sharpness_reference: float = 1000.0,
        noise_reference: float = 25.0,
    ):
        self.glare_percentile_threshold = glare_percentile_threshold
        self.glare_spread = glare_spread
        self.shadow_percentile_threshold = shadow_percentile_threshold
        self.shadow_spread = shadow_spread
        self.sharpness_reference = sharpness_reference
        self.noise_reference = noise_reference

    def analyze(self, buffer: PixelBuffer) -> ImageAnalysis:
        histogram = LumaHistogram(buffer)
        if histogram.total == 0:
            logger.warning("[Analyzer] Empty buffer, returning neutral analysis")
            return ImageAnalysis(
                brightness=0.0, contrast=0.0, noise_level=0.0, sharpness=0.0,
                has_glare=False, has_shadows=False,
            )

        brightness = histogram.mean()
        contrast = min(histogram.std() / 64.0, 1.0)
        p5 = histogram.percentile(5)
        p95 = histogram.percentile(95)
        spread = p95 - p5

        has_glare = p95 > self.glare_percentile_threshold and spread > self.glare_spread
        has_shadows = p5 < self.shadow_percentile_threshold and spread > self.shadow_spread
        shadows_clipped, highlights_clipped = histogram.clipping()

        luma = buffer.luma()
        sharpness = min(self._laplacian_variance(luma) / self.sharpness_reference, 1.0)
        noise_level = min(self._measure_noise(luma) / self.noise_reference, 1.0)

        recommended = EnhancementOptions(
            auto_contrast=contrast < self.LOW_CONTRAST or shadows_clipped or highlights_clipped,
            auto_brightness=brightness < self.DARK_MEAN or brightness > self.BRIGHT_MEAN,
            sharpen=sharpness < self.SOFT_SHARPNESS,
            remove_glare=has_glare,
            remove_shadows=has_shadows,
            denoise_level=noise_level,
            output_quality=self.OUTPUT_QUALITY,
            preserve_colors=True,
        )

        logger.info(
            f"[Analyzer] brightness={brightness:.1f} contrast={contrast:.2f} "
            f"p5={p5} p95={p95} glare={has_glare} shadows={has_shadows} "
            f"noise={noise_level:.2f} sharpness={sharpness:.2f}"
        )
        return ImageAnalysis(
            brightness=brightness,
            contrast=contrast,
            noise_level=noise_level,
            sharpness=sharpness,
            has_glare=has_glare,
            has_shadows=has_shadows,
            recommended=recommended,
        )

    @staticmethod
    def _laplacian_variance(luma: np.ndarray) -> float:
        """Variance of the Laplacian response; low for blurry images."""
        return float(cv2.Laplacian(luma, cv2.CV_64F).var())

    @staticmethod
    def _measure_noise(luma: np.ndarray, patch_size: int = 8) -> float:
        """
        Estimate noise sigma from local patch variance.

        Splits the image into patch_size x patch_size tiles and takes the
        10th percentile of their variances: flat background tiles set the
        noise floor, tiles over text edges are ignored.
        """
        h, w = luma.shape
        rows, cols = h // patch_size, w // patch_size
        if rows == 0 or cols == 0:
            return 0.0

        tiles = luma[:rows * patch_size, :cols * patch_size]
        tiles = tiles.reshape(rows, patch_size, cols, patch_size).swapaxes(1, 2)
        variances = tiles.reshape(rows * cols, -1).var(axis=1)

        noise_var = float(np.percentile(variances, 10))
        return float(np.sqrt(max(noise_var, 0.0)))

"""
Image enhancement filters and the pipeline that sequences them.

Every filter is a pure function PixelBuffer -> PixelBuffer that works on
the RGB channels and carries alpha through unchanged. Order inside the
pipeline is fixed: auto-levels, glare, shadows, denoise, sharpen.
"""

import math
from typing import Optional

import cv2
import numpy as np
from loguru import logger

from docscan.analyzer import LumaHistogram
from docscan.edge_detector import EdgeDetector
from docscan.models import EnhancementOptions, PixelBuffer
from docscan.utils import to_uint8


# ─── Helpers ──────────────────────────────────────────────────────────────────

def _with_rgb(buffer: PixelBuffer, rgb: np.ndarray) -> PixelBuffer:
    """New buffer with `rgb` (rounded, clamped) and the alpha of `buffer`."""
    out = np.empty((buffer.height, buffer.width, 4), dtype=np.uint8)
    out[..., :3] = rgb if rgb.dtype == np.uint8 else to_uint8(rgb)
    out[..., 3] = buffer.alpha
    return PixelBuffer(buffer.width, buffer.height, out)


def _copy_border(result: np.ndarray, original: np.ndarray) -> np.ndarray:
    result[0, :] = original[0, :]
    result[-1, :] = original[-1, :]
    result[:, 0] = original[:, 0]
    result[:, -1] = original[:, -1]
    return result


# ─── Levels ───────────────────────────────────────────────────────────────────

def auto_levels_parameters(buffer: PixelBuffer, auto_contrast: bool = True,
                           auto_brightness: bool = True):
    """
    (shadow_point, highlight_point, gamma) for auto_levels().

    Contrast stretches between the 2nd and 98th luma percentiles. Gamma is
    chosen so the median lands on 128 after the stretch, clamped to
    [0.1, 3.0]; a median at or outside the stretch range leaves gamma at 1.
    """
    histogram = LumaHistogram(buffer)
    shadow, highlight = 0, 255
    if auto_contrast:
        shadow, highlight = histogram.percentile(2), histogram.percentile(98)

    gamma = 1.0
    if auto_brightness and highlight > shadow:
        mid = (histogram.percentile(50) - shadow) / (highlight - shadow)
        if 0 < mid < 1:
            gamma = math.log(mid) / math.log(128 / 255)
            gamma = max(0.1, min(3.0, gamma))

    return shadow, highlight, gamma


def auto_levels(buffer: PixelBuffer, auto_contrast: bool = True,
                auto_brightness: bool = True) -> PixelBuffer:
    """v' = ((v - shadow) / (highlight - shadow)) ^ (1/gamma) * 255 per RGB channel."""
    shadow, highlight, gamma = auto_levels_parameters(buffer, auto_contrast, auto_brightness)
    value_range = highlight - shadow
    if value_range <= 0:
        return buffer.copy()

    levels = np.clip((np.arange(256, dtype=np.float64) - shadow) / value_range, 0.0, 1.0)
    table = to_uint8(levels ** (1.0 / gamma) * 255)

    logger.debug(
        f"[Enhancer] Levels shadow={shadow} highlight={highlight} gamma={gamma:.3f}"
    )
    return _with_rgb(buffer, cv2.LUT(np.ascontiguousarray(buffer.rgb), table))


def adjust_brightness(buffer: PixelBuffer, delta: float) -> PixelBuffer:
    """Add `delta` (-100..100) to every RGB channel."""
    if not -100 <= delta <= 100:
        raise ValueError(f"Brightness delta must be in [-100, 100], got {delta}")
    return _with_rgb(buffer, buffer.rgb.astype(np.float64) + delta)


def adjust_contrast(buffer: PixelBuffer, factor: float) -> PixelBuffer:
    """Scale every RGB channel about mid-grey (128) by `factor` (0.5..2.0)."""
    if not 0.5 <= factor <= 2.0:
        raise ValueError(f"Contrast factor must be in [0.5, 2.0], got {factor}")
    return _with_rgb(buffer, (buffer.rgb.astype(np.float64) - 128) * factor + 128)


# ─── Glare / shadows ──────────────────────────────────────────────────────────

def remove_glare(buffer: PixelBuffer, threshold: float = 240,
                 strength: float = 0.7, max_spread: int = 30) -> PixelBuffer:
    """
    Darken glare pixels (luma above threshold, channel spread below
    max_spread) by a factor of 1 - 0.3 * strength.
    """
    rgb = buffer.rgb.astype(np.float64)
    spread = buffer.rgb.max(axis=2).astype(np.int16) - buffer.rgb.min(axis=2)
    glare = (buffer.luma() > threshold) & (spread < max_spread)

    rgb[glare] *= 1 - 0.3 * strength
    logger.debug(f"[Enhancer] Glare pixels: {int(glare.sum())}")
    return _with_rgb(buffer, rgb)


def remove_shadows(buffer: PixelBuffer, threshold: float = 50,
                   strength: float = 0.6, max_lift: float = 40.0) -> PixelBuffer:
    """
    Lift shadow pixels (luma below threshold) by up to max_lift, in
    proportion to how far below the threshold they are.
    """
    rgb = buffer.rgb.astype(np.float64)
    luma = buffer.luma()
    shadow = luma < threshold

    lift = strength * (threshold - luma) / threshold
    rgb[shadow] += (lift[shadow] * max_lift)[:, None]
    logger.debug(f"[Enhancer] Shadow pixels: {int(shadow.sum())}")
    return _with_rgb(buffer, rgb)


# ─── Denoise ──────────────────────────────────────────────────────────────────

def denoise(buffer: PixelBuffer, level: float, method: str = "bilateral",
            intensity_sigma: float = 50.0) -> PixelBuffer:
    """
    Gaussian or bilateral blur with spatial sigma 0.5 + 2.5 * level.

    Bilateral additionally weights neighbours by intensity difference
    (intensity_sigma), so edges survive. level 0 returns a copy.
    """
    if level <= 0:
        return buffer.copy()

    sigma = 0.5 + 2.5 * min(level, 1.0)
    ksize = 2 * int(math.ceil(2 * sigma)) + 1
    rgb = np.ascontiguousarray(buffer.rgb)

    if method == "gaussian":
        blurred = cv2.GaussianBlur(rgb, (ksize, ksize), sigma, borderType=cv2.BORDER_REPLICATE)
    elif method == "bilateral":
        blurred = cv2.bilateralFilter(rgb, ksize, intensity_sigma, sigma,
                                      borderType=cv2.BORDER_REPLICATE)
    else:
        raise ValueError(f"Unknown denoise method: {method}")

    logger.debug(f"[Enhancer] Denoise {method} sigma={sigma:.2f} ksize={ksize}")
    return _with_rgb(buffer, blurred)


# ─── Sharpen ──────────────────────────────────────────────────────────────────

NEGATIVE_LAPLACIAN = np.array([
    [0, -1, 0],
    [-1, 4, -1],
    [0, -1, 0],
], dtype=np.float64)


def sharpen_kernel(strength: float) -> np.ndarray:
    """3x3 kernel: centre 1 + 4s, 4-neighbours -s, corners 0."""
    s = strength
    return np.array([
        [0, -s, 0],
        [-s, 1 + 4 * s, -s],
        [0, -s, 0],
    ], dtype=np.float64)


def unsharp_mask_kernel(amount: float, radius: float) -> np.ndarray:
    """
    (1 + amount) * identity - amount * gaussian(radius), sized
    ceil(2 * radius) * 2 + 1. Coefficients sum to 1.
    """
    if radius <= 0:
        raise ValueError(f"radius must be positive, got {radius}")
    size = int(math.ceil(radius * 2)) * 2 + 1
    center = size // 2
    yy, xx = np.mgrid[0:size, 0:size]
    gaussian = np.exp(-((xx - center) ** 2 + (yy - center) ** 2) / (2 * radius ** 2))
    gaussian /= gaussian.sum()

    kernel = -amount * gaussian
    kernel[center, center] += 1 + amount
    return kernel


def sharpen(buffer: PixelBuffer, strength: float = 0.5, radius: float = 1.0) -> PixelBuffer:
    """
    Fixed-kernel sharpen. radius <= 1 uses the 3x3 kernel, larger radii
    the unsharp mask. Pixels closer to the border than the kernel reach
    are copied unchanged.
    """
    kernel = sharpen_kernel(strength) if radius <= 1 else unsharp_mask_kernel(strength, radius)
    reach = kernel.shape[0] // 2
    if buffer.width <= 2 * reach or buffer.height <= 2 * reach:
        return buffer.copy()

    src = buffer.rgb.astype(np.float64)
    result = cv2.filter2D(src, -1, kernel, borderType=cv2.BORDER_REPLICATE)
    result[:reach, :] = src[:reach, :]
    result[-reach:, :] = src[-reach:, :]
    result[:, :reach] = src[:, :reach]
    result[:, -reach:] = src[:, -reach:]
    return _with_rgb(buffer, result)


def sharpen_edge_aware(buffer: PixelBuffer, strength: float = 0.5) -> PixelBuffer:
    """
    3x3 sharpen whose per-pixel strength is s * (0.3 + 0.7 * edge), with
    edge = min(sobel magnitude / 255, 1). Flat regions get 30% of the
    sharpening, strong edges all of it.
    """
    if buffer.width < 3 or buffer.height < 3:
        return buffer.copy()

    edge = np.minimum(EdgeDetector().gradient_magnitude(buffer) / 255.0, 1.0)
    local_strength = strength * (0.3 + 0.7 * edge)

    src = buffer.rgb.astype(np.float64)
    laplacian = cv2.filter2D(src, -1, NEGATIVE_LAPLACIAN, borderType=cv2.BORDER_REPLICATE)
    result = src + local_strength[..., None] * laplacian
    return _with_rgb(buffer, _copy_border(result, src))


def to_grayscale(buffer: PixelBuffer) -> PixelBuffer:
    luma = to_uint8(buffer.luma())
    return _with_rgb(buffer, np.repeat(luma[..., None], 3, axis=2))


# ─── Pipeline ─────────────────────────────────────────────────────────────────

class EnhancementPipeline:
    """
    Runs the enabled filters in fixed order.

    The pipeline itself is stateless: construction fixes the tunables,
    each enhance() call only reads its arguments.
    """

    def __init__(
        self,
        denoise_method: str = "bilateral",
        sharpen_method: str = "edge_aware",
        sharpen_strength: float = 0.5,
        sharpen_radius: float = 1.0,
        glare_threshold: float = 240,
        glare_strength: float = 0.7,
        shadow_threshold: float = 50,
        shadow_strength: float = 0.6,
    ):
        if denoise_method not in ("bilateral", "gaussian"):
            raise ValueError(f"Unknown denoise method: {denoise_method}")
        if sharpen_method not in ("edge_aware", "unsharp"):
            raise ValueError(f"Unknown sharpen method: {sharpen_method}")

        self.denoise_method = denoise_method
        self.sharpen_method = sharpen_method
        self.sharpen_strength = sharpen_strength
        self.sharpen_radius = sharpen_radius
        self.glare_threshold = glare_threshold
        self.glare_strength = glare_strength
        self.shadow_threshold = shadow_threshold
        self.shadow_strength = shadow_strength

    def enhance(self, buffer: PixelBuffer, options: Optional[EnhancementOptions] = None) -> PixelBuffer:
        """
        Apply every stage enabled in `options` (defaults if None).

        Returns a new buffer; `buffer` is never modified.
        """
        opts = options or EnhancementOptions()
        applied = []
        result = buffer

        if opts.auto_contrast or opts.auto_brightness:
            result = auto_levels(result, opts.auto_contrast, opts.auto_brightness)
            applied.append("levels")

        if opts.remove_glare:
            result = remove_glare(result, self.glare_threshold, self.glare_strength)
            applied.append("glare")

        if opts.remove_shadows:
            result = remove_shadows(result, self.shadow_threshold, self.shadow_strength)
            applied.append("shadows")

        if opts.denoise_level > 0:
            result = denoise(result, opts.denoise_level, self.denoise_method)
            applied.append(f"denoise({opts.denoise_level:.2f})")

        if opts.sharpen:
            if self.sharpen_method == "edge_aware":
                result = sharpen_edge_aware(result, self.sharpen_strength)
            else:
                result = sharpen(result, self.sharpen_strength, self.sharpen_radius)
            applied.append(f"sharpen({self.sharpen_method})")

        if not opts.preserve_colors:
            result = to_grayscale(result)
            applied.append("grayscale")

        if result is buffer:
            result = buffer.copy()

        logger.info(f"[Enhancer] {buffer.width}x{buffer.height} applied: {applied or ['none']}")
        return result

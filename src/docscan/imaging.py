"""
Image decode/encode at the boundary of the engine.

OpenCV works in BGR(A); the engine works in RGBA. Everything that crosses
between files/bytes and PixelBuffer goes through here.
"""

import math
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple, Union

import cv2
import numpy as np
from loguru import logger

from docscan.errors import DocScanError, ImageDecodeError
from docscan.models import PixelBuffer
from docscan.utils import ensure_directory, validate_image_file


PathLike = Union[str, Path]

# Formats whose encoder takes a quality setting, and the flag that sets it
QUALITY_FLAGS = {
    '.jpg': cv2.IMWRITE_JPEG_QUALITY,
    '.jpeg': cv2.IMWRITE_JPEG_QUALITY,
    '.webp': cv2.IMWRITE_WEBP_QUALITY,
}

# Formats that cannot store an alpha channel
OPAQUE_FORMATS = {'.jpg', '.jpeg', '.bmp'}


def encoder_quality(quality: float) -> int:
    """Map a 0-1 output quality onto the encoder's 1-100 scale."""
    return int(max(1, min(100, round(quality * 100))))


def _from_cv(img: np.ndarray) -> PixelBuffer:
    if img.dtype == np.uint16:
        img = (img >> 8).astype(np.uint8)
    elif img.dtype != np.uint8:
        raise ImageDecodeError(f"Unsupported pixel depth: {img.dtype}")

    if img.ndim == 2:
        return PixelBuffer.from_array(img)
    if img.shape[2] == 3:
        return PixelBuffer.from_array(cv2.cvtColor(img, cv2.COLOR_BGR2RGB))
    if img.shape[2] == 4:
        return PixelBuffer.from_array(cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA))
    raise ImageDecodeError(f"Unsupported channel count: {img.shape[2]}")


def decode_image(data: bytes) -> PixelBuffer:
    """
    Decode encoded image bytes (JPEG, PNG, WebP, ...) into RGBA.

    Raises:
        ImageDecodeError: empty or undecodable data
    """
    if not data:
        raise ImageDecodeError("No image data")

    img = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    if img is None:
        raise ImageDecodeError(f"Cannot decode image ({len(data)} bytes)")
    return _from_cv(img)


def load_image(image_path: PathLike) -> PixelBuffer:
    """
    Read an image file into RGBA.

    Raises:
        ImageDecodeError: missing, empty, wrong extension or undecodable
    """
    is_valid, message = validate_image_file(str(image_path))
    if not is_valid:
        raise ImageDecodeError(f"{message}: {image_path}")

    with open(image_path, 'rb') as f:
        data = f.read()

    try:
        buffer = decode_image(data)
    except ImageDecodeError as e:
        raise ImageDecodeError(f"Cannot read: {image_path} ({e})") from e

    logger.debug(f"Loaded {image_path} ({buffer.width}x{buffer.height})")
    return buffer


def encode_image(buffer: PixelBuffer, ext: str = '.jpg', quality: float = 0.9) -> bytes:
    """
    Encode a buffer. Alpha is dropped for formats that cannot hold it.

    Args:
        buffer: Image to encode
        ext: Target format extension ('.jpg', '.png', '.webp', ...)
        quality: 0-1, used by JPEG and WebP
    """
    ext = ext.lower() if ext.startswith('.') else f'.{ext.lower()}'

    if ext in OPAQUE_FORMATS:
        img = cv2.cvtColor(np.ascontiguousarray(buffer.data), cv2.COLOR_RGBA2BGR)
    else:
        img = cv2.cvtColor(np.ascontiguousarray(buffer.data), cv2.COLOR_RGBA2BGRA)

    params = []
    if ext in QUALITY_FLAGS:
        params = [int(QUALITY_FLAGS[ext]), encoder_quality(quality)]

    ok, encoded = cv2.imencode(ext, img, params)
    if not ok:
        raise DocScanError(f"Encoding to {ext} failed")
    return encoded.tobytes()


def save_image(buffer: PixelBuffer, output_path: PathLike, quality: float = 0.9) -> str:
    """
    Write a buffer to disk; the format follows the file extension.

    Returns:
        The output path
    """
    output_path = str(output_path)
    ensure_directory(os.path.dirname(output_path) or ".")

    data = encode_image(buffer, Path(output_path).suffix or '.jpg', quality)
    with open(output_path, 'wb') as f:
        f.write(data)

    logger.info(f"Saved {buffer.width}x{buffer.height} image to {output_path}")
    return output_path


# ─── Compression ──────────────────────────────────────────────────────────────

COMPRESSION_LEVELS = {
    'high-quality': {'quality': 0.95, 'max_dimension': 2048, 'format': 'jpeg'},
    'medium': {'quality': 0.8, 'max_dimension': 1600, 'format': 'jpeg'},
    'small-file': {'quality': 0.6, 'max_dimension': 1200, 'format': 'webp'},
}

THUMBNAIL_MAX_DIMENSION = 300
THUMBNAIL_QUALITY = 0.7

FORMAT_EXTENSIONS = {'jpeg': '.jpg', 'webp': '.webp', 'png': '.png'}


@dataclass(frozen=True)
class CompressionResult:
    """Encoded image plus a JPEG thumbnail, with their sizes in bytes."""
    data: bytes
    thumbnail: bytes
    format: str
    dimensions: Tuple[int, int]
    thumbnail_dimensions: Tuple[int, int]
    original_size: int

    @property
    def compressed_size(self) -> int:
        return len(self.data)

    @property
    def thumbnail_size(self) -> int:
        return len(self.thumbnail)

    @property
    def compression_ratio(self) -> float:
        """Fraction of the original size saved (negative if the output grew)."""
        if self.original_size <= 0:
            return 0.0
        return (self.original_size - self.compressed_size) / self.original_size


def fit_dimensions(width: int, height: int, max_dimension: int) -> Tuple[int, int]:
    """
    Scale (width, height) so the longest side is `max_dimension`,
    keeping the aspect ratio. Never upscales.
    """
    if width <= max_dimension and height <= max_dimension:
        return width, height

    aspect = width / height
    # half-up rounding
    if width > height:
        return max_dimension, max(1, int(math.floor(max_dimension / aspect + 0.5)))
    return max(1, int(math.floor(max_dimension * aspect + 0.5))), max_dimension


def resize_to_fit(buffer: PixelBuffer, max_dimension: int) -> PixelBuffer:
    width, height = fit_dimensions(buffer.width, buffer.height, max_dimension)
    if (width, height) == buffer.size:
        return buffer
    resized = cv2.resize(np.ascontiguousarray(buffer.data), (width, height),
                         interpolation=cv2.INTER_AREA)
    return PixelBuffer(width, height, resized)


def compress_image(buffer: PixelBuffer,
                   level: str = 'medium',
                   fmt: Optional[str] = None,
                   max_dimension: Optional[int] = None,
                   quality: Optional[float] = None,
                   original_size: Optional[int] = None) -> CompressionResult:
    """
    Downscale and encode a finished page for storage, plus a thumbnail.

    Args:
        buffer: Image to compress
        level: 'high-quality', 'medium' or 'small-file'
        fmt: 'jpeg', 'webp' or 'png' (default: the level's format)
        max_dimension: Longest output side (default: the level's limit)
        quality: 0-1 encoder quality (default: the level's quality)
        original_size: Size in bytes to compare against (default: raw RGBA size)

    Raises:
        ValueError: unknown level or format, or quality outside 0-1
    """
    if level not in COMPRESSION_LEVELS:
        raise ValueError(f"Unknown compression level: {level!r}")
    settings = COMPRESSION_LEVELS[level]

    fmt = (fmt or settings['format']).lower()
    if fmt not in FORMAT_EXTENSIONS:
        raise ValueError(f"Unsupported compression format: {fmt!r}")

    quality = settings['quality'] if quality is None else quality
    if not 0.0 <= quality <= 1.0:
        raise ValueError(f"quality must be in [0, 1], got {quality}")

    max_dimension = max_dimension or settings['max_dimension']
    if original_size is None:
        original_size = buffer.data.nbytes

    page = resize_to_fit(buffer, max_dimension)
    thumb = resize_to_fit(buffer, THUMBNAIL_MAX_DIMENSION)

    result = CompressionResult(
        data=encode_image(page, FORMAT_EXTENSIONS[fmt], quality),
        thumbnail=encode_image(thumb, '.jpg', THUMBNAIL_QUALITY),
        format=fmt,
        dimensions=page.size,
        thumbnail_dimensions=thumb.size,
        original_size=original_size,
    )

    logger.info(
        f"[Imaging] Compressed {buffer.width}x{buffer.height} -> {page.width}x{page.height} "
        f"{fmt} ({format_file_size(original_size)} -> {format_file_size(result.compressed_size)}, "
        f"{result.compression_ratio:.1%} saved)"
    )
    return result


def compression_stats(results: Iterable[CompressionResult]) -> Dict[str, float]:
    """Totals over several compressions."""
    results = list(results)
    original = sum(r.original_size for r in results)
    compressed = sum(r.compressed_size for r in results)
    thumbnails = sum(r.thumbnail_size for r in results)

    return {
        'original_size': original,
        'compressed_size': compressed,
        'thumbnail_size': thumbnails,
        'space_saved': original - compressed,
        'compression_ratio': (original - compressed) / original if original > 0 else 0.0,
    }


def format_file_size(size: int) -> str:
    """Human-readable byte count, e.g. '1.5 MB'."""
    if size <= 0:
        return '0 B'
    value = float(size)
    for unit in ('B', 'KB', 'MB'):
        if value < 1024:
            return f"{round(value, 1):g} {unit}"
        value /= 1024
    return f"{round(value, 1):g} GB"

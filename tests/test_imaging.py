"""
Tests for image decode/encode helpers
"""

import numpy as np
import pytest

from docscan.errors import ImageDecodeError
from docscan.imaging import (
    THUMBNAIL_MAX_DIMENSION,
    compress_image,
    compression_stats,
    decode_image,
    encode_image,
    encoder_quality,
    fit_dimensions,
    format_file_size,
    load_image,
    save_image,
)
from docscan.models import PixelBuffer


@pytest.fixture
def rgba_frame():
    ys, xs = np.mgrid[0:40, 0:60]
    img = np.stack([xs * 4, ys * 6, (xs + ys) * 2, np.full_like(xs, 128)], axis=-1)
    return PixelBuffer.from_array(img.astype(np.uint8))


def test_png_round_trip_keeps_alpha(rgba_frame):
    decoded = decode_image(encode_image(rgba_frame, '.png'))
    assert decoded.size == rgba_frame.size
    assert decoded.to_bytes() == rgba_frame.to_bytes()


def test_jpeg_drops_alpha(rgba_frame):
    decoded = decode_image(encode_image(rgba_frame, 'jpg', quality=1.0))
    assert decoded.size == rgba_frame.size
    assert (decoded.alpha == 255).all()
    # lossy, but close
    diff = np.abs(decoded.rgb.astype(int) - rgba_frame.rgb.astype(int))
    assert diff.mean() < 5


def test_lower_quality_gives_smaller_jpeg(gradient_frame):
    assert len(encode_image(gradient_frame, '.jpg', 0.2)) < len(encode_image(gradient_frame, '.jpg', 0.95))


@pytest.mark.parametrize("quality, expected", [(0.0, 1), (0.9, 90), (1.0, 100), (1.7, 100)])
def test_encoder_quality(quality, expected):
    assert encoder_quality(quality) == expected


def test_decode_rejects_garbage():
    with pytest.raises(ImageDecodeError):
        decode_image(b"")
    with pytest.raises(ImageDecodeError):
        decode_image(b"definitely not an image")


def test_save_and_load(tmp_path, rgba_frame):
    path = save_image(rgba_frame, tmp_path / "out" / "page.png")
    loaded = load_image(path)
    assert loaded.to_bytes() == rgba_frame.to_bytes()


def test_load_missing_file(tmp_path):
    with pytest.raises(ImageDecodeError):
        load_image(tmp_path / "nope.png")


def test_load_wrong_extension(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("hello")
    with pytest.raises(ImageDecodeError):
        load_image(path)


def test_load_corrupt_file(tmp_path):
    path = tmp_path / "broken.jpg"
    path.write_bytes(b"\xff\xd8 truncated")
    with pytest.raises(ImageDecodeError):
        load_image(path)


# ─── Compression ──────────────────────────────────────────────────────────────

@pytest.fixture
def wide_page():
    ys, xs = np.mgrid[0:1200, 0:2400]
    img = np.stack([xs % 256, ys % 256, (xs // 10 + ys // 10) % 256], axis=-1)
    return PixelBuffer.from_array(img.astype(np.uint8))


@pytest.mark.parametrize("level, fmt, dimensions", [
    ("high-quality", "jpeg", (2048, 1024)),
    ("medium", "jpeg", (1600, 800)),
    ("small-file", "webp", (1200, 600)),
])
def test_compression_levels(wide_page, level, fmt, dimensions):
    result = compress_image(wide_page, level)

    assert result.format == fmt
    assert result.dimensions == dimensions
    assert decode_image(result.data).size == dimensions
    assert result.thumbnail_dimensions == (THUMBNAIL_MAX_DIMENSION, 150)
    assert decode_image(result.thumbnail).size == (300, 150)
    assert result.original_size == 2400 * 1200 * 4
    assert result.compressed_size == len(result.data)
    assert 0.0 < result.compression_ratio < 1.0


def test_small_image_is_not_upscaled(rgba_frame):
    result = compress_image(rgba_frame, "high-quality")
    assert result.dimensions == (60, 40)
    assert result.thumbnail_dimensions == (60, 40)


@pytest.mark.parametrize("size, expected", [
    ((200, 150), (100, 75)),
    ((150, 200), (75, 100)),
    ((100, 100), (100, 100)),
    ((90, 60), (90, 60)),
    ((300, 101), (100, 34)),
])
def test_fit_dimensions(size, expected):
    assert fit_dimensions(*size, 100) == expected


def test_max_dimension_override(gradient_frame):
    result = compress_image(gradient_frame, "medium", max_dimension=100)
    longest = max(result.dimensions)
    assert longest == 100
    assert decode_image(result.data).size == result.dimensions


def test_quality_override_gives_smaller_output(wide_page):
    default = compress_image(wide_page, "medium")
    lower = compress_image(wide_page, "medium", quality=0.2)
    assert lower.compressed_size < default.compressed_size


def test_png_keeps_alpha(rgba_frame):
    result = compress_image(rgba_frame, "small-file", fmt="PNG")
    assert result.format == "png"
    decoded = decode_image(result.data)
    assert decoded.to_bytes() == rgba_frame.to_bytes()


def test_compression_rejects_bad_arguments(rgba_frame):
    with pytest.raises(ValueError):
        compress_image(rgba_frame, "tiny")
    with pytest.raises(ValueError):
        compress_image(rgba_frame, "medium", fmt="gif")
    with pytest.raises(ValueError):
        compress_image(rgba_frame, "medium", quality=1.5)


def test_compression_stats(rgba_frame, gradient_frame):
    results = [compress_image(rgba_frame, "medium"), compress_image(gradient_frame, "small-file")]
    stats = compression_stats(results)

    original = sum(r.original_size for r in results)
    compressed = sum(r.compressed_size for r in results)
    assert stats["original_size"] == original
    assert stats["compressed_size"] == compressed
    assert stats["thumbnail_size"] == sum(r.thumbnail_size for r in results)
    assert stats["space_saved"] == original - compressed
    assert stats["compression_ratio"] == pytest.approx((original - compressed) / original)

    assert compression_stats([])["compression_ratio"] == 0.0


@pytest.mark.parametrize("size, text", [
    (0, "0 B"), (512, "512 B"), (1536, "1.5 KB"), (1024 ** 2, "1 MB"), (3 * 1024 ** 3, "3 GB"),
])
def test_format_file_size(size, text):
    assert format_file_size(size) == text

"""
docscan - document geometry and image-quality engine.

Finds a rectangular document in a photographed frame, rectifies its
perspective and restores image quality (levels, glare, shadows, noise,
sharpness). Pixel buffers are RGBA numpy arrays; decoding and encoding
happen at the boundary (docscan.imaging).

Usage
-----
from docscan import DocumentEngine
from docscan.imaging import load_image, save_image

engine = DocumentEngine()
frame  = load_image("photo.jpg")
result = engine.detect(frame)
doc    = engine.process_document(frame, result.bounds)
save_image(doc.image, "scan.jpg", doc.options.output_quality)
"""

from docscan.engine import DocumentEngine
from docscan.errors import (
    ConfigError,
    DocScanError,
    FrameUnavailable,
    ImageDecodeError,
    InsufficientEdges,
    InsufficientLines,
    InvalidGeometry,
)
from docscan.models import (
    DetectionResult,
    DocumentBounds,
    EnhancementOptions,
    ImageAnalysis,
    Line,
    PerspectiveAssessment,
    PixelBuffer,
    Point,
    ProcessedDocument,
    SchedulerState,
)

__version__ = "1.0.0"

__all__ = [
    "DocumentEngine",
    "PixelBuffer",
    "Point",
    "Line",
    "DocumentBounds",
    "DetectionResult",
    "EnhancementOptions",
    "ImageAnalysis",
    "PerspectiveAssessment",
    "ProcessedDocument",
    "SchedulerState",
    "DocScanError",
    "InsufficientEdges",
    "InsufficientLines",
    "InvalidGeometry",
    "FrameUnavailable",
    "ConfigError",
    "ImageDecodeError",
]

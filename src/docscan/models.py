"""
Data records shared by every stage of the engine.

Pixel buffers and geometry are plain dataclasses (they carry numpy arrays
and are produced internally). EnhancementOptions is a pydantic model since
it is the one record callers build by hand, often from loosely-typed
dicts coming out of a UI layer.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, Sequence, Tuple, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ─── Pixel buffer ─────────────────────────────────────────────────────────────

WHITE = (255, 255, 255, 255)


@dataclass(frozen=True, eq=False)
class PixelBuffer:
    """
    RGBA image, row-major, 4 channels per pixel.

    The buffer takes ownership of `data` and marks it read-only, so a
    stage can never modify the buffer it was handed. Every transform
    allocates and returns a new PixelBuffer.
    """
    width: int
    height: int
    data: np.ndarray

    def __post_init__(self):
        arr = np.ascontiguousarray(self.data, dtype=np.uint8)
        if arr.shape != (self.height, self.width, 4):
            raise ValueError(
                f"Pixel data shape {arr.shape} does not match "
                f"{self.height}x{self.width}x4"
            )
        arr.setflags(write=False)
        object.__setattr__(self, "data", arr)

    @classmethod
    def from_array(cls, array: np.ndarray) -> "PixelBuffer":
        """Build from a gray (H,W), RGB (H,W,3) or RGBA (H,W,4) array. Always copies."""
        arr = np.asarray(array)
        if arr.ndim == 2:
            arr = np.stack([arr, arr, arr], axis=-1)
        if arr.ndim != 3 or arr.shape[2] not in (3, 4):
            raise ValueError(f"Unsupported array shape: {arr.shape}")

        h, w = arr.shape[:2]
        rgba = np.empty((h, w, 4), dtype=np.uint8)
        rgba[..., :3] = np.clip(arr[..., :3], 0, 255)
        rgba[..., 3] = np.clip(arr[..., 3], 0, 255) if arr.shape[2] == 4 else 255
        return cls(w, h, rgba)

    @classmethod
    def from_rgba_bytes(cls, width: int, height: int, raw: bytes) -> "PixelBuffer":
        """Build from a flat RGBA byte string (width * height * 4 bytes)."""
        expected = width * height * 4
        if len(raw) != expected:
            raise ValueError(f"Expected {expected} bytes, got {len(raw)}")
        arr = np.frombuffer(raw, dtype=np.uint8).reshape(height, width, 4).copy()
        return cls(width, height, arr)

    @classmethod
    def blank(cls, width: int, height: int, color: Sequence[int] = WHITE) -> "PixelBuffer":
        arr = np.empty((height, width, 4), dtype=np.uint8)
        arr[...] = np.asarray(color, dtype=np.uint8)
        return cls(width, height, arr)

    @property
    def rgb(self) -> np.ndarray:
        return self.data[..., :3]

    @property
    def alpha(self) -> np.ndarray:
        return self.data[..., 3]

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def luma(self) -> np.ndarray:
        """Float luma plane, 0.299R + 0.587G + 0.114B."""
        rgb = self.data[..., :3].astype(np.float64)
        return 0.299 * rgb[..., 0] + 0.587 * rgb[..., 1] + 0.114 * rgb[..., 2]

    def to_bytes(self) -> bytes:
        return self.data.tobytes()

    def copy(self) -> "PixelBuffer":
        return PixelBuffer(self.width, self.height, self.data.copy())

    def __repr__(self) -> str:
        return f"PixelBuffer({self.width}x{self.height})"


# ─── Geometry ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Point:
    x: float
    y: float

    def as_tuple(self) -> Tuple[float, float]:
        return (self.x, self.y)

    def distance_to(self, other: "Point") -> float:
        return math.hypot(other.x - self.x, other.y - self.y)


@dataclass(frozen=True)
class Line:
    """Hough line in polar form. theta in [0, pi), rho signed."""
    rho: float
    theta: float
    votes: int


@dataclass(frozen=True)
class DocumentBounds:
    """
    Four document corners plus a detection confidence.

    The perimeter order top_left -> top_right -> bottom_right -> bottom_left
    is a simple quadrilateral traversed in one direction. Corners are not
    assumed to be axis aligned.
    """
    top_left: Point
    top_right: Point
    bottom_left: Point
    bottom_right: Point
    confidence: float = 0.0

    @classmethod
    def from_points(cls, points: Sequence[Union[Point, Sequence[float]]],
                    confidence: float = 0.0) -> "DocumentBounds":
        """
        Order four arbitrary points as document corners.

        top-left has the smallest x+y, bottom-right the largest,
        top-right the smallest y-x, bottom-left the largest y-x.
        """
        if len(points) != 4:
            raise ValueError(f"Need exactly 4 points, got {len(points)}")
        pts = np.array(
            [p.as_tuple() if isinstance(p, Point) else tuple(p) for p in points],
            dtype=np.float64,
        )
        s = pts.sum(axis=1)
        diff = pts[:, 1] - pts[:, 0]
        tl = pts[np.argmin(s)]
        br = pts[np.argmax(s)]
        tr = pts[np.argmin(diff)]
        bl = pts[np.argmax(diff)]
        return cls(
            top_left=Point(float(tl[0]), float(tl[1])),
            top_right=Point(float(tr[0]), float(tr[1])),
            bottom_left=Point(float(bl[0]), float(bl[1])),
            bottom_right=Point(float(br[0]), float(br[1])),
            confidence=confidence,
        )

    def corners(self) -> Tuple[Point, Point, Point, Point]:
        """Perimeter order: top-left, top-right, bottom-right, bottom-left."""
        return (self.top_left, self.top_right, self.bottom_right, self.bottom_left)

    def area(self) -> float:
        """Shoelace area of the perimeter polygon."""
        pts = self.corners()
        total = 0.0
        for i in range(4):
            j = (i + 1) % 4
            total += pts[i].x * pts[j].y - pts[j].x * pts[i].y
        return abs(total) / 2.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "top_left": self.top_left.as_tuple(),
            "top_right": self.top_right.as_tuple(),
            "bottom_left": self.bottom_left.as_tuple(),
            "bottom_right": self.bottom_right.as_tuple(),
            "confidence": round(self.confidence, 4),
        }


@dataclass(frozen=True)
class DetectionResult:
    """bounds is None only when too few edge points were found."""
    bounds: Optional[DocumentBounds]
    is_document_detected: bool
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bounds": self.bounds.to_dict() if self.bounds else None,
            "is_document_detected": self.is_document_detected,
            "confidence": round(self.confidence, 4),
        }


# ─── Enhancement options ──────────────────────────────────────────────────────

class EnhancementOptions(BaseModel):
    """
    Which corrective filters to run, and how hard.

    Accepts snake_case or camelCase keys (autoContrast, denoiseLevel, ...).
    """
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="forbid",
    )

    auto_contrast: bool   = Field(True,  description="Stretch levels between the 2nd/98th luma percentiles")
    auto_brightness: bool = Field(True,  description="Gamma-correct so the median luma lands mid-scale")
    sharpen: bool         = Field(True,  description="Apply the sharpen stage")
    remove_glare: bool    = Field(False, description="Tone down bright, colourless glare pixels")
    remove_shadows: bool  = Field(False, description="Lift dark shadow pixels")
    denoise_level: float  = Field(0.3,   ge=0, le=1, description="Blur strength, 0 disables denoising")
    output_quality: float = Field(0.9,   ge=0, le=1, description="Encoder quality used at the boundary")
    preserve_colors: bool = Field(True,  description="False collapses the output to grayscale")

    def merged(self, overrides: Union["EnhancementOptions", Dict[str, Any], None] = None) -> "EnhancementOptions":
        """Return a copy with the explicitly set fields of `overrides` applied."""
        if overrides is None:
            return self
        if not isinstance(overrides, EnhancementOptions):
            overrides = EnhancementOptions.model_validate(overrides)
        update = overrides.model_dump(exclude_unset=True)
        return EnhancementOptions(**{**self.model_dump(), **update})


# ─── Analysis ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ImageAnalysis:
    """Quality statistics of one buffer. Never mutated after creation."""
    brightness: float
    contrast: float
    noise_level: float
    sharpness: float
    has_glare: bool
    has_shadows: bool
    recommended: EnhancementOptions = field(default_factory=EnhancementOptions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "brightness": round(self.brightness, 1),
            "contrast": round(self.contrast, 3),
            "noise_level": round(self.noise_level, 3),
            "sharpness": round(self.sharpness, 3),
            "has_glare": self.has_glare,
            "has_shadows": self.has_shadows,
            "recommended": self.recommended.model_dump(),
        }


# ─── Live detection ───────────────────────────────────────────────────────────

@dataclass
class SchedulerState:
    """Owned by exactly one LiveDetectionScheduler for one start/stop cycle."""
    is_running: bool = True
    last_run_at_millis: Optional[float] = None
    consecutive_errors: int = 0


# ─── Engine results ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PerspectiveAssessment:
    """How far a quadrilateral is from a rectangle, and what to do about it."""
    distortion: float
    recommended: EnhancementOptions

    def to_dict(self) -> Dict[str, Any]:
        return {
            "distortion": round(self.distortion, 3),
            "recommended": self.recommended.model_dump(),
        }


@dataclass(frozen=True)
class ProcessedDocument:
    image: PixelBuffer
    bounds: DocumentBounds
    analysis: Optional[ImageAnalysis] = None
    options: Optional[EnhancementOptions] = None

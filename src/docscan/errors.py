"""
Error taxonomy for the document geometry engine.

Only InvalidGeometry is meant to reach a caller of rectify()/enhance().
The detection errors are recovered locally (fallback bounds) and
FrameUnavailable is counted by the live scheduler, never raised to callers.
"""


class DocScanError(Exception):
    """Base class for every error raised by docscan."""


class InsufficientEdges(DocScanError):
    """Too few edge points were found to attempt line detection."""

    def __init__(self, found: int, required: int):
        self.found = found
        self.required = required
        super().__init__(f"Only {found} edge points found (need {required})")


class InsufficientLines(DocScanError):
    """Not enough lines (overall or per orientation) to build a quadrilateral."""


class InvalidGeometry(DocScanError):
    """Degenerate quadrilateral or singular homography."""


class FrameUnavailable(DocScanError):
    """The live frame source returned no frame for this tick."""


class ConfigError(DocScanError):
    """Configuration file exists but cannot be parsed."""


class ImageDecodeError(DocScanError):
    """Bytes or file could not be decoded into a pixel buffer."""

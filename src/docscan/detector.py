"""
Document detection: edges -> Hough lines -> quadrilateral.
"""

from typing import Optional

from loguru import logger

from docscan.edge_detector import EdgeDetector
from docscan.errors import InsufficientEdges, InsufficientLines
from docscan.hough import HoughLineFinder
from docscan.models import DetectionResult, PixelBuffer
from docscan.quadrilateral import QuadrilateralExtractor


class DocumentDetector:
    """
    Composes the three detection stages.

    detect() always returns a DetectionResult. Too few edge points gives
    no bounds and zero confidence; every later failure gives the
    low-confidence fallback rectangle so a preview always has a frame to
    draw.
    """

    def __init__(
        self,
        edge_detector: Optional[EdgeDetector] = None,
        line_finder: Optional[HoughLineFinder] = None,
        extractor: Optional[QuadrilateralExtractor] = None,
        min_edge_points: int = 100,
    ):
        self.edge_detector = edge_detector or EdgeDetector()
        self.line_finder = line_finder or HoughLineFinder()
        self.extractor = extractor or QuadrilateralExtractor()
        self.min_edge_points = min_edge_points

    def detect(self, buffer: PixelBuffer) -> DetectionResult:
        width, height = buffer.width, buffer.height
        try:
            points = self.edge_detector.detect(buffer)
            if len(points) < self.min_edge_points:
                raise InsufficientEdges(len(points), self.min_edge_points)

            lines = self.line_finder.find_lines(points, width, height)
            bounds = self.extractor.extract(lines, width, height)

        except InsufficientEdges as e:
            logger.info(f"[Detector] {e}")
            return DetectionResult(bounds=None, is_document_detected=False, confidence=0.0)

        except InsufficientLines as e:
            logger.warning(f"[Detector] {e}; using fallback bounds")
            return self._fallback(width, height)

        except Exception as e:
            logger.exception(f"[Detector] Detection failed: {e}")
            return self._fallback(width, height)

        detected = self.extractor.is_detected(bounds.confidence)
        logger.info(
            f"[Detector] {width}x{height}: confidence={bounds.confidence:.3f} detected={detected}"
        )
        return DetectionResult(
            bounds=bounds,
            is_document_detected=detected,
            confidence=bounds.confidence,
        )

    def _fallback(self, width: int, height: int) -> DetectionResult:
        bounds = self.extractor.fallback(width, height)
        return DetectionResult(
            bounds=bounds,
            is_document_detected=self.extractor.is_detected(bounds.confidence),
            confidence=bounds.confidence,
        )

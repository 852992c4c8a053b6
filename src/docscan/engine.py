"""
DocumentEngine - the single entry point collaborators use.

Wires every stage from the configuration and exposes detection,
rectification, analysis and enhancement, plus live-preview detection.
Everything except the live scheduler is stateless per call, so one engine
can serve several threads at once.
"""

import math
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from loguru import logger

from docscan import enhancer
from docscan.analyzer import ImageQualityAnalyzer
from docscan.config import deep_merge, default_config, load_config
from docscan.detector import DocumentDetector
from docscan.edge_detector import EdgeDetector
from docscan.hough import HoughLineFinder
from docscan.models import (
    DetectionResult,
    DocumentBounds,
    EnhancementOptions,
    ImageAnalysis,
    PerspectiveAssessment,
    PixelBuffer,
    ProcessedDocument,
)
from docscan.quadrilateral import QuadrilateralExtractor, assess_perspective
from docscan.scheduler import FrameSource, LiveDetectionScheduler, ResultCallback
from docscan.utils import setup_logging
from docscan.warper import PerspectiveWarper


OptionsLike = Union[EnhancementOptions, Dict[str, Any], None]


def _as_options(options: OptionsLike) -> Optional[EnhancementOptions]:
    if options is None or isinstance(options, EnhancementOptions):
        return options
    return EnhancementOptions.model_validate(options)


class DocumentEngine:
    """
    Document geometry and image-quality engine.

    Usage:
        engine = DocumentEngine()
        result = engine.detect(frame)
        if result.is_document_detected:
            flat = engine.rectify(frame, result.bounds)
            final = engine.enhance(flat, engine.analyze(flat).recommended)
    """

    def __init__(self, config: Optional[Dict] = None,
                 config_path: Optional[Union[str, Path]] = None):
        """
        Args:
            config: Configuration dict, merged over the defaults. Takes
                precedence over config_path.
            config_path: YAML file to load (default: config/engine_config.yaml)
        """
        if config is not None:
            self.config = deep_merge(default_config(), config)
        else:
            self.config = load_config(config_path)

        edges = self.config['edges']
        hough = self.config['hough']
        quad = self.config['quadrilateral']
        analysis = self.config['analysis']
        enhancement = self.config['enhancement']
        scheduler = self.config['scheduler']

        self.detector = DocumentDetector(
            edge_detector=EdgeDetector(threshold=edges['threshold']),
            line_finder=HoughLineFinder(
                rho_resolution=hough['rho_resolution'],
                theta_resolution=math.radians(hough['theta_resolution_deg']),
                vote_threshold=hough['vote_threshold'],
                max_lines=hough['max_lines'],
                min_rho_separation=hough['min_rho_separation'],
                min_theta_separation=math.radians(hough['min_theta_separation_deg']),
            ),
            extractor=QuadrilateralExtractor(
                min_lines=quad['min_lines'],
                detection_threshold=quad['detection_threshold'],
                fallback_margin=quad['fallback_margin'],
                fallback_confidence=quad['fallback_confidence'],
            ),
            min_edge_points=edges['min_edge_points'],
        )
        self.warper = PerspectiveWarper(
            max_output_dimension=self.config['warp']['max_output_dimension'],
        )
        self.analyzer = ImageQualityAnalyzer(**analysis)
        self.pipeline = enhancer.EnhancementPipeline(**enhancement)
        self.scheduler = LiveDetectionScheduler(
            detector=self.detector,
            period_ms=scheduler['period_ms'],
            max_consecutive_errors=scheduler['max_consecutive_errors'],
        )

        logger.info("[Engine] Document engine initialised")

    def configure_logging(self):
        """Install the sinks named in the `logging` config section."""
        setup_logging(self.config['logging']['file'], self.config['logging']['level'])

    # ── Geometry ──────────────────────────────────────────────────────────────

    def detect(self, frame: PixelBuffer) -> DetectionResult:
        """Locate the document. Never raises."""
        return self.detector.detect(frame)

    def rectify(self, frame: PixelBuffer, bounds: DocumentBounds, quality: float = 1.0) -> PixelBuffer:
        """
        Warp the document inside `bounds` into an upright rectangle.

        Raises:
            InvalidGeometry: degenerate quadrilateral or singular homography
        """
        return self.warper.warp(frame, bounds, quality)

    def assess_perspective(self, bounds: DocumentBounds) -> PerspectiveAssessment:
        return assess_perspective(bounds)

    # ── Quality ───────────────────────────────────────────────────────────────

    def analyze(self, frame: PixelBuffer) -> ImageAnalysis:
        return self.analyzer.analyze(frame)

    def enhance(self, frame: PixelBuffer, options: OptionsLike = None) -> PixelBuffer:
        """Apply the filters enabled in `options` (EnhancementOptions or dict)."""
        return self.pipeline.enhance(frame, _as_options(options))

    def enhance_with_analysis(self, frame: PixelBuffer,
                              overrides: OptionsLike = None) -> Tuple[PixelBuffer, ImageAnalysis]:
        """
        Analyse, then enhance with the recommended options. Fields set
        explicitly in `overrides` win over the recommendation.
        """
        analysis = self.analyze(frame)
        options = analysis.recommended.merged(overrides)
        logger.info(f"[Engine] Enhancing with {options.model_dump()}")
        return self.enhance(frame, options), analysis

    def process_document(self, frame: PixelBuffer, bounds: DocumentBounds,
                         options: OptionsLike = None,
                         auto_analysis: bool = True) -> ProcessedDocument:
        """
        Rectify, optionally analyse, then enhance.

        With auto_analysis the rectified image's recommendations are used,
        overridden by any field set explicitly in `options`.

        The warp size limit comes from the caller's `output_quality` (0.9
        when not given), since the analysis only exists after the warp. The
        recommended output_quality reported in the result is for encoding.
        """
        options = _as_options(options)
        quality = options.output_quality if options is not None else EnhancementOptions().output_quality
        rectified = self.rectify(frame, bounds, quality)

        analysis = None
        if auto_analysis:
            analysis = self.analyze(rectified)
            effective = analysis.recommended.merged(options)
        else:
            effective = options or EnhancementOptions()

        image = self.enhance(rectified, effective)
        logger.info(
            f"[Engine] Processed document {frame.width}x{frame.height} -> "
            f"{image.width}x{image.height} (auto_analysis={auto_analysis})"
        )
        return ProcessedDocument(image=image, bounds=bounds, analysis=analysis, options=effective)

    # ── Manual adjustments ────────────────────────────────────────────────────

    def adjust_brightness(self, frame: PixelBuffer, delta: float) -> PixelBuffer:
        return enhancer.adjust_brightness(frame, delta)

    def adjust_contrast(self, frame: PixelBuffer, factor: float) -> PixelBuffer:
        return enhancer.adjust_contrast(frame, factor)

    def apply_sharpen(self, frame: PixelBuffer, strength: float) -> PixelBuffer:
        if not 0 <= strength <= 1:
            raise ValueError(f"Sharpen strength must be in [0, 1], got {strength}")
        return enhancer.sharpen(frame, strength)

    # ── Live detection ────────────────────────────────────────────────────────

    def start_live_detection(self, frame_source: FrameSource, on_result: ResultCallback) -> bool:
        return self.scheduler.start(frame_source, on_result)

    def stop_live_detection(self):
        self.scheduler.stop()

    @property
    def is_live_detection_running(self) -> bool:
        return self.scheduler.is_running

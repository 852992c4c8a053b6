"""
Shared fixtures: synthetic frames drawn with OpenCV
"""

import sys
from pathlib import Path

import cv2
import numpy as np
import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from docscan.models import PixelBuffer


# Rectangle drawn by `document_frame`, inclusive pixel coordinates
RECT_LEFT, RECT_TOP, RECT_RIGHT, RECT_BOTTOM = 160, 120, 479, 359


def make_frame(width=640, height=480, background=0, rects=()):
    """RGB frame of `background` with filled (x1, y1, x2, y2, value) rectangles."""
    img = np.full((height, width, 3), background, dtype=np.uint8)
    for x1, y1, x2, y2, value in rects:
        cv2.rectangle(img, (x1, y1), (x2, y2), (value, value, value), thickness=-1)
    return PixelBuffer.from_array(img)


@pytest.fixture
def document_frame():
    """640x480 black frame with a centered white 320x240 rectangle"""
    return make_frame(rects=[(RECT_LEFT, RECT_TOP, RECT_RIGHT, RECT_BOTTOM, 255)])


@pytest.fixture
def blank_frame():
    return make_frame(background=128)


@pytest.fixture
def gradient_frame():
    """Smooth horizontal ramp with a coloured patch, for filter tests"""
    ramp = np.tile(np.linspace(20, 235, 200), (150, 1))
    img = np.stack([ramp, ramp * 0.9, ramp * 0.8], axis=-1).astype(np.uint8)
    cv2.rectangle(img, (60, 40), (140, 110), (200, 40, 40), thickness=-1)
    return PixelBuffer.from_array(img)

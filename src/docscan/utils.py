"""
Utility functions shared by the engine stages and the I/O boundary
"""

import os
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np
from loguru import logger


IMAGE_EXTENSIONS = ['.jpg', '.jpeg', '.png', '.webp', '.bmp', '.tiff']


def validate_image_file(file_path: str, allowed_extensions: Optional[List[str]] = None) -> Tuple[bool, str]:
    """
    Validate if file looks like a readable image

    Args:
        file_path: Path to file
        allowed_extensions: List of allowed extensions (default: common image formats)

    Returns:
        (is_valid, message)
    """
    if allowed_extensions is None:
        allowed_extensions = IMAGE_EXTENSIONS

    if not os.path.exists(file_path):
        return False, "File not found"

    ext = os.path.splitext(file_path)[1].lower()
    if ext not in allowed_extensions:
        return False, f"Invalid extension: {ext}. Allowed: {allowed_extensions}"

    if os.path.getsize(file_path) == 0:
        return False, "File is empty"

    return True, "Valid image file"


def ensure_directory(dir_path: str) -> str:
    """
    Ensure directory exists, create if it doesn't

    Args:
        dir_path: Directory path

    Returns:
        Absolute path to directory
    """
    path = Path(dir_path)
    path.mkdir(parents=True, exist_ok=True)
    return str(path.absolute())


def to_uint8(values: np.ndarray) -> np.ndarray:
    """Round and clamp to [0, 255]."""
    return np.clip(np.rint(values), 0, 255).astype(np.uint8)


def setup_logging(log_file: Optional[str] = None, level: str = "INFO"):
    """
    Setup logging configuration

    Args:
        log_file: Path to log file (None = console only)
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    logger.remove()

    logger.add(
        sys.stdout,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        level=level
    )

    if log_file:
        ensure_directory(os.path.dirname(log_file) or ".")
        logger.add(
            log_file,
            rotation="10 MB",
            retention="30 days",
            level=level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"
        )

    logger.info(f"Logging configured (level={level}, file={log_file})")

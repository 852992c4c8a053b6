"""
Engine configuration.

Values live in config/engine_config.yaml. Anything the file leaves out
falls back to the defaults below, so a partial file is always valid.
"""

import copy
import os
from pathlib import Path
from typing import Dict, Optional, Union

import yaml
from loguru import logger

from docscan.errors import ConfigError


DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "engine_config.yaml"


def default_config() -> Dict:
    """Return default configuration"""
    return {
        'edges': {
            'threshold': 50,
            'min_edge_points': 100,
        },
        'hough': {
            'rho_resolution': 1.0,
            'theta_resolution_deg': 1.0,
            'vote_threshold': 50,
            'max_lines': 10,
            'min_rho_separation': 20.0,
            'min_theta_separation_deg': 5.0,
        },
        'quadrilateral': {
            'min_lines': 4,
            'detection_threshold': 0.6,
            'fallback_margin': 0.1,
            'fallback_confidence': 0.3,
        },
        'warp': {
            'max_output_dimension': 4096,
        },
        'analysis': {
            'glare_percentile_threshold': 240,
            'glare_spread': 200,
            'shadow_percentile_threshold': 30,
            'shadow_spread': 150,
            'sharpness_reference': 1000.0,
            'noise_reference': 25.0,
        },
        'enhancement': {
            'denoise_method': 'bilateral',
            'sharpen_method': 'edge_aware',
            'sharpen_strength': 0.5,
            'sharpen_radius': 1.0,
            'glare_threshold': 240,
            'glare_strength': 0.7,
            'shadow_threshold': 50,
            'shadow_strength': 0.6,
        },
        'scheduler': {
            'period_ms': 1000,
            'max_consecutive_errors': 3,
        },
        'logging': {
            'level': 'INFO',
            'file': None,
        },
    }


def deep_merge(base: Dict, override: Dict) -> Dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict:
    """
    Load configuration from YAML file, merged over the defaults.

    Args:
        config_path: YAML file (default: <project>/config/engine_config.yaml)

    Returns:
        Full configuration dict

    Raises:
        ConfigError: the file exists but is not a valid YAML mapping
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    if not os.path.exists(config_path):
        logger.warning(f"Config file not found: {config_path}, using defaults")
        return default_config()

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            loaded = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(loaded, dict):
        raise ConfigError(f"Config root must be a mapping: {config_path}")

    logger.debug(f"Loaded config from {config_path}")
    return deep_merge(default_config(), loaded)

"""
config_loader.py - Configuration Management

Loads config.yaml once per process and overlays it on built-in defaults,
so every documented key can be indexed directly.

Lookup order for the file:
1. Explicit path argument (CLI --config)
2. CRACKSCAN_CONFIG environment variable
3. config.yaml in the project root

The detection API key may also come from CRACKSCAN_API_KEY so it never
has to be written into the file.

Usage:
    from crackscan.config_loader import load_config

    config = load_config()
    fps = config['extraction']['fps']
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "CRACKSCAN_CONFIG"
API_KEY_ENV_VAR = "CRACKSCAN_API_KEY"
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"

_DEFAULTS: Dict[str, Dict[str, Any]] = {
    'gps': {
        'high_accuracy': True,
        'initial_timeout_ms': 10000,
        'watch_timeout_ms': 5000,
        'max_age_ms': 0,
    },
    'extraction': {
        'fps': 1.0,
        'jpeg_quality': 95,
        'timeout_seconds': 300,
    },
    'matching': {
        'tolerance_seconds': 5,
    },
    'upload': {
        'max_size_mb': 50,
        'video_bucket': 'videos',
        'gps_bucket': 'gps-logs',
        'frames_bucket': 'frames',
        'video_filename': 'video.mp4',
        'gps_filename': 'gps_by_second.csv',
    },
    'detection': {
        'endpoint': 'https://detect.roboflow.com/railway-crack-detection/15',
        'api_key': '',
        'timeout_seconds': 30,
        'default_retry_after': 5,
        'max_retries': None,
    },
    'recording': {
        'codec': 'mp4v',
        'fps': 30.0,
        'chunk_size_kb': 1024,
    },
    'paths': {
        'storage_root': 'data/storage',
        'db_path': 'data/crackscan.db',
        'logs_dir': 'logs',
        'reports_dir': 'reports',
    },
    'logging': {
        'level': 'INFO',
        'max_file_size_mb': 10,
        'backup_count': 5,
        'console_logging': True,
        'file_logging': True,
    },
}

_config_cache: Optional[Dict[str, Any]] = None


def get_default_config() -> Dict[str, Any]:
    """Fresh copy of the built-in defaults."""
    return copy.deepcopy(_DEFAULTS)


def _resolve_path(config_path: Optional[Union[str, Path]]) -> Path:
    if config_path is not None:
        return Path(config_path)
    if os.environ.get(CONFIG_ENV_VAR):
        return Path(os.environ[CONFIG_ENV_VAR])
    return DEFAULT_CONFIG_PATH


def _read_yaml(path: Path) -> Dict[str, Any]:
    """
    Raises:
        ConfigurationError: Unreadable file, bad YAML, or a non-mapping top level
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            loaded = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse config file {path}: {e}") from e

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping of sections")
    return loaded


def _merge_with_defaults(loaded: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay the loaded sections on top of the defaults, one level deep."""
    config = get_default_config()
    for section, values in loaded.items():
        if isinstance(values, dict) and isinstance(config.get(section), dict):
            config[section].update(values)
        else:
            config[section] = values
    return config


def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load configuration, reading the file only on first use.

    A missing file is not an error: the defaults are used and a warning
    is logged.

    Args:
        config_path: Explicit config.yaml location

    Returns:
        Complete configuration dictionary

    Raises:
        ConfigurationError: The file exists but cannot be used
    """
    global _config_cache

    if _config_cache is not None:
        return _config_cache

    path = _resolve_path(config_path)
    if path.exists():
        config = _merge_with_defaults(_read_yaml(path))
        logger.info(f"Configuration loaded from: {path}")
    else:
        logger.warning(f"Config file not found: {path}. Using defaults.")
        config = get_default_config()

    api_key = os.environ.get(API_KEY_ENV_VAR)
    if api_key:
        config['detection']['api_key'] = api_key

    _config_cache = config
    return _config_cache


def reload_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Drop the cached configuration and load it again."""
    global _config_cache
    _config_cache = None
    return load_config(config_path)


def config_problems(config: Dict[str, Any]) -> List[str]:
    """Human-readable list of invalid values; empty when the config is usable."""
    problems = []
    extraction = config['extraction']

    if extraction['fps'] <= 0:
        problems.append("extraction.fps must be > 0")
    if not 1 <= extraction['jpeg_quality'] <= 100:
        problems.append("extraction.jpeg_quality must be 1-100")
    if extraction['timeout_seconds'] <= 0:
        problems.append("extraction.timeout_seconds must be > 0")
    if config['matching']['tolerance_seconds'] < 0:
        problems.append("matching.tolerance_seconds must be >= 0")
    if config['upload']['max_size_mb'] <= 0:
        problems.append("upload.max_size_mb must be > 0")

    max_retries = config['detection']['max_retries']
    if max_retries is not None and max_retries < 0:
        problems.append("detection.max_retries must be >= 0 or null")
    if not config['detection']['endpoint']:
        problems.append("detection.endpoint is required")
    if config['recording']['fps'] <= 0:
        problems.append("recording.fps must be > 0")

    return problems

"""Settings management for the shared clustering pipeline.

Settings live in a YAML file (``config/settings.yaml`` by default) and are
deep-merged over the in-code defaults below, so a config file only needs the
keys it overrides.
"""

import copy
import functools
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from shared_clustering.utils.logging_utils import get_logger

__all__ = [
    "DEFAULTS",
    "get_config_path",
    "load_settings",
    "reload_settings",
    "default_settings",
    "validate_settings",
]

logger = get_logger(__name__)

# Settings loading counter for debugging
_settings_load_count = 0

DEFAULTS: Dict[str, Any] = {
    "clustering": {
        "min_cluster_size": 3,
        # Matches below this never appear on a shared match list, so they can
        # only join a cluster through extension.
        "lowest_clusterable_centimorgans": 20.0,
        "min_centimorgans_to_cluster": 20.0,
        "immediate_family_centimorgans": 200.0,
        "max_cluster_size": None,
        "max_cluster_distance": None,
    },
    "matrix": {
        "builder": "appearance_weighted",
        "max_indirect_percentage": 100.0,
        "direct_correlation_value": 2.0,
        "indirect_correlation_value": 0.1,
    },
    "distance": {
        "metric": "overlap_weighted",
        "significance_threshold": 1.0,
    },
    "extension": {
        "min_cluster_overlap_fraction": 0.35,
        "min_match_overlap_fraction": 0.5,
    },
    "parallelism": {
        "workers": None,
        "backend": "threading",
        "chunk_size": 256,
        "small_input_threshold": 2000,
        "disable_parallel": False,
    },
    "progress": {
        "step_every": 1000,
        "secs_every": 5.0,
        "enable_tqdm": False,
    },
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        "file": None,
    },
}

MATRIX_BUILDERS = ("appearance_weighted", "count_based")
DISTANCE_METRICS = ("overlap_weighted", "appearance_weighted")


def get_config_path(filename: str = "settings.yaml") -> Path:
    """Get the path to a config file.

    Looks for a ``config`` directory in the current directory and its parents.

    Args:
        filename: Name of the config file (default: settings.yaml)

    Returns:
        Path to the config file

    """
    current = Path.cwd()
    for parent in [current] + list(current.parents):
        candidate = parent / "config" / filename
        if candidate.exists():
            return candidate

    # Fallback: assume we're in project root
    return Path("config") / filename


def _deep_merge(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in update.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def default_settings(**overrides: Any) -> Dict[str, Any]:
    """Return a fresh copy of the defaults with section overrides merged in.

    Example:
        default_settings(clustering={"min_cluster_size": 5})

    """
    return _deep_merge(copy.deepcopy(DEFAULTS), overrides)


@functools.lru_cache(maxsize=1)
def load_settings(path: str) -> Dict[str, Any]:
    """Load settings from YAML file with defaults.

    This function is cached to prevent repeated file I/O and parsing.
    Use reload_settings() to force a fresh load.

    Args:
        path: Path to settings YAML file

    Returns:
        Dictionary with settings (user config merged over defaults)

    """
    global _settings_load_count
    _settings_load_count += 1

    logger.debug(f"Settings loaded (count: {_settings_load_count}) from {path}")

    try:
        with open(path) as f:
            user_config = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning(f"Settings file not found: {path}. Using defaults.")
        return copy.deepcopy(DEFAULTS)

    if not isinstance(user_config, dict):
        raise ValueError(f"Settings file {path} must contain a mapping at top level")

    return _deep_merge(copy.deepcopy(DEFAULTS), user_config)


def reload_settings(path: str) -> Dict[str, Any]:
    """Force reload settings from file (clears cache).

    Args:
        path: Path to settings YAML file

    Returns:
        Freshly loaded settings

    """
    load_settings.cache_clear()
    return load_settings(path)


def validate_settings(settings: Optional[Dict[str, Any]] = None) -> List[str]:
    """Returns list of validation warnings.

    Args:
        settings: Settings dict to validate. If None, uses the defaults.

    Returns:
        List of validation warning messages.
    """
    warnings = []
    if settings is None:
        settings = DEFAULTS

    clustering = settings.get("clustering", {})
    min_cluster_size = clustering.get("min_cluster_size", 3)
    if not isinstance(min_cluster_size, int) or min_cluster_size < 2:
        warnings.append(f"clustering.min_cluster_size must be int >= 2, got {min_cluster_size}")

    max_cluster_size = clustering.get("max_cluster_size")
    if max_cluster_size is not None and (
        not isinstance(max_cluster_size, int) or max_cluster_size < min_cluster_size
    ):
        warnings.append(
            f"clustering.max_cluster_size must be None or int >= min_cluster_size, got {max_cluster_size}"
        )

    for key in ("lowest_clusterable_centimorgans", "min_centimorgans_to_cluster", "immediate_family_centimorgans"):
        value = clustering.get(key, 0)
        if not isinstance(value, (int, float)) or value < 0:
            warnings.append(f"clustering.{key} must be a non-negative number, got {value}")

    matrix = settings.get("matrix", {})
    builder = matrix.get("builder", "appearance_weighted")
    if builder not in MATRIX_BUILDERS:
        warnings.append(f"matrix.builder must be one of {MATRIX_BUILDERS}, got {builder}")

    max_indirect = matrix.get("max_indirect_percentage", 100.0)
    if not isinstance(max_indirect, (int, float)) or not 0 <= max_indirect <= 100:
        warnings.append(f"matrix.max_indirect_percentage must be number 0-100, got {max_indirect}")

    direct = matrix.get("direct_correlation_value", 2.0)
    indirect = matrix.get("indirect_correlation_value", 0.1)
    if not isinstance(direct, (int, float)) or direct <= 0:
        warnings.append(f"matrix.direct_correlation_value must be positive, got {direct}")
    elif not isinstance(indirect, (int, float)) or not 0 < indirect <= direct:
        warnings.append(
            f"matrix.indirect_correlation_value must be in (0, direct_correlation_value], got {indirect}"
        )

    metric = settings.get("distance", {}).get("metric", "overlap_weighted")
    if metric not in DISTANCE_METRICS:
        warnings.append(f"distance.metric must be one of {DISTANCE_METRICS}, got {metric}")

    extension = settings.get("extension", {})
    for key in ("min_cluster_overlap_fraction", "min_match_overlap_fraction"):
        value = extension.get(key, 0.5)
        if not isinstance(value, (int, float)) or not 0 <= value <= 1:
            warnings.append(f"extension.{key} must be number 0-1, got {value}")

    backend = settings.get("parallelism", {}).get("backend", "threading")
    if backend not in ("threading", "sequential"):
        warnings.append(f"parallelism.backend must be 'threading' or 'sequential', got {backend}")

    for warning in warnings:
        logger.warning(warning)

    return warnings

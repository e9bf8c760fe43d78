"""
Configuration utilities for InstructorLink.

Loads the YAML configuration, overlays it on the built-in defaults and
validates it once at startup so that invalid settings fail fast rather than
at match time.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict

import yaml

from .errors import WeightInvariantViolation

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/instructor_link.yaml"


@dataclass(frozen=True)
class ScoringWeights:
    """
    Fixed weights of the four match signals.

    The weights must sum to exactly 1.0. The check uses decimal arithmetic on
    the configured literals so that 0.5 + 0.3 + 0.15 + 0.05 passes while a
    typo such as 0.25 for uniqueness does not.
    """

    name: float = 0.50
    subject: float = 0.30
    uniqueness: float = 0.15
    volume: float = 0.05

    def __post_init__(self):
        values = self.as_dict()
        for key, value in values.items():
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                raise WeightInvariantViolation(f"Weight '{key}' must be a number, got {value!r}")
            if value < 0:
                raise WeightInvariantViolation(f"Weight '{key}' must not be negative, got {value}")

        total = sum(Decimal(str(value)) for value in values.values())
        if total != Decimal("1"):
            raise WeightInvariantViolation(
                f"Scoring weights must sum to exactly 1.0, got {total} ({values})"
            )

    def as_dict(self) -> Dict[str, float]:
        return {
            "name": self.name,
            "subject": self.subject,
            "uniqueness": self.uniqueness,
            "volume": self.volume,
        }

    @classmethod
    def from_config(cls, scoring_config: Dict[str, Any]) -> "ScoringWeights":
        """Build weights from the ``scoring`` section of the configuration."""
        weights = scoring_config.get("weights", {}) or {}
        unknown = set(weights) - {"name", "subject", "uniqueness", "volume"}
        if unknown:
            raise WeightInvariantViolation(f"Unknown scoring weights: {sorted(unknown)}")
        return cls(**weights)


def get_default_config() -> Dict[str, Any]:
    """
    Get default InstructorLink configuration.

    Returns:
        Default configuration dictionary
    """
    return {
        "normalization": {
            "name": {
                "remove_titles": ["Dr", "Prof", "Professor", "Mr", "Mrs", "Ms", "Mx",
                                  "PhD", "EdD", "MD", "MBA", "MFA"],
                "remove_suffixes": ["Jr", "Sr", "II", "III", "IV"],
            },
        },
        "blocking": {
            "max_candidates_per_block": 200,
            "max_full_scan": 500,
        },
        "scoring": {
            "weights": {
                "name": 0.50,
                "subject": 0.30,
                "uniqueness": 0.15,
                "volume": 0.05,
            },
            "thresholds": {
                "acceptance_floor": 0.65,
                "confidence": 0.80,
            },
            "volume_saturation": 10,
        },
        "confidence": {
            "min_ratings": {
                "rmp": 5,
                "bluebook": 10,
            },
        },
        "combine": {
            "bluebook_calibration": {
                "alpha": -2.58,
                "beta": 1.45,
            },
            "n_factors": {
                "rmp": 2.0,
                "bluebook": 1.0,
            },
            "prior": {
                "mean": 3.775,
                "variance": 1.045,
            },
            "noise_variance": {
                "rmp": 1.5,
                "bluebook": 1.036,
            },
            "ci_z": 1.2816,
        },
        "pipeline": {
            "max_workers": 8,
            "run_timeout_seconds": 600,
        },
        "storage": {
            "db_path": "data/instructor_links.db",
        },
    }


def merge_configs(base_config: Dict[str, Any], override_config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge two configuration dictionaries.

    Args:
        base_config: Base configuration
        override_config: Override configuration

    Returns:
        Merged configuration
    """
    merged = base_config.copy()

    for key, value in override_config.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = merge_configs(merged[key], value)
        else:
            merged[key] = value

    return merged


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """
    Load configuration from YAML file, overlaid on the defaults.

    A missing file falls back to the defaults. A file that exists but cannot
    be parsed is an error: running with silently different weights would
    make links unexplainable.

    Args:
        config_path: Path to configuration file

    Returns:
        Validated configuration dictionary
    """
    config_file = Path(config_path)
    if not config_file.exists():
        logger.warning(f"Configuration file {config_path} not found, using defaults")
        config = get_default_config()
    else:
        with open(config_file, 'r') as f:
            user_config = yaml.safe_load(f) or {}
        config = merge_configs(get_default_config(), user_config)
        logger.info(f"Loaded configuration from {config_path}")

    validate_config(config)
    return config


def validate_config(config: Dict[str, Any]) -> bool:
    """
    Validate InstructorLink configuration.

    Raises:
        WeightInvariantViolation: if the signal weights are invalid
        ValueError: if any threshold or setting is out of range

    Returns:
        True if configuration is valid
    """
    scoring = config.get("scoring", {})
    ScoringWeights.from_config(scoring)

    thresholds = scoring.get("thresholds", {})
    floor = thresholds.get("acceptance_floor")
    confidence = thresholds.get("confidence")
    for label, value in (("acceptance_floor", floor), ("confidence", confidence)):
        if not isinstance(value, (int, float)) or not 0 <= value <= 1:
            raise ValueError(f"scoring.thresholds.{label} must be a number between 0 and 1")
    if confidence <= floor:
        raise ValueError("scoring.thresholds.confidence must be stricter than acceptance_floor")

    saturation = scoring.get("volume_saturation")
    if not isinstance(saturation, (int, float)) or saturation <= 0:
        raise ValueError("scoring.volume_saturation must be a positive number")

    min_ratings = config.get("confidence", {}).get("min_ratings", {})
    for provider in ("rmp", "bluebook"):
        value = min_ratings.get(provider)
        if not isinstance(value, int) or value < 0:
            raise ValueError(f"confidence.min_ratings.{provider} must be a non-negative integer")

    n_factors = config.get("combine", {}).get("n_factors", {})
    for provider in ("rmp", "bluebook"):
        value = n_factors.get(provider)
        if not isinstance(value, (int, float)) or value <= 0:
            raise ValueError(f"combine.n_factors.{provider} must be a positive number")

    combine = config.get("combine", {})
    noise_variance = combine.get("noise_variance", {})
    for label, value in (("prior.variance", combine.get("prior", {}).get("variance")),
                         ("noise_variance.rmp", noise_variance.get("rmp")),
                         ("noise_variance.bluebook", noise_variance.get("bluebook")),
                         ("ci_z", combine.get("ci_z"))):
        if not isinstance(value, (int, float)) or value <= 0:
            raise ValueError(f"combine.{label} must be a positive number")

    blocking = config.get("blocking", {})
    for key in ("max_candidates_per_block", "max_full_scan"):
        value = blocking.get(key)
        if not isinstance(value, int) or value < 1:
            raise ValueError(f"blocking.{key} must be a positive integer")

    pipeline = config.get("pipeline", {})
    if not isinstance(pipeline.get("max_workers"), int) or pipeline["max_workers"] < 1:
        raise ValueError("pipeline.max_workers must be a positive integer")

    logger.info("Configuration validation passed")
    return True

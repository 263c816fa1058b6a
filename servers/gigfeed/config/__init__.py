"""Configuration loading and validation."""

from .settings import detect_platform, get_default_config, load_config, validate_config

__all__ = [
    "detect_platform",
    "get_default_config",
    "load_config",
    "validate_config",
]

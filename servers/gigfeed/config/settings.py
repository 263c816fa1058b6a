"""
Runtime configuration.

Configuration is a plain dict:
- get_default_config() gives the built-in defaults
- load_config() overlays environment variables and an optional sources file
- validate_config() reports problems as a list of messages
"""

import json
import os
from pathlib import Path
from typing import Any, Mapping, Optional

import structlog

log = structlog.get_logger(__name__)

STORAGE_BACKENDS = ("local", "s3")
TABLE_BACKENDS = ("local", "dynamodb")
LOCK_BACKENDS = ("blob", "table")


def detect_platform(environ: Optional[Mapping[str, str]] = None) -> str:
    """Name the hosting platform from its environment variables."""
    env = os.environ if environ is None else environ
    if env.get("AWS_LAMBDA_FUNCTION_NAME"):
        return "aws"
    if env.get("AZURE_FUNCTIONS_ENVIRONMENT") or env.get("WEBSITE_INSTANCE_ID"):
        return "azure"
    return "local"


def get_default_config() -> dict[str, Any]:
    """Return default config for a local installation."""
    return {
        "storage": {
            "backend": "local",
            "root": "client",
            "bucket": "gigsmash-events",
            "region": "eu-west-2",
            # Folders under root
            "namespaces": {
                "admin": "",
                "feed": "json",
                "events": "json",
                "images": "pix",
            },
        },
        "tables": {
            "backend": "local",
            "name": "gigfeed",
        },
        "lock": {
            "backend": "blob",
            "key": "collect-lock",
            "staleness_ms": 3000,
        },
        "collect": {
            "source_timeout": 120.0,
            "feed_key": "events.json",
            "diagnostics_key": "diagnostics.json",
            "status_key": "status.txt",
            "image_prefix": "/pix/",
        },
        "images": {
            "width": 300,
            "max_bytes": 10 * 1024 * 1024,
            "max_dimension": 10000,
            "timeout": 30.0,
            "resolve_dns": True,
        },
        "sources": [],
        "platform": "local",
        "log_level": "INFO",
    }


def load_config(
    overrides: Optional[dict[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> dict[str, Any]:
    """
    Build the effective config from defaults, environment and overrides.

    Args:
        overrides: Nested dict merged over the result last
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Config dict
    """
    env = os.environ if environ is None else environ
    config = get_default_config()
    config["platform"] = detect_platform(env)

    storage = config["storage"]
    if env.get("GIGFEED_STORAGE"):
        storage["backend"] = env["GIGFEED_STORAGE"].lower()
    elif config["platform"] == "aws":
        storage["backend"] = "s3"

    if env.get("GIGFEED_ROOT"):
        storage["root"] = env["GIGFEED_ROOT"]
    storage["bucket"] = env.get("S3_BUCKET_NAME", storage["bucket"])
    storage["region"] = env.get("AWS_REGION", storage["region"])

    tables = config["tables"]
    if env.get("GIGFEED_TABLES"):
        tables["backend"] = env["GIGFEED_TABLES"].lower()
    elif config["platform"] == "aws":
        tables["backend"] = "dynamodb"
    tables["name"] = env.get("GIGFEED_TABLE", tables["name"])

    if env.get("GIGFEED_LOCK_BACKEND"):
        config["lock"]["backend"] = env["GIGFEED_LOCK_BACKEND"].lower()

    if env.get("GIGFEED_RESOLVE_DNS"):
        config["images"]["resolve_dns"] = env["GIGFEED_RESOLVE_DNS"].lower() in ("1", "true", "yes")

    config["log_level"] = env.get("LOG_LEVEL", config["log_level"])

    sources_file = env.get("GIGFEED_SOURCES_FILE")
    if sources_file:
        config["sources"] = _load_sources_file(Path(sources_file))

    if overrides:
        config = _merge(config, overrides)

    return config


def _load_sources_file(path: Path) -> list[dict[str, Any]]:
    """Read a JSON list of {id, label, url} source entries."""
    sources = json.loads(path.read_text(encoding="utf-8"))
    log.info("loaded_sources_file", path=str(path), count=len(sources))
    return sources


def _merge(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge extra into a copy of base."""
    merged = dict(base)
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def validate_config(config: dict[str, Any]) -> list[str]:
    """
    Validate config and return list of errors.

    Returns:
        List of error messages (empty if valid)
    """
    errors: list[str] = []

    backend = config.get("storage", {}).get("backend")
    if backend not in STORAGE_BACKENDS:
        errors.append(f"Unknown storage backend: {backend}")
    elif backend == "s3" and not config["storage"].get("bucket"):
        errors.append("Missing required field: storage.bucket")

    table_backend = config.get("tables", {}).get("backend")
    if table_backend not in TABLE_BACKENDS:
        errors.append(f"Unknown table backend: {table_backend}")

    lock = config.get("lock", {})
    if lock.get("backend") not in LOCK_BACKENDS:
        errors.append(f"Unknown lock backend: {lock.get('backend')}")
    if lock.get("staleness_ms", 0) <= 0:
        errors.append(f"Invalid lock staleness: {lock.get('staleness_ms')} (must be > 0)")

    if config.get("collect", {}).get("source_timeout", 0) <= 0:
        errors.append("collect.source_timeout must be positive")

    images = config.get("images", {})
    for field in ("width", "max_bytes", "max_dimension"):
        if images.get(field, 0) <= 0:
            errors.append(f"images.{field} must be positive")

    for i, source in enumerate(config.get("sources", [])):
        if not source.get("id") or not source.get("url"):
            errors.append(f"Source {i} needs an id and a url")

    return errors

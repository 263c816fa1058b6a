"""
Key validation for the storage layer.

Every backend passes names through sanitize_key() before touching the
filesystem or a bucket, blocking:
- Path traversal ("..", "/" and "\\")
- Hidden names (leading dots)
- Anything outside letters, digits, dot, dash and underscore
"""

import re


class StorageKeyError(ValueError):
    """Raised when a storage key is unsafe."""
    pass


SAFE_KEY_PATTERN = re.compile(r"[A-Za-z0-9._-]+")
MAX_KEY_LENGTH = 255


def sanitize_key(name: str) -> str:
    """
    Check that a storage key is safe to use with any backend.

    Args:
        name: The key to check

    Returns:
        The key, unchanged

    Raises:
        StorageKeyError: If the key is empty, too long or unsafe
    """
    if not name or not isinstance(name, str):
        raise StorageKeyError("Invalid key: must be a non-empty string")

    if ".." in name or "/" in name or "\\" in name:
        raise StorageKeyError(f"Invalid key {name!r}: path traversal is not allowed")

    if name.startswith("."):
        raise StorageKeyError(f"Invalid key {name!r}: leading dots are not allowed")

    if len(name) > MAX_KEY_LENGTH:
        raise StorageKeyError(f"Invalid key: longer than {MAX_KEY_LENGTH} characters")

    if not SAFE_KEY_PATTERN.fullmatch(name):
        raise StorageKeyError(f"Invalid key {name!r}: contains unsafe characters")

    return name


def has_suffix(name: str) -> bool:
    """Whether a key carries a .suffix (a dot after the first character)."""
    return name.find(".") > 0

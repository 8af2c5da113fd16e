"""Secret key naming rules."""

import re

_INVALID_RUN = re.compile(r"[^A-Z0-9_]+")
_UNDERSCORE_RUN = re.compile(r"_{2,}")

DIGIT_PREFIX = "SECRET_"


def normalize_key(key: str) -> str:
    """Normalize a user-supplied name into a vault key.

    ``"my-secret-key"`` becomes ``"MY_SECRET_KEY"`` and ``"123invalid"``
    becomes ``"SECRET_123INVALID"``. The result may be empty if the input has
    no usable characters; callers decide whether that is an error.
    """
    normalized = _INVALID_RUN.sub("_", key.upper())
    normalized = _UNDERSCORE_RUN.sub("_", normalized).strip("_")
    if normalized[:1].isdigit():
        normalized = DIGIT_PREFIX + normalized
    return normalized


def is_valid_key(key: str) -> bool:
    """Return True if ``key`` is already in normalized form."""
    return bool(key) and normalize_key(key) == key

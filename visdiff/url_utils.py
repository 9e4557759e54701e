"""Shared URL utilities for deriving stable capture and baseline identifiers."""

from __future__ import annotations

import hashlib
import re
from urllib.parse import urlparse

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")

# Keeps "{slug}-{viewport}.png" well inside filesystem name limits
MAX_SLUG_LENGTH = 120
_HASH_LENGTH = 12


def path_slug(url: str) -> str:
    """Turn the path component of a URL into a filename-safe slug.

    The root path (or an empty one) maps to ``home``. Slugs longer than
    ``MAX_SLUG_LENGTH`` are cut and suffixed with a short hash of the full
    path, so distinct long paths stay distinct.
    """
    path = urlparse(url).path
    if path in ("", "/"):
        return "home"
    slug = _UNSAFE_CHARS.sub("-", path.replace("/", "-")).strip("-")
    if not slug:
        return "home"
    if len(slug) > MAX_SLUG_LENGTH:
        digest = hashlib.md5(path.encode()).hexdigest()[:_HASH_LENGTH]
        slug = f"{slug[:MAX_SLUG_LENGTH - _HASH_LENGTH - 1].rstrip('-')}-{digest}"
    return slug


def generate_identifier(url: str, viewport_name: str) -> str:
    """Build the key joining captures, baselines, and reports, e.g. ``home-desktop``."""
    return f"{path_slug(url)}-{viewport_name}"

"""Utility helpers for URL normalization and path handling."""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import urljoin, urlsplit

from .errors import ResolutionError

SLUG_PATTERN = re.compile(r"[^a-z0-9]+")
_WEB_SCHEMES = ("http", "https")


def slugify(value: str, fallback: str = "page") -> str:
    """Generate a filesystem-friendly slug using ASCII characters only."""
    normalized = value.encode("ascii", "ignore").decode("ascii")
    normalized = normalized.lower()
    normalized = SLUG_PATTERN.sub("-", normalized).strip("-")
    return normalized or fallback


def is_absolute_url(value: str) -> bool:
    """Return True for well-formed http(s) URLs with a host."""
    try:
        parts = urlsplit(value)
        # Accessing .port validates the netloc.
        parts.port  # pylint: disable=pointless-statement
    except ValueError:
        return False
    return parts.scheme in _WEB_SCHEMES and bool(parts.hostname)


def resolve(reference: Optional[str], base: Optional[str]) -> Optional[str]:
    """Resolve ``reference`` against ``base`` into an absolute URL.

    ``data:`` URLs and absolute http(s) URLs come back unchanged and
    protocol-relative references borrow the scheme of ``base``. Returns
    ``None`` for anything that cannot be made into a valid absolute URL.
    """
    if reference is None:
        return None
    ref = reference.strip()
    if not ref:
        return None
    lowered = ref.lower()
    if lowered.startswith("data:"):
        return ref
    if lowered.startswith(("javascript:", "about:", "mailto:", "blob:")):
        return None
    if is_absolute_url(ref):
        return ref
    if ref.startswith("//"):
        scheme = "https"
        if base and is_absolute_url(base):
            scheme = urlsplit(base).scheme
        candidate = f"{scheme}:{ref}"
        return candidate if is_absolute_url(candidate) else None
    if not base or not is_absolute_url(base):
        return None
    try:
        candidate = urljoin(base, ref)
    except ValueError:
        return None
    return candidate if is_absolute_url(candidate) else None


def resolve_or_raise(reference: Optional[str], base: Optional[str]) -> str:
    resolved = resolve(reference, base)
    if resolved is None:
        raise ResolutionError(
            f"Cannot resolve {reference!r} against {base!r}",
            {"reference": reference, "base": base},
        )
    return resolved


def host_of(url: str) -> Optional[str]:
    """Return the lowercase host of ``url`` or None when it does not parse."""
    try:
        return urlsplit(url).hostname
    except ValueError:
        return None

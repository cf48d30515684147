"""Exceptions raised by the discovery pipeline."""

from __future__ import annotations

from typing import Any, Dict, Optional


class ScoutError(Exception):
    """Base exception for gallery-scout components."""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.context = context or {}


class ResolutionError(ScoutError):
    """A reference could not be turned into an absolute URL."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, "RESOLUTION_ERROR", context)


class DecodeError(ScoutError):
    """Image data could not be fetched or rasterized."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, "DECODE_ERROR", context)


class ParseError(ScoutError):
    """A response body was malformed."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, "PARSE_ERROR", context)


class UnsupportedAlgorithm(ScoutError):
    """Unknown perceptual hash algorithm name."""

    def __init__(self, algorithm: str) -> None:
        super().__init__(
            f"Unknown hash algorithm: {algorithm}",
            "UNSUPPORTED_ALGORITHM",
            {"algorithm": algorithm},
        )
        self.algorithm = algorithm


class CustomPredicateError(ScoutError):
    """A caller-supplied filter predicate raised."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, "CUSTOM_PREDICATE_ERROR", context)


class ConfigError(ScoutError):
    """Invalid configuration value."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, "CONFIG_ERROR", context)

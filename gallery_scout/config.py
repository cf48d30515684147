"""Configuration objects and constants for discovery runs."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Pattern, Tuple

from .errors import ConfigError

DEFAULT_API_PATTERNS: Tuple[str, ...] = (
    r"/api/.*/images?",
    r"/api/.*/products?",
    r"/api/.*/gallery",
    r"/api/.*/media",
    r"graphql",
    r"/rest/.*/images?",
)

DEFAULT_RESPONSE_PATTERNS: Tuple[str, ...] = (
    r"""<img[^>]+src=["']([^"']+)["']""",
    r"""background-image:\s*url\(["']?([^"')]+)["']?\)""",
    r'"url":\s*"([^"]+\.(?:jpg|jpeg|png|gif|webp|avif|svg))"',
    r'"image":\s*"([^"]+)"',
    r'"src":\s*"([^"]+)"',
    r'"thumb":\s*"([^"]+)"',
    r'"thumbnail":\s*"([^"]+)"',
)

DEFAULT_CONTAINER_HINTS: Tuple[str, ...] = ("gallery", "grid", "item", "card", "photo")
DEFAULT_BLOCK_TAGS: Tuple[str, ...] = ("div", "article", "section", "li")

MAX_RESPONSE_BYTES = 1024 * 1024
HASH_ALGORITHMS = ("average", "difference", "perceptual", "wavelet")


def _compile_all(patterns: Tuple[str, ...], flags: int) -> List[Pattern[str]]:
    compiled: List[Pattern[str]] = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern, flags))
        except re.error as exc:
            raise ConfigError(f"Invalid pattern {pattern!r}: {exc}") from exc
    return compiled


@dataclass
class MinerConfig:
    """Settings for passive network-traffic mining."""

    api_patterns: Tuple[str, ...] = DEFAULT_API_PATTERNS
    response_patterns: Tuple[str, ...] = DEFAULT_RESPONSE_PATTERNS
    max_response_size: int = MAX_RESPONSE_BYTES
    max_discovered_urls: int = 10_000

    def __post_init__(self) -> None:
        if self.max_response_size <= 0:
            raise ConfigError("max_response_size must be positive")
        if self.max_discovered_urls <= 0:
            raise ConfigError("max_discovered_urls must be positive")
        self.compiled_api_patterns = _compile_all(self.api_patterns, re.IGNORECASE)
        self.compiled_response_patterns = _compile_all(
            self.response_patterns, re.IGNORECASE
        )


@dataclass
class AnalyzerConfig:
    """Settings for structural gallery detection."""

    container_hints: Tuple[str, ...] = DEFAULT_CONTAINER_HINTS
    block_tags: Tuple[str, ...] = DEFAULT_BLOCK_TAGS
    min_containers: int = 3
    min_score: int = 100
    grid_tolerance: float = 20.0
    score_normalizer: float = 200.0
    fallback_confidence: float = 0.3

    def __post_init__(self) -> None:
        if self.min_containers < 1:
            raise ConfigError("min_containers must be at least 1")
        if self.grid_tolerance < 0:
            raise ConfigError("grid_tolerance cannot be negative")
        if self.score_normalizer <= 0:
            raise ConfigError("score_normalizer must be positive")
        if not 0.0 <= self.fallback_confidence <= 1.0:
            raise ConfigError("fallback_confidence must be within [0, 1]")


@dataclass
class FilterConfig:
    """Settings for the filter rule engine."""

    cache_results: bool = True
    max_cache_size: int = 1000
    probe_concurrency: int = 3
    probe_timeout: float = 10.0
    batch_pause: float = 0.01

    def __post_init__(self) -> None:
        if self.max_cache_size < 1:
            raise ConfigError("max_cache_size must be at least 1")
        if self.probe_concurrency < 1:
            raise ConfigError("probe_concurrency must be at least 1")
        if self.probe_timeout <= 0:
            raise ConfigError("probe_timeout must be positive")
        if self.batch_pause < 0:
            raise ConfigError("batch_pause cannot be negative")


@dataclass
class HashConfig:
    """Perceptual hash selection."""

    algorithm: str = "difference"
    precision: int = 8
    max_distance: int = 0

    def __post_init__(self) -> None:
        if self.algorithm not in HASH_ALGORITHMS:
            raise ConfigError(f"Unknown hash algorithm: {self.algorithm}")
        if self.precision < 1:
            raise ConfigError("precision must be at least 1")
        if self.max_distance < 0:
            raise ConfigError("max_distance cannot be negative")


@dataclass
class ScoutConfig:
    """Top-level settings that control rendering and discovery behaviour."""

    output_root: Path
    wait_after_load: float = 1.0
    navigation_timeout: float = 30.0
    selector: str | None = None
    deduplicate: bool = False
    download: bool = False
    miner: MinerConfig = field(default_factory=MinerConfig)
    analyzer: AnalyzerConfig = field(default_factory=AnalyzerConfig)
    filters: FilterConfig = field(default_factory=FilterConfig)
    hashing: HashConfig = field(default_factory=HashConfig)

    def __post_init__(self) -> None:
        if self.wait_after_load < 0:
            raise ConfigError("wait_after_load cannot be negative")
        if self.navigation_timeout <= 0:
            raise ConfigError("navigation_timeout must be positive")

"""Data models used throughout the discovery pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

PATTERN_ANALYSIS = "pattern-analysis"
FALLBACK = "fallback"
NETWORK_INTERCEPTOR = "network-interceptor"
ENHANCED = "enhanced"


@dataclass(frozen=True)
class Dimensions:
    """Decoded pixel dimensions of an image."""

    width: int
    height: int


@dataclass
class CandidateItem:
    """One discovered media reference plus its derived metadata."""

    source_url: str
    thumbnail_url: Optional[str] = None
    full_size_url: Optional[str] = None
    alt_text: str = ""
    container_path: str = ""
    pattern_id: str = PATTERN_ANALYSIS
    title: Optional[str] = None
    dimensions: Optional[Dimensions] = None
    mime_type: Optional[str] = None
    file_size_bytes: Optional[int] = None
    perceptual_hash: Optional[str] = None
    filter_metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AnalysisResult:
    """Output of a structural analysis pass."""

    items: List[CandidateItem]
    confidence: float
    method: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DiscoveryResult:
    """Merged, optionally filtered, candidates for one page."""

    items: List[CandidateItem]
    confidence: float
    method: str
    stats: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failed(cls, reason: str, stats: Optional[Dict[str, Any]] = None) -> "DiscoveryResult":
        return cls(
            items=[],
            confidence=0.0,
            method="error",
            stats=dict(stats or {}),
            metadata={"error": reason},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "confidence": self.confidence,
            "method": self.method,
            "stats": self.stats,
            "metadata": self.metadata,
        }


@dataclass
class MinerStats:
    """Running counters maintained by the network traffic miner."""

    total_requests: int = 0
    api_requests: int = 0
    image_responses_detected: int = 0
    urls_extracted: int = 0


@dataclass
class ImagesFound:
    """Payload delivered to the miner's observer callback."""

    urls: List[str]
    source: str

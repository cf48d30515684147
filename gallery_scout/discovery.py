"""Compose analyzer and network miner output into one candidate list."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from .dedup import DuplicateDetector
from .document import DocumentSnapshot
from .filters import FilterEngine, FilterRules
from .models import NETWORK_INTERCEPTOR, CandidateItem, DiscoveryResult
from .network import NetworkTrafficMiner
from .patterns import StructuralPatternAnalyzer

logger = logging.getLogger("gallery_scout")

NETWORK_CONTAINER_PATH = "network-discovered"


class DiscoveryCoordinator:
    """Run one discovery pass over a document snapshot.

    Candidates are ranked as: selector matches, then analyzer items, then
    URLs seen only in network traffic. The list is deduplicated by
    ``source_url`` and optionally hashed for visual duplicates and filtered.
    """

    def __init__(
        self,
        analyzer: StructuralPatternAnalyzer,
        miner: NetworkTrafficMiner,
        filter_engine: Optional[FilterEngine] = None,
        detector: Optional[DuplicateDetector] = None,
    ) -> None:
        self.analyzer = analyzer
        self.miner = miner
        self.filter_engine = filter_engine
        self.detector = detector

    def merge(self, items: Iterable[CandidateItem], network_urls: Iterable[str]) -> List[CandidateItem]:
        merged: List[CandidateItem] = []
        seen = set()
        for item in items:
            if item.source_url in seen:
                continue
            seen.add(item.source_url)
            merged.append(item)
        for url in network_urls:
            if url in seen:
                continue
            seen.add(url)
            merged.append(
                CandidateItem(
                    source_url=url,
                    thumbnail_url=url,
                    full_size_url=url,
                    container_path=NETWORK_CONTAINER_PATH,
                    pattern_id=NETWORK_INTERCEPTOR,
                )
            )
        return merged

    async def discover(
        self,
        document: DocumentSnapshot,
        rules: Optional[FilterRules] = None,
    ) -> DiscoveryResult:
        try:
            return await self._discover(document, rules)
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Discovery failed for %s", document.base_url)
            return DiscoveryResult.failed(str(exc), {"network": self.stats()})

    async def _discover(
        self,
        document: DocumentSnapshot,
        rules: Optional[FilterRules],
    ) -> DiscoveryResult:
        selected = self.analyzer.extract_selected(document)
        analysis = self.analyzer.analyze(document)
        if analysis.method == "error":
            return DiscoveryResult.failed(
                str(analysis.metadata.get("error", "analysis failed")),
                {"network": self.stats()},
            )

        network_urls = self.miner.discovered_urls()
        items = self.merge(selected + analysis.items, network_urls)
        stats: Dict[str, Any] = {
            "network": self.stats(),
            "analyzer_items": len(analysis.items),
            "selected_items": len(selected),
            "network_urls": len(network_urls),
            "merged_items": len(items),
        }

        if self.detector is not None:
            items = await self.detector.unique(items)
            stats["dedup"] = self.detector.stats()

        if self.filter_engine is not None and rules is not None and not rules.is_empty():
            outcome = await self.filter_engine.filter_items(items, rules)
            items = outcome.items
            stats["filter"] = outcome.stats

        logger.info(
            "Discovered %d items on %s (%s, confidence %.2f)",
            len(items),
            document.base_url,
            analysis.method,
            analysis.confidence,
        )
        return DiscoveryResult(
            items=items,
            confidence=analysis.confidence,
            method=analysis.method,
            stats=stats,
            metadata=dict(analysis.metadata),
        )

    def stats(self) -> Dict[str, int]:
        return self.miner.stats()

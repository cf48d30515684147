"""Structural pattern analysis for locating the gallery on a page.

Visible images are mapped to their likely container, containers are grouped
by a structural signature, and each group is scored for "gallery-ness".
The best group above the configured threshold yields one item per
container; otherwise every visible image is reported with low confidence.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .config import AnalyzerConfig
from .document import DocumentSnapshot, ElementNode, Rect
from .models import ENHANCED, FALLBACK, PATTERN_ANALYSIS, AnalysisResult, CandidateItem
from .utils import resolve

logger = logging.getLogger("gallery_scout")

Resolver = Callable[[Optional[str], Optional[str]], Optional[str]]

SCORE_PER_CONTAINER = 10
SCORE_GALLERY_CLASS = 50
SCORE_ITEM_CLASS = 30
SCORE_HAS_LINK = 20
SCORE_MULTI_IMAGE = 15
SCORE_GRID = 40


def is_grid_aligned(rects: Sequence[Optional[Rect]], tolerance: float = 20.0) -> bool:
    """True when at least two pairs share a row or two pairs share a column."""
    known = [rect for rect in rects if rect is not None]
    if len(known) < 3:
        return False
    aligned_rows = 0
    aligned_cols = 0
    for i, first in enumerate(known):
        for second in known[i + 1 :]:
            if abs(first.top - second.top) < tolerance:
                aligned_rows += 1
            if abs(first.left - second.left) < tolerance:
                aligned_cols += 1
    return aligned_rows >= 2 or aligned_cols >= 2


def css_path(node: Optional[ElementNode]) -> str:
    """Build a locator such as ``div#main > ul:nth-child(2) > li:nth-child(3)``."""
    parts: List[str] = []
    current = node
    while current is not None and current.tag not in ("body", "html"):
        if current.element_id:
            parts.insert(0, f"{current.tag}#{current.element_id}")
            break
        parts.insert(0, f"{current.tag}:nth-child({current.element_index()})")
        current = current.parent
    return " > ".join(parts)


class PatternCluster:
    """Containers sharing one structural signature, scored as they arrive."""

    def __init__(
        self,
        signature: str,
        class_key: str,
        has_link: bool,
        image_count: int,
        grid_tolerance: float = 20.0,
    ) -> None:
        self.signature = signature
        self.class_key = class_key
        self.has_link = has_link
        self.image_count = image_count
        self.grid_tolerance = grid_tolerance
        self.containers: List[ElementNode] = []
        self.grid_like = False
        self.score = 0

    def append(self, container: ElementNode) -> None:
        if any(existing is container for existing in self.containers):
            return
        self.containers.append(container)
        self.score = self._compute_score()

    def _compute_score(self) -> int:
        score = len(self.containers) * SCORE_PER_CONTAINER
        if "gallery" in self.class_key or "grid" in self.class_key:
            score += SCORE_GALLERY_CLASS
        if "item" in self.class_key or "card" in self.class_key:
            score += SCORE_ITEM_CLASS
        if self.has_link:
            score += SCORE_HAS_LINK
        if self.image_count > 1:
            score += SCORE_MULTI_IMAGE
        if len(self.containers) >= 3:
            self.grid_like = is_grid_aligned(
                [c.rect for c in self.containers], self.grid_tolerance
            )
            if self.grid_like:
                score += SCORE_GRID
        return score


def _signature_parts(container: ElementNode) -> Tuple[str, bool, int]:
    class_key = ".".join(sorted(container.classes))
    has_link = container.find_first("a") is not None
    image_count = len(container.find_all("img"))
    return class_key, has_link, image_count


def signature_for(container: ElementNode) -> str:
    """``tag|sorted.classes|has-anchor|image-count``"""
    class_key, has_link, image_count = _signature_parts(container)
    return f"{container.tag}|{class_key}|{str(has_link).lower()}|{image_count}"


class StructuralPatternAnalyzer:
    """Infer the repeating container pattern that most likely is the gallery."""

    def __init__(
        self,
        config: Optional[AnalyzerConfig] = None,
        resolver: Resolver = resolve,
    ) -> None:
        self.config = config or AnalyzerConfig()
        self._resolve = resolver

    def visible_images(self, document: DocumentSnapshot) -> List[ElementNode]:
        return [img for img in document.images() if img.is_displayed()]

    def find_container(self, image: ElementNode) -> Optional[ElementNode]:
        hints = self.config.container_hints
        container = image.closest(
            lambda node: any(hint in node.get("class") for hint in hints)
        )
        if container is None:
            tags = self.config.block_tags
            container = image.closest(lambda node: node.tag in tags)
        return container

    def build_clusters(self, images: Iterable[ElementNode]) -> Dict[str, PatternCluster]:
        """Group containers by signature; dict order is first-discovery order."""
        clusters: Dict[str, PatternCluster] = {}
        for image in images:
            container = self.find_container(image)
            if container is None:
                continue
            class_key, has_link, image_count = _signature_parts(container)
            signature = f"{container.tag}|{class_key}|{str(has_link).lower()}|{image_count}"
            cluster = clusters.get(signature)
            if cluster is None:
                cluster = PatternCluster(
                    signature,
                    class_key,
                    has_link,
                    image_count,
                    self.config.grid_tolerance,
                )
                clusters[signature] = cluster
            cluster.append(container)
        return clusters

    def best_cluster(self, clusters: Dict[str, PatternCluster]) -> Optional[PatternCluster]:
        best: Optional[PatternCluster] = None
        for cluster in clusters.values():
            if len(cluster.containers) < self.config.min_containers:
                continue
            if best is None or cluster.score > best.score:
                best = cluster
        return best

    def analyze(self, document: DocumentSnapshot) -> AnalysisResult:
        try:
            images = self.visible_images(document)
            clusters = self.build_clusters(images)
            best = self.best_cluster(clusters)
            if best is not None and best.score > self.config.min_score:
                items = self._extract_cluster(best, document.base_url)
                logger.debug(
                    "Selected pattern %s (%d containers, score %d)",
                    best.signature,
                    len(best.containers),
                    best.score,
                )
                return AnalysisResult(
                    items=items,
                    confidence=min(best.score / self.config.score_normalizer, 1.0),
                    method=PATTERN_ANALYSIS,
                    metadata={
                        "pattern": best.signature,
                        "containers": len(best.containers),
                        "score": best.score,
                        "grid_like": best.grid_like,
                    },
                )
            logger.debug("No gallery pattern found among %d clusters", len(clusters))
            return AnalysisResult(
                items=self._extract_fallback(images, document.base_url),
                confidence=self.config.fallback_confidence,
                method=FALLBACK,
                metadata={"clusters": len(clusters)},
            )
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Pattern analysis failed")
            return AnalysisResult(items=[], confidence=0.0, method="error", metadata={"error": str(exc)})

    def _extract_cluster(self, cluster: PatternCluster, base_url: str) -> List[CandidateItem]:
        items: List[CandidateItem] = []
        for container in cluster.containers:
            image = container.find_first("img")
            if image is None:
                continue
            source = self._resolve(image.get("src"), base_url)
            if source is None:
                continue
            link = container.find_first("a")
            full_size = self._resolve(link.get("href"), base_url) if link is not None else None
            items.append(
                CandidateItem(
                    source_url=source,
                    thumbnail_url=source,
                    full_size_url=full_size,
                    alt_text=image.get("alt"),
                    container_path=css_path(container),
                    pattern_id=PATTERN_ANALYSIS,
                    title=image.get("title") or None,
                )
            )
        return items

    def _extract_fallback(self, images: Iterable[ElementNode], base_url: str) -> List[CandidateItem]:
        items: List[CandidateItem] = []
        for image in images:
            source = self._resolve(image.get("src"), base_url)
            if source is None:
                continue
            anchor = image.closest(lambda node: node.tag == "a")
            full_size = None
            if anchor is not None:
                full_size = self._resolve(anchor.get("href"), base_url)
            items.append(
                CandidateItem(
                    source_url=source,
                    thumbnail_url=source,
                    full_size_url=full_size or source,
                    alt_text=image.get("alt"),
                    container_path=css_path(image.parent),
                    pattern_id=FALLBACK,
                    title=image.get("title") or None,
                )
            )
        return items

    def extract_selected(self, document: DocumentSnapshot) -> List[CandidateItem]:
        """Items for elements matched by a user-supplied CSS selector."""
        items: List[CandidateItem] = []
        for node in document.selected():
            image = node if node.tag == "img" else node.find_first("img")
            if image is None:
                continue
            source = self._resolve(image.get("src"), document.base_url)
            if source is None:
                continue
            anchor = node if node.tag == "a" else image.closest(lambda n: n.tag == "a")
            if anchor is None:
                anchor = node.find_first("a")
            full_size = self._resolve(anchor.get("href"), document.base_url) if anchor else None
            items.append(
                CandidateItem(
                    source_url=source,
                    thumbnail_url=source,
                    full_size_url=full_size or source,
                    alt_text=image.get("alt"),
                    container_path=css_path(node),
                    pattern_id=ENHANCED,
                    title=image.get("title") or None,
                )
            )
        return items

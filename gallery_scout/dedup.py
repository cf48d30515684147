"""Perceptual-hash duplicate detection over candidate items."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .config import HASH_ALGORITHMS
from .errors import DecodeError, UnsupportedAlgorithm
from .hashing import (
    DEFAULT_ALGORITHM,
    DEFAULT_PRECISION,
    PerceptualHasher,
    hamming_distance,
)
from .models import CandidateItem
from .worker import HashWorker

logger = logging.getLogger("gallery_scout")


@dataclass
class DuplicateGroup:
    """Items sharing one fingerprint; the first item seen represents them."""

    fingerprint: str
    representative: CandidateItem
    duplicates: List[CandidateItem] = field(default_factory=list)


@dataclass
class DedupStats:
    images_processed: int = 0
    duplicates_found: int = 0
    decode_failures: int = 0


class DuplicateDetector:
    """Group items whose images hash identically (or nearly so)."""

    def __init__(
        self,
        hasher: PerceptualHasher,
        algorithm: str = DEFAULT_ALGORITHM,
        precision: int = DEFAULT_PRECISION,
        max_distance: int = 0,
        worker: Optional[HashWorker] = None,
        concurrency: int = 4,
    ) -> None:
        if algorithm not in HASH_ALGORITHMS:
            raise UnsupportedAlgorithm(algorithm)
        self.hasher = hasher
        self.algorithm = algorithm
        self.precision = precision
        self.max_distance = max_distance
        self.worker = worker
        self._semaphore = asyncio.Semaphore(concurrency)
        self._stats = DedupStats()

    async def fingerprint(self, item: CandidateItem) -> Optional[str]:
        """Hash ``item.source_url``; ``None`` when the image cannot be decoded."""
        async with self._semaphore:
            try:
                if self.worker is None:
                    return await asyncio.to_thread(
                        self.hasher.hash, item.source_url, self.algorithm, self.precision
                    )
                pixels = await asyncio.to_thread(self.hasher.rasterize, item.source_url)
                response = await self.worker.compute_image_hash(
                    pixels, self.algorithm, self.precision
                )
                if not response["success"]:
                    raise DecodeError(response["error"], {"url": item.source_url})
                return response["result"]
            except DecodeError as exc:
                self._stats.decode_failures += 1
                logger.warning("Could not hash %s: %s", item.source_url, exc.message)
                return None

    def _match(self, fingerprint: str, groups: List[DuplicateGroup]) -> Optional[DuplicateGroup]:
        for group in groups:
            if group.fingerprint == fingerprint:
                return group
            if (
                self.max_distance
                and len(group.fingerprint) == len(fingerprint)
                and hamming_distance(group.fingerprint, fingerprint) <= self.max_distance
            ):
                return group
        return None

    async def _group(
        self, items: Sequence[CandidateItem]
    ) -> Tuple[List[CandidateItem], List[DuplicateGroup]]:
        fingerprints = await asyncio.gather(*(self.fingerprint(item) for item in items))
        kept: List[CandidateItem] = []
        groups: List[DuplicateGroup] = []
        exact: Dict[str, DuplicateGroup] = {}
        for item, fingerprint in zip(items, fingerprints):
            self._stats.images_processed += 1
            if fingerprint is None:
                kept.append(item)
                continue
            hashed = dataclasses.replace(item, perceptual_hash=fingerprint)
            group = exact.get(fingerprint) or self._match(fingerprint, groups)
            if group is None:
                group = DuplicateGroup(fingerprint=fingerprint, representative=hashed)
                groups.append(group)
                exact[fingerprint] = group
                kept.append(hashed)
            else:
                group.duplicates.append(hashed)
                self._stats.duplicates_found += 1
                logger.debug(
                    "Duplicate %s matches %s",
                    item.source_url,
                    group.representative.source_url,
                )
        return kept, groups

    async def find_duplicates(self, items: Sequence[CandidateItem]) -> List[DuplicateGroup]:
        _, groups = await self._group(items)
        return [group for group in groups if group.duplicates]

    async def unique(self, items: Sequence[CandidateItem]) -> List[CandidateItem]:
        """Drop later duplicates; undecodable items are kept."""
        kept, _ = await self._group(items)
        return kept

    def stats(self) -> Dict[str, int]:
        return dataclasses.asdict(self._stats)

    def reset_stats(self) -> None:
        self._stats = DedupStats()

"""High-level orchestration for rendering pages and discovering their galleries."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import ExitStack
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

from playwright.async_api import (
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from .config import ScoutConfig
from .dedup import DuplicateDetector
from .discovery import DiscoveryCoordinator
from .document import SNAPSHOT_SCRIPT, DocumentSnapshot, from_snapshot
from .filters import FilterEngine, FilterRules
from .hashing import PerceptualHasher
from .images import DownloadedItem, RemoteProbe, download_items
from .models import DiscoveryResult
from .network import NetworkTrafficMiner
from .patterns import StructuralPatternAnalyzer
from .utils import slugify
from .worker import HashWorker

logger = logging.getLogger("gallery_scout")


@dataclass
class PageReport:
    """Outcome of discovering a single URL."""

    url: str
    result: DiscoveryResult
    output_path: Optional[Path] = None
    downloads: List[DownloadedItem] = field(default_factory=list)
    total_seconds: float = 0.0

    def to_dict(self) -> dict:
        payload = self.result.to_dict()
        payload["url"] = self.url
        payload["downloads"] = [asdict(item) for item in self.downloads]
        return payload


def build_coordinator(
    config: ScoutConfig,
    probe: Optional[RemoteProbe] = None,
    worker: Optional[HashWorker] = None,
) -> DiscoveryCoordinator:
    """Wire analyzer, miner, filter engine and (optionally) dedup together."""
    probe = probe or RemoteProbe(timeout=config.filters.probe_timeout)
    detector = None
    if config.deduplicate:
        detector = DuplicateDetector(
            PerceptualHasher(probe.rasterize),
            algorithm=config.hashing.algorithm,
            precision=config.hashing.precision,
            max_distance=config.hashing.max_distance,
            worker=worker,
        )
    return DiscoveryCoordinator(
        StructuralPatternAnalyzer(config.analyzer),
        NetworkTrafficMiner(config.miner),
        FilterEngine(config.filters, probe),
        detector,
    )


def build_output_dir(config: ScoutConfig, url: str) -> Path:
    """Create ``<output>/<domain>/<slug>`` for a discovered page."""
    parsed = urlparse(url)
    domain = slugify(parsed.netloc or "site", fallback="site")
    page_slug = slugify(parsed.path.strip("/") or "index", fallback="index")
    output_dir = config.output_root / domain / page_slug[:80]
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


async def snapshot_page(
    playwright: Playwright,
    url: str,
    config: ScoutConfig,
    miner: NetworkTrafficMiner,
) -> DocumentSnapshot:
    """Render ``url`` while the miner listens, then snapshot the DOM."""
    browser = await playwright.chromium.launch(headless=True)
    page = await browser.new_page()
    page.set_default_navigation_timeout(config.navigation_timeout * 1000)
    miner.start()
    miner.attach(page)
    try:
        logger.info("Loading %s", url)
        await page.goto(url, wait_until="networkidle")
        if config.wait_after_load:
            await page.wait_for_timeout(int(config.wait_after_load * 1000))
        payload = await page.evaluate(SNAPSHOT_SCRIPT, config.selector)
        final_url = page.url
    finally:
        miner.detach(page)
        miner.stop()
        await browser.close()
    return from_snapshot(payload, final_url)


async def discover_page(
    playwright: Playwright,
    url: str,
    config: ScoutConfig,
    rules: Optional[FilterRules] = None,
    coordinator: Optional[DiscoveryCoordinator] = None,
) -> DiscoveryResult:
    """Render a URL and run one discovery pass over it."""
    coordinator = coordinator or build_coordinator(config)
    coordinator.miner.reset()
    try:
        document = await snapshot_page(playwright, url, config, coordinator.miner)
    except PlaywrightTimeoutError as exc:
        logger.error("Timeout while loading %s: %s", url, exc)
        return DiscoveryResult.failed(f"Timeout while loading {url}", {"network": coordinator.stats()})
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("Unexpected error loading %s", url)
        return DiscoveryResult.failed(str(exc), {"network": coordinator.stats()})
    return await coordinator.discover(document, rules)


def write_report(report: PageReport, output_dir: Path) -> Path:
    output_path = output_dir / "discovery.json"
    output_path.write_text(json.dumps(report.to_dict(), indent=2), encoding="utf-8")
    logger.info("Saved discovery report to %s", output_path)
    return output_path


async def run_discovery(
    urls: List[str],
    config: ScoutConfig,
    rules: Optional[FilterRules] = None,
) -> List[PageReport]:
    """Discover each URL sequentially and persist one report per page."""
    reports: List[PageReport] = []
    with ExitStack() as stack:
        worker = stack.enter_context(HashWorker()) if config.deduplicate else None
        coordinator = build_coordinator(config, worker=worker)
        async with async_playwright() as playwright:
            for url in urls:
                start = time.perf_counter()
                result = await discover_page(playwright, url, config, rules, coordinator)
                report = PageReport(url=url, result=result)
                output_dir = build_output_dir(config, url)
                if config.download and result.items:
                    report.downloads = await asyncio.to_thread(
                        download_items, result.items, output_dir
                    )
                report.output_path = write_report(report, output_dir)
                report.total_seconds = time.perf_counter() - start
                reports.append(report)
    return reports

"""Passive mining of media URLs from observed network traffic."""

from __future__ import annotations

import json
import logging
import re
from collections import OrderedDict
from dataclasses import asdict
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

from .config import MinerConfig
from .errors import ParseError
from .models import ImagesFound, MinerStats
from .utils import resolve

logger = logging.getLogger("gallery_scout")

IMAGE_URL_PATTERN = re.compile(r"\.(jpg|jpeg|png|gif|webp|avif|svg|bmp|tiff)($|\?)", re.IGNORECASE)

ImagesFoundCallback = Callable[[ImagesFound], None]
Resolver = Callable[[Optional[str], Optional[str]], Optional[str]]
Body = Union[str, bytes, None]


def looks_like_image_url(value: Any) -> bool:
    return isinstance(value, str) and len(value) > 5 and bool(IMAGE_URL_PATTERN.search(value))


def find_image_urls(data: Any) -> List[str]:
    """Collect image-looking strings from a parsed JSON document in order."""
    found: List[str] = []
    stack: List[Iterator[Any]] = [iter([data])]
    while stack:
        try:
            value = next(stack[-1])
        except StopIteration:
            stack.pop()
            continue
        if isinstance(value, dict):
            stack.append(iter(value.values()))
        elif isinstance(value, list):
            stack.append(iter(value))
        elif looks_like_image_url(value):
            found.append(value)
    return found


class NetworkTrafficMiner:
    """Observe request/response pairs and collect embedded media URLs.

    The host calls :meth:`observe_request` and :meth:`observe_response` (or
    wires a Playwright page through :meth:`attach`). Nothing is re-fetched.
    """

    def __init__(
        self,
        config: Optional[MinerConfig] = None,
        resolver: Resolver = resolve,
    ) -> None:
        self.config = config or MinerConfig()
        self._resolve = resolver
        self._active = False
        self._discovered: "OrderedDict[str, None]" = OrderedDict()
        self._stats = MinerStats()
        self._callbacks: Dict[str, ImagesFoundCallback] = {}
        self._listeners: Dict[int, Tuple[Any, Callable[..., Any], Callable[..., Any]]] = {}

    @property
    def is_active(self) -> bool:
        return self._active

    def start(self) -> None:
        if self._active:
            return
        self._active = True
        logger.debug("Network miner started")

    def stop(self) -> None:
        if not self._active:
            return
        self._active = False
        for page, on_request, on_response in list(self._listeners.values()):
            self._remove_listeners(page, on_request, on_response)
        self._listeners.clear()
        logger.debug("Network miner stopped")

    def on_images_found(self, callback: ImagesFoundCallback) -> None:
        self._callbacks["imagesFound"] = callback

    def is_api_request(self, url: str) -> bool:
        return any(pattern.search(url) for pattern in self.config.compiled_api_patterns)

    def should_monitor(self, url: str) -> bool:
        lowered = url.lower()
        return self.is_api_request(url) or "image" in lowered or "photo" in lowered

    def observe_request(self, url: str, method: str = "GET") -> None:
        if not self._active:
            return
        self._stats.total_requests += 1
        if self.is_api_request(url):
            self._stats.api_requests += 1
        logger.debug("Observed %s %s", method, url)

    def observe_response(
        self,
        url: str,
        status: int,
        content_type: Optional[str],
        body: Body,
    ) -> List[str]:
        """Analyse a response if monitoring is active; return newly found URLs."""
        if not self._active:
            return []
        return self.analyze_response(url, status, content_type, body)

    def analyze_response(
        self,
        url: str,
        status: int,
        content_type: Optional[str],
        body: Body,
    ) -> List[str]:
        if not 200 <= status < 300 or not self.should_monitor(url):
            return []
        if not body:
            return []
        if len(body) > self.config.max_response_size:
            logger.debug("Skipping %s: body exceeds %d bytes", url, self.config.max_response_size)
            return []
        text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
        kind = (content_type or "").lower()
        try:
            if "json" in kind:
                references = self._extract_from_json(text)
            elif "html" in kind or kind.startswith("text/"):
                references = self._extract_from_text(text)
            else:
                return []
        except ParseError as exc:
            logger.debug("Skipping response %s: %s", url, exc)
            return []
        return self._record(references, url)

    def _extract_from_json(self, text: str) -> List[str]:
        try:
            data = json.loads(text)
        except (ValueError, RecursionError) as exc:
            raise ParseError(f"Malformed JSON: {exc}") from exc
        return find_image_urls(data)

    def _extract_from_text(self, text: str) -> List[str]:
        references: List[str] = []
        for pattern in self.config.compiled_response_patterns:
            references.extend(match.group(1) for match in pattern.finditer(text))
        return references

    def _record(self, references: List[str], source: str) -> List[str]:
        new_urls: List[str] = []
        for reference in references:
            resolved = self._resolve(reference, source)
            if resolved is None or resolved in self._discovered:
                continue
            self._discovered[resolved] = None
            new_urls.append(resolved)
            if len(self._discovered) > self.config.max_discovered_urls:
                self._discovered.popitem(last=False)
        if new_urls:
            self._stats.image_responses_detected += 1
            self._stats.urls_extracted += len(new_urls)
            self._notify(ImagesFound(urls=list(new_urls), source=source))
        return new_urls

    def _notify(self, event: ImagesFound) -> None:
        callback = self._callbacks.get("imagesFound")
        if callback is None:
            return
        try:
            callback(event)
        except Exception:  # pylint: disable=broad-except
            logger.exception("imagesFound callback failed for %s", event.source)

    def discovered_urls(self) -> List[str]:
        return list(self._discovered)

    def stats(self) -> Dict[str, int]:
        return asdict(self._stats)

    def reset(self) -> None:
        self._discovered.clear()
        self._stats = MinerStats()

    # -- Playwright wiring -------------------------------------------------
    def attach(self, page: Any) -> None:
        """Register request/response listeners on a Playwright page."""
        if id(page) in self._listeners:
            return

        def on_request(request: Any) -> None:
            self.observe_request(request.url, request.method)

        async def on_response(response: Any) -> None:
            await self.handle_playwright_response(response)

        page.on("request", on_request)
        page.on("response", on_response)
        self._listeners[id(page)] = (page, on_request, on_response)

    def detach(self, page: Any) -> None:
        entry = self._listeners.pop(id(page), None)
        if entry is not None:
            self._remove_listeners(*entry)

    @staticmethod
    def _remove_listeners(page: Any, on_request: Any, on_response: Any) -> None:
        page.remove_listener("request", on_request)
        page.remove_listener("response", on_response)

    async def handle_playwright_response(self, response: Any) -> List[str]:
        if not self._active:
            return []
        url = response.url
        status = response.status
        if not 200 <= status < 300 or not self.should_monitor(url):
            return []
        headers = response.headers
        declared = headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self.config.max_response_size:
            logger.debug("Skipping %s: declared length %s", url, declared)
            return []
        try:
            body = await response.body()
        except Exception as exc:  # pylint: disable=broad-except
            logger.debug("Could not read body of %s: %s", url, exc)
            return []
        # Dispatched before any stop(); the analysis completes regardless.
        return self.analyze_response(url, status, headers.get("content-type"), body)

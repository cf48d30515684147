"""Composable rule evaluation for candidate items.

Every rule family shares the same directive semantics: directives are
visited in order and the first one that matches decides (an include
directive passes the item, an exclude directive fails it). When nothing
matches, the family fails only if it holds at least one include directive.

Attributes that need a remote probe (MIME type, size, dimensions) fail
open: if they cannot be determined the family passes.
"""

from __future__ import annotations

import asyncio
import dataclasses
import functools
import inspect
import json
import logging
import posixpath
import re
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Pattern,
    Protocol,
    Sequence,
    Tuple,
    Union,
)
from urllib.parse import urlsplit

from .config import FilterConfig
from .errors import ConfigError, CustomPredicateError
from .models import CandidateItem, Dimensions
from .utils import host_of

logger = logging.getLogger("gallery_scout")

MIME_GROUPS: Dict[str, Tuple[str, ...]] = {
    "images": ("image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp", "image/svg+xml", "image/bmp"),
    "videos": ("video/mp4", "video/webm", "video/ogg", "video/avi", "video/mov"),
    "documents": ("application/pdf", "text/plain", "application/msword"),
    "archives": ("application/zip", "application/x-rar", "application/x-7z-compressed"),
}

EXTENSION_GROUPS: Dict[str, Tuple[str, ...]] = {
    "images": (".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".bmp"),
    "videos": (".mp4", ".webm", ".ogg", ".avi", ".mov", ".mkv"),
    "documents": (".pdf", ".txt", ".doc", ".docx"),
    "archives": (".zip", ".rar", ".7z", ".tar"),
}

EXTENSION_MIME_TYPES: Dict[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".avif": "image/avif",
    ".svg": "image/svg+xml",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".pdf": "application/pdf",
}

_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}

FAMILY_ORDER = (
    "urlPatterns",
    "extensions",
    "mimeTypes",
    "fileSize",
    "dimensions",
    "customRegex",
    "domains",
    "customFunction",
)


# -- Rule types ---------------------------------------------------------------


@dataclass(frozen=True)
class UrlPatternRule:
    value: str
    include: bool = False
    kind: str = "regex"  # regex | wildcard | exact
    flags: str = "i"


@dataclass(frozen=True)
class ValueRule:
    """Directive for the extension, MIME type and domain families."""

    value: str
    include: bool = False


@dataclass(frozen=True)
class SizeBounds:
    min: Optional[int] = None
    max: Optional[int] = None


@dataclass(frozen=True)
class DimensionBounds:
    min_width: Optional[int] = None
    max_width: Optional[int] = None
    min_height: Optional[int] = None
    max_height: Optional[int] = None

    @classmethod
    def preset(cls, name: str) -> "DimensionBounds":
        try:
            return DIMENSION_PRESETS[name]
        except KeyError as exc:
            raise ConfigError(f"Unknown dimension preset: {name}") from exc

    def admits(self, dimensions: Dimensions) -> bool:
        width, height = dimensions.width, dimensions.height
        if self.min_width is not None and width < self.min_width:
            return False
        if self.max_width is not None and width > self.max_width:
            return False
        if self.min_height is not None and height < self.min_height:
            return False
        if self.max_height is not None and height > self.max_height:
            return False
        return True


DIMENSION_PRESETS: Dict[str, DimensionBounds] = {
    "thumbnail": DimensionBounds(0, 300, 0, 300),
    "small": DimensionBounds(300, 800, 300, 600),
    "medium": DimensionBounds(800, 1920, 600, 1080),
    "large": DimensionBounds(1920, 4096, 1080, 2160),
    "wallpaper": DimensionBounds(min_width=1920, min_height=1080),
}


@dataclass(frozen=True)
class UrlRegexRule:
    pattern: str
    include: bool = False
    flags: str = "i"


@dataclass(frozen=True)
class TitleRegexRule:
    pattern: str
    include: bool = False
    flags: str = "i"


@dataclass(frozen=True)
class AltRegexRule:
    pattern: str
    include: bool = False
    flags: str = "i"


Predicate = Callable[[CandidateItem], Union[bool, Awaitable[bool]]]


@dataclass(frozen=True)
class CustomPredicateRule:
    func: Predicate


RegexRule = Union[UrlRegexRule, TitleRegexRule, AltRegexRule]

_REGEX_FIELDS = {"url": UrlRegexRule, "title": TitleRegexRule, "alt": AltRegexRule}


def _entries(data: Mapping[str, Any], family: str, *keys: str) -> List[Any]:
    entries = _pick(data, *keys)
    if entries is None:
        return []
    if not isinstance(entries, (list, tuple)):
        raise ConfigError(f"{family} must be a list", {"family": family})
    return list(entries)


def _entry(entry: Any, family: str, index: int, *required: str) -> Mapping[str, Any]:
    """Check that a rule entry is an object carrying one of ``required``."""
    context = {"family": family, "index": index}
    if not isinstance(entry, Mapping):
        raise ConfigError(f"{family}[{index}] must be an object", context)
    if required and not any(key in entry for key in required):
        raise ConfigError(f"{family}[{index}] is missing '{required[0]}'", context)
    return entry


def _bounds(value: Any, family: str) -> Optional[Mapping[str, Any]]:
    if not value:
        return None
    if not isinstance(value, Mapping):
        raise ConfigError(f"{family} must be an object", {"family": family})
    return value


def _directives(
    entries: Sequence[Any], family: str, groups: Mapping[str, Sequence[str]]
) -> Tuple[ValueRule, ...]:
    rules: List[ValueRule] = []
    for index, entry in enumerate(entries):
        if isinstance(entry, str):
            if entry not in groups:
                raise ConfigError(f"Unknown group: {entry}", {"family": family, "index": index})
            rules.extend(ValueRule(value, True) for value in groups[entry])
        else:
            entry = _entry(entry, family, index, "value")
            rules.append(ValueRule(str(entry["value"]), bool(entry.get("include", False))))
    return tuple(rules)


def _pick(mapping: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in mapping:
            return mapping[key]
    return None


@dataclass(frozen=True)
class FilterRules:
    """A declarative rule set; supplied per call and never mutated."""

    url_patterns: Tuple[UrlPatternRule, ...] = ()
    extensions: Tuple[ValueRule, ...] = ()
    mime_types: Tuple[ValueRule, ...] = ()
    file_size: Optional[SizeBounds] = None
    dimensions: Optional[DimensionBounds] = None
    custom_regex: Tuple[RegexRule, ...] = ()
    domains: Tuple[ValueRule, ...] = ()
    custom_function: Optional[CustomPredicateRule] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FilterRules":
        """Build rules from the camelCase mapping used by rule files."""
        url_patterns: List[UrlPatternRule] = []
        for index, entry in enumerate(_entries(data, "urlPatterns", "urlPatterns", "url_patterns")):
            entry = _entry(entry, "urlPatterns", index, "value")
            url_patterns.append(
                UrlPatternRule(
                    value=str(entry["value"]),
                    include=bool(entry.get("include", False)),
                    kind=str(entry.get("type", entry.get("kind", "regex"))),
                    flags=str(entry.get("flags", "i")),
                )
            )

        size = _bounds(_pick(data, "fileSize", "file_size"), "fileSize")
        file_size = SizeBounds(size.get("min"), size.get("max")) if size else None

        dims = data.get("dimensions")
        dimensions: Optional[DimensionBounds] = None
        if isinstance(dims, str):
            dimensions = DimensionBounds.preset(dims)
        elif dims:
            dims = _bounds(dims, "dimensions")
            dimensions = DimensionBounds(
                _pick(dims, "minWidth", "min_width"),
                _pick(dims, "maxWidth", "max_width"),
                _pick(dims, "minHeight", "min_height"),
                _pick(dims, "maxHeight", "max_height"),
            )

        custom_regex: List[RegexRule] = []
        for index, entry in enumerate(_entries(data, "customRegex", "customRegex", "custom_regex")):
            entry = _entry(entry, "customRegex", index, "pattern", "value")
            field_name = entry.get("field", "url")
            rule_type = _REGEX_FIELDS.get(field_name, UrlRegexRule)
            custom_regex.append(
                rule_type(
                    pattern=str(entry.get("pattern", entry.get("value", ""))),
                    include=bool(entry.get("include", False)),
                    flags=str(entry.get("flags", "i")),
                )
            )

        func = _pick(data, "customFunction", "custom_function")
        if func is not None and not callable(func):
            raise ConfigError("customFunction must be callable")

        return cls(
            url_patterns=tuple(url_patterns),
            extensions=_directives(
                _entries(data, "extensions", "extensions"), "extensions", EXTENSION_GROUPS
            ),
            mime_types=_directives(
                _entries(data, "mimeTypes", "mimeTypes", "mime_types"), "mimeTypes", MIME_GROUPS
            ),
            file_size=file_size,
            dimensions=dimensions,
            custom_regex=tuple(custom_regex),
            domains=_directives(_entries(data, "domains", "domains"), "domains", {}),
            custom_function=CustomPredicateRule(func) if func is not None else None,
        )

    def serialize(self) -> str:
        """Stable text form used as part of the filter cache key."""
        payload: Dict[str, Any] = {
            "url_patterns": [dataclasses.asdict(r) for r in self.url_patterns],
            "extensions": [dataclasses.asdict(r) for r in self.extensions],
            "mime_types": [dataclasses.asdict(r) for r in self.mime_types],
            "file_size": dataclasses.asdict(self.file_size) if self.file_size else None,
            "dimensions": dataclasses.asdict(self.dimensions) if self.dimensions else None,
            "custom_regex": [
                [type(r).__name__, r.pattern, r.include, r.flags] for r in self.custom_regex
            ],
            "domains": [dataclasses.asdict(r) for r in self.domains],
            "custom_function": self.custom_function.func if self.custom_function else None,
        }
        return json.dumps(payload, sort_keys=True, default=_json_default)

    def is_empty(self) -> bool:
        return not any(
            (
                self.url_patterns,
                self.extensions,
                self.mime_types,
                self.file_size,
                self.dimensions,
                self.custom_regex,
                self.domains,
                self.custom_function,
            )
        )


def _json_default(value: Any) -> str:
    if callable(value):
        module = getattr(value, "__module__", "")
        name = getattr(value, "__qualname__", repr(value))
        return f"{module}.{name}#{id(value)}"
    return repr(value)


# -- Matching helpers ---------------------------------------------------------


@functools.lru_cache(maxsize=512)
def _compile(pattern: str, flags: str) -> Optional[Pattern[str]]:
    value = 0
    for flag in flags:
        value |= _REGEX_FLAGS.get(flag, 0)
    try:
        return re.compile(pattern, value)
    except re.error as exc:
        logger.warning("Invalid pattern %r ignored: %s", pattern, exc)
        return None


def wildcard_to_regex(value: str) -> str:
    """Translate ``*`` and ``?`` wildcards into a regular expression."""
    return "".join(
        ".*" if char == "*" else "." if char == "?" else re.escape(char) for char in value
    )


def _first_match(rules: Sequence[Any], matches: Callable[[Any], bool]) -> bool:
    for rule in rules:
        if matches(rule):
            return bool(rule.include)
    return not any(rule.include for rule in rules)


def url_pattern_matches(rule: UrlPatternRule, url: str) -> bool:
    if rule.kind == "exact":
        return rule.value in url
    if rule.kind == "wildcard":
        regex = _compile(wildcard_to_regex(rule.value), "i")
    elif rule.kind == "regex":
        regex = _compile(rule.value, rule.flags)
    else:
        logger.warning("Unknown URL pattern type %r ignored", rule.kind)
        return False
    return regex is not None and regex.search(url) is not None


def regex_rule_matches(rule: RegexRule, item: CandidateItem) -> bool:
    if isinstance(rule, UrlRegexRule):
        target = item.source_url
    elif isinstance(rule, TitleRegexRule):
        target = item.title or ""
    elif isinstance(rule, AltRegexRule):
        target = item.alt_text or ""
    else:
        raise TypeError(f"Unsupported regex rule: {rule!r}")
    regex = _compile(rule.pattern, rule.flags)
    return regex is not None and regex.search(target) is not None


def file_extension(url: str) -> str:
    try:
        path = urlsplit(url).path
    except ValueError:
        return ""
    return posixpath.splitext(path)[1].lower()


def mime_from_url(url: str) -> Optional[str]:
    return EXTENSION_MIME_TYPES.get(file_extension(url))


# -- Engine -------------------------------------------------------------------


class MetadataProbe(Protocol):
    async def probe_async(self, url: str) -> Any: ...

    async def dimensions_async(self, url: str) -> Dimensions: ...


@dataclass
class FilterResult:
    passed: bool
    failed_filters: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FilterStats:
    total_filtered: int = 0
    passed: int = 0
    failed: int = 0
    filter_breakdown: Dict[str, int] = field(default_factory=dict)


@dataclass
class FilterOutcome:
    items: List[CandidateItem]
    stats: Dict[str, Any]


class _Attributes:
    """Lazily probed attributes of one item for one evaluation."""

    def __init__(self, engine: "FilterEngine", item: CandidateItem) -> None:
        self._engine = engine
        self.item = item
        self._probe: Any = None
        self._probed = False
        self.learned: Dict[str, Any] = {}
        self.timed_out = False

    async def _call(self, method: str) -> Any:
        value, timed_out = await self._engine._call_probe(method, self.item.source_url)
        self.timed_out = self.timed_out or timed_out
        return value

    async def _probe_result(self) -> Any:
        if not self._probed:
            self._probed = True
            self._probe = await self._call("probe_async")
        return self._probe

    async def mime_type(self) -> Optional[str]:
        mime = self.item.mime_type or mime_from_url(self.item.source_url)
        if mime is None:
            probed = await self._probe_result()
            mime = getattr(probed, "mime_type", None)
            if mime:
                self.learned["mime_type"] = mime
        return mime

    async def file_size(self) -> Optional[int]:
        size = self.item.file_size_bytes
        if size is None:
            probed = await self._probe_result()
            size = getattr(probed, "file_size", None)
            if size is not None:
                self.learned["file_size_bytes"] = size
        return size

    async def dimensions(self) -> Optional[Dimensions]:
        dims = self.item.dimensions
        if dims is None:
            dims = await self._call("dimensions_async")
            if dims is not None:
                self.learned["dimensions"] = dims
        return dims


class FilterEngine:
    """Evaluate items against :class:`FilterRules` with result caching."""

    def __init__(
        self,
        config: Optional[FilterConfig] = None,
        probe: Optional[MetadataProbe] = None,
    ) -> None:
        self.config = config or FilterConfig()
        self.probe = probe
        self._cache: "OrderedDict[Tuple[str, str], FilterResult]" = OrderedDict()
        self._stats = FilterStats()

    async def _call_probe(self, method: str, url: str) -> Tuple[Any, bool]:
        """Run one probe call; returns ``(value, timed_out)``, value ``None`` on failure."""
        if self.probe is None:
            return None, False
        try:
            value = await asyncio.wait_for(
                getattr(self.probe, method)(url), timeout=self.config.probe_timeout
            )
            return value, False
        except asyncio.TimeoutError:
            logger.warning("Probe %s timed out for %s", method, url)
            return None, True
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Probe %s failed for %s: %s", method, url, exc)
        return None, False

    async def evaluate(
        self,
        item: CandidateItem,
        rules: FilterRules,
        rules_key: Optional[str] = None,
    ) -> FilterResult:
        key = (item.source_url, rules_key if rules_key is not None else rules.serialize())
        if self.config.cache_results:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

        result = await self._evaluate_families(item, rules)

        if self.config.cache_results and not result.metadata.get("timed_out"):
            self._cache[key] = result
            if len(self._cache) > self.config.max_cache_size:
                self._cache.popitem(last=False)
        return result

    async def _evaluate_families(self, item: CandidateItem, rules: FilterRules) -> FilterResult:
        attributes = _Attributes(self, item)
        url = item.source_url
        for family in FAMILY_ORDER:
            passed = await self._evaluate_family(family, attributes, rules, url)
            if passed is False:
                return FilterResult(passed=False, failed_filters=[family])
        metadata: Dict[str, Any] = {"checked": [f for f in FAMILY_ORDER if _present(f, rules)]}
        metadata.update(attributes.learned)
        if attributes.timed_out:
            metadata["timed_out"] = True
        return FilterResult(passed=True, metadata=metadata)

    async def _evaluate_family(
        self, family: str, attributes: _Attributes, rules: FilterRules, url: str
    ) -> Optional[bool]:
        """Return None when the family has no directives."""
        if not _present(family, rules):
            return None
        if family == "urlPatterns":
            return _first_match(rules.url_patterns, lambda r: url_pattern_matches(r, url))
        if family == "extensions":
            lowered = url.lower()
            return _first_match(rules.extensions, lambda r: lowered.endswith(r.value.lower()))
        if family == "mimeTypes":
            mime = await attributes.mime_type()
            if mime is None:
                return True
            mime = mime.lower()
            return _first_match(rules.mime_types, lambda r: mime.startswith(r.value.lower()))
        if family == "fileSize":
            size = await attributes.file_size()
            if size is None:
                return True
            bounds = rules.file_size
            if bounds.min is not None and size < bounds.min:
                return False
            if bounds.max is not None and size > bounds.max:
                return False
            return True
        if family == "dimensions":
            dims = await attributes.dimensions()
            return True if dims is None else rules.dimensions.admits(dims)
        if family == "customRegex":
            return _first_match(rules.custom_regex, lambda r: regex_rule_matches(r, attributes.item))
        if family == "domains":
            host = host_of(url)
            if not host:
                return True
            return _first_match(rules.domains, lambda r: r.value.lower() in host)
        if family == "customFunction":
            return await self._run_predicate(rules.custom_function, attributes.item)
        raise ValueError(f"Unknown filter family: {family}")

    async def _run_predicate(self, rule: CustomPredicateRule, item: CandidateItem) -> bool:
        try:
            outcome = rule.func(item)
            if inspect.isawaitable(outcome):
                outcome = await asyncio.wait_for(outcome, timeout=self.config.probe_timeout)
            return bool(outcome)
        except asyncio.TimeoutError:
            logger.warning("Custom filter function timed out for %s", item.source_url)
            return False
        except Exception as exc:  # pylint: disable=broad-except
            error = CustomPredicateError(
                f"Custom filter function failed: {exc}", {"url": item.source_url}
            )
            logger.warning("%s", error.message)
            return False

    async def filter_items(
        self, items: Iterable[CandidateItem], rules: FilterRules
    ) -> FilterOutcome:
        """Filter a batch, accumulating aggregate statistics."""
        start = time.perf_counter()
        pending = list(items)
        rules_key = rules.serialize()
        step = self.config.probe_concurrency
        logger.debug("Filtering %d items", len(pending))

        accepted: List[CandidateItem] = []
        for offset in range(0, len(pending), step):
            batch = pending[offset : offset + step]
            results = await asyncio.gather(
                *(self.evaluate(item, rules, rules_key) for item in batch)
            )
            for item, result in zip(batch, results):
                self._stats.total_filtered += 1
                if result.passed:
                    self._stats.passed += 1
                    accepted.append(_annotate(item, result))
                else:
                    self._stats.failed += 1
                    for family in result.failed_filters:
                        breakdown = self._stats.filter_breakdown
                        breakdown[family] = breakdown.get(family, 0) + 1
            if offset + step < len(pending) and self.config.batch_pause:
                await asyncio.sleep(self.config.batch_pause)

        elapsed = time.perf_counter() - start
        logger.info("Filtering completed: %d/%d items passed", len(accepted), len(pending))
        return FilterOutcome(
            items=accepted,
            stats={
                "total_input": len(pending),
                "total_output": len(accepted),
                "processing_seconds": elapsed,
                "filter_breakdown": dict(self._stats.filter_breakdown),
            },
        )

    def stats(self) -> Dict[str, Any]:
        snapshot = dataclasses.asdict(self._stats)
        snapshot["cache_size"] = len(self._cache)
        return snapshot

    def reset_stats(self) -> None:
        self._stats = FilterStats()

    def clear_cache(self) -> None:
        self._cache.clear()


def _present(family: str, rules: FilterRules) -> bool:
    value = {
        "urlPatterns": rules.url_patterns,
        "extensions": rules.extensions,
        "mimeTypes": rules.mime_types,
        "fileSize": rules.file_size,
        "dimensions": rules.dimensions,
        "customRegex": rules.custom_regex,
        "domains": rules.domains,
        "customFunction": rules.custom_function,
    }[family]
    return bool(value)


def _annotate(item: CandidateItem, result: FilterResult) -> CandidateItem:
    learned = {
        key: result.metadata[key]
        for key in ("mime_type", "file_size_bytes", "dimensions")
        if key in result.metadata and getattr(item, key) is None
    }
    return dataclasses.replace(item, filter_metadata=dict(result.metadata), **learned)

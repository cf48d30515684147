"""Traversable snapshots of a rendered document.

A snapshot is taken either from a live Playwright page, in which case every
element carries its bounding box and computed style, or from static HTML
parsed with BeautifulSoup, in which case geometry is unknown.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

from bs4 import BeautifulSoup, Tag

from .utils import resolve

logger = logging.getLogger("gallery_scout")

SNAPSHOT_SCRIPT = """
(selector) => {
  const SKIP = new Set(["SCRIPT", "STYLE", "NOSCRIPT", "TEMPLATE", "LINK", "META"]);
  let selected = new Set();
  let selectorError = null;
  if (selector) {
    try {
      selected = new Set(document.querySelectorAll(selector));
    } catch (err) {
      selectorError = String(err);
    }
  }
  const walk = (el) => {
    const rect = el.getBoundingClientRect();
    const style = getComputedStyle(el);
    const attrs = {};
    for (const attr of el.attributes) {
      attrs[attr.name] = attr.value;
    }
    if (el.tagName === "IMG") {
      attrs.src = el.currentSrc || el.src || attrs.src || "";
    }
    if (el.tagName === "A" && typeof el.href === "string" && el.href) {
      attrs.href = el.href;
    }
    const children = [];
    for (const child of el.children) {
      if (!SKIP.has(child.tagName)) {
        children.push(walk(child));
      }
    }
    return {
      tag: el.tagName.toLowerCase(),
      attrs,
      rect: {
        top: rect.top, left: rect.left, width: rect.width,
        height: rect.height, bottom: rect.bottom, right: rect.right,
      },
      style: {
        display: style.display,
        visibility: style.visibility,
        opacity: style.opacity,
        backgroundImage: style.backgroundImage,
      },
      selected: selected.has(el),
      children,
    };
  };
  return {
    url: location.href,
    viewport: {width: window.innerWidth, height: window.innerHeight},
    selectorError,
    root: walk(document.documentElement),
  };
}
"""

_INLINE_DECLARATION = re.compile(r"([a-z-]+)\s*:\s*([^;]+)", re.IGNORECASE)


@dataclass(frozen=True)
class Rect:
    """Element bounding box in viewport coordinates."""

    top: float
    left: float
    width: float
    height: float

    @property
    def bottom(self) -> float:
        return self.top + self.height

    @property
    def right(self) -> float:
        return self.left + self.width


@dataclass(eq=False)
class ElementNode:
    """One element of a document snapshot."""

    tag: str
    attrs: Dict[str, str] = field(default_factory=dict)
    rect: Optional[Rect] = None
    style: Dict[str, str] = field(default_factory=dict)
    selected: bool = False
    children: List["ElementNode"] = field(default_factory=list)
    parent: Optional["ElementNode"] = field(default=None, repr=False)

    def append(self, child: "ElementNode") -> "ElementNode":
        child.parent = self
        self.children.append(child)
        return child

    @property
    def classes(self) -> List[str]:
        return self.attrs.get("class", "").split()

    @property
    def element_id(self) -> str:
        return self.attrs.get("id", "")

    def get(self, name: str, default: str = "") -> str:
        return self.attrs.get(name, default)

    def iter_descendants(self) -> Iterator["ElementNode"]:
        """Yield descendants in document order, excluding ``self``."""
        stack = list(reversed(self.children))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def find_all(self, tag: str) -> List["ElementNode"]:
        return [node for node in self.iter_descendants() if node.tag == tag]

    def find_first(self, tag: str) -> Optional["ElementNode"]:
        for node in self.iter_descendants():
            if node.tag == tag:
                return node
        return None

    def ancestors(self) -> Iterator["ElementNode"]:
        node = self.parent
        while node is not None:
            yield node
            node = node.parent

    def closest(
        self, predicate: Callable[["ElementNode"], bool], include_self: bool = False
    ) -> Optional["ElementNode"]:
        if include_self and predicate(self):
            return self
        for node in self.ancestors():
            if predicate(node):
                return node
        return None

    def element_index(self) -> int:
        """1-based position among the parent's element children."""
        if self.parent is None:
            return 1
        for index, sibling in enumerate(self.parent.children, start=1):
            if sibling is self:
                return index
        return 1

    def is_displayed(self) -> bool:
        """Check computed style and, for snapshots with geometry, the box."""
        if self.style.get("display", "").strip().lower() == "none":
            return False
        if self.style.get("visibility", "").strip().lower() == "hidden":
            return False
        if self.rect is None:
            if "hidden" in self.attrs:
                return False
            return all(
                ancestor.style.get("display", "").strip().lower() != "none"
                and "hidden" not in ancestor.attrs
                for ancestor in self.ancestors()
            )
        rect = self.rect
        return rect.width > 0 and rect.height > 0 and rect.bottom > 0 and rect.right > 0


@dataclass
class DocumentSnapshot:
    """Root element plus the location the document was loaded from."""

    root: ElementNode
    base_url: str
    viewport: Optional[Dict[str, float]] = None
    selector_error: Optional[str] = None

    def iter_elements(self) -> Iterator[ElementNode]:
        yield self.root
        yield from self.root.iter_descendants()

    def images(self) -> List[ElementNode]:
        return [node for node in self.iter_elements() if node.tag == "img"]

    def selected(self) -> List[ElementNode]:
        return [node for node in self.iter_elements() if node.selected]


def _rect_from_payload(payload: Optional[Dict[str, Any]]) -> Optional[Rect]:
    if not payload:
        return None
    return Rect(
        top=float(payload.get("top", 0.0)),
        left=float(payload.get("left", 0.0)),
        width=float(payload.get("width", 0.0)),
        height=float(payload.get("height", 0.0)),
    )


def _node_from_payload(payload: Dict[str, Any]) -> ElementNode:
    style = payload.get("style") or {}
    node = ElementNode(
        tag=str(payload.get("tag", "")).lower(),
        attrs={str(k): str(v) for k, v in (payload.get("attrs") or {}).items()},
        rect=_rect_from_payload(payload.get("rect")),
        style={str(k): str(v) for k, v in style.items() if v is not None},
        selected=bool(payload.get("selected", False)),
    )
    for child in payload.get("children") or []:
        node.append(_node_from_payload(child))
    return node


def from_snapshot(payload: Dict[str, Any], base_url: Optional[str] = None) -> DocumentSnapshot:
    """Build a snapshot from the JSON produced by :data:`SNAPSHOT_SCRIPT`."""
    selector_error = payload.get("selectorError")
    if selector_error:
        logger.warning("Invalid selector ignored: %s", selector_error)
    return DocumentSnapshot(
        root=_node_from_payload(payload["root"]),
        base_url=base_url or str(payload.get("url", "")),
        viewport=payload.get("viewport"),
        selector_error=selector_error,
    )


def _inline_style(value: str) -> Dict[str, str]:
    style: Dict[str, str] = {}
    for name, declared in _INLINE_DECLARATION.findall(value or ""):
        key = name.lower()
        if key == "background-image":
            style["backgroundImage"] = declared.strip()
        else:
            style[key] = declared.strip().lower()
    return style


def _node_from_tag(tag: Tag, selected_ids: set) -> ElementNode:
    attrs: Dict[str, str] = {}
    for name, value in tag.attrs.items():
        attrs[name] = " ".join(value) if isinstance(value, list) else str(value)
    node = ElementNode(
        tag=tag.name.lower(),
        attrs=attrs,
        style=_inline_style(attrs.get("style", "")),
        selected=id(tag) in selected_ids,
    )
    for child in tag.children:
        if isinstance(child, Tag) and child.name not in ("script", "style", "noscript", "template"):
            node.append(_node_from_tag(child, selected_ids))
    return node


def from_html(html: str, base_url: str, selector: Optional[str] = None) -> DocumentSnapshot:
    """Parse static HTML into a snapshot without geometry."""
    soup = BeautifulSoup(html, "html.parser")
    selected_ids: set = set()
    selector_error: Optional[str] = None
    if selector:
        try:
            selected_ids = {id(tag) for tag in soup.select(selector)}
        except Exception as exc:  # pylint: disable=broad-except
            selector_error = str(exc)
            logger.warning("Invalid selector %r ignored: %s", selector, exc)

    base_tag = soup.find("base", href=True)
    if base_tag is not None and base_url:
        base_url = resolve(str(base_tag["href"]), base_url) or base_url

    top = soup.find("html")
    if isinstance(top, Tag):
        root = _node_from_tag(top, selected_ids)
    else:
        root = ElementNode(tag="html")
        for child in soup.children:
            if isinstance(child, Tag):
                root.append(_node_from_tag(child, selected_ids))
    return DocumentSnapshot(root=root, base_url=base_url, selector_error=selector_error)

import io
import random
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import pytest
from PIL import Image

from gallery_scout.document import DocumentSnapshot, ElementNode, Rect
from gallery_scout.hashing import PixelData

BASE_URL = "https://example.com/gallery/index.html"


def make_node(
    tag: str,
    attrs: Optional[dict] = None,
    rect: Optional[Tuple[float, float, float, float]] = None,
    children: Iterable[ElementNode] = (),
    style: Optional[dict] = None,
    selected: bool = False,
) -> ElementNode:
    node = ElementNode(
        tag=tag,
        attrs=dict(attrs or {}),
        rect=Rect(*rect) if rect else None,
        style=dict(style or {}),
        selected=selected,
    )
    for child in children:
        node.append(child)
    return node


def make_document(body_children: Iterable[ElementNode], base_url: str = BASE_URL) -> DocumentSnapshot:
    body = make_node("body", rect=(0, 0, 1280, 2000), children=body_children)
    root = make_node("html", rect=(0, 0, 1280, 2000), children=[body])
    return DocumentSnapshot(root=root, base_url=base_url, viewport={"width": 1280, "height": 800})


def gray_pixels(rows: Sequence[Sequence[int]]) -> PixelData:
    """Build RGBA pixels from rows of gray levels."""
    height = len(rows)
    width = len(rows[0])
    data = bytearray()
    for row in rows:
        for value in row:
            data.extend((value, value, value, 255))
    return PixelData(width=width, height=height, rgba=bytes(data))


def solid_pixels(width: int, height: int, value: int = 128) -> PixelData:
    return gray_pixels([[value] * width for _ in range(height)])


def noise_png(size: int = 64, seed: int = 0) -> bytes:
    rng = random.Random(seed)
    image = Image.frombytes("RGB", (size, size), rng.randbytes(size * size * 3))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def node() -> Callable[..., ElementNode]:
    return make_node


@pytest.fixture
def gallery_document() -> Callable[..., DocumentSnapshot]:
    """Factory for a grid of ``div.gallery-item`` cards, three per row."""

    def build(count: int = 5, with_rects: bool = True) -> DocumentSnapshot:
        items: List[ElementNode] = []
        for index in range(1, count + 1):
            row, col = divmod(index - 1, 3)
            box = (row * 220.0, col * 220.0, 200.0, 200.0) if with_rects else None
            image = make_node(
                "img",
                {"src": f"/thumbs/{index}.jpg", "alt": f"Photo {index}", "title": f"Title {index}"},
                rect=box,
            )
            link = make_node("a", {"href": f"/full/{index}.jpg"}, rect=box, children=[image])
            items.append(make_node("div", {"class": "gallery-item"}, rect=box, children=[link]))
        grid = make_node("div", {"id": "gallery", "class": "wrapper"}, rect=(0, 0, 1280, 1000), children=items)
        return make_document([grid])

    return build


@pytest.fixture
def snapshot_payload() -> dict:
    """JSON shaped like the output of the in-page snapshot script."""

    def element(tag, attrs=None, rect=(0, 0, 100, 100), children=(), selected=False):
        top, left, width, height = rect
        return {
            "tag": tag,
            "attrs": attrs or {},
            "rect": {"top": top, "left": left, "width": width, "height": height},
            "style": {"display": "block", "visibility": "visible", "opacity": "1", "backgroundImage": "none"},
            "selected": selected,
            "children": list(children),
        }

    cards = [
        element(
            "li",
            {"class": "photo-card"},
            rect=(0, index * 210, 200, 200),
            children=[
                element(
                    "img",
                    {"src": f"https://cdn.example.com/p{index}.webp", "alt": f"p{index}"},
                    rect=(0, index * 210, 200, 200),
                )
            ],
        )
        for index in range(4)
    ]
    root = element(
        "html",
        rect=(0, 0, 1280, 900),
        children=[element("body", rect=(0, 0, 1280, 900), children=[element("ul", {"id": "photos"}, children=cards)])],
    )
    return {
        "url": "https://example.com/photos",
        "viewport": {"width": 1280, "height": 800},
        "selectorError": None,
        "root": root,
    }

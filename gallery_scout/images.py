"""Remote image probing, rasterization and downloading."""

from __future__ import annotations

import asyncio
import base64
import io
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Set
from urllib.parse import unquote_to_bytes

import requests
import filetype
from PIL import Image, UnidentifiedImageError

from .errors import DecodeError
from .hashing import PixelData, pixel_data_from_image
from .models import CandidateItem, Dimensions
from .utils import slugify

logger = logging.getLogger("gallery_scout")

MAX_IMAGE_BYTES = 10 * 1024 * 1024
MIN_IMAGE_BYTES = 512
ALLOWED_IMAGE_TYPES = {"png", "jpg", "gif", "webp", "bmp", "tif", "avif"}
EXTENSION_ALIASES = {"jpeg": "jpg", "tiff": "tif", "x-ms-bmp": "bmp"}
DEFAULT_USER_AGENT = "gallery-scout/0.1"


@dataclass
class ProbeResult:
    """Metadata learned about a URL without decoding it."""

    mime_type: Optional[str]
    file_size: Optional[int]


@dataclass
class DownloadedItem:
    """Downloaded and validated image stored on disk."""

    source_url: str
    alt_text: str
    filename: str
    relative_path: str


def _content_mime(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    return content_type.split(";")[0].strip().lower() or None


def _payload_extension(url: str, data: bytes, content_type: Optional[str]) -> Optional[str]:
    """Extension to save ``data`` under, or ``None`` when it is not a usable image.

    The file signature wins over the declared Content-Type; a declared
    ``image/*`` type is only trusted when the signature is unknown.
    """
    if not MIN_IMAGE_BYTES <= len(data) <= MAX_IMAGE_BYTES:
        logger.warning("Skipping %s: %d bytes is outside the accepted size range", url, len(data))
        return None
    kind = filetype.image_match(data)
    if kind is not None:
        extension = kind.extension
    else:
        mime = _content_mime(content_type) or ""
        extension = mime.partition("/")[2] if mime.startswith("image/") else ""
    extension = EXTENSION_ALIASES.get(extension, extension)
    if extension not in ALLOWED_IMAGE_TYPES:
        logger.warning("Skipping %s: unsupported image type (Content-Type=%s)", url, content_type)
        return None
    return extension


def _decode_data_url(url: str) -> bytes:
    header, _, payload = url.partition(",")
    if header.endswith(";base64"):
        return base64.b64decode(payload)
    return unquote_to_bytes(payload)


def _parse_content_length(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class RemoteProbe:
    """HEAD-style metadata probes and URL rasterization over ``requests``."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ) -> None:
        self.session = session or requests.Session()
        self.session.headers.setdefault(
            "User-Agent", os.getenv("SCOUT_USER_AGENT", DEFAULT_USER_AGENT)
        )
        self.timeout = timeout

    def probe(self, url: str) -> ProbeResult:
        """Return MIME type and size, falling back to GET if HEAD is refused."""
        if url.startswith("data:"):
            mime = url[5:].split(",", 1)[0].split(";", 1)[0] or None
            return ProbeResult(mime_type=mime, file_size=len(_decode_data_url(url)))
        resp = self.session.head(url, timeout=self.timeout, allow_redirects=True)
        if resp.status_code in (405, 501):
            resp = self.session.get(url, timeout=self.timeout, stream=True)
            resp.close()
        resp.raise_for_status()
        return ProbeResult(
            mime_type=_content_mime(resp.headers.get("Content-Type")),
            file_size=_parse_content_length(resp.headers.get("Content-Length")),
        )

    def fetch_bytes(self, url: str) -> bytes:
        if url.startswith("data:"):
            try:
                return _decode_data_url(url)
            except ValueError as exc:
                raise DecodeError(f"Malformed data URL: {exc}") from exc
        try:
            resp = self.session.get(url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise DecodeError(f"Failed to fetch image {url}: {exc}", {"url": url}) from exc
        return resp.content

    def rasterize(self, url: str) -> PixelData:
        """Fetch ``url`` and decode it into RGBA pixels."""
        data = self.fetch_bytes(url)
        try:
            with Image.open(io.BytesIO(data)) as image:
                return pixel_data_from_image(image)
        except (UnidentifiedImageError, OSError) as exc:
            raise DecodeError(f"Failed to decode image {url}: {exc}", {"url": url}) from exc

    def dimensions(self, url: str) -> Dimensions:
        data = self.fetch_bytes(url)
        try:
            with Image.open(io.BytesIO(data)) as image:
                width, height = image.size
        except (UnidentifiedImageError, OSError) as exc:
            raise DecodeError(f"Failed to decode image {url}: {exc}", {"url": url}) from exc
        return Dimensions(width=width, height=height)

    async def probe_async(self, url: str) -> ProbeResult:
        return await asyncio.to_thread(self.probe, url)

    async def rasterize_async(self, url: str) -> PixelData:
        return await asyncio.to_thread(self.rasterize, url)

    async def dimensions_async(self, url: str) -> Dimensions:
        return await asyncio.to_thread(self.dimensions, url)


def _save_item(
    session: requests.Session, item: CandidateItem, index: int, image_dir: Path
) -> Optional[DownloadedItem]:
    url = item.full_size_url or item.source_url
    try:
        resp = session.get(url, timeout=15)
        resp.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("Failed to fetch image %s: %s", url, exc)
        return None

    extension = _payload_extension(url, resp.content, resp.headers.get("Content-Type"))
    if extension is None:
        return None

    stem = f"image-{index:02d}-{slugify(item.alt_text or 'image', fallback='image')}"
    filename = f"{stem[:80]}.{extension}"
    try:
        (image_dir / filename).write_bytes(resp.content)
    except OSError as exc:
        logger.warning("Failed to write image %s: %s", image_dir / filename, exc)
        return None
    return DownloadedItem(
        source_url=url,
        alt_text=item.alt_text,
        filename=filename,
        relative_path=f"images/{filename}",
    )


def download_items(
    items: List[CandidateItem],
    output_dir: Path,
    session: Optional[requests.Session] = None,
) -> List[DownloadedItem]:
    """Save accepted items under ``output_dir/images``; inline data URLs are skipped.

    Items that resolve to the same full-size URL are fetched once.
    """
    if not items:
        return []
    image_dir = output_dir / "images"
    image_dir.mkdir(parents=True, exist_ok=True)
    session = session or requests.Session()

    seen: Set[str] = set()
    saved: List[DownloadedItem] = []
    for index, item in enumerate(items, start=1):
        url = item.full_size_url or item.source_url
        if url in seen or url.startswith("data:"):
            continue
        seen.add(url)
        record = _save_item(session, item, index, image_dir)
        if record is not None:
            saved.append(record)
    logger.info("Saved %d of %d images to %s", len(saved), len(items), image_dir)
    return saved

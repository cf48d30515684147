"""Perceptual image hashing for approximate duplicate detection.

The ``average`` and ``difference`` algorithms shrink the source to a tiny
grayscale grid using nearest-neighbour sampling; ``perceptual`` (DCT) and
``wavelet`` (Haar) defer to :mod:`imagehash`. Fingerprints are bit strings
whose length depends only on the requested precision, never on the source
resolution or aspect ratio.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Union

import imagehash
import numpy
from PIL import Image

from .errors import DecodeError, UnsupportedAlgorithm

logger = logging.getLogger("gallery_scout")

DEFAULT_ALGORITHM = "difference"
DEFAULT_PRECISION = 8


@dataclass(frozen=True)
class PixelData:
    """Decoded RGBA pixels, four bytes per pixel in row-major order."""

    width: int
    height: int
    rgba: bytes

    def __post_init__(self) -> None:
        if self.width < 1 or self.height < 1:
            raise DecodeError(f"Invalid image size {self.width}x{self.height}")
        if len(self.rgba) < self.width * self.height * 4:
            raise DecodeError("Pixel buffer shorter than width*height*4")


def pixel_data_from_image(image: Image.Image) -> PixelData:
    """Convert a Pillow image into :class:`PixelData`."""
    rgba = image.convert("RGBA")
    width, height = rgba.size
    return PixelData(width=width, height=height, rgba=rgba.tobytes())


def _to_image(pixels: PixelData) -> Image.Image:
    size = pixels.width * pixels.height * 4
    return Image.frombytes("RGBA", (pixels.width, pixels.height), pixels.rgba[:size])


def _gray_grid(pixels: PixelData, width: int, height: int) -> numpy.ndarray:
    # Pillow's L conversion applies the 299/587/114 luma weights with rounding.
    image = _to_image(pixels).resize((width, height), Image.Resampling.NEAREST).convert("L")
    return numpy.asarray(image, dtype=numpy.int32)


def _to_bits(values: numpy.ndarray) -> str:
    return "".join("1" if bit else "0" for bit in values.flatten())


def average_hash(pixels: PixelData, precision: int = DEFAULT_PRECISION) -> str:
    gray = _gray_grid(pixels, precision, precision)
    return _to_bits(gray > gray.mean())


def difference_hash(pixels: PixelData, precision: int = DEFAULT_PRECISION) -> str:
    gray = _gray_grid(pixels, precision + 1, precision)
    return _to_bits(gray[:, :-1] > gray[:, 1:])


def perceptual_hash(pixels: PixelData, precision: int = DEFAULT_PRECISION) -> str:
    """DCT hash of the low-frequency block; needs ``precision >= 2``."""
    if precision < 2:
        raise ValueError("perceptual hashing needs precision of at least 2")
    return _to_bits(imagehash.phash(_to_image(pixels), hash_size=precision).hash)


def wavelet_hash(pixels: PixelData, precision: int = DEFAULT_PRECISION) -> str:
    """Haar wavelet hash; ``precision`` must be a power of two."""
    if precision & (precision - 1):
        raise ValueError("wavelet hashing needs a power-of-two precision")
    return _to_bits(imagehash.whash(_to_image(pixels), hash_size=precision).hash)


_ALGORITHMS = {
    "average": average_hash,
    "difference": difference_hash,
    "perceptual": perceptual_hash,
    "wavelet": wavelet_hash,
}


def compute_hash(
    pixels: PixelData,
    algorithm: str = DEFAULT_ALGORITHM,
    precision: int = DEFAULT_PRECISION,
) -> str:
    """Return the ``precision*precision`` bit fingerprint of ``pixels``."""
    func = _ALGORITHMS.get(algorithm)
    if func is None:
        raise UnsupportedAlgorithm(algorithm)
    if precision < 1:
        raise ValueError("precision must be at least 1")
    return func(pixels, precision)


def as_image_hash(bits: str) -> imagehash.ImageHash:
    return imagehash.ImageHash(numpy.array([bit == "1" for bit in bits], dtype=bool))


def hamming_distance(first: str, second: str) -> int:
    if len(first) != len(second):
        raise ValueError("Hashes must have equal length")
    return as_image_hash(first) - as_image_hash(second)


def bits_to_hex(bits: str) -> str:
    """Render a bit string as zero-padded hex."""
    if not bits:
        return ""
    return str(as_image_hash(bits))


Rasterizer = Callable[[str], PixelData]
PixelSource = Union[PixelData, str]


class PerceptualHasher:
    """Hash pixel data or URLs, rasterizing URLs through ``rasterizer``."""

    def __init__(self, rasterizer: Rasterizer | None = None) -> None:
        self._rasterizer = rasterizer

    def rasterize(self, source: PixelSource) -> PixelData:
        if isinstance(source, PixelData):
            return source
        if self._rasterizer is None:
            raise DecodeError(f"No rasterizer configured for {source}")
        try:
            return self._rasterizer(source)
        except DecodeError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            raise DecodeError(f"Failed to rasterize {source}: {exc}", {"url": source}) from exc

    def hash(
        self,
        source: PixelSource,
        algorithm: str = DEFAULT_ALGORITHM,
        precision: int = DEFAULT_PRECISION,
    ) -> str:
        if algorithm not in _ALGORITHMS:
            raise UnsupportedAlgorithm(algorithm)
        pixels = self.rasterize(source)
        fingerprint = compute_hash(pixels, algorithm, precision)
        logger.debug("Hashed %s with %s/%d", _describe(source), algorithm, precision)
        return fingerprint


def _describe(source: PixelSource) -> str:
    if isinstance(source, PixelData):
        return f"<pixels {source.width}x{source.height}>"
    return source

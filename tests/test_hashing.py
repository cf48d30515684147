import io

import pytest
from PIL import Image, ImageOps

from conftest import gray_pixels, noise_png, solid_pixels
from gallery_scout.config import HASH_ALGORITHMS
from gallery_scout.errors import DecodeError, UnsupportedAlgorithm
from gallery_scout.hashing import (
    PerceptualHasher,
    PixelData,
    average_hash,
    bits_to_hex,
    compute_hash,
    difference_hash,
    hamming_distance,
    pixel_data_from_image,
)


def test_solid_image_hashes_to_zero_bits():
    pixels = solid_pixels(31, 17, 200)
    assert average_hash(pixels) == "0" * 64
    assert difference_hash(pixels) == "0" * 64


def test_length_depends_only_on_precision():
    wide = solid_pixels(100, 37)
    tall = solid_pixels(3, 250)
    for algorithm in HASH_ALGORITHMS:
        assert len(compute_hash(wide, algorithm, 8)) == 64
        assert len(compute_hash(tall, algorithm, 8)) == 64
        assert len(compute_hash(wide, algorithm, 4)) == 16


def test_difference_hash_follows_horizontal_gradient():
    falling = gray_pixels([[250 - 25 * x for x in range(9)] for _ in range(8)])
    rising = gray_pixels([[50 + 25 * x for x in range(9)] for _ in range(8)])
    assert difference_hash(falling) == "1" * 64
    assert difference_hash(rising) == "0" * 64


def test_average_hash_splits_on_mean():
    pixels = gray_pixels([[0] * 4 + [255] * 4 for _ in range(8)])
    assert average_hash(pixels) == "00001111" * 8


def test_hash_is_stable_under_nearest_neighbour_upscaling():
    rows = [[(x * 37 + y * 11) % 256 for x in range(9)] for y in range(8)]
    small = gray_pixels(rows)
    image = Image.frombytes("RGBA", (9, 8), small.rgba).resize((36, 32), Image.NEAREST)
    large = pixel_data_from_image(image)
    assert difference_hash(large) == difference_hash(small)


def test_dct_and_wavelet_hashes_track_image_content():
    image = Image.open(io.BytesIO(noise_png(64, seed=3)))
    pixels = pixel_data_from_image(image)
    inverted = pixel_data_from_image(ImageOps.invert(image.convert("RGB")))
    for algorithm in ("perceptual", "wavelet"):
        first = compute_hash(pixels, algorithm, 8)
        assert first == compute_hash(pixels, algorithm, 8)
        assert len(first) == 64
        assert set(first) <= {"0", "1"}
        assert hamming_distance(first, compute_hash(inverted, algorithm, 8)) > 0


def test_wavelet_and_dct_precision_limits():
    pixels = solid_pixels(16, 16)
    with pytest.raises(ValueError):
        compute_hash(pixels, "wavelet", 6)
    with pytest.raises(ValueError):
        compute_hash(pixels, "perceptual", 1)
    assert len(compute_hash(pixels, "wavelet", 4)) == 16


def test_unknown_algorithm_is_rejected():
    with pytest.raises(UnsupportedAlgorithm) as excinfo:
        compute_hash(solid_pixels(8, 8), "median")
    assert str(excinfo.value) == "Unknown hash algorithm: median"


def test_invalid_precision():
    with pytest.raises(ValueError):
        compute_hash(solid_pixels(8, 8), "average", 0)


def test_hamming_distance():
    assert hamming_distance("0011", "0101") == 2
    assert hamming_distance("1111", "1111") == 0
    with pytest.raises(ValueError):
        hamming_distance("01", "011")


def test_bits_to_hex():
    assert bits_to_hex("1" * 64) == "f" * 16
    assert bits_to_hex("0001") == "1"
    assert bits_to_hex("0" * 8) == "00"
    assert bits_to_hex("") == ""


def test_pixel_data_validation():
    with pytest.raises(DecodeError):
        PixelData(width=2, height=2, rgba=b"\x00" * 8)
    with pytest.raises(DecodeError):
        PixelData(width=0, height=2, rgba=b"")


def test_pixel_data_from_pillow_image():
    pixels = pixel_data_from_image(Image.new("RGB", (10, 5), (255, 0, 0)))
    assert (pixels.width, pixels.height) == (10, 5)
    assert pixels.rgba[:4] == bytes((255, 0, 0, 255))
    assert len(pixels.rgba) == 200


def test_hasher_wraps_rasterizer_failures():
    def broken(url):
        raise RuntimeError("connection reset")

    hasher = PerceptualHasher(broken)
    with pytest.raises(DecodeError) as excinfo:
        hasher.hash("https://example.com/a.jpg")
    assert excinfo.value.context == {"url": "https://example.com/a.jpg"}


def test_hasher_without_rasterizer_accepts_pixels_only():
    hasher = PerceptualHasher()
    assert hasher.hash(solid_pixels(8, 8), "average", 8) == "0" * 64
    with pytest.raises(DecodeError):
        hasher.hash("https://example.com/a.jpg")


def test_hasher_checks_algorithm_before_fetching():
    calls = []
    hasher = PerceptualHasher(lambda url: calls.append(url))
    with pytest.raises(UnsupportedAlgorithm):
        hasher.hash("https://example.com/a.jpg", "median")
    assert calls == []

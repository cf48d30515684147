from concurrent.futures import ThreadPoolExecutor
from unittest.mock import AsyncMock

import pytest

from conftest import gray_pixels, solid_pixels
from gallery_scout.dedup import DuplicateDetector
from gallery_scout.errors import DecodeError, UnsupportedAlgorithm
from gallery_scout.hashing import PerceptualHasher
from gallery_scout.models import CandidateItem
from gallery_scout.worker import HashWorker

GRADIENT = gray_pixels([[250 - 25 * x for x in range(9)] for _ in range(8)])
FLAT = solid_pixels(9, 8, 90)


def rasterizer_for(mapping):
    def rasterize(url):
        if url not in mapping:
            raise DecodeError(f"404 for {url}", {"url": url})
        return mapping[url]

    return rasterize


def items(*urls):
    return [CandidateItem(source_url=url) for url in urls]


@pytest.mark.asyncio
async def test_identical_images_collapse_to_first_occurrence():
    hasher = PerceptualHasher(
        rasterizer_for(
            {
                "https://example.com/a.jpg": GRADIENT,
                "https://cdn.example.com/a-copy.jpg": GRADIENT,
                "https://example.com/b.jpg": FLAT,
            }
        )
    )
    detector = DuplicateDetector(hasher)
    unique = await detector.unique(
        items("https://example.com/a.jpg", "https://example.com/b.jpg", "https://cdn.example.com/a-copy.jpg")
    )

    assert [item.source_url for item in unique] == ["https://example.com/a.jpg", "https://example.com/b.jpg"]
    assert unique[0].perceptual_hash == "1" * 64
    assert unique[1].perceptual_hash == "0" * 64
    assert detector.stats() == {"images_processed": 3, "duplicates_found": 1, "decode_failures": 0}


@pytest.mark.asyncio
async def test_undecodable_items_are_kept():
    hasher = PerceptualHasher(rasterizer_for({"https://example.com/a.jpg": FLAT}))
    detector = DuplicateDetector(hasher, algorithm="average")
    unique = await detector.unique(items("https://example.com/a.jpg", "https://example.com/missing.jpg"))

    assert len(unique) == 2
    assert unique[1].perceptual_hash is None
    assert detector.stats()["decode_failures"] == 1


@pytest.mark.asyncio
async def test_find_duplicates_reports_groups():
    mapping = {f"https://example.com/{n}.jpg": GRADIENT for n in range(3)}
    mapping["https://example.com/other.jpg"] = FLAT
    detector = DuplicateDetector(PerceptualHasher(rasterizer_for(mapping)))
    groups = await detector.find_duplicates(items(*mapping))

    assert len(groups) == 1
    group = groups[0]
    assert group.representative.source_url == "https://example.com/0.jpg"
    assert [d.source_url for d in group.duplicates] == ["https://example.com/1.jpg", "https://example.com/2.jpg"]


@pytest.mark.asyncio
async def test_hamming_threshold_is_opt_in():
    candidates = items("https://example.com/a.jpg", "https://example.com/b.jpg")
    fingerprints = ["0000", "0001"]

    exact = DuplicateDetector(PerceptualHasher())
    exact.fingerprint = AsyncMock(side_effect=list(fingerprints))
    assert len(await exact.unique(candidates)) == 2

    near = DuplicateDetector(PerceptualHasher(), max_distance=1)
    near.fingerprint = AsyncMock(side_effect=list(fingerprints))
    assert len(await near.unique(candidates)) == 1


@pytest.mark.asyncio
async def test_hashing_can_run_on_the_worker():
    mapping = {"https://example.com/a.jpg": GRADIENT, "https://example.com/b.jpg": GRADIENT}
    with ThreadPoolExecutor(max_workers=2) as executor:
        detector = DuplicateDetector(
            PerceptualHasher(rasterizer_for(mapping)),
            worker=HashWorker(executor=executor),
        )
        unique = await detector.unique(items(*mapping))
    assert len(unique) == 1
    assert unique[0].perceptual_hash == "1" * 64


def test_unknown_algorithm_rejected_up_front():
    with pytest.raises(UnsupportedAlgorithm):
        DuplicateDetector(PerceptualHasher(), algorithm="blockhash")

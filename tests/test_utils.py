import pytest

from gallery_scout.errors import ResolutionError
from gallery_scout.utils import host_of, is_absolute_url, resolve, resolve_or_raise, slugify

BASE = "https://example.com/gallery/index.html"


def test_absolute_urls_are_returned_unchanged():
    assert resolve("https://cdn.example.com/a.jpg", BASE) == "https://cdn.example.com/a.jpg"
    assert resolve("http://example.org/b.png", None) == "http://example.org/b.png"


def test_protocol_relative_borrows_base_scheme():
    assert resolve("//cdn.example.com/a.jpg", "http://example.com/") == "http://cdn.example.com/a.jpg"
    assert resolve("//cdn.example.com/a.jpg", BASE) == "https://cdn.example.com/a.jpg"


def test_protocol_relative_without_base_defaults_to_https():
    assert resolve("//cdn.example.com/a.jpg", None) == "https://cdn.example.com/a.jpg"


@pytest.mark.parametrize(
    "reference, expected",
    [
        ("img/a.png", "https://example.com/gallery/img/a.png"),
        ("/static/a.png", "https://example.com/static/a.png"),
        ("../a.png", "https://example.com/a.png"),
        ("a.png?w=200", "https://example.com/gallery/a.png?w=200"),
    ],
)
def test_relative_references_resolve_against_base(reference, expected):
    assert resolve(reference, BASE) == expected


def test_data_urls_pass_through():
    data_url = "data:image/png;base64,iVBORw0KGgo="
    assert resolve(data_url, BASE) == data_url


@pytest.mark.parametrize("reference", [None, "", "   ", "javascript:void(0)", "mailto:a@b.c"])
def test_unusable_references_resolve_to_none(reference):
    assert resolve(reference, BASE) is None


def test_relative_reference_without_base_is_dropped():
    assert resolve("img/a.png", None) is None
    assert resolve("img/a.png", "not a url") is None


def test_malformed_urls_are_rejected():
    assert resolve("http://[::1", BASE) is None
    assert not is_absolute_url("ftp://example.com/a.png")
    assert not is_absolute_url("https://")


def test_resolve_or_raise():
    assert resolve_or_raise("a.png", BASE) == "https://example.com/gallery/a.png"
    with pytest.raises(ResolutionError) as excinfo:
        resolve_or_raise("a.png", None)
    assert excinfo.value.code == "RESOLUTION_ERROR"
    assert excinfo.value.context["reference"] == "a.png"


def test_slugify_and_host():
    assert slugify("Summer Photos 2024!") == "summer-photos-2024"
    assert slugify("***", fallback="site") == "site"
    assert host_of("https://CDN.Example.com:8080/a.jpg") == "cdn.example.com"
    assert host_of("data:image/png;base64,AAAA") is None

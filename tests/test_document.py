from gallery_scout.document import DocumentSnapshot, ElementNode, Rect, from_html, from_snapshot


def test_from_snapshot_builds_tree_with_geometry(snapshot_payload):
    document = from_snapshot(snapshot_payload)

    assert document.base_url == "https://example.com/photos"
    assert document.viewport == {"width": 1280, "height": 800}
    images = document.images()
    assert len(images) == 4
    assert images[2].rect == Rect(0, 420, 200, 200)
    assert images[2].parent.classes == ["photo-card"]
    assert all(image.is_displayed() for image in images)


def test_from_snapshot_prefers_explicit_base(snapshot_payload):
    document = from_snapshot(snapshot_payload, "https://example.com/final")
    assert document.base_url == "https://example.com/final"


def test_selector_errors_are_recorded(snapshot_payload, caplog):
    snapshot_payload["selectorError"] = "SyntaxError: 'div[' is not a valid selector"
    document = from_snapshot(snapshot_payload)
    assert document.selector_error.startswith("SyntaxError")
    assert document.selected() == []
    assert "Invalid selector" in caplog.text


def test_traversal_helpers(node):
    leaf = node("img", {"src": "a.jpg"})
    middle = node("a", {"href": "/x"}, children=[leaf])
    first = node("p")
    root = node("div", {"class": "card wide", "id": "c1"}, children=[first, middle])

    assert [n.tag for n in root.iter_descendants()] == ["p", "a", "img"]
    assert root.find_first("img") is leaf
    assert root.find_all("a") == [middle]
    assert leaf.closest(lambda n: n.element_id == "c1") is root
    assert leaf.closest(lambda n: n.tag == "img") is None
    assert leaf.closest(lambda n: n.tag == "img", include_self=True) is leaf
    assert middle.element_index() == 2
    assert root.classes == ["card", "wide"]


def test_visibility_uses_rect_when_available():
    assert ElementNode("img", rect=Rect(0, 0, 10, 10)).is_displayed()
    assert not ElementNode("img", rect=Rect(0, 0, 0, 10)).is_displayed()
    assert not ElementNode("img", rect=Rect(0, -50, 10, 10)).is_displayed()
    assert not ElementNode("img", rect=Rect(0, 0, 10, 10), style={"visibility": "hidden"}).is_displayed()


def test_from_html_reads_inline_styles_and_hidden_ancestors():
    html = """
    <html><body>
      <img src="a.jpg">
      <div style="display: none"><img src="b.jpg"></div>
      <img src="c.jpg" hidden>
      <div style="background-image: url('bg.png'); color: red"><img src="d.jpg"></div>
      <script>var x = "<img src=e.jpg>";</script>
    </body></html>
    """
    document = from_html(html, "https://example.com/")
    images = document.images()
    assert [img.get("src") for img in images] == ["a.jpg", "b.jpg", "c.jpg", "d.jpg"]
    assert [img.is_displayed() for img in images] == [True, False, False, True]
    assert images[3].parent.style["backgroundImage"] == "url('bg.png')"
    assert images[3].rect is None


def test_from_html_honors_base_tag():
    html = '<html><head><base href="/assets/"></head><body><img src="x.png"></body></html>'
    document = from_html(html, "https://example.com/page")
    assert document.base_url == "https://example.com/assets/"


def test_from_html_marks_selector_matches():
    html = '<div class="hero"><img src="1.jpg"></div><div><img src="2.jpg"></div>'
    document = from_html(html, "https://example.com/", selector="div.hero img")
    assert [n.get("src") for n in document.selected()] == ["1.jpg"]
    assert document.root.tag == "html"


def test_from_html_invalid_selector_matches_nothing(caplog):
    document = from_html('<div><img src="1.jpg"></div>', "https://example.com/", selector="div[")
    assert document.selected() == []
    assert document.selector_error
    assert "Invalid selector" in caplog.text


def test_snapshot_iterates_root_first(node):
    body = node("body", children=[node("img")])
    document = DocumentSnapshot(root=node("html", children=[body]), base_url="https://example.com/")
    assert [n.tag for n in document.iter_elements()] == ["html", "body", "img"]

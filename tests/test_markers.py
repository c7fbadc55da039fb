"""
Tests for source marker extraction and resolution.
"""

import lxml.html

from livecms.scanner.markers import (
    anchor_markers, bind_markers, extract_markers, remove_markers, resolve, wrap_with_marker,
)
from livecms.scanner.scan import scan_html


def parse_and_bind(raw):
    anchored, markers = anchor_markers(raw)
    document = lxml.html.document_fromstring(anchored)
    bound = bind_markers(document, markers)
    return document, markers, bound


def element_with_text(document, text):
    return next(node for node in document.iter() if isinstance(node.tag, str) and node.text == text)


def sources(result):
    return {element.text_snapshot: element.source_file for element in result.elements if element.tag == "p"}


def test_markers_are_stripped():
    raw = "<div><!--[CMS:source:templates/a.html]--><p>Hi</p><!--[CMS:source:end]--></div>"

    stripped, markers = extract_markers(raw)

    assert stripped == "<div><p>Hi</p></div>"
    assert len(markers) == 1
    assert markers[0].file_path == "templates/a.html"
    assert stripped[markers[0].start:markers[0].end] == "<p>Hi</p>"
    assert remove_markers(raw) == stripped


def test_anchored_markup_keeps_offsets_of_stripped_markup():
    raw = "<div><!--[CMS:source:templates/a.html]--><p>Hi</p><!--[CMS:source:end]--></div>"

    anchored, markers = anchor_markers(raw)

    assert anchored == "<div><!--cms-anchor:open:0--><p>Hi</p><!--cms-anchor:close:0--></div>"
    _, plain = extract_markers(raw)
    assert (markers[0].start, markers[0].end) == (plain[0].start, plain[0].end)


def test_line_suffix_is_parsed():
    _, markers = extract_markers("<!--[CMS:source:views/hero.blade.php#L42]--><h1>x</h1><!--[CMS:source:end]-->")

    assert markers[0].file_path == "views/hero.blade.php"
    assert markers[0].line_hint == 42


def test_nested_markers_resolve_to_innermost():
    raw = (
        "<main>\n"
        "<!--[CMS:source:templates/page.html#L1]-->\n"
        "<h1>Outer</h1>\n"
        "<!--[CMS:source:templates/card.html#L10]-->\n"
        "<p>Inner</p>\n"
        "<!--[CMS:source:end]-->\n"
        "<p>After</p>\n"
        "<!--[CMS:source:end]-->\n"
        "</main>"
    )
    document, markers, bound = parse_and_bind(raw)

    assert [m.depth for m in markers] == [0, 1]

    inner_node = element_with_text(document, "Inner")
    inner = resolve(inner_node, bound)
    assert inner.file_path == "templates/card.html"
    assert inner.line_hint == 10 + (inner_node.sourceline - markers[1].start_line)

    assert resolve(element_with_text(document, "Outer"), bound).file_path == "templates/page.html"
    assert resolve(element_with_text(document, "After"), bound).file_path == "templates/page.html"
    assert resolve(document.find(".//main"), bound) is None


def test_anchors_are_dropped_and_text_is_kept():
    raw = "<div>a<!--[CMS:source:templates/a.html]-->b<p>x</p>c<!--[CMS:source:end]-->d</div>"

    document, _, _ = parse_and_bind(raw)

    div = document.find(".//div")
    assert div.text_content() == "abxcd"
    assert "cms-anchor" not in lxml.html.tostring(document, encoding="unicode")


def test_siblings_sharing_a_line_with_a_marker_stay_outside_it():
    result = scan_html(
        "<main><p class=\"intro\">Before text</p><!--[CMS:source:partials/a.html]--><p>Inside text</p>"
        "<!--[CMS:source:end]--><p class=\"outro\">After text</p></main>"
    )

    assert sources(result) == {
        "Before text": None,
        "Inside text": "partials/a.html",
        "After text": None,
    }


def test_adjacent_blocks_on_one_line_keep_their_own_files():
    result = scan_html(
        "<main><!--[CMS:source:partials/a.html#L3]--><p>First block</p><!--[CMS:source:end]-->"
        "<!--[CMS:source:partials/b.html#L8]--><p>Second block</p><!--[CMS:source:end]--></main>"
    )

    assert sources(result) == {"First block": "partials/a.html", "Second block": "partials/b.html"}
    lines = {element.text_snapshot: element.line_hint for element in result.elements if element.tag == "p"}
    assert lines == {"First block": 3, "Second block": 8}


def test_marker_wrapping_the_whole_page():
    result = scan_html(wrap_with_marker("<main><p>Whole page</p></main>", "templates/page.html"))

    assert sources(result) == {"Whole page": "templates/page.html"}


def test_unclosed_marker_runs_to_end_and_stray_end_is_ignored():
    raw = (
        "<!--[CMS:source:end]--><p class=\"a\">a</p>\n"
        "<!--[CMS:source:templates/b.html]--><p class=\"b\">b</p>\n<p class=\"c\">c</p>"
    )

    stripped, markers = extract_markers(raw)

    assert "CMS:source" not in stripped
    assert len(markers) == 1
    assert markers[0].end == len(stripped)
    assert markers[0].end_line == 3

    assert sources(scan_html(raw)) == {"a": None, "b": "templates/b.html", "c": "templates/b.html"}


def test_no_markers_means_unknown_source():
    document, markers, bound = parse_and_bind("<p>plain</p>")

    assert markers == []
    assert bound == {}
    assert resolve(element_with_text(document, "plain"), bound) is None


def test_marker_without_line_gives_no_line_hint():
    document, _, bound = parse_and_bind("<!--[CMS:source:templates/a.html]--><p>x</p><!--[CMS:source:end]-->")

    resolved = resolve(element_with_text(document, "x"), bound)
    assert resolved.file_path == "templates/a.html"
    assert resolved.line_hint is None


def test_wrap_with_marker_round_trips():
    wrapped = wrap_with_marker("<p>x</p>", "templates/a.html", 7)

    stripped, markers = extract_markers(wrapped)
    assert stripped == "<p>x</p>"
    assert markers[0].line_hint == 7

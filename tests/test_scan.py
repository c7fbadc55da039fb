"""
Tests for the scan pipeline: markers, classification, ids and injection.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from livecms.core.errors import ValidationError
from livecms.scanner.scan import inject_markers, scan_html, scan_url

PAGE = """<header><h1>Brand</h1></header>
<main>
<!--[CMS:source:templates/home.html#L20]-->
<h1>Welcome</h1>
<p class="lead">Hello world</p>
<!--[CMS:source:end]-->
<ul><li>One</li><li>Two</li><li>Three</li></ul>
<a href="/about">About</a>
</main>"""


def by_text(result):
    return {element.text_snapshot: element for element in result.elements if element.tag != "main"}


def test_scan_classifies_and_counts():
    result = scan_html(PAGE)
    elements = by_text(result)

    assert elements["Welcome"].classification.kind == "editable"
    assert elements["Brand"].classification.kind == "ignored"
    assert elements["One"].classification.kind == "component"
    assert result.stats["total"] == result.stats["editable"] + result.stats["component"] + result.stats["ignored"]
    assert result.stats["by_type"]["heading"] == 1
    assert result.stats["by_type"]["link"] == 1
    assert result.stats["by_reason"]["loopSignature"] == 3


def test_editables_get_ids_and_sources():
    result = scan_html(PAGE)
    elements = by_text(result)

    welcome = elements["Welcome"]
    assert welcome.content_id
    assert welcome.source_file == "templates/home.html"
    assert welcome.line_hint == 21

    assert elements["Hello world"].line_hint == 22
    assert elements["About"].source_file is None
    assert set(result.generated_ids) == {e.content_id for e in result.elements if e.content_id}


def test_types_filter_limits_editables():
    result = scan_html(PAGE, types_filter=["heading"])
    editables = [e for e in result.elements if e.classification.is_editable]

    assert [e.text_snapshot for e in editables] == ["Welcome"]
    assert result.stats["returned"] == len(result.elements)
    assert result.stats["editable"] == 3


def test_scan_results_are_independent():
    first = scan_html(PAGE)
    second = scan_html("<p>Other page</p>")

    assert len(second.generated_ids) == 1
    assert first.generated_ids != second.generated_ids


def test_inject_writes_wire_attributes():
    markup = inject_markers(PAGE, locale="fr")

    assert 'data-cms-editable="true"' in markup
    assert 'data-cms-type="heading"' in markup
    assert 'data-cms-original="Welcome"' in markup
    assert 'data-cms-source="templates/home.html"' in markup
    assert 'data-cms-locale="fr"' in markup
    assert 'data-cms-component="true"' in markup
    assert "CMS:source" not in markup


def test_rescanning_injected_markup_is_idempotent():
    first = scan_html(PAGE, inject=True)
    second = scan_html(first.markup)

    assert [(e.tag, e.text_snapshot, e.classification) for e in first.elements] == \
        [(e.tag, e.text_snapshot, e.classification) for e in second.elements]
    assert [e.content_id for e in first.elements] == [e.content_id for e in second.elements]
    assert [e.source_file for e in first.elements] == [e.source_file for e in second.elements]
    assert second.generated_ids == []


def test_full_document_is_serialized_whole():
    result = scan_html("<!DOCTYPE html><html><head><title>T</title></head><body><p>Hi</p></body></html>", inject=True)

    assert result.markup.startswith("<!DOCTYPE html>")
    assert "<title>T</title>" in result.markup


def test_empty_markup():
    result = scan_html("")

    assert result.elements == []
    assert result.stats["total"] == 0


@patch("livecms.scanner.scan.requests.get")
def test_scan_url_fetches_page(mock_get):
    response = MagicMock()
    response.text = "<p>Fetched copy</p>"
    mock_get.return_value = response

    result = scan_url("http://localhost/page")

    mock_get.assert_called_once()
    assert result.elements[0].text_snapshot == "Fetched copy"


@patch("livecms.scanner.scan.requests.get", side_effect=requests.ConnectionError("down"))
def test_scan_url_failure_is_validation_error(mock_get):
    with pytest.raises(ValidationError):
        scan_url("http://localhost/page")

"""
Tests for the source patch engine and its structural sanity check.
"""

from unittest.mock import patch

import pytest

from livecms.core import config
from livecms.core.backup import list_backups
from livecms.core.errors import AmbiguousMatch, PatchMismatch, SyntaxRisk, ValidationError
from livecms.patch.engine import choose_occurrence, find_occurrences, line_of, patch_file
from livecms.patch.sanity import check_edit, compare


def write(project, name, text):
    path = project / "templates" / name
    path.write_bytes(text.encode("utf-8"))
    return path


def test_single_occurrence_is_replaced(project):
    result = patch_file("templates/page.html", "Hello world", "Hello there")
    text = (project / "templates" / "page.html").read_text(encoding="utf-8")

    assert "Hello there" in text
    assert "Hello world" not in text
    assert result.replaced == 1
    assert result.occurrences == 1
    assert result.line_number == 5
    assert result.checksum_before != result.checksum_after
    assert result.version_id


def test_backup_holds_previous_bytes(project):
    original = (project / "templates" / "page.html").read_bytes()

    result = patch_file("templates/page.html", "Hello world", "Hi")
    backups = list_backups("templates/page.html")

    assert len(backups) == 1
    assert backups[0].file == result.backup_path
    with open(result.backup_path, "rb") as f:
        assert f.read() == original


def test_missing_old_value_is_mismatch_and_untouched(project):
    path = project / "templates" / "page.html"
    before = path.read_bytes()

    with pytest.raises(PatchMismatch) as exc_info:
        patch_file("templates/page.html", "Not in the file", "x")

    assert path.read_bytes() == before
    assert "re-scan" in exc_info.value.user_message
    assert list_backups("templates/page.html") == []


def test_ambiguous_without_hint(project):
    path = write(project, "repeat.html", "<p>Repeat</p>\n<div>\n<p>Repeat</p>\n</div>\n<p>Repeat</p>\n")
    before = path.read_bytes()

    with pytest.raises(AmbiguousMatch) as exc_info:
        patch_file("templates/repeat.html", "Repeat", "Once")

    assert exc_info.value.lines == [1, 3, 5]
    assert path.read_bytes() == before


def test_line_hint_picks_nearest_and_ties_go_to_earlier(project):
    path = write(project, "repeat.html", "<p>Repeat</p>\n<div>\n<p>Repeat</p>\n</div>\n<p>Repeat</p>\n")

    result = patch_file("templates/repeat.html", "Repeat", "Once", line_hint=4)
    lines = path.read_text(encoding="utf-8").split("\n")

    assert result.line_number == 3
    assert lines[0] == "<p>Repeat</p>"
    assert lines[2] == "<p>Once</p>"
    assert lines[4] == "<p>Repeat</p>"


def test_allow_multiple_replaces_all(project):
    path = write(project, "repeat.html", "<p>Repeat</p>\n<p>Repeat</p>\n")

    result = patch_file("templates/repeat.html", "Repeat", "Again", allow_multiple=True)

    assert result.replaced == 2
    assert path.read_text(encoding="utf-8") == "<p>Again</p>\n<p>Again</p>\n"


@pytest.mark.parametrize("template,old,new", [
    ("<p class=\"lead\">Hello</p>\n", "Hello", "Hello <b"),
    ("<p class=\"lead\">Hello</p>\n", "lead", "le\"ad"),
    ("<p>Hi {{ $name }}</p>\n", "Hi {{ $name }}", "Hi {{ $name"),
    ("<p>Hi</p>\n@php $x = 1; @endphp\n", "@endphp", "done"),
])
def test_syntax_risk_leaves_file_untouched(project, template, old, new):
    path = write(project, "risky.html", template)
    before = path.read_bytes()

    with pytest.raises(SyntaxRisk):
        patch_file("templates/risky.html", old, new)

    assert path.read_bytes() == before
    assert list_backups("templates/risky.html") == []


def test_sanity_check_can_be_disabled(project):
    path = write(project, "risky.html", "<p>Hello</p>\n")

    with patch.object(config, "PATCH_SANITY_CHECK", False):
        patch_file("templates/risky.html", "Hello", "Hello <b")

    assert "Hello <b" in path.read_text(encoding="utf-8")


def test_crlf_line_endings_survive(project):
    path = write(project, "crlf.html", "<h1>Title</h1>\r\n<p>Body</p>\r\n")

    patch_file("templates/crlf.html", "Body", "New body")

    assert path.read_bytes() == b"<h1>Title</h1>\r\n<p>New body</p>\r\n"


def test_entity_encoded_source_is_found(project):
    path = write(project, "entity.html", "<p>Tom &amp; Jerry</p>\n")

    patch_file("templates/entity.html", "Tom & Jerry", "Tom & Spike")

    assert path.read_text(encoding="utf-8") == "<p>Tom &amp; Spike</p>\n"


def test_named_entities_in_source_are_found(project):
    path = write(project, "named.html", "<h1>Caf&eacute; &copy; 2024</h1>\n<p>It&rsquo;s&nbsp;open</p>\n")

    patch_file("templates/named.html", "Caf\u00e9 \u00a9 2024", "Caf\u00e9 \u00a9 2025")
    result = patch_file("templates/named.html", "It\u2019s\u00a0open", "Now closed")

    assert path.read_text(encoding="utf-8") == "<h1>Caf\u00e9 \u00a9 2025</h1>\n<p>Now closed</p>\n"
    assert result.line_number == 2


def test_entity_spelled_repeats_honour_line_hint(project):
    path = write(project, "spelled.html", "<p>Fish &amp; chips</p>\n<p>Fish &#38; chips</p>\n")

    with pytest.raises(AmbiguousMatch):
        patch_file("templates/spelled.html", "Fish & chips", "Pie")

    patch_file("templates/spelled.html", "Fish & chips", "Pie", line_hint=2)

    assert path.read_text(encoding="utf-8") == "<p>Fish &amp; chips</p>\n<p>Pie</p>\n"


@pytest.mark.parametrize("bad_path", [
    "../outside.html",
    "templates/../../outside.html",
    "/etc/passwd",
    "templates/script.py",
    "templates/missing.html",
])
def test_unsafe_paths_are_rejected(project, bad_path):
    (project / "templates" / "script.py").write_text("print('hi')")

    with pytest.raises(ValidationError):
        patch_file(bad_path, "a", "b")


def test_empty_old_value_is_rejected(project):
    with pytest.raises(ValidationError):
        patch_file("templates/page.html", "", "b")


def test_occurrence_helpers():
    content = "ab\nab\nab"

    assert find_occurrences(content, "ab") == [0, 3, 6]
    assert find_occurrences("aaaa", "aa") == [0, 2]
    assert line_of(content, 6) == 3
    assert choose_occurrence(content, [0, 3, 6], 2) == 3


def test_plain_text_edit_passes_sanity():
    content = "<div>\n  <p class=\"x\">Hello</p>\n</div>\n"
    start = content.index("Hello")

    assert check_edit(content, start, "Hello", "Goodbye, friend's \"quote\"") == []
    assert compare("<p>", "<p") == ["brackets"]

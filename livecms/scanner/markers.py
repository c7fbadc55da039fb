"""
Source markers - invisible render-time comments naming the template a block
came from.

    <!--[CMS:source:templates/partials/hero.html#L12]-->
    ...rendered block...
    <!--[CMS:source:end]-->

Before parsing, each marker token is swapped for a short anchor comment that
the parser keeps in place. Elements are then attributed to the innermost
marker whose anchors enclose them in the tree, and the anchors are dropped
before the classifier sees the document. Offsets and lines recorded on a
``SourceMarker`` refer to the stripped markup, which is what the parser
reports line numbers against.
"""

import re
from typing import Dict, List, Optional, Tuple

from lxml import etree

from ..core.schema import SourceMarker

MARKER_RE = re.compile(r"<!--\[CMS:source:(.*?)\]-->", re.DOTALL)
LINE_SUFFIX_RE = re.compile(r"^(.*?)#L(\d+)$")
ANCHOR_RE = re.compile(r"^cms-anchor:(open|close):(\d+)$")
END_TOKEN = "end"


def wrap_with_marker(markup: str, file_path: str, line: Optional[int] = None) -> str:
    """Bracket rendered output with source markers (used by template renderers)."""
    label = f"{file_path}#L{line}" if line else file_path
    return f"<!--[CMS:source:{label}]-->{markup}<!--[CMS:source:{END_TOKEN}]-->"


def remove_markers(markup: str) -> str:
    """Strip every marker token without recording anything."""
    return MARKER_RE.sub("", markup)


def _parse_label(label: str) -> Tuple[str, Optional[int]]:
    match = LINE_SUFFIX_RE.match(label.strip())
    if match:
        return match.group(1), int(match.group(2))
    return label.strip(), None


def _anchor(kind: str, index: int) -> str:
    return f"<!--cms-anchor:{kind}:{index}-->"


def _split(raw_markup: str, anchored: bool) -> Tuple[str, List[SourceMarker]]:
    pieces = []
    stripped_length = 0
    line = 1
    cursor = 0
    open_stack = []  # (index into markers)
    markers: List[SourceMarker] = []

    for match in MARKER_RE.finditer(raw_markup):
        chunk = raw_markup[cursor:match.start()]
        pieces.append(chunk)
        stripped_length += len(chunk)
        line += chunk.count("\n")
        cursor = match.end()

        label = match.group(1)
        if label.strip() == END_TOKEN:
            if open_stack:
                index = open_stack.pop()
                markers[index].end = stripped_length
                markers[index].end_line = line
                if anchored:
                    pieces.append(_anchor("close", index))
            continue

        file_path, line_hint = _parse_label(label)
        if not file_path:
            continue
        markers.append(SourceMarker(
            file_path=file_path,
            start=stripped_length,
            end=-1,
            start_line=line,
            end_line=-1,
            line_hint=line_hint,
            depth=len(open_stack)
        ))
        open_stack.append(len(markers) - 1)
        if anchored:
            pieces.append(_anchor("open", len(markers) - 1))

    tail = raw_markup[cursor:]
    pieces.append(tail)
    stripped_length += len(tail)
    line += tail.count("\n")

    for index in open_stack:
        markers[index].end = stripped_length
        markers[index].end_line = line

    return "".join(pieces), markers


def extract_markers(raw_markup: str) -> Tuple[str, List[SourceMarker]]:
    """Remove marker tokens and return (stripped markup, markers in opening order).

    Nested markers are supported; an unclosed marker runs to the end of the
    document and a stray end token is ignored.
    """
    return _split(raw_markup, anchored=False)


def anchor_markers(raw_markup: str) -> Tuple[str, List[SourceMarker]]:
    """Like ``extract_markers`` but leaves an anchor comment where each token was."""
    return _split(raw_markup, anchored=True)


def _document_order(document):
    root = document.getroottree().getroot()
    yield from reversed(list(root.itersiblings(preceding=True)))
    yield from root.iter()
    yield from root.itersiblings()


def bind_markers(document, markers: List[SourceMarker]) -> Dict[object, SourceMarker]:
    """Map every element inside a marker to its innermost enclosing marker.

    Walks a document parsed from ``anchor_markers`` output and removes the
    anchor comments as it goes, keeping surrounding text.
    """
    bound = {}
    open_stack: List[int] = []
    anchors = []

    for node in _document_order(document):
        if node.tag is etree.Comment:
            match = ANCHOR_RE.match(node.text or "")
            if match is None:
                continue
            anchors.append(node)
            kind, index = match.group(1), int(match.group(2))
            if index >= len(markers):
                continue
            if kind == "open":
                open_stack.append(index)
            elif index in open_stack:
                open_stack.remove(index)
            continue

        if open_stack and isinstance(node.tag, str):
            bound[node] = markers[open_stack[-1]]

    for node in anchors:
        if node.getparent() is not None:
            node.drop_tree()

    return bound


def resolve(element, bound: Dict[object, SourceMarker]) -> Optional[SourceMarker]:
    """Innermost marker enclosing an element, or None when it has none.

    The returned marker's ``line_hint`` is already shifted to the element's
    own line when the block's template line is known.
    """
    marker = bound.get(element)
    if marker is None:
        return None

    line_hint = None
    element_line = getattr(element, "sourceline", None)
    if marker.line_hint is not None and element_line is not None:
        line_hint = marker.line_hint + (element_line - marker.start_line)

    return SourceMarker(
        file_path=marker.file_path,
        start=marker.start,
        end=marker.end,
        start_line=marker.start_line,
        end_line=marker.end_line,
        line_hint=line_hint,
        depth=marker.depth
    )

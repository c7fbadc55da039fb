"""
Scan pipeline: anchor source markers, parse, classify, assign ids, resolve
sources and (optionally) write the verdicts back into the markup.
"""

import re
import time
from typing import Dict, Iterable, List, Optional

import lxml.html
from lxml import etree
import requests

from ..core import config
from ..core.errors import ValidationError
from ..core.schema import COMPONENT, EDITABLE, ScanResult, ScannedElement
from ..util.logging import logger
from .classifier import ElementClassifier, get_classifier, report_classifications
from .identity import identify
from .markers import anchor_markers, bind_markers, remove_markers, resolve
from .rules import tag_of

FULL_DOCUMENT_RE = re.compile(r"<html[\s>]", re.IGNORECASE)

# Attributes owned by the scanner; stripped from reported attributes
INJECTED_ATTRIBUTES = (
    "data-cms-editable", "data-cms-type", "data-cms-id", "data-cms-original",
    "data-cms-source", "data-cms-line", "data-cms-component", "data-cms-message",
    "data-cms-reason", "data-cms-locale",
)


def _public_attributes(node) -> Dict[str, str]:
    return {
        key: value for key, value in node.attrib.items()
        if key not in INJECTED_ATTRIBUTES or key == "data-cms-id"
    }


def _empty_stats() -> Dict:
    return {
        "total": 0,
        "editable": 0,
        "component": 0,
        "ignored": 0,
        "by_type": {},
        "by_reason": {},
        "returned": 0,
    }


def _annotate(node, element: ScannedElement, locale: Optional[str]) -> None:
    """Write the wire representation of a verdict onto the node."""
    classification = element.classification
    if classification.kind == EDITABLE:
        node.set("data-cms-editable", "true")
        node.set("data-cms-type", classification.content_type)
        node.set("data-cms-id", element.content_id)
        original = element.attributes.get("src", "") if classification.content_type == "image" else element.text_snapshot
        node.set("data-cms-original", original)
        if locale:
            node.set("data-cms-locale", locale)
        if element.source_file:
            node.set("data-cms-source", element.source_file)
        if element.line_hint is not None:
            node.set("data-cms-line", str(element.line_hint))
    elif classification.kind == COMPONENT:
        node.set("data-cms-component", "true")
        node.set("data-cms-message", classification.message or "")
        if classification.reason:
            node.set("data-cms-reason", classification.reason)


def _serialize(document, full_document: bool) -> str:
    if full_document:
        doctype = document.getroottree().docinfo.doctype
        body = lxml.html.tostring(document, encoding="unicode")
        return f"{doctype}\n{body}" if doctype else body

    body = document.find("body")
    if body is None:
        body = document
    inner = body.text or ""
    inner += "".join(lxml.html.tostring(child, encoding="unicode") for child in body)
    return inner


def scan_html(markup: str, locale: Optional[str] = None, types_filter: Optional[Iterable[str]] = None,
              inject: bool = False, classifier: Optional[ElementClassifier] = None,
              report: bool = False) -> ScanResult:
    """Scan rendered markup and return a fresh ``ScanResult``.

    Elements the rules cannot judge are reported as ignored; only markup the
    parser rejects outright raises ``ValidationError``. Re-scanning the annotated output of ``inject=True``
    reproduces the same verdicts and ids.
    """
    started = time.perf_counter()
    anchored, markers = anchor_markers(markup or "")
    stripped = remove_markers(markup or "")

    if not stripped.strip():
        return ScanResult(elements=[], stats=_empty_stats(), markers=markers,
                          markup=stripped if inject else None)

    try:
        document = lxml.html.document_fromstring(anchored)
    except (etree.ParserError, ValueError) as e:
        raise ValidationError(f"Markup could not be parsed: {e}") from e

    bound = bind_markers(document, markers)

    root = document.find("body")
    if root is None:
        root = document

    classifier = classifier or get_classifier()
    verdicts = classifier.classify_tree(root)

    wanted = set(t.lower() for t in types_filter) if types_filter else None
    stats = _empty_stats()
    elements: List[ScannedElement] = []
    generated_ids: List[str] = []

    for node, classification in verdicts:
        stats["total"] += 1
        stats[classification.kind] += 1
        if classification.reason:
            stats["by_reason"][classification.reason] = stats["by_reason"].get(classification.reason, 0) + 1

        element = ScannedElement(
            tag=tag_of(node),
            text_snapshot=node.text_content().strip(),
            attributes=_public_attributes(node),
            classification=classification,
            sourceline=node.sourceline,
        )

        if classification.kind == EDITABLE:
            content_type = classification.content_type
            stats["by_type"][content_type] = stats["by_type"].get(content_type, 0) + 1
            reused = node.get("data-cms-id")
            element.content_id = identify(node, content_type)
            if not reused:
                generated_ids.append(element.content_id)

            marker = resolve(node, bound)
            if marker is not None:
                element.source_file = marker.file_path
                element.line_hint = marker.line_hint
            else:
                element.source_file = node.get("data-cms-source")
                line = node.get("data-cms-line")
                element.line_hint = int(line) if line and line.isdigit() else None

        if inject:
            _annotate(node, element, locale)

        if classification.kind == EDITABLE and wanted is not None and element.classification.content_type not in wanted:
            continue
        elements.append(element)

    stats["returned"] = len(elements)
    duration_ms = (time.perf_counter() - started) * 1000
    stats["duration_ms"] = round(duration_ms, 2)

    result = ScanResult(
        elements=elements,
        stats=stats,
        markers=markers,
        generated_ids=generated_ids,
        markup=_serialize(document, bool(FULL_DOCUMENT_RE.search(stripped))) if inject else None,
    )

    logger.log_scan("markup", {k: stats[k] for k in ("total", "editable", "component", "ignored")}, duration_ms)
    if report or config.debug_enabled():
        report_classifications(elements)
    return result


def inject_markers(markup: str, locale: Optional[str] = None) -> str:
    """Return the markup annotated with data-cms-* attributes."""
    return scan_html(markup, locale=locale, inject=True).markup


def fetch_markup(url: str, timeout: float = None) -> str:
    """Fetch a rendered page over HTTP."""
    timeout = timeout or config.SCAN_TIMEOUT_SEC
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        logger.error(f"Failed to fetch {url}: {e}")
        raise ValidationError(f"Could not fetch page: {url}", details={"url": url, "reason": str(e)}) from e
    return response.text


def scan_url(url: str, **kwargs) -> ScanResult:
    """Fetch a rendered page and scan it."""
    return scan_html(fetch_markup(url), **kwargs)

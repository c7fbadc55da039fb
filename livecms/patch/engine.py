"""
Patch engine - replace an element's old text with its new text inside the
template it was rendered from.

A patch either commits completely (backup written, file atomically replaced)
or leaves the template byte-identical.
"""

import html
import re
import uuid
from pathlib import Path
from typing import List, Optional, Tuple

from ..core import config
from ..core.backup import _calculate_checksum, atomic_write_bytes, create_backup, BackupError
from ..core.errors import AmbiguousMatch, PatchMismatch, SyntaxRisk, ValidationError
from ..core.paths import relative_to_project, resolve_source_path
from ..core.schema import PatchResult
from ..util.logging import logger
from .sanity import check_edit

ENTITY_RE = re.compile(r"&(?:#[0-9]+|#[xX][0-9a-fA-F]+|[A-Za-z][A-Za-z0-9]*);")


def find_occurrences(content: str, value: str) -> List[int]:
    """Offsets of every non-overlapping occurrence of ``value``."""
    offsets = []
    if not value:
        return offsets
    position = content.find(value)
    while position != -1:
        offsets.append(position)
        position = content.find(value, position + len(value))
    return offsets


def line_of(content: str, offset: int) -> int:
    """1-based line number of an offset."""
    return content.count("\n", 0, offset) + 1


def choose_occurrence(content: str, offsets: List[int], line_hint: int) -> int:
    """Occurrence nearest the hinted line; ties go to the earlier one."""
    return min(offsets, key=lambda offset: (abs(line_of(content, offset) - line_hint), offset))


def decoded_view(content: str) -> Tuple[str, List[Tuple[int, int]]]:
    """Template text with character references decoded.

    Returns the decoded text and, for each decoded character, the raw
    ``(start, end)`` span it was read from. Unknown references stay literal.
    """
    pieces = []
    spans: List[Tuple[int, int]] = []
    cursor = 0
    for match in ENTITY_RE.finditer(content):
        decoded = html.unescape(match.group(0))
        if decoded == match.group(0):
            continue
        pieces.append(content[cursor:match.start()])
        spans.extend((i, i + 1) for i in range(cursor, match.start()))
        pieces.append(decoded)
        spans.extend((match.start(), match.end()) for _ in decoded)
        cursor = match.end()
    pieces.append(content[cursor:])
    spans.extend((i, i + 1) for i in range(cursor, len(content)))
    return "".join(pieces), spans


def _locate(content: str, old_value: str, new_value: str) -> Tuple[List[Tuple[int, int]], str]:
    """Find the old value and return its raw spans plus the text to write.

    Scanned text has entities decoded (``&amp;`` reads as ``&``, ``&rsquo;``
    as a curly quote), so the template may spell it differently. Tried in
    order: as written, then against the decoded template, in which case the
    new text is written entity-escaped.
    """
    offsets = find_occurrences(content, old_value)
    if offsets:
        return [(offset, offset + len(old_value)) for offset in offsets], new_value

    if ENTITY_RE.search(content):
        decoded, char_spans = decoded_view(content)
        offsets = find_occurrences(decoded, old_value)
        if offsets:
            return [(char_spans[offset][0], char_spans[offset + len(old_value) - 1][1])
                    for offset in offsets], html.escape(new_value, quote=False)

    return [], new_value


def apply_replacements(content: str, spans: List[Tuple[int, int]], new_value: str) -> str:
    pieces = []
    cursor = 0
    for start, end in sorted(spans):
        pieces.append(content[cursor:start])
        pieces.append(new_value)
        cursor = end
    pieces.append(content[cursor:])
    return "".join(pieces)


def _read_template(path: Path) -> Tuple[bytes, str]:
    raw = path.read_bytes()
    try:
        return raw, raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ValidationError(f"Template is not valid UTF-8: {path}", details={"reason": str(e)})


def patch_file(file_path: str, old_value: str, new_value: str, line_hint: Optional[int] = None,
               allow_multiple: bool = False, content_id: Optional[str] = None) -> PatchResult:
    """Replace ``old_value`` with ``new_value`` in a template file.

    Args:
        file_path: Template path, relative to the project root or absolute inside it
        old_value: Text as it currently appears (the scanned snapshot)
        new_value: Replacement text
        line_hint: Approximate 1-based line of the element, used to pick among repeats
        allow_multiple: Replace every occurrence instead of requiring a single target
        content_id: Only used for logging

    Raises:
        ValidationError: bad path or empty old value
        PatchMismatch: old value not present in the file
        AmbiguousMatch: several occurrences and nothing to choose between them
        SyntaxRisk: the edit would unbalance template or tag syntax
    """
    if not old_value:
        raise ValidationError("old value is required to locate content")

    path = resolve_source_path(file_path)
    display_path = relative_to_project(path)
    raw, content = _read_template(path)

    spans, new_text = _locate(content, old_value, new_value)
    if not spans:
        logger.log_patch(display_path, content_id, "mismatch")
        raise PatchMismatch(display_path, old_value)

    if len(spans) == 1 or allow_multiple:
        targets = spans
    elif line_hint is not None:
        chosen = choose_occurrence(content, [start for start, _ in spans], line_hint)
        targets = [span for span in spans if span[0] == chosen]
    else:
        lines = [line_of(content, start) for start, _ in spans]
        logger.log_patch(display_path, content_id, "ambiguous", {"lines": lines})
        raise AmbiguousMatch(display_path, len(spans), lines)

    if config.PATCH_SANITY_CHECK:
        for start, end in targets:
            problems = check_edit(content, start, content[start:end], new_text)
            if problems:
                line = line_of(content, start)
                logger.log_patch(display_path, content_id, "syntax_risk", {"problems": problems, "line": line})
                raise SyntaxRisk(display_path, problems, line)

    patched = apply_replacements(content, targets, new_text).encode("utf-8")

    try:
        backup_path = create_backup(path, raw)
    except BackupError as e:
        logger.error(f"Backup failed, template left untouched: {e}")
        raise

    atomic_write_bytes(path, patched)

    result = PatchResult(
        file_path=display_path,
        backup_path=str(backup_path),
        occurrences=len(spans),
        replaced=len(targets),
        line_number=line_of(content, targets[0][0]),
        checksum_before=_calculate_checksum(raw),
        checksum_after=_calculate_checksum(patched),
        version_id=f"{backup_path.relative_to(config.get_backup_dir()).parts[0]}-{uuid.uuid4().hex[:8]}"
    )

    logger.log_patch(display_path, content_id, "success", {
        "line": result.line_number,
        "replaced": result.replaced,
        "occurrences": result.occurrences,
    })
    return result

"""
Structural sanity check for template edits.

Compares the lines an edit touches before and after the replacement. A text
edit must not change how many template blocks are opened, how many tag
brackets are open, or leave a tag with an unterminated attribute quote.
"""

import re
from typing import Dict, List, Tuple

# (name, opener, closer)
TEMPLATE_DELIMITERS = (
    ("echo", re.compile(r"\{\{(?!--)"), re.compile(r"(?<!--)\}\}")),
    ("raw_echo", re.compile(r"\{!!"), re.compile(r"!!\}")),
    ("comment", re.compile(r"\{\{--|\{#"), re.compile(r"--\}\}|#\}")),
    ("statement", re.compile(r"\{%"), re.compile(r"%\}")),
    ("php", re.compile(r"<\?(?:php|=)?"), re.compile(r"\?>")),
    ("php_directive", re.compile(r"@php\b"), re.compile(r"@endphp\b")),
)

TAG_RE = re.compile(r"<[^<>]*>")


def _unterminated_quotes(tag: str) -> bool:
    quote = None
    for char in tag:
        if quote:
            if char == quote:
                quote = None
        elif char in ("\"", "'"):
            quote = char
    return quote is not None


def measure(text: str) -> Dict[str, int]:
    """Balance figures for a slice of template source."""
    figures = {}
    for name, opener, closer in TEMPLATE_DELIMITERS:
        figures[name] = len(opener.findall(text)) - len(closer.findall(text))
    figures["brackets"] = text.count("<") - text.count(">")
    figures["open_quotes"] = sum(1 for tag in TAG_RE.findall(text) if _unterminated_quotes(tag))
    return figures


def compare(before: str, after: str) -> List[str]:
    """Names of the balance figures that an edit changed."""
    old, new = measure(before), measure(after)
    return [name for name in old if old[name] != new[name]]


def line_window(content: str, start: int, end: int) -> Tuple[int, int]:
    """Offsets of the full lines spanning ``content[start:end]``."""
    window_start = content.rfind("\n", 0, start) + 1
    window_end = content.find("\n", end)
    if window_end == -1:
        window_end = len(content)
    return window_start, window_end


def check_edit(content: str, start: int, old_value: str, new_value: str) -> List[str]:
    """Problems introduced by replacing ``old_value`` at ``start``; empty when safe."""
    end = start + len(old_value)
    window_start, window_end = line_window(content, start, end)
    before = content[window_start:window_end]
    after = content[window_start:start] + new_value + content[end:window_end]
    return compare(before, after)

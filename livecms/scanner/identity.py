"""
Content addressing for editable elements.

An id is derived only from what the element shows (text, class, src, href),
so the same unedited page produces the same ids on every scan and in every
process. Ids are short md5 digests, prefixed per type so images and links
never collide with text ids.
"""

import hashlib
import posixpath
from typing import Dict, Optional
from urllib.parse import urlparse

from ..core import config
from .rules import content_type_for

LINK_TEXT_CHARS = 20
TEXT_CHARS = 30


def _normalize(text: str) -> str:
    return " ".join((text or "").split())


def content_digest(*parts: str, length: int = None) -> str:
    """Fixed-width, non-cryptographic digest of the joined parts."""
    length = length or config.CONTENT_ID_LENGTH
    payload = "|".join(part or "" for part in parts)
    return hashlib.md5(payload.encode("utf-8")).hexdigest()[:length]


def image_basename(src: str) -> str:
    """Basename of an image URL without its extension."""
    path = urlparse(src or "").path
    base = posixpath.basename(path.rstrip("/"))
    stem, _ext = posixpath.splitext(base)
    return stem


def image_id(src: str) -> str:
    return "img-" + content_digest(image_basename(src), src or "")


def link_id(href: str, text: str) -> str:
    return "link-" + content_digest(href or "", _normalize(text)[:LINK_TEXT_CHARS])


def text_id(text: str, class_attr: str) -> str:
    return content_digest(_normalize(text)[:TEXT_CHARS], class_attr or "")


def compute_id(content_type: str, text: str, attributes: Dict[str, str]) -> str:
    """Compute a content address from element fields."""
    if content_type == "image":
        return image_id(attributes.get("src", ""))
    if content_type == "link":
        return link_id(attributes.get("href", ""), text)
    return text_id(text, attributes.get("class", ""))


def identify(element, content_type: Optional[str] = None) -> str:
    """Return the element's content id, reusing one that was already assigned.

    Works with lxml elements and with ``ScannedElement`` records.
    """
    if hasattr(element, "text_snapshot"):
        attributes = element.attributes
        existing = attributes.get("data-cms-id")
        if existing:
            return existing
        content_type = content_type or element.classification.content_type or "text"
        return compute_id(content_type, element.text_snapshot, attributes)

    existing = element.get("data-cms-id")
    if existing:
        return existing
    if content_type is None:
        content_type = content_type_for(element)
    return compute_id(content_type, element.text_content(), dict(element.attrib))

"""
Core data shapes shared by the scanner, patch engine and history controller.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

EDITABLE = "editable"
COMPONENT = "component"
IGNORED = "ignored"

CONTENT_TYPES = ("heading", "image", "link", "text")


@dataclass(frozen=True)
class Classification:
    kind: str  # editable, component, ignored
    rule: str = field(compare=False)  # which rule matched, diagnostic only
    content_type: Optional[str] = None  # editable only
    reason: Optional[str] = None
    message: Optional[str] = None  # component only, shown by the editor UI

    @property
    def is_editable(self) -> bool:
        return self.kind == EDITABLE

    @classmethod
    def editable(cls, content_type: str, rule: str = "editable") -> 'Classification':
        return cls(kind=EDITABLE, rule=rule, content_type=content_type)

    @classmethod
    def component(cls, reason: str, message: str, rule: str = "dynamic_content") -> 'Classification':
        return cls(kind=COMPONENT, rule=rule, reason=reason, message=message)

    @classmethod
    def ignored(cls, reason: str, rule: str) -> 'Classification':
        return cls(kind=IGNORED, rule=rule, reason=reason)

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class SourceMarker:
    file_path: str
    start: int  # offsets into the stripped markup
    end: int
    start_line: int
    end_line: int
    line_hint: Optional[int] = None  # template line of the block start, when rendered
    depth: int = 0


@dataclass
class ScannedElement:
    tag: str
    text_snapshot: str
    attributes: Dict[str, str]
    classification: Classification
    content_id: Optional[str] = None
    source_file: Optional[str] = None
    line_hint: Optional[int] = None
    sourceline: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert element to dictionary for JSON serialization."""
        return {
            "tag": self.tag,
            "text": self.text_snapshot,
            "attributes": self.attributes,
            "classification": self.classification.to_dict(),
            "content_id": self.content_id,
            "source_file": self.source_file,
            "line_hint": self.line_hint,
        }


@dataclass(frozen=True)
class ContentChange:
    id: str
    old_value: str
    new_value: str
    locale: str = "en"
    file_path: Optional[str] = None
    line_hint: Optional[int] = None
    content_type: str = "text"
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class HistoryRecord:
    id: int
    content_type: str
    content_id: str
    action: str  # update, update_failed, restore
    old_snapshot: str
    new_snapshot: str
    actor: str
    timestamp: datetime
    metadata: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if isinstance(self.timestamp, datetime):
            data['timestamp'] = self.timestamp.isoformat()
        return data


@dataclass
class PatchResult:
    file_path: str
    backup_path: Optional[str]
    occurrences: int
    replaced: int
    line_number: int
    checksum_before: str
    checksum_after: str
    version_id: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ScanResult:
    elements: List[ScannedElement]
    stats: Dict[str, Any]
    markers: List[SourceMarker] = field(default_factory=list)
    generated_ids: List[str] = field(default_factory=list)  # ids computed this scan, not reused
    markup: Optional[str] = None


@dataclass
class BulkResult:
    results: List[Dict[str, Any]]
    errors: List[Dict[str, Any]]

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "total": len(self.results) + len(self.errors),
            "successful": len(self.results),
            "failed": len(self.errors),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {"results": self.results, "summary": self.summary, "errors": self.errors}

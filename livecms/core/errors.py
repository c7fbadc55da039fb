"""
Error taxonomy for scanning, patching and history operations.

Every patch-layer failure is a ``CMSError`` subclass carrying a stable
``code`` (what API clients switch on), a human readable ``message`` and a
``details`` dict. The API maps ``status_code`` straight onto the HTTP
response; the bulk controller copies ``to_dict()`` into the errors array.
"""

from typing import Any, Dict, List, Optional


class CMSError(Exception):
    """Base exception for the live template CMS."""

    code = "CMSError"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def user_message(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for JSON responses."""
        data = {"error": self.code, "message": self.user_message}
        if self.details:
            data["details"] = self.details
        return data


class ValidationError(CMSError):
    """Malformed input, raised before any file is touched."""

    code = "ValidationError"
    status_code = 422

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None,
                 details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        if errors:
            details["errors"] = errors
        super().__init__(message, details)
        self.errors = errors or []


class PermissionDenied(CMSError):
    """An authorization check owned by the caller failed."""

    code = "PermissionError"
    status_code = 403


class PatchMismatch(CMSError):
    """The old value is no longer present verbatim in the source file."""

    code = "PatchMismatch"
    status_code = 409

    def __init__(self, file_path: str, old_value: str):
        super().__init__(
            f"Original content not found in {file_path}",
            {"file_path": file_path, "old_value": old_value[:100]}
        )
        self.file_path = file_path

    @property
    def user_message(self) -> str:
        return "The original content changed elsewhere; re-scan and retry."


class AmbiguousMatch(CMSError):
    """The old value occurs more than once and nothing says which one to edit."""

    code = "AmbiguousMatch"
    status_code = 409

    def __init__(self, file_path: str, occurrences: int, lines: List[int]):
        super().__init__(
            f"Original content found {occurrences} times in {file_path}; provide a line hint",
            {"file_path": file_path, "occurrences": occurrences, "lines": lines}
        )
        self.occurrences = occurrences
        self.lines = lines


class SyntaxRisk(CMSError):
    """The edited region failed the structural sanity check."""

    code = "SyntaxRisk"
    status_code = 422

    def __init__(self, file_path: str, problems: List[str], line: Optional[int] = None):
        super().__init__(
            f"Edit would unbalance the template near line {line}: {', '.join(problems)}",
            {"file_path": file_path, "problems": problems, "line": line}
        )
        self.problems = problems


class ConcurrentEditConflict(CMSError):
    """Another request holds the lock for this content id."""

    code = "ConcurrentEditConflict"
    status_code = 423

    def __init__(self, content_id: str, holder: str):
        super().__init__(
            f"Content '{content_id}' is being edited by '{holder}'",
            {"content_id": content_id, "holder": holder}
        )
        self.content_id = content_id
        self.holder = holder


class RateLimited(CMSError):
    """The actor exceeded its write ceiling for the current window."""

    code = "RateLimited"
    status_code = 429

    def __init__(self, actor: str, limit: int, retry_after: float):
        super().__init__(
            f"Rate limit of {limit} writes exceeded for '{actor}'",
            {"actor": actor, "limit": limit, "retry_after": round(retry_after, 2)}
        )
        self.retry_after = retry_after


class NotFound(CMSError):
    """A history record or backup that was asked for does not exist."""

    code = "NotFound"
    status_code = 404

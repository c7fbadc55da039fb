"""
History and concurrency controller - the only path from a submitted change
to a patched template.

Every write is rate-checked per actor, serialized per content id, patched,
and appended to the history table. Bulk submissions run as an ordered
sequence of independent single writes.
"""

import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from . import config, dao
from .cache import invalidate
from .errors import CMSError, NotFound, RateLimited, ValidationError
from .backup import RestoreError, restore_from_backup
from .locks import ContentLockManager, RateLimiter, file_key
from .paths import relative_to_project, resolve_file_from_url, resolve_source_path
from .schema import BulkResult, ContentChange, HistoryRecord
from ..patch.engine import patch_file
from ..util.logging import logger

CONTENT_ID_RE = re.compile(r"^[A-Za-z0-9._-]+$")

DANGEROUS_PATTERNS = (
    (re.compile(r"<script\b", re.IGNORECASE), "script tag"),
    (re.compile(r"javascript\s*:", re.IGNORECASE), "javascript: URL"),
    (re.compile(r"\bon\w+\s*=", re.IGNORECASE), "inline event handler"),
    (re.compile(r"<(?:iframe|object|embed)\b", re.IGNORECASE), "embedded frame or object"),
    (re.compile(r"<\?(?:php|=)", re.IGNORECASE), "PHP opening tag"),
    (re.compile(r"@php\b", re.IGNORECASE), "@php directive"),
)

UPDATE = "update"
UPDATE_FAILED = "update_failed"
RESTORE = "restore"


def find_dangerous_content(value: str) -> List[str]:
    """Names of the unsafe constructs found in a submitted value."""
    return [label for pattern, label in DANGEROUS_PATTERNS if pattern.search(value or "")]


def validate_change(change: ContentChange) -> List[Dict[str, Any]]:
    """Field errors for one change; empty when it may be applied."""
    errors = []
    if not change.id or not CONTENT_ID_RE.match(change.id):
        errors.append({"field": "id", "message": "Content id may only contain letters, digits, '.', '_' and '-'"})
    if not change.old_value:
        errors.append({"field": "old_value", "message": "Original content is required to locate the edit"})
    if change.new_value is None:
        errors.append({"field": "value", "message": "New value is required"})
    else:
        found = find_dangerous_content(change.new_value)
        if found:
            errors.append({"field": "value", "message": f"Potentially dangerous content detected: {', '.join(found)}"})
    return errors


def resolve_old_value(content_id: str, old_value: Optional[str], metadata: Optional[Dict[str, Any]] = None) -> Optional[str]:
    """Old value as submitted, else the editor's recorded original, else the last value written."""
    if old_value:
        return old_value
    original = (metadata or {}).get("original")
    if original:
        return original
    latest = dao.latest_history_record(content_id) if content_id else None
    return latest.new_snapshot if latest else None


class ContentController:
    """Applies content changes under per-id locks and per-actor rate limits."""

    def __init__(self, locks: ContentLockManager = None, rate_limiter: RateLimiter = None,
                 lock_timeout: float = None):
        self.locks = locks or ContentLockManager()
        self.rate_limiter = rate_limiter or RateLimiter()
        self.lock_timeout = config.LOCK_WAIT_TIMEOUT_SEC if lock_timeout is None else lock_timeout

    @contextmanager
    def with_lock(self, content_id: str, actor: str):
        with self.locks.hold(content_id, actor, self.lock_timeout):
            yield

    @contextmanager
    def with_file_lock(self, target: Path, actor: str):
        """Serialize every write to one template, whichever content id it is for."""
        with self.locks.hold(file_key(relative_to_project(target)), actor, config.FILE_LOCK_WAIT_SEC):
            yield

    def check_rate(self, actor: str) -> None:
        decision = self.rate_limiter.check(actor)
        if not decision.allowed:
            logger.log_rate_limited(actor, self.rate_limiter.max_writes, self.rate_limiter.window_sec)
            raise RateLimited(actor, self.rate_limiter.max_writes, decision.reset_in)

    def record_history(self, change: ContentChange, action: str, actor: str,
                       metadata: Dict[str, Any] = None) -> int:
        """Append one record; history is never rewritten."""
        record_metadata = dict(change.metadata)
        record_metadata.update({"locale": change.locale, "file_path": change.file_path})
        record_metadata.update(metadata or {})

        history_id = dao.add_history_record(
            content_type=change.content_type,
            content_id=change.id,
            action=action,
            old_snapshot=change.old_value,
            new_snapshot=change.new_value,
            actor=actor,
            metadata=record_metadata
        )
        logger.log_history_event(history_id, change.id, action, actor)
        return history_id

    def resolve_target(self, change: ContentChange) -> Path:
        """Template a change applies to: explicit path first, then the page URL."""
        if change.file_path:
            return resolve_source_path(change.file_path)

        url = change.metadata.get("url") or change.metadata.get("page_url")
        if url:
            found = resolve_file_from_url(url, change.metadata.get("file_hint"))
            if found is not None:
                return found

        raise ValidationError(
            "Source file unknown for this element; supply file_path",
            errors=[{"field": "file_path", "message": "required when the page carries no source marker"}]
        )

    def apply_change(self, change: ContentChange, actor: str = "default",
                     allow_multiple: bool = False, action: str = UPDATE) -> Dict[str, Any]:
        """Apply a single change. Any failure is raised to the caller."""
        errors = validate_change(change)
        if errors:
            raise ValidationError("Invalid content change", errors=errors)

        self.check_rate(actor)
        target = self.resolve_target(change)

        with self.with_lock(change.id, actor), self.with_file_lock(target, actor):
            try:
                result = patch_file(str(target), change.old_value, change.new_value,
                                    line_hint=change.line_hint, allow_multiple=allow_multiple,
                                    content_id=change.id)
            except CMSError as e:
                if config.HISTORY_RECORD_FAILURES:
                    try:
                        self.record_history(change, UPDATE_FAILED, actor, {
                            "file_path": relative_to_project(target),
                            "error": e.code,
                            "message": e.message,
                        })
                    except sqlite3.Error as db_error:
                        logger.error(f"Could not record failed update of {change.id}: {db_error}")
                raise

            # The template is already written; a history failure is reported, not raised
            history_id = None
            history_error = None
            try:
                history_id = self.record_history(change, action, actor, {
                    "file_path": result.file_path,
                    "line_number": result.line_number,
                    "backup_path": result.backup_path,
                    "version_id": result.version_id,
                    "checksum_after": result.checksum_after,
                })
            except sqlite3.Error as db_error:
                logger.error(f"Patched {result.file_path} for {change.id} but history was not recorded: {db_error}")
                history_error = str(db_error)

        invalidate(target)

        outcome = {
            "success": True,
            "id": change.id,
            "locale": change.locale,
            "history_id": history_id,
            "file_path": result.file_path,
            "backup_path": result.backup_path,
            "line_number": result.line_number,
            "version_id": result.version_id,
        }
        if history_error:
            outcome["history_error"] = history_error
        return outcome

    def validate_batch(self, changes: Sequence[ContentChange]) -> None:
        """Batch-level checks that reject the whole request before any write."""
        if not changes:
            raise ValidationError("No updates provided")

        if len(changes) > config.BULK_MAX_ITEMS:
            raise ValidationError(f"Too many updates in one request (max {config.BULK_MAX_ITEMS})")

        total_size = sum(len((c.new_value or "").encode("utf-8")) for c in changes)
        if total_size > config.BULK_MAX_TOTAL_SIZE:
            raise ValidationError(f"Total content size exceeds {config.BULK_MAX_TOTAL_SIZE} bytes")

        seen = {}
        duplicates = []
        for index, change in enumerate(changes):
            key = (change.id, change.locale)
            if key in seen:
                duplicates.append({
                    "index": index,
                    "id": change.id,
                    "locale": change.locale,
                    "message": f"Duplicate of item {seen[key]}",
                })
            else:
                seen[key] = index
        if duplicates:
            raise ValidationError("Duplicate (id, locale) pairs in batch", errors=duplicates)

    def apply_bulk(self, changes: Sequence[ContentChange], actor: str = "default") -> BulkResult:
        """Apply changes in order; one item's failure does not stop the rest."""
        self.validate_batch(changes)

        bulk = BulkResult(results=[], errors=[])
        for index, change in enumerate(changes):
            try:
                outcome = self.apply_change(change, actor)
                outcome["index"] = index
                bulk.results.append(outcome)
            except CMSError as e:
                bulk.errors.append({"index": index, "id": change.id, "locale": change.locale, **e.to_dict()})
            except OSError as e:
                logger.error(f"I/O failure applying {change.id}: {e}")
                bulk.errors.append({
                    "index": index,
                    "id": change.id,
                    "locale": change.locale,
                    "error": "IOError",
                    "message": str(e),
                })
            except Exception as e:
                logger.error(f"Unexpected failure applying {change.id}: {e}")
                bulk.errors.append({
                    "index": index,
                    "id": change.id,
                    "locale": change.locale,
                    "error": "InternalError",
                    "message": str(e),
                })

        summary = bulk.summary
        logger.log_bulk_summary(actor, summary["total"], summary["successful"], summary["failed"])
        return bulk

    def restore_backup(self, backup_file: str, file_path: str, actor: str = "default") -> Dict[str, Any]:
        """Replace a template with one of its backups, never while a patch is writing it."""
        self.check_rate(actor)
        target = resolve_source_path(file_path)

        with self.with_file_lock(target, actor):
            try:
                result = restore_from_backup(backup_file, file_path)
            except RestoreError as e:
                raise ValidationError(str(e), details={"backup_file": backup_file})

        invalidate(target)
        return result

    def history(self, content_id: str, limit: int = 100, include_failed: bool = True) -> List[HistoryRecord]:
        return dao.list_history(content_id, limit=limit, include_failed=include_failed)

    def restore(self, history_id: int, actor: str = "default") -> Dict[str, Any]:
        """Put back the value a record replaced, as a new forward edit."""
        record = dao.get_history_record(history_id)
        if record is None:
            raise NotFound(f"History record {history_id} not found", {"history_id": history_id})
        if record.action == UPDATE_FAILED:
            raise ValidationError("A failed update has nothing to restore", details={"history_id": history_id})

        metadata = record.metadata or {}
        change = ContentChange(
            id=record.content_id,
            old_value=record.new_snapshot,
            new_value=record.old_snapshot,
            locale=metadata.get("locale") or "en",
            file_path=metadata.get("file_path"),
            line_hint=metadata.get("line_number"),
            content_type=record.content_type,
            metadata={"restored_from": history_id},
        )
        return self.apply_change(change, actor, action=RESTORE)


_default_controller: Optional[ContentController] = None


def get_controller() -> ContentController:
    """Lazy initialization of the process-wide controller (locks and rate windows are shared)."""
    global _default_controller
    if _default_controller is None:
        _default_controller = ContentController()
    return _default_controller

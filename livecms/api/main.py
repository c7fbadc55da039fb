"""
HTTP surface for the scanner, the patch engine and the history trail.
"""

from fastapi import FastAPI, Depends, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from typing import Optional
import logging

from .schemas import (
    ScanRequest,
    ScanResponse,
    ContentUpdateRequest,
    ContentUpdateResponse,
    BulkUpdateRequest,
    BulkUpdateResponse,
    HistoryListResponse,
    BackupListResponse,
    BackupRestoreRequest,
    BackupRestoreResponse,
    HealthResponse,
)
from ..core import dao
from ..core.backup import list_backups
from ..core.config import VERSION, debug_enabled, get_api_token
from ..core.db import health_check
from ..core.errors import CMSError, PermissionDenied
from ..core.history import get_controller, resolve_old_value
from ..core.schema import ContentChange
from ..scanner.scan import scan_html, scan_url
from ..util.logging import audit_event

# Initialize the FastAPI application
app = FastAPI(
    title="Live Template CMS API",
    version=VERSION,
    description="Scan rendered pages for editable regions and patch their source templates",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:8000", "http://127.0.0.1:8000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def require_token(x_cms_token: Optional[str] = Header(None)):
    """Shared-token gate; open when CMS_API_TOKEN is unset."""
    expected = get_api_token()
    if expected and x_cms_token != expected:
        raise PermissionDenied("Missing or invalid X-CMS-Token header")


def get_actor(x_user_id: Optional[str] = Header(None)) -> str:
    """Actor for rate limits, locks and history, 'default' when unspecified."""
    return (x_user_id or "").strip() or "default"


def _to_change(request: ContentUpdateRequest) -> ContentChange:
    old_value = resolve_old_value(request.id, request.old_value, request.metadata)
    return ContentChange(
        id=request.id,
        old_value=old_value or "",
        new_value=request.value,
        locale=request.locale,
        file_path=request.file_path,
        line_hint=request.line_number,
        content_type=request.type,
        metadata=dict(request.metadata),
    )


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint():
    """Check system health."""
    db_health = health_check()

    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=VERSION,
        db_health=db_health,
        history_count=dao.get_history_count()
    )


@app.post("/scan", response_model=ScanResponse, dependencies=[Depends(require_token)])
def scan_endpoint(request: ScanRequest):
    """Classify a rendered page; with ``inject`` the annotated markup is returned too."""
    options = dict(locale=request.locale, types_filter=request.types_filter, inject=request.inject)
    if request.markup is not None:
        result = scan_html(request.markup, **options)
    else:
        result = scan_url(request.url, **options)

    return ScanResponse(
        elements=[element.to_dict() for element in result.elements],
        stats=result.stats,
        generated_ids=result.generated_ids,
        markup=result.markup
    )


@app.post("/content/update", response_model=ContentUpdateResponse, dependencies=[Depends(require_token)])
def update_content_endpoint(request: ContentUpdateRequest, actor: str = Depends(get_actor)):
    """Apply one edit to its source template."""
    outcome = get_controller().apply_change(_to_change(request), actor)
    return ContentUpdateResponse(**outcome)


@app.post("/content/bulk", response_model=BulkUpdateResponse, dependencies=[Depends(require_token)])
def bulk_update_endpoint(request: BulkUpdateRequest, actor: str = Depends(get_actor)):
    """Apply a batch of edits in order, continuing past per-item failures."""
    changes = [_to_change(update) for update in request.updates]
    result = get_controller().apply_bulk(changes, actor)
    return BulkUpdateResponse(**result.to_dict())


@app.get("/history/{content_id}", response_model=HistoryListResponse, dependencies=[Depends(require_token)])
def history_endpoint(content_id: str, limit: int = 100, include_failed: bool = True):
    """History records for one content id, newest first."""
    records = get_controller().history(content_id, limit=limit, include_failed=include_failed)
    return HistoryListResponse(content_id=content_id, records=[record.to_dict() for record in records])


@app.post("/history/{history_id}/restore", response_model=ContentUpdateResponse,
          dependencies=[Depends(require_token)])
def restore_history_endpoint(history_id: int, actor: str = Depends(get_actor)):
    """Undo one recorded edit by writing its old value back."""
    outcome = get_controller().restore(history_id, actor)
    return ContentUpdateResponse(**outcome)


@app.get("/backups", response_model=BackupListResponse, dependencies=[Depends(require_token)])
def list_backups_endpoint(file: str):
    """Backup copies of a template, newest first."""
    entries = list_backups(file)
    return BackupListResponse(file=file, backups=[entry.to_dict() for entry in entries])


@app.post("/backups/restore", response_model=BackupRestoreResponse, dependencies=[Depends(require_token)])
def restore_backup_endpoint(request: BackupRestoreRequest, actor: str = Depends(get_actor)):
    """Replace a template with one of its backups."""
    result = get_controller().restore_backup(request.backup_file, request.file_path, actor)
    audit_event("backup.restored", {"actor": actor, "file": result["file"]}, {"backup": result["restored_from"]})
    return BackupRestoreResponse(**result)


@app.exception_handler(CMSError)
async def cms_error_handler(request: Request, exc: CMSError):
    """Map domain errors onto their HTTP status with a stable body."""
    content = exc.to_dict()
    content.setdefault("details", {})
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Report malformed request bodies in the same shape as domain validation errors."""
    errors = [
        {"field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"), "message": error.get("msg")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content={"error": "ValidationError", "message": "Invalid request", "details": {"errors": errors}},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle all unhandled exceptions."""
    logging.error(f"Unhandled exception: {exc}")
    content = {"error": "InternalError", "message": "Internal server error"}
    if debug_enabled():
        content["debug"] = str(exc)
    return JSONResponse(
        status_code=500,
        content=content,
    )

"""
Request and response models for the content API.

Field names are snake_case; the editor's camelCase spellings are accepted as
aliases.
"""

from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from typing import Optional, List, Dict, Any
from datetime import datetime

from ..core.schema import CONTENT_TYPES


class ScanRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    markup: Optional[str] = None
    url: Optional[str] = None
    locale: Optional[str] = None
    types_filter: Optional[List[str]] = Field(default=None, alias="typesFilter")
    inject: bool = False

    @model_validator(mode="after")
    def markup_or_url(self):
        if self.markup is None and not self.url:
            raise ValueError('either markup or url is required')
        return self

    @field_validator('types_filter')
    @classmethod
    def types_must_be_known(cls, v):
        if v is None:
            return v
        unknown = [t for t in v if t not in CONTENT_TYPES]
        if unknown:
            raise ValueError(f'types_filter entries must be among: {list(CONTENT_TYPES)}')
        return v


class ScannedElementModel(BaseModel):
    tag: str
    text: str
    attributes: Dict[str, str]
    classification: Dict[str, Any]
    content_id: Optional[str] = None
    source_file: Optional[str] = None
    line_hint: Optional[int] = None


class ScanResponse(BaseModel):
    elements: List[ScannedElementModel]
    stats: Dict[str, Any]
    generated_ids: List[str]
    markup: Optional[str] = None


class ContentUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    value: str
    old_value: Optional[str] = Field(default=None, alias="oldValue")
    locale: str = "en"
    type: str = "text"
    file_path: Optional[str] = Field(default=None, alias="filePath")
    line_number: Optional[int] = Field(default=None, alias="lineNumber")
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('id')
    @classmethod
    def id_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('id cannot be empty')
        return v.strip()

    @field_validator('type')
    @classmethod
    def type_must_be_valid(cls, v):
        if v not in CONTENT_TYPES:
            raise ValueError(f'type must be one of: {list(CONTENT_TYPES)}')
        return v

    @field_validator('line_number')
    @classmethod
    def line_must_be_positive(cls, v):
        if v is not None and v < 1:
            raise ValueError('line_number must be >= 1')
        return v


class ContentUpdateResponse(BaseModel):
    success: bool
    history_id: Optional[int] = None
    file_path: Optional[str] = None
    backup_path: Optional[str] = None
    line_number: Optional[int] = None
    version_id: Optional[str] = None
    history_error: Optional[str] = None


class BulkUpdateRequest(BaseModel):
    updates: List[ContentUpdateRequest]


class BulkSummary(BaseModel):
    total: int
    successful: int
    failed: int


class BulkUpdateResponse(BaseModel):
    results: List[Dict[str, Any]]
    summary: BulkSummary
    errors: List[Dict[str, Any]]


class HistoryRecordModel(BaseModel):
    id: int
    content_type: str
    content_id: str
    action: str
    old_snapshot: str
    new_snapshot: str
    actor: str
    timestamp: datetime
    metadata: Dict[str, Any]


class HistoryListResponse(BaseModel):
    content_id: str
    records: List[HistoryRecordModel]


class BackupModel(BaseModel):
    timestamp: str
    created_at: datetime
    file: str
    size: int
    checksum: str


class BackupListResponse(BaseModel):
    file: str
    backups: List[BackupModel]


class BackupRestoreRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    backup_file: str = Field(alias="backupFile")
    file_path: str = Field(alias="filePath")


class BackupRestoreResponse(BaseModel):
    success: bool
    file: str
    restored_from: str
    safety_backup: str
    checksum: str


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    history_count: int

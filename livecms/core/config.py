"""Configuration management for the live template CMS."""

import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


# Database path configuration (history records)
DB_PATH = os.getenv("DB_PATH", "./data/cms.db")

# Debug flag is now a function to be dynamic
DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Project layout
PROJECT_ROOT = os.getenv("CMS_PROJECT_ROOT", ".")
TEMPLATE_ROOTS = _split_list(os.getenv("CMS_TEMPLATE_ROOTS", "templates,resources/views,resources/views/pages,public"))
BACKUP_DIR = os.getenv("CMS_BACKUP_DIR", "./data/backups")
COMPILED_CACHE_DIR = os.getenv("CMS_COMPILED_CACHE_DIR", "")  # empty disables cache clearing
ALLOWED_EXTENSIONS = _split_list(os.getenv("CMS_ALLOWED_EXTENSIONS", ".html,.htm,.blade.php,.jinja,.jinja2,.j2,.twig"))

# API gate - authorization is owned by the host app, this only checks a shared token
CMS_API_TOKEN = os.getenv("CMS_API_TOKEN")

# Scanner configuration
CONTENT_ID_LENGTH = int(os.getenv("CONTENT_ID_LENGTH", "12"))
LOOP_SIBLING_THRESHOLD = int(os.getenv("LOOP_SIBLING_THRESHOLD", "3"))
LISTING_CLASS_PREFIXES = _split_list(os.getenv(
    "LISTING_CLASS_PREFIXES",
    "product-,post-,comment-,category-,review-,listing-,entry-,user-"
))
SCAN_TIMEOUT_SEC = int(os.getenv("SCAN_TIMEOUT_SEC", "30"))

# Write controls
RATE_LIMIT_MAX_WRITES = int(os.getenv("RATE_LIMIT_MAX_WRITES", "60"))
RATE_LIMIT_WINDOW_SEC = int(os.getenv("RATE_LIMIT_WINDOW_SEC", "60"))
LOCK_TTL_SEC = int(os.getenv("LOCK_TTL_SEC", "30"))
LOCK_WAIT_TIMEOUT_SEC = float(os.getenv("LOCK_WAIT_TIMEOUT_SEC", "0"))  # 0 = fail fast
FILE_LOCK_WAIT_SEC = float(os.getenv("FILE_LOCK_WAIT_SEC", "5"))
BULK_MAX_ITEMS = int(os.getenv("BULK_MAX_ITEMS", "100"))
BULK_MAX_TOTAL_SIZE = int(os.getenv("BULK_MAX_TOTAL_SIZE", "1048576"))  # 1MB
HISTORY_RECORD_FAILURES = os.getenv("HISTORY_RECORD_FAILURES", "true").lower() == "true"
PATCH_SANITY_CHECK = os.getenv("PATCH_SANITY_CHECK", "true").lower() == "true"

# Version string
VERSION = "0.3.0"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def get_db_path() -> str:
    """Get the history database path (re-read so tests can point it elsewhere)."""
    return os.getenv("DB_PATH", DB_PATH)


def ensure_db_directory():
    """Ensure the database directory exists."""
    Path(get_db_path()).parent.mkdir(parents=True, exist_ok=True)


def get_project_root() -> Path:
    """Get the resolved project root that all editable templates must live under."""
    return Path(os.getenv("CMS_PROJECT_ROOT", PROJECT_ROOT)).resolve()


def get_template_roots() -> List[Path]:
    """Get template search roots, relative entries resolved against the project root."""
    raw = os.getenv("CMS_TEMPLATE_ROOTS")
    roots = _split_list(raw) if raw is not None else TEMPLATE_ROOTS
    project_root = get_project_root()
    return [(project_root / root).resolve() for root in roots]


def get_backup_dir() -> Path:
    """Get the directory that receives pre-patch backup copies."""
    return Path(os.getenv("CMS_BACKUP_DIR", BACKUP_DIR)).resolve()


def get_compiled_cache_dir():
    """Get the compiled template cache directory, or None when cache clearing is off."""
    value = os.getenv("CMS_COMPILED_CACHE_DIR", COMPILED_CACHE_DIR)
    return Path(value) if value else None


def get_allowed_extensions() -> List[str]:
    """Get template file extensions the patch engine is allowed to touch."""
    raw = os.getenv("CMS_ALLOWED_EXTENSIONS")
    return _split_list(raw) if raw is not None else ALLOWED_EXTENSIONS


def get_api_token():
    """Get the shared API token, None means the gate is open."""
    return os.getenv("CMS_API_TOKEN", CMS_API_TOKEN)


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if CONTENT_ID_LENGTH < 6 or CONTENT_ID_LENGTH > 32:
        issues.append("CONTENT_ID_LENGTH must be between 6 and 32")

    if LOOP_SIBLING_THRESHOLD < 2:
        issues.append("LOOP_SIBLING_THRESHOLD must be >= 2")

    if RATE_LIMIT_MAX_WRITES < 1:
        issues.append("RATE_LIMIT_MAX_WRITES must be >= 1")

    if RATE_LIMIT_WINDOW_SEC < 1:
        issues.append("RATE_LIMIT_WINDOW_SEC must be >= 1")

    if LOCK_WAIT_TIMEOUT_SEC < 0:
        issues.append("LOCK_WAIT_TIMEOUT_SEC must be >= 0")

    if FILE_LOCK_WAIT_SEC < 0:
        issues.append("FILE_LOCK_WAIT_SEC must be >= 0")

    if BULK_MAX_ITEMS < 1:
        issues.append("BULK_MAX_ITEMS must be >= 1")

    if not get_project_root().is_dir():
        issues.append(f"CMS_PROJECT_ROOT does not exist: {get_project_root()}")

    return issues

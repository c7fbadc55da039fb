"""
Source path resolution and safety checks.

Every path that reaches the patch engine goes through ``resolve_source_path``:
relative paths are anchored at the project root, traversal segments are
rejected, and only template extensions listed in configuration are editable.
"""

from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

from .config import get_project_root, get_template_roots, get_allowed_extensions
from .errors import ValidationError

HOME_TEMPLATES = ("index", "home", "welcome")


def _has_allowed_extension(path: Path, extensions: List[str]) -> bool:
    name = path.name.lower()
    return any(name.endswith(ext.lower()) for ext in extensions)


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
        return True
    except ValueError:
        return False


def is_valid_source_path(path: str) -> bool:
    """Check a template path is inside the project and has an editable extension."""
    try:
        resolve_source_path(path)
        return True
    except ValidationError:
        return False


def resolve_source_path(path: str) -> Path:
    """Resolve a caller-supplied template path, raising ValidationError when unsafe."""
    if not path or not str(path).strip():
        raise ValidationError("file path is required")

    raw = Path(str(path).strip())
    if ".." in raw.parts:
        raise ValidationError(f"Invalid file path: {path}", details={"reason": "path traversal"})

    root = get_project_root()
    candidate = raw if raw.is_absolute() else root / raw
    resolved = candidate.resolve()

    if not _is_within(resolved, root):
        raise ValidationError(f"Invalid file path: {path}", details={"reason": "outside project root"})

    if not _has_allowed_extension(resolved, get_allowed_extensions()):
        raise ValidationError(f"File type not editable: {path}", details={"reason": "extension"})

    if not resolved.is_file():
        raise ValidationError(f"File not found: {path}", details={"reason": "missing"})

    return resolved


def relative_to_project(path: Path) -> str:
    """Render a path relative to the project root when possible."""
    root = get_project_root()
    resolved = Path(path).resolve()
    if _is_within(resolved, root):
        return resolved.relative_to(root).as_posix()
    return resolved.as_posix()


def resolve_file_from_url(url: str, hint: Optional[str] = None) -> Optional[Path]:
    """Guess the template a page URL was rendered from.

    Tries ``<path>.<ext>``, the dotted view name and the usual home page names
    under each template root, then falls back to the caller's hint.
    """
    path = urlparse(url.split("#", 1)[0]).path.strip("/")
    if not path:
        path = "index"

    extensions = get_allowed_extensions()
    names = [path, path.replace("/", ".")]
    if path == "index":
        names.extend(HOME_TEMPLATES)

    for root in get_template_roots():
        if not root.is_dir():
            continue
        for name in names:
            for ext in extensions:
                candidate = (root / f"{name}{ext}").resolve()
                if candidate.is_file() and _is_within(candidate, get_project_root()):
                    return candidate

        # Public files may be served with their extension already in the URL
        candidate = (root / path).resolve()
        if candidate.is_file() and _has_allowed_extension(candidate, extensions) \
                and _is_within(candidate, get_project_root()):
            return candidate

    if hint and is_valid_source_path(hint):
        return resolve_source_path(hint)

    return None

"""
Cache invalidation after a template changes on disk.

Invalidators are plain callables taking the patched template path. The
default one removes compiled template files (PHP-style view caches, Jinja
bytecode dumps) that mention the template, so the next render reads the new
source.
"""

from pathlib import Path
from typing import Callable, List

from .config import get_compiled_cache_dir
from ..util.logging import logger

Invalidator = Callable[[Path], None]

_invalidators: List[Invalidator] = []


def register_invalidator(invalidator: Invalidator) -> Invalidator:
    """Register a callable run after every successful patch. Usable as a decorator."""
    if invalidator not in _invalidators:
        _invalidators.append(invalidator)
    return invalidator


def unregister_invalidator(invalidator: Invalidator) -> None:
    if invalidator in _invalidators:
        _invalidators.remove(invalidator)


def clear_compiled_templates(template_path: Path) -> int:
    """Delete compiled cache files that reference ``template_path``."""
    cache_dir = get_compiled_cache_dir()
    if cache_dir is None or not cache_dir.is_dir():
        return 0

    needles = {str(template_path).encode("utf-8"), Path(template_path).name.encode("utf-8")}
    removed = 0
    for compiled in cache_dir.rglob("*"):
        if not compiled.is_file():
            continue
        data = compiled.read_bytes()
        if any(needle in data for needle in needles):
            compiled.unlink()
            removed += 1

    if removed:
        logger.log_operation("cache_clear", "success", {"template": str(template_path), "removed": removed})
    return removed


def invalidate(template_path: Path) -> None:
    """Run every registered invalidator; failures are logged, never raised."""
    for invalidator in list(_invalidators):
        try:
            invalidator(Path(template_path))
        except Exception as e:
            logger.warning(f"Cache invalidation failed for {template_path}: {e}")


register_invalidator(clear_compiled_templates)

""".gitignore-aware project walking helpers."""

import os
import logging
from typing import Dict, Iterable, Iterator, Optional, Set

import pathspec

from config import app_config

logger = logging.getLogger(__name__)

DEFAULT_SKIP_DIRS: Set[str] = {
    "node_modules", ".git", "dist", "build", ".next", "coverage",
    "__pycache__", ".venv", "venv", app_config.app_dir_name,
}

_gitignore_cache: Dict[str, Optional[pathspec.PathSpec]] = {}


def load_gitignore(root: str) -> Optional[pathspec.PathSpec]:
    """Load and cache .gitignore patterns for a project root.

    Returns a PathSpec matcher or None if no .gitignore exists.
    """
    root = os.path.abspath(root)
    if root in _gitignore_cache:
        return _gitignore_cache[root]

    spec = None
    gitignore_path = os.path.join(root, ".gitignore")
    if os.path.isfile(gitignore_path):
        try:
            with open(gitignore_path, "r", encoding="utf-8", errors="replace") as f:
                spec = pathspec.PathSpec.from_lines("gitwildmatch", f)
        except OSError as e:
            logger.debug(f"Failed to read .gitignore: {e}")

    _gitignore_cache[root] = spec
    return spec


def is_ignored(rel_path: str, name: str, is_dir: bool,
               gitignore_spec: Optional[pathspec.PathSpec],
               skip_dirs: Iterable[str] = DEFAULT_SKIP_DIRS) -> bool:
    """Check if a path should be ignored: dot entries, skip dirs, .gitignore."""
    if name.startswith("."):
        return True
    if is_dir and name in skip_dirs:
        return True
    if gitignore_spec:
        check_path = rel_path.replace(os.sep, "/") + ("/" if is_dir else "")
        if gitignore_spec.match_file(check_path):
            return True
    return False


def walk_project(root: str, extensions: Optional[Iterable[str]] = None,
                 skip_dirs: Iterable[str] = DEFAULT_SKIP_DIRS) -> Iterator[str]:
    """Yield relative paths (forward slashes) of project files, sorted per directory."""
    root = os.path.abspath(root)
    exts = set(extensions) if extensions is not None else None
    skip = set(skip_dirs)
    gi = load_gitignore(root)
    for dirpath, dirs, files in os.walk(root):
        rel_dir = os.path.relpath(dirpath, root)
        rel_dir = "" if rel_dir == "." else rel_dir
        dirs[:] = sorted(
            d for d in dirs
            if not is_ignored(os.path.join(rel_dir, d), d, True, gi, skip)
        )
        for name in sorted(files):
            rel = os.path.join(rel_dir, name)
            if is_ignored(rel, name, False, gi, skip):
                continue
            if exts is not None and os.path.splitext(name)[1].lower() not in exts:
                continue
            yield rel.replace(os.sep, "/")


def invalidate_gitignore_cache(root: Optional[str] = None) -> None:
    """Clear cached .gitignore specs. Call when .gitignore changes."""
    if root:
        _gitignore_cache.pop(os.path.abspath(root), None)
    else:
        _gitignore_cache.clear()

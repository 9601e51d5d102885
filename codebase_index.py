"""
Project-wide symbol index for Bedrock Pilot.

Walks the project (skipping dependency/build directories, dotfiles and
.gitignore matches), records every file and directory, and extracts a symbol
table from recognized source files with line-anchored regexes. The extractor
is pluggable through the SymbolExtractor protocol.

The index is rebuilt wholesale; callers hold it in an IndexCache with a short TTL.
"""

import json
import logging
import os
import re
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern, Protocol, Tuple

from config import app_config
from tools.gitignore import DEFAULT_SKIP_DIRS, is_ignored, load_gitignore

logger = logging.getLogger(__name__)

CODE_EXTENSIONS = {".ts", ".tsx", ".js", ".jsx", ".py", ".go", ".rs", ".java", ".cs", ".cpp", ".c", ".h"}
JS_EXTENSIONS = {".ts", ".tsx", ".js", ".jsx"}

SYMBOL_KINDS = ("function", "variable", "class", "interface", "type", "import")


@dataclass
class Symbol:
    name: str
    kind: str
    line: int
    exported: bool = False


@dataclass
class FileEntry:
    path: str  # absolute
    relative_path: str
    type: str  # "file" or "directory"
    extension: str = ""
    size: int = 0
    symbols: List[Symbol] = field(default_factory=list)


@dataclass
class CodebaseIndex:
    root: str
    files: List[FileEntry] = field(default_factory=list)
    symbols: Dict[str, List[Symbol]] = field(default_factory=dict)
    dependencies: Dict[str, str] = field(default_factory=dict)
    dev_dependencies: Dict[str, str] = field(default_factory=dict)
    summary: str = ""


class SymbolExtractor(Protocol):
    def extract(self, lines: List[str], extension: str) -> List[Symbol]:
        ...


# (regex, kind, exported, name group)
_JS_PATTERNS: List[Tuple[Pattern, str, bool, int]] = [
    (re.compile(r"^export\s+(?:default\s+)?(?:async\s+)?function\s+(\w+)"), "function", True, 1),
    (re.compile(r"^export\s+(?:const|let|var)\s+(\w+)"), "variable", True, 1),
    (re.compile(r"^export\s+(?:default\s+)?(?:abstract\s+)?class\s+(\w+)"), "class", True, 1),
    (re.compile(r"^export\s+interface\s+(\w+)"), "interface", True, 1),
    (re.compile(r"^export\s+type\s+(\w+)"), "type", True, 1),
    (re.compile(r"^(?:async\s+)?function\s+(\w+)"), "function", False, 1),
    (re.compile(r"^(?:const|let|var)\s+(\w+)\s*="), "variable", False, 1),
    (re.compile(r"^(?:abstract\s+)?class\s+(\w+)"), "class", False, 1),
    (re.compile(r"^interface\s+(\w+)"), "interface", False, 1),
    (re.compile(r"^type\s+(\w+)"), "type", False, 1),
    (re.compile(r"""^import\s+.*from\s+['"](.+)['"]"""), "import", False, 1),
]

_PY_DEF = re.compile(r"^(?:async\s+)?def\s+(\w+)")
_PY_CLASS = re.compile(r"^class\s+(\w+)")
_PY_IMPORT = re.compile(r"^(?:from\s+\S+\s+)?import\s+(.+)")


class RegexSymbolExtractor:
    """Line-anchored regex extraction for the JS/TS and Python families.

    Lines are matched after stripping, so nested methods are picked up as
    well. Other recognized extensions yield no symbols.
    """

    def extract(self, lines: List[str], extension: str) -> List[Symbol]:
        if extension in JS_EXTENSIONS:
            return self._extract_js(lines)
        if extension == ".py":
            return self._extract_python(lines)
        return []

    def _extract_js(self, lines: List[str]) -> List[Symbol]:
        symbols = []
        for i, line in enumerate(lines):
            trimmed = line.strip()
            for regex, kind, exported, group in _JS_PATTERNS:
                m = regex.match(trimmed)
                if m:
                    symbols.append(Symbol(name=m.group(group), kind=kind, line=i + 1, exported=exported))
                    break
        return symbols

    def _extract_python(self, lines: List[str]) -> List[Symbol]:
        symbols = []
        for i, line in enumerate(lines):
            trimmed = line.strip()
            m = _PY_DEF.match(trimmed) or _PY_CLASS.match(trimmed)
            if m:
                kind = "class" if trimmed.startswith("class") else "function"
                name = m.group(1)
                symbols.append(Symbol(name=name, kind=kind, line=i + 1, exported=not name.startswith("_")))
                continue
            m = _PY_IMPORT.match(trimmed)
            if m:
                first = m.group(1).split(",")[0].strip()
                symbols.append(Symbol(name=first, kind="import", line=i + 1))
        return symbols


def _read_lines(path: str) -> Optional[List[str]]:
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return f.read().split("\n")
    except OSError as e:
        logger.debug(f"Cannot read {path}: {e}")
        return None


def _load_manifest(root: str) -> Tuple[Dict[str, str], Dict[str, str]]:
    """Dependencies from package.json, or requirements.txt for Python projects."""
    pkg_path = os.path.join(root, "package.json")
    if os.path.isfile(pkg_path):
        try:
            with open(pkg_path, "r", encoding="utf-8") as f:
                pkg = json.load(f)
            return dict(pkg.get("dependencies") or {}), dict(pkg.get("devDependencies") or {})
        except (OSError, ValueError) as e:
            logger.warning(f"Could not parse package.json: {e}")
            return {}, {}

    req_path = os.path.join(root, "requirements.txt")
    deps: Dict[str, str] = {}
    if os.path.isfile(req_path):
        for line in _read_lines(req_path) or []:
            line = line.split("#", 1)[0].strip()
            if not line or line.startswith("-"):
                continue
            m = re.match(r"^([A-Za-z0-9_.\-\[\]]+)\s*(.*)$", line)
            if m:
                deps[m.group(1)] = m.group(2) or "*"
    return deps, {}


def _generate_summary(files: List[FileEntry], symbols: Dict[str, List[Symbol]],
                      dependencies: Dict[str, str]) -> str:
    code_files = [f for f in files if f.type == "file" and f.extension in CODE_EXTENSIONS]
    all_symbols = [s for syms in symbols.values() for s in syms]
    by_kind: Dict[str, int] = {}
    for s in all_symbols:
        by_kind[s.kind] = by_kind.get(s.kind, 0) + 1
    ext_counts: Dict[str, int] = {}
    for f in code_files:
        ext_counts[f.extension] = ext_counts.get(f.extension, 0) + 1
    languages = ", ".join(f"{ext}({n})" for ext, n in sorted(ext_counts.items(), key=lambda kv: -kv[1]))
    return (
        "Codebase Summary:\n"
        f"  Files: {sum(1 for f in files if f.type == 'file')}\n"
        f"  Directories: {sum(1 for f in files if f.type == 'directory')}\n"
        f"  Code files: {len(code_files)}\n"
        f"  Functions: {by_kind.get('function', 0)}\n"
        f"  Classes: {by_kind.get('class', 0)}\n"
        f"  Interfaces: {by_kind.get('interface', 0)}\n"
        f"  Dependencies: {len(dependencies)}\n"
        f"  Languages: {languages or 'none'}\n"
    )


def index_codebase(root: str, extractor: Optional[SymbolExtractor] = None) -> CodebaseIndex:
    """Walk root and build a fresh CodebaseIndex."""
    root = os.path.abspath(root)
    extractor = extractor or RegexSymbolExtractor()
    index = CodebaseIndex(root=root)
    gi = load_gitignore(root)

    for dirpath, dirs, names in os.walk(root):
        rel_dir = os.path.relpath(dirpath, root)
        rel_dir = "" if rel_dir == "." else rel_dir
        dirs[:] = sorted(
            d for d in dirs
            if not is_ignored(os.path.join(rel_dir, d), d, True, gi, DEFAULT_SKIP_DIRS)
        )
        for d in dirs:
            rel = os.path.join(rel_dir, d).replace(os.sep, "/")
            index.files.append(FileEntry(path=os.path.join(dirpath, d), relative_path=rel, type="directory"))
        for name in sorted(names):
            rel = os.path.join(rel_dir, name)
            if is_ignored(rel, name, False, gi, DEFAULT_SKIP_DIRS):
                continue
            rel = rel.replace(os.sep, "/")
            full = os.path.join(dirpath, name)
            ext = os.path.splitext(name)[1].lower()
            try:
                size = os.path.getsize(full)
            except OSError:
                size = 0
            entry = FileEntry(path=full, relative_path=rel, type="file", extension=ext, size=size)
            if ext in CODE_EXTENSIONS:
                lines = _read_lines(full)
                if lines:
                    entry.symbols = extractor.extract(lines, ext)
                    if entry.symbols:
                        index.symbols[rel] = entry.symbols
            index.files.append(entry)

    index.dependencies, index.dev_dependencies = _load_manifest(root)
    index.summary = _generate_summary(index.files, index.symbols, index.dependencies)
    logger.info(f"Indexed {root}: {len(index.files)} entries, {len(index.symbols)} files with symbols")
    return index


def search_symbols(index: CodebaseIndex, query: str, limit: int = 50) -> List[Tuple[str, Symbol]]:
    """Case-insensitive substring match over symbol names."""
    q = query.lower()
    results = []
    for rel, symbols in index.symbols.items():
        for s in symbols:
            if q in s.name.lower():
                results.append((rel, s))
                if len(results) >= limit:
                    return results
    return results


def find_references(index: CodebaseIndex, name: str, limit: int = 30) -> List[str]:
    """Lines mentioning name in any indexed code file, read fresh from disk."""
    refs: List[str] = []
    for entry in index.files:
        if entry.type != "file" or entry.extension not in CODE_EXTENSIONS:
            continue
        lines = _read_lines(entry.path)
        if not lines:
            continue
        for i, line in enumerate(lines):
            if name in line:
                refs.append(f"{entry.relative_path}:{i + 1}: {line.strip()[:100]}")
                if len(refs) >= limit:
                    return refs
    return refs


def get_file_context(index: CodebaseIndex, path: str) -> str:
    """Imports and exported symbols of one file."""
    full = path if os.path.isabs(path) else os.path.join(index.root, path)
    rel = os.path.relpath(os.path.normpath(full), index.root).replace(os.sep, "/")
    symbols = index.symbols.get(rel, [])
    imports = [s for s in symbols if s.kind == "import"]
    exports = [s for s in symbols if s.exported]
    parts = [rel]
    if imports:
        parts.append("\nImports:\n" + "\n".join(f"  - {s.name}" for s in imports))
    if exports:
        parts.append("\nExports:\n" + "\n".join(f"  - {s.kind}: {s.name} (line {s.line})" for s in exports))
    if not symbols:
        parts.append("\n(no symbols indexed)")
    return "\n".join(parts)


def format_symbol_results(results: List[Tuple[str, Symbol]]) -> str:
    if not results:
        return "No symbols found."
    return "\n".join(
        f"{rel}:{s.line}  {s.kind} {s.name}{' (exported)' if s.exported else ''}"
        for rel, s in results
    )


class IndexCache:
    """Holds one CodebaseIndex per root for ttl seconds."""

    def __init__(self, ttl: float = app_config.index_ttl, extractor: Optional[SymbolExtractor] = None):
        self.ttl = ttl
        self.extractor = extractor
        self._entries: Dict[str, Tuple[float, CodebaseIndex]] = {}

    def get(self, root: str) -> CodebaseIndex:
        root = os.path.abspath(root)
        cached = self._entries.get(root)
        now = time.time()
        if cached and now - cached[0] < self.ttl:
            return cached[1]
        index = index_codebase(root, self.extractor)
        self._entries[root] = (now, index)
        return index

    def invalidate(self, root: Optional[str] = None) -> None:
        if root is None:
            self._entries.clear()
        else:
            self._entries.pop(os.path.abspath(root), None)

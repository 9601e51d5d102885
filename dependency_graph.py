"""
Import graph for JS/TS projects.

Forward edges come from static imports, require() calls and dynamic import();
reverse edges are derived from them in a second pass. Only relative or
absolute imports are resolved; package imports are dropped.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from tools.gitignore import walk_project

logger = logging.getLogger(__name__)

GRAPH_EXTENSIONS = {".ts", ".tsx", ".js", ".jsx"}
GRAPH_SKIP_DIRS = {"node_modules", ".git", "dist", "build", ".next"}
RESOLVE_EXTENSIONS = [".ts", ".tsx", ".js", ".jsx", ""]

IMPORT_PATTERNS = [
    re.compile(r"""import\s+(?:[\w{}\s,*]+\s+from\s+)?['"]([^'"]+)['"]"""),
    re.compile(r"""require\s*\(\s*['"]([^'"]+)['"]\s*\)"""),
    re.compile(r"""import\s*\(\s*['"]([^'"]+)['"]\s*\)"""),
]


@dataclass
class DependencyNode:
    file: str
    imports: List[str] = field(default_factory=list)
    imported_by: List[str] = field(default_factory=list)


@dataclass
class DependencyGraph:
    root: str
    nodes: Dict[str, DependencyNode] = field(default_factory=dict)


def resolve_import_path(import_path: str, from_dir: str, root: str) -> Optional[str]:
    """Resolve an import specifier to a root-relative file path, or None."""
    if not import_path.startswith(".") and not import_path.startswith("/"):
        return None
    base = os.path.normpath(os.path.join(from_dir, import_path))
    for ext in RESOLVE_EXTENSIONS:
        candidate = base + ext
        if os.path.isfile(candidate):
            return os.path.relpath(candidate, root).replace(os.sep, "/")
    for ext in RESOLVE_EXTENSIONS:
        candidate = os.path.join(base, f"index{ext}")
        if os.path.isfile(candidate):
            return os.path.relpath(candidate, root).replace(os.sep, "/")
    return None


def extract_imports(full_path: str, root: str) -> List[str]:
    """Resolved, de-duplicated import targets of one file, in source order."""
    try:
        with open(full_path, "r", encoding="utf-8", errors="replace") as f:
            content = f.read()
    except OSError as e:
        logger.debug(f"Cannot read {full_path}: {e}")
        return []
    from_dir = os.path.dirname(full_path)
    found: List[str] = []
    for pattern in IMPORT_PATTERNS:
        for m in pattern.finditer(content):
            resolved = resolve_import_path(m.group(1), from_dir, root)
            if resolved and resolved not in found:
                found.append(resolved)
    return found


def build_dependency_graph(root: str) -> DependencyGraph:
    root = os.path.abspath(root)
    graph = DependencyGraph(root=root)
    for rel in walk_project(root, GRAPH_EXTENSIONS, GRAPH_SKIP_DIRS):
        graph.nodes[rel] = DependencyNode(file=rel, imports=extract_imports(os.path.join(root, rel), root))

    for file, node in graph.nodes.items():
        for imp in node.imports:
            target = graph.nodes.get(imp)
            if target is not None:
                target.imported_by.append(file)

    logger.info(f"Dependency graph built for {root}: {len(graph.nodes)} files")
    return graph


def _walk(graph: DependencyGraph, file: str, max_depth: int, reverse: bool) -> List[str]:
    visited = set()
    result: List[str] = []
    stack = [(file, 0)]
    while stack:
        current, depth = stack.pop()
        if depth > max_depth or current in visited:
            continue
        visited.add(current)
        node = graph.nodes.get(current)
        if node is None:
            continue
        edges = node.imported_by if reverse else node.imports
        # reversed so the first edge is explored first
        for nxt in reversed(edges):
            if nxt not in visited:
                stack.append((nxt, depth + 1))
        for nxt in edges:
            if nxt not in visited and nxt not in result:
                result.append(nxt)
    return result


def get_dependencies(graph: DependencyGraph, file: str, max_depth: int = 3) -> List[str]:
    """Files that file imports, transitively up to max_depth. Cycles terminate."""
    return _walk(graph, file, max_depth, reverse=False)


def get_dependents(graph: DependencyGraph, file: str, max_depth: int = 2) -> List[str]:
    """Files that import file, transitively up to max_depth."""
    return _walk(graph, file, max_depth, reverse=True)


def get_related_files(graph: DependencyGraph, file: str) -> Dict[str, List[str]]:
    return {
        "dependencies": get_dependencies(graph, file),
        "dependents": get_dependents(graph, file),
    }


def format_dependency_info(graph: DependencyGraph, file: str) -> str:
    node = graph.nodes.get(file)
    if node is None:
        return f"File not in dependency graph: {file}"
    lines = [file, "", f"Imports ({len(node.imports)}):"]
    lines.extend(f"  -> {imp}" for imp in node.imports[:10])
    if len(node.imports) > 10:
        lines.append(f"  ... and {len(node.imports) - 10} more")
    lines.append("")
    lines.append(f"Imported by ({len(node.imported_by)}):")
    lines.extend(f"  <- {dep}" for dep in node.imported_by[:10])
    if len(node.imported_by) > 10:
        lines.append(f"  ... and {len(node.imported_by) - 10} more")
    return "\n".join(lines)


def graph_summary(graph: DependencyGraph) -> str:
    edges = sum(len(n.imports) for n in graph.nodes.values())
    most_imported = sorted(graph.nodes.values(), key=lambda n: len(n.imported_by), reverse=True)
    top = [f"{n.file} ({len(n.imported_by)})" for n in most_imported[:3] if n.imported_by]
    summary = f"Dependency graph: {len(graph.nodes)} files, {edges} imports"
    if top:
        summary += f"\n  Most imported: {', '.join(top)}"
    return summary

"""
Semantic chunking of source files.

Files are split into import blocks and declaration blocks (functions, classes,
interfaces) with line-anchored regexes. Block ends are found by brace counting
for curly-brace languages and by dedent for Python. The heuristic sits behind
the Chunker protocol so a real parser can replace it without touching callers.
"""

import hashlib
import logging
import os
import re
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Pattern, Protocol, Tuple

from config import app_config
from tools.gitignore import walk_project

logger = logging.getLogger(__name__)

CODE_EXTENSIONS = {".ts", ".tsx", ".js", ".jsx", ".mjs", ".py"}
CHUNKABLE_EXTENSIONS = CODE_EXTENSIONS | {".md", ".json"}
CHUNK_SKIP_DIRS = {"node_modules", ".git", "dist", "build", ".next", "__pycache__", app_config.app_dir_name}
SMALL_FILE_LIMIT = 5000
DEFAULT_BLOCK_LINES = 50

CHUNK_TYPES = ("import", "function", "class", "interface", "other")


@dataclass
class EmbeddingChunk:
    """A semantic slice of a file. Lines are 1-based and inclusive."""
    file: str
    start_line: int
    end_line: int
    content: str
    type: str
    hash: str
    name: Optional[str] = None
    embedding: Optional[List[float]] = None

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "EmbeddingChunk":
        return cls(
            file=data["file"],
            start_line=data["start_line"],
            end_line=data["end_line"],
            content=data["content"],
            type=data["type"],
            hash=data["hash"],
            name=data.get("name"),
            embedding=data.get("embedding"),
        )


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


JS_DECLARATIONS: List[Tuple[Pattern, str]] = [
    (re.compile(r"^(?:export\s+)?(?:async\s+)?function\s+(\w+)"), "function"),
    (re.compile(r"^(?:export\s+)?const\s+(\w+)\s*=\s*(?:async\s+)?\("), "function"),
    (re.compile(r"^(?:export\s+)?(?:const|let|var)\s+(\w+)\s*=\s*(?:async\s+)?(?:\([^)]*\)|[^=])\s*=>"), "function"),
    (re.compile(r"^(?:export\s+)?(?:abstract\s+)?class\s+(\w+)"), "class"),
    (re.compile(r"^(?:export\s+)?interface\s+(\w+)"), "interface"),
    (re.compile(r"^(?:export\s+)?type\s+(\w+)"), "interface"),
]

PY_DECLARATIONS: List[Tuple[Pattern, str]] = [
    (re.compile(r"^(?:async\s+)?def\s+(\w+)"), "function"),
    (re.compile(r"^class\s+(\w+)"), "class"),
]

_REQUIRE_LINE = re.compile(r"^const\s.*\brequire\(")


class Chunker(Protocol):
    def chunk_file(self, path: str, content: str) -> List[EmbeddingChunk]:
        ...


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip())


def find_indent_block_end(lines: List[str], start: int) -> int:
    """1-based last line of an indentation block starting at 0-based index start."""
    start_indent = _indent(lines[start])
    for i in range(start + 1, len(lines)):
        if not lines[i].strip():
            continue
        if _indent(lines[i]) <= start_indent:
            return i
    return len(lines)


def find_brace_block_end(lines: List[str], start: int) -> int:
    """1-based line holding the brace that closes the block opened at or after start.

    String literals (quotes and backticks), line comments and block comments
    are skipped. Falls back to a fixed window when no closing brace is found.
    """
    depth = 0
    started = False
    quote = ""
    in_block_comment = False
    for i in range(start, len(lines)):
        line = lines[i]
        j = 0
        while j < len(line):
            ch = line[j]
            nxt = line[j + 1] if j + 1 < len(line) else ""
            if in_block_comment:
                if ch == "*" and nxt == "/":
                    in_block_comment = False
                    j += 1
            elif quote:
                if ch == "\\":
                    j += 1
                elif ch == quote:
                    quote = ""
            elif ch == "/" and nxt == "/":
                break
            elif ch == "/" and nxt == "*":
                in_block_comment = True
                j += 1
            elif ch in ("'", '"', "`"):
                quote = ch
            elif ch == "{":
                depth += 1
                started = True
            elif ch == "}":
                depth -= 1
                if started and depth == 0:
                    return i + 1
            j += 1
        # plain quotes never span lines
        if quote in ("'", '"'):
            quote = ""
    return min(start + DEFAULT_BLOCK_LINES, len(lines))


def _import_block(lines: List[str]) -> Optional[Tuple[int, List[str]]]:
    """Leading import lines (blank lines allowed in between) and the last index."""
    collected: List[str] = []
    last = -1
    for i, raw in enumerate(lines):
        line = raw.strip()
        if line.startswith("import ") or line.startswith("from ") or _REQUIRE_LINE.match(line):
            collected.append(raw)
            last = i
        elif collected and not line:
            continue
        elif collected:
            break
    if not collected:
        return None
    return last, collected


class RegexChunker:
    """Regex and brace/indent based chunker for JS/TS and Python sources."""

    def chunk_file(self, path: str, content: str) -> List[EmbeddingChunk]:
        ext = os.path.splitext(path)[1].lower()
        if ext not in CODE_EXTENSIONS:
            if len(content) < SMALL_FILE_LIMIT:
                return [EmbeddingChunk(
                    file=path, start_line=1, end_line=len(content.split("\n")),
                    content=content, type="other", hash=content_hash(content),
                )]
            return []

        lines = content.split("\n")
        chunks: List[EmbeddingChunk] = []

        imports = _import_block(lines)
        if imports:
            last, collected = imports
            text = "\n".join(collected)
            chunks.append(EmbeddingChunk(
                file=path, start_line=1, end_line=last + 1,
                content=text, type="import", hash=content_hash(text),
            ))

        is_python = ext == ".py"
        patterns = PY_DECLARATIONS if is_python else JS_DECLARATIONS
        seen = set()
        for i, line in enumerate(lines):
            for regex, chunk_type in patterns:
                m = regex.match(line)
                if not m:
                    continue
                name = m.group(1)
                start_line = i + 1
                if is_python:
                    end_line = find_indent_block_end(lines, i)
                else:
                    end_line = find_brace_block_end(lines, i)
                if end_line > start_line and (start_line, name) not in seen:
                    seen.add((start_line, name))
                    text = "\n".join(lines[start_line - 1:end_line])
                    chunks.append(EmbeddingChunk(
                        file=path, start_line=start_line, end_line=end_line,
                        content=text, type=chunk_type, name=name, hash=content_hash(text),
                    ))
                break
        return chunks


def chunk_path(root: str, rel_path: str, chunker: Optional[Chunker] = None) -> List[EmbeddingChunk]:
    """Read and chunk one file under root. Missing or unreadable files give no chunks."""
    full = os.path.join(root, rel_path)
    if not os.path.isfile(full):
        return []
    try:
        with open(full, "r", encoding="utf-8", errors="replace") as f:
            content = f.read()
    except OSError as e:
        logger.debug(f"Skipping unreadable file {full}: {e}")
        return []
    return (chunker or RegexChunker()).chunk_file(rel_path.replace(os.sep, "/"), content)


def chunk_codebase(root: str, chunker: Optional[Chunker] = None) -> List[EmbeddingChunk]:
    """Chunk every eligible file under root. Chunk paths are relative to root."""
    root = os.path.abspath(root)
    chunker = chunker or RegexChunker()
    chunks: List[EmbeddingChunk] = []
    for rel in walk_project(root, CHUNKABLE_EXTENSIONS, CHUNK_SKIP_DIRS):
        chunks.extend(chunk_path(root, rel, chunker))
    logger.info(f"Chunked {root}: {len(chunks)} chunks")
    return chunks


def chunk_summary(chunks: List[EmbeddingChunk]) -> str:
    by_type: Dict[str, int] = {}
    files = set()
    for c in chunks:
        by_type[c.type] = by_type.get(c.type, 0) + 1
        files.add(c.file)
    return (
        f"{len(chunks)} chunks in {len(files)} files | "
        f"{by_type.get('function', 0)} functions | "
        f"{by_type.get('class', 0)} classes | "
        f"{by_type.get('interface', 0)} interfaces"
    )

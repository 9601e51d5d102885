"""
@ mentions in chat messages.

    @file:path     include a file
    @folder:path   include a folder's code files (two levels deep)
    @symbol:name   include symbol matches from the codebase index
    @docs:query    include the best matching documents from docs/
    @web:query     ask the model to search the web
    @git           include branch and short status
    @git:diff      include the working tree diff
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from backend import Backend
from codebase_index import CodebaseIndex, format_symbol_results, search_symbols
from project_docs import build_docs_context, find_relevant_docs, scan_docs_folder
from tools.gitignore import DEFAULT_SKIP_DIRS

logger = logging.getLogger(__name__)

_FILE = re.compile(r"@file:(\S+)")
_FOLDER = re.compile(r"@folder:(\S+)")
_WEB = re.compile(r"@web:(\S+(?:\s+[^\s@]+)*)")
_SYMBOL = re.compile(r"@symbol:(\S+)")
_DOCS = re.compile(r"@docs:(\S+)")
_GIT_DIFF = re.compile(r"@git:diff\b")
_GIT = re.compile(r"@git\b(?!:)")

FOLDER_MAX_DEPTH = 2
FOLDER_INLINE_CHARS = 10000
FOLDER_EXCERPT_CHARS = 3000
GIT_DIFF_CHARS = 5000
DOCS_PER_MENTION = 2
FOLDER_EXTENSIONS = {".ts", ".tsx", ".js", ".jsx", ".py", ".json", ".md", ".css", ".html"}

ICONS = {"file": "📄", "folder": "📁", "web": "🌐", "symbol": "🔍", "git": "🌿", "docs": "📚"}


@dataclass
class Mention:
    type: str  # file, folder, web, symbol, docs, git
    value: str
    content: Optional[str] = None


def folder_content(backend: Backend, folder: str, depth: int = 0) -> str:
    """Code files under folder, inlined when small and excerpted otherwise."""
    if depth > FOLDER_MAX_DEPTH:
        return ""
    parts = []
    for entry in sorted(backend.list_dir(folder), key=lambda e: e["name"]):
        name = entry["name"]
        if name.startswith(".") or name in DEFAULT_SKIP_DIRS:
            continue
        rel = backend.relative_path(os.path.join(backend.resolve_path(folder), name))
        if entry["type"] == "directory":
            parts.append(f"\n📁 {rel}/\n")
            parts.append(folder_content(backend, rel, depth + 1))
        elif os.path.splitext(name)[1] in FOLDER_EXTENSIONS:
            try:
                text = backend.read_file(rel)
            except (OSError, UnicodeDecodeError) as e:
                logger.debug(f"Skipping {rel}: {e}")
                continue
            if len(text) < FOLDER_INLINE_CHARS:
                parts.append(f"\n--- {rel} ---\n```\n{text}\n```\n")
            else:
                parts.append(f"\n--- {rel} ({round(len(text) / 1000)}KB, truncated) ---\n"
                             f"```\n{text[:FOLDER_EXCERPT_CHARS]}\n... [truncated]\n```\n")
    return "".join(parts)


def parse_mentions(message: str, backend: Backend) -> Tuple[str, List[Mention]]:
    """Strip mentions from message; return (clean message, mentions).

    File and folder mentions that do not resolve to an existing path inside
    the project are removed from the text and ignored.
    """
    mentions: List[Mention] = []
    clean = message

    for m in _FILE.finditer(message):
        path = m.group(1)
        try:
            if backend.is_file(path):
                mentions.append(Mention("file", path, backend.read_file(path)))
        except (ValueError, OSError, UnicodeDecodeError) as e:
            logger.info(f"Ignoring @file:{path}: {e}")
        clean = clean.replace(m.group(0), "", 1)

    for m in _FOLDER.finditer(message):
        path = m.group(1)
        try:
            if backend.is_dir(path):
                mentions.append(Mention("folder", path, folder_content(backend, path)))
        except (ValueError, OSError) as e:
            logger.info(f"Ignoring @folder:{path}: {e}")
        clean = clean.replace(m.group(0), "", 1)

    for m in _WEB.finditer(message):
        mentions.append(Mention("web", m.group(1)))
        clean = clean.replace(m.group(0), "", 1)

    for m in _SYMBOL.finditer(message):
        mentions.append(Mention("symbol", m.group(1)))
        clean = clean.replace(m.group(0), "", 1)

    for m in _DOCS.finditer(message):
        mentions.append(Mention("docs", m.group(1)))
        clean = clean.replace(m.group(0), "", 1)

    if _GIT_DIFF.search(message):
        mentions.append(Mention("git", "diff"))
        clean = _GIT_DIFF.sub("", clean)
    if _GIT.search(message):
        mentions.append(Mention("git", "status"))
        clean = _GIT.sub("", clean)

    return clean.strip(), mentions


def _git_context(backend: Backend, kind: str) -> str:
    if kind == "diff":
        out, err, rc = backend.run_command("git diff", timeout=30)
        if rc != 0:
            return f"\n@git:diff unavailable: {err.strip()}\n"
        return f"\n🌿 @git:diff\n```diff\n{out[:GIT_DIFF_CHARS]}\n```\n"
    branch, err, rc = backend.run_command("git branch --show-current", timeout=30)
    if rc != 0:
        return f"\n@git unavailable: {err.strip()}\n"
    status, _, _ = backend.run_command("git status --short", timeout=30)
    return f"\n🌿 @git\nBranch: {branch.strip()}\n```\n{status}\n```\n"


def build_mention_context(mentions: List[Mention], backend: Backend,
                          index: Optional[CodebaseIndex] = None) -> str:
    """Render mentions as a context block appended to the user message."""
    if not mentions:
        return ""
    parts = ["\n\n=== MENTIONED CONTEXT ===\n"]
    for m in mentions:
        if m.type == "file":
            parts.append(f"\n📄 @file:{m.value}\n```\n{m.content}\n```\n")
        elif m.type == "folder":
            parts.append(f"\n📁 @folder:{m.value}\n{m.content}\n")
        elif m.type == "web":
            parts.append(f"\n🌐 @web:{m.value}\n[Search the web for this with web_search]\n")
        elif m.type == "symbol":
            if index is None:
                parts.append(f"\n🔍 @symbol:{m.value}\n[Look this symbol up with search_symbols]\n")
            else:
                parts.append(f"\n🔍 @symbol:{m.value}\n{format_symbol_results(search_symbols(index, m.value, limit=20))}\n")
        elif m.type == "docs":
            matches = find_relevant_docs(m.value, scan_docs_folder(backend.working_directory), DOCS_PER_MENTION)
            if matches:
                parts.append(build_docs_context(matches))
            else:
                parts.append(f"\n📚 @docs:{m.value}\n[No document in docs/ matches this]\n")
        elif m.type == "git":
            parts.append(_git_context(backend, m.value))
    return "".join(parts)


def format_mentions(mentions: List[Mention]) -> str:
    return " | ".join(f"{ICONS[m.type]} {m.type}:{m.value}" for m in mentions)

"""
Smart context selection for a user turn.

Candidates come from five sources: mentioned files, pinned files, active files,
semantic search hits and the import neighbours of the first three. Each is scored into a
fixed priority band and admitted greedily under a token ceiling.
"""

import logging
import os
import time
from datetime import datetime
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from chunker import chunk_codebase, chunk_summary
from dependency_graph import DependencyGraph, build_dependency_graph, get_related_files, graph_summary
from embeddings import EmbedFn, EmbeddingIndex, index_with_embeddings, load_index, save_index, semantic_search
from token_budget import (
    PRIORITY_ACTIVE,
    PRIORITY_DEPENDENCY,
    PRIORITY_MENTIONED,
    PRIORITY_PINNED,
    PRIORITY_SEMANTIC_BASE,
    PRIORITY_SEMANTIC_SPAN,
    TOKEN_BUDGET,
    ContextItem,
    allocate_budget,
)

logger = logging.getLogger(__name__)

SEMANTIC_TOP_K = 5
SEMANTIC_MIN_SCORE = 0.3
DEPENDENCIES_PER_TARGET = 3
DEPENDENCY_CHAR_CAP = 3000
MAX_SOURCES = 10


@dataclass
class SmartIndex:
    """Embedding index plus dependency graph for one project root."""
    root: str
    embedding_index: Optional[EmbeddingIndex]
    graph: DependencyGraph
    summary: str
    last_updated: float = field(default_factory=time.time)


@dataclass
class SmartContext:
    context: str
    sources: List[str]
    total_tokens: int
    stats: str
    included: List[ContextItem] = field(default_factory=list)
    excluded: List[ContextItem] = field(default_factory=list)


def build_smart_index(root: str, embed_fn: Optional[EmbedFn], force_reindex: bool = False,
                      on_progress=None) -> SmartIndex:
    """Load the cached embedding index, or chunk and embed the project.

    The dependency graph is always rebuilt since it needs no model calls.
    """
    root = os.path.abspath(root)
    if not force_reindex:
        cached = load_index(root)
        if cached is not None:
            graph = build_dependency_graph(root)
            summary = f"Smart context ready (cached)\n  {len(cached.chunks)} chunks\n  {graph_summary(graph)}"
            return SmartIndex(root=root, embedding_index=cached, graph=graph, summary=summary,
                              last_updated=cached.last_updated)

    chunks = chunk_codebase(root)
    graph = build_dependency_graph(root)
    index = None
    if embed_fn is not None:
        index = index_with_embeddings(chunks, embed_fn, on_progress=on_progress)
        save_index(index, root)
    summary = f"Smart context ready\n  {chunk_summary(chunks)}\n  {graph_summary(graph)}"
    return SmartIndex(root=root, embedding_index=index, graph=graph, summary=summary)


def _read(root: str, rel: str) -> Optional[str]:
    full = rel if os.path.isabs(rel) else os.path.join(root, rel)
    if not os.path.isfile(full):
        return None
    try:
        with open(full, "r", encoding="utf-8", errors="replace") as f:
            return f.read()
    except OSError as e:
        logger.debug(f"Context read failed for {full}: {e}")
        return None


def truncate_dependency(content: str, cap: int = DEPENDENCY_CHAR_CAP) -> str:
    if len(content) <= cap:
        return content
    return content[:cap] + "\n... (truncated)"


def collect_candidates(query: str, root: str, smart_index: Optional[SmartIndex],
                       embed_fn: Optional[EmbedFn], active_files: List[str],
                       mentioned_files: List[str],
                       pinned_files: Optional[List[str]] = None) -> Tuple[List[ContextItem], List[str]]:
    """Scored candidate items and the source labels they came from."""
    items: List[ContextItem] = []
    sources: List[str] = []
    seen_files = set()

    for rel in mentioned_files:
        content = _read(root, rel)
        if content is None:
            continue
        items.append(ContextItem.build("mentioned", f"--- {rel} ---\n{content}", PRIORITY_MENTIONED, rel))
        seen_files.add(rel)
        sources.append(f"@ {rel}")

    pinned_files = list(pinned_files or [])
    for rel in pinned_files:
        if rel in seen_files:
            continue
        content = _read(root, rel)
        if content is None:
            continue
        items.append(ContextItem.build("pinned", f"--- {rel} (pinned) ---\n{content}", PRIORITY_PINNED, rel))
        seen_files.add(rel)
        sources.append(f"pin {rel}")

    for rel in active_files:
        if rel in seen_files:
            continue
        content = _read(root, rel)
        if content is None:
            continue
        items.append(ContextItem.build("active", f"--- {rel} (active) ---\n{content}", PRIORITY_ACTIVE, rel))
        seen_files.add(rel)
        sources.append(f"open {rel}")

    if smart_index and smart_index.embedding_index and embed_fn is not None:
        for result in semantic_search(smart_index.embedding_index, query, embed_fn, top_k=SEMANTIC_TOP_K):
            if result.score < SEMANTIC_MIN_SCORE:
                continue
            chunk = result.chunk
            if chunk.file in seen_files:
                continue
            label = f"{chunk.type} {chunk.name}" if chunk.name else chunk.type
            items.append(ContextItem.build(
                "semantic",
                f"--- {chunk.file}:{chunk.start_line}-{chunk.end_line} ({label}) ---\n{chunk.content}",
                PRIORITY_SEMANTIC_BASE + result.score * PRIORITY_SEMANTIC_SPAN,
                chunk.file,
            ))
            seen_files.add(chunk.file)
            sources.append(f"semantic {chunk.file}:{chunk.start_line} ({result.score * 100:.0f}%)")

    targets = list(active_files) + list(mentioned_files) + pinned_files
    if smart_index and targets:
        added = set()
        for target in targets:
            related = get_related_files(smart_index.graph, target)
            for dep in (related["dependencies"] + related["dependents"])[:DEPENDENCIES_PER_TARGET]:
                if dep in added or dep in seen_files:
                    continue
                added.add(dep)
                content = _read(root, dep)
                if content is None:
                    continue
                # cost is estimated on the truncated text
                truncated = truncate_dependency(content)
                items.append(ContextItem.build(
                    "dependency", f"--- {dep} (dependency) ---\n{truncated}", PRIORITY_DEPENDENCY, dep,
                ))
                sources.append(f"import {dep}")

    return items, sources


def build_smart_context(query: str, root: str, smart_index: Optional[SmartIndex] = None,
                        embed_fn: Optional[EmbedFn] = None,
                        active_files: Optional[List[str]] = None,
                        mentioned_files: Optional[List[str]] = None,
                        pinned_files: Optional[List[str]] = None,
                        max_tokens: Optional[int] = None) -> SmartContext:
    """Select prompt context for query under max_tokens."""
    if max_tokens is None:
        max_tokens = TOKEN_BUDGET.related_files + TOKEN_BUDGET.dependencies
    items, sources = collect_candidates(
        query, os.path.abspath(root), smart_index, embed_fn,
        list(active_files or []), list(mentioned_files or []), list(pinned_files or []),
    )
    allocation = allocate_budget(items, max_tokens)
    context = "\n\n".join(item.content for item in allocation.included)
    stats = f"Context: {len(allocation.included)} sources, ~{allocation.total_tokens:,} tokens"
    if allocation.excluded:
        stats += f" ({len(allocation.excluded)} sources omitted)"
    return SmartContext(
        context=context,
        sources=sources[:MAX_SOURCES],
        total_tokens=allocation.total_tokens,
        stats=stats,
        included=allocation.included,
        excluded=allocation.excluded,
    )


def format_smart_index_info(smart_index: Optional[SmartIndex]) -> str:
    if smart_index is None:
        return "Smart context not built yet. Run /index."
    ready = smart_index.embedding_index is not None
    chunks = len(smart_index.embedding_index.chunks) if ready else 0
    fields: Dict[str, str] = {
        "Chunks": str(chunks),
        "Files in graph": str(len(smart_index.graph.nodes)),
        "Embeddings": "ready" if ready else "not ready",
        "Last updated": datetime.fromtimestamp(smart_index.last_updated).strftime("%H:%M:%S"),
    }
    return "Smart Context Status\n" + "\n".join(f"  {k}: {v}" for k, v in fields.items())

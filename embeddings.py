"""
Embedding index over code chunks.

Chunks are embedded one at a time through an injected embed function (the
Bedrock service's embed_texts), averaged into one vector per file, and
persisted to <root>/.bedrock-pilot/cache/embeddings.json. Retrieval is cosine
similarity over all chunk vectors with numpy.
"""

import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from chunker import EmbeddingChunk
from config import app_config, cache_dir

logger = logging.getLogger(__name__)

CACHE_VERSION = 1
BATCH_SIZE = 100
DESCRIPTION_CHARS = 500

# embed_fn(texts, input_type="search_document" | "search_query") -> list of vectors
EmbedFn = Callable[..., List[List[float]]]
ProgressFn = Callable[[int, int], None]


@dataclass
class EmbeddingIndex:
    chunks: List[EmbeddingChunk] = field(default_factory=list)
    file_embeddings: Dict[str, List[float]] = field(default_factory=dict)
    last_updated: float = field(default_factory=time.time)


@dataclass
class SearchResult:
    chunk: EmbeddingChunk
    score: float


def cache_path(root: str) -> str:
    return os.path.join(cache_dir(root), "embeddings.json")


def describe_chunk(chunk: EmbeddingChunk) -> str:
    return f"{chunk.type} {chunk.name or ''}: {chunk.content[:DESCRIPTION_CHARS]}"


def cosine_similarity(a, b) -> float:
    """Cosine of the angle between a and b; 0 on length mismatch or zero magnitude."""
    if a is None or b is None or len(a) != len(b) or len(a) == 0:
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    magnitude = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if magnitude == 0.0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / magnitude, -1.0, 1.0))


def embed_texts(texts: List[str], embed_fn: EmbedFn, input_type: str = "search_document",
                on_progress: Optional[ProgressFn] = None) -> List[List[float]]:
    """Embed texts in batches of BATCH_SIZE, one request per text.

    A failed text gets a zero vector sized like the vectors already seen
    (or the configured dimension), so one bad chunk never aborts a build.
    """
    vectors: List[List[float]] = []
    dimension = 0
    failures = 0
    for start in range(0, len(texts), BATCH_SIZE):
        for text in texts[start:start + BATCH_SIZE]:
            try:
                vector = list(embed_fn([text], input_type=input_type)[0])
                dimension = dimension or len(vector)
            except Exception as e:
                failures += 1
                logger.warning(f"Embedding failed, using zero vector: {e}")
                vector = [0.0] * (dimension or app_config.embedding_dimensions)
            vectors.append(vector)
        if on_progress:
            on_progress(len(vectors), len(texts))
    if failures:
        logger.info(f"{failures}/{len(texts)} embeddings degraded to zero vectors")
    return vectors


def average_file_vectors(chunks: List[EmbeddingChunk]) -> Dict[str, List[float]]:
    """Mean chunk vector per file. Vectors of a different dimension are skipped."""
    grouped: Dict[str, List[List[float]]] = {}
    for chunk in chunks:
        if chunk.embedding:
            grouped.setdefault(chunk.file, []).append(chunk.embedding)
    result: Dict[str, List[float]] = {}
    for file, vectors in grouped.items():
        dim = len(vectors[0])
        same = [v for v in vectors if len(v) == dim]
        result[file] = np.mean(np.asarray(same, dtype=np.float64), axis=0).tolist()
    return result


def index_with_embeddings(chunks: List[EmbeddingChunk], embed_fn: EmbedFn,
                          on_progress: Optional[ProgressFn] = None) -> EmbeddingIndex:
    """Embed every chunk in place and build a fresh index."""
    logger.info(f"Embedding {len(chunks)} chunks")
    vectors = embed_texts([describe_chunk(c) for c in chunks], embed_fn, on_progress=on_progress)
    for chunk, vector in zip(chunks, vectors):
        chunk.embedding = vector
    return EmbeddingIndex(chunks=list(chunks), file_embeddings=average_file_vectors(chunks),
                          last_updated=time.time())


def save_index(index: EmbeddingIndex, root: str) -> bool:
    path = cache_path(root)
    payload = {
        "version": CACHE_VERSION,
        "chunks": [c.to_dict() for c in index.chunks],
        "file_embeddings": index.file_embeddings,
        "last_updated": index.last_updated,
    }
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        tmp = path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(payload, f)
        os.replace(tmp, path)
    except OSError as e:
        logger.error(f"Failed to save embedding index to {path}: {e}")
        return False
    logger.info(f"Embedding index saved: {path} ({len(index.chunks)} chunks)")
    return True


def load_index(root: str) -> Optional[EmbeddingIndex]:
    """Load the cached index; None if missing, unreadable or from another version."""
    path = cache_path(root)
    if not os.path.isfile(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Embedding cache unreadable ({path}): {e}")
        return None
    if data.get("version") != CACHE_VERSION:
        logger.info("Embedding cache version mismatch, full reindex required")
        return None
    try:
        return EmbeddingIndex(
            chunks=[EmbeddingChunk.from_dict(c) for c in data.get("chunks", [])],
            file_embeddings=dict(data.get("file_embeddings", {})),
            last_updated=float(data.get("last_updated", 0)),
        )
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Embedding cache malformed ({path}): {e}")
        return None


def _embed_query(query: str, embed_fn: EmbedFn) -> List[float]:
    return embed_texts([query], embed_fn, input_type="search_query")[0]


def semantic_search(index: Optional[EmbeddingIndex], query: str, embed_fn: EmbedFn,
                    top_k: int = 10) -> List[SearchResult]:
    """Top-k chunks by cosine similarity to the query, best first."""
    if index is None or not index.chunks:
        return []
    query_vector = _embed_query(query, embed_fn)
    results = [
        SearchResult(chunk=c, score=cosine_similarity(query_vector, c.embedding))
        for c in index.chunks if c.embedding is not None
    ]
    results.sort(key=lambda r: r.score, reverse=True)
    return results[:top_k]


def find_relevant_files(index: Optional[EmbeddingIndex], query: str, embed_fn: EmbedFn,
                        top_k: int = 5) -> List[Tuple[str, float]]:
    if index is None or not index.file_embeddings:
        return []
    query_vector = _embed_query(query, embed_fn)
    scored = [(f, cosine_similarity(query_vector, v)) for f, v in index.file_embeddings.items()]
    scored.sort(key=lambda fs: fs[1], reverse=True)
    return scored[:top_k]


def build_semantic_context(results: List[SearchResult]) -> str:
    if not results:
        return ""
    parts = ["## Semantically related code"]
    for r in results:
        label = f"{r.chunk.type} {r.chunk.name}" if r.chunk.name else r.chunk.type
        parts.append(
            f"\n### {r.chunk.file}:{r.chunk.start_line}-{r.chunk.end_line} ({label}, score {r.score:.2f})\n"
            f"```\n{r.chunk.content}\n```"
        )
    return "\n".join(parts)


def index_status(index: Optional[EmbeddingIndex]) -> str:
    if index is None:
        return "Semantic index: not built (run /index)"
    age_minutes = int((time.time() - index.last_updated) // 60)
    embedded = sum(1 for c in index.chunks if c.embedding)
    return (
        f"Semantic index: {len(index.chunks)} chunks ({embedded} embedded), "
        f"{len(index.file_embeddings)} files, updated {age_minutes} min ago"
    )

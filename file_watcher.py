"""
Incremental embedding updates driven by file changes.

A polling task compares source file mtimes every poll interval and queues
change/add/delete events keyed by "type:absolute path". Every new event resets
one shared debounce timer; when it fires the batch is flushed into the
embedding index and the index is saved back to its cache file.
"""

import asyncio
import logging
import os
import time
from typing import Callable, Dict, List, Optional, Set, Tuple

from chunker import EmbeddingChunk, chunk_path
from config import app_config
from embeddings import EmbedFn, EmbeddingIndex, average_file_vectors, describe_chunk, embed_texts, save_index
from tools.gitignore import walk_project

logger = logging.getLogger(__name__)

WATCH_EXTENSIONS = {".ts", ".tsx", ".js", ".jsx", ".py"}
WATCH_SKIP_DIRS = {"node_modules", ".git", "dist", "build", ".next", "__pycache__", app_config.app_dir_name}
POLL_INTERVAL = 0.5

EVENT_TYPES = ("change", "add", "delete")


class FileWatcher:
    """Debounced watcher feeding the session's embedding index.

    get_index returns the current index (or None when no full index exists);
    the index is mutated in place so callers holding it see the updates.
    """

    def __init__(self, root: str, get_index: Callable[[], Optional[EmbeddingIndex]],
                 embed_fn: Optional[EmbedFn], debounce: float = app_config.watcher_debounce,
                 poll_interval: float = POLL_INTERVAL,
                 on_update: Optional[Callable[[List[str]], None]] = None):
        self.root = os.path.abspath(root)
        self.get_index = get_index
        self.embed_fn = embed_fn
        self.debounce = debounce
        self.poll_interval = poll_interval
        self.on_update = on_update
        self.pending: Set[str] = set()
        self._mtimes: Dict[str, Tuple[int, int]] = {}
        self._poll_task: Optional[asyncio.Task] = None
        self._timer: Optional[asyncio.Task] = None
        self._flush_lock = asyncio.Lock()

    def is_running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def status(self) -> str:
        if not self.is_running():
            return "File watcher stopped"
        return f"File watcher active ({len(self.pending)} pending updates)"

    def _current_mtimes(self) -> Dict[str, Tuple[int, int]]:
        mtimes = {}
        for rel in walk_project(self.root, WATCH_EXTENSIONS, WATCH_SKIP_DIRS):
            full = os.path.join(self.root, rel)
            try:
                st = os.stat(full)
                mtimes[full] = (st.st_mtime_ns, st.st_size)
            except OSError:
                continue
        return mtimes

    def start(self) -> bool:
        """Begin polling. Existing files are the baseline; returns False if already running."""
        if self.is_running():
            logger.info("File watcher already running")
            return False
        self._mtimes = self._current_mtimes()
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())
        logger.info(f"File watcher started for {self.root} ({len(self._mtimes)} files)")
        return True

    def stop(self) -> None:
        if self._poll_task:
            self._poll_task.cancel()
            self._poll_task = None
        if self._timer:
            self._timer.cancel()
            self._timer = None
        logger.info("File watcher stopped")

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            self.scan()

    def scan(self) -> List[str]:
        """Compare mtimes with the last scan and queue any differences."""
        current = self._current_mtimes()
        events = []
        for path, mtime in current.items():
            previous = self._mtimes.get(path)
            if previous is None:
                events.append(("add", path))
            elif mtime != previous:
                events.append(("change", path))
        for path in self._mtimes:
            if path not in current:
                events.append(("delete", path))
        self._mtimes = current
        for event_type, path in events:
            self.queue_update(path, event_type)
        return [f"{t}:{p}" for t, p in events]

    def queue_update(self, path: str, event_type: str) -> None:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown watcher event: {event_type}")
        full = path if os.path.isabs(path) else os.path.join(self.root, path)
        self.pending.add(f"{event_type}:{os.path.normpath(full)}")
        if self._timer:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._debounced_flush())

    async def _debounced_flush(self) -> None:
        await asyncio.sleep(self.debounce)
        self._timer = None
        try:
            await self.flush_now()
        except Exception:
            logger.exception("Incremental index update failed")

    async def flush_now(self) -> List[str]:
        """Process every queued event. Returns the relative paths updated."""
        async with self._flush_lock:
            if not self.pending:
                return []
            updates = sorted(self.pending)
            self.pending.clear()
            index = self.get_index()
            if index is None:
                logger.info("No embedding index yet, incremental update skipped")
                return []
            if self.embed_fn is None:
                logger.info("No embedding function configured, incremental update skipped")
                return []
            loop = asyncio.get_running_loop()
            updated = await loop.run_in_executor(None, self._apply, updates, index)
        if self.on_update:
            self.on_update(updated)
        return updated

    def _apply(self, updates: List[str], index: EmbeddingIndex) -> List[str]:
        to_remove: Set[str] = set()
        to_rechunk: Set[str] = set()
        for update in updates:
            event_type, full = update.split(":", 1)
            rel = os.path.relpath(full, self.root).replace(os.sep, "/")
            to_remove.add(rel)
            if event_type != "delete":
                to_rechunk.add(rel)

        # a path can carry several events in one batch; chunk_path sees what is on disk now
        new_chunks: List[EmbeddingChunk] = []
        for rel in sorted(to_rechunk):
            new_chunks.extend(chunk_path(self.root, rel))

        if new_chunks:
            vectors = embed_texts([describe_chunk(c) for c in new_chunks], self.embed_fn)
            for chunk, vector in zip(new_chunks, vectors):
                chunk.embedding = vector

        index.chunks = [c for c in index.chunks if c.file not in to_remove] + new_chunks
        for rel in to_remove:
            index.file_embeddings.pop(rel, None)
        index.file_embeddings.update(average_file_vectors(new_chunks))
        index.last_updated = time.time()
        save_index(index, self.root)

        updated = sorted(to_remove)
        logger.info(f"Incremental index update: {', '.join(updated)}")
        return updated

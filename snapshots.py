"""
Snapshot store for undo/restore of file mutations.

Every mutating file operation records the pre-change content of its target
here first. Snapshots live in two bounded FIFO structures: a per-file history
and a global change log.
"""

import logging
import os
import random
import string
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

MAX_FILE_HISTORY = 50
MAX_CHANGE_LOG = 100

SNAPSHOT_OPERATIONS = ("write", "edit", "delete", "create")


@dataclass
class OperationResult:
    success: bool
    message: str


@dataclass
class FileSnapshot:
    id: str
    path: str
    content: Optional[str]  # None: the file did not exist
    timestamp: float
    operation: str
    description: Optional[str] = None

    @property
    def existed(self) -> bool:
        return self.content is not None


def _random_suffix(length: int) -> str:
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=length))


def read_or_none(path: str) -> Optional[str]:
    """Current file content, or None when missing or unreadable."""
    if not os.path.isfile(path):
        return None
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return f.read()
    except OSError as e:
        logger.debug(f"Snapshot read failed for {path}: {e}")
        return None


def apply_content(path: str, content: Optional[str]) -> None:
    """Make the file at path hold content; None deletes it."""
    if content is None:
        if os.path.exists(path):
            os.remove(path)
        return
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)


class SnapshotStore:
    """Per-file and global bounded snapshot histories."""

    def __init__(self, root: str = ".", max_file_history: int = MAX_FILE_HISTORY,
                 max_change_log: int = MAX_CHANGE_LOG):
        self.root = os.path.abspath(root)
        self.max_file_history = max_file_history
        self._file_history: Dict[str, Deque[FileSnapshot]] = {}
        self._change_log: Deque[FileSnapshot] = deque(maxlen=max_change_log)

    def _resolve(self, path: str) -> str:
        if os.path.isabs(path):
            return os.path.normpath(path)
        return os.path.normpath(os.path.join(self.root, path))

    def take_snapshot(self, path: str, operation: str,
                      description: Optional[str] = None) -> FileSnapshot:
        """Record the current content of path. Call before mutating it."""
        if operation not in SNAPSHOT_OPERATIONS:
            raise ValueError(f"Unknown snapshot operation: {operation}")
        abs_path = self._resolve(path)
        snapshot = FileSnapshot(
            id=f"snap_{int(time.time() * 1000)}_{_random_suffix(4)}",
            path=abs_path,
            content=read_or_none(abs_path),
            timestamp=time.time(),
            operation=operation,
            description=description,
        )
        history = self._file_history.setdefault(abs_path, deque(maxlen=self.max_file_history))
        history.append(snapshot)
        self._change_log.append(snapshot)
        logger.debug(f"Snapshot {snapshot.id} taken for {abs_path} ({operation})")
        return snapshot

    def undo_last_change(self, path: Optional[str] = None) -> OperationResult:
        """Undo the most recent change to path, or the most recent change overall."""
        if path is not None:
            abs_path = self._resolve(path)
            history = self._file_history.get(abs_path)
            if not history:
                return OperationResult(False, f"No history for {path}")
            snapshot = history.pop()
            try:
                apply_content(abs_path, snapshot.content)
            except OSError as e:
                history.append(snapshot)
                logger.warning(f"Undo failed for {abs_path}: {e}")
                return OperationResult(False, f"Failed to restore: {e}")
            return OperationResult(True, self._undo_message(snapshot))

        if not self._change_log:
            return OperationResult(False, "No changes to undo")
        snapshot = self._change_log.pop()
        try:
            apply_content(snapshot.path, snapshot.content)
        except OSError as e:
            self._change_log.append(snapshot)
            logger.warning(f"Undo failed for {snapshot.path}: {e}")
            return OperationResult(False, f"Failed to restore: {e}")
        history = self._file_history.get(snapshot.path)
        if history:
            remaining = [s for s in history if s.id != snapshot.id]
            history.clear()
            history.extend(remaining)
        return OperationResult(True, self._undo_message(snapshot))

    def restore_snapshot(self, snapshot_id: str) -> OperationResult:
        """Reapply a snapshot from the change log without removing it."""
        snapshot = next((s for s in self._change_log if s.id == snapshot_id), None)
        if snapshot is None:
            return OperationResult(False, f"Snapshot {snapshot_id} not found")
        try:
            apply_content(snapshot.path, snapshot.content)
        except OSError as e:
            logger.warning(f"Restore failed for {snapshot.path}: {e}")
            return OperationResult(False, f"Failed to restore: {e}")
        return OperationResult(True, f"Restored {self._display(snapshot.path)} from {snapshot_id}")

    def get_file_history(self, path: str) -> List[FileSnapshot]:
        """Last 10 snapshots of a file, newest first."""
        history = self._file_history.get(self._resolve(path), deque())
        return list(reversed(history))[:10]

    def get_recent_changes(self, count: int = 10) -> List[FileSnapshot]:
        return list(reversed(self._change_log))[:count]

    def clear_history(self) -> None:
        self._file_history.clear()
        self._change_log.clear()

    def format_history(self, snapshots: List[FileSnapshot]) -> str:
        if not snapshots:
            return "No changes recorded."
        lines = []
        for s in snapshots:
            when = datetime.fromtimestamp(s.timestamp).strftime("%H:%M:%S")
            state = "did not exist" if s.content is None else f"{len(s.content)} chars"
            desc = f" - {s.description}" if s.description else ""
            lines.append(f"{s.id}  {when}  {s.operation:<6} {self._display(s.path)} ({state}){desc}")
        return "\n".join(lines)

    def _display(self, path: str) -> str:
        rel = os.path.relpath(path, self.root)
        return path if rel.startswith("..") else rel

    def _undo_message(self, snapshot: FileSnapshot) -> str:
        shown = self._display(snapshot.path)
        if snapshot.content is None:
            return f"Undone {snapshot.operation} on {shown} (file removed)"
        return f"Undone {snapshot.operation} on {shown}"

"""Shared types for the tools package."""

import os
from dataclasses import dataclass, field
from typing import Any, List, Optional, Set

from backend import Backend
from codebase_index import IndexCache
from snapshots import SnapshotStore
from transactions import TransactionLog

# .ts .tsx .js .jsx .css .scss .json changes are checked after the last agent step
DIAGNOSTIC_EXTENSIONS = {".ts", ".tsx", ".js", ".jsx", ".css", ".scss", ".json"}


@dataclass
class ToolResult:
    """Result from executing a tool"""
    success: bool
    output: str
    error: Optional[str] = None
    warning: Optional[str] = None

    def as_text(self) -> str:
        """Text sent back to the model as the tool_result content."""
        text = self.output if self.success else f"Error: {self.error or self.output}"
        if self.warning:
            text = f"Warning: {self.warning}\n{text}"
        return text


def fail(message: str) -> ToolResult:
    return ToolResult(success=False, output="", error=message)


@dataclass
class ToolContext:
    """Session state the tool handlers read and mutate.

    processes and diagnostics are typed loosely to keep this module free of
    imports from the process and diagnostics layers.
    """
    backend: Backend
    snapshots: SnapshotStore
    transactions: TransactionLog
    index_cache: IndexCache
    processes: Any = None
    diagnostics: Any = None
    modified_files: Set[str] = field(default_factory=set)
    # relative paths, in pin order
    pinned_files: List[str] = field(default_factory=list)

    @property
    def root(self) -> str:
        return self.backend.working_directory

    def track_modified(self, path: str) -> None:
        full = self.backend.resolve_path(path)
        if os.path.splitext(full)[1].lower() in DIAGNOSTIC_EXTENSIONS:
            self.modified_files.add(full)

"""
Per-session state, built once at startup and passed to everything that needs it.

Nothing in the project keeps module-level mutable state: the snapshot store,
transaction log, tool cache, process registry, symbol index cache, smart index,
file watcher and pinned files all hang off one SessionContext owned by the
SessionDriver.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from backend import LocalBackend
from bedrock_service import BedrockService
from codebase_index import IndexCache
from config import app_config
from context_selector import SmartIndex
from diagnostics import DiagnosticsProvider, TypeScriptDiagnosticsProvider
from embeddings import EmbeddingIndex, EmbedFn
from file_watcher import FileWatcher
from processes import ProcessRegistry
from sessions import Session, SessionStore
from snapshots import SnapshotStore
from tools._common import ToolContext
from tools.dispatch import ToolExecutor, ToolResultCache
from transactions import TransactionLog

logger = logging.getLogger(__name__)


@dataclass
class SessionContext:
    root: str
    service: BedrockService
    backend: LocalBackend
    snapshots: SnapshotStore
    transactions: TransactionLog
    index_cache: IndexCache
    processes: ProcessRegistry
    diagnostics: DiagnosticsProvider
    tools: ToolContext
    executor: ToolExecutor
    watcher: Optional[FileWatcher] = None
    embed_fn: Optional[EmbedFn] = None
    smart_index: Optional[SmartIndex] = None
    store: Optional[SessionStore] = None
    session: Optional[Session] = None
    skills_dir: str = app_config.skills_dir

    @property
    def history(self) -> List[Dict[str, Any]]:
        return self.session.history if self.session is not None else []

    def embedding_index(self) -> Optional[EmbeddingIndex]:
        return self.smart_index.embedding_index if self.smart_index is not None else None

    def persist(self) -> None:
        if self.store is not None and self.session is not None:
            self.store.save(self.session)

    def shutdown(self) -> None:
        """Stop the watcher and any background processes started this session."""
        if self.watcher is not None:
            self.watcher.stop()
        stopped = self.processes.stop_all()
        if stopped:
            logger.info(f"Stopped {stopped} background processes")


def create_session_context(
    root: str,
    service: BedrockService,
    embed_fn: Optional[EmbedFn] = None,
    store: Optional[SessionStore] = None,
    session_name: Optional[str] = None,
    diagnostics: Optional[DiagnosticsProvider] = None,
    skills_dir: Optional[str] = None,
) -> SessionContext:
    """Wire up one session for root.

    embed_fn defaults to the service's embedding call. With a store, the
    named session (or the latest one for root, or a new one) is loaded.
    """
    root = os.path.abspath(root)
    backend = LocalBackend(root)
    snapshots = SnapshotStore(root)
    transactions = TransactionLog(root)
    index_cache = IndexCache()
    processes = ProcessRegistry()
    diagnostics = diagnostics or TypeScriptDiagnosticsProvider(root)
    tools = ToolContext(
        backend=backend, snapshots=snapshots, transactions=transactions,
        index_cache=index_cache, processes=processes, diagnostics=diagnostics,
    )
    if embed_fn is None:
        embed_fn = service.embed_texts

    session = None
    if store is not None:
        if session_name:
            session = store.find_by_name(root, session_name) or store.create_session(
                root, service.model_id, session_name)
        else:
            session = store.get_latest(root) or store.create_session(root, service.model_id)

    ctx = SessionContext(
        root=root,
        service=service,
        backend=backend,
        snapshots=snapshots,
        transactions=transactions,
        index_cache=index_cache,
        processes=processes,
        diagnostics=diagnostics,
        tools=tools,
        executor=ToolExecutor(tools, ToolResultCache()),
        embed_fn=embed_fn,
        store=store,
        session=session or Session(working_directory=root, model_id=service.model_id),
        skills_dir=skills_dir or app_config.skills_dir,
    )
    ctx.watcher = FileWatcher(root, ctx.embedding_index, embed_fn)
    return ctx

"""Tool execution: argument parsing, security gate, result cache and handler dispatch."""

import asyncio
import json
import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional, Tuple

import security
from config import app_config
from tools import external_ops, file_ops, history_ops, search_ops
from tools._common import ToolContext, ToolResult, fail
from tools.schemas import CACHEABLE_TOOLS, MUTATING_TOOLS, ArgumentError, ToolName, parse_args

logger = logging.getLogger(__name__)

MAX_CACHED_OUTPUT = 50000
MAX_CACHE_ENTRIES = 100

Handler = Callable[[ToolContext, Any], ToolResult]

HANDLERS: Dict[ToolName, Handler] = {
    ToolName.READ_FILE: file_ops.read_file,
    ToolName.WRITE_FILE: file_ops.write_file,
    ToolName.APPEND_FILE: file_ops.append_file,
    ToolName.EDIT_FILE: file_ops.edit_file,
    ToolName.DELETE_FILE: file_ops.delete_file,
    ToolName.CREATE_DIRECTORY: file_ops.create_directory,
    ToolName.LIST_DIRECTORY: file_ops.list_directory,
    ToolName.GET_FILE_STRUCTURE: file_ops.get_file_structure,
    ToolName.SEARCH_FILES: search_ops.search_files,
    ToolName.RUN_COMMAND: external_ops.run_command,
    ToolName.GIT_STATUS: external_ops.git_status,
    ToolName.GIT_DIFF: external_ops.git_diff,
    ToolName.GIT_COMMIT: external_ops.git_commit,
    ToolName.WEB_SEARCH: external_ops.web_search,
    ToolName.INDEX_CODEBASE: search_ops.index_codebase,
    ToolName.SEARCH_SYMBOLS: search_ops.search_symbols,
    ToolName.FIND_REFERENCES: search_ops.find_references,
    ToolName.GET_FILE_CONTEXT: search_ops.get_file_context,
    ToolName.PIN_FILE: file_ops.pin_file,
    ToolName.UNPIN_FILE: file_ops.unpin_file,
    ToolName.GET_DIAGNOSTICS: external_ops.get_diagnostics,
    ToolName.MULTI_FILE_EDIT: history_ops.multi_file_edit,
    ToolName.ROLLBACK_TRANSACTION: history_ops.rollback_transaction,
    ToolName.LIST_TRANSACTIONS: history_ops.list_transactions,
    ToolName.UNDO_CHANGE: history_ops.undo_change,
    ToolName.RESTORE_SNAPSHOT: history_ops.restore_snapshot,
    ToolName.FILE_HISTORY: history_ops.file_history,
    ToolName.START_PROCESS: external_ops.start_process,
    ToolName.STOP_PROCESS: external_ops.stop_process,
    ToolName.GET_PROCESS_OUTPUT: external_ops.get_process_output,
    ToolName.LIST_PROCESSES: external_ops.list_processes,
}

_unhandled = [n.value for n in ToolName if n not in HANDLERS]
if _unhandled:
    raise RuntimeError(f"Tools without handler: {', '.join(_unhandled)}")

# Run on the event loop thread; everything else goes to the default executor
INLINE_TOOLS = frozenset({
    ToolName.READ_FILE, ToolName.WRITE_FILE, ToolName.APPEND_FILE, ToolName.EDIT_FILE,
    ToolName.DELETE_FILE, ToolName.CREATE_DIRECTORY, ToolName.LIST_DIRECTORY,
    ToolName.MULTI_FILE_EDIT, ToolName.ROLLBACK_TRANSACTION, ToolName.LIST_TRANSACTIONS,
    ToolName.UNDO_CHANGE, ToolName.RESTORE_SNAPSHOT, ToolName.FILE_HISTORY,
    ToolName.STOP_PROCESS, ToolName.GET_PROCESS_OUTPUT, ToolName.LIST_PROCESSES,
    ToolName.PIN_FILE, ToolName.UNPIN_FILE,
})


class ToolResultCache:
    """Short-lived results of read-only tools, keyed by name and arguments."""

    def __init__(self, ttl: float = app_config.tool_cache_ttl, max_entries: int = MAX_CACHE_ENTRIES,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, ToolResult]]" = OrderedDict()

    @staticmethod
    def key(name: str, args: Dict[str, Any]) -> str:
        return f"{name}:{json.dumps(args, sort_keys=True, default=str)}"

    def get(self, key: str) -> Optional[ToolResult]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, result = entry
        if self._clock() - stored_at >= self.ttl:
            del self._entries[key]
            return None
        return result

    def put(self, key: str, result: ToolResult) -> None:
        if not result.success or len(result.output) > MAX_CACHED_OUTPUT:
            return
        self._entries.pop(key, None)
        self._entries[key] = (self._clock(), result)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class ToolExecutor:
    """Runs tool calls for one session against its ToolContext."""

    def __init__(self, ctx: ToolContext, cache: Optional[ToolResultCache] = None):
        self.ctx = ctx
        self.cache = cache or ToolResultCache()

    def _run(self, tool: ToolName, raw_args: Dict[str, Any]) -> ToolResult:
        try:
            args = parse_args(tool, raw_args)
        except ArgumentError as e:
            return fail(f"Invalid arguments for {tool.value}: {e}")
        try:
            return HANDLERS[tool](self.ctx, args)
        except ValueError as e:
            # Backend raises ValueError for paths outside the project
            return fail(str(e))
        except Exception as e:
            logger.exception(f"Tool execution error: {tool.value}")
            return fail(f"Tool error: {e}")

    async def execute(self, name: str, args: Optional[Dict[str, Any]] = None) -> ToolResult:
        """Execute one tool call. Never raises for tool-level failures."""
        args = args or {}
        try:
            tool = ToolName(name)
        except ValueError:
            return fail(f"Unknown tool: {name}")

        decision = security.check_tool_call(tool.value, args, self.ctx.root)
        if decision.blocked:
            logger.warning(f"Blocked {tool.value}: {decision.reason}")
            return fail(decision.reason)

        cache_key = ToolResultCache.key(tool.value, args) if tool in CACHEABLE_TOOLS else None
        if cache_key:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.debug(f"Tool cache hit: {tool.value}")
                return cached

        if tool in MUTATING_TOOLS:
            self.cache.clear()

        if tool in INLINE_TOOLS:
            result = self._run(tool, args)
        else:
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(None, self._run, tool, args)

        if tool in MUTATING_TOOLS:
            self.cache.clear()
            self.ctx.index_cache.invalidate()
        if decision.warning:
            result.warning = decision.warning
        if cache_key:
            self.cache.put(cache_key, result)
        return result

    async def execute_many(self, calls: List[Tuple[str, Dict[str, Any]]]) -> List[ToolResult]:
        """Run independent calls concurrently; results keep the input order."""
        return list(await asyncio.gather(*(self.execute(name, args) for name, args in calls)))

"""Tool names, typed argument dataclasses and the Bedrock tool schemas built from them."""

import dataclasses
import typing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Type


class ToolName(str, Enum):
    READ_FILE = "read_file"
    WRITE_FILE = "write_file"
    APPEND_FILE = "append_file"
    EDIT_FILE = "edit_file"
    DELETE_FILE = "delete_file"
    CREATE_DIRECTORY = "create_directory"
    LIST_DIRECTORY = "list_directory"
    GET_FILE_STRUCTURE = "get_file_structure"
    SEARCH_FILES = "search_files"
    RUN_COMMAND = "run_command"
    GIT_STATUS = "git_status"
    GIT_DIFF = "git_diff"
    GIT_COMMIT = "git_commit"
    WEB_SEARCH = "web_search"
    INDEX_CODEBASE = "index_codebase"
    SEARCH_SYMBOLS = "search_symbols"
    FIND_REFERENCES = "find_references"
    GET_FILE_CONTEXT = "get_file_context"
    PIN_FILE = "pin_file"
    UNPIN_FILE = "unpin_file"
    GET_DIAGNOSTICS = "get_diagnostics"
    MULTI_FILE_EDIT = "multi_file_edit"
    ROLLBACK_TRANSACTION = "rollback_transaction"
    LIST_TRANSACTIONS = "list_transactions"
    UNDO_CHANGE = "undo_change"
    RESTORE_SNAPSHOT = "restore_snapshot"
    FILE_HISTORY = "file_history"
    START_PROCESS = "start_process"
    STOP_PROCESS = "stop_process"
    GET_PROCESS_OUTPUT = "get_process_output"
    LIST_PROCESSES = "list_processes"


def _desc(text: str, **extra: Any) -> Dict[str, Any]:
    return {"description": text, **extra}


# ---------------------------------------------------------------------------
# Argument types, one per tool
# ---------------------------------------------------------------------------

@dataclass
class ReadFileArgs:
    path: str = field(metadata=_desc("File path relative to the project root"))
    offset: Optional[int] = field(default=None, metadata=_desc("1-based first line to read"))
    limit: Optional[int] = field(default=None, metadata=_desc("Number of lines to read"))


@dataclass
class WriteFileArgs:
    path: str = field(metadata=_desc("File path relative to the project root"))
    content: str = field(metadata=_desc("Full file content"))


@dataclass
class AppendFileArgs:
    path: str = field(metadata=_desc("File path relative to the project root"))
    content: str = field(metadata=_desc("Text to append"))


@dataclass
class EditFileArgs:
    path: str = field(metadata=_desc("File path relative to the project root"))
    old_text: str = field(metadata=_desc("Exact text to replace (first occurrence)"))
    new_text: str = field(metadata=_desc("Replacement text"))


@dataclass
class DeleteFileArgs:
    path: str = field(metadata=_desc("File or empty directory to delete"))


@dataclass
class CreateDirectoryArgs:
    path: str = field(metadata=_desc("Directory to create, parents included"))


@dataclass
class ListDirectoryArgs:
    path: str = field(default=".", metadata=_desc("Directory to list"))


@dataclass
class GetFileStructureArgs:
    directory: str = field(default=".", metadata=_desc("Root of the tree"))
    max_depth: int = field(default=3, metadata=_desc("Maximum depth (default 3)"))


@dataclass
class SearchFilesArgs:
    pattern: str = field(metadata=_desc("Regular expression to search for"))
    directory: str = field(default=".", metadata=_desc("Directory to search in"))
    extension: Optional[str] = field(default=None, metadata=_desc("Only files ending with this, e.g. .ts"))


@dataclass
class RunCommandArgs:
    command: str = field(metadata=_desc("Shell command to run"))
    cwd: Optional[str] = field(default=None, metadata=_desc("Working directory relative to the project root"))
    timeout: Optional[int] = field(default=None, metadata=_desc("Timeout in seconds (default 60)"))


@dataclass
class GitStatusArgs:
    directory: str = field(default=".", metadata=_desc("Repository directory"))


@dataclass
class GitDiffArgs:
    directory: str = field(default=".", metadata=_desc("Repository directory"))
    file: Optional[str] = field(default=None, metadata=_desc("Limit the diff to one file"))


@dataclass
class GitCommitArgs:
    message: str = field(metadata=_desc("Commit message"))
    directory: str = field(default=".", metadata=_desc("Repository directory"))
    add_all: bool = field(default=False, metadata=_desc("Stage all changes first (git add .)"))


@dataclass
class WebSearchArgs:
    query: str = field(metadata=_desc("Search query"))
    max_results: int = field(default=5, metadata=_desc("Number of results (max 10)"))


@dataclass
class IndexCodebaseArgs:
    directory: str = field(default=".", metadata=_desc("Project directory"))


@dataclass
class SearchSymbolsArgs:
    query: str = field(metadata=_desc("Case-insensitive substring of the symbol name"))
    directory: str = field(default=".", metadata=_desc("Project directory"))


@dataclass
class FindReferencesArgs:
    symbol: str = field(metadata=_desc("Symbol name to look for"))
    directory: str = field(default=".", metadata=_desc("Project directory"))


@dataclass
class GetFileContextArgs:
    file: str = field(metadata=_desc("File path"))
    directory: str = field(default=".", metadata=_desc("Project directory"))


@dataclass
class PinFileArgs:
    path: str = field(metadata=_desc("File to keep in the context of every turn"))


@dataclass
class UnpinFileArgs:
    path: str = field(metadata=_desc("Pinned file to release"))


@dataclass
class GetDiagnosticsArgs:
    paths: Optional[List[str]] = field(default=None, metadata=_desc(
        "Files to check; defaults to the files modified in this session"))


_EDIT_ITEM_SCHEMA = {
    "type": "object",
    "properties": {
        "path": {"type": "string"},
        "type": {"type": "string", "enum": ["create", "modify", "delete"]},
        "content": {"type": "string", "description": "Full content for create, or full replacement for modify"},
        "old_text": {"type": "string", "description": "Text to replace for modify"},
        "new_text": {"type": "string", "description": "Replacement text for modify"},
    },
    "required": ["path", "type"],
}


@dataclass
class MultiFileEditArgs:
    edits: List[Dict[str, Any]] = field(metadata=_desc(
        "Edits applied all-or-nothing, in order", items=_EDIT_ITEM_SCHEMA))


@dataclass
class RollbackTransactionArgs:
    transaction_id: str = field(metadata=_desc("Transaction id returned by multi_file_edit"))


@dataclass
class ListTransactionsArgs:
    pass


@dataclass
class UndoChangeArgs:
    path: Optional[str] = field(default=None, metadata=_desc("Undo the last change to this file; omit for the last change overall"))


@dataclass
class RestoreSnapshotArgs:
    snapshot_id: str = field(metadata=_desc("Snapshot id from file_history"))


@dataclass
class FileHistoryArgs:
    path: Optional[str] = field(default=None, metadata=_desc("File to show; omit for recent changes overall"))
    count: int = field(default=10, metadata=_desc("Number of entries"))


@dataclass
class StartProcessArgs:
    command: str = field(metadata=_desc("Long-running command, e.g. npm run dev"))
    cwd: Optional[str] = field(default=None, metadata=_desc("Working directory relative to the project root"))


@dataclass
class StopProcessArgs:
    process_id: int = field(metadata=_desc("Process id from start_process"))


@dataclass
class GetProcessOutputArgs:
    process_id: int = field(metadata=_desc("Process id from start_process"))
    lines: int = field(default=50, metadata=_desc("Number of trailing lines"))


@dataclass
class ListProcessesArgs:
    pass


TOOL_ARGS: Dict[ToolName, Type] = {
    ToolName.READ_FILE: ReadFileArgs,
    ToolName.WRITE_FILE: WriteFileArgs,
    ToolName.APPEND_FILE: AppendFileArgs,
    ToolName.EDIT_FILE: EditFileArgs,
    ToolName.DELETE_FILE: DeleteFileArgs,
    ToolName.CREATE_DIRECTORY: CreateDirectoryArgs,
    ToolName.LIST_DIRECTORY: ListDirectoryArgs,
    ToolName.GET_FILE_STRUCTURE: GetFileStructureArgs,
    ToolName.SEARCH_FILES: SearchFilesArgs,
    ToolName.RUN_COMMAND: RunCommandArgs,
    ToolName.GIT_STATUS: GitStatusArgs,
    ToolName.GIT_DIFF: GitDiffArgs,
    ToolName.GIT_COMMIT: GitCommitArgs,
    ToolName.WEB_SEARCH: WebSearchArgs,
    ToolName.INDEX_CODEBASE: IndexCodebaseArgs,
    ToolName.SEARCH_SYMBOLS: SearchSymbolsArgs,
    ToolName.FIND_REFERENCES: FindReferencesArgs,
    ToolName.GET_FILE_CONTEXT: GetFileContextArgs,
    ToolName.PIN_FILE: PinFileArgs,
    ToolName.UNPIN_FILE: UnpinFileArgs,
    ToolName.GET_DIAGNOSTICS: GetDiagnosticsArgs,
    ToolName.MULTI_FILE_EDIT: MultiFileEditArgs,
    ToolName.ROLLBACK_TRANSACTION: RollbackTransactionArgs,
    ToolName.LIST_TRANSACTIONS: ListTransactionsArgs,
    ToolName.UNDO_CHANGE: UndoChangeArgs,
    ToolName.RESTORE_SNAPSHOT: RestoreSnapshotArgs,
    ToolName.FILE_HISTORY: FileHistoryArgs,
    ToolName.START_PROCESS: StartProcessArgs,
    ToolName.STOP_PROCESS: StopProcessArgs,
    ToolName.GET_PROCESS_OUTPUT: GetProcessOutputArgs,
    ToolName.LIST_PROCESSES: ListProcessesArgs,
}

TOOL_DESCRIPTIONS: Dict[ToolName, str] = {
    ToolName.READ_FILE: "Read a file. Returns line-numbered content; use offset/limit for large files.",
    ToolName.WRITE_FILE: "Create a file or overwrite it completely. Parent directories are created.",
    ToolName.APPEND_FILE: "Append text to the end of a file.",
    ToolName.EDIT_FILE: "Replace the first occurrence of old_text with new_text in a file. Read the file first.",
    ToolName.DELETE_FILE: "Delete a file or an empty directory.",
    ToolName.CREATE_DIRECTORY: "Create a directory and any missing parents.",
    ToolName.LIST_DIRECTORY: "List the entries of a directory.",
    ToolName.GET_FILE_STRUCTURE: "Show the project tree (dotfiles and node_modules hidden).",
    ToolName.SEARCH_FILES: "Search file contents with a regular expression. Returns file:line matches.",
    ToolName.RUN_COMMAND: "Run a shell command in the project and return stdout/stderr. Dangerous commands are blocked.",
    ToolName.GIT_STATUS: "Show the current branch and short git status.",
    ToolName.GIT_DIFF: "Show the working tree diff, optionally for one file.",
    ToolName.GIT_COMMIT: "Commit staged changes (optionally staging everything first).",
    ToolName.WEB_SEARCH: "Search the web. Returns titles, URLs and snippets.",
    ToolName.INDEX_CODEBASE: "Summarize the project: files, languages, symbols and dependencies.",
    ToolName.SEARCH_SYMBOLS: "Find functions, classes, interfaces and variables by name.",
    ToolName.FIND_REFERENCES: "Find lines that mention a symbol across the code files.",
    ToolName.GET_FILE_CONTEXT: "Show the imports and exports of one file.",
    ToolName.PIN_FILE: "Pin a file so its content is included in the context of every following turn.",
    ToolName.UNPIN_FILE: "Remove a file from the pinned context.",
    ToolName.GET_DIAGNOSTICS: "Type-check TypeScript files and validate JSON files. Returns errors and warnings.",
    ToolName.MULTI_FILE_EDIT: "Apply several file edits atomically. If any edit fails all are rolled back. Returns a transaction id.",
    ToolName.ROLLBACK_TRANSACTION: "Revert every file touched by an earlier multi_file_edit.",
    ToolName.LIST_TRANSACTIONS: "List recent multi-file transactions.",
    ToolName.UNDO_CHANGE: "Undo the last change to a file, or the last file change overall.",
    ToolName.RESTORE_SNAPSHOT: "Restore a file to a recorded snapshot.",
    ToolName.FILE_HISTORY: "Show the recorded changes of a file, or recent changes overall.",
    ToolName.START_PROCESS: "Start a long-running background process such as a dev server.",
    ToolName.STOP_PROCESS: "Stop a background process.",
    ToolName.GET_PROCESS_OUTPUT: "Show the latest output lines of a background process.",
    ToolName.LIST_PROCESSES: "List background processes with their status and detected port.",
}

# Results of these are cached for a short TTL
CACHEABLE_TOOLS = frozenset({
    ToolName.READ_FILE, ToolName.LIST_DIRECTORY, ToolName.GET_FILE_STRUCTURE,
    ToolName.SEARCH_FILES, ToolName.GIT_STATUS,
})

# Any of these clears the result cache
MUTATING_TOOLS = frozenset({
    ToolName.WRITE_FILE, ToolName.APPEND_FILE, ToolName.EDIT_FILE, ToolName.DELETE_FILE,
    ToolName.CREATE_DIRECTORY, ToolName.RUN_COMMAND, ToolName.GIT_COMMIT, ToolName.MULTI_FILE_EDIT,
    ToolName.ROLLBACK_TRANSACTION, ToolName.UNDO_CHANGE, ToolName.RESTORE_SNAPSHOT,
})


# ---------------------------------------------------------------------------
# Schema generation
# ---------------------------------------------------------------------------

def _json_schema_for(tp: Any) -> Dict[str, Any]:
    origin = typing.get_origin(tp)
    if origin is typing.Union:
        inner = [a for a in typing.get_args(tp) if a is not type(None)]
        return _json_schema_for(inner[0])
    if origin in (list, List):
        (item,) = typing.get_args(tp) or (str,)
        return {"type": "array", "items": _json_schema_for(item)}
    if origin in (dict, Dict) or tp is dict:
        return {"type": "object"}
    if tp is bool:
        return {"type": "boolean"}
    if tp is int:
        return {"type": "integer"}
    if tp is float:
        return {"type": "number"}
    return {"type": "string"}


def input_schema(args_type: Type) -> Dict[str, Any]:
    hints = typing.get_type_hints(args_type)
    properties: Dict[str, Any] = {}
    required: List[str] = []
    for f in dataclasses.fields(args_type):
        prop = _json_schema_for(hints[f.name])
        meta = dict(f.metadata)
        if "items" in meta:
            prop["items"] = meta.pop("items")
        prop.update(meta)
        properties[f.name] = prop
        if f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
            required.append(f.name)
    return {"type": "object", "properties": properties, "required": required}


def tool_definition(name: ToolName) -> Dict[str, Any]:
    return {
        "name": name.value,
        "description": TOOL_DESCRIPTIONS[name],
        "input_schema": input_schema(TOOL_ARGS[name]),
    }


def _check_complete() -> None:
    missing = [n.value for n in ToolName if n not in TOOL_ARGS or n not in TOOL_DESCRIPTIONS]
    if missing:
        raise RuntimeError(f"Tools without argument type or description: {', '.join(missing)}")


_check_complete()

TOOL_DEFINITIONS: List[Dict[str, Any]] = [tool_definition(n) for n in ToolName]

# Read-only subset offered when only inspection is wanted
READ_ONLY_TOOLS = frozenset({
    ToolName.READ_FILE, ToolName.LIST_DIRECTORY, ToolName.GET_FILE_STRUCTURE, ToolName.SEARCH_FILES,
    ToolName.GIT_STATUS, ToolName.GIT_DIFF, ToolName.WEB_SEARCH, ToolName.INDEX_CODEBASE,
    ToolName.SEARCH_SYMBOLS, ToolName.FIND_REFERENCES, ToolName.GET_FILE_CONTEXT,
    ToolName.GET_DIAGNOSTICS, ToolName.LIST_TRANSACTIONS, ToolName.FILE_HISTORY,
    ToolName.GET_PROCESS_OUTPUT, ToolName.LIST_PROCESSES,
})
READ_ONLY_TOOL_DEFINITIONS: List[Dict[str, Any]] = [tool_definition(n) for n in ToolName if n in READ_ONLY_TOOLS]


class ArgumentError(ValueError):
    """Tool input does not fit the tool's argument type."""


def parse_args(name: ToolName, raw: Optional[Dict[str, Any]]) -> Any:
    """Build the typed argument object for a tool. Unknown keys are ignored."""
    args_type = TOOL_ARGS[name]
    raw = raw or {}
    if not isinstance(raw, dict):
        raise ArgumentError("arguments must be an object")
    hints = typing.get_type_hints(args_type)
    values: Dict[str, Any] = {}
    for f in dataclasses.fields(args_type):
        if f.name not in raw or raw[f.name] is None:
            if f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
                raise ArgumentError(f"missing required argument '{f.name}'")
            continue
        values[f.name] = _coerce(f.name, raw[f.name], hints[f.name])
    return args_type(**values)


def _coerce(key: str, value: Any, tp: Any) -> Any:
    expected = _json_schema_for(tp)["type"]
    if expected == "string":
        if isinstance(value, (dict, list)):
            raise ArgumentError(f"'{key}' must be a string")
        return str(value)
    if expected == "integer":
        if isinstance(value, bool):
            raise ArgumentError(f"'{key}' must be an integer")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ArgumentError(f"'{key}' must be an integer")
    if expected == "boolean":
        if isinstance(value, str):
            return value.strip().lower() == "true"
        return bool(value)
    if expected == "array":
        if not isinstance(value, list):
            raise ArgumentError(f"'{key}' must be an array")
        return value
    return value

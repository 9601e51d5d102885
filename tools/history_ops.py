"""Undo, restore and multi-file transaction tools."""

import logging

from snapshots import OperationResult
from tools._common import ToolContext, ToolResult
from tools.schemas import (
    FileHistoryArgs, ListTransactionsArgs, MultiFileEditArgs, RestoreSnapshotArgs,
    RollbackTransactionArgs, UndoChangeArgs,
)
from transactions import FileEdit

logger = logging.getLogger(__name__)


def _from_operation(result: OperationResult) -> ToolResult:
    if result.success:
        return ToolResult(success=True, output=result.message)
    return ToolResult(success=False, output="", error=result.message)


def multi_file_edit(ctx: ToolContext, args: MultiFileEditArgs) -> ToolResult:
    if not args.edits:
        return ToolResult(success=False, output="", error="edits must not be empty")
    edits = []
    for i, raw in enumerate(args.edits):
        if not isinstance(raw, dict) or not raw.get("path"):
            return ToolResult(success=False, output="", error=f"Edit {i + 1} needs a path")
        try:
            edits.append(FileEdit.from_dict(raw))
        except ValueError as e:
            return ToolResult(success=False, output="", error=f"Edit {i + 1}: {e}")
    result = ctx.transactions.multi_file_edit(edits)
    if result.success:
        for edit in edits:
            if edit.kind != "delete":
                ctx.track_modified(edit.path)
    return _from_operation(result)


def rollback_transaction(ctx: ToolContext, args: RollbackTransactionArgs) -> ToolResult:
    return _from_operation(ctx.transactions.rollback_transaction(args.transaction_id))


def list_transactions(ctx: ToolContext, args: ListTransactionsArgs) -> ToolResult:
    return ToolResult(success=True, output=ctx.transactions.format_transactions())


def undo_change(ctx: ToolContext, args: UndoChangeArgs) -> ToolResult:
    path = ctx.backend.resolve_path(args.path) if args.path else None
    return _from_operation(ctx.snapshots.undo_last_change(path))


def restore_snapshot(ctx: ToolContext, args: RestoreSnapshotArgs) -> ToolResult:
    return _from_operation(ctx.snapshots.restore_snapshot(args.snapshot_id))


def file_history(ctx: ToolContext, args: FileHistoryArgs) -> ToolResult:
    if args.path:
        snapshots = ctx.snapshots.get_file_history(ctx.backend.resolve_path(args.path))[:args.count]
        if not snapshots:
            return ToolResult(success=True, output=f"No history for {args.path}")
    else:
        snapshots = ctx.snapshots.get_recent_changes(args.count)
        if not snapshots:
            return ToolResult(success=True, output="No changes recorded.")
    return ToolResult(success=True, output=ctx.snapshots.format_history(snapshots))

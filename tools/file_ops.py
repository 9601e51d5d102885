"""File operation tools: read, write, append, edit, delete, mkdir, listing, tree, pinning."""

import difflib
import logging
import os
from typing import List

from tools._common import ToolContext, ToolResult, fail
from tools.schemas import (
    AppendFileArgs, CreateDirectoryArgs, DeleteFileArgs, EditFileArgs, GetFileStructureArgs,
    ListDirectoryArgs, PinFileArgs, ReadFileArgs, UnpinFileArgs, WriteFileArgs,
)

logger = logging.getLogger(__name__)

_STRUCTURE_SKIP = {"node_modules"}


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size}B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f}KB"
    return f"{size / 1024 / 1024:.1f}MB"


def compact_diff(old_content: str, new_content: str, path: str, max_lines: int = 60) -> str:
    """Unified diff for display, capped at max_lines."""
    old_lines = old_content.splitlines(keepends=True)
    new_lines = new_content.splitlines(keepends=True)
    diff = list(difflib.unified_diff(old_lines, new_lines, fromfile=path, tofile=path, lineterm=""))
    if not diff:
        return ""
    if len(diff) > max_lines:
        diff = diff[:max_lines] + [f"... ({len(diff) - max_lines} more diff lines)"]
    return "\n".join(line.rstrip() for line in diff)


def diff_stats(old_content: str, new_content: str) -> str:
    added = removed = 0
    for line in difflib.ndiff(old_content.splitlines(), new_content.splitlines()):
        if line.startswith("+ "):
            added += 1
        elif line.startswith("- "):
            removed += 1
    return f"(+{added} -{removed})"


def _require_path(path: str, name: str = "path"):
    if not (path or "").strip():
        return fail(f"{name} is required")
    return None


def read_file(ctx: ToolContext, args: ReadFileArgs) -> ToolResult:
    """Read a file as a header line plus a fenced block."""
    err = _require_path(args.path)
    if err:
        return err
    b = ctx.backend
    if not b.is_file(args.path):
        return fail(f"File not found: {args.path}")
    content = b.read_file(args.path)
    lines = content.split("\n")
    total = len(lines)
    ext = os.path.splitext(args.path)[1].lstrip(".") or "txt"
    size = os.path.getsize(b.resolve_path(args.path))
    header = f"{b.relative_path(args.path)} ({total} lines, {format_size(size)})"

    if args.offset is not None or args.limit is not None:
        start = max((args.offset or 1) - 1, 0)
        end = start + (args.limit or total)
        selected = lines[start:end]
        header += f" showing lines {start + 1}-{start + len(selected)}"
        content = "\n".join(selected)
    return ToolResult(success=True, output=f"{header}\n```{ext}\n{content}\n```")


def write_file(ctx: ToolContext, args: WriteFileArgs) -> ToolResult:
    """Create a new file or completely overwrite an existing file."""
    err = _require_path(args.path)
    if err:
        return err
    b = ctx.backend
    if b.is_dir(args.path):
        return fail(f"Is a directory: {args.path}")
    is_new = not b.file_exists(args.path)
    old_content = "" if is_new else b.read_file(args.path)
    ctx.snapshots.take_snapshot(b.resolve_path(args.path), "create" if is_new else "write",
                                f"write_file: {args.path}")
    b.write_file(args.path, args.content)
    ctx.track_modified(args.path)

    rel = b.relative_path(args.path)
    if is_new:
        line_count = len(args.content.splitlines())
        return ToolResult(success=True, output=f"Created {rel} ({line_count} lines)")
    if old_content == args.content:
        return ToolResult(success=True, output=f"Wrote {rel} (unchanged)")
    summary = f"Wrote {rel} {diff_stats(old_content, args.content)}"
    return ToolResult(success=True, output=f"{summary}\n{compact_diff(old_content, args.content, rel)}")


def append_file(ctx: ToolContext, args: AppendFileArgs) -> ToolResult:
    err = _require_path(args.path)
    if err:
        return err
    b = ctx.backend
    if b.is_dir(args.path):
        return fail(f"Is a directory: {args.path}")
    existing = b.read_file(args.path) if b.file_exists(args.path) else ""
    ctx.snapshots.take_snapshot(b.resolve_path(args.path), "edit", f"append_file: {args.path}")
    b.write_file(args.path, existing + args.content)
    ctx.track_modified(args.path)
    return ToolResult(success=True, output=f"Appended to {b.relative_path(args.path)}")


def edit_file(ctx: ToolContext, args: EditFileArgs) -> ToolResult:
    """Replace the first occurrence of old_text; snapshot only when the edit will happen."""
    err = _require_path(args.path)
    if err:
        return err
    b = ctx.backend
    if not b.is_file(args.path):
        return fail(f"File not found: {args.path}")
    content = b.read_file(args.path)
    if args.old_text not in content:
        return fail(f"Text not found in {args.path}. Re-read the file; it must match exactly, whitespace included.")
    ctx.snapshots.take_snapshot(b.resolve_path(args.path), "edit", f"edit_file: {args.path}")
    new_content = content.replace(args.old_text, args.new_text, 1)
    b.write_file(args.path, new_content)
    ctx.track_modified(args.path)
    rel = b.relative_path(args.path)
    diff_text = compact_diff(content, new_content, rel)
    summary = f"Edited {rel} {diff_stats(content, new_content)}"
    return ToolResult(success=True, output=f"{summary}\n{diff_text}" if diff_text else summary)


def delete_file(ctx: ToolContext, args: DeleteFileArgs) -> ToolResult:
    """Files are snapshotted and removed; directories must be empty."""
    err = _require_path(args.path)
    if err:
        return err
    b = ctx.backend
    if not b.file_exists(args.path):
        return fail(f"File or directory not found: {args.path}")
    full = b.resolve_path(args.path)
    if b.is_dir(args.path):
        try:
            os.rmdir(full)
        except OSError as e:
            return fail(f"Cannot remove directory {args.path}: {e.strerror or e}")
        return ToolResult(success=True, output=f"Deleted directory {b.relative_path(args.path)}")
    ctx.snapshots.take_snapshot(full, "delete", f"delete_file: {args.path}")
    b.remove_file(args.path)
    return ToolResult(success=True, output=f"Deleted {b.relative_path(args.path)}")


def create_directory(ctx: ToolContext, args: CreateDirectoryArgs) -> ToolResult:
    err = _require_path(args.path)
    if err:
        return err
    ctx.backend.make_dirs(args.path)
    return ToolResult(success=True, output=f"Created directory {ctx.backend.relative_path(args.path)}")


def list_directory(ctx: ToolContext, args: ListDirectoryArgs) -> ToolResult:
    b = ctx.backend
    if not b.is_dir(args.path):
        return fail(f"Directory not found: {args.path}")
    entries = b.list_dir(args.path)
    if not entries:
        return ToolResult(success=True, output=f"{b.relative_path(args.path)}: (empty)")
    lines = [f"{b.relative_path(args.path)}:"]
    for entry in entries:
        if entry["type"] == "directory":
            lines.append(f"  {entry['name']}/")
        else:
            lines.append(f"  {entry['name']}  ({format_size(entry.get('size', 0))})")
    return ToolResult(success=True, output="\n".join(lines))


def _tree(full_dir: str, prefix: str, depth: int, max_depth: int, out: List[str]) -> None:
    if depth > max_depth:
        return
    try:
        names = os.listdir(full_dir)
    except OSError as e:
        logger.debug(f"Cannot list {full_dir}: {e}")
        return
    items = [n for n in names if not n.startswith(".") and n not in _STRUCTURE_SKIP]
    items.sort(key=lambda n: (not os.path.isdir(os.path.join(full_dir, n)), n.lower()))
    for idx, name in enumerate(items):
        child = os.path.join(full_dir, name)
        is_last = idx == len(items) - 1
        is_dir = os.path.isdir(child)
        out.append(f"{prefix}{'└── ' if is_last else '├── '}{name}{'/' if is_dir else ''}")
        if is_dir:
            _tree(child, prefix + ("    " if is_last else "│   "), depth + 1, max_depth, out)


def get_file_structure(ctx: ToolContext, args: GetFileStructureArgs) -> ToolResult:
    """Directory tree, directories first, dot entries and node_modules hidden."""
    b = ctx.backend
    if not b.is_dir(args.directory):
        return fail(f"Directory not found: {args.directory}")
    full = b.resolve_path(args.directory)
    lines = [f"{b.relative_path(args.directory)}/"]
    _tree(full, "", 1, max(1, args.max_depth), lines)
    return ToolResult(success=True, output="\n".join(lines))


def pin_file(ctx: ToolContext, args: PinFileArgs) -> ToolResult:
    err = _require_path(args.path)
    if err:
        return err
    if not ctx.backend.is_file(args.path):
        return fail(f"File not found: {args.path}")
    rel = ctx.backend.relative_path(args.path).replace(os.sep, "/")
    if rel in ctx.pinned_files:
        return ToolResult(success=True, output=f"Already pinned: {rel}")
    ctx.pinned_files.append(rel)
    logger.info(f"Pinned {rel}")
    return ToolResult(success=True, output=f"Pinned: {rel} ({len(ctx.pinned_files)} pinned)")


def unpin_file(ctx: ToolContext, args: UnpinFileArgs) -> ToolResult:
    rel = ctx.backend.relative_path(args.path).replace(os.sep, "/")
    if rel not in ctx.pinned_files:
        return ToolResult(success=True, output=f"Not pinned: {rel}")
    ctx.pinned_files.remove(rel)
    return ToolResult(success=True, output=f"Unpinned: {rel}")

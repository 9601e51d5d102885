"""Search tools: content search plus the symbol index queries."""

import logging
import os
import re
from typing import List

import codebase_index
from tools._common import ToolContext, ToolResult, fail
from tools.schemas import (
    FindReferencesArgs, GetFileContextArgs, IndexCodebaseArgs, SearchFilesArgs, SearchSymbolsArgs,
)

logger = logging.getLogger(__name__)

SEARCH_RESULT_LIMIT = 20


def search_files(ctx: ToolContext, args: SearchFilesArgs) -> ToolResult:
    """Case-insensitive regex search; dot directories and node_modules skipped."""
    b = ctx.backend
    if not b.is_dir(args.directory):
        return fail(f"Directory not found: {args.directory}")
    try:
        regex = re.compile(args.pattern, re.IGNORECASE)
    except re.error as e:
        return fail(f"Invalid pattern: {e}")

    root = b.resolve_path(args.directory)
    results: List[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith(".") and d != "node_modules")
        for name in sorted(filenames):
            if args.extension and not name.endswith(args.extension):
                continue
            full = os.path.join(dirpath, name)
            try:
                with open(full, "r", encoding="utf-8") as f:
                    lines = f.read().split("\n")
            except (OSError, UnicodeDecodeError):
                continue
            rel = b.relative_path(full)
            for i, line in enumerate(lines):
                if regex.search(line):
                    results.append(f"{rel}:{i + 1}: {line.strip()}")

    if not results:
        return ToolResult(success=True, output="No matches found.")
    shown = results[:SEARCH_RESULT_LIMIT]
    more = f"\n... and {len(results) - len(shown)} more" if len(results) > len(shown) else ""
    return ToolResult(success=True, output=f"Found {len(results)} matches:\n" + "\n".join(shown) + more)


def _index_for(ctx: ToolContext, directory: str) -> codebase_index.CodebaseIndex:
    if not ctx.backend.is_dir(directory):
        raise FileNotFoundError(f"Directory not found: {directory}")
    return ctx.index_cache.get(ctx.backend.resolve_path(directory))


def index_codebase(ctx: ToolContext, args: IndexCodebaseArgs) -> ToolResult:
    try:
        index = _index_for(ctx, args.directory)
    except FileNotFoundError as e:
        return fail(str(e))
    return ToolResult(success=True, output=index.summary)


def search_symbols(ctx: ToolContext, args: SearchSymbolsArgs) -> ToolResult:
    try:
        index = _index_for(ctx, args.directory)
    except FileNotFoundError as e:
        return fail(str(e))
    results = codebase_index.search_symbols(index, args.query)
    return ToolResult(success=True, output=codebase_index.format_symbol_results(results))


def find_references(ctx: ToolContext, args: FindReferencesArgs) -> ToolResult:
    try:
        index = _index_for(ctx, args.directory)
    except FileNotFoundError as e:
        return fail(str(e))
    refs = codebase_index.find_references(index, args.symbol)
    if not refs:
        return ToolResult(success=True, output=f"No references to '{args.symbol}' found.")
    return ToolResult(success=True, output=f"References to '{args.symbol}' ({len(refs)}):\n" + "\n".join(refs))


def get_file_context(ctx: ToolContext, args: GetFileContextArgs) -> ToolResult:
    try:
        index = _index_for(ctx, args.directory)
    except FileNotFoundError as e:
        return fail(str(e))
    full = ctx.backend.resolve_path(os.path.join(args.directory, args.file)) \
        if not os.path.isabs(args.file) else args.file
    if not os.path.isfile(full):
        full = ctx.backend.resolve_path(args.file)
    if not os.path.isfile(full):
        return fail(f"File not found: {args.file}")
    return ToolResult(success=True, output=codebase_index.get_file_context(index, full))

"""External tools: shell commands, git, web search, diagnostics and background processes."""

import logging
import shlex
from typing import Any, List

from config import app_config
from diagnostics import TypeScriptDiagnosticsProvider, format_diagnostics, run_diagnostics
from tools._common import ToolContext, ToolResult, fail
from tools.schemas import (
    GetDiagnosticsArgs, GetProcessOutputArgs, GitCommitArgs, GitDiffArgs, GitStatusArgs,
    ListProcessesArgs, RunCommandArgs, StartProcessArgs, StopProcessArgs, WebSearchArgs,
)

logger = logging.getLogger(__name__)

MAX_COMMAND_OUTPUT = 20000
GIT_DIFF_CHARS = 3000


def _clip_output(output: str) -> str:
    if len(output) <= MAX_COMMAND_OUTPUT:
        return output
    lines = output.split("\n")
    if len(lines) > 200:
        return "\n".join(lines[:100]) + f"\n\n... [{len(lines) - 150} lines truncated] ...\n\n" + "\n".join(lines[-50:])
    return output[:10000] + "\n\n... [truncated] ...\n\n" + output[-5000:]


def run_command(ctx: ToolContext, args: RunCommandArgs) -> ToolResult:
    """Execute a shell command in the project (or a sub-directory of it)."""
    if not (args.command or "").strip():
        return fail("command is required")
    timeout = args.timeout or app_config.command_timeout
    stdout, stderr, rc = ctx.backend.run_command(args.command, cwd=args.cwd or ".", timeout=timeout)

    parts = []
    if stdout:
        parts.append(stdout)
    if stderr:
        parts.append(f"[stderr]\n{stderr}")
    output = "\n".join(parts) if parts else "(no output)"
    if rc != 0:
        output = f"[exit code: {rc}]\n{output}"
    output = _clip_output(output)
    if rc != 0:
        return ToolResult(success=False, output=output, error=f"Command exited with code {rc}\n{output}")
    return ToolResult(success=True, output=output)


def _git(ctx: ToolContext, directory: str, command: str) -> Any:
    if not ctx.backend.is_dir(directory):
        raise FileNotFoundError(f"Directory not found: {directory}")
    return ctx.backend.run_command(command, cwd=directory, timeout=app_config.command_timeout)


def git_status(ctx: ToolContext, args: GitStatusArgs) -> ToolResult:
    try:
        branch_out, branch_err, rc = _git(ctx, args.directory, "git branch --show-current")
        if rc != 0:
            return fail(f"git error: {branch_err.strip() or branch_out.strip()}")
        status_out, status_err, rc = _git(ctx, args.directory, "git status --short")
    except FileNotFoundError as e:
        return fail(str(e))
    if rc != 0:
        return fail(f"git error: {status_err.strip()}")
    return ToolResult(success=True,
                      output=f"Branch: {branch_out.strip()}\nChanges:\n{status_out.rstrip() or 'No changes'}")


def git_diff(ctx: ToolContext, args: GitDiffArgs) -> ToolResult:
    command = f"git diff -- {shlex.quote(args.file)}" if args.file else "git diff"
    try:
        out, err, rc = _git(ctx, args.directory, command)
    except FileNotFoundError as e:
        return fail(str(e))
    if rc != 0:
        return fail(f"git error: {err.strip()}")
    if not out.strip():
        return ToolResult(success=True, output="No changes.")
    return ToolResult(success=True, output=f"```diff\n{out[:GIT_DIFF_CHARS]}\n```")


def git_commit(ctx: ToolContext, args: GitCommitArgs) -> ToolResult:
    if not args.message.strip():
        return fail("message is required")
    try:
        if args.add_all:
            _, err, rc = _git(ctx, args.directory, "git add .")
            if rc != 0:
                return fail(f"git error: {err.strip()}")
        out, err, rc = _git(ctx, args.directory, f"git commit -m {shlex.quote(args.message)}")
    except FileNotFoundError as e:
        return fail(str(e))
    if rc != 0:
        return fail(f"git error: {(err or out).strip()}")
    return ToolResult(success=True, output=f"Committed:\n{out.strip()}")


def web_search(ctx: ToolContext, args: WebSearchArgs) -> ToolResult:
    """Search the web through DuckDuckGo."""
    from duckduckgo_search import DDGS

    query = (args.query or "").strip()
    if not query:
        return fail("query is required")
    max_results = max(1, min(10, args.max_results or 5))
    with DDGS() as ddgs:
        results = list(ddgs.text(query, max_results=max_results))
    if not results:
        return ToolResult(success=True, output="No results found for that query.")
    lines = [f"Web search: \"{query}\"\n"]
    for i, r in enumerate(results, 1):
        title = (r.get("title") or "").strip()
        href = (r.get("href") or r.get("link") or "").strip()
        body = (r.get("body") or "").strip()[:400]
        lines.append(f"{i}. {title}\n   {href}\n   {body}\n")
    return ToolResult(success=True, output="\n".join(lines))


def get_diagnostics(ctx: ToolContext, args: GetDiagnosticsArgs) -> ToolResult:
    paths: List[str] = list(args.paths or sorted(ctx.modified_files))
    if not paths:
        return ToolResult(success=True, output="No files to check (nothing modified yet).")
    provider = ctx.diagnostics or TypeScriptDiagnosticsProvider(ctx.root)
    result = run_diagnostics(provider, paths)
    return ToolResult(success=True, output=format_diagnostics(result))


def _registry(ctx: ToolContext):
    if ctx.processes is None:
        raise RuntimeError("Background processes are not available in this session")
    return ctx.processes


def start_process(ctx: ToolContext, args: StartProcessArgs) -> ToolResult:
    if not args.command.strip():
        return fail("command is required")
    cwd = ctx.backend.resolve_path(args.cwd or ".")
    if not ctx.backend.is_dir(cwd):
        return fail(f"Directory not found: {args.cwd}")
    bp, reused = _registry(ctx).start(args.command, cwd)
    port = f" on http://localhost:{bp.port}" if bp.port else ""
    if reused:
        return ToolResult(success=True, output=f"Reusing running process {bp.id}{port}")
    return ToolResult(success=True,
                      output=f"Started process {bp.id} (pid {bp.pid}). Use get_process_output to see its output.")


def stop_process(ctx: ToolContext, args: StopProcessArgs) -> ToolResult:
    ok, message = _registry(ctx).stop(args.process_id)
    return ToolResult(success=True, output=message) if ok else fail(message)


def get_process_output(ctx: ToolContext, args: GetProcessOutputArgs) -> ToolResult:
    registry = _registry(ctx)
    if registry.get(args.process_id) is None:
        return fail(f"Process not found: {args.process_id}")
    output, status = registry.output(args.process_id, args.lines)
    return ToolResult(success=True, output=f"[{status}]\n{output}")


def list_processes(ctx: ToolContext, args: ListProcessesArgs) -> ToolResult:
    return ToolResult(success=True, output=_registry(ctx).format_list())

"""
Security gate for tool calls.

Every tool call is checked before it runs. A decision either blocks the call
with a specific reason, or allows it, possibly with a warning that is shown to
the user alongside the result.
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Dict

logger = logging.getLogger(__name__)

DANGEROUS_COMMANDS = [
    re.compile(r"rm\s+(-rf?|--recursive)\s+[/~]", re.IGNORECASE),
    re.compile(r"rm\s+-rf?\s+\.\.", re.IGNORECASE),
    re.compile(r"sudo\s+", re.IGNORECASE),
    re.compile(r"chmod\s+777", re.IGNORECASE),
    re.compile(r"curl\s+.*\|\s*(ba)?sh", re.IGNORECASE),
    re.compile(r"wget\s+.*\|\s*(ba)?sh", re.IGNORECASE),
    re.compile(r">\s*/etc/", re.IGNORECASE),
    re.compile(r">\s*~/", re.IGNORECASE),
    re.compile(r"mkfs\.", re.IGNORECASE),
    re.compile(r"dd\s+if=", re.IGNORECASE),
    re.compile(r":\(\)\s*\{\s*:\|:\s*&\s*\}"),
    re.compile(r"shutdown", re.IGNORECASE),
    re.compile(r"reboot", re.IGNORECASE),
    re.compile(r"format\s+[a-z]:", re.IGNORECASE),
    re.compile(r"del\s+/[sfq]", re.IGNORECASE),
    re.compile(r"rmdir\s+/s", re.IGNORECASE),
]

WARNING_COMMANDS = [
    re.compile(r"npm\s+publish", re.IGNORECASE),
    re.compile(r"git\s+push\s+.*--force", re.IGNORECASE),
    re.compile(r"git\s+reset\s+--hard", re.IGNORECASE),
    re.compile(r"drop\s+database", re.IGNORECASE),
    re.compile(r"drop\s+table", re.IGNORECASE),
    re.compile(r"truncate\s+table", re.IGNORECASE),
    re.compile(r"rm\s+-rf?\s+node_modules", re.IGNORECASE),
    re.compile(r"npm\s+uninstall", re.IGNORECASE),
]

FORBIDDEN_PATHS = [
    re.compile(r"^/etc/"),
    re.compile(r"^/usr/"),
    re.compile(r"^/bin/"),
    re.compile(r"^/sbin/"),
    re.compile(r"^/var/"),
    re.compile(r"^/root/\.(bashrc|zshrc|profile|ssh)"),
    re.compile(r"^/home/[^/]+/\.(bashrc|zshrc|profile|ssh)"),
]

CRITICAL_FILES = {".env", ".gitignore", "package.json", "tsconfig.json"}

COMMAND_TOOLS = {"run_command", "start_process"}
WRITE_TOOLS = {"write_file", "append_file", "edit_file", "create_directory"}
DELETE_TOOLS = {"delete_file"}


@dataclass
class PolicyDecision:
    """Outcome of the security gate for one operation."""
    blocked: bool = False
    reason: str = ""
    warning: str = ""


def check_command(command: str) -> PolicyDecision:
    for pattern in DANGEROUS_COMMANDS:
        if pattern.search(command):
            return PolicyDecision(blocked=True, reason=f"Dangerous command blocked: {command[:50]}")
    for pattern in WARNING_COMMANDS:
        if pattern.search(command):
            return PolicyDecision(warning=f"Risky command: {command[:50]}")
    return PolicyDecision()


def _is_within(path: str, root: str) -> bool:
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


def check_path(target: str, cwd: str) -> PolicyDecision:
    """Paths must stay under cwd and outside system locations."""
    cwd = os.path.normpath(os.path.abspath(cwd))
    expanded = os.path.expanduser(target)
    full = expanded if os.path.isabs(expanded) else os.path.join(cwd, expanded)
    full = os.path.normpath(full)
    if not _is_within(full, cwd):
        reason = "Path traversal blocked" if ".." in target else "Path outside project"
        return PolicyDecision(blocked=True, reason=f"{reason}: {target} (project: {cwd})")
    for pattern in FORBIDDEN_PATHS:
        if pattern.search(full):
            return PolicyDecision(blocked=True, reason=f"Forbidden path: {target}")
    return PolicyDecision()


def check_file_write(target: str, cwd: str) -> PolicyDecision:
    decision = check_path(target, cwd)
    if decision.blocked:
        return decision
    name = os.path.basename(target).lower()
    if name in CRITICAL_FILES:
        return PolicyDecision(warning=f"Modifying critical file: {name}")
    return decision


def check_file_delete(target: str, cwd: str) -> PolicyDecision:
    return check_path(target, cwd)


def _merge(first: PolicyDecision, second: PolicyDecision) -> PolicyDecision:
    if first.blocked:
        return first
    if second.blocked:
        return second
    warnings = [w for w in (first.warning, second.warning) if w]
    return PolicyDecision(warning="; ".join(warnings))


def check_tool_call(name: str, args: Dict[str, Any], cwd: str) -> PolicyDecision:
    """Gate decision for one tool call; tools without side effects pass."""
    if name in COMMAND_TOOLS:
        decision = check_command(str(args.get("command", "")))
        if args.get("cwd"):
            decision = _merge(decision, check_path(str(args["cwd"]), cwd))
        return decision
    if name in WRITE_TOOLS:
        return check_file_write(str(args.get("path", "")), cwd)
    if name in DELETE_TOOLS:
        return check_file_delete(str(args.get("path", "")), cwd)
    if name == "multi_file_edit":
        decision = PolicyDecision()
        for edit in args.get("edits") or []:
            path = str(edit.get("path", "")) if isinstance(edit, dict) else ""
            check = check_file_delete(path, cwd) if isinstance(edit, dict) and edit.get("type") == "delete" \
                else check_file_write(path, cwd)
            decision = _merge(decision, check)
            if decision.blocked:
                break
        return decision
    return PolicyDecision()


def security_info() -> str:
    return (
        "Blocked: destructive commands (rm -rf /, sudo, curl | sh, ...), writes outside the project, "
        "system directories.\n"
        "Warned: npm publish, git push --force, git reset --hard, DROP/TRUNCATE TABLE, critical files "
        f"({', '.join(sorted(CRITICAL_FILES))})."
    )

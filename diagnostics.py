"""
Diagnostics: structured issues for a set of files, plus filtering and rendering.

Type checking is delegated to a DiagnosticsProvider. The default provider
shells out to `npx tsc` for TypeScript files and checks JSON and CSS files
in-process.
"""

import json
import logging
import os
import re
import subprocess
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Tuple

from config import app_config

logger = logging.getLogger(__name__)

_TSC_LINE = re.compile(r"^(.+?)\((\d+),(\d+)\):\s*(error|warning)\s+(TS\d+):\s*(.+)")

# Always noise: vendored code and JSX compiler flags handled by the bundler
_ALWAYS_SKIP = ("--jsx", "jsx flag")
# Noise while dependencies are not installed yet
_DEPENDENCY_SKIP = (
    "Cannot find module", "Could not find a declaration file", "has no exported member",
    "Cannot find namespace", "esModuleInterop",
)
# Missing packages are never something the model can fix by editing code
_MODULE_SKIP = ("Cannot find module", "Could not find a declaration file")

TS_EXTENSIONS = {".ts", ".tsx"}
CSS_EXTENSIONS = {".css", ".scss", ".less"}


@dataclass
class Diagnostic:
    file: str
    line: int
    column: int
    severity: str  # error | warning | info
    message: str
    source: str
    code: Optional[str] = None


@dataclass
class DiagnosticsResult:
    diagnostics: List[Diagnostic] = field(default_factory=list)
    files_checked: int = 0

    @property
    def errors(self) -> int:
        return sum(1 for d in self.diagnostics if d.severity == "error")

    @property
    def warnings(self) -> int:
        return sum(1 for d in self.diagnostics if d.severity == "warning")

    @property
    def has_errors(self) -> bool:
        return self.errors > 0

    @property
    def summary(self) -> str:
        if not self.diagnostics:
            return f"{self.files_checked} files checked, no problems"
        return f"{self.files_checked} files: {self.errors} errors, {self.warnings} warnings"


class DiagnosticsProvider(Protocol):
    def check(self, paths: List[str]) -> List[Diagnostic]:
        ...


def parse_tsc_output(output: str) -> List[Diagnostic]:
    """Parse `file(line,col): error TSxxxx: message` lines."""
    diags = []
    for line in output.splitlines():
        m = _TSC_LINE.match(line.strip())
        if not m:
            continue
        diags.append(Diagnostic(
            file=m.group(1), line=int(m.group(2)), column=int(m.group(3)),
            severity=m.group(4), code=m.group(5), message=m.group(6), source="typescript",
        ))
    return diags


def check_json(path: str, content: str) -> List[Diagnostic]:
    try:
        json.loads(content)
    except json.JSONDecodeError as e:
        return [Diagnostic(file=path, line=e.lineno, column=e.colno, severity="error",
                           message=e.msg, source="json")]
    return []


def check_css(path: str, content: str) -> List[Diagnostic]:
    """Brace balance, comments skipped."""
    diags = []
    depth = 0
    in_comment = False
    lines = content.split("\n")
    for i, line in enumerate(lines):
        j = 0
        while j < len(line):
            pair = line[j:j + 2]
            if not in_comment and pair == "/*":
                in_comment = True
                j += 2
                continue
            if in_comment and pair == "*/":
                in_comment = False
                j += 2
                continue
            if not in_comment:
                if line[j] == "{":
                    depth += 1
                elif line[j] == "}":
                    depth -= 1
                    if depth < 0:
                        diags.append(Diagnostic(file=path, line=i + 1, column=j + 1, severity="error",
                                                message="Unexpected closing brace", source="css"))
                        depth = 0
            j += 1
    if depth > 0:
        diags.append(Diagnostic(file=path, line=len(lines), column=1, severity="error",
                                message=f"{depth} unclosed braces", source="css"))
    return diags


def find_tsconfig(path: str) -> Optional[Tuple[str, str]]:
    """Nearest (directory, config name) above path; tsconfig.app.json wins for Vite layouts."""
    directory = os.path.dirname(os.path.abspath(path))
    while True:
        for name in ("tsconfig.app.json", "tsconfig.json"):
            if os.path.isfile(os.path.join(directory, name)):
                return directory, name
        parent = os.path.dirname(directory)
        if parent == directory:
            return None
        directory = parent


class TypeScriptDiagnosticsProvider:
    """tsc for .ts/.tsx, json.loads for .json, brace balance for stylesheets."""

    def __init__(self, root: str, timeout: int = app_config.diagnostics_timeout):
        self.root = os.path.abspath(root)
        self.timeout = timeout

    def _run_tsc(self, path: str) -> List[Diagnostic]:
        if "node_modules" in path:
            return []
        found = find_tsconfig(path)
        if found is None:
            return []
        config_dir, config_name = found
        rel = os.path.relpath(path, config_dir)
        try:
            proc = subprocess.run(
                ["npx", "tsc", "--noEmit", "--pretty", "false", "-p", config_name, rel],
                cwd=config_dir, capture_output=True, text=True, timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"tsc timed out after {self.timeout}s for {rel}")
            return []
        except FileNotFoundError:
            logger.warning("npx not found; TypeScript diagnostics unavailable")
            return []
        if proc.returncode == 0:
            return []
        return parse_tsc_output(proc.stdout + "\n" + proc.stderr)

    def check(self, paths: List[str]) -> List[Diagnostic]:
        diags: List[Diagnostic] = []
        for path in paths:
            full = path if os.path.isabs(path) else os.path.join(self.root, path)
            if not os.path.isfile(full):
                diags.append(Diagnostic(file=path, line=1, column=1, severity="error",
                                        message=f"File not found: {path}", source="filesystem"))
                continue
            ext = os.path.splitext(full)[1].lower()
            if ext in TS_EXTENSIONS:
                diags.extend(self._run_tsc(full))
                continue
            if ext == ".json" or ext in CSS_EXTENSIONS:
                with open(full, "r", encoding="utf-8", errors="replace") as f:
                    content = f.read()
                check = check_json if ext == ".json" else check_css
                diags.extend(check(path, content))
        return diags


def run_diagnostics(provider: DiagnosticsProvider, paths: List[str]) -> DiagnosticsResult:
    return DiagnosticsResult(diagnostics=provider.check(paths), files_checked=len(paths))


def filter_actionable(diagnostics: List[Diagnostic], skip_dependency_errors: bool = True) -> List[Diagnostic]:
    """Drop issues editing the project cannot fix.

    node_modules issues, JSX flag complaints, missing modules and missing
    declaration files are always dropped; with skip_dependency_errors the
    export, namespace and interop errors typical of uninstalled packages are
    dropped as well.
    """
    skip = _ALWAYS_SKIP + (_DEPENDENCY_SKIP if skip_dependency_errors else _MODULE_SKIP)
    return [
        d for d in diagnostics
        if "node_modules" not in d.file and not any(s in d.message for s in skip)
    ]


def format_diagnostics(result: DiagnosticsResult, per_file: int = 10) -> str:
    if not result.diagnostics:
        return result.summary
    by_file: "OrderedDict[str, List[Diagnostic]]" = OrderedDict()
    for d in result.diagnostics:
        by_file.setdefault(d.file, []).append(d)
    lines = [result.summary, ""]
    for path, diags in by_file.items():
        lines.append(path)
        for d in diags[:per_file]:
            code = f" [{d.code}]" if d.code else ""
            lines.append(f"  {d.severity} {d.line}:{d.column} {d.message}{code}")
        if len(diags) > per_file:
            lines.append(f"  ... and {len(diags) - per_file} more")
    return "\n".join(lines)

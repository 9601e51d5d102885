"""
Background process registry for long-running commands (dev servers, watchers).

Output is captured by reader threads into a bounded ring buffer and polled on
demand; it never streams into the conversation.
"""

import logging
import os
import re
import subprocess
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Tuple

from backend import kill_process_group

logger = logging.getLogger(__name__)

MAX_OUTPUT_LINES = 500

_PORT_PATTERNS = [
    re.compile(r"localhost:(\d+)", re.IGNORECASE),
    re.compile(r"127\.0\.0\.1:(\d+)"),
    re.compile(r"0\.0\.0\.0:(\d+)"),
    re.compile(r"port\s*[:\s]\s*(\d+)", re.IGNORECASE),
    re.compile(r"listening\s+(?:on\s+)?(?:port\s+)?(\d+)", re.IGNORECASE),
    re.compile(r":(\d{4,5})\b"),
]


def detect_port(text: str) -> Optional[int]:
    """First plausible port (1000-65535) mentioned in a line of output."""
    for pattern in _PORT_PATTERNS:
        m = pattern.search(text)
        if m:
            port = int(m.group(1))
            if 1000 <= port <= 65535:
                return port
    return None


def format_uptime(seconds: float) -> str:
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m {seconds % 60}s"
    return f"{minutes // 60}h {minutes % 60}m"


@dataclass
class BackgroundProcess:
    id: int
    command: str
    cwd: str
    proc: subprocess.Popen
    started_at: float = field(default_factory=time.time)
    status: str = "running"  # running | stopped | error
    port: Optional[int] = None
    output: Deque[str] = field(default_factory=lambda: deque(maxlen=MAX_OUTPUT_LINES))

    @property
    def pid(self) -> int:
        return self.proc.pid

    def uptime(self) -> str:
        return format_uptime(time.time() - self.started_at) if self.status == "running" else "-"


class ProcessRegistry:
    """Processes started during one session, keyed by a small integer id."""

    def __init__(self) -> None:
        self._processes: Dict[int, BackgroundProcess] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def start(self, command: str, cwd: str) -> Tuple[BackgroundProcess, bool]:
        """Start command in cwd; returns (process, reused).

        A running process with the same command and cwd is reused instead of
        starting a duplicate.
        """
        cwd = os.path.abspath(cwd)
        for bp in self._processes.values():
            if bp.command == command and bp.cwd == cwd and bp.status == "running":
                return bp, True

        proc = subprocess.Popen(
            command, shell=True, cwd=cwd,
            stdin=subprocess.DEVNULL, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
            text=True, bufsize=1, errors="replace",
            preexec_fn=os.setsid,
        )
        with self._lock:
            bp = BackgroundProcess(id=self._next_id, command=command, cwd=cwd, proc=proc)
            self._processes[bp.id] = bp
            self._next_id += 1

        for pipe, is_stderr in ((proc.stdout, False), (proc.stderr, True)):
            threading.Thread(target=self._reader, args=(bp, pipe, is_stderr), daemon=True).start()
        threading.Thread(target=self._waiter, args=(bp,), daemon=True).start()
        logger.info(f"Started process {bp.id} (pid {bp.pid}): {command}")
        return bp, False

    def _reader(self, bp: BackgroundProcess, pipe, is_stderr: bool) -> None:
        try:
            for raw in iter(pipe.readline, ""):
                line = raw.rstrip("\n")
                if not line.strip():
                    continue
                bp.output.append(f"[stderr] {line}" if is_stderr else line)
                if bp.port is None:
                    bp.port = detect_port(line)
        except (OSError, ValueError) as e:
            logger.debug(f"Output reader for process {bp.id} stopped: {e}")
        finally:
            pipe.close()

    def _waiter(self, bp: BackgroundProcess) -> None:
        code = bp.proc.wait()
        if bp.status == "running":
            bp.status = "stopped" if code == 0 else "error"
        bp.output.append(f"[exit] Process exited with code {code}")

    def get(self, process_id: int) -> Optional[BackgroundProcess]:
        return self._processes.get(process_id)

    def stop(self, process_id: int) -> Tuple[bool, str]:
        bp = self._processes.get(process_id)
        if bp is None:
            return False, f"Process not found: {process_id}"
        if bp.status != "running":
            return False, f"Process already stopped: {process_id}"
        bp.status = "stopped"
        kill_process_group(bp.proc)
        logger.info(f"Stopped process {process_id}")
        return True, f"Process stopped: {process_id}"

    def output(self, process_id: int, lines: int = 50) -> Tuple[str, str]:
        """(last lines of output, status)."""
        bp = self._processes.get(process_id)
        if bp is None:
            return f"Process not found: {process_id}", "unknown"
        tail = list(bp.output)[-max(1, lines):]
        return ("\n".join(tail) if tail else "(no output yet)"), bp.status

    def list(self) -> List[BackgroundProcess]:
        return list(self._processes.values())

    def stop_all(self) -> int:
        stopped = 0
        for bp in self._processes.values():
            if bp.status == "running":
                self.stop(bp.id)
                stopped += 1
        return stopped

    def format_list(self) -> str:
        procs = self.list()
        if not procs:
            return "No background processes."
        lines = ["  ID  Status   Uptime  Port   Command"]
        for bp in procs:
            command = bp.command if len(bp.command) <= 40 else bp.command[:37] + "..."
            port = str(bp.port) if bp.port else "-"
            lines.append(f"  {bp.id:<3} {bp.status:<8} {bp.uptime():<7} {port:<6} {command}")
        return "\n".join(lines)

"""
Project filesystem and shell access.

Tools never touch the disk directly: they go through a Backend rooted at the
project directory. LocalBackend refuses any path that resolves outside that
root, so a tool cannot read or write beyond the project even if the security
gate missed it.
"""

import logging
import os
import signal
import subprocess
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Tuple

logger = logging.getLogger(__name__)


class Backend(ABC):
    """File and command operations relative to one working directory."""

    @property
    @abstractmethod
    def working_directory(self) -> str:
        ...

    @abstractmethod
    def list_dir(self, path: str) -> List[Dict[str, Any]]:
        """Entries of a directory as {name, type[, ext, size]} dicts, sorted by name."""

    @abstractmethod
    def read_file(self, path: str) -> str:
        ...

    @abstractmethod
    def write_file(self, path: str, content: str) -> None:
        """Write text, creating parent directories."""

    @abstractmethod
    def file_exists(self, path: str) -> bool:
        ...

    @abstractmethod
    def is_dir(self, path: str) -> bool:
        ...

    @abstractmethod
    def is_file(self, path: str) -> bool:
        ...

    @abstractmethod
    def make_dirs(self, path: str) -> None:
        ...

    @abstractmethod
    def remove_file(self, path: str) -> None:
        ...

    @abstractmethod
    def run_command(self, command: str, cwd: str = ".", timeout: int = 30) -> Tuple[str, str, int]:
        """(stdout, stderr, exit code). A timeout yields exit code -1."""

    def resolve_path(self, path: str) -> str:
        """Absolute, normalized form of path; relative paths hang off the working directory."""
        if not os.path.isabs(path):
            path = os.path.join(self.working_directory, path)
        return os.path.normpath(path)

    def relative_path(self, path: str) -> str:
        return os.path.relpath(self.resolve_path(path), self.working_directory)


class LocalBackend(Backend):
    def __init__(self, working_directory: str = "."):
        self._root = os.path.abspath(working_directory)

    @property
    def working_directory(self) -> str:
        return self._root

    def _full(self, path: str) -> str:
        """Resolve path and check it stays under the root. Raises ValueError otherwise."""
        full = self.resolve_path(path) if path else self._root
        if full != self._root and not full.startswith(self._root + os.sep):
            raise ValueError(f"Path escapes working directory: {path!r}")
        return full

    def list_dir(self, path: str) -> List[Dict[str, Any]]:
        directory = self._full(path)
        entries: List[Dict[str, Any]] = []
        for name in sorted(os.listdir(directory)):
            child = os.path.join(directory, name)
            if os.path.isdir(child):
                entries.append({"name": name, "type": "directory"})
            elif os.path.isfile(child):
                entries.append({
                    "name": name,
                    "type": "file",
                    "ext": os.path.splitext(name)[1].lstrip("."),
                    "size": os.path.getsize(child),
                })
        return entries

    def read_file(self, path: str) -> str:
        with open(self._full(path), "r", encoding="utf-8", errors="replace") as f:
            return f.read()

    def write_file(self, path: str, content: str) -> None:
        target = self._full(path)
        os.makedirs(os.path.dirname(target), exist_ok=True)
        with open(target, "w", encoding="utf-8") as f:
            f.write(content)

    def file_exists(self, path: str) -> bool:
        return os.path.exists(self._full(path))

    def is_dir(self, path: str) -> bool:
        return os.path.isdir(self._full(path))

    def is_file(self, path: str) -> bool:
        return os.path.isfile(self._full(path))

    def make_dirs(self, path: str) -> None:
        os.makedirs(self._full(path), exist_ok=True)

    def remove_file(self, path: str) -> None:
        os.remove(self._full(path))

    def run_command(self, command: str, cwd: str = ".", timeout: int = 30) -> Tuple[str, str, int]:
        # own process group, so a timeout can take down everything the shell spawned
        proc = subprocess.Popen(
            command, shell=True, cwd=self._full(cwd if cwd != "." else ""),
            stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True,
            preexec_fn=os.setsid,
        )
        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"Command timed out after {timeout}s: {command}")
            kill_process_group(proc)
            stdout, stderr = proc.communicate(timeout=5)
            return stdout or "", f"Command timed out after {timeout}s\n{stderr or ''}", -1
        return stdout or "", stderr or "", proc.returncode


def kill_process_group(proc: subprocess.Popen) -> None:
    """SIGTERM the process group, then kill the leader. Already-dead processes are fine."""
    try:
        os.killpg(os.getpgid(proc.pid), signal.SIGTERM)
    except OSError:
        pass
    try:
        proc.kill()
    except OSError:
        pass

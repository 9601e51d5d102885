"""
Chat session persistence for Bedrock Pilot.

Each project gets a directory under the store, named by a short hash of its
absolute path; each named session in it is one JSON file:

    {base_dir}/{project_hash}/{slug}.json

A session id is "{project_hash}_{slug}", so it can be mapped back to its file
without scanning. Files are written to a temp file first and swapped in.
"""

import dataclasses
import hashlib
import json
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_BASE_DIR = os.path.join(os.path.expanduser("~"), ".bedrock-pilot", "sessions")

SESSION_VERSION = 1
AUTO_NAME_WORDS = 6


def _zero_usage() -> Dict[str, int]:
    return {"input_tokens": 0, "output_tokens": 0}


@dataclass
class Session:
    session_id: str = ""
    version: int = SESSION_VERSION
    name: str = "default"
    working_directory: str = ""
    model_id: str = ""
    created_at: str = ""
    updated_at: str = ""
    history: List[Dict[str, Any]] = field(default_factory=list)
    token_usage: Dict[str, int] = field(default_factory=_zero_usage)
    active_spec_id: Optional[str] = None

    @property
    def message_count(self) -> int:
        """User turns typed by the user; tool result turns are not counted."""
        return len([m for m in self.history if m.get("role") == "user" and isinstance(m.get("content"), str)])

    @property
    def total_tokens(self) -> int:
        return sum(self.token_usage.get(k, 0) for k in ("input_tokens", "output_tokens"))

    def add_usage(self, input_tokens: int, output_tokens: int) -> None:
        for key, n in (("input_tokens", input_tokens), ("output_tokens", output_tokens)):
            self.token_usage[key] = self.token_usage.get(key, 0) + n

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        known = {f.name for f in dataclasses.fields(cls)}
        session = cls(**{k: v for k, v in data.items() if k in known})
        session.token_usage = {**_zero_usage(), **(session.token_usage or {})}
        return session


def project_hash(working_directory: str) -> str:
    return hashlib.sha256(os.path.abspath(working_directory).encode()).hexdigest()[:12]


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")[:50]
    return slug or "default"


def name_from_message(message: str) -> str:
    """First few words of a message, with an ellipsis if it was longer."""
    words = message.split()
    if not words:
        return "default"
    name = " ".join(words[:AUTO_NAME_WORDS])
    return name + "..." if len(words) > AUTO_NAME_WORDS else name


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class SessionStore:
    """Session files on disk, grouped per project."""

    def __init__(self, base_dir: str = DEFAULT_BASE_DIR):
        self.base_dir = base_dir
        os.makedirs(self.base_dir, exist_ok=True)

    def session_id(self, working_directory: str, name: str) -> str:
        return f"{project_hash(working_directory)}_{slugify(name)}"

    def path_for(self, session_id: str) -> str:
        project, _, slug = session_id.partition("_")
        return os.path.join(self.base_dir, project, f"{slug}.json")

    def create_session(self, working_directory: str, model_id: str, name: str = "default") -> Session:
        """A new, unsaved session."""
        stamp = _timestamp()
        return Session(
            session_id=self.session_id(working_directory, name),
            name=name,
            working_directory=os.path.abspath(working_directory),
            model_id=model_id,
            created_at=stamp,
            updated_at=stamp,
        )

    def save(self, session: Session) -> str:
        if not session.session_id:
            session.session_id = self.session_id(session.working_directory, session.name)
        session.updated_at = _timestamp()
        session.created_at = session.created_at or session.updated_at

        path = self.path_for(session.session_id)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        tmp = f"{path}.tmp"
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(session.to_dict(), f, indent=2, ensure_ascii=False)
            os.replace(tmp, path)
        except OSError:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise
        logger.debug(f"Saved session {session.session_id} ({session.message_count} messages)")
        return path

    def load(self, session_id: str) -> Optional[Session]:
        path = self.path_for(session_id)
        return self._read(path) if os.path.isfile(path) else None

    def delete(self, session_id: str) -> bool:
        path = self.path_for(session_id)
        if not os.path.isfile(path):
            return False
        os.remove(path)
        logger.info(f"Deleted session {session_id}")
        return True

    def list_sessions(self, working_directory: str) -> List[Session]:
        """Sessions of one project, most recently updated first."""
        directory = os.path.join(self.base_dir, project_hash(working_directory))
        if not os.path.isdir(directory):
            return []
        found = []
        for entry in os.listdir(directory):
            if entry.endswith(".json"):
                session = self._read(os.path.join(directory, entry))
                if session is not None:
                    found.append(session)
        return sorted(found, key=lambda s: s.updated_at or "", reverse=True)

    def get_latest(self, working_directory: str) -> Optional[Session]:
        sessions = self.list_sessions(working_directory)
        return sessions[0] if sessions else None

    def find_by_name(self, working_directory: str, name: str) -> Optional[Session]:
        wanted = name.strip().lower()
        return next((s for s in self.list_sessions(working_directory) if s.name.strip().lower() == wanted), None)

    def rename(self, session: Session, new_name: str) -> Session:
        """Give the session a new name; its file moves with the new id."""
        old_id = session.session_id
        session.name = new_name
        session.session_id = self.session_id(session.working_directory, new_name)
        self.save(session)
        if old_id and old_id != session.session_id:
            self.delete(old_id)
        return session

    def auto_name_session(self, session: Session, first_message: str) -> Session:
        """Name a still-default session after its first message."""
        if session.name != "default":
            return session
        return self.rename(session, name_from_message(first_message))

    def _read(self, path: str) -> Optional[Session]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Skipping unreadable session file {path}: {e}")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Skipping malformed session file {path}")
            return None
        return Session.from_dict(data)


"""
Steering files: project rules injected into the chat system prompt.

Each `<root>/.bedrock-pilot/steering/*.md` file may start with YAML
frontmatter:

    ---
    inclusion: always | fileMatch | manual
    fileMatchPattern: "src/**/*.tsx"
    description: React conventions
    ---

`always` files are always included, `fileMatch` files when an active file
matches the pattern, `manual` files only when named in the message as `#name`.
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import pathspec
import yaml

from config import steering_dir

logger = logging.getLogger(__name__)

INCLUSION_MODES = ("always", "fileMatch", "manual")

_FRONTMATTER = re.compile(r"^---\n(.*?)\n---\n?(.*)$", re.DOTALL)
_HASH_MENTION = re.compile(r"#([A-Za-z0-9_-]+)")


@dataclass
class SteeringFile:
    name: str
    path: str
    content: str
    inclusion: str = "always"
    file_match_pattern: Optional[str] = None
    description: Optional[str] = None

    def matches(self, path: str) -> bool:
        if not self.file_match_pattern:
            return False
        spec = pathspec.PathSpec.from_lines("gitwildmatch", [self.file_match_pattern])
        path = path.replace(os.sep, "/")
        return spec.match_file(path) or spec.match_file(os.path.basename(path))


def parse_frontmatter(text: str) -> Tuple[Dict, str]:
    """(frontmatter dict, body). Invalid or missing frontmatter yields an empty dict."""
    m = _FRONTMATTER.match(text)
    if not m:
        return {}, text
    try:
        data = yaml.safe_load(m.group(1))
    except yaml.YAMLError as e:
        logger.warning(f"Invalid steering frontmatter: {e}")
        return {}, text
    if not isinstance(data, dict):
        return {}, text
    return data, m.group(2).strip()


def discover_steering_files(root: str) -> List[SteeringFile]:
    directory = steering_dir(root)
    if not os.path.isdir(directory):
        return []
    files = []
    for entry in sorted(os.listdir(directory)):
        path = os.path.join(directory, entry)
        if not entry.endswith(".md") or not os.path.isfile(path):
            continue
        with open(path, "r", encoding="utf-8") as f:
            meta, body = parse_frontmatter(f.read())
        inclusion = meta.get("inclusion", "always")
        if inclusion not in INCLUSION_MODES:
            logger.warning(f"Unknown steering inclusion {inclusion!r} in {entry}, using 'always'")
            inclusion = "always"
        files.append(SteeringFile(
            name=entry[:-3],
            path=path,
            content=body,
            inclusion=inclusion,
            file_match_pattern=meta.get("fileMatchPattern"),
            description=meta.get("description"),
        ))
    return files


def get_active_steering(files: List[SteeringFile], active_files: Sequence[str] = (),
                        manual_includes: Sequence[str] = ()) -> List[SteeringFile]:
    manual = {name.lstrip("#") for name in manual_includes}
    active = []
    for f in files:
        if f.inclusion == "always":
            active.append(f)
        elif f.inclusion == "fileMatch":
            if any(f.matches(path) for path in active_files):
                active.append(f)
        elif f.name in manual:
            active.append(f)
    return active


def parse_steering_mentions(message: str, files: List[SteeringFile]) -> Tuple[str, List[str]]:
    """Strip `#name` references to manual steering files from message."""
    manual = {f.name for f in files if f.inclusion == "manual"}
    found: List[str] = []

    def strip(m: "re.Match[str]") -> str:
        if m.group(1) in manual:
            found.append(m.group(1))
            return ""
        return m.group(0)

    clean = _HASH_MENTION.sub(strip, message).strip()
    return clean, found


def build_steering_context(files: List[SteeringFile]) -> str:
    if not files:
        return ""
    parts = ["## Steering Rules", "The following project-specific rules and guidelines apply:", ""]
    for f in files:
        parts.append(f"### {f.name}")
        if f.description:
            parts.append(f"*{f.description}*")
            parts.append("")
        parts.append(f.content)
        parts.append("")
    return "\n".join(parts)


def format_steering_list(files: List[SteeringFile]) -> str:
    if not files:
        return "No steering files. Add markdown files under .bedrock-pilot/steering/ to define project rules."
    lines = ["Steering files:"]
    for f in files:
        target = f" -> {f.file_match_pattern}" if f.file_match_pattern else ""
        lines.append(f"  {f.name} [{f.inclusion}]{target}")
    return "\n".join(lines)

"""
Skills: reusable instruction packs picked per message.

A skill is a folder holding SKILL.md, either shared across projects
(app_config.skills_dir) or local to one (<root>/.bedrock-pilot/skills). A
project skill replaces a shared one with the same folder name. SKILL.md may
start with frontmatter:

    ---
    description: Landing pages with React and Tailwind
    inclusion: auto | always | manual
    triggers: landing page, hero section
    ---

`always` skills go into every prompt, `auto` skills when the message scores
high enough against their triggers, `manual` skills only in agent mode.
Workflows are rows of a markdown table in the body:

    | **Draft** | "draft, prepare" | workflows/draft.md |
"""

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from config import app_config, project_skills_dir
from steering import parse_frontmatter

logger = logging.getLogger(__name__)

SKILL_FILE = "SKILL.md"
INCLUSION_MODES = ("auto", "always", "manual")

MATCH_THRESHOLD = 8
MAX_SKILLS = 3
SCORE_WORD = 15
SCORE_SUBSTRING = 8
SCORE_NAME_PART = 10
SCORE_DESCRIPTION_WORD = 1

# A skill mentioning any word of a group is triggered by every word of it
KEYWORD_GROUPS: Dict[str, List[str]] = {
    "research": ["research", "investigate", "analyze", "analysis"],
    "art": ["image", "art", "visual", "draw", "illustration"],
    "code": ["code", "program", "develop", "refactor"],
    "write": ["write", "document", "documentation"],
    "frontend": [
        "frontend", "front-end", "ui", "interface", "design", "page", "landing", "component",
        "web", "site", "website", "react", "tailwind", "css", "html", "style", "color",
        "button", "card", "box", "menu", "navigation", "navbar", "footer", "header", "hero",
        "section", "layout", "grid", "flex", "responsive", "animation", "transition", "effect",
        "typography", "spacing", "margin", "padding", "hover", "font",
    ],
    "backend": ["backend", "back-end", "api", "server", "database", "endpoint"],
    "mobile": ["mobile", "app", "ios", "android", "react native", "flutter"],
}

_WORKFLOW_ROW = re.compile(r'\|\s*\*\*(\w+)\*\*\s*\|\s*"([^"]+)"\s*\|\s*`?([^`|\s]+)`?\s*\|')


@dataclass
class Workflow:
    name: str
    trigger: str
    file: str
    content: str = ""


@dataclass
class Skill:
    name: str
    path: str
    context: str
    description: str = ""
    inclusion: str = "auto"
    triggers: List[str] = field(default_factory=list)
    workflows: List[Workflow] = field(default_factory=list)


def _unique(items: List[str]) -> List[str]:
    return list(dict.fromkeys(items))


def extract_triggers(text: str) -> List[str]:
    lower = text.lower()
    triggers: List[str] = []
    for keywords in KEYWORD_GROUPS.values():
        if any(k in lower for k in keywords):
            triggers.extend(keywords)
    return _unique(triggers)


def _custom_triggers(value) -> List[str]:
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list):
        return []
    return [str(t).strip().lower() for t in value if str(t).strip()]


def _read_workflows(body: str, skill_path: str) -> List[Workflow]:
    workflows = []
    for m in _WORKFLOW_ROW.finditer(body):
        name, trigger, rel = m.groups()
        full = os.path.normpath(os.path.join(skill_path, rel))
        content = ""
        # workflow files must live inside the skill folder
        if full.startswith(skill_path + os.sep) and os.path.isfile(full):
            with open(full, "r", encoding="utf-8", errors="replace") as f:
                content = f.read()
        workflows.append(Workflow(name=name, trigger=trigger, file=rel, content=content))
    return workflows


def parse_skill_file(path: str, name: str) -> Optional[Skill]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Skipping unreadable skill {path}: {e}")
        return None
    meta, body = parse_frontmatter(text)
    description = str(meta.get("description") or "").strip()
    inclusion = str(meta.get("inclusion") or "auto").lower()
    if inclusion not in INCLUSION_MODES:
        logger.warning(f"Unknown skill inclusion {inclusion!r} in {name}, using 'auto'")
        inclusion = "auto"
    skill_path = os.path.dirname(os.path.abspath(path))
    return Skill(
        name=name,
        path=skill_path,
        context=body,
        description=description,
        inclusion=inclusion,
        # custom triggers rank first
        triggers=_unique(_custom_triggers(meta.get("triggers")) + extract_triggers(description)
                         + extract_triggers(body)),
        workflows=_read_workflows(body, skill_path),
    )


def _skills_in(directory: str) -> List[Skill]:
    if not os.path.isdir(directory):
        return []
    found = []
    for entry in sorted(os.listdir(directory)):
        skill_file = os.path.join(directory, entry, SKILL_FILE)
        if os.path.isfile(skill_file):
            skill = parse_skill_file(skill_file, entry)
            if skill is not None:
                found.append(skill)
    return found


def discover_skills(root: str, shared_dir: Optional[str] = None) -> List[Skill]:
    """Shared skills plus the project's own, sorted by name."""
    by_name: Dict[str, Skill] = {}
    for directory in (shared_dir or app_config.skills_dir, project_skills_dir(root)):
        for skill in _skills_in(directory):
            by_name[skill.name] = skill
    return [by_name[name] for name in sorted(by_name)]


def score_skill(message: str, skill: Skill) -> int:
    lower = message.lower()
    score = 0
    for trigger in skill.triggers:
        if trigger in lower:
            if re.search(rf"\b{re.escape(trigger)}\b", lower):
                score += SCORE_WORD
            else:
                score += SCORE_SUBSTRING
    for part in re.split(r"[-_]", skill.name.lower()):
        if len(part) > 2 and part in lower:
            score += SCORE_NAME_PART
    for word in skill.description.lower().split():
        if len(word) > 4 and word in lower:
            score += SCORE_DESCRIPTION_WORD
    return score


def match_skills(message: str, skills: List[Skill], ignore_inclusion: bool = False,
                 max_skills: int = MAX_SKILLS) -> List[Skill]:
    """Best scoring skills for message, at most max_skills.

    Manual skills are only considered with ignore_inclusion (agent mode).
    """
    scored: List[Tuple[Skill, int]] = []
    for skill in skills:
        if skill.inclusion == "manual" and not ignore_inclusion:
            continue
        score = score_skill(message, skill)
        if score >= MATCH_THRESHOLD:
            scored.append((skill, score))
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return [skill for skill, _ in scored[:max_skills]]


def get_always_skills(skills: List[Skill]) -> List[Skill]:
    return [s for s in skills if s.inclusion == "always"]


def select_skills(message: str, skills: List[Skill], ignore_inclusion: bool = False) -> List[Skill]:
    """Always-included skills, then the matches for message."""
    always = get_always_skills(skills)
    matched = [s for s in match_skills(message, skills, ignore_inclusion) if s.inclusion != "always"]
    return always + matched


def match_workflow(message: str, skill: Skill) -> Optional[Workflow]:
    lower = message.lower()
    for workflow in skill.workflows:
        for word in re.split(r"[,\s]+", workflow.trigger.lower()):
            if len(word) > 2 and word in lower:
                return workflow
    return None


def build_skills_context(skills: List[Skill], message: str) -> str:
    if not skills:
        return ""
    parts = ["## Active Skills", "Apply these skill instructions where they fit the request:", ""]
    for skill in skills:
        parts.append(f"### {skill.name}")
        parts.append(skill.context)
        workflow = match_workflow(message, skill)
        if workflow is not None and workflow.content:
            parts.append("")
            parts.append(f"#### Workflow: {workflow.name}")
            parts.append(workflow.content)
        parts.append("")
    return "\n".join(parts)


def format_skills_list(skills: List[Skill]) -> str:
    if not skills:
        return (f"No skills. Add <name>/{SKILL_FILE} folders under {app_config.skills_dir} "
                f"or .bedrock-pilot/skills/.")
    lines = ["Skills:"]
    for skill in skills:
        lines.append(f"  {skill.name} [{skill.inclusion}] {skill.description}".rstrip())
        for workflow in skill.workflows:
            lines.append(f"    workflow {workflow.name}: \"{workflow.trigger}\"")
    return "\n".join(lines)

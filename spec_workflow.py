"""
Spec workflow: a persisted, staged document driven by the model.

    draft -> requirements -> design -> tasks -> implementing -> done

Each stage is produced by one model call that must return JSON. Specs are
stored under `<root>/.bedrock-pilot/specs/` as `<id>.json` (machine readable)
and `<id>.md` (human readable). Tasks are implemented one at a time through
the tool loop (`implement_next`) or all at once as an agent plan
(`run_auto`).

Spec text may reference project files with `#[[file:path/to/file]]`; the
referenced files are inlined into the prompts.
"""

import asyncio
import json
import logging
import os
import re
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from agent.events import EventCallback, emit
from agent.loop import run_tool_loop
from agent.plan import AgentPlan, PlanParseError, extract_json_object
from agent.prompts import build_system_prompt
from agent.runner import AgentRunner
from bedrock_service import BedrockService
from config import app_config, specs_dir
from tools.dispatch import ToolExecutor

logger = logging.getLogger(__name__)

SPEC_STATUSES = ("draft", "requirements", "design", "tasks", "implementing", "done")
TASK_STATUSES = ("pending", "in-progress", "done", "skipped")

REFERENCE_PROMPT_CHARS = 5000
REFERENCE_AUTO_CHARS = 3000
DESIGN_SUMMARY_CHARS = 100

_FILE_REF = re.compile(r"#\[\[file:([^\]]+)\]\]")


class SpecStageError(ValueError):
    """A stage was requested before its prerequisite stage has content."""


@dataclass
class Requirement:
    id: str
    description: str
    category: str = "general"
    priority: str = "P1"  # P0 critical, P1 important, P2 nice-to-have
    acceptance: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Requirement":
        return cls(
            id=str(data.get("id", "")),
            description=str(data.get("description", "")),
            category=data.get("category") or "general",
            priority=data.get("priority") or "P1",
            acceptance=[str(a) for a in data.get("acceptance") or []],
        )


@dataclass
class DesignDecision:
    id: str
    component: str
    description: str
    category: str = "general"
    rationale: str = ""
    alternatives: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DesignDecision":
        return cls(
            id=str(data.get("id", "")),
            component=str(data.get("component", "")),
            description=str(data.get("description", "")),
            category=data.get("category") or "general",
            rationale=data.get("rationale") or "",
            alternatives=data.get("alternatives"),
        )


@dataclass
class SpecTask:
    id: str
    title: str
    description: str = ""
    category: str = "general"
    status: str = "pending"
    file: Optional[str] = None
    requirement_ids: List[str] = field(default_factory=list)
    depends_on: List[str] = field(default_factory=list)
    size: Optional[str] = None  # small | medium | large

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SpecTask":
        # Model output uses camelCase keys as often as snake_case
        status = data.get("status") or "pending"
        return cls(
            id=str(data.get("id", "")),
            title=str(data.get("title", "")),
            description=str(data.get("description", "")),
            category=data.get("category") or "general",
            status=status if status in TASK_STATUSES else "pending",
            file=data.get("file") or None,
            requirement_ids=list(data.get("requirement_ids", data.get("requirementIds")) or []),
            depends_on=list(data.get("depends_on", data.get("dependsOn")) or []),
            size=data.get("size"),
        )


@dataclass
class Spec:
    id: str
    title: str
    description: str = ""
    status: str = "draft"
    created_at: str = ""
    updated_at: str = ""
    requirements: List[Requirement] = field(default_factory=list)
    design: List[DesignDecision] = field(default_factory=list)
    tasks: List[SpecTask] = field(default_factory=list)
    references: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Spec":
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            status=data.get("status", "draft"),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
            requirements=[Requirement.from_dict(r) for r in data.get("requirements", [])],
            design=[DesignDecision.from_dict(d) for d in data.get("design", [])],
            tasks=[SpecTask.from_dict(t) for t in data.get("tasks", [])],
            references=list(data.get("references") or []),
        )

    def task(self, task_id: str) -> Optional[SpecTask]:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    def pending_tasks(self) -> List[SpecTask]:
        return [t for t in self.tasks if t.status == "pending"]


# ---------------------------------------------------------------------------
# File references
# ---------------------------------------------------------------------------

@dataclass
class FileReference:
    pattern: str
    path: str
    content: Optional[str] = None


def _read_reference(root: str, path: str) -> Optional[str]:
    full = path if os.path.isabs(path) else os.path.join(root, path)
    if not os.path.isfile(full):
        return None
    with open(full, "r", encoding="utf-8", errors="replace") as f:
        return f.read()


def parse_file_references(content: str, root: str) -> List[FileReference]:
    refs = []
    for m in _FILE_REF.finditer(content or ""):
        path = m.group(1).strip()
        refs.append(FileReference(pattern=m.group(0), path=path, content=_read_reference(root, path)))
    return refs


def _fence_lang(path: str) -> str:
    return os.path.splitext(path)[1].lstrip(".") or "txt"


def expand_file_references(content: str, root: str) -> str:
    """Replace each marker with the file in a fenced block, or a not-found note."""
    expanded = content
    for ref in parse_file_references(content, root):
        if ref.content:
            replacement = f"\n```{_fence_lang(ref.path)}\n// {ref.path}\n{ref.content}\n```\n"
        else:
            replacement = f"[File not found: {ref.path}]"
        expanded = expanded.replace(ref.pattern, replacement, 1)
    return expanded


def get_spec_references(spec: Spec, root: str) -> List[FileReference]:
    """References found anywhere in the spec text."""
    text = "\n".join(
        [spec.description]
        + [r.description + " " + " ".join(r.acceptance) for r in spec.requirements]
        + [d.description + " " + d.rationale for d in spec.design]
        + [t.description for t in spec.tasks]
    )
    return parse_file_references(text, root)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def _now_iso() -> str:
    return datetime.now().isoformat()


def _spec_path(root: str, spec_id: str, ext: str) -> str:
    return os.path.join(specs_dir(root), f"{spec_id}.{ext}")


def _write_atomic(path: str, text: str) -> None:
    tmp_path = path + ".tmp"
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp_path, path)
    except Exception:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def save_spec(root: str, spec: Spec) -> str:
    """Write both renderings; bumps updated_at. Returns the JSON path."""
    os.makedirs(specs_dir(root), exist_ok=True)
    spec.updated_at = _now_iso()
    path = _spec_path(root, spec.id, "json")
    _write_atomic(path, json.dumps(asdict(spec), indent=2, ensure_ascii=False))
    _write_atomic(_spec_path(root, spec.id, "md"), render_markdown(spec))
    logger.info(f"Spec saved: {path}")
    return path


def create_spec(root: str, title: str, description: str = "") -> Spec:
    now = _now_iso()
    stamp = int(time.time() * 1000)
    while os.path.exists(_spec_path(root, f"spec_{stamp}", "json")):
        stamp += 1
    spec = Spec(
        id=f"spec_{stamp}",
        title=title,
        description=description,
        created_at=now,
        updated_at=now,
        references=[r.path for r in parse_file_references(description, root)],
    )
    save_spec(root, spec)
    return spec


def load_spec(root: str, spec_id: str) -> Optional[Spec]:
    path = _spec_path(root, spec_id, "json")
    if not os.path.isfile(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return Spec.from_dict(json.load(f))
    except (json.JSONDecodeError, KeyError, TypeError) as e:
        logger.warning(f"Failed to read spec {path}: {e}")
        return None


def list_specs(root: str) -> List[Spec]:
    """All readable specs, most recently updated first."""
    directory = specs_dir(root)
    if not os.path.isdir(directory):
        return []
    specs = []
    for fname in os.listdir(directory):
        if fname.endswith(".json"):
            spec = load_spec(root, fname[:-5])
            if spec:
                specs.append(spec)
    specs.sort(key=lambda s: s.updated_at or "", reverse=True)
    return specs


def get_active_spec(root: str) -> Optional[Spec]:
    """Most recently updated spec that is not done."""
    for spec in list_specs(root):
        if spec.status != "done":
            return spec
    return None


def apply_task_status(spec: Spec, task_id: str, status: str) -> bool:
    """Set one task's status and recompute the spec status. False if the task is unknown."""
    if status not in TASK_STATUSES:
        raise ValueError(f"Unknown task status: {status}")
    task = spec.task(task_id)
    if task is None:
        return False
    task.status = status
    refresh_spec_status(spec)
    return True


def refresh_spec_status(spec: Spec) -> None:
    if spec.tasks and all(t.status in ("done", "skipped") for t in spec.tasks):
        spec.status = "done"
    elif any(t.status == "in-progress" for t in spec.tasks):
        spec.status = "implementing"


def update_task_status(root: str, spec_id: str, task_id: str, status: str) -> Optional[Spec]:
    """Load, update and save. None if the spec does not exist."""
    spec = load_spec(root, spec_id)
    if spec is None:
        return None
    if apply_task_status(spec, task_id, status):
        save_spec(root, spec)
    return spec


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def _by_category(items: List[Any]) -> Dict[str, List[Any]]:
    groups: Dict[str, List[Any]] = {}
    for item in items:
        groups.setdefault(item.category or "general", []).append(item)
    return groups


def render_markdown(spec: Spec) -> str:
    lines = [f"# {spec.title}", ""]
    if spec.description:
        lines += [f"> {spec.description}", ""]
    lines += [f"**Status:** {spec.status} | **Updated:** {spec.updated_at}", "", "---", ""]

    lines += ["## Requirements", ""]
    if not spec.requirements:
        lines += ["_No requirements defined yet_", ""]
    for category, reqs in _by_category(spec.requirements).items():
        lines += [f"### {category.upper()}", ""]
        for req in reqs:
            lines += [f"#### {req.id}: {req.description} [{req.priority}]", "", "**Acceptance Criteria:**"]
            lines += [f"- [ ] {ac}" for ac in req.acceptance]
            lines.append("")

    lines += ["## Design", ""]
    if not spec.design:
        lines += ["_No design decisions yet_", ""]
    for category, decisions in _by_category(spec.design).items():
        lines += [f"### {category.upper()}", ""]
        for d in decisions:
            lines += [f"#### {d.id}: {d.component}", "", d.description, "", f"**Rationale:** {d.rationale}", ""]
            if d.alternatives:
                lines += [f"**Alternatives considered:** {d.alternatives}", ""]

    lines += ["## Tasks", ""]
    if not spec.tasks:
        lines += ["_No tasks defined yet_", ""]
    for category, tasks in _by_category(spec.tasks).items():
        lines += [f"### {category.upper()}", ""]
        for t in tasks:
            checkbox = "[x]" if t.status == "done" else "[ ]"
            size = f" ({t.size})" if t.size else ""
            lines.append(f"- {checkbox} **{t.id}:** {t.title} _{t.status}_{size}")
            if t.description:
                lines.append(f"  - {t.description}")
            if t.file:
                lines.append(f"  - File: `{t.file}`")
            if t.depends_on:
                lines.append(f"  - Depends on: {', '.join(t.depends_on)}")
            lines.append("")
    return "\n".join(lines)


_TASK_MARKS = {"done": "✓", "in-progress": "→", "skipped": "-"}


def format_spec(spec: Spec) -> str:
    lines = [f"{spec.title} [{spec.status}]  ({spec.id})"]
    if spec.description:
        lines.append(f"  {spec.description}")
    if spec.requirements:
        lines += ["", f"Requirements ({len(spec.requirements)}):"]
        lines += [f"  • {r.id}: {r.description}" for r in spec.requirements]
    if spec.design:
        lines += ["", f"Design ({len(spec.design)}):"]
        lines += [f"  • {d.component}: {d.description[:50]}..." for d in spec.design]
    if spec.tasks:
        done = sum(1 for t in spec.tasks if t.status == "done")
        lines += ["", f"Tasks ({done}/{len(spec.tasks)}):"]
        lines += [f"  {_TASK_MARKS.get(t.status, '○')} {t.id}: {t.title}" for t in spec.tasks]
    return "\n".join(lines)


def format_specs_list(specs: List[Spec]) -> str:
    if not specs:
        return "No specs yet. Create one with /spec new <title>."
    lines = ["Specs:", ""]
    for spec in specs:
        line = f"{spec.title} [{spec.status}]"
        if spec.tasks:
            done = sum(1 for t in spec.tasks if t.status == "done")
            line += f" ({done}/{len(spec.tasks)} tasks)"
        lines += [line, f"   ID: {spec.id}", ""]
    return "\n".join(lines).rstrip()


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

def requirements_prompt(spec: Spec, root: str, codebase_context: str = "") -> str:
    refs = []
    for path in spec.references:
        content = _read_reference(root, path)
        if content is not None:
            refs.append(f"### Referenced: {path}\n```{_fence_lang(path)}\n{content[:REFERENCE_PROMPT_CHARS]}\n```")
    references = "\n## Referenced Files\n" + "\n".join(refs) + "\n" if refs else ""
    description = expand_file_references(spec.description, root)
    return f"""You are a senior software architect with years of production experience.

PROJECT: {spec.title}
DESCRIPTION: {description}
{references}
{codebase_context}

Write a complete requirements analysis for this project. Cover everything a production application needs: users and authentication, security, user experience, performance, data management, integrations, administration, deployment and operations. Leave out areas that clearly do not apply.

For each requirement give a clear, measurable description, detailed acceptance criteria and a priority (P0 critical, P1 important, P2 nice-to-have).

Return JSON in this shape:
{{
  "requirements": [
    {{
      "id": "REQ-1",
      "category": "auth",
      "priority": "P0",
      "description": "Users can sign up with email and password",
      "acceptance": ["Email format is validated", "Duplicate emails are rejected"]
    }}
  ]
}}

Return only JSON."""


def design_prompt(spec: Spec, codebase_context: str = "") -> str:
    reqs = "\n".join(f"- [{r.id}] {r.description}" for r in spec.requirements)
    return f"""You are a senior software architect.

PROJECT: {spec.title}

REQUIREMENTS:
{reqs}

{codebase_context}

Write the technical design that satisfies these requirements: architecture, folder layout, components, data flow, security and UI approach. Every requirement must be covered by at least one decision.

For each decision give the component or module name, a detailed description, the rationale, and the alternatives considered.

Return JSON in this shape:
{{
  "design": [
    {{
      "id": "DES-1",
      "category": "architecture",
      "component": "AuthContext",
      "description": "React context holding the signed-in user and login/logout actions",
      "rationale": "Small app; context with a reducer avoids a state library",
      "alternatives": "Redux Toolkit, Zustand"
    }}
  ]
}}

Return only JSON."""


def tasks_prompt(spec: Spec, codebase_context: str = "") -> str:
    reqs = "\n".join(f"- [{r.id}] {r.description}" for r in spec.requirements)
    design = "\n".join(f"- [{d.id}] {d.component}: {d.description[:DESIGN_SUMMARY_CHARS]}..." for d in spec.design)
    return f"""You are a tech lead splitting a project into implementation tasks.

PROJECT: {spec.title}

REQUIREMENTS:
{reqs}

DESIGN DECISIONS:
{design}

{codebase_context}

Break the design into tasks that each fit in one pull request, have clear dependencies and can be checked on their own. Order them so setup comes first and polish last.

For each task give a title, a detailed description, the file(s) involved, the requirements it covers, the tasks it depends on and a size (small, medium or large).

Return JSON in this shape:
{{
  "tasks": [
    {{
      "id": "TASK-1",
      "category": "setup",
      "title": "Project setup",
      "description": "Create a Vite + React + TypeScript project and the src/ folder layout",
      "file": "package.json, vite.config.ts",
      "requirement_ids": [],
      "depends_on": [],
      "size": "medium"
    }}
  ]
}}

Return only JSON."""


def implement_prompt(spec: Spec, task: SpecTask, codebase_context: str = "") -> str:
    related_reqs = [r for r in spec.requirements if r.id in task.requirement_ids]
    description = task.description.lower()
    related_design = [d for d in spec.design if d.component and d.component.lower() in description]
    reqs = "\n".join(f"- {r.description}\n  Acceptance: {', '.join(r.acceptance)}" for r in related_reqs)
    design = "\n".join(f"- {d.component}: {d.description}" for d in related_design)
    return f"""Implement this task:

TASK: {task.title}
DESCRIPTION: {task.description}
FILE: {task.file or "not specified"}

RELATED REQUIREMENTS:
{reqs or "(none)"}

RELATED DESIGN:
{design or "(none)"}

{codebase_context}

Write the code and save it with write_file."""


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------

_STAGES = {
    "requirements": ("requirements", Requirement.from_dict),
    "design": ("design", DesignDecision.from_dict),
    "tasks": ("tasks", SpecTask.from_dict),
}


def parse_stage(stage: str, text: str) -> List[Any]:
    """Items of one stage from a model response. Raises PlanParseError."""
    key, factory = _STAGES[stage]
    data = extract_json_object(text)
    items = data.get(key)
    if not isinstance(items, list) or not items:
        raise PlanParseError(f"Response has no {key}")
    parsed = [factory(item) for item in items if isinstance(item, dict)]
    if stage == "tasks":
        for t in parsed:
            t.status = "pending"
    return parsed


class SpecWorkflow:
    """Drives stage generation and task implementation for specs of one project."""

    def __init__(
        self,
        root: str,
        service: BedrockService,
        executor: ToolExecutor,
        runner: Optional[AgentRunner] = None,
        on_event: Optional[EventCallback] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.root = os.path.abspath(root)
        self.service = service
        self.executor = executor
        self.on_event = on_event
        self.sleep = sleep
        self.runner = runner or AgentRunner(service, executor, on_event=on_event, sleep=sleep)

    async def _ask(self, prompt: str) -> str:
        result = await run_tool_loop(
            self.service, self.executor, [{"role": "user", "content": prompt}],
            tools=[], max_iterations=0, on_event=self.on_event, sleep=self.sleep,
        )
        return result.text

    async def _generate(self, spec: Spec, stage: str, prompt: str) -> Spec:
        items = parse_stage(stage, await self._ask(prompt))
        setattr(spec, stage, items)
        spec.status = stage
        save_spec(self.root, spec)
        logger.info(f"Spec {spec.id}: generated {len(items)} {stage}")
        return spec

    async def generate_requirements(self, spec: Spec, codebase_context: str = "") -> Spec:
        return await self._generate(spec, "requirements", requirements_prompt(spec, self.root, codebase_context))

    async def generate_design(self, spec: Spec, codebase_context: str = "") -> Spec:
        if not spec.requirements:
            raise SpecStageError("Generate requirements first: /spec requirements")
        return await self._generate(spec, "design", design_prompt(spec, codebase_context))

    async def generate_tasks(self, spec: Spec, codebase_context: str = "") -> Spec:
        if not spec.design:
            raise SpecStageError("Generate the design first: /spec design")
        return await self._generate(spec, "tasks", tasks_prompt(spec, codebase_context))

    async def implement_next(self, spec: Spec, codebase_context: str = "") -> Optional[SpecTask]:
        """Implement the first pending task. Returns it, or None when nothing is pending.

        A failed model exchange puts the task back to pending and re-raises.
        """
        if not spec.tasks:
            raise SpecStageError("Generate tasks first: /spec tasks")
        pending = spec.pending_tasks()
        if not pending:
            return None
        task = pending[0]
        apply_task_status(spec, task.id, "in-progress")
        save_spec(self.root, spec)
        await emit(self.on_event, "step_start", f"Implementing {task.id}: {task.title}", task_id=task.id)
        try:
            await run_tool_loop(
                self.service, self.executor,
                [{"role": "user", "content": implement_prompt(spec, task, codebase_context)}],
                system_prompt=build_system_prompt(self.root),
                max_iterations=app_config.max_tool_iterations,
                on_event=self.on_event, sleep=self.sleep,
            )
        except Exception:
            apply_task_status(spec, task.id, "pending")
            save_spec(self.root, spec)
            raise
        apply_task_status(spec, task.id, "done")
        save_spec(self.root, spec)
        await emit(self.on_event, "step_done", f"Task completed: {task.title}", task_id=task.id)
        return task

    def references_context(self, spec: Spec) -> str:
        refs = [r for r in get_spec_references(spec, self.root) if r.content]
        if not refs:
            return ""
        return "\n\n## Referenced Files:\n" + "\n".join(
            f"### {r.path}\n```\n{r.content[:REFERENCE_AUTO_CHARS]}\n```" for r in refs
        )

    async def run_auto(self, spec: Spec, codebase_context: str = "") -> AgentPlan:
        """Run every pending task as one agent plan, then write step outcomes back.

        done steps mark their task done, failed steps put it back to pending so
        the next run retries it; other outcomes leave the task as it was.
        """
        if not spec.tasks:
            raise SpecStageError("Generate tasks first: /spec tasks")
        plan = await self.runner.run_agent_from_spec(spec, codebase_context + self.references_context(spec))
        for step in plan.steps:
            if step.task_id is None or spec.task(step.task_id) is None:
                continue
            if step.status == "done":
                apply_task_status(spec, step.task_id, "done")
            elif step.status == "failed":
                logger.info(f"Task {step.task_id} failed ({step.error}); back to pending")
                apply_task_status(spec, step.task_id, "pending")
        save_spec(self.root, spec)
        return plan

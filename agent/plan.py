"""
Agent plan data types and parsing of plans returned by the model.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from config import app_config

logger = logging.getLogger(__name__)

STEP_STATUSES = ("pending", "running", "done", "failed", "skipped")
PLAN_STATUSES = ("planning", "executing", "fixing", "done", "failed")


class PlanParseError(ValueError):
    """Model output did not contain the structured data that was asked for."""


@dataclass
class AgentConfig:
    max_retries: int = app_config.agent_max_retries
    max_total_retries: int = app_config.agent_max_total_retries
    auto_fix: bool = app_config.agent_auto_fix
    verbose: bool = True
    step_iterations: int = app_config.max_tool_iterations
    fix_iterations: int = app_config.max_fix_iterations


@dataclass
class AgentStep:
    id: int
    description: str
    status: str = "pending"
    result: Optional[str] = None
    error: Optional[str] = None
    retries: int = 0
    task_id: Optional[str] = None  # spec task this step implements


@dataclass
class AgentPlan:
    goal: str
    steps: List[AgentStep] = field(default_factory=list)
    status: str = "planning"
    started_at: str = field(default_factory=lambda: datetime.now().isoformat())
    completed_at: Optional[str] = None
    total_retries: int = 0
    max_retries: int = app_config.agent_max_total_retries

    def count(self, status: str) -> int:
        return sum(1 for s in self.steps if s.status == status)

    @property
    def duration_seconds(self) -> int:
        if not self.completed_at:
            return 0
        delta = datetime.fromisoformat(self.completed_at) - datetime.fromisoformat(self.started_at)
        return round(delta.total_seconds())


def extract_json_object(text: str) -> Dict[str, Any]:
    """Parse the span from the first '{' to the last '}' of text."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise PlanParseError("No JSON object found in model response")
    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise PlanParseError(f"Invalid JSON in model response: {e}")
    if not isinstance(data, dict):
        raise PlanParseError("Model response JSON is not an object")
    return data


def parse_plan(text: str) -> List[AgentStep]:
    """Steps from a `{"steps": [{"id", "description"}, ...]}` response."""
    data = extract_json_object(text)
    raw_steps = data.get("steps")
    if not isinstance(raw_steps, list) or not raw_steps:
        raise PlanParseError("Plan has no steps")
    steps = []
    for i, raw in enumerate(raw_steps):
        if not isinstance(raw, dict) or not str(raw.get("description", "")).strip():
            raise PlanParseError(f"Step {i + 1} has no description")
        try:
            step_id = int(raw.get("id", i + 1))
        except (TypeError, ValueError):
            step_id = i + 1
        steps.append(AgentStep(id=step_id, description=str(raw["description"]).strip()))
    return steps


_STEP_MARKS = {"done": "✓", "running": "→", "failed": "✗", "skipped": "-"}


def format_plan(plan: AgentPlan) -> str:
    lines = ["Plan:"]
    for step in plan.steps:
        lines.append(f"  {_STEP_MARKS.get(step.status, '○')} {step.id}. {step.description}")
    return "\n".join(lines)


def format_summary(plan: AgentPlan) -> str:
    done = plan.count("done")
    failed = plan.count("failed")
    lines = [
        "Agent Summary",
        f"Goal: {plan.goal}",
        f"Status: {'completed' if plan.status == 'done' else 'failed'}",
        f"Steps: {done}/{len(plan.steps)} ({failed} failed)",
        f"Retries: {plan.total_retries}",
        f"Duration: {plan.duration_seconds}s",
    ]
    failed_steps = [s for s in plan.steps if s.status == "failed"]
    if failed_steps:
        lines.append("")
        lines.append("Failed steps:")
        for step in failed_steps:
            lines.append(f"  ✗ {step.id}. {step.description}")
            if step.error:
                lines.append(f"    {step.error}")
    return "\n".join(lines)

"""
Autonomous agent mode: plan a goal, execute the steps, check diagnostics, fix.

Each model exchange (plan, step, fix) opens its own short conversation; none
of them touch the chat history of the session.
"""

import asyncio
import logging
import os
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional

from bedrock_service import BedrockService
from diagnostics import (
    DiagnosticsProvider, DiagnosticsResult, TypeScriptDiagnosticsProvider, filter_actionable,
    format_diagnostics,
)
from tools.dispatch import ToolExecutor

from .events import EventCallback, emit
from .loop import run_tool_loop
from .plan import AgentConfig, AgentPlan, AgentStep, format_plan, format_summary, parse_plan
from .prompts import AGENT_SYSTEM_PROMPT, fix_errors_prompt, plan_prompt, step_prompt

logger = logging.getLogger(__name__)

MAX_FIX_FILES = 10
_TS_EXTENSIONS = (".ts", ".tsx")


def collect_typescript_files(root: str) -> List[str]:
    """Relative .ts/.tsx paths under src/ (recursive) followed by those at the root."""
    files = []
    src = os.path.join(root, "src")
    if os.path.isdir(src):
        for dirpath, dirnames, filenames in os.walk(src):
            dirnames[:] = sorted(d for d in dirnames if d != "node_modules")
            for name in sorted(filenames):
                if name.endswith(_TS_EXTENSIONS):
                    files.append(os.path.relpath(os.path.join(dirpath, name), root))
    for name in sorted(os.listdir(root)):
        if name.endswith(_TS_EXTENSIONS) and os.path.isfile(os.path.join(root, name)):
            files.append(name)
    return files


class AgentRunner:
    """Runs plans against one session's tool executor."""

    def __init__(
        self,
        service: BedrockService,
        executor: ToolExecutor,
        diagnostics: Optional[DiagnosticsProvider] = None,
        config: Optional[AgentConfig] = None,
        on_event: Optional[EventCallback] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.service = service
        self.executor = executor
        self.config = config or AgentConfig()
        self.on_event = on_event
        self.sleep = sleep
        self.root = executor.ctx.root
        self.diagnostics = diagnostics or executor.ctx.diagnostics or TypeScriptDiagnosticsProvider(self.root)

    async def _emit(self, type: str, content: str = "", **data: Any) -> None:
        await emit(self.on_event, type, content, **data)

    async def _tool_loop(self, prompt: str, max_iterations: int, tools: Optional[list] = None):
        return await run_tool_loop(
            self.service, self.executor,
            [{"role": "user", "content": prompt}],
            system_prompt=AGENT_SYSTEM_PROMPT,
            tools=tools,
            max_iterations=max_iterations,
            on_event=self.on_event if self.config.verbose else None,
            sleep=self.sleep,
        )

    async def create_plan(self, goal: str, codebase_context: str = "") -> List[AgentStep]:
        """Ask the model for a JSON plan. Raises PlanParseError on unusable output."""
        result = await self._tool_loop(plan_prompt(goal, codebase_context), max_iterations=0, tools=[])
        return parse_plan(result.text)

    async def execute_step(self, step: AgentStep, plan: AgentPlan, codebase_context: str = "") -> str:
        previous = "\n".join(f"✓ {s.description}" for s in plan.steps if s.status == "done")
        prompt = step_prompt(plan.goal, step.description, previous, codebase_context)
        result = await self._tool_loop(prompt, max_iterations=self.config.step_iterations)
        return result.text or "Step completed"

    async def check_and_fix(self, plan: Optional[AgentPlan] = None, codebase_context: str = "",
                            skip_dependency_errors: bool = True) -> bool:
        """Run diagnostics over the project's TypeScript files; ask the model to fix real errors.

        Returns True when errors were found and a fix round ran.
        """
        files = collect_typescript_files(self.root)[:MAX_FIX_FILES]
        if not files:
            return False

        loop = asyncio.get_running_loop()
        diags = await loop.run_in_executor(None, self.diagnostics.check, files)
        actionable = filter_actionable(diags, skip_dependency_errors=skip_dependency_errors)
        result = DiagnosticsResult(diagnostics=actionable, files_checked=len(files))
        if not result.has_errors:
            return False

        if plan is not None:
            plan.status = "fixing"
        report = format_diagnostics(result)
        await self._emit("fix", f"Errors found, fixing: {result.summary}", errors=result.errors)
        try:
            await self._tool_loop(fix_errors_prompt(report, codebase_context),
                                  max_iterations=self.config.fix_iterations)
        except Exception as e:
            logger.exception("Fix round failed")
            await self._emit("error", f"Fix round failed: {e}")
            return False
        return True

    async def execute_plan(self, plan: AgentPlan, codebase_context: str = "") -> AgentPlan:
        """Execute pending steps in order with per-step and plan-wide retry caps."""
        cfg = self.config
        plan.status = "executing"
        total = len(plan.steps)
        i = 0
        while i < total:
            step = plan.steps[i]
            is_last = i == total - 1
            if step.status in ("done", "skipped"):
                i += 1
                continue

            step.status = "running"
            await self._emit("step_start", step.description, step_id=step.id, total=total)
            try:
                step.result = await self.execute_step(step, plan, codebase_context)
                step.status = "done"
                await self._emit("step_done", f"Step {step.id} completed", step_id=step.id)
                if cfg.auto_fix and is_last:
                    if await self.check_and_fix(plan, codebase_context, skip_dependency_errors=False):
                        plan.total_retries += 1
                        await self._emit("fix", "Errors fixed")
            except Exception as e:
                logger.warning(f"Step {step.id} failed: {e}")
                step.error = str(e)
                step.retries += 1
                plan.total_retries += 1
                if step.retries < cfg.max_retries and plan.total_retries < cfg.max_total_retries:
                    await self._emit("step_retry", f"Step {step.id} error: {e}. Retry {step.retries}/{cfg.max_retries}",
                                     step_id=step.id, retries=step.retries)
                    continue  # same index: retry this step
                step.status = "failed"
                await self._emit("step_failed", f"Step {step.id} failed: {e}", step_id=step.id)
                if plan.total_retries >= cfg.max_total_retries:
                    await self._emit("error", "Max retry limit reached")
                    plan.status = "failed"
                    break
            i += 1

        all_done = all(s.status in ("done", "skipped") for s in plan.steps)
        plan.status = "done" if all_done else "failed"
        plan.completed_at = datetime.now().isoformat()
        await self._emit("summary", format_summary(plan), status=plan.status)
        return plan

    async def run_agent_mode(self, goal: str, codebase_context: str = "") -> AgentPlan:
        """Plan and execute goal. Always returns the plan; failures end in status 'failed'."""
        plan = AgentPlan(goal=goal, max_retries=self.config.max_total_retries)
        try:
            plan.steps = await self.create_plan(goal, codebase_context)
        except Exception as e:
            logger.exception("Agent planning failed")
            plan.status = "failed"
            plan.completed_at = datetime.now().isoformat()
            await self._emit("error", f"Agent failed: {e}")
            return plan
        await self._emit("plan", format_plan(plan), steps=len(plan.steps))
        return await self.execute_plan(plan, codebase_context)

    async def run_agent_from_spec(self, spec: Any, codebase_context: str = "") -> AgentPlan:
        """Run the spec's pending tasks as a ready-made plan (no planning call).

        Each step remembers the id of its task so results can be written back.
        """
        pending = [t for t in spec.tasks if t.status == "pending"]
        plan = AgentPlan(goal=spec.title, max_retries=self.config.max_total_retries)
        plan.steps = [
            AgentStep(id=i + 1, description=f"{t.title}: {t.description}", task_id=t.id)
            for i, t in enumerate(pending)
        ]
        if not plan.steps:
            plan.status = "done"
            plan.completed_at = datetime.now().isoformat()
            return plan
        await self._emit("plan", format_plan(plan), steps=len(plan.steps))
        return await self.execute_plan(plan, codebase_context)

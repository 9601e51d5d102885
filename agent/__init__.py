"""
Agent package - plan/execute/fix orchestration on top of the tool loop.

- events: AgentEvent and the async callback type used for progress
- plan: AgentConfig, AgentStep, AgentPlan, plan parsing and summaries
- prompts: System prompt composition and agent prompt templates
- loop: Counter-bounded model/tool-call loop
- runner: AgentRunner (create_plan, execute_step, check_and_fix, execute_plan)
- history: Conversation history budgeting
"""

from .events import AgentEvent, EventCallback
from .history import optimize_history
from .loop import LoopState, ToolLoopResult, run_tool_loop
from .plan import AgentConfig, AgentPlan, AgentStep, PlanParseError, format_plan, format_summary, parse_plan
from .prompts import build_system_prompt
from .runner import AgentRunner

__all__ = [
    "AgentEvent",
    "EventCallback",
    "optimize_history",
    "LoopState",
    "ToolLoopResult",
    "run_tool_loop",
    "AgentConfig",
    "AgentPlan",
    "AgentStep",
    "PlanParseError",
    "format_plan",
    "format_summary",
    "parse_plan",
    "build_system_prompt",
    "AgentRunner",
]

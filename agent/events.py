"""
Agent event data type and the callback signature used to report progress.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional


@dataclass
class AgentEvent:
    """Event emitted during agent execution"""
    type: str  # plan, step_start, step_done, step_failed, step_retry, tool_call, tool_result, retry, fix, summary, error
    content: str = ""
    data: Optional[Dict[str, Any]] = None


EventCallback = Callable[[AgentEvent], Awaitable[None]]


async def emit(on_event: Optional[EventCallback], type: str, content: str = "", **data: Any) -> None:
    """Send an event if anyone is listening."""
    if on_event is not None:
        await on_event(AgentEvent(type=type, content=content, data=data or None))

"""
Bounded tool-call loop shared by chat, agent steps, fixes and spec tasks.

The loop alternates between two states until the model stops asking for
tools or the iteration cap is reached:

    AWAITING_MODEL -> EXECUTING_TOOLS -> AWAITING_MODEL -> ... -> DONE

One iteration is one round of tool execution followed by the model call
that receives its results.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from bedrock_service import BedrockService, GenerationConfig, GenerationResult
from retry import call_model_with_retry, describe_retry
from tools.dispatch import ToolExecutor
from tools.schemas import TOOL_DEFINITIONS

from .events import EventCallback, emit

logger = logging.getLogger(__name__)

MAX_TOOL_RESULT_CHARS = 20000
RESULT_PREVIEW_LINES = 3


class LoopState(Enum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"


@dataclass
class ToolLoopResult:
    text: str
    iterations: int
    messages: List[Dict[str, Any]] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    hit_limit: bool = False


def assistant_message(result: GenerationResult) -> Dict[str, Any]:
    """The model turn as it goes back into history."""
    blocks = list(result.content_blocks)
    if not blocks:
        blocks = [{"type": "text", "text": result.content or "(no content)"}]
    return {"role": "assistant", "content": blocks}


def _cap(text: str) -> str:
    if len(text) <= MAX_TOOL_RESULT_CHARS:
        return text
    return text[:MAX_TOOL_RESULT_CHARS] + "\n... (output truncated)"


def _preview(text: str) -> str:
    lines = text.split("\n")
    if len(lines) <= RESULT_PREVIEW_LINES:
        return text
    return lines[0]


async def run_tool_loop(
    service: BedrockService,
    executor: ToolExecutor,
    messages: List[Dict[str, Any]],
    system_prompt: Optional[str] = None,
    tools: Optional[List[Dict[str, Any]]] = None,
    max_iterations: int = 10,
    on_event: Optional[EventCallback] = None,
    config: Optional[GenerationConfig] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> ToolLoopResult:
    """Call the model, run requested tools, feed results back; at most max_iterations rounds.

    `messages` is copied; the returned ToolLoopResult.messages holds the full
    exchange including the final assistant turn. Model errors that survive the
    retry wrapper propagate to the caller.
    """
    tools = TOOL_DEFINITIONS if tools is None else tools
    messages = list(messages)
    loop = asyncio.get_running_loop()
    pending_events: List["asyncio.Task[None]"] = []

    def on_retry(attempt: int, delay_ms: int, error: Exception) -> None:
        if on_event is not None:
            pending_events.append(loop.create_task(
                emit(on_event, "retry", describe_retry(attempt, delay_ms, error), attempt=attempt, delay_ms=delay_ms)
            ))

    async def call_model() -> GenerationResult:
        result = await call_model_with_retry(
            service, messages, system_prompt=system_prompt, tools=tools or None,
            config=config, on_retry=on_retry, sleep=sleep,
        )
        if pending_events:
            await asyncio.gather(*pending_events)
            pending_events.clear()
        return result

    input_tokens = 0
    output_tokens = 0
    iterations = 0
    state = LoopState.AWAITING_MODEL
    response: Optional[GenerationResult] = None

    while state != LoopState.DONE:
        if state == LoopState.AWAITING_MODEL:
            response = await call_model()
            input_tokens += response.input_tokens
            output_tokens += response.output_tokens
            messages.append(assistant_message(response))
            if not response.tool_uses or iterations >= max_iterations:
                state = LoopState.DONE
            else:
                state = LoopState.EXECUTING_TOOLS
            continue

        # EXECUTING_TOOLS
        calls = response.tool_uses
        for tu in calls:
            await emit(on_event, "tool_call", tu.name, tool_name=tu.name, tool_use_id=tu.id, input=tu.input)
        results = await executor.execute_many([(tu.name, tu.input) for tu in calls])

        result_blocks = []
        for tu, result in zip(calls, results):
            text = _cap(result.as_text())
            result_blocks.append({
                "type": "tool_result",
                "tool_use_id": tu.id,
                "content": text,
                "is_error": not result.success,
            })
            await emit(on_event, "tool_result", _preview(text),
                       tool_name=tu.name, tool_use_id=tu.id, success=result.success)
        messages.append({"role": "user", "content": result_blocks})
        iterations += 1
        state = LoopState.AWAITING_MODEL

    hit_limit = bool(response.tool_uses)
    if hit_limit:
        logger.warning(f"Tool loop stopped at iteration cap ({max_iterations}) with tool calls pending")
        # Unanswered tool_use blocks would make the history invalid for the next request
        messages[-1] = {"role": "assistant", "content": [{"type": "text", "text": response.content or "(stopped)"}]}
    return ToolLoopResult(
        text=response.content,
        iterations=iterations,
        messages=messages,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        hit_limit=hit_limit,
    )

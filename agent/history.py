"""
Conversation history budgeting.

Turns are Bedrock messages: {"role": "user"|"assistant", "content": str or
list of content blocks}. Only the text parts count towards the estimate.
"""

import logging
from typing import Any, Dict, List, Tuple

from token_budget import estimate_tokens

logger = logging.getLogger(__name__)

TURN_TRUNCATE_CHARS = 2000
TRUNCATION_MARKER = "\n... [truncated]"
SUMMARY_SNIPPET_CHARS = 200
DEDUP_KEY_CHARS = 500

Message = Dict[str, Any]


def message_text(msg: Message) -> str:
    """Concatenated text of a message (text blocks and tool result strings)."""
    content = msg.get("content", "")
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if not isinstance(block, dict):
            continue
        if block.get("type") == "text":
            parts.append(block.get("text", ""))
        elif block.get("type") == "tool_result" and isinstance(block.get("content"), str):
            parts.append(block["content"])
    return "\n".join(parts)


def message_tokens(msg: Message) -> int:
    return estimate_tokens(message_text(msg))


def truncate_message(msg: Message, cap: int = TURN_TRUNCATE_CHARS) -> Message:
    """Copy of msg with every text part cut to cap characters plus a marker."""
    def cut(text: str) -> str:
        return text if len(text) <= cap else text[:cap] + TRUNCATION_MARKER

    content = msg.get("content", "")
    if isinstance(content, str):
        return {**msg, "content": cut(content)}
    blocks = []
    for block in content or []:
        if isinstance(block, dict) and block.get("type") == "text":
            block = {**block, "text": cut(block.get("text", ""))}
        elif isinstance(block, dict) and block.get("type") == "tool_result" and isinstance(block.get("content"), str):
            block = {**block, "content": cut(block["content"])}
        blocks.append(block)
    return {**msg, "content": blocks}


def optimize_history(history: List[Message], max_tokens: int) -> List[Message]:
    """Fit history under max_tokens by keeping the newest turns.

    Keeps the longest suffix that fits. If that is fewer than two turns, the
    last two turns are kept anyway with their text truncated, so a non-empty
    history never comes back empty.
    """
    if not history:
        return []
    counts = [message_tokens(m) for m in history]
    total = sum(counts)
    if total <= max_tokens:
        return list(history)

    kept = 0
    used = 0
    for tokens in reversed(counts):
        if used + tokens > max_tokens:
            break
        used += tokens
        kept += 1

    if kept < 2:
        tail = [truncate_message(m) for m in history[-2:]]
        logger.info(f"History over budget ({total} tokens), forced last {len(tail)} turns")
        return tail

    logger.info(f"History optimized: {len(history)} -> {kept} turns ({used}/{total} tokens)")
    return list(history[-kept:])


def ensure_user_first(history: List[Message]) -> List[Message]:
    """Drop leading assistant turns; the model API needs a user turn first."""
    start = 0
    while start < len(history) - 1 and history[start].get("role") != "user":
        start += 1
    return list(history[start:])


def summarize_old_history(history: List[Message], keep_last: int = 10) -> Tuple[str, List[Message]]:
    """One-line summaries of everything but the last keep_last turns."""
    if len(history) <= keep_last:
        return "", list(history)
    old, recent = history[:-keep_last], history[-keep_last:]
    lines = ["## Earlier conversation", ""]
    for msg in old:
        text = message_text(msg)
        if len(text) > SUMMARY_SNIPPET_CHARS:
            text = text[:SUMMARY_SNIPPET_CHARS] + "..."
        role = "User" if msg.get("role") == "user" else "Assistant"
        lines.append(f"- {role}: {text.replace(chr(10), ' ')}")
    return "\n".join(lines) + "\n", list(recent)


def deduplicate_context(history: List[Message]) -> List[Message]:
    """Drop text parts whose first 500 characters were already seen."""
    seen = set()

    def fresh(text: str) -> bool:
        key = text[:DEDUP_KEY_CHARS]
        if key in seen:
            return False
        seen.add(key)
        return True

    result = []
    for msg in history:
        content = msg.get("content", "")
        if isinstance(content, str):
            if fresh(content):
                result.append(msg)
            continue
        blocks = [
            b for b in content or []
            if not (isinstance(b, dict) and b.get("type") == "text") or fresh(b.get("text", ""))
        ]
        if blocks:
            result.append({**msg, "content": blocks})
    return result


def truncate_file_content(content: str, max_lines: int = 100) -> str:
    """Keep the first 60% and the tail of an over-long file."""
    lines = content.split("\n")
    if len(lines) <= max_lines:
        return content
    keep_start = int(max_lines * 0.6)
    keep_end = max_lines - keep_start
    return "\n".join(
        lines[:keep_start]
        + [f"\n... ({len(lines) - max_lines} lines omitted) ...\n"]
        + lines[-keep_end:]
    )


def history_stats(history: List[Message], system_prompt: str = "") -> Dict[str, int]:
    history_tokens = sum(message_tokens(m) for m in history)
    system_tokens = estimate_tokens(system_prompt)
    return {
        "history_tokens": history_tokens,
        "system_tokens": system_tokens,
        "total_tokens": history_tokens + system_tokens,
        "message_count": len(history),
    }

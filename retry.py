"""
Retry with exponential backoff for transient Bedrock failures.

Errors are classified by their message text. Bedrock errors raised by
bedrock_service carry the HTTP status and AWS error code in the message, so
the same signatures cover throttling, 5xx responses, timeouts and resets.
"""

import asyncio
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from bedrock_service import BedrockService, GenerationConfig, GenerationResult
from config import app_config

logger = logging.getLogger(__name__)

RATE_LIMIT_SIGNATURES = (
    "429", "Too Many Requests", "ThrottlingException", "quota", "rate limit", "RESOURCE_EXHAUSTED",
)
TRANSIENT_SIGNATURES = (
    "500", "502", "503", "504", "UNAVAILABLE", "ServiceUnavailable", "InternalServerException",
    "INTERNAL", "ModelNotReadyException", "timeout", "timed out", "ECONNRESET", "ETIMEDOUT",
    "Connection reset",
)
SAFETY_BUFFER_MS = 1000

_RETRY_IN = re.compile(r"retry in (\d+(?:\.\d+)?)\s*s", re.IGNORECASE)
_RETRY_DELAY_JSON = re.compile(r'"retryDelay"\s*:\s*"(\d+)s"')


@dataclass
class RetryOptions:
    max_retries: int = app_config.retry_max_retries
    base_delay_ms: int = app_config.retry_base_delay_ms
    max_delay_ms: int = app_config.retry_max_delay_ms
    on_retry: Optional[Callable[[int, int, Exception], None]] = None
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep


def is_rate_limit_error(error: BaseException) -> bool:
    message = str(error)
    return any(sig in message for sig in RATE_LIMIT_SIGNATURES)


def is_retryable_error(error: BaseException) -> bool:
    if is_rate_limit_error(error):
        return True
    message = str(error)
    return any(sig in message for sig in TRANSIENT_SIGNATURES)


def parse_retry_delay(error: BaseException) -> Optional[int]:
    """Server-suggested wait in milliseconds, plus a safety buffer, if present."""
    message = str(error)
    m = _RETRY_IN.search(message)
    if m:
        return math.ceil(float(m.group(1)) * 1000) + SAFETY_BUFFER_MS
    m = _RETRY_DELAY_JSON.search(message)
    if m:
        return int(m.group(1)) * 1000 + SAFETY_BUFFER_MS
    return None


def backoff_delay(attempt: int, options: RetryOptions) -> int:
    return min(options.base_delay_ms * (2 ** (attempt - 1)), options.max_delay_ms)


async def with_retry(fn: Callable[[], Awaitable[Any]], options: Optional[RetryOptions] = None) -> Any:
    """Await fn(), retrying transient failures.

    Non-retryable errors propagate on the first attempt without any wait.
    After max_retries retries the last error is raised.
    """
    options = options or RetryOptions()
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except Exception as e:
            if attempt > options.max_retries or not is_retryable_error(e):
                raise
            delay = None
            if is_rate_limit_error(e):
                delay = parse_retry_delay(e)
            if delay is None:
                delay = backoff_delay(attempt, options)
            logger.warning(f"Retryable error (attempt {attempt}/{options.max_retries}), "
                           f"waiting {delay} ms: {e}")
            if options.on_retry:
                options.on_retry(attempt, delay, e)
            await options.sleep(delay / 1000)


def describe_retry(attempt: int, delay_ms: int, error: Exception, max_retries: int = app_config.retry_max_retries) -> str:
    """User-facing progress line for a retry."""
    seconds = round(delay_ms / 1000)
    if is_rate_limit_error(error):
        return f"Rate limited. Waiting {seconds}s... (attempt {attempt}/{max_retries})"
    return f"Model error, retrying in {seconds}s... (attempt {attempt}/{max_retries})"


async def call_model_with_retry(
    service: BedrockService,
    messages: List[Dict[str, Any]],
    system_prompt: Optional[str] = None,
    tools: Optional[List[Dict[str, Any]]] = None,
    config: Optional[GenerationConfig] = None,
    on_retry: Optional[Callable[[int, int, Exception], None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> GenerationResult:
    """generate_response in the default executor, wrapped in with_retry."""
    loop = asyncio.get_running_loop()

    async def attempt() -> GenerationResult:
        return await loop.run_in_executor(
            None,
            lambda: service.generate_response(
                messages=messages, system_prompt=system_prompt, config=config, tools=tools,
            ),
        )

    options = RetryOptions(max_delay_ms=app_config.model_retry_max_delay_ms, on_retry=on_retry, sleep=sleep)
    return await with_retry(attempt, options)

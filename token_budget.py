"""
Token estimation and budget allocation.

Token counts here are a length heuristic used only for relative budgeting;
real usage is read from the model response.
"""

import math
from dataclasses import dataclass, field
from typing import List, Optional


def estimate_tokens(text: str) -> int:
    """Approximate token count: one token per four characters, rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


@dataclass(frozen=True)
class TokenBudget:
    total: int = 100000
    system_prompt: int = 5000
    history: int = 30000
    active_files: int = 20000
    related_files: int = 30000
    dependencies: int = 15000


TOKEN_BUDGET = TokenBudget()

# Fixed priority bands for context candidates
PRIORITY_MENTIONED = 100
PRIORITY_PINNED = 95
PRIORITY_ACTIVE = 90
PRIORITY_SEMANTIC_BASE = 70
PRIORITY_SEMANTIC_SPAN = 20
PRIORITY_DEPENDENCY = 50


@dataclass
class ContextItem:
    """A candidate block of prompt context with its priority and cost."""
    type: str  # mentioned, pinned, active, semantic, dependency
    content: str
    priority: float
    tokens: int
    source: Optional[str] = None

    @classmethod
    def build(cls, type: str, content: str, priority: float,
              source: Optional[str] = None) -> "ContextItem":
        return cls(type=type, content=content, priority=priority,
                   tokens=estimate_tokens(content), source=source)


@dataclass
class BudgetAllocation:
    included: List[ContextItem] = field(default_factory=list)
    excluded: List[ContextItem] = field(default_factory=list)
    total_tokens: int = 0


def allocate_budget(items: List[ContextItem], max_tokens: int) -> BudgetAllocation:
    """Greedy fill by priority, highest first.

    An item that does not fit is excluded and evaluation continues with the
    next (lower priority) item. The included total never exceeds max_tokens.
    """
    result = BudgetAllocation()
    for item in sorted(items, key=lambda i: i.priority, reverse=True):
        if result.total_tokens + item.tokens <= max_tokens:
            result.included.append(item)
            result.total_tokens += item.tokens
        else:
            result.excluded.append(item)
    return result

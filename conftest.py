"""Shared fixtures: a scripted model service and a session wired to it."""

import copy
import itertools

import pytest

from bedrock_service import GenerationResult, ToolUseBlock
from session_context import create_session_context
from sessions import SessionStore


class FakeService:
    """Stands in for BedrockService. Replies are consumed in order."""

    model_id = "fake-model"

    def __init__(self):
        self.replies = []
        self.requests = []
        self._ids = itertools.count(1)

    def queue_text(self, text, input_tokens=10, output_tokens=5):
        self.replies.append(GenerationResult(
            content=text,
            content_blocks=[{"type": "text", "text": text}],
            stop_reason="end_turn",
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        ))

    def queue_tool(self, name, tool_input, text=""):
        tool_id = f"tu_{next(self._ids)}"
        blocks = [{"type": "text", "text": text}] if text else []
        blocks.append({"type": "tool_use", "id": tool_id, "name": name, "input": tool_input})
        self.replies.append(GenerationResult(
            content=text,
            tool_uses=[ToolUseBlock(id=tool_id, name=name, input=tool_input)],
            content_blocks=blocks,
            stop_reason="tool_use",
            input_tokens=10,
            output_tokens=5,
        ))
        return tool_id

    def queue_error(self, error):
        self.replies.append(error)

    def generate_response(self, messages, system_prompt=None, model_id=None, config=None, tools=None):
        self.requests.append({
            "messages": copy.deepcopy(messages),
            "system_prompt": system_prompt,
            "tools": tools,
        })
        if not self.replies:
            raise AssertionError("FakeService ran out of scripted replies")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def embed_texts(self, texts, input_type="search_document", model_id=None):
        return [[1.0, float(len(text) % 5), 0.5] for text in texts]


class FakeDiagnostics:
    """Returns the queued diagnostics batches, then nothing."""

    def __init__(self, *batches):
        self.batches = list(batches)
        self.checked = []

    def check(self, paths):
        self.checked.append(list(paths))
        return self.batches.pop(0) if self.batches else []


@pytest.fixture
def service():
    return FakeService()


@pytest.fixture
def diagnostics():
    return FakeDiagnostics()


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def session_ctx(tmp_path, project, service, diagnostics):
    store = SessionStore(str(tmp_path / "sessions"))
    ctx = create_session_context(str(project), service, store=store, diagnostics=diagnostics,
                                 skills_dir=str(tmp_path / "skills"))
    yield ctx
    ctx.processes.stop_all()

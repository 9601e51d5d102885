"""Tests for Bedrock request building and response parsing (no network)."""

import pytest
from botocore.exceptions import ClientError

from bedrock_service import (
    BedrockError, GenerationConfig, build_messages_body, describe_client_error, parse_messages_response,
)
from retry import is_rate_limit_error


def test_request_body_leaves_out_unset_keys():
    messages = [{"role": "user", "content": "hi"}]
    body = build_messages_body(messages, None, GenerationConfig(max_tokens=100, temperature=None))
    assert body == {"anthropic_version": "bedrock-2023-05-31", "max_tokens": 100, "messages": messages}

    tools = [{"name": "read_file", "description": "Read", "input_schema": {"type": "object"}}]
    body = build_messages_body(messages, "be brief", GenerationConfig(max_tokens=10, temperature=0.2), tools=tools)
    assert body["system"] == "be brief"
    assert body["temperature"] == 0.2
    assert body["tools"] == tools
    assert "tools" not in build_messages_body(messages, None, GenerationConfig(), tools=[])


def test_response_parsing():
    result = parse_messages_response({
        "content": [
            {"type": "text", "text": "Reading it. "},
            {"type": "tool_use", "id": "tu_1", "name": "read_file", "input": {"path": "a.ts"}},
            {"type": "thinking", "thinking": "..."},
        ],
        "stop_reason": "tool_use",
        "usage": {"input_tokens": 12, "output_tokens": 3},
    })
    assert result.content == "Reading it. "
    assert [(t.id, t.name, t.input) for t in result.tool_uses] == [("tu_1", "read_file", {"path": "a.ts"})]
    assert [b["type"] for b in result.content_blocks] == ["text", "tool_use"]
    assert (result.input_tokens, result.output_tokens, result.stop_reason) == (12, 3, "tool_use")

    with pytest.raises(BedrockError):
        parse_messages_response({"content": ["oops"]})


def test_client_errors_keep_status_and_code():
    error = ClientError(
        {"Error": {"Code": "ThrottlingException", "Message": "Too many tokens"},
         "ResponseMetadata": {"HTTPStatusCode": 429}},
        "InvokeModel",
    )
    message = describe_client_error(error)
    assert message == "Bedrock API error (429 ThrottlingException): Too many tokens"
    assert is_rate_limit_error(BedrockError(message))

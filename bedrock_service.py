"""
Amazon Bedrock service module.
Handles model invocations (messages + tool_use) and text embeddings.

Every failure surfaces as BedrockError. Client errors keep the HTTP status and
AWS error code in the message ("Bedrock API error (429 ThrottlingException):
...") so callers can classify them by text.
"""

import boto3
import json
import logging
from typing import List, Dict, Optional, Any
from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)
from dataclasses import dataclass, field
from config import aws_config, model_config, app_config


logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "bedrock-2023-05-31"
# Cohere Embed accepts at most 96 texts per call
EMBED_BATCH = 96
EMBED_TEXT_CHARS = 1500


class BedrockError(Exception):
    """Model or embedding call failed"""


@dataclass
class GenerationConfig:
    max_tokens: int = model_config.max_tokens
    temperature: Optional[float] = model_config.temperature
    stop_sequences: Optional[List[str]] = None


@dataclass
class ToolUseBlock:
    id: str = ""
    name: str = ""
    input: Dict = field(default_factory=dict)


@dataclass
class GenerationResult:
    """Text, tool calls and raw content blocks of one assistant turn"""
    content: str = ""
    tool_uses: List[ToolUseBlock] = field(default_factory=list)
    content_blocks: List[Dict] = field(default_factory=list)
    stop_reason: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0


def describe_client_error(e: ClientError) -> str:
    error = e.response.get("Error", {})
    status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode", "")
    label = f"{status} {error.get('Code', 'Unknown')}".strip()
    return f"Bedrock API error ({label}): {error.get('Message', str(e))}"


def build_messages_body(messages: List[Dict], system_prompt: Optional[str],
                        config: GenerationConfig, tools: Optional[List[Dict]] = None) -> Dict[str, Any]:
    """Anthropic messages payload; optional keys are left out when unset."""
    optional = {
        "system": system_prompt or None,
        "temperature": config.temperature,
        "stop_sequences": config.stop_sequences or None,
        "tools": tools or None,
    }
    body: Dict[str, Any] = {
        "anthropic_version": ANTHROPIC_VERSION,
        "max_tokens": config.max_tokens,
        "messages": messages,
    }
    body.update({k: v for k, v in optional.items() if v is not None})
    return body


def parse_messages_response(payload: Dict) -> GenerationResult:
    result = GenerationResult(stop_reason=payload.get("stop_reason"))
    usage = payload.get("usage") or {}
    result.input_tokens = usage.get("input_tokens", 0)
    result.output_tokens = usage.get("output_tokens", 0)
    for block in payload.get("content") or []:
        if not isinstance(block, dict):
            raise BedrockError(f"Unexpected content block in model response: {block!r}")
        kind = block.get("type")
        if kind == "text":
            result.content += block.get("text", "")
        elif kind == "tool_use":
            result.tool_uses.append(ToolUseBlock(
                id=block.get("id", ""), name=block.get("name", ""), input=block.get("input") or {},
            ))
        else:
            continue
        result.content_blocks.append(block)
    return result


class BedrockService:
    """
    Bedrock runtime client used both as the model service and the
    embedding service.
    """

    def __init__(self, model_id: Optional[str] = None, region: Optional[str] = None):
        self.model_id = model_id or model_config.model_id
        self.region = region or aws_config.region
        self.client = self._create_client()
        logger.info(f"BedrockService ready: model={self.model_id} region={self.region}")

    def _create_client(self) -> Any:
        kwargs: Dict[str, Any] = {"region_name": self.region}
        if aws_config.has_profile():
            kwargs["profile_name"] = aws_config.profile_name
        elif aws_config.has_explicit_credentials():
            kwargs["aws_access_key_id"] = aws_config.access_key_id
            kwargs["aws_secret_access_key"] = aws_config.secret_access_key
            if aws_config.has_session_token():
                kwargs["aws_session_token"] = aws_config.session_token
        try:
            return boto3.Session(**kwargs).client("bedrock-runtime")
        except NoCredentialsError:
            raise BedrockError("AWS credentials not configured.")
        except Exception as e:
            raise BedrockError(f"Failed to initialize Bedrock client: {e}")

    def _invoke(self, model_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """One invoke_model call; returns the decoded JSON body."""
        try:
            response = self.client.invoke_model(
                modelId=model_id,
                body=json.dumps(payload),
                contentType="application/json",
                accept="application/json",
            )
            return json.loads(response["body"].read())
        except ClientError as e:
            message = describe_client_error(e)
            logger.error(message)
            raise BedrockError(message)
        except (ReadTimeoutError, ConnectTimeoutError) as e:
            logger.error(f"Bedrock request timeout: {e}")
            raise BedrockError(f"Bedrock request timeout: {e}")
        except EndpointConnectionError as e:
            logger.error(f"Bedrock endpoint unavailable: {e}")
            raise BedrockError(f"Bedrock endpoint UNAVAILABLE: {e}")
        except ValueError as e:
            raise BedrockError(f"Bedrock returned invalid JSON: {e}")

    def generate_response(
        self,
        messages: List[Dict],
        system_prompt: Optional[str] = None,
        model_id: Optional[str] = None,
        config: Optional[GenerationConfig] = None,
        tools: Optional[List[Dict]] = None
    ) -> GenerationResult:
        """One non-streaming assistant turn. tools=None sends no tool config."""
        model = model_id or self.model_id
        body = build_messages_body(messages, system_prompt, config or GenerationConfig(), tools=tools)
        logger.info(f"Invoking {model}: {len(messages)} messages, {len(tools or [])} tools")
        return parse_messages_response(self._invoke(model, body))

    def embed_texts(
        self,
        texts: List[str],
        input_type: str = "search_document",
        model_id: Optional[str] = None,
    ) -> List[List[float]]:
        """Embed texts with a Cohere Embed model, in order.

        input_type is 'search_document' for indexed code and 'search_query'
        for queries. Raises BedrockError so callers decide how to degrade.
        """
        model = model_id or app_config.embedding_model_id
        vectors: List[List[float]] = []
        for start in range(0, len(texts), EMBED_BATCH):
            batch = [t[:EMBED_TEXT_CHARS] for t in texts[start:start + EMBED_BATCH]]
            payload = self._invoke(model, {"texts": batch, "input_type": input_type})
            embeddings = payload.get("embeddings")
            if isinstance(embeddings, dict):
                embeddings = embeddings.get("float")
            if not isinstance(embeddings, list) or len(embeddings) != len(batch):
                raise BedrockError("Embedding response did not contain one vector per text")
            vectors.extend(embeddings)
        return vectors

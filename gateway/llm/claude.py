"""Anthropic Claude implementation of AIProvider."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel

from gateway.llm.base import AIProvider, enhance_last_user_message
from gateway.llm.formatting import process_response
from gateway.models import (
    AIModel,
    AIRequest,
    AIResponse,
    ClaudeConfig,
    FinishReason,
    Message,
    MessageRole,
    ModelCapabilities,
    MultiModalContent,
    ProviderResult,
    ProviderType,
    StructuredContent,
    TextBlock,
    TextContent,
    TokenUsage,
    ToolResultBlock,
    ToolUse,
    ToolUseBlock,
)
from gateway.tokenizer import TokenCounter

LOGGER = logging.getLogger(__name__)

_STOP_REASONS = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "max_tokens": FinishReason.MAX_TOKENS,
    "tool_use": FinishReason.TOOL_USE,
}

# Claude has no role for system messages inside the conversation.
_ROLES = {
    MessageRole.USER: "user",
    MessageRole.ASSISTANT: "assistant",
    MessageRole.SYSTEM: "user",
}

CLAUDE_MODELS = [
    AIModel(
        id="claude-sonnet-4-5-20250929",
        name="Claude Sonnet 4.5",
        provider_type=ProviderType.CLAUDE,
        capabilities=ModelCapabilities(supports_vision=False, max_tokens=8192, context_window=200_000),
    ),
    AIModel(
        id="claude-haiku-4-5-20251001",
        name="Claude Haiku 4.5",
        provider_type=ProviderType.CLAUDE,
        capabilities=ModelCapabilities(supports_vision=False, max_tokens=8192, context_window=200_000),
    ),
    AIModel(
        id="claude-opus-4-1-20250805",
        name="Claude Opus 4.1",
        provider_type=ProviderType.CLAUDE,
        capabilities=ModelCapabilities(supports_vision=False, max_tokens=16384, context_window=200_000),
    ),
]


class ClaudeApiContent(BaseModel):
    type: str
    text: str | None = None
    id: str | None = None
    name: str | None = None
    input: Any = None


class ClaudeApiUsage(BaseModel):
    input_tokens: int
    output_tokens: int


class ClaudeApiResponse(BaseModel):
    id: str
    type: str
    role: str
    content: list[ClaudeApiContent]
    model: str
    stop_reason: str | None = None
    stop_sequence: str | None = None
    usage: ClaudeApiUsage


class ClaudeApiErrorDetails(BaseModel):
    type: str
    message: str


class ClaudeApiError(BaseModel):
    type: str
    error: ClaudeApiErrorDetails


class ClaudeProvider(AIProvider):
    """Provider for the Anthropic Messages API."""

    provider_type = ProviderType.CLAUDE
    vendor_name = "Claude"

    def __init__(self, http_client: httpx.AsyncClient, config: ClaudeConfig, token_counter: TokenCounter) -> None:
        if not isinstance(config, ClaudeConfig):
            raise TypeError(f"ClaudeProvider requires ClaudeConfig, got {type(config).__name__}")
        super().__init__(http_client, config, token_counter)

    def headers(self) -> dict[str, str]:
        return {
            "x-api-key": self._config.api_key,
            "anthropic-version": self._config.api_version,
            "content-type": "application/json",
        }

    def build_payload(self, request: AIRequest) -> dict[str, Any]:
        messages = [_to_claude_message(message) for message in request.messages]
        enhance_last_user_message(messages, request.parameters.response_format)

        params = request.parameters
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "max_tokens": params.max_tokens,
            "temperature": params.temperature,
            "top_p": params.top_p,
        }
        if params.top_k is not None:
            payload["top_k"] = params.top_k
        if params.stop_sequences:
            payload["stop_sequences"] = list(params.stop_sequences)
        if request.system_prompt is not None:
            payload["system"] = request.system_prompt
        return payload

    def parse_response(self, data: Any, request: AIRequest) -> AIResponse:
        response = ClaudeApiResponse.model_validate(data)
        text = "\n".join(block.text for block in response.content if block.type == "text" and block.text)
        content = process_response(text, request.parameters.response_format)
        return AIResponse(
            id=response.id,
            content=content,
            model=response.model,
            usage=TokenUsage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            ),
            finish_reason=map_stop_reason(response.stop_reason),
            metadata={"type": response.type, "stop_sequence": response.stop_sequence or ""},
            tool_uses=extract_tool_uses(response),
        )

    def parse_error_message(self, body: str) -> str:
        return ClaudeApiError.model_validate_json(body).error.message

    async def get_models(self) -> ProviderResult[list[AIModel]]:
        # The Messages API has no listing endpoint.
        return ProviderResult.success(list(CLAUDE_MODELS))


def map_stop_reason(reason: str | None) -> FinishReason:
    return _STOP_REASONS.get(reason or "", FinishReason.STOP)


def extract_tool_uses(response: ClaudeApiResponse) -> list[ToolUse]:
    """Collect complete ``tool_use`` blocks; partial blocks are dropped."""

    return [
        ToolUse(id=block.id, name=block.name, input=block.input)
        for block in response.content
        if block.type == "tool_use" and block.id and block.name and block.input is not None
    ]


def _to_claude_message(message: Message) -> dict[str, Any]:
    content = message.content
    wire_content: str | list[dict[str, Any]]
    if isinstance(content, TextContent):
        wire_content = content.text
    elif isinstance(content, MultiModalContent):
        wire_content = content.text or ""
    elif isinstance(content, StructuredContent):
        wire_content = [_to_claude_block(block) for block in content.blocks]
    else:
        raise TypeError(f"Unsupported message content: {type(content).__name__}")
    return {"role": _ROLES[message.role], "content": wire_content}


def _to_claude_block(block: Any) -> dict[str, Any]:
    if isinstance(block, TextBlock):
        return {"type": "text", "text": block.text}
    if isinstance(block, ToolUseBlock):
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    if isinstance(block, ToolResultBlock):
        return {"type": "tool_result", "tool_use_id": block.tool_use_id, "content": block.content}
    raise TypeError(f"Unsupported content block: {type(block).__name__}")

"""OpenAI Chat Completions implementation of AIProvider."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx
from pydantic import BaseModel

from gateway.errors import ParseError
from gateway.llm.base import AIProvider, enhance_last_user_message
from gateway.llm.formatting import process_response
from gateway.models import (
    AIModel,
    AIRequest,
    AIResponse,
    FinishReason,
    MessageRole,
    ModelCapabilities,
    OpenAIConfig,
    ProviderResult,
    ProviderType,
    TokenUsage,
    ToolUse,
)
from gateway.tokenizer import TokenCounter

LOGGER = logging.getLogger(__name__)

_FINISH_REASONS = {
    "stop": FinishReason.STOP,
    "length": FinishReason.MAX_TOKENS,
    "content_filter": FinishReason.CONTENT_FILTER,
    "tool_calls": FinishReason.TOOL_USE,
}

_ROLES = {
    MessageRole.USER: "user",
    MessageRole.ASSISTANT: "assistant",
    MessageRole.SYSTEM: "system",
}

_DEFAULT_CAPABILITIES = ModelCapabilities(supports_vision=False, max_tokens=4096, context_window=128_000)

OPENAI_MODELS = [
    AIModel(
        id="gpt-5-nano",
        name="gpt-5-nano",
        provider_type=ProviderType.OPENAI,
        capabilities=ModelCapabilities(supports_vision=False, max_tokens=4096, context_window=128_000),
    ),
    AIModel(
        id="gpt-5-mini",
        name="gpt-5-mini",
        provider_type=ProviderType.OPENAI,
        capabilities=ModelCapabilities(supports_vision=False, max_tokens=8192, context_window=128_000),
    ),
    AIModel(
        id="gpt-5",
        name="gpt-5",
        provider_type=ProviderType.OPENAI,
        capabilities=ModelCapabilities(supports_vision=True, max_tokens=16384, context_window=200_000),
    ),
    AIModel(
        id="gpt-5-pro",
        name="gpt-5-pro",
        provider_type=ProviderType.OPENAI,
        capabilities=ModelCapabilities(supports_vision=True, max_tokens=32768, context_window=200_000),
    ),
]


class OpenAIFunctionCall(BaseModel):
    name: str | None = None
    arguments: str | None = None


class OpenAIToolCall(BaseModel):
    id: str | None = None
    type: str = "function"
    function: OpenAIFunctionCall | None = None


class OpenAIApiMessage(BaseModel):
    role: str
    content: str | None = None
    tool_calls: list[OpenAIToolCall] | None = None


class OpenAIChoice(BaseModel):
    index: int = 0
    message: OpenAIApiMessage
    finish_reason: str | None = None


class OpenAIUsage(BaseModel):
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class OpenAIApiResponse(BaseModel):
    id: str
    object: str
    created: int
    model: str
    choices: list[OpenAIChoice]
    usage: OpenAIUsage
    system_fingerprint: str | None = None


class OpenAIApiErrorDetails(BaseModel):
    message: str
    type: str | None = None
    param: str | None = None
    code: str | None = None


class OpenAIApiError(BaseModel):
    error: OpenAIApiErrorDetails


class OpenAIProvider(AIProvider):
    """Provider for the OpenAI Chat Completions API."""

    provider_type = ProviderType.OPENAI
    vendor_name = "OpenAI"

    def __init__(self, http_client: httpx.AsyncClient, config: OpenAIConfig, token_counter: TokenCounter) -> None:
        if not isinstance(config, OpenAIConfig):
            raise TypeError(f"OpenAIProvider requires OpenAIConfig, got {type(config).__name__}")
        super().__init__(http_client, config, token_counter)

    def headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._config.api_key}",
            "Content-Type": "application/json",
        }
        if self._config.organization:
            headers["OpenAI-Organization"] = self._config.organization
        if self._config.project_id:
            headers["OpenAI-Project"] = self._config.project_id
        return headers

    def build_payload(self, request: AIRequest) -> dict[str, Any]:
        return build_chat_completions_payload(request, newer_token_field=request.model.startswith("gpt-5"))

    def parse_response(self, data: Any, request: AIRequest) -> AIResponse:
        response = OpenAIApiResponse.model_validate(data)
        if not response.choices:
            raise ParseError("No choices in OpenAI response")
        choice = response.choices[0]
        return AIResponse(
            id=response.id,
            content=process_response(choice.message.content or "", request.parameters.response_format),
            model=response.model,
            usage=TokenUsage(
                input_tokens=response.usage.prompt_tokens,
                output_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            ),
            finish_reason=map_finish_reason(choice.finish_reason),
            metadata={
                "created": str(response.created),
                "system_fingerprint": response.system_fingerprint or "",
            },
            tool_uses=extract_tool_calls(choice.message.tool_calls or []),
        )

    def parse_error_message(self, body: str) -> str:
        return OpenAIApiError.model_validate_json(body).error.message

    def extra_config_errors(self) -> list[str]:
        if not self._config.api_key.startswith("sk-"):
            return ["Invalid API key format (should start with 'sk-')"]
        return []

    async def get_models(self) -> ProviderResult[list[AIModel]]:
        return ProviderResult.success(list(OPENAI_MODELS))


def build_chat_completions_payload(request: AIRequest, newer_token_field: bool = False) -> dict[str, Any]:
    """Build an OpenAI-compatible chat completions body.

    The system prompt travels as a leading ``system`` message because the API
    has no dedicated field for it.
    """

    messages: list[dict[str, Any]] = []
    if request.system_prompt is not None:
        messages.append({"role": "system", "content": request.system_prompt})
    messages.extend(
        {"role": _ROLES[message.role], "content": message.text_content} for message in request.messages
    )
    enhance_last_user_message(messages, request.parameters.response_format)

    params = request.parameters
    payload: dict[str, Any] = {
        "model": request.model,
        "messages": messages,
        "temperature": params.temperature,
        "top_p": params.top_p,
    }
    if newer_token_field:
        payload["max_completion_tokens"] = params.max_tokens
    else:
        payload["max_tokens"] = params.max_tokens
    if params.frequency_penalty is not None:
        payload["frequency_penalty"] = params.frequency_penalty
    if params.presence_penalty is not None:
        payload["presence_penalty"] = params.presence_penalty
    if params.stop_sequences:
        payload["stop"] = list(params.stop_sequences)
    return payload


def map_finish_reason(reason: str | None) -> FinishReason:
    return _FINISH_REASONS.get(reason or "", FinishReason.STOP)


def extract_tool_calls(tool_calls: list[OpenAIToolCall]) -> list[ToolUse]:
    """Convert function tool calls; incomplete calls or unparseable arguments are dropped."""

    tool_uses: list[ToolUse] = []
    for call in tool_calls:
        if call.type != "function" or not call.id or call.function is None or not call.function.name:
            continue
        arguments = _safe_json_loads(call.function.arguments)
        if arguments is None:
            LOGGER.warning("Dropping tool call %s with unparseable arguments", call.id)
            continue
        tool_uses.append(ToolUse(id=call.id, name=call.function.name, input=arguments))
    return tool_uses


def _safe_json_loads(raw: str | None) -> dict[str, Any] | None:
    if raw is None:
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None

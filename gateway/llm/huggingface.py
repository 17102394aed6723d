"""HuggingFace router implementation of AIProvider.

The router speaks the OpenAI-compatible Chat Completions protocol. Reasoning
models wrap their chain of thought in ``<think>...</think>``; that text is
moved to ``metadata["reasoning"]`` and shown as a separate preamble.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import httpx
from pydantic import BaseModel

from gateway.errors import ParseError
from gateway.llm.base import AIProvider
from gateway.llm.formatting import process_response
from gateway.llm.openai import build_chat_completions_payload, map_finish_reason
from gateway.models import (
    AIModel,
    AIRequest,
    AIResponse,
    HuggingFaceConfig,
    ModelCapabilities,
    ProviderResult,
    ProviderType,
    TokenUsage,
    now_ms,
)
from gateway.tokenizer import TokenCounter

LOGGER = logging.getLogger(__name__)

_THINK_RE = re.compile(r"<think>(.*?)</think>", re.DOTALL)
_REASONING_RULE = "━" * 16

HUGGINGFACE_MODELS = [
    AIModel(
        id="deepseek-ai/DeepSeek-R1:fastest",
        name="DeepSeek R1 (fastest)",
        provider_type=ProviderType.HUGGINGFACE,
        capabilities=ModelCapabilities(max_tokens=8192, context_window=128_000),
    ),
    AIModel(
        id="deepseek-ai/DeepSeek-R1",
        name="DeepSeek R1",
        provider_type=ProviderType.HUGGINGFACE,
        capabilities=ModelCapabilities(max_tokens=8192, context_window=128_000),
    ),
    AIModel(
        id="meta-llama/Llama-3.3-70B-Instruct",
        name="Llama 3.3 70B Instruct",
        provider_type=ProviderType.HUGGINGFACE,
        capabilities=ModelCapabilities(max_tokens=8192, context_window=128_000),
    ),
    AIModel(
        id="Qwen/Qwen2.5-72B-Instruct",
        name="Qwen 2.5 72B Instruct",
        provider_type=ProviderType.HUGGINGFACE,
        capabilities=ModelCapabilities(max_tokens=8192, context_window=32_768),
    ),
    AIModel(
        id="meta-llama/Llama-3.2-3B-Instruct",
        name="Llama 3.2 3B Instruct",
        provider_type=ProviderType.HUGGINGFACE,
        capabilities=ModelCapabilities(max_tokens=2048, context_window=128_000),
    ),
]


class HuggingFaceApiMessage(BaseModel):
    role: str
    content: str | None = None


class HuggingFaceChoice(BaseModel):
    index: int = 0
    message: HuggingFaceApiMessage
    finish_reason: str | None = None


class HuggingFaceUsage(BaseModel):
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class HuggingFaceApiResponse(BaseModel):
    id: str | None = None
    object: str | None = None
    created: int | None = None
    model: str
    choices: list[HuggingFaceChoice]
    usage: HuggingFaceUsage
    system_fingerprint: str | None = None


class HuggingFaceApiErrorDetails(BaseModel):
    message: str
    type: str | None = None


class HuggingFaceApiError(BaseModel):
    error: HuggingFaceApiErrorDetails


class HuggingFaceProvider(AIProvider):
    provider_type = ProviderType.HUGGINGFACE
    vendor_name = "HuggingFace"

    def __init__(
        self, http_client: httpx.AsyncClient, config: HuggingFaceConfig, token_counter: TokenCounter
    ) -> None:
        if not isinstance(config, HuggingFaceConfig):
            raise TypeError(f"HuggingFaceProvider requires HuggingFaceConfig, got {type(config).__name__}")
        super().__init__(http_client, config, token_counter)

    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._config.api_key}",
            "Content-Type": "application/json",
        }

    def build_payload(self, request: AIRequest) -> dict[str, Any]:
        return build_chat_completions_payload(request)

    def parse_response(self, data: Any, request: AIRequest) -> AIResponse:
        response = HuggingFaceApiResponse.model_validate(data)
        if not response.choices:
            raise ParseError("No choices in HuggingFace response")
        choice = response.choices[0]
        raw_content = choice.message.content or ""

        reasoning = extract_reasoning(raw_content)
        answer = process_response(remove_reasoning(raw_content), request.parameters.response_format)
        if reasoning:
            content = f"Model reasoning:\n{_REASONING_RULE}\n{reasoning}\n{_REASONING_RULE}\n\n{answer}"
        else:
            content = answer

        return AIResponse(
            id=response.id or f"hf-{now_ms()}",
            content=content,
            model=response.model,
            usage=TokenUsage(
                input_tokens=response.usage.prompt_tokens,
                output_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            ),
            finish_reason=map_finish_reason(choice.finish_reason),
            metadata={"reasoning": reasoning} if reasoning else {},
        )

    def parse_error_message(self, body: str) -> str:
        return HuggingFaceApiError.model_validate_json(body).error.message

    def extra_config_errors(self) -> list[str]:
        if not self._config.api_key.startswith("hf_"):
            return ["Invalid API key format (should start with 'hf_')"]
        return []

    async def get_models(self) -> ProviderResult[list[AIModel]]:
        return ProviderResult.success(list(HUGGINGFACE_MODELS))


def extract_reasoning(content: str) -> str:
    return "\n\n".join(match.strip() for match in _THINK_RE.findall(content))


def remove_reasoning(content: str) -> str:
    return _THINK_RE.sub("", content).strip()

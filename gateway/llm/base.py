"""LLM provider interface and the request/response flow shared by all vendors."""

from __future__ import annotations

import dataclasses
import json
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx
import pydantic

from gateway.errors import NetworkError, ParseError, UnsupportedOperationError
from gateway.llm.formatting import enhance_message
from gateway.models import (
    AIModel,
    AIRequest,
    AIResponse,
    ProviderConfig,
    ProviderResult,
    ProviderType,
    ResponseFormat,
    TimeoutConfig,
    ValidationResult,
)
from gateway.tokenizer import TokenCounter

LOGGER = logging.getLogger(__name__)


class AIProvider(ABC):
    """Adapter normalizing one vendor's chat API into the gateway domain model.

    Subclasses describe the vendor wire format (payload, headers, response and
    error bodies); :meth:`send_message` drives the call and guarantees that no
    exception escapes.
    """

    provider_type: ProviderType
    vendor_name: str

    def __init__(self, http_client: httpx.AsyncClient, config: ProviderConfig, token_counter: TokenCounter) -> None:
        self._http_client = http_client
        self._config = config
        self._token_counter = token_counter

    @property
    def config(self) -> ProviderConfig:
        return self._config

    async def send_message(self, request: AIRequest) -> ProviderResult[AIResponse]:
        if request.parameters.streaming_enabled:
            return ProviderResult.failure(
                UnsupportedOperationError(f"{self.vendor_name} provider does not support streaming responses")
            )
        try:
            LOGGER.info("%s provider: sending message (model=%s)", self.vendor_name, request.model)
            estimated_input_tokens = self._token_counter.count_tokens_with_formatting(
                request.messages, request.system_prompt
            )
            LOGGER.info("Estimated input tokens: %d", estimated_input_tokens)

            payload = self.build_payload(request)
            response = await self._http_client.post(
                self._config.base_url,
                headers=self.headers(),
                json=payload,
                timeout=_to_httpx_timeout(self._config.timeout),
            )
            LOGGER.info("%s API response status: %s", self.vendor_name, response.status_code)

            if not response.is_success:
                return ProviderResult.failure(self._error_from_response(response))

            try:
                ai_response = self.parse_response(response.json(), request)
            except ParseError as exc:
                LOGGER.error("%s API returned an unusable body: %s", self.vendor_name, exc)
                return ProviderResult.failure(exc)
            except (pydantic.ValidationError, json.JSONDecodeError) as exc:
                LOGGER.error("%s API returned a malformed body: %s", self.vendor_name, exc)
                error = ParseError(f"{self.vendor_name} API returned a malformed response: {exc}")
                error.__cause__ = exc
                return ProviderResult.failure(error)

            estimated_output_tokens = self._token_counter.count_tokens(ai_response.content)
            final = dataclasses.replace(
                ai_response,
                estimated_input_tokens=estimated_input_tokens,
                estimated_output_tokens=estimated_output_tokens,
            )
            LOGGER.info(
                "Actual tokens - input: %d, output: %d; estimated - input: %d (diff %d), output: %d (diff %d)",
                final.usage.input_tokens,
                final.usage.output_tokens,
                estimated_input_tokens,
                final.usage.input_tokens - estimated_input_tokens,
                estimated_output_tokens,
                final.usage.output_tokens - estimated_output_tokens,
            )
            return ProviderResult.success(final)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Exception in %s provider", self.vendor_name)
            error = NetworkError(f"{self.vendor_name} API error: {exc}")
            error.__cause__ = exc
            return ProviderResult.failure(error)

    def validate_config(self) -> ValidationResult:
        errors: list[str] = []
        if not self._config.api_key.strip():
            errors.append("API key is required")
        if not self._config.base_url.startswith("https://"):
            errors.append("Base URL must use HTTPS")
        errors.extend(self.extra_config_errors())
        return ValidationResult(errors=errors)

    def extra_config_errors(self) -> list[str]:
        """Vendor-specific configuration checks."""

        return []

    @abstractmethod
    async def get_models(self) -> ProviderResult[list[AIModel]]:
        """Return the models this provider can serve."""

    @abstractmethod
    def headers(self) -> dict[str, str]:
        """Auth and content headers for one call."""

    @abstractmethod
    def build_payload(self, request: AIRequest) -> dict[str, Any]:
        """Map a domain request to the vendor JSON body."""

    @abstractmethod
    def parse_response(self, data: Any, request: AIRequest) -> AIResponse:
        """Map a vendor success body to a domain response."""

    @abstractmethod
    def parse_error_message(self, body: str) -> str:
        """Extract the human-readable message from a vendor error body."""

    def _error_from_response(self, response: httpx.Response) -> NetworkError:
        body = response.text
        LOGGER.error("%s API error response: %s", self.vendor_name, body)
        try:
            message = self.parse_error_message(body)
        except (pydantic.ValidationError, ValueError):
            return NetworkError(f"{self.vendor_name} API Error ({response.status_code}): {body}")
        return NetworkError(f"{self.vendor_name} API Error: {message}")


def enhance_last_user_message(messages: list[dict[str, Any]], response_format: ResponseFormat) -> None:
    """Rewrite the final wire message in place when it is a plain-text user turn."""

    if response_format is ResponseFormat.PLAIN_TEXT or not messages:
        return
    last = messages[-1]
    if last.get("role") != "user" or not isinstance(last.get("content"), str):
        return
    messages[-1] = {**last, "content": enhance_message(last["content"], response_format)}


def _to_httpx_timeout(timeout: TimeoutConfig) -> httpx.Timeout:
    return httpx.Timeout(
        timeout.read_timeout_ms / 1000,
        connect=timeout.connect_timeout_ms / 1000,
        read=timeout.read_timeout_ms / 1000,
        write=timeout.write_timeout_ms / 1000,
    )

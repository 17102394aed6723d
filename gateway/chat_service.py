"""Send chat messages through a provider and record them in a session."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from gateway.db import Database
from gateway.errors import ConfigurationError
from gateway.llm.base import AIProvider
from gateway.llm.factory import AIProviderFactory
from gateway.models import (
    AIModel,
    AIRequest,
    MessageMetadata,
    MessageRole,
    ProviderConfig,
    ProviderType,
    RequestParameters,
    TokenUsage,
    ToolUse,
)

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class MessageResult:
    response: str
    session_id: str
    usage: TokenUsage
    model: str
    provider_type: ProviderType
    estimated_input_tokens: int = 0
    estimated_output_tokens: int = 0
    tool_uses: list[ToolUse] = field(default_factory=list)


class ChatService:
    """Session-aware entry point for provider calls."""

    def __init__(
        self,
        db: Database,
        provider_factory: AIProviderFactory,
        provider_configs: dict[ProviderType, ProviderConfig],
    ) -> None:
        self._db = db
        self._provider_factory = provider_factory
        self._provider_configs = dict(provider_configs)

    def provider(self, provider_type: ProviderType) -> AIProvider:
        config = self._provider_configs.get(provider_type)
        if config is None:
            raise ConfigurationError(f"Provider {provider_type.value} not configured")
        return self._provider_factory.create(provider_type, config)

    def default_model(self, provider_type: ProviderType) -> str:
        config = self._provider_configs.get(provider_type)
        if config is None:
            raise ConfigurationError(f"Provider {provider_type.value} not configured")
        return config.default_model

    async def send_message(
        self,
        message: str,
        session_id: str | None = None,
        provider_type: ProviderType = ProviderType.CLAUDE,
        model: str | None = None,
        parameters: RequestParameters | None = None,
        system_prompt: str | None = None,
    ) -> MessageResult:
        """Append ``message`` to a session, ask the provider, and append the reply.

        Creates a session when ``session_id`` is None. Raises the provider's
        ``AIError`` when the call fails; the user message stays in history.
        """

        provider = self.provider(provider_type)
        selected_model = model or self.default_model(provider_type)

        if session_id is None:
            session_id = self._db.create_session(provider_type)
            LOGGER.info("Created session %s for provider %s", session_id, provider_type.value)
        else:
            self._db.get_session(session_id)

        self._db.append_message(session_id, MessageRole.USER, message)
        history = self._db.get_messages(session_id)
        request = AIRequest(
            messages=history,
            model=selected_model,
            parameters=parameters or RequestParameters(),
            system_prompt=system_prompt,
            session_id=session_id,
        )

        LOGGER.info(
            "Sending %d messages to %s (model=%s, session=%s)",
            len(history),
            provider_type.value,
            selected_model,
            session_id,
        )
        started = time.monotonic()
        response = (await provider.send_message(request)).unwrap()
        elapsed = time.monotonic() - started

        self._db.append_message(
            session_id,
            MessageRole.ASSISTANT,
            response.content,
            metadata=MessageMetadata(
                model=response.model,
                response_time=elapsed,
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
                estimated_input_tokens=response.estimated_input_tokens,
                estimated_output_tokens=response.estimated_output_tokens,
            ),
        )
        LOGGER.info("Response received from %s: %s tokens", provider_type.value, response.usage.total_tokens)

        return MessageResult(
            response=response.content,
            session_id=session_id,
            usage=response.usage,
            model=response.model,
            provider_type=provider_type,
            estimated_input_tokens=response.estimated_input_tokens,
            estimated_output_tokens=response.estimated_output_tokens,
            tool_uses=list(response.tool_uses),
        )

    async def list_models(self, provider_type: ProviderType) -> list[AIModel]:
        models = (await self.provider(provider_type).get_models()).unwrap()
        LOGGER.info("Retrieved %d models for provider %s", len(models), provider_type.value)
        return models

"""Registry of provider constructors keyed by provider type."""

from __future__ import annotations

import logging
from typing import Callable

import httpx

from gateway.errors import UnsupportedProviderError
from gateway.llm.base import AIProvider
from gateway.llm.claude import ClaudeProvider
from gateway.llm.huggingface import HuggingFaceProvider
from gateway.llm.openai import OpenAIProvider
from gateway.models import ProviderConfig, ProviderType
from gateway.tokenizer import TokenCounter

LOGGER = logging.getLogger(__name__)

ProviderCreator = Callable[[ProviderConfig], AIProvider]


class AIProviderFactory:
    """Maps provider types to constructors.

    Registration is expected to finish before the first :meth:`create`; reads
    afterwards need no locking.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_counter: TokenCounter,
        register_builtins: bool = True,
    ) -> None:
        self._http_client = http_client
        self._token_counter = token_counter
        self._creators: dict[ProviderType, ProviderCreator] = {}
        if register_builtins:
            self.register(ProviderType.CLAUDE, lambda config: ClaudeProvider(http_client, config, token_counter))
            self.register(ProviderType.OPENAI, lambda config: OpenAIProvider(http_client, config, token_counter))
            self.register(
                ProviderType.HUGGINGFACE,
                lambda config: HuggingFaceProvider(http_client, config, token_counter),
            )

    def register(self, provider_type: ProviderType, creator: ProviderCreator) -> None:
        """Register ``creator`` for ``provider_type``, replacing any previous one."""

        if provider_type in self._creators:
            LOGGER.info("Replacing provider registration for %s", provider_type.value)
        self._creators[provider_type] = creator

    def create(self, provider_type: ProviderType, config: ProviderConfig) -> AIProvider:
        creator = self._creators.get(provider_type)
        if creator is None:
            raise UnsupportedProviderError(f"Provider {provider_type.value} not registered")
        return creator(config)

    def registered_types(self) -> list[ProviderType]:
        return list(self._creators)

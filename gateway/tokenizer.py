"""Local token estimation."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Protocol

import tiktoken

from gateway.models import Message

LOGGER = logging.getLogger(__name__)

# Per-message overhead for role and content framing in a chat request.
MESSAGE_OVERHEAD_TOKENS = 4
SYSTEM_PROMPT_OVERHEAD_TOKENS = 4
REQUEST_WRAPPER_TOKENS = 3

DEFAULT_ENCODING = "cl100k_base"

_ENCODING_BY_PREFIX: list[tuple[str, str]] = [
    ("gpt-4", "cl100k_base"),
    ("gpt-3.5", "cl100k_base"),
    ("gpt-5", "o200k_base"),
    ("o1", "o200k_base"),
]


class Encoding(Protocol):
    def encode(self, text: str) -> list[int]: ...


class TokenCounter(ABC):
    """Estimates token counts for text and chat messages."""

    @abstractmethod
    def count_tokens(self, text: str) -> int:
        """Count tokens in a single string."""

    def count_message_tokens(self, messages: list[Message]) -> int:
        return sum(self.count_tokens(message.text_content) for message in messages)

    def count_tokens_with_formatting(self, messages: list[Message], system_prompt: str | None = None) -> int:
        """Estimate a whole request, including per-message and wrapper overhead."""

        system_tokens = 0
        if system_prompt is not None:
            system_tokens = self.count_tokens(system_prompt) + SYSTEM_PROMPT_OVERHEAD_TOKENS
        formatting = len(messages) * MESSAGE_OVERHEAD_TOKENS
        return system_tokens + self.count_message_tokens(messages) + formatting + REQUEST_WRAPPER_TOKENS


def encoding_name_for_model(model: str) -> str:
    """Pick the tiktoken encoding for a model-name prefix."""

    lowered = model.lower()
    for prefix, encoding_name in _ENCODING_BY_PREFIX:
        if lowered.startswith(prefix):
            return encoding_name
    return DEFAULT_ENCODING


class TiktokenCounter(TokenCounter):
    """TokenCounter backed by tiktoken.

    Claude and HuggingFace models have no public tiktoken table; they are
    approximated with ``cl100k_base``.
    """

    def __init__(
        self,
        model_name: str = "gpt-4",
        encoding_loader: Callable[[str], Encoding] = tiktoken.get_encoding,
    ) -> None:
        self._model_name = model_name
        self._encoding_loader = encoding_loader
        self._encodings: dict[str, Encoding] = {}

    def count_tokens(self, text: str) -> int:
        if not text:
            return 0
        return len(self._encoding(encoding_name_for_model(self._model_name)).encode(text))

    def count_tokens_for_model(self, text: str, model: str) -> int:
        if not text:
            return 0
        return len(self._encoding(encoding_name_for_model(model)).encode(text))

    def _encoding(self, name: str) -> Encoding:
        encoding = self._encodings.get(name)
        if encoding is None:
            try:
                encoding = self._encoding_loader(name)
            except (KeyError, ValueError):
                LOGGER.warning("Encoding %s unavailable, falling back to %s", name, DEFAULT_ENCODING)
                encoding = self._encoding_loader(DEFAULT_ENCODING)
            self._encodings[name] = encoding
        return encoding

"""Conversation history compression through provider-generated summaries."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable

from gateway.chat_service import ChatService
from gateway.db import Database
from gateway.models import AIRequest, Message, MessageRole, ProviderType, RequestParameters

LOGGER = logging.getLogger(__name__)

SUMMARY_MAX_TOKENS = 1024
SUMMARY_TEMPERATURE = 0.3

SUMMARY_PROMPT = (
    "Please write a short but informative summary of the conversation above.\n\n"
    "Requirements:\n"
    "1. Keep the key topics and context of the discussion\n"
    "2. List the user's main questions and the assistant's answers\n"
    "3. Do not lose important details (names, dates, technical terms)\n"
    "4. Structure the information so it is easy to read\n"
    "5. Be as brief as possible while staying accurate\n\n"
    "Reply with the summary only, without any extra commentary."
)

Summarizer = Callable[[list[Message]], Awaitable[str]]


class CompressionStrategy(str, Enum):
    FULL_REPLACEMENT = "full_replacement"
    SLIDING_WINDOW = "sliding_window"
    TOKEN_BASED = "token_based"


@dataclass(slots=True, frozen=True)
class CompressionConfig:
    strategy: CompressionStrategy = CompressionStrategy.FULL_REPLACEMENT
    full_replacement_message_threshold: int = 10
    sliding_window_message_threshold: int = 12
    sliding_window_keep_last: int = 6
    # Fractions of the context window and of the conversation's tokens.
    token_based_threshold_percent: float = 0.8
    token_based_keep_percent: float = 0.4


@dataclass(slots=True)
class CompressionResult:
    new_messages: list[Message] = field(default_factory=list)
    archived_messages: list[Message] = field(default_factory=list)
    summary_generated: bool = False
    original_message_count: int = 0

    @property
    def new_message_count(self) -> int:
        return len(self.new_messages)

    @property
    def compression_ratio(self) -> float:
        if not self.summary_generated or self.original_message_count == 0:
            return 0.0
        return 1.0 - self.new_message_count / self.original_message_count

    @classmethod
    def unchanged(cls, messages: list[Message]) -> CompressionResult:
        return cls(new_messages=list(messages), original_message_count=len(messages))


class CompressionAlgorithm(ABC):
    @abstractmethod
    def should_compress(
        self,
        messages: list[Message],
        config: CompressionConfig,
        context_window: int | None = None,
    ) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def compress(
        self,
        messages: list[Message],
        config: CompressionConfig,
        summarize: Summarizer,
    ) -> CompressionResult:
        raise NotImplementedError


class FullReplacementCompression(CompressionAlgorithm):
    """Replace the whole history with a single summary message."""

    def should_compress(self, messages, config, context_window=None) -> bool:
        return len(messages) >= config.full_replacement_message_threshold

    async def compress(self, messages, config, summarize) -> CompressionResult:
        if not messages:
            return CompressionResult.unchanged(messages)
        summary = await summarize(messages)
        return CompressionResult(
            new_messages=[summary_message(summary, len(messages))],
            archived_messages=list(messages),
            summary_generated=True,
            original_message_count=len(messages),
        )


class SlidingWindowCompression(CompressionAlgorithm):
    """Summarize everything except the last ``sliding_window_keep_last`` messages."""

    def should_compress(self, messages, config, context_window=None) -> bool:
        return len(messages) >= config.sliding_window_message_threshold

    async def compress(self, messages, config, summarize) -> CompressionResult:
        keep = config.sliding_window_keep_last
        if not messages or len(messages) <= keep:
            return CompressionResult.unchanged(messages)

        split = len(messages) - keep
        to_compress, to_keep = messages[:split], messages[split:]
        summary = await summarize(to_compress)
        context = Message.text(
            MessageRole.SYSTEM,
            "=== PREVIOUS CONVERSATION CONTEXT ===\n\n"
            f"Below is a short summary of the previous {len(to_compress)} messages of this conversation.\n"
            "Use it to understand the current discussion.\n\n"
            f"{summary}\n\n"
            "=== END OF CONTEXT ===\n\n"
            f"The last {len(to_keep)} messages of the conversation follow in full.",
        )
        return CompressionResult(
            new_messages=[context, *to_keep],
            archived_messages=list(to_compress),
            summary_generated=True,
            original_message_count=len(messages),
        )


class TokenBasedCompression(CompressionAlgorithm):
    """Compress once the history nears the model's context window.

    Token counts come from message metadata, preferring the vendor-reported
    totals over local estimates.
    """

    def should_compress(self, messages, config, context_window=None) -> bool:
        if context_window is None or not messages:
            return False
        threshold = int(context_window * config.token_based_threshold_percent)
        return sum(message_tokens(message) for message in messages) >= threshold

    async def compress(self, messages, config, summarize) -> CompressionResult:
        if not messages:
            return CompressionResult.unchanged(messages)

        total = sum(message_tokens(message) for message in messages)
        tokens_to_keep = int(total * config.token_based_keep_percent)
        to_compress, to_keep = split_by_tokens(messages, tokens_to_keep)
        if not to_compress:
            return CompressionResult.unchanged(messages)

        summary = await summarize(to_compress)
        return CompressionResult(
            new_messages=[summary_message(summary, len(to_compress)), *to_keep],
            archived_messages=list(to_compress),
            summary_generated=True,
            original_message_count=len(messages),
        )


def message_tokens(message: Message) -> int:
    metadata = message.metadata
    if metadata is None:
        return 0
    return metadata.total_tokens or metadata.estimated_total_tokens


def split_by_tokens(messages: list[Message], tokens_to_keep: int) -> tuple[list[Message], list[Message]]:
    """Split so the tail holds at most ``tokens_to_keep`` tokens and at least one message."""

    accumulated = 0
    split = len(messages)
    for index in range(len(messages) - 1, -1, -1):
        tokens = message_tokens(messages[index])
        if accumulated + tokens > tokens_to_keep:
            split = index + 1
            break
        accumulated += tokens
    split = min(split, len(messages) - 1)
    return messages[:split], messages[split:]


def summary_message(summary: str, compressed_count: int) -> Message:
    return Message.text(
        MessageRole.SYSTEM,
        f"Summary of the previous {compressed_count} messages:\n\n{summary}",
    )


def fallback_summary(messages: list[Message]) -> str:
    user_count = sum(1 for message in messages if message.role == MessageRole.USER)
    assistant_count = sum(1 for message in messages if message.role == MessageRole.ASSISTANT)
    topics = "\n".join(
        f"- {message.role.value}: {message.text_content[:100] or '[multimodal message]'}..."
        for message in messages[:3]
    )
    return (
        f"The conversation has {user_count} user messages and {assistant_count} assistant replies.\n\n"
        f"Main topics:\n{topics}\n\n"
        "[Automatically generated summary]"
    )


ALGORITHMS: dict[CompressionStrategy, CompressionAlgorithm] = {
    CompressionStrategy.FULL_REPLACEMENT: FullReplacementCompression(),
    CompressionStrategy.SLIDING_WINDOW: SlidingWindowCompression(),
    CompressionStrategy.TOKEN_BASED: TokenBasedCompression(),
}


class CompressionService:
    """Summarize a stored session and rewrite its active history."""

    def __init__(self, db: Database, chat_service: ChatService) -> None:
        self._db = db
        self._chat_service = chat_service

    def should_compress(
        self,
        session_id: str,
        config: CompressionConfig,
        context_window: int | None = None,
    ) -> bool:
        messages = self._db.get_messages(session_id)
        return ALGORITHMS[config.strategy].should_compress(messages, config, context_window)

    async def compress_session(
        self,
        session_id: str,
        config: CompressionConfig | None = None,
        provider_type: ProviderType = ProviderType.CLAUDE,
        model: str | None = None,
    ) -> CompressionResult:
        config = config or CompressionConfig()
        LOGGER.info("Starting compression for session %s with strategy %s", session_id, config.strategy.value)
        self._db.get_session(session_id)
        messages = self._db.get_messages(session_id)

        async def summarize(chunk: list[Message]) -> str:
            return await self._summarize(chunk, provider_type, model)

        result = await ALGORITHMS[config.strategy].compress(messages, config, summarize)
        if result.summary_generated:
            self._db.replace_messages(session_id, result.new_messages)

        LOGGER.info(
            "Compression completed for session %s. Original: %d, New: %d, Ratio: %.2f%%",
            session_id,
            result.original_message_count,
            result.new_message_count,
            result.compression_ratio * 100,
        )
        return result

    async def _summarize(self, messages: list[Message], provider_type: ProviderType, model: str | None) -> str:
        LOGGER.info("Generating summary for %d messages using provider %s", len(messages), provider_type.value)
        try:
            provider = self._chat_service.provider(provider_type)
            request = AIRequest(
                messages=[*messages, Message.text(MessageRole.USER, SUMMARY_PROMPT)],
                model=model or self._chat_service.default_model(provider_type),
                parameters=RequestParameters(temperature=SUMMARY_TEMPERATURE, max_tokens=SUMMARY_MAX_TOKENS),
            )
            response = (await provider.send_message(request)).unwrap()
        except Exception:  # noqa: BLE001
            LOGGER.exception("Error generating summary; using fallback")
            return fallback_summary(messages)
        LOGGER.info("Summary generated: %d characters", len(response.content))
        return response.content

"""Core domain models shared by providers, schedulers and storage."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar, Union

if TYPE_CHECKING:
    from gateway.errors import AIError

T = TypeVar("T")


def now_ms() -> int:
    return int(time.time() * 1000)


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ResponseFormat(str, Enum):
    PLAIN_TEXT = "plain_text"
    JSON = "json"
    XML = "xml"


class ProviderType(str, Enum):
    """Known provider tags; the value is the stable id used in storage."""

    CLAUDE = "claude"
    OPENAI = "openai"
    HUGGINGFACE = "huggingface"
    GEMINI = "gemini"
    CUSTOM = "custom"

    @property
    def display_name(self) -> str:
        return _PROVIDER_DISPLAY_NAMES[self]

    @classmethod
    def from_id(cls, provider_id: str) -> ProviderType | None:
        for member in cls:
            if member.value == provider_id:
                return member
        return None


_PROVIDER_DISPLAY_NAMES = {
    ProviderType.CLAUDE: "Anthropic Claude",
    ProviderType.OPENAI: "OpenAI",
    ProviderType.HUGGINGFACE: "HuggingFace",
    ProviderType.GEMINI: "Google Gemini",
    ProviderType.CUSTOM: "Custom Provider",
}


class FinishReason(str, Enum):
    STOP = "stop"
    MAX_TOKENS = "max_tokens"
    CONTENT_FILTER = "content_filter"
    ERROR = "error"
    CANCELLED = "cancelled"
    TOOL_USE = "tool_use"


class ImageSource(str, Enum):
    BASE64 = "base64"
    URL = "url"
    LOCAL_FILE = "local_file"


@dataclass(slots=True, frozen=True)
class ImageContent:
    data: str
    mime_type: str
    source: ImageSource = ImageSource.BASE64


@dataclass(slots=True, frozen=True)
class TextBlock:
    text: str


@dataclass(slots=True, frozen=True)
class ToolUseBlock:
    id: str
    name: str
    input: Any


@dataclass(slots=True, frozen=True)
class ToolResultBlock:
    tool_use_id: str
    content: str


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock]


@dataclass(slots=True, frozen=True)
class TextContent:
    text: str


@dataclass(slots=True, frozen=True)
class MultiModalContent:
    text: str | None = None
    images: list[ImageContent] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class StructuredContent:
    blocks: list[ContentBlock] = field(default_factory=list)


MessageContent = Union[TextContent, MultiModalContent, StructuredContent]


def content_text(content: MessageContent) -> str:
    """Return the plain text carried by any content variant."""

    if isinstance(content, TextContent):
        return content.text
    if isinstance(content, MultiModalContent):
        return content.text or ""
    return "\n".join(block.text for block in content.blocks if isinstance(block, TextBlock))


@dataclass(slots=True)
class MessageMetadata:
    """Per-message accounting attached to assistant replies."""

    model: str
    response_time: float
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_input_tokens: int = 0
    estimated_output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def estimated_total_tokens(self) -> int:
        return self.estimated_input_tokens + self.estimated_output_tokens


@dataclass(slots=True)
class Message:
    role: MessageRole
    content: MessageContent
    timestamp: int = field(default_factory=now_ms)
    metadata: MessageMetadata | None = None

    @classmethod
    def text(cls, role: MessageRole, text: str) -> Message:
        return cls(role=role, content=TextContent(text))

    @property
    def text_content(self) -> str:
        return content_text(self.content)


@dataclass(slots=True)
class RequestParameters:
    temperature: float = 1.0
    max_tokens: int = 4096
    top_p: float = 1.0
    top_k: int | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    stop_sequences: list[str] = field(default_factory=list)
    response_format: ResponseFormat = ResponseFormat.PLAIN_TEXT
    streaming_enabled: bool = False


@dataclass(slots=True)
class AIRequest:
    """Provider-neutral chat request. ``messages`` are in conversation order."""

    messages: list[Message]
    model: str
    parameters: RequestParameters = field(default_factory=RequestParameters)
    system_prompt: str | None = None
    session_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class TokenUsage:
    input_tokens: int
    output_tokens: int
    total_tokens: int | None = None

    def __post_init__(self) -> None:
        if self.total_tokens is None:
            object.__setattr__(self, "total_tokens", self.input_tokens + self.output_tokens)


@dataclass(slots=True, frozen=True)
class ToolUse:
    """Tool invocation requested by the model."""

    id: str
    name: str
    input: Any


@dataclass(slots=True)
class AIResponse:
    """Provider-neutral chat response.

    ``usage`` holds what the vendor reported; ``estimated_*`` hold the local
    tokenizer estimates. The two are kept side by side and never merged.
    """

    id: str
    content: str
    model: str
    usage: TokenUsage
    finish_reason: FinishReason
    role: MessageRole = MessageRole.ASSISTANT
    metadata: dict[str, str] = field(default_factory=dict)
    timestamp: int = field(default_factory=now_ms)
    estimated_input_tokens: int = 0
    estimated_output_tokens: int = 0
    tool_uses: list[ToolUse] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class ModelCapabilities:
    supports_vision: bool = False
    supports_streaming: bool = True
    max_tokens: int = 4096
    context_window: int = 8192


@dataclass(slots=True, frozen=True)
class AIModel:
    id: str
    name: str
    provider_type: ProviderType
    capabilities: ModelCapabilities = field(default_factory=ModelCapabilities)


@dataclass(slots=True, frozen=True)
class TimeoutConfig:
    connect_timeout_ms: int = 10_000
    read_timeout_ms: int = 300_000
    write_timeout_ms: int = 300_000


@dataclass(slots=True, frozen=True)
class ClaudeConfig:
    api_key: str
    base_url: str = "https://api.anthropic.com/v1/messages"
    api_version: str = "2023-06-01"
    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    default_model: str = "claude-sonnet-4-5-20250929"


@dataclass(slots=True, frozen=True)
class OpenAIConfig:
    api_key: str
    base_url: str = "https://api.openai.com/v1/chat/completions"
    organization: str | None = None
    project_id: str | None = None
    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    default_model: str = "gpt-5"


@dataclass(slots=True, frozen=True)
class HuggingFaceConfig:
    api_key: str
    base_url: str = "https://router.huggingface.co/v1/chat/completions"
    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    default_model: str = "deepseek-ai/DeepSeek-R1:fastest"


@dataclass(slots=True, frozen=True)
class GeminiConfig:
    api_key: str
    base_url: str = "https://generativelanguage.googleapis.com/v1"
    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    default_model: str = "gemini-pro"


@dataclass(slots=True, frozen=True)
class CustomConfig:
    api_key: str
    base_url: str
    headers: dict[str, str] = field(default_factory=dict)
    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    default_model: str = "default"


ProviderConfig = Union[ClaudeConfig, OpenAIConfig, HuggingFaceConfig, GeminiConfig, CustomConfig]


@dataclass(slots=True, frozen=True)
class ValidationResult:
    errors: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass(slots=True, frozen=True)
class ProviderResult(Generic[T]):
    """Outcome of a provider call: exactly one of ``value`` or ``error`` is set."""

    value: T | None = None
    error: AIError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> ProviderResult[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: AIError) -> ProviderResult[T]:
        return cls(error=error)

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


@dataclass(slots=True)
class ChatSession:
    id: str
    provider_type: ProviderType
    title: str | None = None
    scheduled_task_id: str | None = None
    created_at: int = field(default_factory=now_ms)
    last_accessed_at: int = field(default_factory=now_ms)
    messages: list[Message] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class ScheduledChatTask:
    """Immutable definition of a recurring chat task.

    The session the task writes into is tracked separately in
    :class:`TaskBinding`, since it only exists after initialization.
    """

    task_request: str
    interval_seconds: int
    execute_immediately: bool = False
    title: str | None = None
    provider_type: ProviderType | None = None
    model: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: int = field(default_factory=now_ms)


@dataclass(slots=True)
class TaskBinding:
    task_id: str
    session_id: str | None = None

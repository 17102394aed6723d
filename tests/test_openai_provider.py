import json

import httpx
import pytest

from gateway.errors import NetworkError, ParseError
from gateway.llm.openai import OpenAIProvider, OpenAIToolCall, extract_tool_calls
from gateway.models import (
    AIRequest,
    FinishReason,
    Message,
    MessageRole,
    OpenAIConfig,
    RequestParameters,
    ResponseFormat,
)
from gateway.tokenizer import TiktokenCounter


class FakeEncoding:
    def encode(self, text: str) -> list[int]:
        return [0] * len(text.split())


def _body(content: str | None = "Hello", finish_reason: str = "stop", tool_calls: list | None = None) -> dict:
    message: dict = {"role": "assistant", "content": content}
    if tool_calls is not None:
        message["tool_calls"] = tool_calls
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "gpt-5",
        "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
        "usage": {"prompt_tokens": 9, "completion_tokens": 3, "total_tokens": 12},
    }


def _provider(handler, config: OpenAIConfig | None = None) -> OpenAIProvider:  # noqa: ANN001
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    counter = TiktokenCounter(encoding_loader=lambda name: FakeEncoding())
    return OpenAIProvider(client, config or OpenAIConfig(api_key="sk-test"), counter)


def _request(model: str = "gpt-5", **params) -> AIRequest:  # noqa: ANN003
    return AIRequest(
        messages=[
            Message.text(MessageRole.USER, "Hi"),
            Message.text(MessageRole.ASSISTANT, "Hello!"),
            Message.text(MessageRole.USER, "Where is Rome?"),
        ],
        model=model,
        parameters=RequestParameters(**params),
        system_prompt="You are terse.",
    )


@pytest.mark.asyncio
async def test_payload_uses_system_message_and_newer_token_field():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_body())

    provider = _provider(handler, OpenAIConfig(api_key="sk-test", organization="org-1", project_id="proj-1"))

    result = await provider.send_message(_request(max_tokens=256, presence_penalty=0.5))

    assert result.unwrap().content == "Hello"
    body = seen["body"]
    assert body["messages"][0] == {"role": "system", "content": "You are terse."}
    assert [m["role"] for m in body["messages"][1:]] == ["user", "assistant", "user"]
    assert body["max_completion_tokens"] == 256
    assert "max_tokens" not in body
    assert body["presence_penalty"] == 0.5
    assert "frequency_penalty" not in body
    assert "stop" not in body
    assert seen["headers"]["authorization"] == "Bearer sk-test"
    assert seen["headers"]["openai-organization"] == "org-1"
    assert seen["headers"]["openai-project"] == "proj-1"


@pytest.mark.asyncio
async def test_older_models_use_max_tokens():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_body())

    await _provider(handler).send_message(_request(model="gpt-4o", max_tokens=100, stop_sequences=["\n\n"]))

    assert seen["body"]["max_tokens"] == 100
    assert "max_completion_tokens" not in seen["body"]
    assert seen["body"]["stop"] == ["\n\n"]


@pytest.mark.asyncio
async def test_usage_and_finish_reason_are_mapped():
    result = await _provider(lambda request: httpx.Response(200, json=_body(finish_reason="length"))).send_message(
        _request()
    )

    response = result.unwrap()
    assert response.usage.input_tokens == 9
    assert response.usage.output_tokens == 3
    assert response.usage.total_tokens == 12
    assert response.finish_reason is FinishReason.MAX_TOKENS
    assert response.metadata["created"] == "1700000000"


@pytest.mark.asyncio
async def test_xml_format_enhances_last_user_message_only():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_body("<response><answer>Italy</answer></response>"))

    result = await _provider(handler).send_message(_request(response_format=ResponseFormat.XML))

    messages = seen["body"]["messages"]
    assert messages[1]["content"] == "Hi"
    assert messages[-1]["content"].startswith("User request: Where is Rome?")
    assert "<answer>Italy</answer>" in result.unwrap().content


@pytest.mark.asyncio
async def test_tool_calls_are_extracted():
    tool_calls = [
        {"id": "call_1", "type": "function", "function": {"name": "lookup", "arguments": '{"q": "rome"}'}},
        {"id": "call_2", "type": "function", "function": {"name": "broken", "arguments": "{not json"}},
    ]
    result = await _provider(
        lambda request: httpx.Response(200, json=_body(None, "tool_calls", tool_calls))
    ).send_message(_request())

    response = result.unwrap()
    assert response.content == ""
    assert response.finish_reason is FinishReason.TOOL_USE
    assert [(t.id, t.name, t.input) for t in response.tool_uses] == [("call_1", "lookup", {"q": "rome"})]


def test_incomplete_tool_calls_are_dropped():
    calls = [
        OpenAIToolCall.model_validate({"type": "function", "function": {"name": "x", "arguments": "{}"}}),
        OpenAIToolCall.model_validate({"id": "call_3", "type": "function"}),
    ]

    assert extract_tool_calls(calls) == []


@pytest.mark.asyncio
async def test_empty_choices_is_parse_error():
    body = _body()
    body["choices"] = []

    result = await _provider(lambda request: httpx.Response(200, json=body)).send_message(_request())

    assert isinstance(result.error, ParseError)
    assert "No choices" in str(result.error)


@pytest.mark.asyncio
async def test_error_body_message_is_used():
    error = {"error": {"message": "Incorrect API key provided", "type": "invalid_request_error"}}

    result = await _provider(lambda request: httpx.Response(401, json=error)).send_message(_request())

    assert isinstance(result.error, NetworkError)
    assert str(result.error) == "OpenAI API Error: Incorrect API key provided"


def test_validate_config_requires_sk_prefix():
    provider = _provider(lambda request: httpx.Response(500), OpenAIConfig(api_key="abc"))

    assert provider.validate_config().errors == ["Invalid API key format (should start with 'sk-')"]

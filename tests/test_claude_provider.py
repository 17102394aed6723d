import json

import httpx
import pytest

from gateway.errors import NetworkError, ParseError, UnsupportedOperationError
from gateway.llm.claude import ClaudeProvider
from gateway.models import (
    AIRequest,
    ClaudeConfig,
    FinishReason,
    Message,
    MessageRole,
    RequestParameters,
    ResponseFormat,
    StructuredContent,
    TextBlock,
    ToolResultBlock,
)
from gateway.tokenizer import TiktokenCounter


class FakeEncoding:
    def encode(self, text: str) -> list[int]:
        return [0] * len(text.split())


def _counter() -> TiktokenCounter:
    return TiktokenCounter(encoding_loader=lambda name: FakeEncoding())


def _body(content: list[dict], stop_reason: str = "end_turn") -> dict:
    return {
        "id": "msg_1",
        "type": "message",
        "role": "assistant",
        "content": content,
        "model": "claude-haiku-4-5-20251001",
        "stop_reason": stop_reason,
        "stop_sequence": None,
        "usage": {"input_tokens": 12, "output_tokens": 5},
    }


def _provider(handler, config: ClaudeConfig | None = None) -> ClaudeProvider:  # noqa: ANN001
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ClaudeProvider(client, config or ClaudeConfig(api_key="test-key"), _counter())


def _request(text: str = "Hello there", **params) -> AIRequest:  # noqa: ANN003
    return AIRequest(
        messages=[Message.text(MessageRole.USER, text)],
        model="claude-haiku-4-5-20251001",
        parameters=RequestParameters(**params),
    )


@pytest.mark.asyncio
async def test_send_message_maps_request_and_response():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_body([{"type": "text", "text": "Hi"}, {"type": "text", "text": "again"}]))

    provider = _provider(handler)
    request = AIRequest(
        messages=[
            Message.text(MessageRole.SYSTEM, "context"),
            Message.text(MessageRole.USER, "Hello there"),
        ],
        model="claude-haiku-4-5-20251001",
        parameters=RequestParameters(stop_sequences=["END"]),
        system_prompt="Be brief",
    )

    result = await provider.send_message(request)

    assert result.ok
    response = result.value
    assert response.content == "Hi\nagain"
    assert response.usage.input_tokens == 12
    assert response.usage.total_tokens == 17
    assert response.finish_reason is FinishReason.STOP
    assert response.estimated_input_tokens == (1 + 2) + 4 * 2 + (2 + 4) + 3
    assert response.estimated_output_tokens == 2

    assert seen["headers"]["x-api-key"] == "test-key"
    assert seen["headers"]["anthropic-version"] == "2023-06-01"
    body = seen["body"]
    assert body["system"] == "Be brief"
    assert [m["role"] for m in body["messages"]] == ["user", "user"]
    assert body["stop_sequences"] == ["END"]
    assert "top_k" not in body


@pytest.mark.asyncio
async def test_structured_content_is_sent_as_blocks():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_body([{"type": "text", "text": "ok"}]))

    provider = _provider(handler)
    request = AIRequest(
        messages=[
            Message(
                role=MessageRole.USER,
                content=StructuredContent([TextBlock("result:"), ToolResultBlock("toolu_1", "42")]),
            )
        ],
        model="claude-haiku-4-5-20251001",
        parameters=RequestParameters(response_format=ResponseFormat.JSON),
    )

    await provider.send_message(request)

    assert seen["body"]["messages"][0]["content"] == [
        {"type": "text", "text": "result:"},
        {"type": "tool_result", "tool_use_id": "toolu_1", "content": "42"},
    ]


@pytest.mark.asyncio
async def test_tool_use_blocks_are_extracted():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json=_body(
                [
                    {"type": "text", "text": "Checking"},
                    {"type": "tool_use", "id": "toolu_1", "name": "get_weather", "input": {"city": "Rome"}},
                    {"type": "tool_use", "name": "partial", "input": {}},
                ],
                stop_reason="tool_use",
            ),
        )

    result = await _provider(handler).send_message(_request())

    response = result.unwrap()
    assert response.finish_reason is FinishReason.TOOL_USE
    assert [(t.id, t.name, t.input) for t in response.tool_uses] == [("toolu_1", "get_weather", {"city": "Rome"})]


@pytest.mark.asyncio
async def test_json_format_enhances_request_and_cleans_reply():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_body([{"type": "text", "text": '```json\n{"answer": "Italy"}\n```'}]))

    result = await _provider(handler).send_message(_request("Where is Rome?", response_format=ResponseFormat.JSON))

    assert seen["body"]["messages"][-1]["content"].startswith("User request: Where is Rome?")
    assert result.unwrap().content == '{\n  "answer": "Italy"\n}'


@pytest.mark.asyncio
async def test_error_body_message_is_used():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={"type": "error", "error": {"type": "invalid_request_error", "message": "max_tokens too large"}},
        )

    result = await _provider(handler).send_message(_request())

    assert not result.ok
    assert isinstance(result.error, NetworkError)
    assert str(result.error) == "Claude API Error: max_tokens too large"


@pytest.mark.asyncio
async def test_unparseable_error_body_falls_back_to_status_and_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="bad gateway")

    result = await _provider(handler).send_message(_request())

    assert isinstance(result.error, NetworkError)
    assert str(result.error) == "Claude API Error (502): bad gateway"


@pytest.mark.asyncio
async def test_malformed_success_body_is_parse_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": True})

    result = await _provider(handler).send_message(_request())

    assert isinstance(result.error, ParseError)


@pytest.mark.asyncio
async def test_transport_failure_is_returned_not_raised():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    result = await _provider(handler).send_message(_request())

    assert isinstance(result.error, NetworkError)
    with pytest.raises(NetworkError):
        result.unwrap()


@pytest.mark.asyncio
async def test_models_are_listed_from_catalog():
    result = await _provider(lambda request: httpx.Response(500)).get_models()

    assert "claude-sonnet-4-5-20250929" in [model.id for model in result.unwrap()]


def test_validate_config_reports_every_problem():
    provider = _provider(lambda request: httpx.Response(500), ClaudeConfig(api_key=" ", base_url="http://x"))

    result = provider.validate_config()

    assert not result.is_valid
    assert len(result.errors) == 2


def test_validate_config_accepts_defaults():
    assert _provider(lambda request: httpx.Response(500)).validate_config().is_valid


@pytest.mark.asyncio
async def test_unencodable_xml_reply_becomes_placeholder_not_network_error():
    raw = json.dumps(_body([{"type": "text", "text": "<a>\ud800</a>"}])).encode("ascii")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=raw, headers={"content-type": "application/json"})

    result = await _provider(handler).send_message(_request(response_format=ResponseFormat.XML))

    assert result.ok
    assert result.value.content.startswith("Invalid XML: ")


@pytest.mark.asyncio
async def test_streaming_request_is_unsupported():
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=_body([{"type": "text", "text": "Hi"}]))

    result = await _provider(handler).send_message(_request(streaming_enabled=True))

    assert isinstance(result.error, UnsupportedOperationError)
    assert calls == []

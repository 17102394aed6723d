from gateway.llm.formatting import (
    INVALID_JSON_PLACEHOLDER,
    INVALID_XML_PREFIX,
    enhance_message,
    process_response,
    strip_code_fence,
)
from gateway.models import ResponseFormat


def test_plain_text_passes_through_unchanged():
    text = "  ```json\n{not json}\n```  "

    assert process_response(text, ResponseFormat.PLAIN_TEXT) == text
    assert enhance_message("hello", ResponseFormat.PLAIN_TEXT) == "hello"


def test_fenced_json_matches_unfenced_json():
    fenced = process_response('```json\n{"title": "Rome", "answer": 1}\n```', ResponseFormat.JSON)
    bare = process_response('{"title": "Rome", "answer": 1}', ResponseFormat.JSON)

    assert fenced == bare
    assert bare == '{\n  "title": "Rome",\n  "answer": 1\n}'


def test_plain_fence_is_stripped_for_json():
    assert process_response('```\n{"a": true}\n```', ResponseFormat.JSON) == '{\n  "a": true\n}'


def test_invalid_json_gives_placeholder():
    assert process_response("Here is the JSON: {", ResponseFormat.JSON) == INVALID_JSON_PLACEHOLDER


def test_xml_is_pretty_printed_with_declaration():
    raw = (
        '```xml\n<?xml version="1.0" encoding="UTF-8"?>'
        "<response><title>Rome</title><answer>Italy</answer></response>\n```"
    )

    result = process_response(raw, ResponseFormat.XML)

    assert result.startswith('<?xml version="1.0" encoding="UTF-8"?>')
    assert "\n  <title>Rome</title>" in result
    assert result.endswith("</response>")


def test_malformed_xml_gives_placeholder_with_reason():
    result = process_response("<response><title>Rome</response>", ResponseFormat.XML)

    assert result.startswith(f"{INVALID_XML_PREFIX}: ")


def test_strip_code_fence_trims_whitespace():
    assert strip_code_fence("  ```xml\n<a/>\n```\n", ResponseFormat.XML) == "<a/>"


def test_enhance_message_wraps_request_with_template():
    enhanced = enhance_message("Where is Rome?", ResponseFormat.JSON)

    assert enhanced.startswith("User request: Where is Rome?")
    assert '"source_request"' in enhanced

    enhanced_xml = enhance_message("Where is Rome?", ResponseFormat.XML)
    assert enhanced_xml.startswith("User request: Where is Rome?")
    assert "<source_request>" in enhanced_xml


def test_deeply_nested_json_gives_placeholder():
    nested = "[" * 100_000 + "]" * 100_000

    assert process_response(nested, ResponseFormat.JSON) == INVALID_JSON_PLACEHOLDER


def test_xml_with_lone_surrogate_gives_placeholder():
    result = process_response("<a>\ud800</a>", ResponseFormat.XML)

    assert result.startswith(f"{INVALID_XML_PREFIX}: ")


def test_deeply_nested_xml_never_raises():
    nested = "<a>" * 50_000 + "</a>" * 50_000

    result = process_response(nested, ResponseFormat.XML)

    assert isinstance(result, str)

"""Structured response formats: outbound instructions and inbound cleanup.

The instructions appended to the user message and the cleanup applied to the
reply are paired per format: the fence markers the instructions forbid are the
ones the cleanup strips.
"""

from __future__ import annotations

import json
from xml.dom import minidom
from xml.parsers.expat import ExpatError

from gateway.models import ResponseFormat

INVALID_JSON_PLACEHOLDER = "Invalid JSON"
INVALID_XML_PREFIX = "Invalid XML"

_FENCE_PREFIXES = {
    ResponseFormat.JSON: ("```json", "```"),
    ResponseFormat.XML: ("```xml", "```"),
}

JSON_TEMPLATE = """{
  "title": "short description of the request",
  "source_request": "the original request",
  "answer": "the answer to the request"
}"""

XML_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<response>
  <title>short description of the request</title>
  <source_request>the original request</source_request>
  <answer>the answer to the request</answer>
</response>"""

_JSON_INSTRUCTIONS = """User request: {message}

CRITICAL: Respond ONLY with raw JSON. Your response must start with {{ and end with }}

Required JSON format:
{template}

STRICT RULES:
- NO markdown code blocks (NO ```json or ```)
- NO explanatory text before or after JSON
- NO additional formatting
- Start immediately with {{
- End immediately with }}
- Use only the specified keys

CORRECT example (your response should look EXACTLY like this):
{{
  "title": "Location of Ancient Rome",
  "source_request": "Where is Ancient Rome",
  "answer": "Ancient Rome was located in present-day Italy, in the central part of the Apennine Peninsula"
}}

WRONG examples (DO NOT do this):
```json
{{...}}
```

or

Here is the JSON:
{{...}}

Your response must be pure JSON only."""

_XML_INSTRUCTIONS = """User request: {message}

CRITICAL: Respond ONLY with valid XML. Your response must start with <?xml and end with </response>

Required XML format:
{template}

STRICT RULES:
- NO markdown code blocks (NO ```xml or ```)
- NO explanatory text before or after XML
- NO additional formatting
- Must include XML declaration: <?xml version="1.0" encoding="UTF-8"?>
- Must be well-formed XML with proper opening and closing tags
- Use only the specified tags: <response>, <title>, <source_request>, <answer>

CORRECT example (your response should look EXACTLY like this):
<?xml version="1.0" encoding="UTF-8"?>
<response>
  <title>Location of Ancient Rome</title>
  <source_request>Where is Ancient Rome</source_request>
  <answer>Ancient Rome was located in present-day Italy, in the central part of the Apennine Peninsula</answer>
</response>

WRONG examples (DO NOT do this):
```xml
<response>...</response>
```

or

Here is the XML:
<response>...</response>

Your response must be pure XML only."""


def enhance_message(message: str, response_format: ResponseFormat) -> str:
    """Append the formatting instructions for ``response_format`` to a user message."""

    if response_format is ResponseFormat.JSON:
        return _JSON_INSTRUCTIONS.format(message=message, template=JSON_TEMPLATE)
    if response_format is ResponseFormat.XML:
        return _XML_INSTRUCTIONS.format(message=message, template=XML_TEMPLATE)
    return message


def process_response(text: str, response_format: ResponseFormat) -> str:
    """Normalize a model reply for ``response_format``. Never raises."""

    if response_format is ResponseFormat.JSON:
        return _process_json(strip_code_fence(text, response_format))
    if response_format is ResponseFormat.XML:
        return _process_xml(strip_code_fence(text, response_format))
    return text


def strip_code_fence(text: str, response_format: ResponseFormat) -> str:
    cleaned = text.strip()
    for prefix in _FENCE_PREFIXES.get(response_format, ("```",)):
        if cleaned.startswith(prefix):
            cleaned = cleaned[len(prefix):]
            break
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def _process_json(cleaned: str) -> str:
    try:
        return json.dumps(json.loads(cleaned), indent=2, ensure_ascii=False)
    except (ValueError, RecursionError):
        return INVALID_JSON_PLACEHOLDER


def _process_xml(cleaned: str) -> str:
    try:
        document = minidom.parseString(cleaned.encode("utf-8"))
        _remove_whitespace_nodes(document.documentElement)
        return document.toprettyxml(indent="  ", encoding="UTF-8").decode("utf-8").strip()
    except (ExpatError, UnicodeError, RecursionError) as exc:
        return f"{INVALID_XML_PREFIX}: {exc}"


def _remove_whitespace_nodes(node: minidom.Node) -> None:
    for child in list(node.childNodes):
        if child.nodeType == child.TEXT_NODE and not child.data.strip():
            node.removeChild(child)
        elif child.nodeType == child.ELEMENT_NODE:
            _remove_whitespace_nodes(child)

"""Helpers to extract and validate structured output from generateContent responses."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from utils.errors import MalformedResponse

_TYPE_CHECKS = {
    "STRING": lambda v: isinstance(v, str),
    "OBJECT": lambda v: isinstance(v, dict),
    "ARRAY": lambda v: isinstance(v, list),
    "BOOLEAN": lambda v: isinstance(v, bool),
    "INTEGER": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "NUMBER": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
}


def extract_text(body: Any) -> str:
    """Return `candidates[0].content.parts[0].text` or raise MalformedResponse."""
    try:
        text = body["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError) as exc:
        raise MalformedResponse("Inference response is missing candidates[0].content.parts[0].text.") from exc
    if not isinstance(text, str) or not text.strip():
        raise MalformedResponse("Inference response text is empty.")
    return text


def parse_json_text(text: str) -> Dict[str, Any]:
    """Decode the model's JSON text into a dict."""
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise MalformedResponse(f"Inference response text is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedResponse("Inference response JSON is not an object.")
    return data


def validate_against_schema(value: Any, schema: Dict[str, Any], where: str = "$") -> None:
    """Structurally check `value` against a responseSchema descriptor.

    Checks declared types, required properties, and array items. Optional
    properties may be absent or null.
    """
    expected = str(schema.get("type", "")).upper()
    check = _TYPE_CHECKS.get(expected)
    if check is not None and not check(value):
        raise MalformedResponse(f"Field {where} should be {expected.lower()}, got {type(value).__name__}.")

    if expected == "OBJECT":
        properties = schema.get("properties") or {}
        for name in schema.get("required") or []:
            if name not in value or value[name] is None:
                raise MalformedResponse(f"Required field {where}.{name} is missing.")
        for name, sub_schema in properties.items():
            if value.get(name) is not None:
                validate_against_schema(value[name], sub_schema, f"{where}.{name}")
    elif expected == "ARRAY" and "items" in schema:
        for index, item in enumerate(value):
            validate_against_schema(item, schema["items"], f"{where}[{index}]")


def extract_usage(body: Any) -> Dict[str, Optional[int]]:
    """Return token usage if present."""
    usage = body.get("usageMetadata") if isinstance(body, dict) else None
    return {
        "input_tokens": usage.get("promptTokenCount") if usage else None,
        "output_tokens": usage.get("candidatesTokenCount") if usage else None,
    }

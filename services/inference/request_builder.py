"""Utilities to build the generateContent request payload."""

from typing import Any, Dict

from utils.media_validation import encode_base64


def build_parts(prompt: str, image: bytes, mime_type: str) -> list:
    """Return the prompt part followed by the inline image part."""
    return [
        {"text": prompt},
        {"inlineData": {"mimeType": mime_type, "data": encode_base64(image)}},
    ]


def build_payload(prompt: str, image: bytes, mime_type: str, schema: Dict[str, Any]) -> Dict[str, Any]:
    """Build the JSON body asking for strictly schema-conformant JSON output."""
    return {
        "contents": [{"role": "user", "parts": build_parts(prompt, image, mime_type)}],
        "generationConfig": {
            "responseMimeType": "application/json",
            "responseSchema": schema,
        },
    }

"""Validation and encoding helpers for uploaded images."""

import base64
from typing import Iterable, Tuple

from utils.errors import ImageRejected


def normalize_mime_type(mime_type: str | None) -> str:
    """Lower-case the mime type and drop any parameters (`image/jpeg; q=1`)."""
    return (mime_type or "").lower().split(";", 1)[0].strip()


def validate_image(
    image: bytes,
    mime_type: str | None,
    *,
    max_bytes: int,
    allowed_types: Iterable[str],
) -> str:
    """Check the analysis preconditions and return the normalized mime type.

    Raises:
        ImageRejected: With `reason` set to "empty", "size", or "mime_type".
    """
    if not image:
        raise ImageRejected("Uploaded image is empty.", reason="empty")
    if len(image) > max_bytes:
        limit_mb = max_bytes / (1024 * 1024)
        raise ImageRejected(
            f"Image is too large ({len(image)} bytes). Please use a file smaller than {limit_mb:g}MB.",
            reason="size",
        )
    content_type = normalize_mime_type(mime_type)
    if content_type not in set(allowed_types):
        raise ImageRejected(f"Unsupported image content type: {mime_type}", reason="mime_type")
    return content_type


def encode_base64(image: bytes) -> str:
    """Return the base64 text used on the wire and inside data URIs."""
    return base64.b64encode(image).decode("ascii")


def to_data_uri(image: bytes, mime_type: str) -> str:
    """Encode raw image bytes as `data:<mime>;base64,<data>` for storage."""
    return f"data:{mime_type};base64,{encode_base64(image)}"


def parse_data_uri(data_uri: str) -> Tuple[str, bytes]:
    """Split a base64 data URI back into `(mime_type, raw_bytes)`."""
    header, sep, payload = data_uri.partition(",")
    if not sep or not header.startswith("data:") or not header.endswith(";base64"):
        raise ValueError("Value is not a base64 data URI.")
    mime_type = header[len("data:"):-len(";base64")]
    try:
        return mime_type, base64.b64decode(payload, validate=True)
    except Exception as exc:
        raise ValueError("Invalid base64 data in data URI") from exc

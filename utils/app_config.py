"""Process configuration resolved once at startup and passed at construction.

`AppConfig.from_env()` is the only place environment variables are read;
services receive the resulting dataclasses explicitly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Optional

DEFAULT_APP_ID = "default-macrosearch-app"
DEFAULT_MODEL = "gemini-2.5-flash-preview-09-2025"
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
MAX_IMAGE_BYTES = 5 * 1024 * 1024
ALLOWED_IMAGE_TYPES: FrozenSet[str] = frozenset({"image/png", "image/jpeg"})


@dataclass(frozen=True)
class InferenceConfig:
    """Settings for the inference service client.

    Attributes:
        api_key: Key sent as the `key` query parameter.
        base_url: Service root, without the `/models/...` suffix.
        model: Model name inserted in the request path.
        max_attempts: Total attempts per analysis, first one included.
        backoff_base: Delay before attempt k (k >= 2) is `backoff_base ** (k - 2)` seconds.
        timeout_seconds: httpx client timeout.
        max_image_bytes: Upper bound for raw image size.
        allowed_mime_types: Accepted image mime types.
        retry_client_errors: When False, 4xx responses other than 408/429 are not retried.
    """

    api_key: str = ""
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    max_attempts: int = 3
    backoff_base: float = 2.0
    timeout_seconds: float = 60.0
    max_image_bytes: int = MAX_IMAGE_BYTES
    allowed_mime_types: FrozenSet[str] = ALLOWED_IMAGE_TYPES
    retry_client_errors: bool = True

    @property
    def endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}/models/{self.model}:generateContent"


@dataclass(frozen=True)
class AppConfig:
    """Top-level configuration for one process."""

    app_id: str = DEFAULT_APP_ID
    initial_auth_token: Optional[str] = None
    database_dir: Path = Path("database")
    collection_name: str = "analyses"
    inference: InferenceConfig = field(default_factory=InferenceConfig)

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Build the configuration from process environment variables."""
        database_dir = os.getenv("DATABASE_DIR")
        if database_dir is None or not database_dir.strip():
            raise RuntimeError(
                "DATABASE_DIR environment variable must be set to a writable "
                "directory path where the SQLite database file will be stored."
            )
        inference = InferenceConfig(
            api_key=os.getenv("GEMINI_API_KEY", ""),
            base_url=os.getenv("GEMINI_BASE_URL") or DEFAULT_BASE_URL,
            model=os.getenv("GEMINI_MODEL") or DEFAULT_MODEL,
        )
        return cls(
            app_id=os.getenv("APP_ID") or DEFAULT_APP_ID,
            initial_auth_token=os.getenv("INITIAL_AUTH_TOKEN") or None,
            database_dir=Path(database_dir).expanduser(),
            inference=inference,
        )

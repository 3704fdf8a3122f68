"""Schema-constrained image analysis over the generateContent HTTP endpoint."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import httpx
from pydantic import ValidationError

from models.analysis_payload import AnalysisPayload
from services.inference.request_builder import build_payload
from services.inference.response_parser import (
    extract_text,
    extract_usage,
    parse_json_text,
    validate_against_schema,
)
from utils.app_config import InferenceConfig
from utils.errors import InferenceFailed, MalformedResponse
from utils.media_validation import validate_image


class _ClientError(Exception):
    """A 4xx response that is not worth retrying."""


class InferenceClient:
    """Send one image with a response schema and return the validated payload.

    Every failure mode (transport error, non-2xx status, unparseable body,
    missing content, schema violation) consumes one attempt from the same
    budget. The delay before attempt k (k >= 2) is `backoff_base ** (k - 2)`.
    """

    def __init__(
        self,
        config: InferenceConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=config.timeout_seconds)
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait before `attempt` (1-based); zero for the first."""
        if attempt <= 1:
            return 0.0
        return float(self.config.backoff_base ** (attempt - 2))

    async def analyze(self, image: bytes, mime_type: str, schema: Dict[str, Any], prompt: str) -> AnalysisPayload:
        """Return a schema-valid analysis of `image`.

        Raises:
            ImageRejected: Before any network call, when preconditions fail.
            InferenceFailed: When every attempt failed.
        """
        content_type = validate_image(
            image,
            mime_type,
            max_bytes=self.config.max_image_bytes,
            allowed_types=self.config.allowed_mime_types,
        )
        payload = build_payload(prompt, image, content_type, schema)

        last_error: Optional[BaseException] = None
        attempts_made = 0
        for attempt in range(1, self.config.max_attempts + 1):
            delay = self.backoff_delay(attempt)
            if delay:
                await self._sleep(delay)
            attempts_made = attempt
            start = time.time()
            try:
                analysis, body = await self._attempt(payload, schema)
            except _ClientError as exc:
                logging.error("Inference attempt %d rejected by the service: %s", attempt, exc)
                last_error = exc
                break
            except (httpx.HTTPError, httpx.InvalidURL, MalformedResponse) as exc:
                logging.error("Inference attempt %d failed: %s", attempt, exc)
                last_error = exc
                continue
            except Exception as exc:
                logging.exception("Inference attempt %d raised an unexpected error", attempt)
                last_error = exc
                break
            usage = extract_usage(body)
            logging.info(
                "Inference succeeded on attempt %d in %.2fs (input_tokens=%s, output_tokens=%s)",
                attempt,
                time.time() - start,
                usage["input_tokens"],
                usage["output_tokens"],
            )
            return analysis

        raise InferenceFailed(
            f"Inference request failed after {attempts_made} attempts: {last_error}",
            last_error=last_error,
        )

    async def _attempt(self, payload: Dict[str, Any], schema: Dict[str, Any]) -> Tuple[AnalysisPayload, Dict[str, Any]]:
        response = await self.http_client.post(
            self.config.endpoint,
            params={"key": self.config.api_key},
            json=payload,
            headers={"Content-Type": "application/json"},
        )
        if not response.is_success:
            message = f"HTTP error! status: {response.status_code}"
            if not self.config.retry_client_errors and 400 <= response.status_code < 500 and response.status_code not in (408, 429):
                raise _ClientError(message)
            raise httpx.HTTPStatusError(message, request=response.request, response=response)

        try:
            body = response.json()
        except ValueError as exc:
            raise MalformedResponse("Inference response body is not valid JSON.") from exc

        data = parse_json_text(extract_text(body))
        validate_against_schema(data, schema)
        try:
            return AnalysisPayload.model_validate(data), body
        except ValidationError as exc:
            raise MalformedResponse(f"Inference response does not match the analysis model: {exc}") from exc

    async def aclose(self) -> None:
        """Close the underlying httpx client if this instance created it."""
        if self._owns_client:
            await self.http_client.aclose()

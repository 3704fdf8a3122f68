"""Shared fakes and builders for the analysis core tests."""

from __future__ import annotations

import io
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

import httpx
from PIL import Image

from models.session_models import Credential
from services.analysis_orchestrator import AnalysisOrchestrator
from services.identity.identity_bootstrap import IdentityBootstrap
from services.identity.identity_provider import IdentityProvider
from services.inference.inference_client import InferenceClient
from services.store.document_store import SqliteDocumentStore
from services.store.synced_collection import SyncedCollection
from utils.app_config import InferenceConfig
from utils.channel import Channel
from utils.database_init import AsyncDatabaseInitializer
from utils.errors import AuthFailure

VALID_ANALYSIS: Dict[str, Any] = {
    "scientificName": "Baetis rhodani",
    "commonName": "Large dark olive mayfly",
    "summary": "Small swimming mayfly nymph found under stones in fast, clean streams.",
    "classification": {"order": "Ephemeroptera", "family": "Baetidae", "class": "Insecta"},
    "ecologicalRole": "Sensitive to organic pollution; indicates good water quality.",
}


def make_png(size=(64, 48), color=(10, 120, 200)) -> bytes:
    out = io.BytesIO()
    Image.new("RGB", size, color).save(out, format="PNG")
    return out.getvalue()


def gemini_body(analysis: Optional[Dict[str, Any]] = None, text: Optional[str] = None) -> Dict[str, Any]:
    """Build a generateContent response carrying `analysis` as JSON text."""
    if text is None:
        text = json.dumps(analysis if analysis is not None else VALID_ANALYSIS)
    return {
        "candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}],
        "usageMetadata": {"promptTokenCount": 812, "candidatesTokenCount": 96},
    }


Step = Union[httpx.Response, Exception]


class ScriptedService:
    """httpx MockTransport handler replaying one scripted step per request."""

    def __init__(self, steps: List[Step]) -> None:
        self.steps = list(steps)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.steps:
            raise AssertionError("Unexpected extra inference request")
        step = self.steps.pop(0)
        if isinstance(step, Exception):
            raise step
        return step

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def ok(body: Optional[Dict[str, Any]] = None) -> httpx.Response:
    return httpx.Response(200, json=body if body is not None else gemini_body())


def status(code: int) -> httpx.Response:
    return httpx.Response(code, json={"error": {"code": code, "message": "scripted failure"}})


class RecordingSleep:
    """Async sleep stand-in that records requested delays and returns at once."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeIdentityProvider(IdentityProvider):
    """Scripted provider counting calls per path."""

    def __init__(self, *, token_ok: bool = True, anonymous_ok: bool = True) -> None:
        self.token_ok = token_ok
        self.anonymous_ok = anonymous_ok
        self.exchange_calls = 0
        self.anonymous_calls = 0
        self.channels: List[Channel[str]] = []
        self.gate: Optional[Callable[[], Any]] = None

    async def exchange_token(self, token: str) -> Credential:
        self.exchange_calls += 1
        if self.gate is not None:
            await self.gate()
        if not self.token_ok:
            raise AuthFailure("token rejected")
        return Credential(uid=f"user-{token}", anonymous=False, token=token)

    async def create_anonymous(self) -> Credential:
        self.anonymous_calls += 1
        if self.gate is not None:
            await self.gate()
        if not self.anonymous_ok:
            raise AuthFailure("anonymous sign-in disabled")
        return Credential(uid=f"anon-{self.anonymous_calls}", anonymous=True)

    def invalidations(self) -> Channel[str]:
        channel: Channel[str] = Channel(on_close=self.channels.remove)
        self.channels.append(channel)
        return channel

    def invalidate(self, uid: str) -> None:
        for channel in list(self.channels):
            channel.publish(uid)


@dataclass
class Core:
    provider: FakeIdentityProvider
    bootstrap: IdentityBootstrap
    store: SqliteDocumentStore
    collection: SyncedCollection
    service: ScriptedService
    sleep: RecordingSleep
    inference: InferenceClient
    orchestrator: AnalysisOrchestrator
    config: InferenceConfig


async def build_core(
    tmp_path,
    steps: Optional[List[Step]] = None,
    *,
    token: Optional[str] = None,
    provider: Optional[FakeIdentityProvider] = None,
    establish: bool = True,
    config: Optional[InferenceConfig] = None,
) -> Core:
    """Wire the whole core against a temporary SQLite file and a scripted service."""
    provider = provider or FakeIdentityProvider()
    bootstrap = IdentityBootstrap(provider, token)
    if establish:
        await bootstrap.establish()
    db = AsyncDatabaseInitializer(tmp_path / "db")
    store = SqliteDocumentStore(db)
    collection = SyncedCollection(store, bootstrap, app_id="test-app")
    service = ScriptedService(steps or [])
    sleep = RecordingSleep()
    config = config or InferenceConfig(api_key="test-key")
    inference = InferenceClient(config, service.client(), sleep=sleep)
    orchestrator = AnalysisOrchestrator(bootstrap, inference, collection, config)
    return Core(provider, bootstrap, store, collection, service, sleep, inference, orchestrator, config)

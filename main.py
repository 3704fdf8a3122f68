import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from routes.analysis_route import router as analysis_router
from routes.history_ws import router as history_ws_router
from routes.session_route import router as session_router
from services.analysis_orchestrator import AnalysisOrchestrator
from services.identity.identity_bootstrap import IdentityBootstrap
from services.identity.identity_provider import SqliteIdentityProvider
from services.inference.inference_client import InferenceClient
from services.store.document_store import SqliteDocumentStore
from services.store.history_mirror import HistoryMirror
from services.store.synced_collection import SyncedCollection
from utils.app_config import AppConfig
from utils.database_init import AsyncDatabaseInitializer
from utils.errors import AuthFailure

BASE_DIR = Path(__file__).resolve().parent
PUBLIC_DIR = BASE_DIR / "public"

load_dotenv()  # Load environment variables from .env file if present


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan manager to wire the analysis core and attach it to `app.state`:
      - the SQLite database (kept across restarts, at <database_dir>/app.db)
      - identity bootstrap with its invalidation listener
      - document store, synced collection, and the live history mirror,
        which follows the bootstrap onto each new identity
      - the inference client and the analysis orchestrator
    """
    config: AppConfig = app.state.config or AppConfig.from_env()
    app.state.config = config
    if not config.inference.api_key:
        logging.warning("GEMINI_API_KEY is not set; inference requests will be rejected by the service.")

    db_initializer = AsyncDatabaseInitializer(config.database_dir)
    await db_initializer.ensure_database()
    app.state.db_initializer = db_initializer

    provider = SqliteIdentityProvider(db_initializer)
    bootstrap = IdentityBootstrap(provider, config.initial_auth_token)
    bootstrap.start()
    store = SqliteDocumentStore(db_initializer)
    collection = SyncedCollection(
        store, bootstrap, app_id=config.app_id, collection_name=config.collection_name
    )
    history = HistoryMirror(collection)
    inference_client = InferenceClient(config.inference, app.state.http_client)
    orchestrator = AnalysisOrchestrator(bootstrap, inference_client, collection, config.inference)

    app.state.identity_provider = provider
    app.state.bootstrap = bootstrap
    app.state.store = store
    app.state.collection = collection
    app.state.history = history
    app.state.inference_client = inference_client
    app.state.orchestrator = orchestrator

    try:
        identity = await bootstrap.establish()
    except AuthFailure as exc:
        logging.error("Startup bootstrap failed: %s", exc)
    else:
        await history.start(identity)
    history.follow(bootstrap)

    try:
        yield
    finally:
        await history.close()
        collection.cancel_all()
        await store.close()
        await bootstrap.close()
        await inference_client.aclose()


def create_app(config: Optional[AppConfig] = None, http_client: Optional[httpx.AsyncClient] = None) -> FastAPI:
    """
    Create and configure the FastAPI application instance.

    Args:
        config: Explicit configuration; read from the environment at startup when omitted.
        http_client: Optional httpx client for the inference service.
    """
    app = FastAPI(lifespan=lifespan)
    app.state.config = config
    app.state.http_client = http_client

    # Serve static assets from the public directory, if it exists.
    if PUBLIC_DIR.exists():
        app.mount("/public", StaticFiles(directory=PUBLIC_DIR), name="public")

    @app.get("/", include_in_schema=False)
    async def serve_index():
        """
        Serve the frontend index page from the public directory.
        """
        index_path = PUBLIC_DIR / "index.html"
        if not index_path.exists():
            raise HTTPException(status_code=404, detail="Frontend not found")
        return FileResponse(index_path)

    @app.get("/health")
    async def health(request: Request):
        """
        Simple health check reporting bootstrap state and history size.
        """
        bootstrap = request.app.state.bootstrap
        return {
            "ok": True,
            "state": bootstrap.state.value,
            "uid": bootstrap.identity.uid if bootstrap.identity else None,
            "history_count": len(request.app.state.history.records),
        }

    app.include_router(analysis_router)
    app.include_router(session_router)
    app.include_router(history_ws_router)

    return app


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = create_app()

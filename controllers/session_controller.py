"""Identity bootstrap helpers for the HTTP surface."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import HTTPException, Request

from services.identity.identity_bootstrap import IdentityBootstrap
from services.store.history_mirror import HistoryMirror
from utils.errors import AuthFailure


def describe_session(request: Request) -> Dict[str, Any]:
	"""Return the bootstrap state and, when ready, the identity."""
	bootstrap: IdentityBootstrap = request.app.state.bootstrap
	identity = bootstrap.identity
	return {
		"state": bootstrap.state.value,
		"uid": identity.uid if identity else None,
		"anonymous": identity.anonymous if identity else None,
		"error": bootstrap.error,
	}


async def rebootstrap(request: Request) -> Dict[str, Any]:
	"""Re-run identity bootstrap and point the history at the resulting identity."""
	bootstrap: IdentityBootstrap = request.app.state.bootstrap
	history: HistoryMirror = request.app.state.history
	try:
		identity = await bootstrap.establish()
	except AuthFailure as exc:
		raise HTTPException(status_code=401, detail=str(exc)) from exc
	if history.identity != identity or history.error is not None:
		await history.start(identity)
	return describe_session(request)

"""WebSocket endpoint pushing live history snapshots."""

from __future__ import annotations

import asyncio
import json

from fastapi import APIRouter, WebSocket

from services.store.history_mirror import HistoryMirror

router = APIRouter()


def _snapshot_message(history: HistoryMirror) -> str:
	return json.dumps(
		{
			"type": "history.snapshot",
			"version": history.version,
			"count": len(history.records),
			"analyses": [record.to_summary() for record in history.records],
		}
	)


async def _wait_disconnect(websocket: WebSocket) -> None:
	while True:
		message = await websocket.receive()
		if message["type"] == "websocket.disconnect":
			return


@router.websocket("/ws/history")
async def history_socket(websocket: WebSocket):
	"""Send the current history, then one message per new snapshot until the client leaves."""
	await websocket.accept()
	history: HistoryMirror = websocket.app.state.history
	version = history.version
	await websocket.send_text(_snapshot_message(history))

	disconnected = asyncio.ensure_future(_wait_disconnect(websocket))
	try:
		while True:
			newer = asyncio.ensure_future(history.wait_newer(version))
			done, _ = await asyncio.wait({disconnected, newer}, return_when=asyncio.FIRST_COMPLETED)
			if disconnected in done:
				newer.cancel()
				return
			version, _records = newer.result()
			if history.error is not None:
				await websocket.send_text(json.dumps({"type": "error", "detail": history.error}))
				await websocket.close()
				return
			await websocket.send_text(_snapshot_message(history))
	finally:
		disconnected.cancel()

"""WebSocket endpoint streaming task updates for one session."""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, WebSocket
from starlette.websockets import WebSocketDisconnect

from models.errors import SessionNotFound
from models.event_models import ErrorEvent, SessionRestoredEvent, to_message
from services.realtime.ws_session import RealtimeSessionHandler
from services.tracker.notification_channel import NotificationChannel, Subscription
from services.tracker.session_store import SessionStore

LOGGER = logging.getLogger(__name__)

router = APIRouter()


def _require_session_store(websocket: WebSocket) -> SessionStore:
	store = websocket.app.state.session_store
	if store is None:
		raise HTTPException(status_code=500, detail="Session store unavailable")
	return store


async def _pump(websocket: WebSocket, subscription: Subscription, handler: RealtimeSessionHandler) -> None:
	async for event in subscription:
		await handler.forward(websocket, event)


@router.websocket("/ws/{session_id}")
async def realtime_socket(websocket: WebSocket, session_id: str, store: SessionStore = Depends(_require_session_store)):
	"""Send a session snapshot, then every task update until the client disconnects."""
	await websocket.accept()
	channel: NotificationChannel = websocket.app.state.notification_channel
	subscription = channel.subscribe(session_id)
	try:
		state = await store.get_session(session_id)
	except SessionNotFound as exc:
		subscription.close()
		await websocket.send_text(json.dumps(to_message(ErrorEvent(session_id=session_id, message=str(exc), code="session_not_found"))))
		await websocket.close()
		return

	handler = RealtimeSessionHandler(websocket.app.state.dispatcher)
	await websocket.send_text(json.dumps(to_message(SessionRestoredEvent(session=state))))
	pump = asyncio.create_task(_pump(websocket, subscription, handler))
	try:
		while True:
			try:
				raw = await websocket.receive_text()
			except WebSocketDisconnect:
				break
			try:
				payload = json.loads(raw)
			except json.JSONDecodeError:
				await websocket.send_text(json.dumps(to_message(ErrorEvent(session_id=session_id, message="Payload must be JSON"))))
				continue
			if not isinstance(payload, dict):
				await websocket.send_text(json.dumps(to_message(ErrorEvent(session_id=session_id, message="Payload must be a JSON object"))))
				continue
			await handler.handle(websocket, session_id, payload)
	finally:
		subscription.close()
		pump.cancel()
		await asyncio.gather(pump, return_exceptions=True)
		LOGGER.debug("Websocket for session %s closed", session_id)

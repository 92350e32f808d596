"""Dispatch inbound websocket messages for one session."""
from __future__ import annotations

import json
from typing import Any, Dict, Optional

from fastapi import WebSocket

from models.event_models import SessionEvent, to_message
from services.tracker.task_dispatcher import TaskDispatcher


class RealtimeSessionHandler:
	"""Answer client requests and forward session events over one websocket."""

	def __init__(self, dispatcher: TaskDispatcher) -> None:
		self.dispatcher = dispatcher

	async def handle(self, websocket: WebSocket, session_id: str, payload: Dict[str, Any]) -> None:
		"""Process a single inbound websocket payload."""
		request_id = payload.get("request_id")
		message_type = payload.get("type")
		try:
			if message_type == "ping":
				result: Optional[Dict[str, Any]] = {"type": "pong"}
			elif message_type == "queue.status":
				result = {"type": "queue_status", "data": self.dispatcher.queue_status()}
			elif message_type == "task.cancel":
				result = await self._cancel(session_id, payload)
			else:
				raise ValueError("Unsupported message type.")
			if result is not None:
				result["request_id"] = request_id
				await self._send(websocket, result)
		except Exception as exc:
			await self._send_error(websocket, session_id, request_id, str(exc))

	async def forward(self, websocket: WebSocket, event: SessionEvent) -> None:
		await self._send(websocket, to_message(event))

	async def _cancel(self, session_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
		task_id = (payload.get("task_id") or "").strip()
		if not task_id:
			raise ValueError("task_id is required.")
		cancelled = await self.dispatcher.cancel(session_id, task_id)
		return {"type": "task.cancel.ack", "task_id": task_id, "cancelled": cancelled}

	async def _send_error(self, websocket: WebSocket, session_id: str, request_id: Any, detail: str) -> None:
		await self._send(
			websocket,
			{"type": "error", "data": {"message": detail}, "sessionId": session_id, "request_id": request_id},
		)

	async def _send(self, websocket: WebSocket, payload: Dict[str, Any]) -> None:
		await websocket.send_text(json.dumps(payload))

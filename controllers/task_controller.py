"""Task submission helpers for the HTTP routes."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Request

from controllers.session_controller import to_http_error
from models.errors import TrackerError
from models.generation_models import ImageGenerationParams
from services.tracker.task_dispatcher import TaskDispatcher


def _dispatcher(request: Request) -> TaskDispatcher:
	return request.app.state.dispatcher


async def submit_task(
	request: Request,
	session_id: str,
	prompt: str,
	parameters: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
	"""Queue a generation task; the result arrives over the websocket."""
	try:
		params = ImageGenerationParams(**parameters) if parameters is not None else None
		task_id = await _dispatcher(request).submit(session_id, prompt, params)
	except TrackerError as exc:
		raise to_http_error(exc) from exc
	return {"session_id": session_id, "task_id": task_id, "status": "queued"}


async def cancel_task(request: Request, session_id: str, task_id: str) -> Dict[str, Any]:
	try:
		cancelled = await _dispatcher(request).cancel(session_id, task_id)
	except TrackerError as exc:
		raise to_http_error(exc) from exc
	return {"session_id": session_id, "task_id": task_id, "cancelled": cancelled}


async def queue_status(request: Request) -> Dict[str, Any]:
	return _dispatcher(request).queue_status()

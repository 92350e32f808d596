"""Session lifecycle helpers for the HTTP routes."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import HTTPException, Request
from fastapi.responses import Response

from models.errors import DuplicateTask, SessionNotFound, TaskNotFound, TrackerError, ValidationError
from models.generation_models import ImageGenerationParams
from services.thumbnail_generator import ThumbnailGenerator
from services.tracker.session_store import SessionStore


def to_http_error(exc: TrackerError) -> HTTPException:
	"""Translate a tracker error into the matching HTTP status."""
	if isinstance(exc, (SessionNotFound, TaskNotFound)):
		return HTTPException(status_code=404, detail=str(exc))
	if isinstance(exc, ValidationError):
		return HTTPException(status_code=400, detail=str(exc))
	if isinstance(exc, DuplicateTask):
		return HTTPException(status_code=409, detail=str(exc))
	return HTTPException(status_code=500, detail=str(exc))


def _store(request: Request) -> SessionStore:
	return request.app.state.session_store


async def start_session(request: Request) -> Dict[str, Any]:
	"""Create a new session and return its snapshot."""
	state = await _store(request).create_session()
	return state.to_dict()


async def get_session(request: Request, session_id: str) -> Dict[str, Any]:
	try:
		state = await _store(request).get_session(session_id)
	except TrackerError as exc:
		raise to_http_error(exc) from exc
	return state.to_dict()


async def delete_session(request: Request, session_id: str) -> Dict[str, Any]:
	"""Delete a session; 404 if nothing was removed."""
	deleted = await _store(request).delete_session(session_id)
	if not deleted:
		raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
	return {"session_id": session_id, "deleted": True}


async def update_settings(request: Request, session_id: str, settings: Dict[str, Any]) -> Dict[str, Any]:
	"""Merge partial settings over the current ones and store the result."""
	store = _store(request)
	try:
		state = await store.merge_settings(session_id, ImageGenerationParams(**settings))
	except TrackerError as exc:
		raise to_http_error(exc) from exc
	return state.to_dict()


async def get_history(request: Request, session_id: str, limit: int = 20, offset: int = 0) -> Dict[str, Any]:
	"""Return one page of the session's history, oldest first."""
	try:
		state = await _store(request).get_session(session_id)
	except TrackerError as exc:
		raise to_http_error(exc) from exc
	page = state.history[offset:offset + limit]
	return {
		"history": [image.to_dict() for image in page],
		"total": len(state.history),
		"limit": limit,
		"offset": offset,
	}


async def get_thumbnail(request: Request, session_id: str, image_id: str) -> Response:
	"""Return PNG thumbnail bytes for an image in the session's history.

	Raises:
		HTTPException(404) if the session or image is unknown, or the image is
		not stored inline.
	"""
	try:
		state = await _store(request).get_session(session_id)
	except TrackerError as exc:
		raise to_http_error(exc) from exc

	image = next((item for item in state.history if item.id == image_id), None)
	if image is None:
		raise HTTPException(status_code=404, detail="Image not found")

	generator: ThumbnailGenerator = request.app.state.thumbnail_generator
	try:
		png = generator.create_thumbnail_from_data_url(image.image_url)
	except ValueError as exc:
		raise HTTPException(status_code=404, detail=str(exc)) from exc
	return Response(content=png, media_type="image/png")

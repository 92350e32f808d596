"""FastAPI routes for generation sessions and their history."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from controllers.session_controller import (
	delete_session,
	get_history,
	get_session,
	get_thumbnail,
	start_session,
	update_settings,
)

router = APIRouter(prefix="/sessions")


class SettingsPayload(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	width: Optional[int] = None
	height: Optional[int] = None
	aspect_ratio: Optional[str] = Field(default=None, alias="aspectRatio")
	style: Optional[str] = None
	quality: Optional[str] = None


@router.post("")
async def start_session_route(request: Request):
	try:
		return await start_session(request)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/{session_id}")
async def get_session_route(request: Request, session_id: str):
	try:
		return await get_session(request, session_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.delete("/{session_id}")
async def delete_session_route(request: Request, session_id: str):
	try:
		return await delete_session(request, session_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.put("/{session_id}/settings")
async def update_settings_route(request: Request, session_id: str, payload: SettingsPayload):
	try:
		return await update_settings(request, session_id, payload.model_dump(exclude_none=True))
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/{session_id}/history")
async def get_history_route(
	request: Request,
	session_id: str,
	limit: int = Query(default=20, ge=1, le=100),
	offset: int = Query(default=0, ge=0),
):
	try:
		return await get_history(request, session_id, limit, offset)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/{session_id}/history/{image_id}/thumbnail")
async def get_thumbnail_route(request: Request, session_id: str, image_id: str):
	"""Return the PNG thumbnail bytes for an image in the session's history."""
	try:
		return await get_thumbnail(request, session_id, image_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))

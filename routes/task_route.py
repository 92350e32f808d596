"""FastAPI routes for submitting and cancelling generation tasks."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from controllers.task_controller import cancel_task, queue_status, submit_task
from routes.session_route import SettingsPayload

router = APIRouter()


class TaskPayload(BaseModel):
	prompt: str
	parameters: Optional[SettingsPayload] = None


@router.post("/sessions/{session_id}/tasks")
async def submit_task_route(request: Request, session_id: str, payload: TaskPayload):
	try:
		parameters = payload.parameters.model_dump(exclude_none=True) if payload.parameters else None
		return await submit_task(request, session_id, payload.prompt, parameters)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.post("/sessions/{session_id}/tasks/{task_id}/cancel")
async def cancel_task_route(request: Request, session_id: str, task_id: str):
	try:
		return await cancel_task(request, session_id, task_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/queue")
async def queue_status_route(request: Request):
	return await queue_status(request)

"""Events delivered to session subscribers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from models.generation_models import GenerationTask, SessionData


@dataclass(frozen=True)
class TaskUpdateEvent:
	"""Full task snapshot after a state transition."""

	task: GenerationTask
	type: str = "task_update"

	@property
	def session_id(self) -> str:
		return self.task.session_id

	def payload(self) -> Dict[str, Any]:
		return self.task.to_dict()


@dataclass(frozen=True)
class SessionRestoredEvent:
	"""Session snapshot sent when a client (re)attaches to a session."""

	session: SessionData
	type: str = "session_restored"

	@property
	def session_id(self) -> str:
		return self.session.session_id

	def payload(self) -> Dict[str, Any]:
		return self.session.to_dict()


@dataclass(frozen=True)
class ErrorEvent:
	"""Error descriptor scoped to a session."""

	session_id: str
	message: str
	code: Optional[str] = None
	type: str = "error"

	def payload(self) -> Dict[str, Any]:
		data: Dict[str, Any] = {"message": self.message}
		if self.code:
			data["code"] = self.code
		return data


SessionEvent = Union[TaskUpdateEvent, SessionRestoredEvent, ErrorEvent]


def to_message(event: SessionEvent) -> Dict[str, Any]:
	"""Encode an event as a `{type, data, sessionId}` websocket message."""
	return {"type": event.type, "data": event.payload(), "sessionId": event.session_id}

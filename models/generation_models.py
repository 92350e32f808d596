"""Session and task domain models for image generation."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from models.errors import ValidationError

QUALITIES = ("draft", "standard", "high")


def now_ms() -> int:
	"""Return the current wall-clock time in epoch milliseconds."""
	return int(time.time() * 1000)


class TaskStatus(str, Enum):
	QUEUED = "queued"
	PROCESSING = "processing"
	COMPLETED = "completed"
	FAILED = "failed"


ALLOWED_TRANSITIONS = {
	TaskStatus.QUEUED: {TaskStatus.PROCESSING, TaskStatus.FAILED},
	TaskStatus.PROCESSING: {TaskStatus.COMPLETED, TaskStatus.FAILED},
	TaskStatus.COMPLETED: set(),
	TaskStatus.FAILED: set(),
}


@dataclass(frozen=True)
class ImageGenerationParams:
	"""Generation settings; a value object compared field by field.

	Attributes:
		width: Optional positive pixel width.
		height: Optional positive pixel height.
		aspect_ratio: Optional ratio token such as ``"16:9"``.
		style: Optional style token such as ``"natural"``.
		quality: One of ``draft``, ``standard`` or ``high`` when set.
	"""

	width: Optional[int] = None
	height: Optional[int] = None
	aspect_ratio: Optional[str] = None
	style: Optional[str] = None
	quality: Optional[str] = None

	def __post_init__(self) -> None:
		for name in ("width", "height"):
			value = getattr(self, name)
			if value is None:
				continue
			if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
				raise ValidationError(f"{name} must be a positive integer, got {value!r}")
		for name in ("aspect_ratio", "style"):
			value = getattr(self, name)
			if value is not None and (not isinstance(value, str) or not value.strip()):
				raise ValidationError(f"{name} must be a non-empty string")
		if self.quality is not None and self.quality not in QUALITIES:
			raise ValidationError(f"quality must be one of {', '.join(QUALITIES)}, got {self.quality!r}")

	@classmethod
	def defaults(cls) -> "ImageGenerationParams":
		"""Settings assigned to a freshly created session."""
		return cls(width=1024, height=1024, aspect_ratio="1:1", style="natural", quality="standard")

	def merged(self, other: "ImageGenerationParams") -> "ImageGenerationParams":
		"""Return a copy where every field set on `other` overrides this one."""
		overrides = {f.name: getattr(other, f.name) for f in fields(other) if getattr(other, f.name) is not None}
		return replace(self, **overrides)

	def to_dict(self) -> Dict[str, Any]:
		data = {
			"width": self.width,
			"height": self.height,
			"aspectRatio": self.aspect_ratio,
			"style": self.style,
			"quality": self.quality,
		}
		return {key: value for key, value in data.items() if value is not None}

	@classmethod
	def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ImageGenerationParams":
		data = data or {}
		return cls(
			width=data.get("width"),
			height=data.get("height"),
			aspect_ratio=data.get("aspectRatio", data.get("aspect_ratio")),
			style=data.get("style"),
			quality=data.get("quality"),
		)


@dataclass(frozen=True)
class GeneratedImage:
	"""A finished generation stored in a session's history."""

	id: str
	prompt: str
	image_url: str
	parameters: ImageGenerationParams
	created_at: int = field(default_factory=now_ms)
	status: str = "completed"

	def to_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"prompt": self.prompt,
			"imageUrl": self.image_url,
			"parameters": self.parameters.to_dict(),
			"createdAt": self.created_at,
			"status": self.status,
		}

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "GeneratedImage":
		return cls(
			id=data["id"],
			prompt=data["prompt"],
			image_url=data["imageUrl"],
			parameters=ImageGenerationParams.from_dict(data.get("parameters")),
			created_at=int(data["createdAt"]),
			status=data.get("status", "completed"),
		)


@dataclass(frozen=True, eq=False)
class GenerationTask:
	"""Immutable snapshot of one generation request; equal by task id."""

	task_id: str
	session_id: str
	prompt: str
	parameters: ImageGenerationParams
	status: TaskStatus = TaskStatus.QUEUED
	result: Optional[GeneratedImage] = None
	error: Optional[str] = None
	created_at: int = field(default_factory=now_ms)
	updated_at: int = 0

	def __post_init__(self) -> None:
		if self.updated_at < self.created_at:
			object.__setattr__(self, "updated_at", self.created_at)
		if (self.result is not None) != (self.status == TaskStatus.COMPLETED):
			raise ValueError("result must be present exactly when the task is completed")
		if bool(self.error) != (self.status == TaskStatus.FAILED):
			raise ValueError("error must be present exactly when the task has failed")

	def __eq__(self, other: object) -> bool:
		if not isinstance(other, GenerationTask):
			return NotImplemented
		return self.task_id == other.task_id

	def __hash__(self) -> int:
		return hash(self.task_id)

	def with_status(
		self,
		status: TaskStatus,
		*,
		result: Optional[GeneratedImage] = None,
		error: Optional[str] = None,
		now: Optional[int] = None,
	) -> "GenerationTask":
		"""Return the snapshot after a legal state transition."""
		if status not in ALLOWED_TRANSITIONS[self.status]:
			raise ValueError(f"Illegal task transition {self.status.value} -> {status.value}")
		stamp = max(now if now is not None else now_ms(), self.updated_at)
		return replace(self, status=status, result=result, error=error, updated_at=stamp)

	def to_dict(self) -> Dict[str, Any]:
		data: Dict[str, Any] = {
			"taskId": self.task_id,
			"sessionId": self.session_id,
			"prompt": self.prompt,
			"parameters": self.parameters.to_dict(),
			"status": self.status.value,
			"createdAt": self.created_at,
			"updatedAt": self.updated_at,
		}
		if self.result is not None:
			data["result"] = self.result.to_dict()
		if self.error:
			data["error"] = self.error
		return data

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "GenerationTask":
		result = data.get("result")
		return cls(
			task_id=data["taskId"],
			session_id=data["sessionId"],
			prompt=data["prompt"],
			parameters=ImageGenerationParams.from_dict(data.get("parameters")),
			status=TaskStatus(data["status"]),
			result=GeneratedImage.from_dict(result) if result else None,
			error=data.get("error"),
			created_at=int(data["createdAt"]),
			updated_at=int(data.get("updatedAt") or 0),
		)


@dataclass
class SessionData:
	"""Session state owned by the session store.

	`history` is ordered oldest first; `queued_tasks` preserves submission order.
	"""

	session_id: str
	history: List[GeneratedImage] = field(default_factory=list)
	current_settings: ImageGenerationParams = field(default_factory=ImageGenerationParams.defaults)
	queued_tasks: Dict[str, GenerationTask] = field(default_factory=dict)
	created_at: int = field(default_factory=now_ms)
	last_accessed: int = 0

	def __post_init__(self) -> None:
		self.last_accessed = max(self.last_accessed, self.created_at)

	def touch(self, now: Optional[int] = None) -> None:
		self.last_accessed = max(now if now is not None else now_ms(), self.last_accessed)

	def snapshot(self) -> "SessionData":
		"""Return a copy whose containers are detached from this instance."""
		return replace(self, history=list(self.history), queued_tasks=dict(self.queued_tasks))

	def to_dict(self) -> Dict[str, Any]:
		return {
			"sessionId": self.session_id,
			"generationHistory": [image.to_dict() for image in self.history],
			"currentSettings": self.current_settings.to_dict(),
			"queuedTasks": [task.to_dict() for task in self.queued_tasks.values()],
			"createdAt": self.created_at,
			"lastAccessed": self.last_accessed,
		}

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "SessionData":
		tasks = [GenerationTask.from_dict(item) for item in data.get("queuedTasks") or []]
		return cls(
			session_id=data["sessionId"],
			history=[GeneratedImage.from_dict(item) for item in data.get("generationHistory") or []],
			current_settings=ImageGenerationParams.from_dict(data.get("currentSettings")),
			queued_tasks={task.task_id: task for task in tasks},
			created_at=int(data["createdAt"]),
			last_accessed=int(data.get("lastAccessed") or 0),
		)

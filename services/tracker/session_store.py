"""In-memory store for image generation sessions."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Protocol, Set, Union
from uuid import uuid4

from models.errors import AllocationError, DuplicateTask, SessionNotFound, TaskNotFound
from models.generation_models import (
	GeneratedImage,
	GenerationTask,
	ImageGenerationParams,
	SessionData,
	TaskStatus,
	now_ms,
)

LOGGER = logging.getLogger(__name__)

MAX_ALLOCATION_ATTEMPTS = 3
CANCELLED_MESSAGE = "Task cancelled"
INTERRUPTED_MESSAGE = "Task interrupted by restart"

TaskListener = Callable[[GenerationTask], None]


class SessionRepository(Protocol):
	"""Get/put-by-id persistence used for write-through of session state."""

	async def get(self, session_id: str) -> Optional[SessionData]:
		...

	async def put(self, session: SessionData) -> None:
		...

	async def delete(self, session_id: str) -> bool:
		...

	async def purge_before(self, cutoff_ms: int) -> int:
		...


@dataclass(frozen=True)
class TaskSuccess:
	image: GeneratedImage


@dataclass(frozen=True)
class TaskFailure:
	message: str


TaskOutcome = Union[TaskSuccess, TaskFailure]


class SessionStore:
	"""Own session state and serialize mutations per session.

	Each session has its own `asyncio.Lock`; operations on different sessions
	never wait on each other. Listeners receive every task snapshot while the
	session lock is still held, so they observe transitions in the order they
	were applied.
	"""

	def __init__(
		self,
		repository: Optional[SessionRepository] = None,
		*,
		history_limit: Optional[int] = 50,
		session_ttl: Optional[float] = None,
		id_factory: Optional[Callable[[], str]] = None,
	) -> None:
		self._sessions: Dict[str, SessionData] = {}
		self._locks: Dict[str, asyncio.Lock] = {}
		self._resolved: Dict[str, Set[str]] = {}
		self._listeners: List[TaskListener] = []
		self._repository = repository
		self._history_limit = history_limit
		self._session_ttl_ms = int(session_ttl * 1000) if session_ttl else None
		self._id_factory = id_factory or (lambda: uuid4().hex)

	def add_listener(self, listener: TaskListener) -> None:
		"""Register a callback invoked with each task snapshot after a transition."""
		self._listeners.append(listener)

	async def create_session(self) -> SessionData:
		"""Allocate a session, retrying with a fresh id on collision."""
		for attempt in range(1, MAX_ALLOCATION_ATTEMPTS + 1):
			session_id = self._id_factory()
			try:
				state = await self._allocate(session_id)
			except AllocationError:
				if attempt >= MAX_ALLOCATION_ATTEMPTS:
					raise
				LOGGER.warning("Session id %s collided; retrying (attempt %d)", session_id, attempt)
				continue
			LOGGER.info("Created session %s", session_id)
			return state
		raise AllocationError("Unable to allocate a session id")

	async def get_session(self, session_id: str) -> SessionData:
		"""Return a snapshot of the session and refresh its last-accessed time."""
		state = await self._load(session_id)
		async with self._lock_for(session_id):
			state.touch()
			await self._persist(state)
			return state.snapshot()

	async def update_settings(self, session_id: str, params: ImageGenerationParams) -> SessionData:
		"""Replace the session's current settings wholesale."""
		state = await self._load(session_id)
		async with self._lock_for(session_id):
			state.current_settings = params
			state.touch()
			await self._persist(state)
			return state.snapshot()

	async def merge_settings(self, session_id: str, params: ImageGenerationParams) -> SessionData:
		"""Override the current settings with every field set on `params`."""
		state = await self._load(session_id)
		async with self._lock_for(session_id):
			state.current_settings = state.current_settings.merged(params)
			state.touch()
			await self._persist(state)
			return state.snapshot()

	async def enqueue_task(self, session_id: str, task: GenerationTask) -> GenerationTask:
		"""Register a queued task with its session."""
		if task.session_id != session_id:
			raise ValueError(f"Task {task.task_id} belongs to session {task.session_id}, not {session_id}")
		state = await self._load(session_id)
		async with self._lock_for(session_id):
			if self._known_task(state, task.task_id):
				raise DuplicateTask(session_id, task.task_id)
			state.queued_tasks[task.task_id] = task
			state.touch()
			await self._persist(state)
			self._notify(task)
			return task

	async def mark_processing(self, session_id: str, task_id: str) -> GenerationTask:
		"""Move a queued task to processing."""
		state = await self._load(session_id)
		async with self._lock_for(session_id):
			task = state.queued_tasks.get(task_id)
			if task is None or task.status != TaskStatus.QUEUED:
				raise TaskNotFound(session_id, task_id)
			task = task.with_status(TaskStatus.PROCESSING)
			state.queued_tasks[task_id] = task
			state.touch()
			await self._persist(state)
			self._notify(task)
			return task

	async def resolve_task(self, session_id: str, task_id: str, outcome: TaskOutcome) -> Optional[GenerationTask]:
		"""Merge a task outcome into the session exactly once.

		Returns the terminal task snapshot, or None when the task had already
		been resolved (duplicate delivery).

		Raises:
			SessionNotFound: If the session is unknown.
			TaskNotFound: If the task was never registered with the session.
		"""
		state = await self._load(session_id)
		async with self._lock_for(session_id):
			task = state.queued_tasks.get(task_id)
			if task is None:
				if self._already_resolved(state, task_id):
					LOGGER.debug("Task %s already resolved; ignoring duplicate resolution", task_id)
					return None
				raise TaskNotFound(session_id, task_id)

			if isinstance(outcome, TaskSuccess):
				image = self._stamp(state, outcome.image)
				final = task.with_status(TaskStatus.COMPLETED, result=image)
				if any(existing.id == image.id for existing in state.history):
					LOGGER.warning("Image %s already in history of session %s; skipping append", image.id, session_id)
				else:
					state.history.append(image)
					self._trim_history(state)
			else:
				final = task.with_status(TaskStatus.FAILED, error=outcome.message or "Unknown error")

			del state.queued_tasks[task_id]
			self._resolved.setdefault(session_id, set()).add(task_id)
			state.touch()
			await self._persist(state)
			self._notify(final)
			return final

	async def cancel_task(self, session_id: str, task_id: str) -> bool:
		"""Fail a task that has not been handed to the provider yet."""
		state = await self._load(session_id)
		async with self._lock_for(session_id):
			task = state.queued_tasks.get(task_id)
			if task is None or task.status != TaskStatus.QUEUED:
				return False
			final = task.with_status(TaskStatus.FAILED, error=CANCELLED_MESSAGE)
			del state.queued_tasks[task_id]
			self._resolved.setdefault(session_id, set()).add(task_id)
			state.touch()
			await self._persist(state)
			self._notify(final)
			LOGGER.info("Cancelled task %s in session %s", task_id, session_id)
			return True

	async def delete_session(self, session_id: str) -> bool:
		"""Drop a session from memory and the repository."""
		async with self._lock_for(session_id):
			existed = self._sessions.pop(session_id, None) is not None
			self._resolved.pop(session_id, None)
			if self._repository is not None:
				existed = await self._repository.delete(session_id) or existed
			self._locks.pop(session_id, None)
		return existed

	async def purge_expired(self, now: Optional[int] = None) -> int:
		"""Delete sessions idle for longer than the configured TTL."""
		if self._session_ttl_ms is None:
			return 0
		cutoff = (now if now is not None else now_ms()) - self._session_ttl_ms
		expired = [sid for sid, state in self._sessions.items() if state.last_accessed < cutoff]
		for session_id in expired:
			await self.delete_session(session_id)
		purged = len(expired)
		if self._repository is not None:
			purged = max(purged, await self._repository.purge_before(cutoff))
		if purged:
			LOGGER.info("Purged %d expired sessions", purged)
		return purged

	def task_counts(self) -> Dict[str, int]:
		"""Count non-terminal tasks across every in-memory session."""
		counts = {TaskStatus.QUEUED.value: 0, TaskStatus.PROCESSING.value: 0}
		for state in self._sessions.values():
			for task in state.queued_tasks.values():
				counts[task.status.value] += 1
		return counts

	async def _allocate(self, session_id: str) -> SessionData:
		if session_id in self._sessions:
			raise AllocationError(f"Session id {session_id} already in use")
		if self._repository is not None and await self._repository.get(session_id) is not None:
			raise AllocationError(f"Session id {session_id} already persisted")
		if session_id in self._sessions:
			raise AllocationError(f"Session id {session_id} already in use")
		state = SessionData(session_id=session_id)
		self._sessions[session_id] = state
		async with self._lock_for(session_id):
			await self._persist(state)
		return state.snapshot()

	async def _load(self, session_id: str) -> SessionData:
		state = self._sessions.get(session_id)
		restored = False
		if state is None and self._repository is not None:
			stored = await self._repository.get(session_id)
			if stored is not None:
				state = self._sessions.setdefault(session_id, stored)
				restored = state is stored
				if restored:
					LOGGER.info("Restored session %s from storage", session_id)
		if state is None:
			raise SessionNotFound(session_id)
		if self._session_ttl_ms is not None and now_ms() - state.last_accessed > self._session_ttl_ms:
			await self.delete_session(session_id)
			raise SessionNotFound(session_id)
		if restored and state.queued_tasks:
			await self._interrupt(state)
		return state

	async def _interrupt(self, state: SessionData) -> None:
		"""Fail restored tasks; no dispatch job survives a restart."""
		async with self._lock_for(state.session_id):
			for task in list(state.queued_tasks.values()):
				final = task.with_status(TaskStatus.FAILED, error=INTERRUPTED_MESSAGE)
				del state.queued_tasks[task.task_id]
				self._resolved.setdefault(state.session_id, set()).add(task.task_id)
				LOGGER.warning("Task %s in session %s was interrupted by a restart", task.task_id, state.session_id)
				self._notify(final)
			await self._persist(state)

	def _lock_for(self, session_id: str) -> asyncio.Lock:
		return self._locks.setdefault(session_id, asyncio.Lock())

	def _known_task(self, state: SessionData, task_id: str) -> bool:
		return task_id in state.queued_tasks or self._already_resolved(state, task_id)

	def _already_resolved(self, state: SessionData, task_id: str) -> bool:
		if task_id in self._resolved.get(state.session_id, ()):
			return True
		# Resolved ids are not persisted; history covers completed tasks after a restore.
		return any(image.id == task_id for image in state.history)

	@staticmethod
	def _stamp(state: SessionData, image: GeneratedImage) -> GeneratedImage:
		"""Keep history creation times strictly increasing within a session."""
		if state.history and image.created_at <= state.history[-1].created_at:
			return replace(image, created_at=state.history[-1].created_at + 1)
		return image

	def _trim_history(self, state: SessionData) -> None:
		if self._history_limit and len(state.history) > self._history_limit:
			del state.history[: len(state.history) - self._history_limit]

	async def _persist(self, state: SessionData) -> None:
		# A deleted session must not be written back.
		if self._repository is not None and self._sessions.get(state.session_id) is state:
			await self._repository.put(state.snapshot())

	def _notify(self, task: GenerationTask) -> None:
		for listener in self._listeners:
			try:
				listener(task)
			except Exception:
				LOGGER.exception("Task listener failed for task %s", task.task_id)

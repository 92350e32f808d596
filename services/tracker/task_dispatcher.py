"""Dispatch generation tasks to a provider and apply their outcomes."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional, Tuple
from uuid import uuid4

from models.errors import ProviderError, SessionNotFound, TaskNotFound
from models.generation_models import GeneratedImage, GenerationTask, ImageGenerationParams
from services.providers.base import GenerationProvider
from services.tracker.notification_channel import NotificationChannel
from services.tracker.session_store import SessionStore, TaskFailure, TaskOutcome, TaskSuccess
from utils.prompt_validation import validate_prompt

LOGGER = logging.getLogger(__name__)

SHUTDOWN_MESSAGE = "Task interrupted by shutdown"


class TaskDispatcher:
	"""Submit tasks, hand them to the provider, and resolve them in the store.

	Every transition applied by the store is published on the notification
	channel. The provider is called exactly once per task; retries are left
	to callers, who resubmit as a new task.
	"""

	def __init__(
		self,
		store: SessionStore,
		provider: GenerationProvider,
		channel: Optional[NotificationChannel] = None,
		*,
		timeout: float = 120.0,
		max_concurrency: int = 4,
	) -> None:
		self.store = store
		self.provider = provider
		self.channel = channel
		self.timeout = timeout
		self._semaphore = asyncio.Semaphore(max_concurrency)
		self._in_flight: Dict[str, Tuple[GenerationTask, asyncio.Task]] = {}
		if channel is not None:
			store.add_listener(channel.publish_task)

	async def submit(
		self,
		session_id: str,
		prompt: str,
		params: Optional[ImageGenerationParams] = None,
		*,
		timeout: Optional[float] = None,
	) -> str:
		"""Queue a task and start dispatching it without waiting for the provider.

		Args:
			session_id: Owning session.
			prompt: Generation prompt.
			params: Parameters snapshot; the session's current settings when omitted.
			timeout: Per-task timeout in seconds, overriding the dispatcher default.

		Returns:
			The new task id.

		Raises:
			SessionNotFound: If the session is unknown; nothing is registered.
			ValidationError: If the prompt is malformed.
		"""
		state = await self.store.get_session(session_id)
		cleaned = validate_prompt(prompt)
		task = GenerationTask(
			task_id=uuid4().hex,
			session_id=session_id,
			prompt=cleaned,
			parameters=params if params is not None else state.current_settings,
		)
		await self.store.enqueue_task(session_id, task)
		LOGGER.info("Task %s queued for session %s", task.task_id, session_id)

		job = asyncio.create_task(self._dispatch(task, self.timeout if timeout is None else timeout))
		self._in_flight[task.task_id] = (task, job)
		job.add_done_callback(lambda _: self._in_flight.pop(task.task_id, None))
		return task.task_id

	async def cancel(self, session_id: str, task_id: str) -> bool:
		"""Cancel a task that has not reached the provider yet."""
		return await self.store.cancel_task(session_id, task_id)

	def queue_status(self) -> Dict[str, int]:
		counts = self.store.task_counts()
		return {
			"queued": counts["queued"],
			"processing": counts["processing"],
			"in_flight": len(self._in_flight),
		}

	async def wait_idle(self) -> None:
		"""Wait until every dispatched task has been resolved."""
		while True:
			pending = [job for _, job in self._in_flight.values() if not job.done()]
			if not pending:
				return
			await asyncio.gather(*pending, return_exceptions=True)

	async def shutdown(self) -> None:
		"""Fail outstanding tasks, then cancel their dispatch jobs."""
		pending = list(self._in_flight.values())
		for task, _ in pending:
			await self._resolve(task, TaskFailure(SHUTDOWN_MESSAGE))
		jobs = [job for _, job in pending]
		for job in jobs:
			job.cancel()
		await asyncio.gather(*jobs, return_exceptions=True)

	async def _dispatch(self, task: GenerationTask, timeout: float) -> None:
		async with self._semaphore:
			try:
				await self.provider.ensure_ready()
			except ProviderError as exc:
				LOGGER.warning("Provider %s not ready for task %s: %s", self.provider.name, task.task_id, exc)
				await self._resolve(task, TaskFailure(f"Provider unavailable: {exc}"))
				return

			try:
				await self.store.mark_processing(task.session_id, task.task_id)
			except (SessionNotFound, TaskNotFound):
				# Cancelled or session deleted while waiting for a slot.
				LOGGER.info("Task %s no longer queued; skipping dispatch", task.task_id)
				return

			outcome = await self._call_provider(task, timeout)
			await self._resolve(task, outcome)

	async def _call_provider(self, task: GenerationTask, timeout: float) -> TaskOutcome:
		try:
			result = await asyncio.wait_for(self.provider.generate(task.prompt, task.parameters), timeout)
		except asyncio.TimeoutError:
			LOGGER.warning("Task %s timed out after %ss", task.task_id, timeout)
			return TaskFailure(f"Provider timed out after {timeout:g}s")
		except ProviderError as exc:
			LOGGER.warning("Task %s failed: %s", task.task_id, exc)
			return TaskFailure(str(exc) or "Provider error")
		except asyncio.CancelledError:
			raise
		except Exception as exc:
			LOGGER.exception("Unexpected provider failure for task %s", task.task_id)
			return TaskFailure(f"Provider error: {exc}" if str(exc) else f"Provider error: {type(exc).__name__}")

		image_url = getattr(result, "image_url", None)
		if not isinstance(image_url, str) or not image_url:
			LOGGER.warning("Task %s returned a malformed provider response", task.task_id)
			return TaskFailure("Provider returned a malformed response")

		image = GeneratedImage(
			id=task.task_id,
			prompt=task.prompt,
			image_url=image_url,
			parameters=task.parameters,
		)
		return TaskSuccess(image)

	async def _resolve(self, task: GenerationTask, outcome: TaskOutcome) -> None:
		try:
			final = await self.store.resolve_task(task.session_id, task.task_id, outcome)
		except KeyError:
			# SessionNotFound or TaskNotFound: the session was deleted mid-flight.
			LOGGER.info("Dropping outcome for task %s; session %s is gone", task.task_id, task.session_id)
			return
		if final is not None:
			LOGGER.info("Task %s %s", task.task_id, final.status.value)

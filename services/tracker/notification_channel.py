"""Per-session publish/subscribe for task updates."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

from models.event_models import SessionEvent, TaskUpdateEvent
from models.generation_models import GenerationTask

LOGGER = logging.getLogger(__name__)


class Subscription:
	"""Lazy, unbounded stream of events for one session.

	Iterate with ``async for``; iteration ends once `close()` is called.
	"""

	def __init__(self, channel: "NotificationChannel", session_id: str) -> None:
		self.session_id = session_id
		self._channel = channel
		self._queue: asyncio.Queue = asyncio.Queue()
		self._closed = False

	@property
	def closed(self) -> bool:
		return self._closed

	def deliver(self, event: SessionEvent) -> None:
		if not self._closed:
			self._queue.put_nowait(event)

	async def next_event(self, timeout: Optional[float] = None) -> Optional[SessionEvent]:
		"""Return the next event, or None once closed (or on timeout)."""
		if self._closed:
			return None
		try:
			event = await asyncio.wait_for(self._queue.get(), timeout)
		except asyncio.TimeoutError:
			return None
		return event

	def close(self) -> None:
		"""Stop delivery and drop anything still buffered."""
		if self._closed:
			return
		self._closed = True
		self._channel._detach(self)
		while not self._queue.empty():
			self._queue.get_nowait()
		# Wake a reader blocked in next_event().
		self._queue.put_nowait(None)

	def __aiter__(self) -> "Subscription":
		return self

	async def __anext__(self) -> SessionEvent:
		event = await self.next_event()
		if event is None:
			raise StopAsyncIteration
		return event

	async def __aenter__(self) -> "Subscription":
		return self

	async def __aexit__(self, *exc_info) -> None:
		self.close()


class NotificationChannel:
	"""Fan events out to the open subscriptions of their session, in publish order."""

	def __init__(self) -> None:
		self._subscriptions: Dict[str, List[Subscription]] = {}

	def subscribe(self, session_id: str) -> Subscription:
		subscription = Subscription(self, session_id)
		self._subscriptions.setdefault(session_id, []).append(subscription)
		LOGGER.debug("Subscribed to session %s (%d open)", session_id, len(self._subscriptions[session_id]))
		return subscription

	def publish(self, event: SessionEvent) -> int:
		"""Deliver an event to every open subscriber of its session; returns the count."""
		subscribers = list(self._subscriptions.get(event.session_id, ()))
		for subscription in subscribers:
			subscription.deliver(event)
		return len(subscribers)

	def publish_task(self, task: GenerationTask) -> int:
		return self.publish(TaskUpdateEvent(task=task))

	def subscriber_count(self, session_id: str) -> int:
		return len(self._subscriptions.get(session_id, ()))

	def _detach(self, subscription: Subscription) -> None:
		subscribers = self._subscriptions.get(subscription.session_id)
		if not subscribers:
			return
		if subscription in subscribers:
			subscribers.remove(subscription)
		if not subscribers:
			del self._subscriptions[subscription.session_id]

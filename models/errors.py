"""Error taxonomy for the session and task tracker."""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for every error raised by the tracker core."""


class SessionNotFound(TrackerError, KeyError):
    """Raised when a session id is unknown to the store."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message for HTTP details.
        return self.args[0]


class TaskNotFound(TrackerError, KeyError):
    """Raised when a task id is not queued in the given session."""

    def __init__(self, session_id: str, task_id: str) -> None:
        super().__init__(f"Task {task_id} not found in session {session_id}")
        self.session_id = session_id
        self.task_id = task_id

    def __str__(self) -> str:
        return self.args[0]


class DuplicateTask(TrackerError):
    """Raised when a task id was already registered with a session."""

    def __init__(self, session_id: str, task_id: str) -> None:
        super().__init__(f"Task {task_id} already registered in session {session_id}")
        self.session_id = session_id
        self.task_id = task_id


class AllocationError(TrackerError):
    """Raised when a freshly generated session id collides with an existing one."""


class ProviderError(TrackerError):
    """Any failure from the external generation provider, including timeouts."""


class ValidationError(TrackerError, ValueError):
    """Raised for malformed prompts or generation parameters."""

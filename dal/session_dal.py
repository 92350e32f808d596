"""Async Data Access Layer for the SESSION table.

Sessions are stored as JSON documents keyed by session id, using the same
camelCase shape the websocket clients receive.
"""

from __future__ import annotations

import json
from typing import Optional

from models.generation_models import SessionData
from utils.database_init import AsyncDatabaseInitializer


class SessionDAL:
    """Get/put/delete-by-id persistence for `SessionData`.

    The constructor accepts an `AsyncDatabaseInitializer` (or any object
    exposing an async `connection()` context manager that yields an
    `aiosqlite.Connection`).
    """

    def __init__(self, db_initializer: AsyncDatabaseInitializer) -> None:
        self._db = db_initializer

    async def get(self, session_id: str) -> Optional[SessionData]:
        """Return the stored session for `session_id`, or None if not found."""
        async with self._db.connection() as conn:
            cur = await conn.execute("SELECT payload FROM SESSION WHERE session_id = ?", (session_id,))
            row = await cur.fetchone()
            return SessionData.from_dict(json.loads(row[0])) if row else None

    async def put(self, session: SessionData) -> None:
        """Insert or replace the stored document for `session`."""
        payload = json.dumps(session.to_dict())
        async with self._db.connection() as conn:
            await conn.execute(
                "INSERT INTO SESSION (session_id, payload, last_accessed) VALUES (?, ?, ?) "
                "ON CONFLICT(session_id) DO UPDATE SET payload = excluded.payload, "
                "last_accessed = excluded.last_accessed",
                (session.session_id, payload, session.last_accessed),
            )
            await conn.commit()

    async def delete(self, session_id: str) -> bool:
        """Delete a stored session. Returns True if a row was deleted."""
        async with self._db.connection() as conn:
            cur = await conn.execute("DELETE FROM SESSION WHERE session_id = ?", (session_id,))
            await conn.commit()
            return cur.rowcount > 0

    async def purge_before(self, cutoff_ms: int) -> int:
        """Delete sessions last accessed before `cutoff_ms`; returns the row count."""
        async with self._db.connection() as conn:
            cur = await conn.execute("DELETE FROM SESSION WHERE last_accessed < ?", (cutoff_ms,))
            await conn.commit()
            return cur.rowcount

from __future__ import annotations

from typing import List

import aiosqlite

from ..core.models import MemoryRecord
from ..errors import PersistenceError
from .utils import _from_iso, _sqlite_connection, _to_iso


class StoreMemoriesMixin:
    async def save_memory(self, record: MemoryRecord) -> int:
        try:
            async with _sqlite_connection(self.db_path) as db:
                cursor = await db.execute(
                    """
                    INSERT INTO memories (persona, kind, content, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (record.persona, record.kind, record.content, _to_iso(record.timestamp)),
                )
                await db.commit()
                return int(cursor.lastrowid)
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Failed to save {record.kind} memory for {record.persona}: {exc}") from exc

    async def latest_memories(self, persona: str, kind: str | None = None, limit: int = 10) -> List[MemoryRecord]:
        async with _sqlite_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            if kind:
                query = """
                    SELECT persona, kind, content, created_at
                    FROM memories
                    WHERE persona = ? AND kind = ?
                    ORDER BY memory_id DESC
                    LIMIT ?
                """
                params: tuple[object, ...] = (persona, kind, max(1, int(limit)))
            else:
                query = """
                    SELECT persona, kind, content, created_at
                    FROM memories
                    WHERE persona = ?
                    ORDER BY memory_id DESC
                    LIMIT ?
                """
                params = (persona, max(1, int(limit)))
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()

        return [
            MemoryRecord(
                persona=str(row["persona"]),
                kind=str(row["kind"]),  # type: ignore[arg-type]
                content=str(row["content"]),
                timestamp=_from_iso(str(row["created_at"])),
            )
            for row in rows
        ]

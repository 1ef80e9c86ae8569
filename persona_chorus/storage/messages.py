from __future__ import annotations

from typing import List

import aiosqlite

from ..core.models import MessageRecord
from ..errors import PersistenceError
from .utils import _from_iso, _sqlite_connection, _to_iso


class StoreMessagesMixin:
    async def save_message(self, record: MessageRecord) -> int:
        try:
            async with _sqlite_connection(self.db_path) as db:
                cursor = await db.execute(
                    """
                    INSERT INTO messages (author, location, content, is_bot, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        record.author,
                        record.location,
                        record.content,
                        1 if record.is_bot else 0,
                        _to_iso(record.timestamp),
                    ),
                )
                await db.commit()
                return int(cursor.lastrowid)
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Failed to save message from {record.author}: {exc}") from exc

    async def recent_messages(self, limit: int) -> List[MessageRecord]:
        async with _sqlite_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT author, location, content, is_bot, created_at
                FROM messages
                ORDER BY message_id DESC
                LIMIT ?
                """,
                (max(1, int(limit)),),
            ) as cursor:
                rows = await cursor.fetchall()

        return [
            MessageRecord(
                content=str(row["content"]),
                author=str(row["author"]),
                location=str(row["location"]),
                is_bot=bool(row["is_bot"]),
                timestamp=_from_iso(str(row["created_at"])),
            )
            for row in reversed(rows)
        ]

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List

import aiosqlite

from ..core.models import Persona
from ..errors import ConfigurationError, PersistenceError
from .utils import _sqlite_connection

logger = logging.getLogger("persona_chorus")


def _read_text_with_fallback(path: Path) -> str:
    last_exc: Exception | None = None
    for encoding in ("utf-8-sig", "utf-8", "cp1251"):
        try:
            return path.read_text(encoding=encoding)
        except (OSError, UnicodeDecodeError) as exc:
            last_exc = exc
    raise ConfigurationError(f"Failed to read persona directory {path}: {last_exc}")


def load_personas_json(path: Path) -> List[Persona]:
    if not path.exists():
        raise ConfigurationError(f"Persona directory not found: {path}")
    try:
        payload = json.loads(_read_text_with_fallback(path))
    except ValueError as exc:
        raise ConfigurationError(f"Persona directory {path} is not valid JSON: {exc}") from exc
    if not isinstance(payload, list):
        raise ConfigurationError(f"Persona directory {path} must be a JSON array")

    personas: List[Persona] = []
    for index, entry in enumerate(payload):
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Persona entry #{index} in {path} must be an object")
        try:
            personas.append(Persona.from_payload(entry))
        except ValueError as exc:
            raise ConfigurationError(f"Persona entry #{index} in {path}: {exc}") from exc
    return personas


class StorePersonasMixin:
    async def upsert_persona(self, persona: Persona) -> None:
        try:
            async with _sqlite_connection(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO personas (name, emoji, avatar, personality, home_channel, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
                    ON CONFLICT(name) DO UPDATE SET
                        emoji = excluded.emoji,
                        avatar = excluded.avatar,
                        personality = excluded.personality,
                        home_channel = excluded.home_channel,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (persona.name, persona.emoji, persona.avatar, persona.personality, persona.home_channel),
                )
                await db.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Failed to upsert persona {persona.name}: {exc}") from exc

    async def load_all_personas(self) -> List[Persona]:
        async with _sqlite_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT name, emoji, avatar, personality, home_channel
                FROM personas
                ORDER BY persona_id ASC
                """
            ) as cursor:
                rows = await cursor.fetchall()
        return [
            Persona(
                name=str(row["name"]),
                emoji=str(row["emoji"] or ""),
                avatar=str(row["avatar"] or ""),
                personality=str(row["personality"] or ""),
                home_channel=str(row["home_channel"] or ""),
            )
            for row in rows
        ]

    async def sync_personas_from_json(self, path: Path) -> int:
        personas = load_personas_json(Path(path))
        for persona in personas:
            await self.upsert_persona(persona)
        logger.info("Synced %s personas from %s", len(personas), path)
        return len(personas)

from __future__ import annotations

from .memories import StoreMemoriesMixin
from .messages import StoreMessagesMixin
from .personas import StorePersonasMixin
from .schema import StoreSchemaMixin
from .utils import _sqlite_connection


class PersonaStore(
    StoreSchemaMixin,
    StorePersonasMixin,
    StoreMessagesMixin,
    StoreMemoriesMixin,
):
    """SQLite-backed persona directory plus bot message log and daily memory records."""

    async def ping(self) -> None:
        async with _sqlite_connection(self.db_path) as db:
            await db.execute("SELECT 1")

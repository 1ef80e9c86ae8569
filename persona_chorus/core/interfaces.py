from __future__ import annotations

from typing import Any, Dict, List, Protocol, Sequence

from .models import MemoryRecord, MessageRecord, Persona


class ChatBackend(Protocol):
    async def chat(self, messages: Sequence[Dict[str, Any]], model: str | None = None) -> str: ...


class Transport(Protocol):
    async def deliver(self, channel_id: str, persona: Persona, text: str) -> None: ...


class PersonaDirectory(Protocol):
    async def upsert_persona(self, persona: Persona) -> None: ...

    async def load_all_personas(self) -> List[Persona]: ...

    async def save_message(self, record: MessageRecord) -> int: ...

    async def save_memory(self, record: MemoryRecord) -> int: ...


class ImageDescriber(Protocol):
    async def analyze_image_url(self, image_url: str, query: str) -> str: ...

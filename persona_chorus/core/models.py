from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

Role = Literal["user", "assistant"]
MemoryKind = Literal["dream", "summary", "goal"]


@dataclass(frozen=True, slots=True)
class Persona:
    name: str
    personality: str
    home_channel: str
    emoji: str = ""
    avatar: str = ""

    @property
    def display_name(self) -> str:
        return f"{self.name} {self.emoji or ''}".strip()

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Persona":
        name = str(payload.get("name") or "").strip()
        if not name:
            raise ValueError("persona entry is missing a name")
        home = payload.get("homeChannel", payload.get("home_channel", ""))
        return cls(
            name=name,
            personality=str(payload.get("personality") or "").strip(),
            home_channel=str(home or "").strip(),
            emoji=str(payload.get("emoji") or "").strip(),
            avatar=str(payload.get("avatar") or "").strip(),
        )


@dataclass(frozen=True, slots=True)
class ContentPart:
    kind: Literal["text", "image_url"]
    text: str = ""
    url: str = ""

    @classmethod
    def of_text(cls, text: str) -> "ContentPart":
        return cls(kind="text", text=text)

    @classmethod
    def of_image(cls, url: str) -> "ContentPart":
        return cls(kind="image_url", url=url)

    @property
    def is_image(self) -> bool:
        return self.kind == "image_url"


@dataclass(frozen=True, slots=True)
class ConversationTurn:
    role: Role
    content: tuple[ContentPart, ...]

    @classmethod
    def assistant(cls, text: str) -> "ConversationTurn":
        return cls(role="assistant", content=(ContentPart.of_text(text),))

    @classmethod
    def user(cls, parts: list[ContentPart] | tuple[ContentPart, ...]) -> "ConversationTurn":
        return cls(role="user", content=tuple(parts))

    def as_message(self) -> dict[str, Any]:
        return {"role": self.role, "content": list(self.content)}


@dataclass(slots=True)
class InboundMessage:
    author_name: str
    channel_id: str
    channel_name: str
    content: str
    attachments: list[ContentPart] = field(default_factory=list)


@dataclass(slots=True)
class MessageRecord:
    content: str
    author: str
    location: str
    is_bot: bool = True
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(slots=True)
class MemoryRecord:
    persona: str
    kind: MemoryKind
    content: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

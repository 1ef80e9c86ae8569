from __future__ import annotations

import logging
from dataclasses import dataclass

from .models import Persona

logger = logging.getLogger("persona_chorus")


@dataclass(slots=True)
class AttentionRecord:
    channel_id: str
    mentioned_at: float


class AttentionTracker:
    """Tracks the channel a persona was last pulled into by a mention.

    Records are only ever kept for channels other than the persona's home
    channel. Staleness is checked when an inbound event touches the persona
    and before a goal announcement, so a record can outlive its window until
    the next such check.
    """

    def __init__(self) -> None:
        self._records: dict[str, AttentionRecord] = {}

    def record_mention(self, persona: Persona, channel_id: str, now: float) -> None:
        if channel_id == persona.home_channel:
            return
        self._records[persona.name] = AttentionRecord(channel_id=channel_id, mentioned_at=now)

    def resolve_target(self, persona: Persona) -> str:
        record = self._records.get(persona.name)
        if record is None:
            return persona.home_channel
        return record.channel_id

    def decay_if_stale(self, persona: Persona, now: float, window: float) -> bool:
        record = self._records.get(persona.name)
        if record is None or record.channel_id == persona.home_channel:
            return False
        if now - record.mentioned_at <= window:
            return False
        del self._records[persona.name]
        logger.info("[attention] %s has decayed back to home channel %s", persona.name, persona.home_channel)
        return True

    def get(self, persona: Persona) -> AttentionRecord | None:
        return self._records.get(persona.name)

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence

from .attention import AttentionTracker
from .models import InboundMessage, Persona


@dataclass(frozen=True, slots=True)
class RouteDecision:
    persona: Persona
    mentioned: bool


class PersonaRouter:
    def __init__(self, personas: Sequence[Persona], attention: AttentionTracker) -> None:
        self.personas = list(personas)
        self.attention = attention
        self._name_patterns = {
            persona.name: re.compile(rf"\b{re.escape(persona.name)}\b", re.IGNORECASE)
            for persona in self.personas
        }

    def is_persona_author(self, author_name: str) -> bool:
        return any(author_name == persona.display_name for persona in self.personas)

    def find_mentioned(self, text: str) -> Persona | None:
        # First match in directory order wins when several names appear.
        for persona in self.personas:
            if self._name_patterns[persona.name].search(text):
                return persona
        return None

    def home_persona(self, channel_id: str) -> Persona | None:
        for persona in self.personas:
            if persona.home_channel == channel_id:
                return persona
        return None

    def route(self, message: InboundMessage, now: float) -> RouteDecision | None:
        if self.is_persona_author(message.author_name):
            return None

        mentioned = self.find_mentioned(message.content)
        if mentioned is not None:
            if message.channel_id != mentioned.home_channel:
                self.attention.record_mention(mentioned, message.channel_id, now)
            return RouteDecision(persona=mentioned, mentioned=True)

        resident = self.home_persona(message.channel_id)
        if resident is None:
            return None
        return RouteDecision(persona=resident, mentioned=False)

from __future__ import annotations

import logging
import random
from typing import Any, Callable, Dict, List, Sequence

from ..errors import ModelCallError
from ..prompts.persona import (
    build_persona_system_prompt,
    chat_trailing_instruction,
    format_inbound_text,
    summary_system_prompt,
)
from .common import chunk_text, monotonic_ms, truncate
from .debounce import Debouncer, debounce_key
from .interfaces import ChatBackend, PersonaDirectory, Transport
from .memory import ConversationMemory
from .models import ContentPart, ConversationTurn, InboundMessage, MessageRecord, Persona

logger = logging.getLogger("persona_chorus")


class ResponseEngine:
    """Runs a persona through ingest, gate, generate, commit and propagate.

    Model failures end the cycle with an empty result and a log line; they
    never propagate to the caller. Delivery and persistence failures are
    logged and the cycle carries on.
    """

    def __init__(
        self,
        personas: Sequence[Persona],
        memory: ConversationMemory,
        debouncer: Debouncer,
        llm: ChatBackend,
        store: PersonaDirectory,
        transport: Transport,
        *,
        debounce_window_ms: float = 5000,
        interaction_limit: int = 2,
        max_message_chars: int = 2000,
        chat_model: str | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = monotonic_ms,
    ) -> None:
        self.personas = list(personas)
        self.memory = memory
        self.debouncer = debouncer
        self.llm = llm
        self.store = store
        self.transport = transport
        self.debounce_window_ms = debounce_window_ms
        self.interaction_limit = interaction_limit
        self.max_message_chars = max_message_chars
        self.chat_model = chat_model
        self.rng = rng or random.Random()
        self.clock = clock

    def ingest(self, persona: Persona, message: InboundMessage) -> bool:
        text = message.content.strip()
        images = [part for part in message.attachments if part.is_image]
        extra_text = [part for part in message.attachments if not part.is_image and part.text.strip()]
        if not text and not images:
            return False

        parts: List[ContentPart] = []
        if text:
            parts.append(ContentPart.of_text(format_inbound_text(message.channel_name, message.author_name, text)))
        parts.extend(images)
        parts.extend(extra_text)
        self.memory.append(persona.name, ConversationTurn.user(parts))
        logger.info(
            '[msg.user] persona=%s channel=%s author=%s images=%s text="%s"',
            persona.name,
            message.channel_name,
            message.author_name,
            len(images),
            truncate(text, 120),
        )
        return True

    def gate(self, persona: Persona, channel_id: str, now: float | None = None) -> bool:
        stamp = self.clock() if now is None else now
        acquired = self.debouncer.try_acquire(debounce_key(persona.name, channel_id), stamp, self.debounce_window_ms)
        if not acquired:
            logger.debug("[debounce] dropped trigger for persona=%s channel=%s", persona.name, channel_id)
        return acquired

    def build_messages(self, persona: Persona, instruction: str | None = None) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": build_persona_system_prompt(persona.name, persona.personality)},
        ]
        messages.extend(turn.as_message() for turn in self.memory.snapshot(persona.name))
        messages.append({"role": "user", "content": instruction or chat_trailing_instruction()})
        return messages

    async def _complete(self, persona: Persona, messages: List[Dict[str, Any]], model: str | None, label: str) -> str:
        try:
            result = await self.llm.chat(messages, model=model or self.chat_model)
        except ModelCallError as exc:
            logger.warning("Model call failed for persona=%s (%s): %s", persona.name, label, exc)
            return ""
        except Exception:
            logger.exception("Model call crashed for persona=%s (%s)", persona.name, label)
            return ""
        return (result or "").strip()

    async def generate(self, persona: Persona, instruction: str | None = None, model: str | None = None) -> str:
        return await self._complete(persona, self.build_messages(persona, instruction), model, "chat")

    async def summarize(self, persona: Persona, model: str | None = None) -> str:
        messages: List[Dict[str, Any]] = [{"role": "system", "content": summary_system_prompt()}]
        messages.extend(turn.as_message() for turn in self.memory.snapshot(persona.name))
        return await self._complete(persona, messages, model, "summary")

    async def deliver(self, persona: Persona, channel_id: str, text: str) -> int:
        delivered = 0
        for chunk in chunk_text(text, self.max_message_chars):
            if not chunk.strip():
                continue
            try:
                await self.transport.deliver(channel_id, persona, chunk)
                delivered += 1
            except Exception as exc:
                logger.error("Failed to send message as %s to channel=%s: %s", persona.name, channel_id, exc)
        return delivered

    async def commit(self, persona: Persona, channel_id: str, channel_name: str, text: str) -> None:
        self.memory.append(persona.name, ConversationTurn.assistant(text))
        logger.info('[msg.bot] persona=%s channel=%s text="%s"', persona.name, channel_name, truncate(text, 120))
        try:
            await self.store.save_message(
                MessageRecord(content=text, author=persona.name, location=channel_name, is_bot=True)
            )
        except Exception:
            logger.exception("Failed to persist reply from persona=%s", persona.name)
        await self.deliver(persona, channel_id, text)

    def should_continue(self, persona: Persona) -> bool:
        return self.memory.all_assistant(persona.name, self.interaction_limit)

    def pick_partner(self, persona: Persona) -> Persona | None:
        others = [candidate for candidate in self.personas if candidate.name != persona.name]
        if not others:
            return None
        return self.rng.choice(others)

    async def respond(self, persona: Persona, channel_id: str, channel_name: str, *, propagate: bool = True) -> str:
        reply = await self.generate(persona)
        if not reply:
            logger.warning("%s has no response", persona.name)
            return ""

        await self.commit(persona, channel_id, channel_name, reply)

        if propagate and self.should_continue(persona):
            partner = self.pick_partner(persona)
            if partner is not None:
                logger.info("[propagate] %s hands the conversation to %s", persona.name, partner.name)
                await self.respond(partner, channel_id, channel_name, propagate=False)
        return reply

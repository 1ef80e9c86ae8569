from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Callable, Sequence

from ..prompts.persona import dream_instruction, goal_instruction
from .attention import AttentionTracker
from .common import monotonic_ms, truncate
from .engine import ResponseEngine
from .interfaces import PersonaDirectory
from .models import MemoryKind, MemoryRecord, Persona

logger = logging.getLogger("persona_chorus")


class DailyMaintenanceScheduler:
    """Periodic dream, summary and goal pass over every persona.

    Personas are handled one at a time. Each of the three steps writes its own
    record even when another step produced nothing.
    """

    def __init__(
        self,
        personas: Sequence[Persona],
        engine: ResponseEngine,
        store: PersonaDirectory,
        attention: AttentionTracker,
        *,
        interval_seconds: float = 24 * 60 * 60,
        model: str | None = None,
        announce_goals: bool = False,
        channel_decay_ms: float = 300000,
        clock: Callable[[], float] = monotonic_ms,
    ) -> None:
        self.personas = list(personas)
        self.engine = engine
        self.store = store
        self.attention = attention
        self.interval_seconds = interval_seconds
        self.model = model
        self.announce_goals = announce_goals
        self.channel_decay_ms = channel_decay_ms
        self.clock = clock
        self._task: asyncio.Task[None] | None = None

    async def _record(self, persona: Persona, kind: MemoryKind, content: str) -> bool:
        try:
            await self.store.save_memory(MemoryRecord(persona=persona.name, kind=kind, content=content))
        except Exception:
            logger.exception("Failed to store %s for persona=%s", kind, persona.name)
            return False
        logger.info('[maintenance.%s] persona=%s text="%s"', kind, persona.name, truncate(content, 160))
        return True

    async def run_for_persona(self, persona: Persona) -> dict[str, str]:
        dream = await self.engine.generate(persona, instruction=dream_instruction(), model=self.model)
        await self._record(persona, "dream", dream)

        summary = await self.engine.summarize(persona, model=self.model)
        await self._record(persona, "summary", summary)

        goal = await self.engine.generate(persona, instruction=goal_instruction(), model=self.model)
        await self._record(persona, "goal", goal)

        if self.announce_goals and goal:
            self.attention.decay_if_stale(persona, self.clock(), self.channel_decay_ms)
            channel_id = self.attention.resolve_target(persona)
            if channel_id:
                await self.engine.deliver(persona, channel_id, goal)

        return {"dream": dream, "summary": summary, "goal": goal}

    async def run_once(self) -> None:
        logger.info("Daily maintenance started for %s personas", len(self.personas))
        for persona in self.personas:
            await self.run_for_persona(persona)
        logger.info("Daily maintenance finished")

    async def run_forever(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Daily maintenance pass failed")

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever(), name="daily-maintenance")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from dataclasses import replace
from typing import Callable, Sequence

from ..config import Settings
from ..errors import ImageAnalysisError
from ..prompts.persona import format_image_caption, image_caption_query
from .attention import AttentionTracker
from .common import monotonic_ms
from .debounce import Debouncer
from .engine import ResponseEngine
from .interfaces import ChatBackend, ImageDescriber, PersonaDirectory, Transport
from .maintenance import DailyMaintenanceScheduler
from .memory import ConversationMemory
from .models import ContentPart, InboundMessage, Persona
from .router import PersonaRouter

logger = logging.getLogger("persona_chorus")


class OrchestrationCore:
    """Owns the persona directory and every piece of per-process conversation state.

    Inbound messages are queued by the transport and consumed by a single
    dispatch task. Routing, ingest, debounce and attention decay run without
    suspending, except that a routed message with images to caption is
    ingested from its own task once the captions are in. The model round
    trip for an accepted trigger runs in its own task so the dispatcher keeps
    draining the queue.
    """

    def __init__(
        self,
        settings: Settings,
        personas: Sequence[Persona],
        llm: ChatBackend,
        store: PersonaDirectory,
        transport: Transport,
        *,
        image_analyzer: ImageDescriber | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = monotonic_ms,
        queue_size: int = 500,
    ) -> None:
        self.settings = settings
        self.personas = list(personas)
        self.clock = clock
        self.image_analyzer = image_analyzer

        self.memory = ConversationMemory(settings.history_limit)
        self.attention = AttentionTracker()
        self.debouncer = Debouncer()
        self.router = PersonaRouter(self.personas, self.attention)
        self.engine = ResponseEngine(
            self.personas,
            self.memory,
            self.debouncer,
            llm,
            store,
            transport,
            debounce_window_ms=settings.debounce_window_ms,
            interaction_limit=settings.interaction_limit,
            max_message_chars=settings.max_message_chars,
            chat_model=settings.gemini_model,
            rng=rng,
            clock=clock,
        )
        self.maintenance = DailyMaintenanceScheduler(
            self.personas,
            self.engine,
            store,
            self.attention,
            interval_seconds=settings.maintenance_interval_seconds,
            model=settings.gemini_maintenance_model,
            announce_goals=settings.maintenance_announce_goals,
            channel_decay_ms=settings.channel_decay_ms,
            clock=clock,
        )

        self.inbound: asyncio.Queue[InboundMessage] = asyncio.Queue(maxsize=queue_size)
        self._dispatch_task: asyncio.Task[None] | None = None
        self._response_tasks: set[asyncio.Task[str]] = set()

    async def start(self) -> None:
        if self._dispatch_task is None or self._dispatch_task.done():
            self._dispatch_task = asyncio.create_task(self._dispatch_loop(), name="inbound-dispatch")
        self.maintenance.start()
        logger.info("Orchestration core started with personas: %s", [p.name for p in self.personas])

    async def stop(self) -> None:
        await self.maintenance.stop()
        task, self._dispatch_task = self._dispatch_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        pending = list(self._response_tasks)
        for response_task in pending:
            response_task.cancel()
        for response_task in pending:
            with contextlib.suppress(asyncio.CancelledError):
                await response_task

    def submit(self, message: InboundMessage) -> bool:
        try:
            self.inbound.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Inbound queue is full; dropping message from %s", message.author_name)
            return False
        return True

    def wants_captions(self, message: InboundMessage) -> bool:
        if not self.settings.image_captions_enabled or self.image_analyzer is None:
            return False
        return any(part.is_image for part in message.attachments)

    async def enrich_images(self, message: InboundMessage) -> InboundMessage:
        if not self.wants_captions(message):
            return message
        assert self.image_analyzer is not None

        captions: list[ContentPart] = []
        for image in (part for part in message.attachments if part.is_image):
            try:
                description = await self.image_analyzer.analyze_image_url(image.url, image_caption_query())
            except ImageAnalysisError as exc:
                logger.warning("Image caption skipped for %s: %s", image.url, exc)
                continue
            captions.append(ContentPart.of_text(format_image_caption(description)))
        if not captions:
            return message
        return replace(message, attachments=[*message.attachments, *captions])

    def process(self, message: InboundMessage, now: float | None = None) -> asyncio.Task[str] | None:
        stamp = self.clock() if now is None else now
        decision = self.router.route(message, stamp)
        if decision is None:
            return None

        persona = decision.persona
        if self.wants_captions(message):
            # Captioning suspends, so ingest for this message moves into its own task.
            return self._track(
                asyncio.create_task(self._caption_and_accept(persona, message, stamp), name=f"caption-{persona.name}")
            )
        return self._accept(persona, message, stamp)

    def _accept(self, persona: Persona, message: InboundMessage, stamp: float) -> asyncio.Task[str] | None:
        if not self.engine.ingest(persona, message):
            return None

        acquired = self.engine.gate(persona, message.channel_id, stamp)
        self.attention.decay_if_stale(persona, stamp, self.settings.channel_decay_ms)
        if not acquired:
            return None

        return self._track(
            asyncio.create_task(
                self.engine.respond(persona, message.channel_id, message.channel_name),
                name=f"respond-{persona.name}",
            )
        )

    async def _caption_and_accept(self, persona: Persona, message: InboundMessage, stamp: float) -> str:
        enriched = await self.enrich_images(message)
        task = self._accept(persona, enriched, stamp)
        if task is None:
            return ""
        return await task

    def _track(self, task: asyncio.Task[str]) -> asyncio.Task[str]:
        self._response_tasks.add(task)
        task.add_done_callback(self._on_response_done)
        return task

    def _on_response_done(self, task: asyncio.Task[str]) -> None:
        self._response_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Response cycle failed: %s", exc, exc_info=exc)

    async def _dispatch_loop(self) -> None:
        while True:
            message = await self.inbound.get()
            try:
                self.process(message)
            except Exception:
                logger.exception("Error handling message in channel=%s", message.channel_id)
            finally:
                self.inbound.task_done()

    async def drain(self) -> None:
        await self.inbound.join()
        while self._response_tasks:
            await asyncio.gather(*list(self._response_tasks), return_exceptions=True)

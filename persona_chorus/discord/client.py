from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import discord

from ..config import Settings
from ..core.models import ContentPart, InboundMessage, Persona
from ..core.orchestrator import OrchestrationCore
from ..errors import ConfigurationError, DeliveryError
from ..services.gemini_client import GeminiClient
from ..services.image_analyzer import ImageAnalyzer
from ..storage.store import PersonaStore

logger = logging.getLogger("persona_chorus")


@dataclass(slots=True)
class WebhookTarget:
    webhook: discord.Webhook
    thread: discord.Thread | None = None


def is_image_attachment(attachment: discord.Attachment) -> bool:
    return (attachment.content_type or "").lower().startswith("image/")


def to_inbound_message(message: discord.Message) -> InboundMessage:
    channel = message.channel
    return InboundMessage(
        author_name=message.author.name,
        channel_id=str(channel.id),
        channel_name=str(getattr(channel, "name", "") or channel.id),
        content=message.content or "",
        attachments=[ContentPart.of_image(a.url) for a in message.attachments if is_image_attachment(a)],
    )


class PersonaChorusBot(discord.Client):
    def __init__(
        self,
        settings: Settings,
        store: PersonaStore,
        llm: GeminiClient,
        image_analyzer: ImageAnalyzer | None = None,
    ) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.messages = True
        intents.message_content = True

        super().__init__(intents=intents)

        self.settings = settings
        self.store = store
        self.llm = llm
        self.image_analyzer = image_analyzer
        self.core: OrchestrationCore | None = None
        self.webhook_cache: dict[int, WebhookTarget] = {}

    async def load_core(self) -> OrchestrationCore:
        try:
            await self.store.init()
            await self.store.ping()
            await self.store.sync_personas_from_json(self.settings.personas_json_path)
            personas = await self.store.load_all_personas()
        except ConfigurationError:
            raise
        except Exception as exc:
            raise ConfigurationError(f"Persona store is unavailable: {exc}") from exc
        if not personas:
            raise ConfigurationError("No personas configured")
        logger.info("Personas loaded: %s", [p.name for p in personas])

        return OrchestrationCore(
            self.settings,
            personas,
            self.llm,
            self.store,
            self,
            image_analyzer=self.image_analyzer,
        )

    async def setup_hook(self) -> None:
        self.core = await self.load_core()
        await self.llm.start()
        await self.core.start()

    async def close(self) -> None:
        if self.core is not None:
            await self._run_shutdown_step("core.stop", self.core.stop(), timeout=6.0)
        await self._run_shutdown_step("llm.close", self.llm.close(), timeout=6.0)
        await self._run_shutdown_step("discord.Client.close", super().close(), timeout=6.0)

    async def _run_shutdown_step(self, label: str, coro: object, *, timeout: float) -> None:
        try:
            await asyncio.wait_for(coro, timeout=timeout)  # type: ignore[arg-type]
        except asyncio.TimeoutError:
            logger.warning("Shutdown step timed out: %s", label)
        except Exception as exc:
            logger.warning("Shutdown step failed: %s (%s)", label, exc)

    async def on_ready(self) -> None:
        if self.user:
            logger.info("Connected as %s (%s)", self.user, self.user.id)

    async def on_message(self, message: discord.Message) -> None:
        if self.core is None:
            return
        if self.user is not None and message.author.id == self.user.id:
            return
        self.core.submit(to_inbound_message(message))

    async def _resolve_channel(self, channel_id: str) -> discord.abc.Messageable:
        try:
            key = int(channel_id)
        except ValueError as exc:
            raise DeliveryError(channel_id, "channel id is not numeric") from exc
        channel = self.get_channel(key)
        if channel is None:
            try:
                channel = await self.fetch_channel(key)
            except discord.DiscordException as exc:
                raise DeliveryError(channel_id, f"channel not found ({exc})") from exc
        if not isinstance(channel, discord.abc.Messageable):
            raise DeliveryError(channel_id, "channel is not messageable")
        return channel

    async def _get_or_create_webhook(self, channel: discord.abc.Messageable, persona: Persona) -> WebhookTarget | None:
        channel_key = getattr(channel, "id", 0)
        cached = self.webhook_cache.get(channel_key)
        if cached is not None:
            return cached

        thread: discord.Thread | None = None
        target = channel
        if isinstance(channel, discord.Thread):
            thread = channel
            target = channel.parent  # type: ignore[assignment]
        if not isinstance(target, discord.TextChannel):
            return None

        try:
            webhooks = await target.webhooks()
            webhook = next(
                (wh for wh in webhooks if self.user is not None and wh.user is not None and wh.user.id == self.user.id),
                None,
            )
            if webhook is None and target.permissions_for(target.guild.me).manage_webhooks:
                webhook = await target.create_webhook(name=f"{persona.name} Webhook")
        except discord.DiscordException as exc:
            logger.error("Error fetching or creating webhook in channel=%s: %s", channel_key, exc)
            return None

        if webhook is None:
            return None
        entry = WebhookTarget(webhook=webhook, thread=thread)
        self.webhook_cache[channel_key] = entry
        return entry

    async def deliver(self, channel_id: str, persona: Persona, text: str) -> None:
        channel = await self._resolve_channel(channel_id)
        hook = None
        if self.settings.discord_use_webhooks:
            hook = await self._get_or_create_webhook(channel, persona)
        try:
            if hook is not None:
                kwargs: dict[str, object] = {
                    "content": text,
                    "username": persona.display_name,
                }
                if persona.avatar:
                    kwargs["avatar_url"] = persona.avatar
                if hook.thread is not None:
                    kwargs["thread"] = hook.thread
                await hook.webhook.send(**kwargs)  # type: ignore[arg-type]
            else:
                await channel.send(f"**{persona.display_name}:** {text}")
        except discord.DiscordException as exc:
            raise DeliveryError(channel_id, str(exc)) from exc

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging

from .config import Settings
from .core.orchestrator import OrchestrationCore
from .discord.client import PersonaChorusBot
from .errors import ConfigurationError
from .services.gemini_client import GeminiClient
from .services.image_analyzer import ImageAnalyzer
from .storage.store import PersonaStore

logger = logging.getLogger("persona_chorus")


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logging.getLogger("discord.gateway").setLevel(logging.WARNING)
    logging.getLogger("discord.http").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def build_llm(settings: Settings) -> GeminiClient:
    return GeminiClient(
        api_key=settings.gemini_api_key,
        model=settings.gemini_model,
        timeout_seconds=settings.gemini_timeout_seconds,
        temperature=settings.gemini_temperature,
        max_output_tokens=settings.gemini_max_output_tokens,
        base_url=settings.gemini_base_url,
    )


def build_bot(settings: Settings) -> PersonaChorusBot:
    llm = build_llm(settings)
    return PersonaChorusBot(
        settings=settings,
        store=PersonaStore(settings.sqlite_path),
        llm=llm,
        image_analyzer=ImageAnalyzer(llm, model=settings.gemini_vision_model),
    )


async def _run_bot(settings: Settings) -> None:
    bot = build_bot(settings)
    try:
        async with bot:
            await bot.start(settings.discord_token)
    finally:
        if not bot.is_closed():
            with contextlib.suppress(Exception):
                await asyncio.wait_for(bot.close(), timeout=10.0)


class _LogOnlyTransport:
    async def deliver(self, channel_id: str, persona: object, text: str) -> None:
        logger.info("[maintenance.announce] channel=%s text=%s", channel_id, text)


async def _run_maintenance_once(settings: Settings) -> None:
    store = PersonaStore(settings.sqlite_path)
    try:
        await store.init()
        await store.sync_personas_from_json(settings.personas_json_path)
        personas = await store.load_all_personas()
    except ConfigurationError:
        raise
    except Exception as exc:
        raise ConfigurationError(f"Persona store is unavailable: {exc}") from exc

    llm = build_llm(settings)
    await llm.start()
    try:
        core = OrchestrationCore(settings, personas, llm, store, _LogOnlyTransport())
        await core.maintenance.run_once()
    finally:
        await llm.close()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="persona-chorus", description="Multi-persona Discord chat bot.")
    parser.add_argument(
        "--maintenance-now",
        action="store_true",
        help="Run one dream/summary/goal pass over every persona and exit.",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    configure_logging(logging.DEBUG if args.debug else logging.INFO)
    settings = Settings.from_env()
    try:
        if args.maintenance_now:
            if not settings.gemini_api_key:
                raise ConfigurationError("GEMINI_API_KEY is required")
            settings.validate_core()
            asyncio.run(_run_maintenance_once(settings))
            return
        settings.validate()
        asyncio.run(_run_bot(settings))
    except KeyboardInterrupt:
        logger.info("Shutdown requested, exiting.")
    except ConfigurationError as exc:
        logger.critical("Startup failed: %s", exc)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()

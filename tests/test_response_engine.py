from __future__ import annotations

import asyncio
import random
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from persona_chorus.config import Settings  # noqa: E402
from persona_chorus.core.debounce import Debouncer  # noqa: E402
from persona_chorus.core.engine import ResponseEngine  # noqa: E402
from persona_chorus.core.memory import ConversationMemory  # noqa: E402
from persona_chorus.core.models import ContentPart, ConversationTurn, InboundMessage, Persona  # noqa: E402
from persona_chorus.core.orchestrator import OrchestrationCore  # noqa: E402
from persona_chorus.errors import DeliveryError, ImageAnalysisError, ModelCallError, PersistenceError  # noqa: E402


NOVA = Persona(name="Nova", personality="A curious lab scientist", home_channel="lab")
RIX = Persona(name="Rix", personality="A sarcastic rat", home_channel="sewer", emoji="🐀")


class _FakeLLM:
    def __init__(self, replies: list[object] | None = None) -> None:
        self.replies = list(replies or [])
        self.calls: list[dict[str, object]] = []

    async def chat(self, messages, model=None, **kwargs):  # type: ignore[no-untyped-def]
        self.calls.append({"messages": list(messages), "model": model})
        if not self.replies:
            return "fallback reply"
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class _FakeStore:
    def __init__(self, *, fail_messages: bool = False) -> None:
        self.fail_messages = fail_messages
        self.messages: list[object] = []
        self.memories: list[object] = []

    async def save_message(self, record):  # type: ignore[no-untyped-def]
        if self.fail_messages:
            raise PersistenceError("disk full")
        self.messages.append(record)
        return len(self.messages)

    async def save_memory(self, record):  # type: ignore[no-untyped-def]
        self.memories.append(record)
        return len(self.memories)


class _FakeTransport:
    def __init__(self, *, fail_first: int = 0) -> None:
        self.fail_first = fail_first
        self.sent: list[tuple[str, str, str]] = []

    async def deliver(self, channel_id: str, persona: Persona, text: str) -> None:
        if self.fail_first > 0:
            self.fail_first -= 1
            raise DeliveryError(channel_id, "webhook rejected")
        self.sent.append((channel_id, persona.name, text))


def _settings(**overrides: object) -> Settings:
    values: dict[str, object] = {
        "discord_token": "token",
        "discord_use_webhooks": True,
        "gemini_api_key": "key",
        "gemini_base_url": "https://example.invalid",
        "gemini_model": "chat-model",
        "gemini_maintenance_model": "maintenance-model",
        "gemini_vision_model": "vision-model",
        "gemini_timeout_seconds": 30,
        "gemini_temperature": 0.5,
        "gemini_max_output_tokens": 0,
        "sqlite_path": Path("unused.db"),
        "personas_json_path": Path("unused.json"),
    }
    values.update(overrides)
    return Settings(**values)  # type: ignore[arg-type]


def _message(text: str, channel: str = "general", author: str = "alice", images: list[str] | None = None) -> InboundMessage:
    return InboundMessage(
        author_name=author,
        channel_id=channel,
        channel_name=channel,
        content=text,
        attachments=[ContentPart.of_image(url) for url in images or []],
    )


def _engine(llm: _FakeLLM, store: _FakeStore, transport: _FakeTransport, memory: ConversationMemory) -> ResponseEngine:
    return ResponseEngine(
        [NOVA, RIX],
        memory,
        Debouncer(),
        llm,
        store,
        transport,
        interaction_limit=2,
        max_message_chars=2000,
        chat_model="chat-model",
        rng=random.Random(3),
    )


def test_end_to_end_mention_outside_home_channel() -> None:
    llm = _FakeLLM(["x" * 2500])
    store = _FakeStore()
    transport = _FakeTransport()

    async def scenario() -> tuple[OrchestrationCore, str]:
        core = OrchestrationCore(_settings(), [NOVA, RIX], llm, store, transport, rng=random.Random(1), clock=lambda: 50_000.0)
        task = core.process(_message("Nova, what do you think?", channel="general"))
        assert task is not None
        return core, await task

    core, reply = asyncio.run(scenario())

    assert reply == "x" * 2500
    assert core.attention.resolve_target(NOVA) == "general"
    history = core.memory.snapshot("Nova")
    assert [turn.role for turn in history] == ["user", "assistant"]
    assert history[0].content[0].text == "(general) alice: Nova, what do you think?"
    assert [(channel, name, len(text)) for channel, name, text in transport.sent] == [
        ("general", "Nova", 2000),
        ("general", "Nova", 500),
    ]
    assert len(store.messages) == 1
    assert store.messages[0].location == "general"
    assert len(llm.calls) == 1
    assert llm.calls[0]["model"] == "chat-model"


def test_model_input_is_system_history_then_instruction() -> None:
    llm = _FakeLLM(["Sure."])
    memory = ConversationMemory(history_limit=10)
    engine = _engine(llm, _FakeStore(), _FakeTransport(), memory)
    engine.ingest(NOVA, _message("hello Nova"))

    asyncio.run(engine.respond(NOVA, "general", "general"))

    messages = llm.calls[0]["messages"]
    assert messages[0]["role"] == "system"
    assert messages[0]["content"].startswith("You are Nova. A curious lab scientist.")
    assert "one or two sentence replies" in messages[0]["content"]
    assert messages[1]["role"] == "user"
    assert messages[-1] == {
        "role": "user",
        "content": (
            "respond naturally to the above conversation, in character, "
            "driving the narrative forward and pursuing your goals."
        ),
    }


def test_propagation_hands_conversation_to_another_persona_without_user_turn() -> None:
    llm = _FakeLLM(["Nova again", "Rix chimes in"])
    store = _FakeStore()
    transport = _FakeTransport()
    memory = ConversationMemory(history_limit=10)
    memory.append("Nova", ConversationTurn.assistant("first"))
    memory.append("Nova", ConversationTurn.assistant("second"))
    engine = _engine(llm, store, transport, memory)

    asyncio.run(engine.respond(NOVA, "general", "general"))

    assert [name for _, name, _ in transport.sent] == ["Nova", "Rix"]
    rix_history = memory.snapshot("Rix")
    assert [turn.role for turn in rix_history] == ["assistant"]
    assert all(turn.role != "user" for turn in rix_history)
    assert llm.calls[1]["messages"][0]["content"].startswith("You are Rix.")


def test_propagation_is_strictly_one_level() -> None:
    llm = _FakeLLM(["Nova", "Rix"])
    transport = _FakeTransport()
    memory = ConversationMemory(history_limit=10)
    for name in ("Nova", "Rix"):
        memory.append(name, ConversationTurn.assistant("a"))
        memory.append(name, ConversationTurn.assistant("b"))
    engine = _engine(llm, _FakeStore(), transport, memory)

    asyncio.run(engine.respond(NOVA, "general", "general"))

    assert len(llm.calls) == 2
    assert [name for _, name, _ in transport.sent] == ["Nova", "Rix"]


def test_no_propagation_after_user_turn() -> None:
    llm = _FakeLLM(["reply"])
    memory = ConversationMemory(history_limit=10)
    engine = _engine(llm, _FakeStore(), _FakeTransport(), memory)
    engine.ingest(NOVA, _message("hi Nova"))

    asyncio.run(engine.respond(NOVA, "general", "general"))

    assert len(llm.calls) == 1
    assert memory.snapshot("Rix") == []


def test_propagation_skipped_when_only_one_persona() -> None:
    llm = _FakeLLM(["solo"])
    memory = ConversationMemory(history_limit=10)
    memory.append("Nova", ConversationTurn.assistant("a"))
    engine = ResponseEngine([NOVA], memory, Debouncer(), llm, _FakeStore(), _FakeTransport(), interaction_limit=2)

    assert asyncio.run(engine.respond(NOVA, "general", "general")) == "solo"
    assert len(llm.calls) == 1


def test_model_failure_is_silent_and_keeps_only_ingested_turn() -> None:
    llm = _FakeLLM([ModelCallError("boom")])
    store = _FakeStore()
    transport = _FakeTransport()
    memory = ConversationMemory(history_limit=10)
    engine = _engine(llm, store, transport, memory)
    engine.ingest(NOVA, _message("hi Nova"))

    assert asyncio.run(engine.respond(NOVA, "general", "general")) == ""

    assert [turn.role for turn in memory.snapshot("Nova")] == ["user"]
    assert transport.sent == []
    assert store.messages == []


def test_blank_model_output_counts_as_no_response() -> None:
    llm = _FakeLLM(["   \n "])
    transport = _FakeTransport()
    memory = ConversationMemory(history_limit=10)
    engine = _engine(llm, _FakeStore(), transport, memory)

    assert asyncio.run(engine.respond(NOVA, "general", "general")) == ""
    assert memory.snapshot("Nova") == []
    assert transport.sent == []


def test_unexpected_model_exception_does_not_escape() -> None:
    llm = _FakeLLM([KeyError("candidates")])
    engine = _engine(llm, _FakeStore(), _FakeTransport(), ConversationMemory(history_limit=10))

    assert asyncio.run(engine.respond(NOVA, "general", "general")) == ""


def test_failed_chunk_does_not_block_remaining_chunks() -> None:
    llm = _FakeLLM(["y" * 4100])
    transport = _FakeTransport(fail_first=1)
    engine = _engine(llm, _FakeStore(), transport, ConversationMemory(history_limit=10))

    asyncio.run(engine.respond(NOVA, "general", "general"))

    assert [len(text) for _, _, text in transport.sent] == [2000, 100]


def test_blank_chunks_are_not_delivered() -> None:
    transport = _FakeTransport()
    engine = ResponseEngine(
        [NOVA], ConversationMemory(), Debouncer(), _FakeLLM(), _FakeStore(), transport, max_message_chars=4
    )

    delivered = asyncio.run(engine.deliver(NOVA, "general", "abcd    efgh"))

    assert delivered == 2
    assert [text for _, _, text in transport.sent] == ["abcd", "efgh"]


def test_persistence_failure_does_not_block_delivery() -> None:
    llm = _FakeLLM(["still here"])
    transport = _FakeTransport()
    memory = ConversationMemory(history_limit=10)
    engine = _engine(llm, _FakeStore(fail_messages=True), transport, memory)

    asyncio.run(engine.respond(NOVA, "general", "general"))

    assert transport.sent == [("general", "Nova", "still here")]
    assert memory.snapshot("Nova")[-1].role == "assistant"


def test_burst_within_debounce_window_is_ingested_but_answered_once() -> None:
    llm = _FakeLLM(["one reply"])
    clock = {"now": 10_000.0}

    async def scenario() -> tuple[OrchestrationCore, list[object]]:
        core = OrchestrationCore(
            _settings(), [NOVA, RIX], llm, _FakeStore(), _FakeTransport(), clock=lambda: clock["now"]
        )
        first = core.process(_message("Nova?", channel="lab"))
        clock["now"] += 1000
        second = core.process(_message("Nova, hello??", channel="lab"))
        await core.drain()
        return core, [first, second]

    core, tasks = asyncio.run(scenario())

    assert tasks[0] is not None
    assert tasks[1] is None
    assert [turn.role for turn in core.memory.snapshot("Nova")] == ["user", "user", "assistant"]
    assert len(llm.calls) == 1


def test_trigger_after_window_elapses_is_answered() -> None:
    llm = _FakeLLM(["first", "second"])
    clock = {"now": 0.0}

    async def scenario() -> list[object]:
        core = OrchestrationCore(_settings(), [NOVA], llm, _FakeStore(), _FakeTransport(), clock=lambda: clock["now"])
        first = core.process(_message("Nova?", channel="lab"))
        await core.drain()
        clock["now"] += 5000
        second = core.process(_message("Nova, again", channel="lab"))
        await core.drain()
        return [first, second]

    tasks = asyncio.run(scenario())

    assert all(task is not None for task in tasks)
    assert len(llm.calls) == 2


def test_empty_message_without_images_is_skipped() -> None:
    llm = _FakeLLM()

    async def scenario() -> tuple[OrchestrationCore, object]:
        core = OrchestrationCore(_settings(), [NOVA], llm, _FakeStore(), _FakeTransport(), clock=lambda: 0.0)
        return core, core.process(_message("   ", channel="lab"))

    core, task = asyncio.run(scenario())

    assert task is None
    assert core.memory.snapshot("Nova") == []
    assert llm.calls == []


def test_image_only_message_is_ingested_with_image_parts() -> None:
    memory = ConversationMemory(history_limit=10)
    engine = _engine(_FakeLLM(), _FakeStore(), _FakeTransport(), memory)

    assert engine.ingest(NOVA, _message("", channel="lab", images=["https://cdn.example/cat.png"])) is True

    turn = memory.snapshot("Nova")[0]
    assert turn.role == "user"
    assert [part.kind for part in turn.content] == ["image_url"]
    assert turn.content[0].url == "https://cdn.example/cat.png"


def test_home_channel_traffic_decays_stale_attention() -> None:
    clock = {"now": 0.0}

    async def scenario() -> OrchestrationCore:
        core = OrchestrationCore(
            _settings(), [NOVA, RIX], _FakeLLM(), _FakeStore(), _FakeTransport(), clock=lambda: clock["now"]
        )
        core.process(_message("Nova, come to general", channel="general"))
        await core.drain()
        assert core.attention.resolve_target(NOVA) == "general"
        clock["now"] += 300_001
        core.process(_message("back home?", channel="lab"))
        await core.drain()
        return core

    core = asyncio.run(scenario())

    assert core.attention.resolve_target(NOVA) == "lab"


def test_dispatch_loop_consumes_submitted_messages() -> None:
    llm = _FakeLLM(["queued reply"])
    transport = _FakeTransport()

    async def scenario() -> OrchestrationCore:
        core = OrchestrationCore(_settings(), [NOVA, RIX], llm, _FakeStore(), transport)
        await core.start()
        try:
            assert core.submit(_message("hello", channel="sewer", author="bob")) is True
            assert core.submit(_message("Rix, reply please", channel="lab", author="Nova")) is True
            await core.drain()
        finally:
            await core.stop()
        return core

    asyncio.run(scenario())

    assert transport.sent == [("sewer", "Rix", "queued reply")]


class _FakeDescriber:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[str] = []

    async def analyze_image_url(self, image_url: str, query: str) -> str:
        self.calls.append(image_url)
        if self.fail:
            raise ImageAnalysisError("Failed to analyze image")
        return "a cat on a keyboard"


def test_unrouted_image_message_is_never_captioned() -> None:
    describer = _FakeDescriber()
    llm = _FakeLLM()

    async def scenario() -> object:
        core = OrchestrationCore(
            _settings(image_captions_enabled=True),
            [NOVA, RIX],
            llm,
            _FakeStore(),
            _FakeTransport(),
            image_analyzer=describer,
            clock=lambda: 0.0,
        )
        await core.start()
        try:
            core.submit(_message("lol look", channel="999", images=["https://cdn.example/cat.png"]))
            await core.drain()
        finally:
            await core.stop()
        return core.process(_message("lol look", channel="999", images=["https://cdn.example/cat.png"]))

    assert asyncio.run(scenario()) is None
    assert describer.calls == []
    assert llm.calls == []


def test_routed_image_message_is_captioned_before_ingest() -> None:
    describer = _FakeDescriber()
    llm = _FakeLLM(["Nice cat."])

    async def scenario() -> OrchestrationCore:
        core = OrchestrationCore(
            _settings(image_captions_enabled=True),
            [NOVA],
            llm,
            _FakeStore(),
            _FakeTransport(),
            image_analyzer=describer,
            clock=lambda: 0.0,
        )
        task = core.process(_message("look", channel="lab", images=["https://cdn.example/cat.png"]))
        assert task is not None
        assert core.memory.snapshot("Nova") == []
        await core.drain()
        return core

    core = asyncio.run(scenario())

    assert describer.calls == ["https://cdn.example/cat.png"]
    user_turn = core.memory.snapshot("Nova")[0]
    assert [part.kind for part in user_turn.content] == ["text", "image_url", "text"]
    assert user_turn.content[2].text == "[image: a cat on a keyboard]"
    assert len(llm.calls) == 1


def test_caption_failure_keeps_the_image_and_still_answers() -> None:
    transport = _FakeTransport()

    async def scenario() -> OrchestrationCore:
        core = OrchestrationCore(
            _settings(image_captions_enabled=True),
            [NOVA],
            _FakeLLM(["Cannot see it well."]),
            _FakeStore(),
            transport,
            image_analyzer=_FakeDescriber(fail=True),
            clock=lambda: 0.0,
        )
        core.process(_message("", channel="lab", images=["https://cdn.example/cat.png"]))
        await core.drain()
        return core

    core = asyncio.run(scenario())

    assert [part.kind for part in core.memory.snapshot("Nova")[0].content] == ["image_url"]
    assert transport.sent == [("lab", "Nova", "Cannot see it well.")]


def test_text_messages_skip_the_caption_step() -> None:
    describer = _FakeDescriber()

    async def scenario() -> OrchestrationCore:
        core = OrchestrationCore(
            _settings(image_captions_enabled=True),
            [NOVA],
            _FakeLLM(),
            _FakeStore(),
            _FakeTransport(),
            image_analyzer=describer,
            clock=lambda: 0.0,
        )
        core.process(_message("just words", channel="lab"))
        assert len(core.memory.snapshot("Nova")) == 1
        await core.drain()
        return core

    asyncio.run(scenario())

    assert describer.calls == []

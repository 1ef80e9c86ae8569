from __future__ import annotations

import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from persona_chorus.core.attention import AttentionTracker  # noqa: E402
from persona_chorus.core.common import chunk_text  # noqa: E402
from persona_chorus.core.debounce import Debouncer, debounce_key  # noqa: E402
from persona_chorus.core.memory import ConversationMemory  # noqa: E402
from persona_chorus.core.models import ContentPart, ConversationTurn, InboundMessage, Persona  # noqa: E402
from persona_chorus.core.router import PersonaRouter  # noqa: E402


NOVA = Persona(name="Nova", personality="A curious lab scientist", home_channel="lab", emoji="🔬")
RIX = Persona(name="Rix", personality="A sarcastic rat", home_channel="sewer")


def _message(text: str, channel: str = "general", author: str = "alice") -> InboundMessage:
    return InboundMessage(author_name=author, channel_id=channel, channel_name=channel, content=text)


@pytest.mark.parametrize(
    ("text", "limit"),
    [
        ("a" * 4500, 2000),
        ("hello world", 3),
        ("exact", 5),
        ("x", 1),
    ],
)
def test_chunk_text_reassembles_and_respects_limit(text: str, limit: int) -> None:
    chunks = chunk_text(text, limit)

    assert "".join(chunks) == text
    assert all(0 < len(chunk) <= limit for chunk in chunks)


def test_chunk_text_splits_long_reply_into_expected_sizes() -> None:
    assert [len(c) for c in chunk_text("a" * 4500, 2000)] == [2000, 2000, 500]


def test_chunk_text_empty_input_yields_nothing() -> None:
    assert chunk_text("", 2000) == []


def test_chunk_text_rejects_non_positive_limit() -> None:
    with pytest.raises(ValueError):
        chunk_text("abc", 0)


def test_memory_keeps_only_last_history_limit_turns_in_order() -> None:
    memory = ConversationMemory(history_limit=3)
    for index in range(5):
        memory.append("Nova", ConversationTurn.assistant(f"turn-{index}"))

    snapshot = memory.snapshot("Nova")
    assert len(snapshot) == 3
    assert [turn.content[0].text for turn in snapshot] == ["turn-2", "turn-3", "turn-4"]


def test_memory_recent_does_not_mutate_and_handles_short_history() -> None:
    memory = ConversationMemory(history_limit=10)
    memory.append("Nova", ConversationTurn.user([ContentPart.of_text("hi")]))
    memory.append("Nova", ConversationTurn.assistant("hello"))

    assert [t.role for t in memory.recent("Nova", 5)] == ["user", "assistant"]
    assert [t.role for t in memory.recent("Nova", 1)] == ["assistant"]
    assert memory.recent("Nova", 0) == []
    assert memory.recent("Rix", 3) == []
    assert len(memory.snapshot("Nova")) == 2


def test_memory_all_assistant_window() -> None:
    memory = ConversationMemory(history_limit=10)
    memory.append("Nova", ConversationTurn.user([ContentPart.of_text("hi")]))
    memory.append("Nova", ConversationTurn.assistant("one"))
    assert memory.all_assistant("Nova", 2) is False

    memory.append("Nova", ConversationTurn.assistant("two"))
    assert memory.all_assistant("Nova", 2) is True


def test_memory_histories_are_independent_per_persona() -> None:
    memory = ConversationMemory(history_limit=2)
    memory.append("Nova", ConversationTurn.assistant("a"))
    memory.append("Rix", ConversationTurn.assistant("b"))

    assert len(memory.snapshot("Nova")) == 1
    assert len(memory.snapshot("Rix")) == 1


def test_debouncer_blocks_inside_window_and_reopens_at_boundary() -> None:
    debouncer = Debouncer()
    key = debounce_key("Nova", "general")

    assert debouncer.try_acquire(key, 1000, 5000) is True
    assert debouncer.try_acquire(key, 1000 + 5000 - 1, 5000) is False
    assert debouncer.last_trigger(key) == 1000
    assert debouncer.try_acquire(key, 1000 + 5000, 5000) is True


def test_debouncer_keys_are_independent() -> None:
    debouncer = Debouncer()

    assert debouncer.try_acquire(debounce_key("Nova", "general"), 0, 5000) is True
    assert debouncer.try_acquire(debounce_key("Nova", "lab"), 1, 5000) is True
    assert debouncer.try_acquire(debounce_key("Rix", "general"), 2, 5000) is True


def test_attention_moves_to_mentioned_channel_and_decays_home() -> None:
    tracker = AttentionTracker()
    tracker.record_mention(NOVA, "general", 0)
    assert tracker.resolve_target(NOVA) == "general"

    assert tracker.decay_if_stale(NOVA, 300000, 300000) is False
    assert tracker.resolve_target(NOVA) == "general"

    assert tracker.decay_if_stale(NOVA, 300001, 300000) is True
    assert tracker.resolve_target(NOVA) == "lab"


def test_attention_ignores_mentions_in_home_channel() -> None:
    tracker = AttentionTracker()
    tracker.record_mention(NOVA, "lab", 0)

    assert tracker.get(NOVA) is None
    assert tracker.resolve_target(NOVA) == "lab"


def test_attention_renewed_mention_resets_decay_clock() -> None:
    tracker = AttentionTracker()
    tracker.record_mention(NOVA, "general", 0)
    tracker.record_mention(NOVA, "general", 200000)

    assert tracker.decay_if_stale(NOVA, 400000, 300000) is False
    assert tracker.resolve_target(NOVA) == "general"


def test_router_ignores_persona_authored_messages_even_with_mentions() -> None:
    router = PersonaRouter([NOVA, RIX], AttentionTracker())

    assert router.route(_message("Rix, what do you say?", author="Nova 🔬"), 0) is None
    assert router.route(_message("anything", channel="sewer", author="Rix"), 0) is None


def test_router_prefers_mentions_and_records_attention() -> None:
    attention = AttentionTracker()
    router = PersonaRouter([NOVA, RIX], attention)

    decision = router.route(_message("Nova, what do you think?", channel="general"), 10)

    assert decision is not None
    assert decision.persona is NOVA
    assert decision.mentioned is True
    assert attention.resolve_target(NOVA) == "general"


def test_router_mention_in_other_personas_home_channel() -> None:
    attention = AttentionTracker()
    router = PersonaRouter([NOVA, RIX], attention)

    decision = router.route(_message("hey nova come here", channel="sewer"), 10)

    assert decision is not None and decision.persona is NOVA
    assert attention.resolve_target(NOVA) == "sewer"


def test_router_name_match_is_whole_word_and_case_insensitive() -> None:
    router = PersonaRouter([NOVA, RIX], AttentionTracker())

    assert router.route(_message("NOVA?"), 0).persona is NOVA  # type: ignore[union-attr]
    assert router.route(_message("supernova explosion"), 0) is None
    assert router.route(_message("matrix reloaded"), 0) is None


def test_router_first_configured_persona_wins_ties() -> None:
    router = PersonaRouter([RIX, NOVA], AttentionTracker())

    decision = router.route(_message("Nova and Rix, both of you"), 0)

    assert decision is not None and decision.persona is RIX


def test_router_falls_back_to_home_channel_resident() -> None:
    attention = AttentionTracker()
    router = PersonaRouter([NOVA, RIX], attention)

    decision = router.route(_message("is anyone here?", channel="sewer"), 0)

    assert decision is not None
    assert decision.persona is RIX
    assert decision.mentioned is False
    assert attention.get(RIX) is None


def test_router_returns_none_without_mention_or_home_channel() -> None:
    router = PersonaRouter([NOVA, RIX], AttentionTracker())

    assert router.route(_message("just chatting", channel="random"), 0) is None


def test_persona_display_name_trims_missing_emoji() -> None:
    assert NOVA.display_name == "Nova 🔬"
    assert RIX.display_name == "Rix"

from __future__ import annotations

from collections import deque

from .models import ConversationTurn


class ConversationMemory:
    """Per-persona rolling history; the oldest turn falls off once ``history_limit`` is reached."""

    def __init__(self, history_limit: int = 10) -> None:
        if history_limit < 1:
            raise ValueError("history_limit must be >= 1")
        self.history_limit = history_limit
        self._histories: dict[str, deque[ConversationTurn]] = {}

    def _history(self, persona: str) -> deque[ConversationTurn]:
        history = self._histories.get(persona)
        if history is None:
            history = deque(maxlen=self.history_limit)
            self._histories[persona] = history
        return history

    def append(self, persona: str, turn: ConversationTurn) -> None:
        self._history(persona).append(turn)

    def recent(self, persona: str, n: int) -> list[ConversationTurn]:
        if n <= 0:
            return []
        history = self._histories.get(persona)
        if not history:
            return []
        return list(history)[-n:]

    def snapshot(self, persona: str) -> list[ConversationTurn]:
        return list(self._histories.get(persona, ()))

    def all_assistant(self, persona: str, n: int) -> bool:
        # An empty window counts as "all assistant" in the same way ``all([])`` does.
        return all(turn.role == "assistant" for turn in self.recent(persona, n))

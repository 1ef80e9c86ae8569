from __future__ import annotations


def debounce_key(persona_name: str, channel_id: str) -> str:
    return f"{persona_name}-{channel_id}"


class Debouncer:
    def __init__(self) -> None:
        self._last_trigger: dict[str, float] = {}

    def try_acquire(self, key: str, now: float, window: float) -> bool:
        """Claim ``key`` at ``now`` unless it was claimed less than ``window`` ago.

        A refused claim leaves the stored timestamp untouched.
        """
        last = self._last_trigger.get(key)
        if last is not None and now - last < window:
            return False
        self._last_trigger[key] = now
        return True

    def last_trigger(self, key: str) -> float | None:
        return self._last_trigger.get(key)

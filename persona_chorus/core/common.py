from __future__ import annotations

import time


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    if limit <= 3:
        return text[:limit]
    return text[: limit - 3].rstrip() + "..."


def chunk_text(text: str, max_length: int = 2000) -> list[str]:
    """Split ``text`` into consecutive slices of at most ``max_length`` characters.

    The split is positional only; joining the result gives back ``text``.
    """
    if max_length < 1:
        raise ValueError("max_length must be >= 1")
    return [text[start : start + max_length] for start in range(0, len(text), max_length)]


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0

from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger("persona_chorus.prompts")

_CACHE: dict[str, tuple[int | None, dict[str, Any]]] = {}


def _data_dir() -> Path:
    return Path(__file__).with_name("data")


def _deep_merge(base: Any, override: Any) -> Any:
    if not (isinstance(base, dict) and isinstance(override, dict)):
        return copy.deepcopy(override)
    merged = copy.deepcopy(base)
    for key, value in override.items():
        merged[key] = _deep_merge(merged[key], value) if key in merged else copy.deepcopy(value)
    return merged


def _remember(cache_key: str, mtime_ns: int | None, payload: dict[str, Any]) -> dict[str, Any]:
    _CACHE[cache_key] = (mtime_ns, copy.deepcopy(payload))
    return payload


def load_prompt_json(filename: str, defaults: dict[str, Any], data_dir: Path | None = None) -> dict[str, Any]:
    """Return ``defaults`` overlaid with ``<data_dir>/<filename>``.

    The parsed file is cached by modification time, so edits on disk are
    picked up without a restart. A missing or malformed file falls back to
    the defaults with a warning.
    """
    path = (data_dir or _data_dir()) / filename
    cache_key = str(path.resolve())

    mtime_ns: int | None = None
    try:
        mtime_ns = path.stat().st_mtime_ns
    except OSError:
        mtime_ns = None

    cached = _CACHE.get(cache_key)
    if cached is not None and cached[0] == mtime_ns:
        return copy.deepcopy(cached[1])

    if mtime_ns is None:
        logger.warning("Prompt JSON not found: %s (using defaults)", path)
        return _remember(cache_key, None, copy.deepcopy(defaults))

    try:
        payload = json.loads(path.read_text(encoding="utf-8-sig"))
    except (OSError, ValueError) as exc:
        logger.warning("Failed to parse prompt JSON %s (%s). Using defaults.", path, exc)
        return _remember(cache_key, mtime_ns, copy.deepcopy(defaults))

    if not isinstance(payload, dict):
        logger.warning("Prompt JSON root must be an object: %s (using defaults)", path)
        return _remember(cache_key, mtime_ns, copy.deepcopy(defaults))

    return _remember(cache_key, mtime_ns, _deep_merge(defaults, payload))

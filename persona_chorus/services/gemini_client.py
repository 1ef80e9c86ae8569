from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import random
from collections import OrderedDict
from typing import Any, Dict, List, Sequence

import aiohttp

from ..core.models import ContentPart
from ..errors import ModelCallError

logger = logging.getLogger("persona_chorus")

_RETRIABLE_STATUSES = {408, 409, 429, 500, 502, 503, 504}
_IMAGE_CACHE_SIZE = 32
_IMAGE_CACHE_MAX_BYTES = 24 * 1024 * 1024


class GeminiClient:
    """Text-in/text-out access to the Gemini ``generateContent`` REST endpoint.

    Messages use the chat shape ``{"role": ..., "content": ...}`` where content is
    either a string or a sequence of :class:`ContentPart`. Image parts are
    downloaded and sent inline.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout_seconds: int,
        temperature: float,
        max_output_tokens: int,
        base_url: str = "https://generativelanguage.googleapis.com",
        max_image_bytes: int = 8 * 1024 * 1024,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.temperature = temperature
        self.max_output_tokens: int | None = int(max_output_tokens) if int(max_output_tokens) > 0 else None
        self.max_image_bytes = max_image_bytes
        self._session: aiohttp.ClientSession | None = None
        self._image_cache: OrderedDict[str, Dict[str, Any]] = OrderedDict()
        self._image_cache_bytes = 0

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None
        return self._session

    def _endpoint(self, model: str) -> str:
        return f"{self.base_url}/v1beta/models/{model}:generateContent?key={self.api_key}"

    @staticmethod
    def _parse_data_url(url: str) -> Dict[str, Any]:
        header, _, data = url.partition(",")
        if not header.startswith("data:") or ";base64" not in header or not data:
            raise ModelCallError("Unsupported data URL for image part")
        mime_type = header[len("data:") :].split(";", 1)[0] or "image/jpeg"
        try:
            base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ModelCallError(f"Invalid base64 image payload: {exc}") from exc
        return {"inlineData": {"mimeType": mime_type, "data": data}}

    async def _fetch_image_part(self, url: str) -> Dict[str, Any]:
        if url.startswith("data:"):
            return self._parse_data_url(url)

        cached = self._image_cache.get(url)
        if cached is not None:
            self._image_cache.move_to_end(url)
            return cached

        session = await self._ensure_session()
        try:
            async with session.get(url) as response:
                if response.status != 200:
                    raise ModelCallError(f"Image download failed with status {response.status}: {url}")
                payload = await response.read()
                mime_type = (response.content_type or "").strip() or "image/jpeg"
        except asyncio.CancelledError:
            raise
        except ModelCallError:
            raise
        except Exception as exc:
            raise ModelCallError(f"Image download failed: {url} ({exc})") from exc

        if not payload:
            raise ModelCallError(f"Image download returned no bytes: {url}")
        if len(payload) > self.max_image_bytes:
            raise ModelCallError(f"Image too large ({len(payload)} bytes): {url}")
        if not mime_type.startswith("image/"):
            mime_type = "image/jpeg"

        part = {"inlineData": {"mimeType": mime_type, "data": base64.b64encode(payload).decode("ascii")}}
        self._remember_image(url, part)
        return part

    @staticmethod
    def _part_size(part: Dict[str, Any]) -> int:
        return len(part["inlineData"]["data"])

    def _remember_image(self, url: str, part: Dict[str, Any]) -> None:
        size = self._part_size(part)
        if size > _IMAGE_CACHE_MAX_BYTES:
            return
        previous = self._image_cache.pop(url, None)
        if previous is not None:
            self._image_cache_bytes -= self._part_size(previous)
        self._image_cache[url] = part
        self._image_cache_bytes += size
        while len(self._image_cache) > _IMAGE_CACHE_SIZE or self._image_cache_bytes > _IMAGE_CACHE_MAX_BYTES:
            _, evicted = self._image_cache.popitem(last=False)
            self._image_cache_bytes -= self._part_size(evicted)

    async def _map_parts(self, content: object, strict_images: bool) -> List[Dict[str, Any]]:
        if isinstance(content, str):
            text = content.strip()
            return [{"text": text}] if text else []

        parts: List[Dict[str, Any]] = []
        for item in content or ():  # type: ignore[union-attr]
            if not isinstance(item, ContentPart):
                continue
            if not item.is_image:
                if item.text.strip():
                    parts.append({"text": item.text.strip()})
                continue
            try:
                parts.append(await self._fetch_image_part(item.url))
            except ModelCallError as exc:
                if strict_images:
                    raise
                logger.warning("Image part dropped from model input: %s", exc)
                parts.append({"text": f"[image unavailable: {item.url}]"})
        return parts

    async def _map_messages(self, messages: Sequence[Dict[str, Any]], strict_images: bool) -> Dict[str, Any]:
        system_lines: List[str] = []
        contents: List[Dict[str, Any]] = []

        for message in messages:
            role = str(message.get("role", "")).strip().lower()
            content = message.get("content", "")
            if role == "system":
                text = content.strip() if isinstance(content, str) else ""
                if text:
                    system_lines.append(text)
                continue
            parts = await self._map_parts(content, strict_images)
            if not parts:
                continue
            mapped_role = "model" if role == "assistant" else "user"
            contents.append({"role": mapped_role, "parts": parts})

        payload: Dict[str, Any] = {"contents": contents}
        if system_lines:
            payload["systemInstruction"] = {
                "parts": [{"text": "\n\n".join(system_lines)}],
            }
        return payload

    async def _request(self, model: str, payload: Dict[str, Any], retries: int = 3) -> Dict[str, Any]:
        session = await self._ensure_session()
        url = self._endpoint(model)
        last_error: Exception | None = None

        for attempt in range(1, retries + 1):
            try:
                async with session.post(url, json=payload) as response:
                    text = await response.text()
                    if response.status == 200:
                        return json.loads(text)

                    if response.status not in _RETRIABLE_STATUSES:
                        raise ModelCallError(f"Gemini error {response.status}: {text}")
                    last_error = ModelCallError(f"Gemini retriable error {response.status}: {text}")
            except asyncio.CancelledError:
                raise
            except ModelCallError:
                raise
            except Exception as exc:
                last_error = exc

            if attempt < retries:
                await asyncio.sleep(min(4.0, 0.35 * attempt + random.random() * 0.2))

        if last_error is not None:
            raise ModelCallError(f"Gemini request failed after retries: {last_error}")
        raise ModelCallError("Gemini request failed without explicit error")

    @staticmethod
    def _extract_text(data: Dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            prompt_feedback = data.get("promptFeedback") or {}
            block_reason = prompt_feedback.get("blockReason")
            if block_reason:
                raise ModelCallError(f"Gemini blocked response: {block_reason}")
            raise ModelCallError("Gemini returned no candidates")

        first = candidates[0]
        content = first.get("content") or {}
        chunks = [
            part["text"].strip()
            for part in content.get("parts") or []
            if isinstance(part.get("text"), str) and part["text"].strip()
        ]
        joined = "\n".join(chunks).strip()
        if joined:
            return joined

        finish_reason = first.get("finishReason")
        if finish_reason:
            raise ModelCallError(f"Gemini empty response (finishReason={finish_reason})")
        raise ModelCallError("Gemini empty response")

    async def chat(
        self,
        messages: Sequence[Dict[str, Any]],
        model: str | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        strict_images: bool = False,
    ) -> str:
        payload = await self._map_messages(messages, strict_images)
        if not payload["contents"]:
            raise ModelCallError("Nothing to send to Gemini: all messages were empty")
        generation_config: Dict[str, Any] = {
            "temperature": self.temperature if temperature is None else temperature,
        }
        selected_tokens = self.max_output_tokens if max_output_tokens is None else max_output_tokens
        if selected_tokens is not None and int(selected_tokens) > 0:
            generation_config["maxOutputTokens"] = int(selected_tokens)
        payload["generationConfig"] = generation_config
        data = await self._request(model or self.model, payload)
        return self._extract_text(data)

from __future__ import annotations

import base64
import logging
import mimetypes
from pathlib import Path
from typing import Iterable

from ..core.models import ContentPart
from ..errors import ImageAnalysisError, ModelCallError
from .gemini_client import GeminiClient

logger = logging.getLogger("persona_chorus")

DEFAULT_URL_QUERY = "Provided a detailed and highly technical analysis of this image."
DEFAULT_LOCAL_QUERY = "What’s in this image?"
DEFAULT_COMPARISON_QUERY = "Provide a detailed comparison of these images."


class ImageAnalyzer:
    """One text query plus N image references in, a single text answer out.

    Every mode reports failure as :class:`ImageAnalysisError`; callers never
    see a partial answer.
    """

    def __init__(self, llm: GeminiClient, model: str | None = None) -> None:
        self.llm = llm
        self.model = model

    async def _ask(self, query: str, images: list[ContentPart], failure: str) -> str:
        messages = [{"role": "user", "content": [ContentPart.of_text(query), *images]}]
        try:
            answer = await self.llm.chat(messages, model=self.model, strict_images=True)
        except ModelCallError as exc:
            logger.error("Image analysis failed: %s", exc)
            raise ImageAnalysisError(failure) from exc
        answer = answer.strip()
        if not answer:
            raise ImageAnalysisError("No analysis returned.")
        return answer

    async def analyze_image_url(self, image_url: str, query: str = DEFAULT_URL_QUERY) -> str:
        return await self._ask(query, [ContentPart.of_image(image_url)], "Failed to analyze image")

    async def analyze_local_image(self, image_path: str | Path, query: str = DEFAULT_LOCAL_QUERY) -> str:
        data_url = self.encode_image_to_data_url(image_path)
        return await self._ask(query, [ContentPart.of_image(data_url)], "Failed to analyze image")

    async def analyze_multiple_images(
        self,
        image_urls: Iterable[str],
        query: str = DEFAULT_COMPARISON_QUERY,
    ) -> str:
        images = [ContentPart.of_image(url) for url in image_urls]
        if not images:
            raise ImageAnalysisError("Failed to analyze images")
        return await self._ask(query, images, "Failed to analyze images")

    @staticmethod
    def encode_image_to_data_url(image_path: str | Path) -> str:
        path = Path(image_path)
        try:
            raw = path.read_bytes()
        except OSError as exc:
            logger.error("Failed to encode image to base64: %s", exc)
            raise ImageAnalysisError("Failed to encode image to base64") from exc
        mime_type = mimetypes.guess_type(path.name)[0] or "image/jpeg"
        if not mime_type.startswith("image/"):
            mime_type = "image/jpeg"
        return f"data:{mime_type};base64,{base64.b64encode(raw).decode('ascii')}"

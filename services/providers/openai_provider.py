"""Image generation through the OpenAI Images API."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional, Tuple

from openai import AsyncOpenAI, OpenAIError

from models.errors import ProviderError
from models.generation_models import ImageGenerationParams
from services.providers.base import ProviderResult

LOGGER = logging.getLogger(__name__)
DEFAULT_MODEL = "gpt-image-1"

SIZE_CHOICES: Dict[str, Tuple[int, int]] = {
    "1024x1024": (1024, 1024),
    "1024x1536": (1024, 1536),
    "1536x1024": (1536, 1024),
}
QUALITY_MAP = {"draft": "low", "standard": "medium", "high": "high"}


def resolve_size(params: ImageGenerationParams) -> str:
    """Snap the requested dimensions or aspect ratio to a supported size."""
    if params.width and params.height:
        target = params.width / params.height
    elif params.aspect_ratio and ":" in params.aspect_ratio:
        left, _, right = params.aspect_ratio.partition(":")
        try:
            target = float(left) / float(right)
        except (ValueError, ZeroDivisionError):
            return "1024x1024"
    else:
        return "1024x1024"

    best_key, best_delta = "1024x1024", float("inf")
    for key, (width, height) in SIZE_CHOICES.items():
        delta = abs((width / height) - target)
        if delta < best_delta:
            best_key, best_delta = key, delta
    return best_key


def build_prompt(prompt: str, params: ImageGenerationParams) -> str:
    """Fold the style token into the prompt; the API has no style field."""
    if params.style and params.style != "natural":
        return f"{prompt}\n\nStyle: {params.style}"
    return prompt


class OpenAIImageProvider:
    """Generate images with `AsyncOpenAI.images.generate`."""

    name = "openai"

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: str = DEFAULT_MODEL) -> None:
        """Initialize the provider.

        Args:
            client: Async OpenAI client; one is built from the environment when omitted.
            model: Image model identifier.
        """
        self.client = client
        self.model = model

    def _resolve_client(self) -> AsyncOpenAI:
        if self.client is None:
            try:
                self.client = AsyncOpenAI()
            except OpenAIError as exc:
                raise ProviderError(f"OpenAI client unavailable: {exc}") from exc
        return self.client

    async def ensure_ready(self) -> None:
        self._resolve_client()

    async def generate(self, prompt: str, params: ImageGenerationParams) -> ProviderResult:
        """Request one image and return it as a URL.

        Raises:
            ProviderError: On API failure or when the response carries no image.
        """
        client = self._resolve_client()
        request: Dict[str, Any] = {
            "model": self.model,
            "prompt": build_prompt(prompt, params),
            "size": resolve_size(params),
            "n": 1,
        }
        if params.quality:
            request["quality"] = QUALITY_MAP[params.quality]

        start = time.time()
        try:
            response = await client.images.generate(**request)
        except OpenAIError as exc:
            LOGGER.error("OpenAI image generation failed: %s", exc)
            raise ProviderError(f"OpenAI image generation failed: {exc}") from exc
        latency = time.time() - start
        LOGGER.info("OpenAI image generation latency: %.3fs", latency)

        data = getattr(response, "data", None) or []
        if not data:
            raise ProviderError("OpenAI response contained no images")
        item = data[0]
        b64 = getattr(item, "b64_json", None)
        url = getattr(item, "url", None)
        if b64:
            image_url = f"data:image/png;base64,{b64}"
        elif url:
            image_url = url
        else:
            raise ProviderError("OpenAI response image had neither b64_json nor url")

        metadata: Dict[str, Any] = {"model": self.model, "size": request["size"], "latency": latency}
        revised = getattr(item, "revised_prompt", None)
        if revised:
            metadata["revised_prompt"] = revised
        return ProviderResult(image_url=image_url, metadata=metadata)

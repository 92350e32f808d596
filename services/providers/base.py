"""Generation provider contract."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Protocol

from models.generation_models import ImageGenerationParams


@dataclass
class ProviderResult:
    """Raw outcome of a provider call.

    Attributes:
        image_url: Hosted URL or `data:` URL for the generated image.
        metadata: Provider-specific details (model, revised prompt, timings).
    """

    image_url: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class GenerationProvider(Protocol):
    name: str

    async def ensure_ready(self) -> None:
        """Raise ProviderError when the provider cannot accept work."""
        ...

    async def generate(self, prompt: str, params: ImageGenerationParams) -> ProviderResult:
        ...

"""Offline provider that renders a prompt-coloured placeholder PNG."""

from __future__ import annotations

import asyncio
import base64
import hashlib
import io
from typing import Tuple

from PIL import Image, ImageDraw, ImageFont

from models.generation_models import ImageGenerationParams
from services.providers.base import ProviderResult

MAX_SIDE = 512


def _color_from_prompt(prompt: str) -> Tuple[int, int, int]:
    digest = hashlib.sha256(prompt.encode("utf-8")).digest()
    return digest[0], digest[1], digest[2]


def _resolve_size(params: ImageGenerationParams) -> Tuple[int, int]:
    width = params.width or 1024
    height = params.height or 1024
    # Preview images only need the aspect ratio.
    scale = min(1.0, MAX_SIDE / max(width, height))
    return max(1, int(width * scale)), max(1, int(height * scale))


def render_placeholder(prompt: str, params: ImageGenerationParams) -> bytes:
    """Return PNG bytes of a solid image labelled with the prompt."""
    image = Image.new("RGB", _resolve_size(params), _color_from_prompt(prompt))
    draw = ImageDraw.Draw(image)
    draw.text((12, 12), f"placeholder\n{prompt[:60]}", fill=(255, 255, 255), font=ImageFont.load_default())
    out_io = io.BytesIO()
    image.save(out_io, format="PNG")
    return out_io.getvalue()


class PlaceholderProvider:
    """Provider used for local development and when no API key is configured."""

    name = "placeholder"

    async def ensure_ready(self) -> None:
        return None

    async def generate(self, prompt: str, params: ImageGenerationParams) -> ProviderResult:
        # Pillow rendering is blocking -> run in thread
        png = await asyncio.to_thread(render_placeholder, prompt, params)
        encoded = base64.b64encode(png).decode("utf-8")
        return ProviderResult(image_url=f"data:image/png;base64,{encoded}", metadata={"placeholder": True})

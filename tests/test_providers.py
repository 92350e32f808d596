from __future__ import annotations

import asyncio
import base64
import io
from types import SimpleNamespace

import pytest
from openai import OpenAIError
from PIL import Image

from main import build_provider
from models.errors import ProviderError
from models.generation_models import ImageGenerationParams
from services.providers.openai_provider import DEFAULT_MODEL, OpenAIImageProvider, build_prompt, resolve_size
from services.providers.placeholder_provider import PlaceholderProvider
from services.thumbnail_generator import ThumbnailGenerator
from utils.config import TrackerConfig


class FakeImages:
    def __init__(self, response=None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.requests = []

    async def generate(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


def _client(images: FakeImages) -> SimpleNamespace:
    return SimpleNamespace(images=images)


def _response(**item) -> SimpleNamespace:
    values = {"b64_json": None, "url": None, "revised_prompt": None}
    values.update(item)
    return SimpleNamespace(data=[SimpleNamespace(**values)])


def test_resolve_size_snaps_to_supported_sizes() -> None:
    assert resolve_size(ImageGenerationParams()) == "1024x1024"
    assert resolve_size(ImageGenerationParams(width=1920, height=1080)) == "1536x1024"
    assert resolve_size(ImageGenerationParams(aspect_ratio="9:16")) == "1024x1536"
    assert resolve_size(ImageGenerationParams(aspect_ratio="wide")) == "1024x1024"


def test_style_is_folded_into_prompt() -> None:
    assert build_prompt("harbor", ImageGenerationParams(style="natural")) == "harbor"
    assert build_prompt("harbor", ImageGenerationParams(style="ukiyo-e")).endswith("Style: ukiyo-e")


def test_openai_provider_returns_data_url_and_maps_quality() -> None:
    images = FakeImages(_response(b64_json="aGVsbG8=", revised_prompt="a calm harbor"))
    provider = OpenAIImageProvider(_client(images), model="gpt-image-1")

    result = asyncio.run(provider.generate("harbor", ImageGenerationParams(quality="draft")))

    assert result.image_url == "data:image/png;base64,aGVsbG8="
    assert result.metadata["revised_prompt"] == "a calm harbor"
    assert images.requests[0]["quality"] == "low"
    assert images.requests[0]["size"] == "1024x1024"
    assert images.requests[0]["n"] == 1


def test_openai_provider_passes_hosted_urls_through() -> None:
    provider = OpenAIImageProvider(_client(FakeImages(_response(url="https://cdn.example/a.png"))))
    result = asyncio.run(provider.generate("harbor", ImageGenerationParams()))
    assert result.image_url == "https://cdn.example/a.png"


@pytest.mark.parametrize(
    "images",
    [
        FakeImages(error=OpenAIError("rate limited")),
        FakeImages(SimpleNamespace(data=[])),
        FakeImages(_response()),
    ],
)
def test_openai_provider_failures_raise_provider_error(images: FakeImages) -> None:
    provider = OpenAIImageProvider(_client(images))
    with pytest.raises(ProviderError):
        asyncio.run(provider.generate("harbor", ImageGenerationParams()))


def test_placeholder_renders_png_with_requested_aspect() -> None:
    provider = PlaceholderProvider()
    result = asyncio.run(provider.generate("sunset", ImageGenerationParams(width=2048, height=1024)))

    header, _, encoded = result.image_url.partition(",")
    assert header == "data:image/png;base64"
    image = Image.open(io.BytesIO(base64.b64decode(encoded)))
    assert image.size == (512, 256)


def test_thumbnail_fits_bounds() -> None:
    result = asyncio.run(PlaceholderProvider().generate("sunset", ImageGenerationParams()))
    png = ThumbnailGenerator().create_thumbnail_from_data_url(result.image_url)
    thumb = Image.open(io.BytesIO(png))
    assert thumb.format == "PNG"
    assert max(thumb.size) <= 160


@pytest.mark.parametrize("url", ["https://cdn.example/a.png", "data:image/png;base64,!!!", "data:text/plain;base64,aGk="])
def test_thumbnail_rejects_non_inline_images(url: str) -> None:
    with pytest.raises(ValueError):
        ThumbnailGenerator().create_thumbnail_from_data_url(url)


def test_model_comes_from_config_not_import_time_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_IMAGE_MODEL", "from-environment")
    assert OpenAIImageProvider().model == DEFAULT_MODEL == "gpt-image-1"

    config = TrackerConfig(image_provider="openai", openai_api_key="sk-test", openai_image_model="gpt-image-1-mini")
    assert build_provider(config).model == "gpt-image-1-mini"

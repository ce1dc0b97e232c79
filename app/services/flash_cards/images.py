import logging
from typing import Optional

from app.core.config import settings
from app.core.exceptions import ImageGenerationError
from app.schemas.flash_cards import GenerationParams
from app.services.flash_cards.base import SceneImageGenerator
from app.services.flash_cards.openai_http import OpenAIHttpClient, UpstreamCallError
from app.utils.enums import StylePreference

logger = logging.getLogger(__name__)


STYLE_SUFFIXES = {
    StylePreference.cartoon: "bright friendly cartoon illustration, bold outlines, flat colors",
    StylePreference.realistic: "realistic photograph style, natural lighting, child-friendly",
    StylePreference.minimalist: "minimalist flat illustration, simple shapes, plain background",
}


def build_image_prompt(image_prompt: str, params: GenerationParams) -> str:
    """Append the style and safety suffix to a scene's image prompt."""
    suffix = STYLE_SUFFIXES.get(params.style_preference, "")
    return f"{image_prompt.strip()}, {suffix}, suitable for children, no text or letters in the image"


class OpenAISceneImageGenerator(SceneImageGenerator):
    """Scene illustrations via the OpenAI images endpoint."""

    def __init__(
        self,
        http: Optional[OpenAIHttpClient] = None,
        model: Optional[str] = None,
        size: Optional[str] = None,
    ):
        self.http = http or OpenAIHttpClient()
        self.model = model or settings.IMAGE_MODEL
        self.size = size or settings.IMAGE_SIZE

    async def generate(self, image_prompt: str, params: GenerationParams) -> str:
        payload = {
            "model": self.model,
            "prompt": build_image_prompt(image_prompt, params),
            "n": 1,
            "size": self.size,
            "response_format": "url",
        }
        try:
            body = await self.http.post_json("/images/generations", payload)
        except UpstreamCallError as e:
            raise ImageGenerationError(
                "Image generation failed",
                details={"status_code": e.status_code, "error": str(e)},
            ) from e

        data = body.get("data") or []
        url = data[0].get("url") if data and isinstance(data[0], dict) else None
        if not url:
            raise ImageGenerationError("Image generation returned no URL")
        return url

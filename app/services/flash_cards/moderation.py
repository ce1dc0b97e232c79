import logging
from typing import Optional

from app.core.config import settings
from app.core.exceptions import ModerationUnavailableError
from app.services.flash_cards.base import ContentModerator, ModerationResult
from app.services.flash_cards.openai_http import OpenAIHttpClient, UpstreamCallError

logger = logging.getLogger(__name__)


def _category_label(name: str) -> str:
    # "violence/graphic" -> "violence", "self-harm/intent" -> "self-harm"
    return name.split("/", 1)[0]


class OpenAIContentModerator(ContentModerator):
    """Moderation via the OpenAI moderations endpoint."""

    def __init__(self, http: Optional[OpenAIHttpClient] = None, model: Optional[str] = None):
        self.http = http or OpenAIHttpClient()
        self.model = model or settings.MODERATION_MODEL

    async def check(self, text: str) -> ModerationResult:
        if not settings.MODERATION_ENABLED:
            return ModerationResult(flagged=False)

        try:
            body = await self.http.post_json("/moderations", {"model": self.model, "input": text})
        except UpstreamCallError as e:
            raise ModerationUnavailableError(
                "Content moderation is temporarily unavailable",
                details={"status_code": e.status_code, "error": str(e)},
            ) from e

        results = body.get("results")
        if not isinstance(results, list) or not results:
            raise ModerationUnavailableError("Content moderation returned an unexpected response")

        categories: list[str] = []
        flagged = False
        for result in results:
            if not result.get("flagged"):
                continue
            flagged = True
            for name, hit in (result.get("categories") or {}).items():
                label = _category_label(name)
                if hit and label not in categories:
                    categories.append(label)

        if flagged:
            logger.warning(f"Moderation flagged generated content: {', '.join(categories) or 'unspecified'}")
        return ModerationResult(flagged=flagged, categories=categories)

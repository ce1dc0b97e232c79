import json
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from app.core.config import settings
from app.core.exceptions import TextGenerationError
from app.core.genai_client import GeminiClientWithRetry, get_gemini_model
from app.schemas.flash_cards import GenerationParams
from app.schemas.generated_content import GeneratedCardContent, TextGenerationResult, TextUsage
from app.services.flash_cards.base import TextContentGenerator
from app.utils.enums import AgeGroup, CardType

logger = logging.getLogger(__name__)


SYSTEM_INSTRUCTIONS = (
    "You are an expert English teacher who designs illustrated vocabulary flash cards for children. "
    "Return pure JSON only. Do not include markdown, backticks, or commentary. The JSON shape must be: {\n"
    "  \"title\": string (<= 120 chars),\n"
    "  \"primary_word\": string (the word being taught, or the category name),\n"
    "  \"category_words\": [string] | null (words of the category; null for single-word cards),\n"
    "  \"scenes\": [\n"
    "    {\n"
    "      \"description\": string (short caption shown under the picture, <= 300 chars),\n"
    "      \"image_prompt\": string (a self-contained prompt for an illustrator, no text in the image)\n"
    "    }\n"
    "  ]\n"
    "}\n"
    "Content must be safe and friendly for children."
)

AGE_GROUP_LABELS = {
    AgeGroup.preschool: "preschool children (3-5 years)",
    AgeGroup.elementary: "elementary school children (6-10 years)",
    AgeGroup.middle_school: "middle school students (11-14 years)",
}


def build_card_prompt(
    input_prompt: str,
    card_type: CardType,
    params: GenerationParams,
    scene_count: int,
) -> str:
    """Compose the full text-generation prompt for one card."""
    audience = AGE_GROUP_LABELS.get(params.age_group, params.age_group.value)
    if card_type == CardType.category:
        task = (
            f"Create a category flash card for the category \"{input_prompt}\". "
            f"List between 2 and {scene_count} category_words and write one scene per word, "
            "in the same order as category_words."
        )
    else:
        task = (
            f"Create a single-word flash card for the word \"{input_prompt}\". "
            f"Set primary_word to exactly \"{input_prompt}\" and write exactly {scene_count} "
            "different scenes that show the word in everyday situations. Set category_words to null."
        )

    return f"""{SYSTEM_INSTRUCTIONS}

{task}
Audience: {audience}.
Vocabulary difficulty: {params.difficulty_level.value}.
Illustration style for image prompts: {params.style_preference.value}.
Write captions in language: {params.language}.
"""


def extract_json_object(text: str) -> Dict[str, Any]:
    """Parse the model reply, tolerating code fences and surrounding prose."""
    text = (text or "").strip()

    if text.startswith("```"):
        text = text.strip('`')
        start = text.find('{')
        end = text.rfind('}')
        if start != -1 and end != -1 and end > start:
            text = text[start:end+1]

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        start = text.find('{')
        end = text.rfind('}')
        if start == -1 or end <= start:
            raise TextGenerationError("Generated content was not valid JSON")
        try:
            data = json.loads(text[start:end+1])
        except json.JSONDecodeError as e:
            raise TextGenerationError("Generated content was not valid JSON") from e

    if not isinstance(data, dict):
        raise TextGenerationError("Generated content must be a JSON object")
    return data


def parse_card_content(
    text: str,
    card_type: CardType,
    max_scenes: int,
    input_prompt: Optional[str] = None,
) -> GeneratedCardContent:
    """Validate the model reply against the card schema, failing fast on mismatch.

    Single-word cards must carry exactly ``max_scenes`` scenes (extras are
    dropped) and teach the word that was asked for, so ``primary_word`` is
    reset to ``input_prompt`` when one is given.
    """
    data = extract_json_object(text)
    data["card_type"] = card_type.value
    try:
        content = GeneratedCardContent.model_validate(data)
    except ValidationError as e:
        logger.error(f"Generated card content failed validation: {e.error_count()} error(s)")
        raise TextGenerationError(
            "Generated content did not match the expected card format",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e

    if card_type == CardType.single_word:
        if len(content.scenes) < max_scenes:
            logger.error(
                f"Generated single-word card has {len(content.scenes)} scenes, expected {max_scenes}"
            )
            raise TextGenerationError(
                f"Generated content must contain {max_scenes} scenes",
                details={"scenes": len(content.scenes)},
            )
        if input_prompt:
            content.primary_word = input_prompt.strip()

    if len(content.scenes) > max_scenes:
        content.scenes = content.scenes[:max_scenes]
    if content.category_words and len(content.category_words) > max_scenes:
        content.category_words = content.category_words[:max_scenes]
    return content


def _usage_from_response(response: Any) -> TextUsage:
    meta = getattr(response, "usage_metadata", None)
    if meta is None:
        return TextUsage()
    return TextUsage(
        prompt_tokens=int(getattr(meta, "prompt_token_count", 0) or 0),
        completion_tokens=int(getattr(meta, "candidates_token_count", 0) or 0),
    )


class GeminiTextContentGenerator(TextContentGenerator):
    """Text content generator backed by Gemini."""

    def __init__(self, client: Optional[GeminiClientWithRetry] = None):
        self._client = client

    @property
    def client(self) -> GeminiClientWithRetry:
        if self._client is None:
            self._client = get_gemini_model()
        return self._client

    async def generate(
        self,
        input_prompt: str,
        card_type: CardType,
        params: GenerationParams,
    ) -> TextGenerationResult:
        if card_type == CardType.category:
            scene_count = settings.MAX_SCENES_PER_CARD
        else:
            scene_count = settings.SCENES_PER_CARD
        prompt_text = build_card_prompt(input_prompt, card_type, params, scene_count)

        response = await self.client.generate_content_async(prompt_text)
        content = parse_card_content(
            response.text, card_type, max_scenes=scene_count, input_prompt=input_prompt
        )
        usage = _usage_from_response(response)

        logger.info(
            f"Generated {card_type.value} card text for '{input_prompt}' "
            f"with {len(content.scenes)} scenes ({usage.total_tokens} tokens)"
        )
        return TextGenerationResult(content=content, usage=usage)

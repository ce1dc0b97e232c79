"""
Provider interfaces used by the generation pipeline.

Each pipeline step talks to exactly one of these, so tests and alternative
vendors only need to implement the matching class.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List

from app.schemas.flash_cards import GenerationParams
from app.schemas.generated_content import TextGenerationResult
from app.utils.enums import CardType


@dataclass(frozen=True)
class ModerationResult:
    flagged: bool
    categories: List[str] = field(default_factory=list)


class TextContentGenerator(ABC):
    """Produces title, primary word and scene descriptions for a card."""

    @abstractmethod
    async def generate(
        self,
        input_prompt: str,
        card_type: CardType,
        params: GenerationParams,
    ) -> TextGenerationResult:
        """
        Raises:
            TextGenerationError: on provider failure or output that fails validation
        """


class ContentModerator(ABC):
    """Classifies generated text as allowed or flagged."""

    @abstractmethod
    async def check(self, text: str) -> ModerationResult:
        """
        Raises:
            ModerationUnavailableError: when the moderation call itself fails
        """


class SceneImageGenerator(ABC):
    """Generates one illustration per scene."""

    @abstractmethod
    async def generate(self, image_prompt: str, params: GenerationParams) -> str:
        """
        Returns:
            URL of the generated image

        Raises:
            ImageGenerationError: when no image could be produced
        """

"""Schema the text model must satisfy. Anything else fails the session."""

from typing import Annotated, List, Optional
from pydantic import BaseModel, ConfigDict, Field, StringConstraints, model_validator

from app.utils.enums import CardType


NonEmptyStr = Annotated[str, StringConstraints(min_length=1, strip_whitespace=True)]


class GeneratedScene(BaseModel):
    model_config = ConfigDict(extra="ignore")

    description: Annotated[str, StringConstraints(min_length=1, max_length=300, strip_whitespace=True)]
    image_prompt: Annotated[str, StringConstraints(min_length=1, max_length=1000, strip_whitespace=True)]


class GeneratedCardContent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    card_type: CardType
    title: Annotated[str, StringConstraints(min_length=1, max_length=120, strip_whitespace=True)]
    primary_word: Annotated[str, StringConstraints(min_length=1, max_length=60, strip_whitespace=True)]
    category_words: Optional[List[NonEmptyStr]] = None
    scenes: List[GeneratedScene] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _category_needs_words(self) -> "GeneratedCardContent":
        if self.card_type == CardType.category and not self.category_words:
            raise ValueError("category cards require category_words")
        if self.card_type == CardType.single_word:
            self.category_words = None
        return self


class TextUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class TextGenerationResult(BaseModel):
    content: GeneratedCardContent
    usage: TextUsage

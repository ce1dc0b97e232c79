from datetime import datetime
from typing import Annotated, Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict, StringConstraints
from uuid import UUID
from app.utils.enums import (
    AgeGroup,
    CardType,
    DifficultyLevel,
    FlashCardStatus,
    SessionStatus,
    StylePreference,
)


PromptStr = Annotated[str, StringConstraints(min_length=1, max_length=200, strip_whitespace=True)]
LanguageStr = Annotated[str, StringConstraints(min_length=2, max_length=16, strip_whitespace=True)]


class GenerationParams(BaseModel):
    difficulty_level: DifficultyLevel = DifficultyLevel.beginner
    age_group: AgeGroup = AgeGroup.elementary
    style_preference: StylePreference = StylePreference.cartoon
    language: LanguageStr = "en"


class FlashCardGenerateRequest(BaseModel):
    input_prompt: PromptStr = Field(..., description="Word or topic to illustrate")
    card_type: CardType = CardType.single_word
    generation_params: GenerationParams = Field(default_factory=GenerationParams)


class Scene(BaseModel):
    id: str
    order: int = Field(..., ge=1, description="1-based rendering position")
    description: str
    image_prompt: str
    # Empty until an image was generated for this scene
    image_url: str = ""


class ScenePosition(BaseModel):
    row: int
    col: int


class CardLayout(BaseModel):
    grid_columns: int
    grid_rows: int
    scene_positions: Dict[str, ScenePosition]


class CardContent(BaseModel):
    primary_word: str
    scenes: List[Scene]
    category_words: Optional[List[str]] = None
    layout: CardLayout


class FlashCardOut(BaseModel):
    id: UUID
    user_id: UUID
    session_id: Optional[UUID] = None
    title: str
    card_type: CardType
    content: CardContent
    generation_params: GenerationParams
    status: FlashCardStatus
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class FlashCardListItem(BaseModel):
    id: UUID
    title: str
    card_type: CardType
    status: FlashCardStatus
    primary_word: str
    created_at: datetime


class AICosts(BaseModel):
    text_tokens: int = 0
    image_generations: int = 0
    total_cost_usd: float = 0.0


class GenerationSessionOut(BaseModel):
    id: UUID
    user_id: UUID
    input_prompt: str
    card_type: CardType
    generation_params: GenerationParams
    status: SessionStatus
    error_message: Optional[str] = None
    retry_count: int = 0
    ai_costs: Optional[AICosts] = None
    produced_card_ids: List[UUID] = Field(default_factory=list)
    created_at: datetime
    completed_at: Optional[datetime] = None
    # Populated once the session has completed
    cards: List[FlashCardOut] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class GenerationStartedResponse(BaseModel):
    session_id: UUID = Field(..., serialization_alias="sessionId")
    status: SessionStatus


class UsageSummary(BaseModel):
    tier: str
    limit: int
    used_today: int
    remaining: int
    resets_at: datetime

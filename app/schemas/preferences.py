from typing import Optional
from pydantic import BaseModel, ConfigDict, StrictBool

from app.utils.enums import CardType, Theme


class UserPreferences(BaseModel):
    skip_preview: bool = False
    default_card_type: CardType = CardType.single_word
    theme: Theme = Theme.light


class UserPreferencesUpdate(BaseModel):
    """Partial update; omitted fields keep their stored value."""
    model_config = ConfigDict(extra="forbid")

    skip_preview: Optional[StrictBool] = None
    default_card_type: Optional[CardType] = None
    theme: Optional[Theme] = None

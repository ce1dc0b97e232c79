import logging

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import User
from app.schemas.preferences import UserPreferences, UserPreferencesUpdate

logger = logging.getLogger(__name__)


def load_preferences(user: User) -> UserPreferences:
    """Stored preferences merged over the defaults. Unreadable values fall back to defaults."""
    stored = user.preferences or {}
    try:
        return UserPreferences.model_validate(stored)
    except ValidationError:
        logger.warning(f"Ignoring invalid stored preferences for user {user.id}")
        return UserPreferences()


async def update_preferences(
    db: AsyncSession, user: User, update: UserPreferencesUpdate
) -> UserPreferences:
    merged = load_preferences(user).model_copy(update=update.model_dump(exclude_none=True))
    user.preferences = merged.model_dump(mode="json")
    db.add(user)
    await db.commit()
    return merged

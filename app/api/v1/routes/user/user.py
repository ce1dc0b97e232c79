from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_user
from app.core.response import success_response, ResponseModel
from app.db.deps import get_db
from app.models.user import User
from app.schemas.preferences import UserPreferencesUpdate
from app.services.preferences_service import load_preferences, update_preferences

router = APIRouter(prefix="/user", tags=["user"])


@router.get("/preferences", response_model=ResponseModel)
async def get_preferences(current_user: User = Depends(get_current_user)):
    """Method/Path: GET /api/v1/user/preferences"""
    prefs = load_preferences(current_user)
    return success_response("Preferences fetched", data=prefs.model_dump(mode="json"))


@router.put("/preferences", response_model=ResponseModel)
async def put_preferences(
    body: UserPreferencesUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Partially update preferences and return the merged result.

    Method/Path: PUT /api/v1/user/preferences
    Body: any of { skip_preview, default_card_type, theme }
    """
    prefs = await update_preferences(db, current_user, body)
    return success_response("Preferences updated", data=prefs.model_dump(mode="json"))

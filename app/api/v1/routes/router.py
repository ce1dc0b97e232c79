# Main Router - app/api/v1/router.py
from fastapi import APIRouter
from app.api.v1.routes.flash_cards.flash_cards import router as flash_cards_router
from app.api.v1.routes.user.user import router as user_router

router = APIRouter()

# Every route authenticates through get_current_user
router.include_router(flash_cards_router)
router.include_router(user_router)

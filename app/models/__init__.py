# app/models/__init__.py

from .user import User
from .generation_session import GenerationSession
from .flash_card import FlashCard
from .usage_tracking import DailyUsage

__all__ = [
    "User",
    "GenerationSession",
    "FlashCard",
    "DailyUsage",
]

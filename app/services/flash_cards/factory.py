from typing import Optional

from sqlalchemy.orm import sessionmaker

from app.core.config import settings
from app.repositories.generation import GenerationStore
from app.services.flash_cards.costs import CostAccountant
from app.services.flash_cards.generator import GeminiTextContentGenerator
from app.services.flash_cards.images import OpenAISceneImageGenerator
from app.services.flash_cards.moderation import OpenAIContentModerator
from app.services.flash_cards.openai_http import OpenAIHttpClient
from app.services.flash_cards.orchestrator import GenerationOrchestrator, Scheduler
from app.services.track_usage_service.handle_usage_cycle import QuotaGate


def build_orchestrator(
    session_factory: sessionmaker,
    scheduler: Optional[Scheduler] = None,
    http: Optional[OpenAIHttpClient] = None,
) -> GenerationOrchestrator:
    """Wire the production providers around a store bound to ``session_factory``."""
    store = GenerationStore(session_factory)
    http = http or OpenAIHttpClient()
    return GenerationOrchestrator(
        store=store,
        quota_gate=QuotaGate(store),
        text_generator=GeminiTextContentGenerator(),
        moderator=OpenAIContentModerator(http),
        image_generator=OpenAISceneImageGenerator(http),
        cost_accountant=CostAccountant(),
        scheduler=scheduler,
        max_retries=settings.MAX_SESSION_RETRIES,
    )

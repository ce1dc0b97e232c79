from fastapi import Request

from app.services.flash_cards.orchestrator import GenerationOrchestrator


def get_orchestrator(request: Request) -> GenerationOrchestrator:
    """The orchestrator wired up by the application lifespan."""
    return request.app.state.orchestrator

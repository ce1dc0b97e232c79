import logging
import uuid
from typing import List

from fastapi import APIRouter, Depends, Query

from app.api.dependencies.auth import get_current_user
from app.api.dependencies.generation import get_orchestrator
from app.core.response import success_response, ResponseModel
from app.models.flash_card import FlashCard
from app.models.generation_session import GenerationSession
from app.models.user import User
from app.schemas.flash_cards import (
    FlashCardGenerateRequest,
    FlashCardListItem,
    FlashCardOut,
    GenerationSessionOut,
    GenerationStartedResponse,
)
from app.services.flash_cards.orchestrator import GenerationOrchestrator


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/flash-cards", tags=["flash-cards"])


def _card_out(card: FlashCard) -> dict:
    return FlashCardOut.model_validate(card).model_dump(mode="json")


def _session_out(session: GenerationSession, cards: List[FlashCard]) -> dict:
    out = GenerationSessionOut(
        id=session.id,
        user_id=session.user_id,
        input_prompt=session.input_prompt,
        card_type=session.card_type,
        generation_params=session.generation_params,
        status=session.status,
        error_message=session.error_message,
        retry_count=session.retry_count or 0,
        ai_costs=session.ai_costs,
        produced_card_ids=session.produced_card_ids or [],
        created_at=session.created_at,
        completed_at=session.completed_at,
        cards=[FlashCardOut.model_validate(c) for c in cards],
    )
    return out.model_dump(mode="json")


def _started(session: GenerationSession) -> dict:
    return GenerationStartedResponse(session_id=session.id, status=session.status).model_dump(
        mode="json", by_alias=True
    )


@router.post("/generate", response_model=ResponseModel, status_code=202)
async def generate_card(
    body: FlashCardGenerateRequest,
    current_user: User = Depends(get_current_user),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Start asynchronous generation of a flash card.

    Method/Path: POST /api/v1/flash-cards/generate
    Body: FlashCardGenerateRequest { input_prompt, card_type, generation_params }
    Flow:
        - Rejects invalid prompts (400) and users over their daily quota (429).
        - Persists a pending session and queues it for the generation workers.
        - Returns immediately with { sessionId, status: "pending" }.
    """
    session = await orchestrator.start_session(
        current_user.id, body.input_prompt, body.card_type, body.generation_params
    )
    return success_response("Generation started", data=_started(session), status_code=202)


@router.get("/sessions/{session_id}", response_model=ResponseModel)
async def get_session(
    session_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Poll a generation session.

    Method/Path: GET /api/v1/flash-cards/sessions/{session_id}
    Returns: the session; once completed, its produced cards under `cards`.
    Sessions owned by other users are reported as 404.
    """
    session, cards = await orchestrator.get_session(session_id, current_user.id)
    return success_response("Session fetched", data=_session_out(session, cards))


@router.get("/usage", response_model=ResponseModel)
async def get_usage(
    current_user: User = Depends(get_current_user),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Method/Path: GET /api/v1/flash-cards/usage"""
    summary = await orchestrator.quota_gate.usage_summary(current_user.id)
    return success_response("Usage fetched", data=summary.model_dump(mode="json"))


@router.get("/", response_model=ResponseModel)
async def list_cards(
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """List your cards, newest first."""
    rows = await orchestrator.list_cards(current_user.id, limit=limit)
    data = [
        FlashCardListItem(
            id=row.id,
            title=row.title,
            card_type=row.card_type,
            status=row.status,
            primary_word=(row.content or {}).get("primary_word", ""),
            created_at=row.created_at,
        ).model_dump(mode="json")
        for row in rows
    ]
    return success_response("Cards fetched", data=data)


@router.get("/{card_id}", response_model=ResponseModel)
async def get_card(
    card_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Method/Path: GET /api/v1/flash-cards/{card_id}"""
    card = await orchestrator.get_card(card_id, current_user.id)
    return success_response("Card fetched", data=_card_out(card))


@router.post("/{card_id}/approve", response_model=ResponseModel)
async def approve_card(
    card_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Approve a previewed card. Approving an approved or downloaded card is a no-op."""
    card = await orchestrator.approve(card_id, current_user.id)
    return success_response("Card approved", data=_card_out(card))


@router.post("/{card_id}/regenerate", response_model=ResponseModel, status_code=202)
async def regenerate_card(
    card_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Start a new session from the card's original prompt and parameters.

    Method/Path: POST /api/v1/flash-cards/{card_id}/regenerate
    Notes:
      - The original card is left untouched.
      - Counts against the daily quota like any other generation.
    """
    session = await orchestrator.regenerate(card_id, current_user.id)
    return success_response("Regeneration started", data=_started(session), status_code=202)


@router.post("/{card_id}/downloaded", response_model=ResponseModel)
async def mark_downloaded(
    card_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Record that an approved card was downloaded."""
    card = await orchestrator.mark_downloaded(card_id, current_user.id)
    return success_response("Card marked as downloaded", data=_card_out(card))

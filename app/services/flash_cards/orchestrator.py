"""
Generation session state machine and its asynchronous pipeline.

Sessions move pending -> processing -> completed | failed and never leave a
terminal state. ``start_session`` only persists a pending session and hands
its id to the scheduler; ``run_pipeline`` is what a background worker runs
for that id.
"""

import asyncio
import logging
import uuid
from typing import Callable, List, Optional, Tuple

from app.core.config import settings
from app.core.exceptions import (
    ContentPolicyViolation,
    NotFoundException,
    QuotaExceededException,
    TextGenerationError,
    ValidationException,
)
from app.models.flash_card import FlashCard
from app.models.generation_session import GenerationSession
from app.repositories.generation import GenerationStore
from app.schemas.flash_cards import CardContent, GenerationParams, Scene
from app.schemas.generated_content import TextGenerationResult
from app.services.flash_cards.base import (
    ContentModerator,
    SceneImageGenerator,
    TextContentGenerator,
)
from app.services.flash_cards.costs import CostAccountant
from app.services.flash_cards.layout import compute_layout
from app.services.track_usage_service.handle_usage_cycle import QuotaDecision, QuotaGate
from app.utils.enums import CardType, FlashCardStatus, SessionStatus

logger = logging.getLogger(__name__)

MAX_PROMPT_LENGTH = 200
FINAL_FAILURE_MESSAGE = "Card generation failed. Please try again later."

Scheduler = Callable[[uuid.UUID], None]


class GenerationOrchestrator:
    def __init__(
        self,
        *,
        store: GenerationStore,
        quota_gate: QuotaGate,
        text_generator: TextContentGenerator,
        moderator: ContentModerator,
        image_generator: SceneImageGenerator,
        cost_accountant: Optional[CostAccountant] = None,
        scheduler: Optional[Scheduler] = None,
        max_retries: int = settings.MAX_SESSION_RETRIES,
        retry_delay_seconds: float = 2.0,
    ):
        self.store = store
        self.quota_gate = quota_gate
        self.text_generator = text_generator
        self.moderator = moderator
        self.image_generator = image_generator
        self.cost_accountant = cost_accountant or CostAccountant()
        self.scheduler = scheduler
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds

    # Entry points

    async def start_session(
        self,
        user_id: uuid.UUID,
        input_prompt: str,
        card_type: CardType,
        params: GenerationParams,
    ) -> GenerationSession:
        """Admit, persist and schedule a new session. Not idempotent."""
        prompt = (input_prompt or "").strip()
        if not 1 <= len(prompt) <= MAX_PROMPT_LENGTH:
            raise ValidationException(
                f"Prompt must be between 1 and {MAX_PROMPT_LENGTH} characters",
                details={"field": "input_prompt"},
            )

        async with self.quota_gate.admission_lock(user_id):
            decision = await self.quota_gate.check_quota(user_id)
            if not decision.allowed:
                self._raise_quota_exceeded(user_id, decision)

            # Recounted under a row lock so other instances cannot slip past the limit
            session = await self.store.create_session(
                user_id=user_id,
                input_prompt=prompt,
                card_type=card_type,
                generation_params=params.model_dump(mode="json"),
                limit=decision.limit,
                window=decision.window,
            )
            if session is None:
                self._raise_quota_exceeded(user_id, await self.quota_gate.check_quota(user_id))
        logger.info(f"Created generation session {session.id} for user {user_id}")

        if self.scheduler is not None:
            self.scheduler(session.id)
        return session

    async def get_session(
        self, session_id: uuid.UUID, user_id: uuid.UUID
    ) -> Tuple[GenerationSession, List[FlashCard]]:
        """Return an owned session and, once completed, the cards it produced."""
        session = await self.store.get_session(session_id, user_id=user_id)
        if session is None:
            raise NotFoundException("Generation session not found")

        cards: List[FlashCard] = []
        if session.status == SessionStatus.completed and session.produced_card_ids:
            card_ids = [uuid.UUID(str(i)) for i in session.produced_card_ids]
            cards = await self.store.get_cards_by_ids(card_ids, user_id)
        return session, cards

    async def get_card(self, card_id: uuid.UUID, user_id: uuid.UUID) -> FlashCard:
        return await self._owned_card(card_id, user_id)

    async def list_cards(self, user_id: uuid.UUID, limit: int = 50) -> List[FlashCard]:
        return await self.store.list_cards(user_id, limit=limit)

    async def approve(self, card_id: uuid.UUID, user_id: uuid.UUID) -> FlashCard:
        """Preview -> approved. Repeating the call on an approved or downloaded card is a no-op."""
        card = await self._owned_card(card_id, user_id)
        if card.status in (FlashCardStatus.approved, FlashCardStatus.downloaded):
            return card
        if card.status != FlashCardStatus.preview:
            raise ValidationException("Card is still generating and cannot be approved yet")

        await self.store.update_card_status(
            card_id, user_id, [FlashCardStatus.preview], FlashCardStatus.approved
        )
        # A concurrent duplicate may have won the update; either way the card is now past preview
        card = await self._owned_card(card_id, user_id)
        logger.info(f"Card {card_id} approved by user {user_id}")
        return card

    async def mark_downloaded(self, card_id: uuid.UUID, user_id: uuid.UUID) -> FlashCard:
        """Approved -> downloaded. No-op when already downloaded."""
        card = await self._owned_card(card_id, user_id)
        if card.status == FlashCardStatus.downloaded:
            return card
        if card.status != FlashCardStatus.approved:
            raise ValidationException("Card must be approved before it can be downloaded")

        await self.store.update_card_status(
            card_id, user_id, [FlashCardStatus.approved], FlashCardStatus.downloaded
        )
        return await self._owned_card(card_id, user_id)

    async def regenerate(self, card_id: uuid.UUID, user_id: uuid.UUID) -> GenerationSession:
        """Start a fresh session with the original prompt and parameters.

        The original card is not modified. Regeneration goes through the
        quota gate like any other generation.
        """
        card = await self._owned_card(card_id, user_id)

        origin = None
        if card.session_id is not None:
            origin = await self.store.get_session(card.session_id, user_id=user_id)
        if origin is not None:
            input_prompt = origin.input_prompt
        else:
            # Origin session purged by retention; the taught word is the best stand-in
            input_prompt = (card.content or {}).get("primary_word") or card.title

        params = GenerationParams.model_validate(card.generation_params or {})
        return await self.start_session(user_id, input_prompt, CardType(card.card_type), params)

    # Pipeline

    async def run_pipeline(self, session_id: uuid.UUID) -> None:
        """Run the generation pipeline for one session until it is terminal.

        Text-generation failures and moderation flags fail the session at once.
        Any other error increments ``retry_count`` and re-runs from the text
        step while the session stays processing; reaching ``max_retries``
        fails it for good.
        """
        attempt = 0
        while True:
            try:
                await self._run_attempt(session_id, first_attempt=attempt == 0)
                return
            except TextGenerationError as e:
                logger.error(f"Session {session_id}: text generation failed: {e.message}")
                await self._fail(session_id, e.message)
                return
            except ContentPolicyViolation as e:
                logger.warning(f"Session {session_id}: {e.message}")
                await self._fail(session_id, e.message)
                return
            except Exception as e:
                logger.exception(f"Session {session_id}: unexpected pipeline error, will retry: {e}")
                retry_count = await self.store.record_retry(session_id)
                if retry_count is None:
                    logger.warning(f"Session {session_id} is no longer active; dropping retry")
                    return
                if retry_count >= self.max_retries:
                    logger.error(f"Session {session_id}: giving up after {retry_count} attempts")
                    await self._fail(session_id, FINAL_FAILURE_MESSAGE)
                    return
                attempt += 1
                logger.info(f"Session {session_id}: retry {retry_count}/{self.max_retries}")
                if self.retry_delay_seconds:
                    await asyncio.sleep(self.retry_delay_seconds * retry_count)

    async def _run_attempt(self, session_id: uuid.UUID, first_attempt: bool) -> None:
        from_statuses = (
            [SessionStatus.pending]
            if first_attempt
            else [SessionStatus.pending, SessionStatus.processing]
        )
        if not await self.store.transition(session_id, from_statuses, SessionStatus.processing):
            logger.warning(f"Session {session_id} is not runnable; skipping")
            return

        session = await self.store.get_session(session_id)
        if session is None:
            return
        params = GenerationParams.model_validate(session.generation_params)
        card_type = CardType(session.card_type)
        logger.info(f"Session {session_id}: processing '{session.input_prompt}' ({card_type.value})")

        text = await self._generate_text(session.input_prompt, card_type, params)

        descriptions = "\n".join(scene.description for scene in text.content.scenes)
        moderation = await self.moderator.check(descriptions)
        if moderation.flagged:
            raise ContentPolicyViolation(moderation.categories)

        scenes = await self._generate_scenes(session_id, text, params)
        images_generated = sum(1 for scene in scenes if scene.image_url)

        costs = self.cost_accountant.estimate(text.usage.total_tokens, images_generated)

        content = CardContent(
            primary_word=text.content.primary_word,
            scenes=scenes,
            category_words=text.content.category_words,
            layout=compute_layout(scenes),
        )
        card = await self.store.complete_session(
            session_id,
            title=text.content.title,
            content=content.model_dump(mode="json"),
            ai_costs=costs.model_dump(mode="json"),
        )
        if card is None:
            logger.warning(f"Session {session_id} left processing before completion; card discarded")
            return

        logger.info(
            f"Session {session_id} completed: card {card.id}, "
            f"{images_generated}/{len(scenes)} images, ${costs.total_cost_usd}"
        )
        await self.quota_gate.record_generation(session.user_id)

    async def _generate_text(
        self, input_prompt: str, card_type: CardType, params: GenerationParams
    ) -> TextGenerationResult:
        try:
            return await self.text_generator.generate(input_prompt, card_type, params)
        except TextGenerationError:
            raise
        except Exception as e:
            raise TextGenerationError("Text generation failed") from e

    async def _generate_scenes(
        self,
        session_id: uuid.UUID,
        text: TextGenerationResult,
        params: GenerationParams,
    ) -> List[Scene]:
        """Generate images one scene at a time; a failed scene keeps an empty image_url."""
        scenes: List[Scene] = []
        for order, generated in enumerate(text.content.scenes, start=1):
            image_url = ""
            try:
                image_url = await self.image_generator.generate(generated.image_prompt, params)
            except Exception as e:
                logger.warning(f"Session {session_id}: image for scene {order} failed: {e}")
            scenes.append(
                Scene(
                    id=str(order),
                    order=order,
                    description=generated.description,
                    image_prompt=generated.image_prompt,
                    image_url=image_url or "",
                )
            )
            await self.store.heartbeat(session_id)
        return scenes

    @staticmethod
    def _raise_quota_exceeded(user_id: uuid.UUID, decision: QuotaDecision) -> None:
        logger.info(f"Quota exceeded for user {user_id}")
        raise QuotaExceededException(
            decision.reason or "Daily generation limit reached", decision.details
        )

    async def _fail(self, session_id: uuid.UUID, message: str) -> None:
        moved = await self.store.transition(
            session_id,
            [SessionStatus.pending, SessionStatus.processing],
            SessionStatus.failed,
            error_message=message,
        )
        if not moved:
            logger.warning(f"Session {session_id} was already terminal; failure not recorded")

    async def _owned_card(self, card_id: uuid.UUID, user_id: uuid.UUID) -> FlashCard:
        card = await self.store.get_card(card_id, user_id)
        if card is None:
            raise NotFoundException("Flash card not found")
        return card

import logging
import uuid
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from app.models.flash_card import FlashCard
from app.models.generation_session import GenerationSession
from app.models.usage_tracking import DailyUsage
from app.models.user import User
from app.utils.datetime_utils import get_current_utc_datetime
from app.utils.enums import CardType, FlashCardStatus, SessionStatus

logger = logging.getLogger(__name__)


class GenerationStore:
    """Data access layer for generation sessions, flash cards and daily usage.

    Each method runs in its own short-lived AsyncSession so the store can be
    shared between request handlers and background workers. Status changes
    are conditional updates: they only apply when the row is still in one of
    the expected source states.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    # Users

    async def get_user(self, user_id: uuid.UUID) -> Optional[User]:
        async with self.session_factory() as db:
            return await db.get(User, user_id)

    # Sessions

    async def create_session(
        self,
        *,
        user_id: uuid.UUID,
        input_prompt: str,
        card_type: CardType,
        generation_params: Dict[str, Any],
        limit: Optional[int] = None,
        window: Optional[Tuple[datetime, datetime]] = None,
    ) -> Optional[GenerationSession]:
        """Insert a pending session.

        With ``limit`` and ``window`` the insert is admission-controlled: the
        user's row is locked, the sessions started in ``[start, end)`` are
        recounted in the same transaction, and nothing is written (None is
        returned) once ``limit`` is reached.
        """
        async with self.session_factory() as db:
            if limit is not None and window is not None:
                await db.execute(select(User.id).where(User.id == user_id).with_for_update())
                used = await self._count_sessions(db, user_id, *window)
                if used >= limit:
                    await db.rollback()
                    return None

            row = GenerationSession(
                user_id=user_id,
                input_prompt=input_prompt,
                card_type=card_type,
                generation_params=generation_params,
                status=SessionStatus.pending,
                retry_count=0,
                produced_card_ids=[],
            )
            db.add(row)
            await db.commit()
            await db.refresh(row)
            return row

    async def get_session(
        self, session_id: uuid.UUID, user_id: Optional[uuid.UUID] = None
    ) -> Optional[GenerationSession]:
        """Load a session; when ``user_id`` is given, other users' sessions are invisible."""
        async with self.session_factory() as db:
            row = await db.get(GenerationSession, session_id, populate_existing=True)
            if row is None:
                return None
            if user_id is not None and row.user_id != user_id:
                return None
            return row

    async def transition(
        self,
        session_id: uuid.UUID,
        from_statuses: Iterable[SessionStatus],
        to_status: SessionStatus,
        **values: Any,
    ) -> bool:
        """Move a session to ``to_status`` if it is currently in ``from_statuses``.

        Terminal targets also stamp ``completed_at``. Returns False when the row
        is missing or was in another state.
        """
        now = get_current_utc_datetime()
        values["status"] = to_status
        values["updated_at"] = now
        if to_status.is_terminal:
            values["completed_at"] = now

        async with self.session_factory() as db:
            res = await db.execute(
                update(GenerationSession)
                .where(
                    GenerationSession.id == session_id,
                    GenerationSession.status.in_(list(from_statuses)),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return (res.rowcount or 0) > 0

    async def heartbeat(self, session_id: uuid.UUID) -> None:
        """Refresh ``updated_at`` of a processing session so the reaper leaves it alone."""
        async with self.session_factory() as db:
            await db.execute(
                update(GenerationSession)
                .where(
                    GenerationSession.id == session_id,
                    GenerationSession.status == SessionStatus.processing,
                )
                .values(updated_at=get_current_utc_datetime())
                .execution_options(synchronize_session=False)
            )
            await db.commit()

    async def record_retry(self, session_id: uuid.UUID) -> Optional[int]:
        """Increment ``retry_count`` of a non-terminal session.

        ``error_message`` is left alone: it is only written when the session fails.
        Returns the new count, or None if the session is missing or terminal.
        """
        async with self.session_factory() as db:
            res = await db.execute(
                update(GenerationSession)
                .where(
                    GenerationSession.id == session_id,
                    GenerationSession.status.in_([SessionStatus.pending, SessionStatus.processing]),
                )
                .values(
                    retry_count=GenerationSession.retry_count + 1,
                    updated_at=get_current_utc_datetime(),
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            if not res.rowcount:
                return None
            count = await db.scalar(
                select(GenerationSession.retry_count).where(GenerationSession.id == session_id)
            )
            return int(count)

    async def complete_session(
        self,
        session_id: uuid.UUID,
        *,
        title: str,
        content: Dict[str, Any],
        ai_costs: Dict[str, Any],
    ) -> Optional[FlashCard]:
        """Persist the produced card and mark the session completed in one transaction.

        Returns None (and writes nothing) if the session is no longer processing.
        """
        async with self.session_factory() as db:
            async with db.begin():
                row = await db.get(
                    GenerationSession, session_id, with_for_update=True, populate_existing=True
                )
                if row is None or row.status != SessionStatus.processing:
                    return None

                now = get_current_utc_datetime()
                card = FlashCard(
                    user_id=row.user_id,
                    session_id=row.id,
                    title=title,
                    card_type=row.card_type,
                    content=content,
                    generation_params=dict(row.generation_params),
                    status=FlashCardStatus.preview,
                    created_at=now,
                    updated_at=now,
                )
                db.add(card)
                await db.flush()

                row.status = SessionStatus.completed
                row.completed_at = now
                row.updated_at = now
                row.ai_costs = ai_costs
                row.error_message = None
                row.produced_card_ids = [*(row.produced_card_ids or []), str(card.id)]
            return card

    async def count_sessions_between(
        self, user_id: uuid.UUID, start: datetime, end: datetime
    ) -> int:
        async with self.session_factory() as db:
            return await self._count_sessions(db, user_id, start, end)

    @staticmethod
    async def _count_sessions(
        db: AsyncSession, user_id: uuid.UUID, start: datetime, end: datetime
    ) -> int:
        count = await db.scalar(
            select(func.count(GenerationSession.id)).where(
                GenerationSession.user_id == user_id,
                GenerationSession.created_at >= start,
                GenerationSession.created_at < end,
            )
        )
        return int(count or 0)

    async def fail_stale_sessions(self, older_than: datetime, message: str) -> int:
        """Fail pending/processing sessions not updated since ``older_than``."""
        now = get_current_utc_datetime()
        async with self.session_factory() as db:
            res = await db.execute(
                update(GenerationSession)
                .where(
                    GenerationSession.status.in_([SessionStatus.pending, SessionStatus.processing]),
                    GenerationSession.updated_at < older_than,
                )
                .values(
                    status=SessionStatus.failed,
                    error_message=message,
                    completed_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return res.rowcount or 0

    # Cards

    async def get_card(self, card_id: uuid.UUID, user_id: uuid.UUID) -> Optional[FlashCard]:
        async with self.session_factory() as db:
            row = await db.get(FlashCard, card_id, populate_existing=True)
            if row is None or row.user_id != user_id:
                return None
            return row

    async def get_cards_by_ids(
        self, card_ids: List[uuid.UUID], user_id: uuid.UUID
    ) -> List[FlashCard]:
        """Return the user's cards in the order of ``card_ids``."""
        if not card_ids:
            return []
        async with self.session_factory() as db:
            res = await db.execute(
                select(FlashCard).where(FlashCard.id.in_(card_ids), FlashCard.user_id == user_id)
            )
            by_id = {row.id: row for row in res.scalars().all()}
            return [by_id[i] for i in card_ids if i in by_id]

    async def list_cards(self, user_id: uuid.UUID, limit: int = 50) -> List[FlashCard]:
        async with self.session_factory() as db:
            res = await db.execute(
                select(FlashCard)
                .where(FlashCard.user_id == user_id)
                .order_by(FlashCard.created_at.desc())
                .limit(limit)
            )
            return list(res.scalars().all())

    async def update_card_status(
        self,
        card_id: uuid.UUID,
        user_id: uuid.UUID,
        from_statuses: Iterable[FlashCardStatus],
        to_status: FlashCardStatus,
    ) -> bool:
        async with self.session_factory() as db:
            res = await db.execute(
                update(FlashCard)
                .where(
                    FlashCard.id == card_id,
                    FlashCard.user_id == user_id,
                    FlashCard.status.in_(list(from_statuses)),
                )
                .values(status=to_status, updated_at=get_current_utc_datetime())
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return (res.rowcount or 0) > 0

    # Daily usage

    async def increment_daily_usage(self, user_id: uuid.UUID, usage_date: date) -> None:
        """Atomically add one generation to the user's counter for ``usage_date``."""
        async with self.session_factory() as db:
            dialect = db.get_bind().dialect.name
            if dialect in ("postgresql", "sqlite"):
                insert_fn = pg_insert if dialect == "postgresql" else sqlite_insert
                stmt = insert_fn(DailyUsage).values(
                    id=uuid.uuid4(),
                    user_id=user_id,
                    usage_date=usage_date,
                    generations_count=1,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[DailyUsage.user_id, DailyUsage.usage_date],
                    set_={"generations_count": DailyUsage.generations_count + 1},
                )
                await db.execute(stmt)
                await db.commit()
                return

            await self._increment_daily_usage_generic(db, user_id, usage_date)

    async def _increment_daily_usage_generic(
        self, db: AsyncSession, user_id: uuid.UUID, usage_date: date
    ) -> None:
        increment = (
            update(DailyUsage)
            .where(DailyUsage.user_id == user_id, DailyUsage.usage_date == usage_date)
            .values(generations_count=DailyUsage.generations_count + 1)
            .execution_options(synchronize_session=False)
        )
        res = await db.execute(increment)
        if res.rowcount:
            await db.commit()
            return
        db.add(DailyUsage(user_id=user_id, usage_date=usage_date, generations_count=1))
        try:
            await db.commit()
        except IntegrityError:
            # Another worker created the row first
            await db.rollback()
            await db.execute(increment)
            await db.commit()

    async def get_daily_usage(self, user_id: uuid.UUID, usage_date: date) -> int:
        async with self.session_factory() as db:
            count = await db.scalar(
                select(DailyUsage.generations_count).where(
                    DailyUsage.user_id == user_id,
                    DailyUsage.usage_date == usage_date,
                )
            )
            return int(count or 0)

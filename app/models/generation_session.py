import uuid
from sqlalchemy import Column, String, Integer, DateTime, JSON, Enum, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship
from app.db.deps import Base
from app.utils.datetime_utils import get_current_utc_datetime
from app.utils.enums import CardType, SessionStatus


class GenerationSession(Base):
    __tablename__ = "generation_sessions"
    __table_args__ = (
        # Quota gate counts a user's sessions per calendar day
        Index("ix_generation_sessions_user_created", "user_id", "created_at"),
    )

    id = Column(PG_UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(PG_UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)

    input_prompt = Column(String(200), nullable=False)
    card_type = Column(Enum(CardType, name="card_type"), nullable=False)
    # {difficulty_level, age_group, style_preference, language}
    generation_params = Column(JSON, nullable=False)

    status = Column(
        Enum(SessionStatus, name="session_status"),
        nullable=False,
        default=SessionStatus.pending,
    )
    error_message = Column(String, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)

    # {text_tokens, image_generations, total_cost_usd}; set on completion only
    ai_costs = Column(JSON, nullable=True)
    produced_card_ids = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), nullable=False, default=get_current_utc_datetime)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=get_current_utc_datetime,
        onupdate=get_current_utc_datetime,
    )
    # Set iff status is completed or failed
    completed_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="generation_sessions")
    flash_cards = relationship("FlashCard", back_populates="session", passive_deletes=True)

import uuid
from sqlalchemy import Column, String, DateTime, JSON, Enum, ForeignKey
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship
from app.db.deps import Base
from app.utils.datetime_utils import get_current_utc_datetime
from app.utils.enums import CardType, FlashCardStatus


class FlashCard(Base):
    __tablename__ = "flash_cards"

    id = Column(PG_UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(PG_UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    # Origin session; survives retention purges of the session row
    session_id = Column(
        PG_UUID(as_uuid=True),
        ForeignKey("generation_sessions.id", ondelete="SET NULL"),
        nullable=True,
    )

    title = Column(String, nullable=False)
    card_type = Column(Enum(CardType, name="card_type"), nullable=False)

    # {primary_word, scenes: [{id, order, description, image_prompt, image_url}],
    #  category_words?, layout: {grid_columns, grid_rows, scene_positions}}
    content = Column(JSON, nullable=False)
    # Snapshot used for regeneration with identical settings
    generation_params = Column(JSON, nullable=False)

    status = Column(
        Enum(FlashCardStatus, name="flash_card_status"),
        nullable=False,
        default=FlashCardStatus.generating,
    )

    created_at = Column(DateTime(timezone=True), nullable=False, default=get_current_utc_datetime)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=get_current_utc_datetime,
        onupdate=get_current_utc_datetime,
    )

    user = relationship("User", back_populates="flash_cards")
    session = relationship("GenerationSession", back_populates="flash_cards")

from __future__ import annotations

import uuid
from datetime import date

import pytest

from app.utils.datetime_utils import day_window, get_current_utc_datetime
from app.utils.enums import CardType, FlashCardStatus, SessionStatus

pytestmark = pytest.mark.anyio


async def _session(store, user):
    return await store.create_session(
        user_id=user.id,
        input_prompt="rainbow",
        card_type=CardType.single_word,
        generation_params={"difficulty_level": "beginner", "language": "en"},
    )


async def test_transition_only_from_expected_states(store, make_user):
    user = await make_user()
    session = await _session(store, user)

    assert await store.transition(session.id, [SessionStatus.pending], SessionStatus.processing)
    # already processing; a second claim loses
    assert not await store.transition(session.id, [SessionStatus.pending], SessionStatus.processing)

    row = await store.get_session(session.id)
    assert row.status == SessionStatus.processing
    assert row.completed_at is None


async def test_terminal_transition_stamps_completed_at(store, make_user):
    user = await make_user()
    session = await _session(store, user)

    assert await store.transition(
        session.id, [SessionStatus.pending], SessionStatus.failed, error_message="boom"
    )
    row = await store.get_session(session.id)
    assert row.status == SessionStatus.failed
    assert row.error_message == "boom"
    assert row.completed_at is not None

    # terminal sessions never move again
    assert not await store.transition(
        session.id, [SessionStatus.pending, SessionStatus.processing], SessionStatus.processing
    )


async def test_get_session_scoped_to_owner(store, make_user):
    owner = await make_user()
    other = await make_user()
    session = await _session(store, owner)

    assert await store.get_session(session.id, user_id=owner.id) is not None
    assert await store.get_session(session.id, user_id=other.id) is None
    assert await store.get_session(uuid.uuid4()) is None


async def test_record_retry_increments_and_ignores_terminal(store, make_user):
    user = await make_user()
    session = await _session(store, user)
    await store.transition(session.id, [SessionStatus.pending], SessionStatus.processing)

    assert await store.record_retry(session.id) == 1
    assert await store.record_retry(session.id) == 2

    await store.transition(session.id, [SessionStatus.processing], SessionStatus.failed)
    assert await store.record_retry(session.id) is None
    stored = await store.get_session(session.id)
    assert stored.retry_count == 2
    assert stored.error_message is None


async def test_complete_session_requires_processing(store, make_user):
    user = await make_user()
    session = await _session(store, user)

    card = await store.complete_session(
        session.id, title="Rainbow", content={"primary_word": "rainbow"}, ai_costs={}
    )

    assert card is None
    assert await store.list_cards(user.id) == []


async def test_complete_session_inserts_preview_card(store, make_user):
    user = await make_user()
    session = await _session(store, user)
    await store.transition(session.id, [SessionStatus.pending], SessionStatus.processing)

    card = await store.complete_session(
        session.id,
        title="Rainbow",
        content={"primary_word": "rainbow", "scenes": []},
        ai_costs={"text_tokens": 10, "image_generations": 0, "total_cost_usd": 0.0},
    )

    assert card.status == FlashCardStatus.preview
    assert card.generation_params == session.generation_params
    row = await store.get_session(session.id)
    assert row.status == SessionStatus.completed
    assert row.completed_at is not None
    assert row.produced_card_ids == [str(card.id)]
    assert row.ai_costs["text_tokens"] == 10


async def test_update_card_status_is_conditional(store, make_user):
    user = await make_user()
    other = await make_user()
    session = await _session(store, user)
    await store.transition(session.id, [SessionStatus.pending], SessionStatus.processing)
    card = await store.complete_session(
        session.id, title="Rainbow", content={"primary_word": "rainbow"}, ai_costs={}
    )

    assert not await store.update_card_status(
        card.id, other.id, [FlashCardStatus.preview], FlashCardStatus.approved
    )
    assert await store.update_card_status(
        card.id, user.id, [FlashCardStatus.preview], FlashCardStatus.approved
    )
    assert not await store.update_card_status(
        card.id, user.id, [FlashCardStatus.preview], FlashCardStatus.approved
    )
    assert (await store.get_card(card.id, user.id)).status == FlashCardStatus.approved
    assert await store.get_card(card.id, other.id) is None


async def test_increment_daily_usage_upserts(store, make_user):
    user = await make_user()
    day = date(2026, 5, 1)

    for _ in range(3):
        await store.increment_daily_usage(user.id, day)

    assert await store.get_daily_usage(user.id, day) == 3
    assert await store.get_daily_usage(user.id, date(2026, 5, 2)) == 0


async def test_create_session_with_limit_rechecks_count(store, make_user):
    user = await make_user()
    _, start, end = day_window(get_current_utc_datetime(), "UTC")

    def admit():
        return store.create_session(
            user_id=user.id,
            input_prompt="rainbow",
            card_type=CardType.single_word,
            generation_params={"language": "en"},
            limit=2,
            window=(start, end),
        )

    assert await admit() is not None
    assert await admit() is not None
    # limit reached: nothing is written
    assert await admit() is None
    assert await store.count_sessions_between(user.id, start, end) == 2

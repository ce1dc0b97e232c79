from __future__ import annotations

import asyncio
import uuid

import pytest

from app.core.exceptions import (
    ModerationUnavailableError,
    NotFoundException,
    QuotaExceededException,
    TextGenerationError,
    ValidationException,
)
from app.schemas.flash_cards import GenerationParams
from app.services.flash_cards.base import ContentModerator, ModerationResult
from app.services.track_usage_service.handle_usage_cycle import QuotaDecision
from app.utils.datetime_utils import day_window, get_current_utc_datetime
from app.utils.enums import (
    AgeGroup,
    CardType,
    DifficultyLevel,
    FlashCardStatus,
    SessionStatus,
    StylePreference,
    SubscriptionTier,
)

pytestmark = pytest.mark.anyio


def _params() -> GenerationParams:
    return GenerationParams(
        difficulty_level=DifficultyLevel.beginner,
        age_group=AgeGroup.elementary,
        style_preference=StylePreference.cartoon,
        language="en",
    )


async def _generate(orchestrator, user, prompt="elephant", card_type=CardType.single_word):
    session = await orchestrator.start_session(user.id, prompt, card_type, _params())
    await orchestrator.run_pipeline(session.id)
    return await orchestrator.get_session(session.id, user.id)


def _assert_completed_at_consistent(session):
    if session.status in (SessionStatus.completed, SessionStatus.failed):
        assert session.completed_at is not None
    else:
        assert session.completed_at is None


async def test_start_session_persists_pending_and_schedules(orchestrator, make_user, scheduled, store):
    user = await make_user()

    session = await orchestrator.start_session(user.id, "  elephant  ", CardType.single_word, _params())

    assert session.status == SessionStatus.pending
    assert session.input_prompt == "elephant"
    assert session.retry_count == 0
    assert session.completed_at is None
    assert scheduled == [session.id]

    stored = await store.get_session(session.id, user_id=user.id)
    assert stored.generation_params == _params().model_dump(mode="json")


async def test_single_word_card_completes_with_four_scenes(orchestrator, make_user):
    user = await make_user()

    session, cards = await _generate(orchestrator, user)

    assert session.status == SessionStatus.completed
    assert session.error_message is None
    _assert_completed_at_consistent(session)
    assert len(cards) == 1
    assert session.produced_card_ids == [str(cards[0].id)]

    card = cards[0]
    assert card.status == FlashCardStatus.preview
    assert card.session_id == session.id
    assert card.content["primary_word"] == "elephant"
    assert [s["order"] for s in card.content["scenes"]] == [1, 2, 3, 4]
    assert all(s["image_url"] for s in card.content["scenes"])
    assert card.content["layout"]["grid_columns"] == 2
    assert card.content["layout"]["grid_rows"] == 2


async def test_costs_recorded_on_completion(orchestrator, make_user):
    user = await make_user()

    session, _ = await _generate(orchestrator, user)

    # 1000 tokens at $0.001/1k plus 4 images at $0.04
    assert session.ai_costs == {
        "text_tokens": 1000,
        "image_generations": 4,
        "total_cost_usd": pytest.approx(0.161),
    }


async def test_unparseable_text_fails_without_card(orchestrator, make_user, text_generator):
    user = await make_user()
    text_generator.errors.append(TextGenerationError("Generated content was not valid JSON"))

    session, cards = await _generate(orchestrator, user)

    assert session.status == SessionStatus.failed
    assert session.error_message
    assert session.retry_count == 0
    assert cards == []
    assert session.produced_card_ids == []
    _assert_completed_at_consistent(session)


async def test_unexpected_text_generator_error_is_terminal(orchestrator, make_user, text_generator):
    user = await make_user()
    text_generator.errors.append(KeyError("choices"))

    session, _ = await _generate(orchestrator, user)

    assert session.status == SessionStatus.failed
    assert session.retry_count == 0
    assert len(text_generator.calls) == 1


async def test_moderation_flag_fails_without_retry(orchestrator, make_user, moderator, image_generator):
    user = await make_user()
    moderator.flag_categories = ["violence"]

    session, cards = await _generate(orchestrator, user)

    assert session.status == SessionStatus.failed
    assert "policy violation" in session.error_message
    assert "violence" in session.error_message
    assert session.retry_count == 0
    assert cards == []
    assert image_generator.prompts == []


async def test_moderation_checks_joined_scene_descriptions(orchestrator, make_user, moderator):
    user = await make_user()

    await _generate(orchestrator, user, prompt="apple")

    assert moderator.checked == ["\n".join(f"apple scene {i}" for i in range(1, 5))]


async def test_failed_scene_image_keeps_session_completed(orchestrator, make_user, image_generator):
    user = await make_user()
    image_generator.fail_on = {3}

    session, cards = await _generate(orchestrator, user)

    assert session.status == SessionStatus.completed
    scenes = cards[0].content["scenes"]
    assert len(scenes) == 4
    assert [bool(s["image_url"]) for s in scenes] == [True, True, False, True]
    assert session.ai_costs["image_generations"] == 3


async def test_all_scene_images_failing_still_completes(orchestrator, make_user, image_generator):
    user = await make_user()
    image_generator.fail_on = {1, 2, 3, 4}

    session, cards = await _generate(orchestrator, user)

    assert session.status == SessionStatus.completed
    assert all(s["image_url"] == "" for s in cards[0].content["scenes"])


async def test_moderation_outage_is_retried_then_succeeds(orchestrator, make_user, moderator, text_generator):
    user = await make_user()
    moderator.errors.append(ModerationUnavailableError("Content moderation is temporarily unavailable"))

    session, cards = await _generate(orchestrator, user)

    assert session.status == SessionStatus.completed
    assert session.retry_count == 1
    assert len(cards) == 1
    assert len(text_generator.calls) == 2


async def test_retries_capped_at_three(orchestrator, make_user, moderator, text_generator):
    user = await make_user()
    moderator.errors.extend(
        ModerationUnavailableError("Content moderation is temporarily unavailable") for _ in range(5)
    )

    session, cards = await _generate(orchestrator, user)

    assert session.status == SessionStatus.failed
    assert session.retry_count == 3
    assert session.error_message == "Card generation failed. Please try again later."
    assert cards == []
    assert len(text_generator.calls) == 3
    _assert_completed_at_consistent(session)


async def test_terminal_session_is_not_rerun(orchestrator, make_user, text_generator):
    user = await make_user()
    session, _ = await _generate(orchestrator, user)

    await orchestrator.run_pipeline(session.id)

    again, cards = await orchestrator.get_session(session.id, user.id)
    assert again.status == SessionStatus.completed
    assert len(cards) == 1
    assert len(text_generator.calls) == 1


async def test_category_card_uses_category_words(orchestrator, make_user, text_generator):
    user = await make_user()
    text_generator.scene_count = 6

    session, cards = await _generate(orchestrator, user, prompt="fruits", card_type=CardType.category)

    content = cards[0].content
    assert cards[0].card_type == CardType.category
    assert content["category_words"] == [f"fruits-{i}" for i in range(1, 7)]
    assert content["layout"]["grid_columns"] == 3
    assert content["layout"]["grid_rows"] == 2


async def test_usage_counter_incremented_on_completion(orchestrator, make_user, store):
    user = await make_user()
    await _generate(orchestrator, user)

    today, _, _ = day_window(get_current_utc_datetime(), "UTC")
    assert await store.get_daily_usage(user.id, today) == 1


async def test_failed_session_does_not_increment_usage_counter(orchestrator, make_user, store, moderator):
    user = await make_user()
    moderator.flag_categories = ["hate"]
    await _generate(orchestrator, user)

    today, _, _ = day_window(get_current_utc_datetime(), "UTC")
    assert await store.get_daily_usage(user.id, today) == 0


async def test_invalid_prompt_rejected_before_session(orchestrator, make_user, scheduled):
    user = await make_user()

    with pytest.raises(ValidationException):
        await orchestrator.start_session(user.id, "   ", CardType.single_word, _params())
    with pytest.raises(ValidationException):
        await orchestrator.start_session(user.id, "x" * 201, CardType.single_word, _params())

    summary = await orchestrator.quota_gate.usage_summary(user.id)
    assert summary.used_today == 0
    assert scheduled == []


async def test_quota_boundary_for_free_tier(orchestrator, make_user):
    user = await make_user(SubscriptionTier.free)

    for _ in range(4):
        await orchestrator.start_session(user.id, "cat", CardType.single_word, _params())
    # the fifth is still within the limit
    await orchestrator.start_session(user.id, "cat", CardType.single_word, _params())

    with pytest.raises(QuotaExceededException) as exc_info:
        await orchestrator.start_session(user.id, "cat", CardType.single_word, _params())
    assert exc_info.value.error_code == "QUOTA_EXCEEDED"
    assert exc_info.value.details["limit"] == {"metric": "daily_generations", "limit": 5, "used": 5}


async def test_get_session_of_other_user_is_not_found(orchestrator, make_user):
    owner = await make_user()
    intruder = await make_user()
    session, _ = await _generate(orchestrator, owner)

    with pytest.raises(NotFoundException):
        await orchestrator.get_session(session.id, intruder.id)
    with pytest.raises(NotFoundException):
        await orchestrator.get_session(uuid.uuid4(), owner.id)


async def test_approve_is_idempotent(orchestrator, make_user):
    user = await make_user()
    _, cards = await _generate(orchestrator, user)

    first = await orchestrator.approve(cards[0].id, user.id)
    second = await orchestrator.approve(cards[0].id, user.id)

    assert first.status == FlashCardStatus.approved
    assert second.status == FlashCardStatus.approved
    assert second.id == first.id


async def test_approve_after_download_is_noop(orchestrator, make_user):
    user = await make_user()
    _, cards = await _generate(orchestrator, user)
    await orchestrator.approve(cards[0].id, user.id)
    await orchestrator.mark_downloaded(cards[0].id, user.id)

    card = await orchestrator.approve(cards[0].id, user.id)

    assert card.status == FlashCardStatus.downloaded


async def test_mark_downloaded_requires_approval(orchestrator, make_user):
    user = await make_user()
    _, cards = await _generate(orchestrator, user)

    with pytest.raises(ValidationException):
        await orchestrator.mark_downloaded(cards[0].id, user.id)

    await orchestrator.approve(cards[0].id, user.id)
    first = await orchestrator.mark_downloaded(cards[0].id, user.id)
    second = await orchestrator.mark_downloaded(cards[0].id, user.id)
    assert first.status == second.status == FlashCardStatus.downloaded


async def test_card_operations_hide_other_users_cards(orchestrator, make_user):
    owner = await make_user()
    intruder = await make_user()
    _, cards = await _generate(orchestrator, owner)

    with pytest.raises(NotFoundException):
        await orchestrator.approve(cards[0].id, intruder.id)
    with pytest.raises(NotFoundException):
        await orchestrator.regenerate(cards[0].id, intruder.id)
    with pytest.raises(NotFoundException):
        await orchestrator.get_card(cards[0].id, intruder.id)


async def test_regenerate_creates_new_session_with_same_inputs(orchestrator, make_user, scheduled):
    user = await make_user()
    original, cards = await _generate(orchestrator, user)
    used_before = (await orchestrator.quota_gate.usage_summary(user.id)).used_today

    new_session = await orchestrator.regenerate(cards[0].id, user.id)

    assert new_session.id != original.id
    assert new_session.status == SessionStatus.pending
    assert new_session.input_prompt == original.input_prompt
    assert new_session.generation_params == original.generation_params
    assert new_session.card_type == original.card_type
    assert scheduled[-1] == new_session.id
    assert (await orchestrator.quota_gate.usage_summary(user.id)).used_today == used_before + 1

    card = await orchestrator.get_card(cards[0].id, user.id)
    assert card.status == FlashCardStatus.preview


async def test_regenerate_respects_quota(orchestrator, make_user):
    user = await make_user(SubscriptionTier.free)
    _, cards = await _generate(orchestrator, user)
    for _ in range(4):
        await orchestrator.start_session(user.id, "dog", CardType.single_word, _params())

    with pytest.raises(QuotaExceededException):
        await orchestrator.regenerate(cards[0].id, user.id)


class SessionSnapshotModerator(ContentModerator):
    """Records the session row each time moderation runs; the first call is an outage."""

    def __init__(self, store):
        self.store = store
        self.session_id = None
        self.snapshots = []

    async def check(self, text: str) -> ModerationResult:
        row = await self.store.get_session(self.session_id)
        self.snapshots.append((row.status, row.error_message, row.completed_at, row.retry_count))
        if len(self.snapshots) == 1:
            raise ModerationUnavailableError("Content moderation is temporarily unavailable")
        return ModerationResult(flagged=False)


async def test_session_stays_clean_while_processing_and_between_retries(orchestrator, make_user, store):
    user = await make_user()
    spy = SessionSnapshotModerator(store)
    orchestrator.moderator = spy

    session = await orchestrator.start_session(user.id, "elephant", CardType.single_word, _params())
    pending = await store.get_session(session.id)
    assert pending.status == SessionStatus.pending
    assert pending.error_message is None
    assert pending.completed_at is None

    spy.session_id = session.id
    await orchestrator.run_pipeline(session.id)

    assert spy.snapshots == [
        (SessionStatus.processing, None, None, 0),
        (SessionStatus.processing, None, None, 1),
    ]
    done, _ = await orchestrator.get_session(session.id, user.id)
    assert done.status == SessionStatus.completed
    assert done.error_message is None
    _assert_completed_at_consistent(done)


async def test_concurrent_starts_cannot_exceed_daily_limit(orchestrator, make_user, store, scheduled):
    user = await make_user(SubscriptionTier.free)
    for _ in range(4):
        await store.create_session(
            user_id=user.id,
            input_prompt="cat",
            card_type=CardType.single_word,
            generation_params=_params().model_dump(mode="json"),
        )

    results = await asyncio.gather(
        *(
            orchestrator.start_session(user.id, "cat", CardType.single_word, _params())
            for _ in range(3)
        ),
        return_exceptions=True,
    )

    admitted = [r for r in results if not isinstance(r, BaseException)]
    rejected = [r for r in results if isinstance(r, QuotaExceededException)]
    assert len(admitted) == 1
    assert len(rejected) == 2
    assert scheduled == [admitted[0].id]
    summary = await orchestrator.quota_gate.usage_summary(user.id)
    assert summary.used_today == 5


async def test_insert_rechecks_limit_after_stale_admission(orchestrator, make_user, store, scheduled, monkeypatch):
    user = await make_user(SubscriptionTier.free)
    for _ in range(5):
        await store.create_session(
            user_id=user.id,
            input_prompt="cat",
            card_type=CardType.single_word,
            generation_params=_params().model_dump(mode="json"),
        )

    real_check = orchestrator.quota_gate.check_quota
    calls = []

    async def stale_check(user_id):
        calls.append(user_id)
        if len(calls) == 1:
            # decided before another instance inserted the fifth session
            _, start, end = day_window(get_current_utc_datetime(), "UTC")
            return QuotaDecision(allowed=True, limit=5, window=(start, end))
        return await real_check(user_id)

    monkeypatch.setattr(orchestrator.quota_gate, "check_quota", stale_check)

    with pytest.raises(QuotaExceededException) as exc_info:
        await orchestrator.start_session(user.id, "cat", CardType.single_word, _params())

    assert exc_info.value.details["limit"]["used"] == 5
    assert scheduled == []
    summary = await orchestrator.quota_gate.usage_summary(user.id)
    assert summary.used_today == 5


async def test_quota_lookup_failure_still_starts_session(orchestrator, make_user, store, scheduled, monkeypatch):
    user = await make_user(SubscriptionTier.free)

    async def broken_count(*args, **kwargs):
        raise RuntimeError("usage table unavailable")

    monkeypatch.setattr(store, "count_sessions_between", broken_count)

    session = await orchestrator.start_session(user.id, "elephant", CardType.single_word, _params())

    assert session.status == SessionStatus.pending
    assert scheduled == [session.id]
    row = await store.get_session(session.id)
    assert row is not None
    assert row.status == SessionStatus.pending

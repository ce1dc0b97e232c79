from __future__ import annotations

import os

# Settings are read at import time; point them at throwaway values first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("GOOGLE_API_KEY", "test-google-key")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ.setdefault("LOG_FILE", "")

from typing import AsyncGenerator, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from app.core.security import create_access_token
from app.db.deps import Base, get_db
from app.models.user import User
from app.repositories.generation import GenerationStore
from app.schemas.flash_cards import GenerationParams
from app.schemas.generated_content import (
    GeneratedCardContent,
    GeneratedScene,
    TextGenerationResult,
    TextUsage,
)
from app.services.flash_cards.base import (
    ContentModerator,
    ModerationResult,
    SceneImageGenerator,
    TextContentGenerator,
)
from app.services.flash_cards.costs import CostAccountant, CostRates
from app.services.flash_cards.orchestrator import GenerationOrchestrator
from app.services.track_usage_service.handle_usage_cycle import QuotaGate
from app.utils.enums import CardType, SubscriptionTier


class FakeTextGenerator(TextContentGenerator):
    """Deterministic card text; queue exceptions in ``errors`` to fail the next calls."""

    def __init__(self, scene_count: int = 4):
        self.scene_count = scene_count
        self.errors: List[Exception] = []
        self.calls: List[str] = []

    async def generate(self, input_prompt: str, card_type: CardType, params: GenerationParams):
        self.calls.append(input_prompt)
        if self.errors:
            raise self.errors.pop(0)

        words = None
        if card_type == CardType.category:
            words = [f"{input_prompt}-{i}" for i in range(1, self.scene_count + 1)]
        scenes = [
            GeneratedScene(
                description=f"{input_prompt} scene {i}",
                image_prompt=f"A child-friendly picture of {input_prompt}, view {i}",
            )
            for i in range(1, self.scene_count + 1)
        ]
        content = GeneratedCardContent(
            card_type=card_type,
            title=f"Learn: {input_prompt}",
            primary_word=input_prompt,
            category_words=words,
            scenes=scenes,
        )
        return TextGenerationResult(
            content=content, usage=TextUsage(prompt_tokens=200, completion_tokens=800)
        )


class FakeModerator(ContentModerator):
    def __init__(self):
        self.flag_categories: Optional[List[str]] = None
        self.errors: List[Exception] = []
        self.checked: List[str] = []

    async def check(self, text: str) -> ModerationResult:
        self.checked.append(text)
        if self.errors:
            raise self.errors.pop(0)
        if self.flag_categories is not None:
            return ModerationResult(flagged=True, categories=list(self.flag_categories))
        return ModerationResult(flagged=False)


class FakeImageGenerator(SceneImageGenerator):
    """Returns a URL per call; 1-based call numbers in ``fail_on`` raise instead."""

    def __init__(self):
        self.fail_on: set[int] = set()
        self.prompts: List[str] = []

    async def generate(self, image_prompt: str, params: GenerationParams) -> str:
        self.prompts.append(image_prompt)
        call = len(self.prompts)
        if call in self.fail_on:
            raise RuntimeError(f"image backend rejected call {call}")
        return f"https://images.example.com/{call}.png"


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Ensure pytest-anyio uses asyncio for all async tests."""
    return "asyncio"


@pytest_asyncio.fixture()
async def engine(tmp_path):
    db_path = tmp_path / "flash_cards.sqlite"
    # NullPool: every store call opens its own connection on the running loop
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture()
def session_factory(engine) -> sessionmaker:
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
def store(session_factory) -> GenerationStore:
    return GenerationStore(session_factory)


@pytest.fixture()
def make_user(session_factory):
    counter = {"n": 0}

    async def _make_user(tier: SubscriptionTier = SubscriptionTier.free, preferences=None) -> User:
        counter["n"] += 1
        async with session_factory() as db:
            user = User(
                email=f"user{counter['n']}@example.com",
                name=f"User {counter['n']}",
                subscription_tier=tier,
                preferences=preferences,
                is_active=True,
            )
            db.add(user)
            await db.commit()
            await db.refresh(user)
            return user

    return _make_user


@pytest.fixture()
def text_generator() -> FakeTextGenerator:
    return FakeTextGenerator()


@pytest.fixture()
def moderator() -> FakeModerator:
    return FakeModerator()


@pytest.fixture()
def image_generator() -> FakeImageGenerator:
    return FakeImageGenerator()


@pytest.fixture()
def cost_accountant() -> CostAccountant:
    return CostAccountant(CostRates(text_per_1k_tokens_usd=0.001, per_image_usd=0.04))


@pytest.fixture()
def scheduled() -> list:
    return []


@pytest.fixture()
def orchestrator(store, text_generator, moderator, image_generator, cost_accountant, scheduled):
    return GenerationOrchestrator(
        store=store,
        quota_gate=QuotaGate(store),
        text_generator=text_generator,
        moderator=moderator,
        image_generator=image_generator,
        cost_accountant=cost_accountant,
        scheduler=scheduled.append,
        max_retries=3,
        retry_delay_seconds=0,
    )


@pytest.fixture()
def auth_headers():
    def _auth_headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}

    return _auth_headers


@pytest_asyncio.fixture()
async def client(orchestrator, session_factory) -> AsyncGenerator[AsyncClient, None]:
    from app.main import app

    async def _get_test_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_test_db
    app.state.orchestrator = orchestrator

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as async_client:
        yield async_client

    app.dependency_overrides.clear()

"""Shared test fixtures - uses async SQLite for isolated testing."""

import random
from collections import defaultdict

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from storyflow.db.database import Base, get_db
from storyflow.db.redis import get_redis
from storyflow.schemas.game_state import Choice, GameState
from storyflow.schemas.story import StoryGenerationRequest, StoryResponse
from storyflow.services.analytics import AnalyticsClient
from storyflow.services.choice_stats_service import ChoiceStatsService
from storyflow.services.ending_collection_service import EndingCollectionService
from storyflow.services.llm_service import get_story_generator
from storyflow.services.story_flow_service import StoryFlowService
from storyflow.services.story_repository import StoryRepository

# In-memory SQLite for tests (no Docker needed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///file::memory:?cache=shared&uri=true"

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False)
test_session_factory = async_sessionmaker(
    test_engine, class_=AsyncSession, expire_on_commit=False
)


async def _override_get_db():
    async with test_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


class FakeRedis:
    """The few hash commands the choice statistics use, kept in memory."""

    def __init__(self):
        self.hashes: dict[str, dict[str, str]] = defaultdict(dict)
        self.expirations: dict[str, int] = {}

    async def hincrby(self, key, field, amount=1):
        value = int(self.hashes[key].get(field, 0)) + amount
        self.hashes[key][field] = str(value)
        return value

    async def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    async def expire(self, key, seconds):
        self.expirations[key] = seconds
        return True


def make_choices(prefix: str = "path", count: int = 3, **overrides) -> list[Choice]:
    return [
        Choice(
            id="ABCD"[i],
            text=f"Take the {prefix} number {i + 1}",
            slug=f"{prefix}_{i + 1}",
            **overrides,
        )
        for i in range(count)
    ]


class ScriptedGenerator:
    """Narrative generator that replays queued responses.

    When the queue runs dry it writes a plain middle-of-the-story segment.
    Every request it receives is kept for assertions.
    """

    def __init__(self, responses: list[StoryResponse] | None = None):
        self.responses = list(responses or [])
        self.requests: list[StoryGenerationRequest] = []

    def queue(self, story_text: str, choices: list[Choice] | None = None, game_state: GameState | None = None):
        self.responses.append(StoryResponse(
            story_text=story_text,
            choices=choices or make_choices(),
            game_state=game_state,
        ))

    async def generate(self, request: StoryGenerationRequest) -> StoryResponse:
        self.requests.append(request)
        if self.responses:
            return self.responses.pop(0)
        step = request.current_step or 1
        return StoryResponse(
            story_text=f"The road winds on through step {step}.",
            choices=make_choices(f"step{step}"),
            game_state=request.game_state,
        )


@pytest.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after."""
    # Import all models so Base.metadata knows about them
    import storyflow.models  # noqa: F401

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def db():
    """Direct async DB session for service-level tests."""
    async with test_session_factory() as session:
        yield session
        await session.commit()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def generator():
    return ScriptedGenerator()


@pytest.fixture
def analytics():
    return AnalyticsClient()


@pytest.fixture
def story_service(db, fake_redis, generator, analytics):
    """Story flow service over the test DB, fake Redis and scripted generator."""
    return StoryFlowService(
        repository=StoryRepository(db),
        generator=generator,
        endings=EndingCollectionService(db),
        choice_stats=ChoiceStatsService(fake_redis),
        analytics=analytics,
        rng=random.Random(7),
    )


@pytest.fixture
async def client(fake_redis, generator):
    """Async HTTP test client with test DB, Redis and generator overrides."""
    from storyflow.main import app

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_redis] = lambda: fake_redis
    app.dependency_overrides[get_story_generator] = lambda: generator
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()

import os
import re
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./brain_test.db")
os.environ.setdefault("OPENAI_API_KEY", "")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base
from main import app
from models.content_vector import ContentVector
from routers import rate_limit
from services.analytics_cache import analytics_cache
from services.brain_errors import UpstreamServiceError
from services.embeddings import EmbeddingProvider


KEYWORD_AXES = ("budget", "fitness", "travel", "cooking", "coding", "money")
NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


class KeywordEmbeddingProvider(EmbeddingProvider):
    """One axis per topic keyword plus a constant axis, so related texts land close together."""

    model_name = "test-keywords"
    dimensions = len(KEYWORD_AXES) + 1

    def __init__(self, fail_on=None):
        self.fail_on = fail_on
        self.calls = 0

    async def embed(self, text):
        self.calls += 1
        if self.fail_on and self.fail_on in text:
            raise UpstreamServiceError("embedding service unavailable", retryable=True)
        words = re.findall(r"\w+", text.lower())
        vector = [float(words.count(axis)) * 4.0 for axis in KEYWORD_AXES]
        vector.append(1.0)
        return vector


def make_vector(video_id, embedding, content_type="hook", **overrides):
    values = {
        "id": f"{video_id}-{content_type}",
        "user_id": "analytics-user",
        "video_id": video_id,
        "content_type": content_type,
        "section_tag": "hook_0_3s",
        "content": f"{video_id} {content_type}",
        "language": "en",
        "embedding_json": list(embedding),
        "embedding_model": "test-keywords",
        "video_title": f"Video {video_id}",
        "video_theme": None,
        "retention_pct": 50.0,
        "saves_per_1k": 5.0,
        "follows_per_1k": 1.0,
        "for_you_pct": 60.0,
        "views": 1000,
        "likes": 50,
        "comments": 5,
        "shares": 2,
        "duration_seconds": 30.0,
        "published_date": None,
    }
    values.update(overrides)
    return ContentVector(**values)


def cluster_scenario_vectors():
    """Six near-identical high-saves videos plus four unrelated low-saves ones."""
    vectors = []
    for index in range(6):
        vectors.append(
            make_vector(
                f"v{index}",
                [1.0, 0.01 * index, 0.0],
                saves_per_1k=30.0,
                video_theme="budget travel",
                views=1000 + index * 100,
                published_date=NOW - timedelta(days=20 - index),
            )
        )
    for index, embedding in enumerate([[0.0, 1.0, 0.0], [0.0, 0.0, 1.0], [0.0, -1.0, 0.0], [0.0, 0.0, -1.0]], start=6):
        vectors.append(
            make_vector(
                f"v{index}",
                embedding,
                saves_per_1k=5.0,
                video_theme="misc",
                views=800,
                published_date=NOW - timedelta(days=20 - index),
            )
        )
    return vectors


@pytest.fixture(autouse=True)
def reset_local_state():
    """Keep rate-limit counters and memoized analytics isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    analytics_cache.clear()
    yield
    rate_limit._local_counters.clear()
    analytics_cache.clear()
    app.state.disable_rate_limits = previous


@pytest.fixture
def keyword_provider():
    return KeywordEmbeddingProvider()


@pytest_asyncio.fixture
async def db_session(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'brain_unit.db'}")
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with session_maker() as session:
        yield session

    await engine.dispose()

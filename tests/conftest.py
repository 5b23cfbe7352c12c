"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import httpx
import pytest
from fakeredis import FakeAsyncRedis
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from blogkit.cms.cache import ReadCache
from blogkit.cms.models import BodyFormat, ContentBody, CreatePostInput, PostStatus
from blogkit.cms.providers.native import NativeCmsAdapter
from blogkit.config import Settings
from blogkit.storage.database import get_session, init_db
from blogkit.storage.models import Category, User

WP_BASE = "https://blog.example.com"
WP_API = f"{WP_BASE}/wp-json/wp/v2"

SANITY_PROJECT = "abc123"
SANITY_QUERY_URL = f"https://{SANITY_PROJECT}.api.sanity.io/v2024-01-01/data/query/production"
SANITY_MUTATE_URL = f"https://{SANITY_PROJECT}.api.sanity.io/v2024-01-01/data/mutate/production"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Create test settings with a temporary database."""
    return Settings(
        cms_provider="default",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'blogkit.db'}",
        redis_url="",
    )


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncEngine:
    """A fresh SQLite database with two authors and two categories."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    async with get_session(engine) as session:
        session.add(User(id="user-1", name="Ada Lovelace", email="ada@example.com"))
        session.add(User(id="user-2", name="Grace Hopper", email="grace@example.com"))
        session.add(Category(name="Engineering"))
        session.add(Category(name="Life"))
        await session.commit()
    yield engine
    await engine.dispose()


@pytest.fixture
async def redis() -> FakeAsyncRedis:
    client = FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()


@pytest.fixture
def cache(redis: FakeAsyncRedis) -> ReadCache:
    return ReadCache(redis, ttl=60)


@pytest.fixture
def native(engine: AsyncEngine) -> NativeCmsAdapter:
    """Relational adapter without a cache."""
    return NativeCmsAdapter(engine)


@pytest.fixture
def cached_native(engine: AsyncEngine, cache: ReadCache) -> NativeCmsAdapter:
    return NativeCmsAdapter(engine, cache=cache)


@pytest.fixture
async def http_client() -> httpx.AsyncClient:
    """A client for respx-mocked remote providers."""
    async with httpx.AsyncClient() as client:
        yield client


def make_post_input(**overrides: Any) -> CreatePostInput:
    """Helper to build a create-post payload with sensible defaults."""
    fields: dict[str, Any] = {
        "author_id": "user-1",
        "title": "Hello World",
        "slug": "hello-world",
        "body": ContentBody(format=BodyFormat.MDX, value="# Hello\n\nFirst post."),
        "status": PostStatus.PUBLISHED,
        "excerpt": "A first post.",
        "tag_names": [],
    }
    fields.update(overrides)
    return CreatePostInput(**fields)


def wp_post(post_id: int, **overrides: Any) -> dict[str, Any]:
    """Helper to build a WordPress REST post object."""
    raw: dict[str, Any] = {
        "id": post_id,
        "slug": f"post-{post_id}",
        "status": "publish",
        "date_gmt": "2024-03-01T10:00:00",
        "modified_gmt": "2024-03-02T12:00:00",
        "title": {"rendered": f"Post {post_id}"},
        "excerpt": {"rendered": f"<p>Excerpt for post {post_id}</p>\n"},
        "content": {"rendered": f"<p>Body of post {post_id}</p>"},
        "author": 7,
        "categories": [],
        "tags": [],
        "comment_status": "open",
        "format": "standard",
    }
    raw.update(overrides)
    return raw


def sanity_post(doc_id: str, **overrides: Any) -> dict[str, Any]:
    """Helper to build a projected Sanity post document."""
    row: dict[str, Any] = {
        "_id": doc_id,
        "title": f"Doc {doc_id}",
        "slug": f"doc-{doc_id}",
        "excerpt": None,
        "body": "## Markdown body",
        "status": "published",
        "_createdAt": "2024-05-01T08:00:00Z",
        "_updatedAt": "2024-05-02T08:00:00Z",
        "publishedAt": "2024-05-01T09:00:00Z",
        "author": {"_id": "author-1", "name": "Ada Lovelace"},
        "category": {"_id": "cat-1", "title": "Engineering", "slug": "engineering"},
        "tags": [{"_id": "tag-1", "title": "python", "slug": "python"}],
    }
    row.update(overrides)
    return row

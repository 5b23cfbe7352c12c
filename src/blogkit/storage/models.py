"""SQLModel tables for the self-hosted relational store."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    """Post authors. Accounts themselves are managed by the auth layer."""

    __tablename__ = "users"

    id: str = Field(primary_key=True)
    name: str | None = None
    email: str | None = Field(default=None, index=True)


class Category(SQLModel, table=True):
    __tablename__ = "categories"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True, max_length=256)
    description: str | None = None


class Tag(SQLModel, table=True):
    __tablename__ = "tags"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True, max_length=256)  # case-sensitive


class PostRecord(SQLModel, table=True):
    """One blog post. ``published`` is the only publication state stored."""

    __tablename__ = "posts"

    id: int | None = Field(default=None, primary_key=True)
    title: str = Field(max_length=255)
    slug: str = Field(unique=True, max_length=255)
    image_url: str | None = None
    excerpt: str | None = None
    content: str
    format: str = "standard"  # standard | video | gallery | audio
    video_url: str | None = None
    audio_url: str | None = None
    gallery_images: list[str] | None = Field(default=None, sa_column=Column(JSON))
    author_id: str = Field(foreign_key="users.id", index=True)
    category_id: int | None = Field(default=None, foreign_key="categories.id")
    published: bool = Field(default=False, index=True)
    allow_comments: bool = True
    seo_title: str | None = Field(default=None, max_length=70)
    seo_description: str | None = Field(default=None, max_length=160)
    # SQLite drops the offset on write; values are always UTC
    created_at: datetime = Field(
        default_factory=utcnow, index=True, sa_type=DateTime(timezone=True)
    )
    updated_at: datetime | None = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class PostTagLink(SQLModel, table=True):
    __tablename__ = "posts_to_tags"

    post_id: int = Field(foreign_key="posts.id", primary_key=True)
    tag_id: int = Field(foreign_key="tags.id", primary_key=True, index=True)

"""Provider-agnostic content model.

Every adapter produces and consumes these types and nothing else; callers
never see a backend's native rows or JSON. Ids are always strings.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, model_validator

NO_EXCERPT = "No excerpt available."


class BodyFormat(str, Enum):
    MDX = "mdx"
    MARKDOWN = "markdown"
    HTML = "html"


class PostStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    SCHEDULED = "scheduled"


class PostFormat(str, Enum):
    STANDARD = "standard"
    VIDEO = "video"
    GALLERY = "gallery"
    AUDIO = "audio"


SortOrder = Literal["newest", "oldest", "title"]


class ContentBody(BaseModel):
    """Raw post body tagged with the markup it is written in."""

    format: BodyFormat
    value: str


class Author(BaseModel):
    id: str
    name: str | None = None


class Taxonomy(BaseModel):
    """A category or tag reference."""

    id: str
    name: str
    slug: str | None = None


class _PostFields(BaseModel):
    id: str
    title: str
    slug: str
    status: PostStatus
    created_at: datetime
    updated_at: datetime | None = None
    published_at: datetime | None = None
    author: Author | None = None
    category: Taxonomy | None = None
    tags: list[Taxonomy] = Field(default_factory=list)

    @model_validator(mode="after")
    def _published_iff_published_at(self) -> _PostFields:
        is_published = self.status == PostStatus.PUBLISHED
        if is_published != (self.published_at is not None):
            raise ValueError(
                f"post {self.id}: status {self.status.value!r} is inconsistent "
                f"with published_at={self.published_at!r}"
            )
        return self


class Post(_PostFields):
    """The canonical unit of content."""

    excerpt: str | None = None
    body: ContentBody
    hero_image_url: str | None = None
    seo_title: str | None = None
    seo_description: str | None = None
    allow_comments: bool = True
    format: PostFormat = PostFormat.STANDARD
    video_url: str | None = None
    audio_url: str | None = None
    gallery_images: list[str] | None = None

    def to_list_item(self) -> PostListItem:
        """Project to a list item; the projected excerpt is never null."""
        return PostListItem(
            id=self.id,
            title=self.title,
            slug=self.slug,
            excerpt=self.excerpt or NO_EXCERPT,
            status=self.status,
            created_at=self.created_at,
            updated_at=self.updated_at,
            published_at=self.published_at,
            author=self.author,
            category=self.category,
            tags=self.tags,
        )


class PostListItem(_PostFields):
    """A post without body, SEO and media fields."""

    excerpt: str = NO_EXCERPT


SearchResultItem = PostListItem


class ListResult(BaseModel):
    page: int
    limit: int
    has_next: bool
    items: list[PostListItem]

    @model_validator(mode="after")
    def _page_fits_limit(self) -> ListResult:
        if len(self.items) > self.limit:
            raise ValueError(f"{len(self.items)} items exceed page limit {self.limit}")
        return self


class SearchResult(ListResult):
    pass


class SitemapEntry(BaseModel):
    slug: str
    last_modified: datetime


class RssEntry(BaseModel):
    id: str
    slug: str
    title: str
    description: str
    date: datetime


class ListPostsParams(BaseModel):
    page: int = 1
    limit: int = 10
    include_drafts: bool = False


class SearchParams(BaseModel):
    q: str | None = None
    tags: list[str] | None = None
    categories: list[str] | None = None
    authors: list[str] | None = None
    sort: SortOrder = "newest"
    page: int = 1
    limit: int = 10


class CreatePostInput(BaseModel):
    author_id: str
    title: str
    slug: str
    body: ContentBody
    status: PostStatus
    tag_names: list[str]
    excerpt: str | None = None
    category_id: str | None = None
    hero_image_url: str | None = None
    seo_title: str | None = None
    seo_description: str | None = None
    allow_comments: bool = True
    format: PostFormat = PostFormat.STANDARD
    video_url: str | None = None
    audio_url: str | None = None
    gallery_images: list[str] | None = None


class UpdatePostInput(BaseModel):
    """Partial update: only fields the caller explicitly set are applied.

    ``changes()`` distinguishes "set excerpt to None" from "leave excerpt alone".
    """

    author_id: str | None = None
    title: str | None = None
    slug: str | None = None
    body: ContentBody | None = None
    status: PostStatus | None = None
    tag_names: list[str] | None = None
    excerpt: str | None = None
    category_id: str | None = None
    hero_image_url: str | None = None
    seo_title: str | None = None
    seo_description: str | None = None
    allow_comments: bool | None = None
    format: PostFormat | None = None
    video_url: str | None = None
    audio_url: str | None = None
    gallery_images: list[str] | None = None

    def changes(self) -> dict:
        return {name: getattr(self, name) for name in self.model_fields_set}

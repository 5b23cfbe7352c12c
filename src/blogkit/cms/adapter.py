"""Abstract contract implemented by every content backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from blogkit.cms.models import (
    CreatePostInput,
    ListPostsParams,
    ListResult,
    Post,
    RssEntry,
    SearchParams,
    SearchResult,
    SitemapEntry,
    Taxonomy,
    UpdatePostInput,
)

# Newest published posts exported to the RSS feed
FEED_LIMIT = 100


@dataclass(frozen=True)
class AdapterCapabilities:
    supports_drafts: bool = True
    supports_taxonomies: bool = True
    supports_media_upload: bool = False


class ContentAdapter(ABC):
    """Base class for content providers.

    Call sites depend on this interface only. Implementations are stateless
    translators apart from connection pools and the optional read cache, so
    one instance is shared by every concurrent request.
    """

    provider: str
    capabilities: AdapterCapabilities = AdapterCapabilities()

    @abstractmethod
    async def list_posts(self, params: ListPostsParams) -> ListResult:
        """Page through posts, newest first."""
        ...

    @abstractmethod
    async def get_post_by_slug(self, slug: str, *, include_drafts: bool = False) -> Post | None:
        ...

    @abstractmethod
    async def get_post_by_id(self, post_id: str, *, include_drafts: bool = False) -> Post | None:
        ...

    @abstractmethod
    async def search_posts(self, params: SearchParams) -> SearchResult:
        """Filter published posts. Filters are ANDed; empty filters match everything."""
        ...

    @abstractmethod
    async def list_categories(self) -> list[Taxonomy]:
        ...

    @abstractmethod
    async def list_tags(self) -> list[Taxonomy]:
        ...

    @abstractmethod
    async def get_sitemap_entries(self) -> list[SitemapEntry]:
        """Every published post with its last modification time."""
        ...

    @abstractmethod
    async def get_rss_entries(self) -> list[RssEntry]:
        """The newest ``FEED_LIMIT`` published posts."""
        ...

    @abstractmethod
    async def create_post(self, data: CreatePostInput) -> Post:
        ...

    @abstractmethod
    async def update_post(self, post_id: str, data: UpdatePostInput) -> Post:
        ...

    @abstractmethod
    async def delete_post(self, post_id: str) -> None:
        ...

    async def aclose(self) -> None:
        """Release network clients and connection pools."""

    async def __aenter__(self) -> ContentAdapter:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

"""Relational provider: posts, categories and tags in the self-hosted database.

Tags live in their own table and are attached through ``posts_to_tags``.
The store only knows ``published`` true/false, so this provider never
produces ``scheduled``, and ``published_at`` is synthesized from
``created_at``.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from typing import Any

from sqlalchemy import asc, desc, or_
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from blogkit.cms.adapter import FEED_LIMIT, AdapterCapabilities, ContentAdapter
from blogkit.cms.cache import ReadCache, cached
from blogkit.cms.models import (
    Author,
    BodyFormat,
    ContentBody,
    CreatePostInput,
    ListPostsParams,
    ListResult,
    Post,
    PostStatus,
    RssEntry,
    SearchParams,
    SearchResult,
    SitemapEntry,
    Taxonomy,
    UpdatePostInput,
)
from blogkit.cms.pagination import (
    clamp_limit,
    page_offset,
    paginate,
    parse_id,
    require_page,
    require_slug,
)
from blogkit.cms.text import clean_tag_names, ensure_utc, truncate
from blogkit.errors import PostNotFoundError
from blogkit.storage.database import get_session, transaction
from blogkit.storage.models import Category, PostRecord, PostTagLink, Tag, User, utcnow

logger = logging.getLogger(__name__)

CACHE_PREFIX = "cms:native"

# Update fields that cannot be cleared; an explicit None leaves them unchanged
_REQUIRED_FIELDS = {"author_id", "title", "slug", "body", "status", "allow_comments", "format"}


def _mode(include_drafts: bool) -> str:
    return "with-drafts" if include_drafts else "published"


def _like_pattern(q: str) -> str:
    escaped = q.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _to_post(
    record: PostRecord,
    author: User | None,
    category: Category | None,
    tags: list[Taxonomy],
) -> Post:
    created_at = ensure_utc(record.created_at)
    return Post(
        id=str(record.id),
        title=record.title,
        slug=record.slug,
        excerpt=record.excerpt,
        body=ContentBody(format=BodyFormat.MDX, value=record.content),
        status=PostStatus.PUBLISHED if record.published else PostStatus.DRAFT,
        created_at=created_at,
        updated_at=ensure_utc(record.updated_at) if record.updated_at else None,
        published_at=created_at if record.published else None,
        author=(
            Author(id=author.id, name=author.name)
            if author
            else Author(id=record.author_id)
        ),
        category=Taxonomy(id=str(category.id), name=category.name) if category else None,
        tags=sorted(tags, key=lambda t: t.name),
        hero_image_url=record.image_url,
        seo_title=record.seo_title,
        seo_description=record.seo_description,
        allow_comments=record.allow_comments,
        format=record.format,
        video_url=record.video_url,
        audio_url=record.audio_url,
        gallery_images=record.gallery_images,
    )


class NativeCmsAdapter(ContentAdapter):
    """Content adapter over the relational store, with an optional read cache."""

    provider = "native"
    capabilities = AdapterCapabilities(supports_drafts=True, supports_taxonomies=True)

    def __init__(self, engine: AsyncEngine, cache: ReadCache | None = None) -> None:
        self._engine = engine
        self._cache = cache

    # ---------- hydration ----------

    async def _hydrate(self, session: AsyncSession, records: list[PostRecord]) -> list[Post]:
        """Attach authors, categories and tags to a batch of post rows."""
        if not records:
            return []

        post_ids = [r.id for r in records]
        author_ids = {r.author_id for r in records}
        category_ids = {r.category_id for r in records if r.category_id is not None}

        authors = {
            u.id: u
            for u in (await session.exec(select(User).where(col(User.id).in_(author_ids)))).all()
        }
        categories: dict[int, Category] = {}
        if category_ids:
            categories = {
                c.id: c
                for c in (
                    await session.exec(select(Category).where(col(Category.id).in_(category_ids)))
                ).all()
            }

        tags_by_post: dict[int, list[Taxonomy]] = defaultdict(list)
        tag_rows = await session.exec(
            select(PostTagLink.post_id, Tag)
            .join(Tag, col(Tag.id) == col(PostTagLink.tag_id))
            .where(col(PostTagLink.post_id).in_(post_ids))
        )
        for post_id, tag in tag_rows.all():
            tags_by_post[post_id].append(Taxonomy(id=str(tag.id), name=tag.name))

        return [
            _to_post(
                r,
                authors.get(r.author_id),
                categories.get(r.category_id) if r.category_id is not None else None,
                tags_by_post[r.id],
            )
            for r in records
        ]

    async def _fetch_post(self, *conditions: Any) -> Post | None:
        """Load one post straight from the store, bypassing the cache."""
        async with get_session(self._engine) as session:
            record = (await session.exec(select(PostRecord).where(*conditions))).first()
            if record is None:
                return None
            return (await self._hydrate(session, [record]))[0]

    # ---------- reads ----------

    async def list_posts(self, params: ListPostsParams) -> ListResult:
        page = require_page(params.page)
        limit = clamp_limit(params.limit)
        include_drafts = params.include_drafts
        key = f"{CACHE_PREFIX}:posts:{_mode(include_drafts)}:p={page}:l={limit}"

        async def load() -> ListResult:
            async with get_session(self._engine) as session:

                async def fetch(count: int) -> list[PostRecord]:
                    stmt = select(PostRecord)
                    if not include_drafts:
                        stmt = stmt.where(PostRecord.published == True)  # noqa: E712
                    stmt = (
                        stmt.order_by(desc(PostRecord.created_at), desc(PostRecord.id))
                        .offset(page_offset(page, limit))
                        .limit(count)
                    )
                    return list((await session.exec(stmt)).all())

                records, has_next = await paginate(fetch, limit)
                posts = await self._hydrate(session, records)

            return ListResult(
                page=page,
                limit=limit,
                has_next=has_next,
                items=[p.to_list_item() for p in posts],
            )

        return await cached(self._cache, key, ListResult, load)

    async def get_post_by_slug(self, slug: str, *, include_drafts: bool = False) -> Post | None:
        require_slug(slug)
        conditions = [PostRecord.slug == slug]
        if not include_drafts:
            conditions.append(PostRecord.published == True)  # noqa: E712
        key = f"{CACHE_PREFIX}:post:slug={slug}:{_mode(include_drafts)}"
        return await cached(self._cache, key, Post, lambda: self._fetch_post(*conditions))

    async def get_post_by_id(self, post_id: str, *, include_drafts: bool = False) -> Post | None:
        pk = parse_id(post_id)
        conditions = [PostRecord.id == pk]
        if not include_drafts:
            conditions.append(PostRecord.published == True)  # noqa: E712
        key = f"{CACHE_PREFIX}:post:id={pk}:{_mode(include_drafts)}"
        return await cached(self._cache, key, Post, lambda: self._fetch_post(*conditions))

    async def search_posts(self, params: SearchParams) -> SearchResult:
        """One join across authors, categories and tags, de-duplicated in process.

        The tag join fans out one row per tag, so paging happens after
        grouping rows by post id.
        """
        page = require_page(params.page)
        limit = clamp_limit(params.limit)
        q = (params.q or "").strip()

        clauses: list[Any] = [PostRecord.published == True]  # noqa: E712
        if q:
            pattern = _like_pattern(q)
            clauses.append(
                or_(
                    col(PostRecord.title).ilike(pattern, escape="\\"),
                    col(PostRecord.excerpt).ilike(pattern, escape="\\"),
                )
            )
        if params.tags:
            tagged = (
                select(PostTagLink.post_id)
                .join(Tag, col(Tag.id) == col(PostTagLink.tag_id))
                .where(col(Tag.name).in_(params.tags))
            )
            clauses.append(col(PostRecord.id).in_(tagged))
        if params.categories:
            clauses.append(col(Category.name).in_(params.categories))
        if params.authors:
            clauses.append(col(User.name).in_(params.authors))

        if params.sort == "oldest":
            order = (asc(PostRecord.created_at), asc(PostRecord.id))
        elif params.sort == "title":
            order = (asc(PostRecord.title), asc(PostRecord.id))
        else:
            order = (desc(PostRecord.created_at), desc(PostRecord.id))

        stmt = (
            select(PostRecord, User, Category, Tag)
            .join(User, col(User.id) == col(PostRecord.author_id), isouter=True)
            .join(Category, col(Category.id) == col(PostRecord.category_id), isouter=True)
            .join(PostTagLink, col(PostTagLink.post_id) == col(PostRecord.id), isouter=True)
            .join(Tag, col(Tag.id) == col(PostTagLink.tag_id), isouter=True)
            .where(*clauses)
            .order_by(*order)
        )

        async with get_session(self._engine) as session:
            rows = (await session.exec(stmt)).all()

        grouped: dict[int, tuple[PostRecord, User | None, Category | None, list[Taxonomy]]] = {}
        for record, author, category, tag in rows:
            entry = grouped.setdefault(record.id, (record, author, category, []))
            if tag is not None and all(t.id != str(tag.id) for t in entry[3]):
                entry[3].append(Taxonomy(id=str(tag.id), name=tag.name))

        entries = list(grouped.values())
        offset = page_offset(page, limit)

        async def fetch(count: int) -> list:
            return entries[offset : offset + count]

        window, has_next = await paginate(fetch, limit)

        return SearchResult(
            page=page,
            limit=limit,
            has_next=has_next,
            items=[_to_post(*entry).to_list_item() for entry in window],
        )

    async def list_categories(self) -> list[Taxonomy]:
        async with get_session(self._engine) as session:
            rows = (await session.exec(select(Category).order_by(Category.name))).all()
        return [Taxonomy(id=str(c.id), name=c.name) for c in rows]

    async def list_tags(self) -> list[Taxonomy]:
        async with get_session(self._engine) as session:
            rows = (await session.exec(select(Tag).order_by(Tag.name))).all()
        return [Taxonomy(id=str(t.id), name=t.name) for t in rows]

    async def get_sitemap_entries(self) -> list[SitemapEntry]:
        stmt = (
            select(PostRecord)
            .where(PostRecord.published == True)  # noqa: E712
            .order_by(desc(PostRecord.created_at))
        )
        async with get_session(self._engine) as session:
            rows = (await session.exec(stmt)).all()
        return [
            SitemapEntry(slug=p.slug, last_modified=ensure_utc(p.updated_at or p.created_at))
            for p in rows
        ]

    async def get_rss_entries(self) -> list[RssEntry]:
        stmt = (
            select(PostRecord)
            .where(PostRecord.published == True)  # noqa: E712
            .order_by(desc(PostRecord.created_at), desc(PostRecord.id))
            .limit(FEED_LIMIT)
        )
        async with get_session(self._engine) as session:
            rows = (await session.exec(stmt)).all()
        return [
            RssEntry(
                id=str(p.id),
                slug=p.slug,
                title=p.title,
                description=p.excerpt or truncate(p.content or ""),
                date=ensure_utc(p.created_at),
            )
            for p in rows
        ]

    # ---------- writes ----------

    async def _replace_tags(
        self,
        session: AsyncSession,
        post_id: int,
        tag_names: Iterable[str],
        *,
        replace: bool,
    ) -> None:
        """Point the post at exactly ``tag_names``, creating only tags that don't exist yet.

        Runs inside the caller's transaction: existing links are removed first
        when ``replace`` is set, then the full set is inserted.
        """
        if replace:
            links = (
                await session.exec(select(PostTagLink).where(PostTagLink.post_id == post_id))
            ).all()
            for link in links:
                await session.delete(link)
            await session.flush()

        names = clean_tag_names(tag_names)
        if not names:
            return

        existing = list((await session.exec(select(Tag).where(col(Tag.name).in_(names)))).all())
        known = {t.name for t in existing}
        created = [Tag(name=name) for name in names if name not in known]
        if created:
            session.add_all(created)
            await session.flush()
            logger.debug("Created %d new tags: %s", len(created), [t.name for t in created])

        session.add_all(PostTagLink(post_id=post_id, tag_id=t.id) for t in existing + created)
        await session.flush()

    async def _invalidate(self, post_id: int, *slugs: str) -> None:
        if self._cache is None:
            return
        keys = [
            f"{CACHE_PREFIX}:post:{field}:{mode}"
            for field in [f"id={post_id}", *(f"slug={s}" for s in set(slugs))]
            for mode in (_mode(True), _mode(False))
        ]
        await self._cache.invalidate(*keys, patterns=(f"{CACHE_PREFIX}:posts:*",))

    async def create_post(self, data: CreatePostInput) -> Post:
        require_slug(data.slug)
        category_id = parse_id(data.category_id, "category") if data.category_id else None

        record = PostRecord(
            title=data.title,
            slug=data.slug,
            excerpt=data.excerpt,
            content=data.body.value,
            image_url=data.hero_image_url,
            category_id=category_id,
            published=data.status == PostStatus.PUBLISHED,
            allow_comments=data.allow_comments,
            seo_title=data.seo_title,
            seo_description=data.seo_description,
            format=data.format.value,
            video_url=data.video_url,
            audio_url=data.audio_url,
            gallery_images=data.gallery_images,
            author_id=data.author_id,
        )
        async with transaction(self._engine) as session:
            session.add(record)
            await session.flush()
            await self._replace_tags(session, record.id, data.tag_names, replace=False)

        logger.info("Created post %s (%s)", record.id, record.slug)
        await self._invalidate(record.id, record.slug)

        post = await self._fetch_post(PostRecord.id == record.id)
        if post is None:
            raise PostNotFoundError(str(record.id))
        return post

    async def update_post(self, post_id: str, data: UpdatePostInput) -> Post:
        pk = parse_id(post_id)
        changes = data.changes()

        async with transaction(self._engine) as session:
            record = await session.get(PostRecord, pk)
            if record is None:
                raise PostNotFoundError(post_id)
            old_slug = record.slug

            for field, value in changes.items():
                if field == "tag_names" or (value is None and field in _REQUIRED_FIELDS):
                    continue
                if field == "slug":
                    record.slug = require_slug(value)
                elif field == "body":
                    record.content = value.value
                elif field == "status":
                    record.published = value == PostStatus.PUBLISHED
                elif field == "format":
                    record.format = value.value
                elif field == "hero_image_url":
                    record.image_url = value
                elif field == "category_id":
                    record.category_id = parse_id(value, "category") if value else None
                else:
                    setattr(record, field, value)
            record.updated_at = utcnow()
            session.add(record)

            if changes.get("tag_names") is not None:
                await self._replace_tags(session, pk, changes["tag_names"], replace=True)

        logger.info("Updated post %s", pk)
        await self._invalidate(pk, old_slug, record.slug)

        post = await self._fetch_post(PostRecord.id == pk)
        if post is None:
            raise PostNotFoundError(post_id)
        return post

    async def delete_post(self, post_id: str) -> None:
        pk = parse_id(post_id)
        async with transaction(self._engine) as session:
            record = await session.get(PostRecord, pk)
            if record is None:
                return
            slug = record.slug
            await self._replace_tags(session, pk, [], replace=True)
            await session.delete(record)

        logger.info("Deleted post %s", pk)
        await self._invalidate(pk, slug)

    async def aclose(self) -> None:
        if self._cache is not None:
            await self._cache.aclose()

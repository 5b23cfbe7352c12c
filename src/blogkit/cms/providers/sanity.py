"""Document-CMS provider backed by Sanity's HTTP query and mutation API.

Queries are GROQ built only from fixed fragments; every user-supplied value
is passed as a ``$param``. Category, tag and author references are followed
inline with ``->`` so one round trip returns a fully named post.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from typing import Any

import httpx

from blogkit.cms.adapter import FEED_LIMIT, AdapterCapabilities, ContentAdapter
from blogkit.cms.models import (
    Author,
    BodyFormat,
    ContentBody,
    CreatePostInput,
    ListPostsParams,
    ListResult,
    Post,
    PostFormat,
    PostStatus,
    RssEntry,
    SearchParams,
    SearchResult,
    SitemapEntry,
    Taxonomy,
    UpdatePostInput,
)
from blogkit.cms.pagination import clamp_limit, page_offset, paginate, require_page, require_slug
from blogkit.cms.text import clean_tag_names, parse_timestamp, truncate, utcnow
from blogkit.errors import (
    InvalidArgumentError,
    PostNotFoundError,
    RemoteRequestError,
    WriteAuthorizationError,
)

logger = logging.getLogger(__name__)

SANITY_API_HOST = "api.sanity.io"
SANITY_CDN_HOST = "apicdn.sanity.io"

POST_PROJECTION = """{
  _id,
  title,
  "slug": slug.current,
  excerpt,
  body,
  status,
  _createdAt,
  _updatedAt,
  publishedAt,
  heroImageUrl,
  seoTitle,
  seoDescription,
  allowComments,
  format,
  videoUrl,
  audioUrl,
  galleryImages,
  "author": author->{_id, name},
  "category": category->{_id, title, "slug": slug.current},
  "tags": tags[]->{_id, title, "slug": slug.current}
}"""

TERM_PROJECTION = '{_id, title, "slug": slug.current}'

IS_POST = '_type == "post"'
IS_PUBLISHED = 'status == "published"'

_ORDERING = {
    "newest": "order(coalesce(publishedAt, _createdAt) desc)",
    "oldest": "order(coalesce(publishedAt, _createdAt) asc)",
    "title": "order(title asc)",
}

# Canonical update field -> document field, for plain values
_DOCUMENT_FIELDS = {
    "title": "title",
    "excerpt": "excerpt",
    "hero_image_url": "heroImageUrl",
    "seo_title": "seoTitle",
    "seo_description": "seoDescription",
    "allow_comments": "allowComments",
    "video_url": "videoUrl",
    "audio_url": "audioUrl",
    "gallery_images": "galleryImages",
}
_REQUIRED_FIELDS = {"title", "allow_comments"}

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")


def tag_document_id(name: str) -> str:
    """Deterministic document id for a tag name, so concurrent creators converge."""
    return "tag-" + hashlib.sha1(name.encode("utf-8")).hexdigest()[:24]


def _slugify(name: str) -> str:
    return _NON_SLUG_CHARS.sub("-", name.lower()).strip("-")


def _reference(doc_id: str, *, weak: bool = False) -> dict[str, Any]:
    ref: dict[str, Any] = {"_type": "reference", "_ref": doc_id}
    if weak:
        ref["_weak"] = True
    return ref


def map_status(value: str | None) -> PostStatus:
    try:
        return PostStatus(value)
    except ValueError:
        return PostStatus.DRAFT


def map_format(value: str | None) -> PostFormat:
    try:
        return PostFormat(value or PostFormat.STANDARD)
    except ValueError:
        return PostFormat.STANDARD


def _to_taxonomy(row: dict[str, Any]) -> Taxonomy:
    return Taxonomy(id=row["_id"], name=row.get("title") or "", slug=row.get("slug"))


def map_post(row: dict[str, Any]) -> Post:
    """Translate a projected post document into the canonical model."""
    status = map_status(row.get("status"))
    created_at = parse_timestamp(row.get("_createdAt")) or utcnow()
    published_at = None
    if status == PostStatus.PUBLISHED:
        published_at = parse_timestamp(row.get("publishedAt")) or created_at

    author = row.get("author")
    category = row.get("category")
    return Post(
        id=row["_id"],
        title=row.get("title") or "",
        slug=row.get("slug") or "",
        excerpt=row.get("excerpt"),
        body=ContentBody(format=BodyFormat.MARKDOWN, value=row.get("body") or ""),
        status=status,
        created_at=created_at,
        updated_at=parse_timestamp(row.get("_updatedAt")),
        published_at=published_at,
        author=Author(id=author["_id"], name=author.get("name")) if author else None,
        category=_to_taxonomy(category) if category else None,
        # Dangling references dereference to null
        tags=[_to_taxonomy(t) for t in row.get("tags") or [] if t],
        hero_image_url=row.get("heroImageUrl"),
        seo_title=row.get("seoTitle"),
        seo_description=row.get("seoDescription"),
        allow_comments=row.get("allowComments", True) is not False,
        format=map_format(row.get("format")),
        video_url=row.get("videoUrl"),
        audio_url=row.get("audioUrl"),
        gallery_images=row.get("galleryImages"),
    )


class SanityCmsAdapter(ContentAdapter):
    """Content adapter over a Sanity dataset."""

    provider = "sanity"
    capabilities = AdapterCapabilities(supports_drafts=True, supports_taxonomies=True)

    def __init__(
        self,
        project_id: str,
        dataset: str,
        api_version: str,
        *,
        read_token: str = "",
        write_token: str = "",
        use_cdn: bool = False,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        version = api_version if api_version.startswith("v") else f"v{api_version}"
        self._dataset = dataset
        self._api_base = f"https://{project_id}.{SANITY_API_HOST}/{version}"
        self._cdn_base = f"https://{project_id}.{SANITY_CDN_HOST}/{version}"
        self._use_cdn = use_cdn
        self._read_token = read_token
        self._write_token = write_token
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers={"Accept": "application/json"},
            timeout=timeout,
        )

    # ---------- transport ----------

    async def _call(self, method: str, url: str, operation: str, **kwargs: Any) -> dict[str, Any]:
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("%s failed: %s", operation, exc)
            raise RemoteRequestError(operation, detail=str(exc)) from exc
        if resp.is_error:
            logger.warning("%s returned %s", operation, resp.status_code)
            raise RemoteRequestError(operation, resp.status_code, resp.text)
        return resp.json()

    async def _query(
        self,
        groq: str,
        params: dict[str, Any] | None = None,
        *,
        fresh: bool = False,
    ) -> Any:
        """Run a GROQ query. ``fresh`` bypasses the CDN, e.g. right after a write."""
        base = self._cdn_base if self._use_cdn and not fresh else self._api_base
        query_params = {"query": groq}
        query_params.update({f"${name}": json.dumps(value) for name, value in (params or {}).items()})
        headers = {"Authorization": f"Bearer {self._read_token}"} if self._read_token else {}
        body = await self._call(
            "GET",
            f"{base}/data/query/{self._dataset}",
            "Sanity query",
            params=query_params,
            headers=headers,
        )
        return body.get("result")

    def _require_write_token(self) -> None:
        if not self._write_token:
            raise WriteAuthorizationError(self.provider, "SANITY_TOKEN")

    async def _mutate(self, mutations: list[dict[str, Any]]) -> dict[str, Any]:
        self._require_write_token()
        return await self._call(
            "POST",
            f"{self._api_base}/data/mutate/{self._dataset}",
            "Sanity mutate",
            params={"returnIds": "true", "autoGenerateArrayKeys": "true", "visibility": "sync"},
            json={"mutations": mutations},
            headers={"Authorization": f"Bearer {self._write_token}"},
        )

    async def _fetch_post(
        self,
        condition: str,
        params: dict[str, Any],
        *,
        fresh: bool = False,
    ) -> Post | None:
        row = await self._query(f"*[{condition}][0]{POST_PROJECTION}", params, fresh=fresh)
        return map_post(row) if row else None

    async def _fetch_page(
        self,
        conditions: list[str],
        params: dict[str, Any],
        ordering: str,
        page: int,
        limit: int,
    ) -> tuple[list[Post], bool]:
        start = page_offset(page, limit)

        async def fetch(count: int) -> list[dict[str, Any]]:
            groq = f"*[{' && '.join(conditions)}] | {ordering} [$start...$end]{POST_PROJECTION}"
            return await self._query(groq, {**params, "start": start, "end": start + count}) or []

        rows, has_next = await paginate(fetch, limit)
        return [map_post(r) for r in rows], has_next

    # ---------- reads ----------

    async def list_posts(self, params: ListPostsParams) -> ListResult:
        page = require_page(params.page)
        limit = clamp_limit(params.limit)
        conditions = [IS_POST] if params.include_drafts else [IS_POST, IS_PUBLISHED]

        posts, has_next = await self._fetch_page(conditions, {}, _ORDERING["newest"], page, limit)
        return ListResult(
            page=page,
            limit=limit,
            has_next=has_next,
            items=[p.to_list_item() for p in posts],
        )

    async def get_post_by_slug(self, slug: str, *, include_drafts: bool = False) -> Post | None:
        require_slug(slug)
        conditions = [IS_POST, "slug.current == $slug"]
        if not include_drafts:
            conditions.append(IS_PUBLISHED)
        return await self._fetch_post(" && ".join(conditions), {"slug": slug})

    async def get_post_by_id(self, post_id: str, *, include_drafts: bool = False) -> Post | None:
        if not post_id or not post_id.strip():
            raise InvalidArgumentError("post id must not be empty")
        conditions = [IS_POST, "_id == $id"]
        if not include_drafts:
            conditions.append(IS_PUBLISHED)
        return await self._fetch_post(" && ".join(conditions), {"id": post_id})

    async def search_posts(self, params: SearchParams) -> SearchResult:
        page = require_page(params.page)
        limit = clamp_limit(params.limit)
        q = (params.q or "").strip()

        conditions = [IS_POST, IS_PUBLISHED]
        values: dict[str, Any] = {}
        if q:
            conditions.append("(title match $q || excerpt match $q)")
            values["q"] = f"{q}*"
        if params.tags:
            conditions.append("count((tags[]->title)[@ in $tags]) > 0")
            values["tags"] = params.tags
        if params.categories:
            conditions.append("category->title in $categories")
            values["categories"] = params.categories
        if params.authors:
            conditions.append("author->name in $authors")
            values["authors"] = params.authors

        posts, has_next = await self._fetch_page(
            conditions, values, _ORDERING[params.sort], page, limit
        )
        return SearchResult(
            page=page,
            limit=limit,
            has_next=has_next,
            items=[p.to_list_item() for p in posts],
        )

    async def list_categories(self) -> list[Taxonomy]:
        rows = await self._query(f'*[_type == "category"] | order(title asc){TERM_PROJECTION}')
        return [_to_taxonomy(r) for r in rows or []]

    async def list_tags(self) -> list[Taxonomy]:
        rows = await self._query(f'*[_type == "tag"] | order(title asc){TERM_PROJECTION}')
        return [_to_taxonomy(r) for r in rows or []]

    async def get_sitemap_entries(self) -> list[SitemapEntry]:
        rows = await self._query(
            f"*[{IS_POST} && {IS_PUBLISHED}] | {_ORDERING['newest']}"
            '{"slug": slug.current, _updatedAt, _createdAt}'
        )
        return [
            SitemapEntry(
                slug=r["slug"],
                last_modified=parse_timestamp(r.get("_updatedAt") or r.get("_createdAt")) or utcnow(),
            )
            for r in rows or []
            if r.get("slug")
        ]

    async def get_rss_entries(self) -> list[RssEntry]:
        rows = await self._query(
            f"*[{IS_POST} && {IS_PUBLISHED}] | {_ORDERING['newest']} [0...$limit]"
            '{_id, title, excerpt, body, "slug": slug.current, publishedAt, _createdAt}',
            {"limit": FEED_LIMIT},
        )
        return [
            RssEntry(
                id=r["_id"],
                slug=r.get("slug") or "",
                title=r.get("title") or "",
                description=truncate(r.get("excerpt") or r.get("body") or ""),
                date=parse_timestamp(r.get("publishedAt") or r.get("_createdAt")) or utcnow(),
            )
            for r in rows or []
        ]

    # ---------- writes ----------

    async def _tag_references(
        self, tag_names: list[str]
    ) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        """Resolve tag names to references, reusing existing tag documents by title.

        Returns the mutations creating any missing tags and the references
        to attach to the post.
        """
        names = clean_tag_names(tag_names)
        if not names:
            return [], []

        rows = await self._query(
            '*[_type == "tag" && title in $names]{_id, title}', {"names": names}, fresh=True
        )
        known = {r["title"]: r["_id"] for r in rows or []}

        mutations: list[dict[str, Any]] = []
        references: list[dict[str, Any]] = []
        for name in names:
            tag_id = known.get(name)
            if tag_id is None:
                tag_id = tag_document_id(name)
                mutations.append(
                    {
                        "createIfNotExists": {
                            "_id": tag_id,
                            "_type": "tag",
                            "title": name,
                            "slug": {"_type": "slug", "current": _slugify(name)},
                        }
                    }
                )
            references.append(_reference(tag_id))
        return mutations, references

    async def create_post(self, data: CreatePostInput) -> Post:
        self._require_write_token()
        require_slug(data.slug)

        tag_mutations, tag_refs = await self._tag_references(data.tag_names)
        document: dict[str, Any] = {
            "_type": "post",
            "title": data.title,
            "slug": {"_type": "slug", "current": data.slug},
            "excerpt": data.excerpt,
            "body": data.body.value,
            "status": data.status.value,
            "publishedAt": utcnow().isoformat() if data.status == PostStatus.PUBLISHED else None,
            "tags": tag_refs,
            "author": _reference(data.author_id, weak=True) if data.author_id else None,
            "category": _reference(data.category_id) if data.category_id else None,
            "heroImageUrl": data.hero_image_url,
            "seoTitle": data.seo_title,
            "seoDescription": data.seo_description,
            "allowComments": data.allow_comments,
            "format": data.format.value,
            "videoUrl": data.video_url,
            "audioUrl": data.audio_url,
            "galleryImages": data.gallery_images,
        }
        document = {k: v for k, v in document.items() if v is not None}

        result = await self._mutate([*tag_mutations, {"create": document}])
        created_id = result["results"][-1]["id"]
        logger.info("Created Sanity post %s (%s)", created_id, data.slug)

        post = await self._fetch_post("_id == $id", {"id": created_id}, fresh=True)
        if post is None:
            raise PostNotFoundError(created_id)
        return post

    async def update_post(self, post_id: str, data: UpdatePostInput) -> Post:
        self._require_write_token()
        if not post_id or not post_id.strip():
            raise InvalidArgumentError("post id must not be empty")
        changes = data.changes()

        exists = await self._query(f"*[{IS_POST} && _id == $id][0]._id", {"id": post_id}, fresh=True)
        if not exists:
            raise PostNotFoundError(post_id)

        to_set: dict[str, Any] = {}
        to_unset: list[str] = []
        set_if_missing: dict[str, Any] = {}
        for field, doc_field in _DOCUMENT_FIELDS.items():
            if field not in changes:
                continue
            value = changes[field]
            if value is not None:
                to_set[doc_field] = value
            elif field not in _REQUIRED_FIELDS:
                to_unset.append(doc_field)

        if changes.get("slug") is not None:
            to_set["slug"] = {"_type": "slug", "current": require_slug(changes["slug"])}
        if changes.get("body") is not None:
            to_set["body"] = changes["body"].value
        if changes.get("format") is not None:
            to_set["format"] = changes["format"].value
        if changes.get("author_id") is not None:
            to_set["author"] = _reference(changes["author_id"], weak=True)
        if "category_id" in changes:
            if changes["category_id"]:
                to_set["category"] = _reference(changes["category_id"])
            else:
                to_unset.append("category")
        if changes.get("status") is not None:
            status = changes["status"]
            to_set["status"] = status.value
            if status == PostStatus.PUBLISHED:
                # Keep the original publication time on re-publish
                set_if_missing["publishedAt"] = utcnow().isoformat()
            else:
                to_unset.append("publishedAt")

        mutations: list[dict[str, Any]] = []
        if changes.get("tag_names") is not None:
            tag_mutations, tag_refs = await self._tag_references(changes["tag_names"])
            mutations.extend(tag_mutations)
            to_set["tags"] = tag_refs

        patch: dict[str, Any] = {"id": post_id}
        if to_set:
            patch["set"] = to_set
        if set_if_missing:
            patch["setIfMissing"] = set_if_missing
        if to_unset:
            patch["unset"] = to_unset
        mutations.append({"patch": patch})

        await self._mutate(mutations)
        logger.info("Updated Sanity post %s", post_id)

        post = await self._fetch_post("_id == $id", {"id": post_id}, fresh=True)
        if post is None:
            raise PostNotFoundError(post_id)
        return post

    async def delete_post(self, post_id: str) -> None:
        self._require_write_token()
        if not post_id or not post_id.strip():
            raise InvalidArgumentError("post id must not be empty")
        await self._mutate([{"delete": {"id": post_id}}])
        logger.info("Deleted Sanity post %s", post_id)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

"""REST-CMS provider backed by the WordPress REST API (``/wp-json/wp/v2``).

Posts reference categories and tags by integer term id while the content
contract speaks names, so reads batch-resolve term ids across a page and
writes resolve tag names to ids, creating missing terms one at a time.
"""

from __future__ import annotations

import asyncio
import html
import logging
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
from blogkit.cms.pagination import (
    clamp_limit,
    page_offset,
    paginate,
    parse_id,
    require_page,
    require_slug,
)
from blogkit.cms.text import clean_tag_names, parse_timestamp, strip_html, truncate, utcnow
from blogkit.errors import PostNotFoundError, RemoteRequestError, WriteAuthorizationError

logger = logging.getLogger(__name__)

WP_API_PATH = "/wp-json/wp/v2"
WP_MAX_PER_PAGE = 100
# Term ids per ``include=`` request
TERM_CHUNK_SIZE = 50

_STATUS_FROM_WP = {
    "publish": PostStatus.PUBLISHED,
    "future": PostStatus.SCHEDULED,
}
_STATUS_TO_WP = {
    PostStatus.PUBLISHED: "publish",
    PostStatus.SCHEDULED: "future",
    PostStatus.DRAFT: "draft",
}
_ORDERING = {
    "newest": ("date", "desc"),
    "oldest": ("date", "asc"),
    "title": ("title", "asc"),
}
_POST_FORMATS = {f.value for f in PostFormat}

TermMap = dict[int, dict[str, Any]]


def _rendered(raw: dict, field: str) -> str:
    return (raw.get(field) or {}).get("rendered") or ""


def _to_taxonomy(term: dict[str, Any]) -> Taxonomy:
    return Taxonomy(id=str(term["id"]), name=html.unescape(term["name"]), slug=term.get("slug"))


def map_status(wp_status: str | None) -> PostStatus:
    """publish/future map to published/scheduled; everything else reads as a draft."""
    return _STATUS_FROM_WP.get(wp_status or "", PostStatus.DRAFT)


def map_post(raw: dict, categories: TermMap, tags: TermMap) -> Post:
    """Translate a WordPress post object into the canonical model."""
    status = map_status(raw.get("status"))
    created_at = parse_timestamp(raw.get("date_gmt")) or utcnow()

    category_ids = raw.get("categories") or []
    category_term = categories.get(category_ids[0]) if category_ids else None
    tag_terms = [tags[i] for i in raw.get("tags") or [] if i in tags]

    wp_format = raw.get("format") or "standard"
    return Post(
        id=str(raw["id"]),
        title=strip_html(_rendered(raw, "title")),
        slug=raw.get("slug") or "",
        excerpt=strip_html(_rendered(raw, "excerpt")) or None,
        body=ContentBody(format=BodyFormat.HTML, value=_rendered(raw, "content")),
        status=status,
        created_at=created_at,
        updated_at=parse_timestamp(raw.get("modified_gmt")),
        published_at=created_at if status == PostStatus.PUBLISHED else None,
        author=Author(id=str(raw["author"])) if raw.get("author") else None,
        category=_to_taxonomy(category_term) if category_term else None,
        tags=[_to_taxonomy(t) for t in tag_terms],
        allow_comments=raw.get("comment_status", "open") == "open",
        format=wp_format if wp_format in _POST_FORMATS else PostFormat.STANDARD,
    )


class WordPressCmsAdapter(ContentAdapter):
    """Content adapter over a remote WordPress site."""

    provider = "wordpress"
    capabilities = AdapterCapabilities(supports_drafts=True, supports_taxonomies=True)

    def __init__(
        self,
        base_url: str,
        username: str = "",
        app_password: str = "",
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_base = f"{base_url.rstrip('/')}{WP_API_PATH}"
        # Application passwords travel as HTTP basic auth on every request
        self._auth = httpx.BasicAuth(username, app_password) if username and app_password else None
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers={"Accept": "application/json"},
            timeout=timeout,
        )

    # ---------- transport ----------

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        operation = f"WordPress {method} {path}"
        try:
            return await self._client.request(
                method,
                f"{self._api_base}{path}",
                params=params,
                json=json,
                auth=self._auth if self._auth is not None else httpx.USE_CLIENT_DEFAULT,
            )
        except httpx.HTTPError as exc:
            logger.warning("%s failed: %s", operation, exc)
            raise RemoteRequestError(operation, detail=str(exc)) from exc

    @staticmethod
    def _check(resp: httpx.Response, operation: str) -> httpx.Response:
        if resp.is_error:
            logger.warning("%s returned %s", operation, resp.status_code)
            raise RemoteRequestError(operation, resp.status_code, resp.text)
        return resp

    async def _request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        resp = await self._send(method, path, params=params, json=json)
        return self._check(resp, f"WordPress {method} {path}").json()

    async def _get_all(self, path: str, params: dict[str, Any] | None = None) -> list[dict]:
        """Walk every page of a collection endpoint.

        WordPress rejects a page past the last one with a 400, so the walk
        stops at ``X-WP-TotalPages``.
        """
        operation = f"WordPress GET {path}"
        items: list[dict] = []
        page = 1
        while True:
            resp = await self._send(
                "GET", path, params={**(params or {}), "per_page": WP_MAX_PER_PAGE, "page": page}
            )
            batch = self._check(resp, operation).json()
            items.extend(batch)

            total_pages = resp.headers.get("X-WP-TotalPages")
            if total_pages is not None and total_pages.isdigit():
                if page >= int(total_pages):
                    return items
            elif len(batch) < WP_MAX_PER_PAGE:
                return items
            page += 1

    def _require_write_auth(self) -> None:
        if self._auth is None:
            raise WriteAuthorizationError(self.provider, "WORDPRESS_USERNAME and WORDPRESS_APP_PASSWORD")

    # ---------- term resolution ----------

    async def _term_map(self, kind: str, ids: list[int]) -> TermMap:
        """Fetch term metadata for ``ids``, deduplicated and chunked."""
        unique = list(dict.fromkeys(ids))
        terms: TermMap = {}
        for start in range(0, len(unique), TERM_CHUNK_SIZE):
            chunk = unique[start : start + TERM_CHUNK_SIZE]
            batch = await self._request_json(
                "GET",
                f"/{kind}",
                params={"include": ",".join(map(str, chunk)), "per_page": WP_MAX_PER_PAGE},
            )
            terms.update({t["id"]: t for t in batch})
        return terms

    async def _hydrate(self, raws: list[dict]) -> list[Post]:
        category_ids = [i for p in raws for i in p.get("categories") or []]
        tag_ids = [i for p in raws for i in p.get("tags") or []]
        categories, tags = await asyncio.gather(
            self._term_map("categories", category_ids),
            self._term_map("tags", tag_ids),
        )
        return [map_post(p, categories, tags) for p in raws]

    async def _find_term_id(self, kind: str, name: str) -> int | None:
        """Exact, case-sensitive name lookup via the fuzzy ``search`` parameter."""
        found = await self._request_json(
            "GET", f"/{kind}", params={"search": name, "per_page": WP_MAX_PER_PAGE}
        )
        for term in found:
            if html.unescape(term["name"]) == name:
                return term["id"]
        return None

    async def _term_ids_by_name(self, kind: str, names: list[str]) -> list[int]:
        ids = await asyncio.gather(*(self._find_term_id(kind, n) for n in names))
        return [i for i in ids if i is not None]

    async def _author_ids_by_name(self, names: list[str]) -> list[int]:
        ids: list[int] = []
        for name in names:
            users = await self._request_json("GET", "/users", params={"search": name})
            ids.extend(u["id"] for u in users if html.unescape(u.get("name", "")) == name)
        return ids

    async def _ensure_tag_id(self, name: str) -> int:
        existing = await self._find_term_id("tags", name)
        if existing is not None:
            return existing

        resp = await self._send("POST", "/tags", json={"name": name})
        if resp.status_code == 400 and "json" in resp.headers.get("content-type", ""):
            body = resp.json()
            # Another writer created it between our lookup and insert
            if body.get("code") == "term_exists":
                return body["data"]["term_id"]
        term = self._check(resp, "WordPress POST /tags").json()
        logger.info("Created WordPress tag %r (id %s)", name, term["id"])
        return term["id"]

    async def _ensure_tag_ids(self, names: list[str]) -> list[int]:
        # Serial on purpose: concurrent creation of one name is not idempotent remotely
        ids: list[int] = []
        for name in clean_tag_names(names):
            ids.append(await self._ensure_tag_id(name))
        return ids

    # ---------- reads ----------

    async def list_posts(self, params: ListPostsParams) -> ListResult:
        page = require_page(params.page)
        limit = clamp_limit(params.limit)
        status = "any" if params.include_drafts else "publish"

        async def fetch(count: int) -> list[dict]:
            return await self._request_json(
                "GET",
                "/posts",
                params={
                    "per_page": count,
                    "offset": page_offset(page, limit),
                    "status": status,
                    "orderby": "date",
                    "order": "desc",
                },
            )

        raws, has_next = await paginate(fetch, limit)
        posts = await self._hydrate(raws)
        return ListResult(
            page=page,
            limit=limit,
            has_next=has_next,
            items=[p.to_list_item() for p in posts],
        )

    async def get_post_by_slug(self, slug: str, *, include_drafts: bool = False) -> Post | None:
        require_slug(slug)
        items = await self._request_json(
            "GET",
            "/posts",
            params={"slug": slug, "status": "any" if include_drafts else "publish"},
        )
        if not items:
            return None
        return (await self._hydrate(items[:1]))[0]

    async def get_post_by_id(self, post_id: str, *, include_drafts: bool = False) -> Post | None:
        pk = parse_id(post_id)
        resp = await self._send("GET", f"/posts/{pk}")
        if resp.status_code == 404:
            return None
        raw = self._check(resp, f"WordPress GET /posts/{pk}").json()
        if not include_drafts and raw.get("status") != "publish":
            return None
        return (await self._hydrate([raw]))[0]

    async def search_posts(self, params: SearchParams) -> SearchResult:
        page = require_page(params.page)
        limit = clamp_limit(params.limit)
        q = (params.q or "").strip()
        orderby, order = _ORDERING[params.sort]
        empty = SearchResult(page=page, limit=limit, has_next=False, items=[])

        query: dict[str, Any] = {"status": "publish", "orderby": orderby, "order": order}
        if q:
            query["search"] = q
        # A filter whose names match no term can match no post
        if params.tags:
            tag_ids = await self._term_ids_by_name("tags", params.tags)
            if not tag_ids:
                return empty
            query["tags"] = ",".join(map(str, tag_ids))
        if params.categories:
            category_ids = await self._term_ids_by_name("categories", params.categories)
            if not category_ids:
                return empty
            query["categories"] = ",".join(map(str, category_ids))
        if params.authors:
            author_ids = await self._author_ids_by_name(params.authors)
            if not author_ids:
                return empty
            query["author"] = ",".join(map(str, author_ids))

        async def fetch(count: int) -> list[dict]:
            return await self._request_json(
                "GET",
                "/posts",
                params={**query, "per_page": count, "offset": page_offset(page, limit)},
            )

        raws, has_next = await paginate(fetch, limit)
        posts = await self._hydrate(raws)
        return SearchResult(
            page=page,
            limit=limit,
            has_next=has_next,
            items=[p.to_list_item() for p in posts],
        )

    async def list_categories(self) -> list[Taxonomy]:
        return [_to_taxonomy(t) for t in await self._get_all("/categories")]

    async def list_tags(self) -> list[Taxonomy]:
        return [_to_taxonomy(t) for t in await self._get_all("/tags")]

    async def get_sitemap_entries(self) -> list[SitemapEntry]:
        raws = await self._get_all(
            "/posts", {"status": "publish", "orderby": "date", "order": "desc"}
        )
        return [
            SitemapEntry(
                slug=p["slug"],
                last_modified=(
                    parse_timestamp(p.get("modified_gmt"))
                    or parse_timestamp(p.get("date_gmt"))
                    or utcnow()
                ),
            )
            for p in raws
        ]

    async def get_rss_entries(self) -> list[RssEntry]:
        raws = await self._request_json(
            "GET",
            "/posts",
            params={"per_page": FEED_LIMIT, "status": "publish", "orderby": "date", "order": "desc"},
        )
        return [
            RssEntry(
                id=str(p["id"]),
                slug=p["slug"],
                title=strip_html(_rendered(p, "title")),
                description=truncate(
                    strip_html(_rendered(p, "excerpt") or _rendered(p, "content"))
                ),
                date=parse_timestamp(p.get("date_gmt")) or utcnow(),
            )
            for p in raws
        ]

    # ---------- writes ----------

    async def create_post(self, data: CreatePostInput) -> Post:
        self._require_write_auth()
        require_slug(data.slug)

        payload: dict[str, Any] = {
            "title": data.title,
            "slug": data.slug,
            "excerpt": data.excerpt or "",
            "content": data.body.value,
            "status": _STATUS_TO_WP[data.status],
            "comment_status": "open" if data.allow_comments else "closed",
            "format": data.format.value,
        }
        if data.author_id.isdigit():
            payload["author"] = int(data.author_id)
        if data.category_id:
            payload["categories"] = [parse_id(data.category_id, "category")]
        tag_ids = await self._ensure_tag_ids(data.tag_names)
        if tag_ids:
            payload["tags"] = tag_ids

        created = await self._request_json("POST", "/posts", json=payload)
        logger.info("Created WordPress post %s (%s)", created["id"], created.get("slug"))
        return (await self._hydrate([created]))[0]

    async def update_post(self, post_id: str, data: UpdatePostInput) -> Post:
        self._require_write_auth()
        pk = parse_id(post_id)
        changes = data.changes()

        payload: dict[str, Any] = {}
        for field in ("title", "slug"):
            if changes.get(field) is not None:
                payload[field] = changes[field]
        if "slug" in payload:
            require_slug(payload["slug"])
        if "excerpt" in changes:
            payload["excerpt"] = changes["excerpt"] or ""
        if changes.get("body") is not None:
            payload["content"] = changes["body"].value
        if changes.get("status") is not None:
            payload["status"] = _STATUS_TO_WP[changes["status"]]
        if changes.get("allow_comments") is not None:
            payload["comment_status"] = "open" if changes["allow_comments"] else "closed"
        if changes.get("format") is not None:
            payload["format"] = changes["format"].value
        if "category_id" in changes:
            category_id = changes["category_id"]
            payload["categories"] = [parse_id(category_id, "category")] if category_id else []
        if changes.get("tag_names") is not None:
            payload["tags"] = await self._ensure_tag_ids(changes["tag_names"])

        resp = await self._send("PUT", f"/posts/{pk}", json=payload)
        if resp.status_code == 404:
            raise PostNotFoundError(post_id)
        updated = self._check(resp, f"WordPress PUT /posts/{pk}").json()
        logger.info("Updated WordPress post %s", pk)
        return (await self._hydrate([updated]))[0]

    async def delete_post(self, post_id: str) -> None:
        self._require_write_auth()
        pk = parse_id(post_id)
        # force=true skips the trash
        resp = await self._send("DELETE", f"/posts/{pk}", params={"force": "true"})
        if resp.status_code == 404:
            return
        self._check(resp, f"WordPress DELETE /posts/{pk}")
        logger.info("Deleted WordPress post %s", pk)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

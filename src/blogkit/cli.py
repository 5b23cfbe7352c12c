"""CLI entry point for the blogkit content layer."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

console = Console()

T = TypeVar("T")


@click.group()
@click.version_option(version="0.1.0")
@click.option(
    "--provider",
    "-P",
    default=None,
    help="CMS provider override (default, rest-cms, document-cms)",
)
@click.option("--log-level", default=None, help="Logging level override")
@click.pass_context
def main(ctx: click.Context, provider: str | None, log_level: str | None) -> None:
    """blogkit content adapter tools."""
    from blogkit.config import get_settings
    from blogkit.logging_setup import configure_logging

    settings = get_settings()
    if provider:
        settings.cms_provider = provider
    configure_logging(log_level or settings.log_level)
    ctx.obj = settings


# ---------------------------------------------------------------------------
# init-db: create the relational tables
# ---------------------------------------------------------------------------


@main.command("init-db")
@click.pass_obj
def init_db_command(settings: Any) -> None:
    """Create the relational provider's tables if they do not exist."""
    from blogkit.storage.database import dispose_engines, get_engine, init_db

    async def run() -> None:
        try:
            await init_db(get_engine(settings.database_url))
        finally:
            await dispose_engines()

    asyncio.run(run())
    console.print(f"[green]Database ready:[/green] {settings.database_url}")


# ---------------------------------------------------------------------------
# list, show, search: read posts
# ---------------------------------------------------------------------------


@main.command("list")
@click.option("--page", "-p", default=1, help="Page number (1-based)")
@click.option("--limit", "-l", default=10, help="Posts per page")
@click.option("--drafts", is_flag=True, help="Include unpublished posts")
@click.pass_obj
def list_command(settings: Any, page: int, limit: int, drafts: bool) -> None:
    """List posts, newest first."""
    from blogkit.cms.models import ListPostsParams

    result = _run(
        settings,
        lambda adapter: adapter.list_posts(
            ListPostsParams(page=page, limit=limit, include_drafts=drafts)
        ),
    )
    _print_posts(result, title=f"Posts (page {result.page})")


@main.command()
@click.argument("slug")
@click.option("--drafts", is_flag=True, help="Also match unpublished posts")
@click.pass_obj
def show(settings: Any, slug: str, drafts: bool) -> None:
    """Show a single post by slug."""
    post = _run(settings, lambda adapter: adapter.get_post_by_slug(slug, include_drafts=drafts))
    if post is None:
        console.print(f"[yellow]No post with slug {slug!r}.[/yellow]")
        raise SystemExit(1)

    tags = ", ".join(t.name for t in post.tags) or "none"
    subtitle = f"{post.status.value} | {post.body.format.value} | tags: {tags}"
    console.print(Panel(f"[bold]{escape(post.title)}", subtitle=escape(subtitle)))
    if post.excerpt:
        console.print(f"[dim]{escape(post.excerpt)}[/dim]\n")
    if post.body.format.value == "html":
        # Rendered as text, not markup
        console.print(escape(post.body.value))
    else:
        console.print(Markdown(post.body.value))


@main.command()
@click.argument("query", required=False)
@click.option("--tag", "-t", "tags", multiple=True, help="Tag name (repeatable)")
@click.option("--category", "-c", "categories", multiple=True, help="Category name (repeatable)")
@click.option("--author", "-a", "authors", multiple=True, help="Author name (repeatable)")
@click.option(
    "--sort",
    "-s",
    type=click.Choice(["newest", "oldest", "title"]),
    default="newest",
    help="Sort order",
)
@click.option("--page", "-p", default=1, help="Page number (1-based)")
@click.option("--limit", "-l", default=10, help="Results per page")
@click.pass_obj
def search(
    settings: Any,
    query: str | None,
    tags: tuple[str, ...],
    categories: tuple[str, ...],
    authors: tuple[str, ...],
    sort: str,
    page: int,
    limit: int,
) -> None:
    """Search published posts. All given filters must match."""
    from blogkit.cms.models import SearchParams

    params = SearchParams(
        q=query,
        tags=list(tags) or None,
        categories=list(categories) or None,
        authors=list(authors) or None,
        sort=sort,
        page=page,
        limit=limit,
    )
    result = _run(settings, lambda adapter: adapter.search_posts(params))
    _print_posts(result, title=f"Search results (page {result.page})")


# ---------------------------------------------------------------------------
# taxonomies, sitemap, rss: exports
# ---------------------------------------------------------------------------


@main.command()
@click.pass_obj
def taxonomies(settings: Any) -> None:
    """List categories and tags."""

    async def both(adapter: Any) -> tuple[list, list]:
        return await asyncio.gather(adapter.list_categories(), adapter.list_tags())

    categories, tags = _run(settings, both)
    for title, terms in (("Categories", categories), ("Tags", tags)):
        table = Table(title=title)
        table.add_column("ID", justify="right")
        table.add_column("Name", width=40)
        table.add_column("Slug", width=40)
        for term in terms:
            table.add_row(term.id, term.name, term.slug or "")
        console.print(table)


@main.command()
@click.pass_obj
def sitemap(settings: Any) -> None:
    """Print sitemap entries for every published post."""
    entries = _run(settings, lambda adapter: adapter.get_sitemap_entries())
    table = Table(title=f"Sitemap ({len(entries)} posts)")
    table.add_column("Slug", width=60)
    table.add_column("Last modified", width=20)
    for entry in entries:
        table.add_row(entry.slug, entry.last_modified.strftime("%Y-%m-%d %H:%M"))
    console.print(table)


@main.command()
@click.pass_obj
def rss(settings: Any) -> None:
    """Print the RSS feed entries."""
    entries = _run(settings, lambda adapter: adapter.get_rss_entries())
    table = Table(title=f"RSS feed ({len(entries)} entries)")
    table.add_column("Date", width=12)
    table.add_column("Title", width=50)
    table.add_column("Description", width=60)
    for entry in entries:
        table.add_row(entry.date.strftime("%Y-%m-%d"), entry.title, entry.description[:120])
    console.print(table)


# ---------------------------------------------------------------------------
# delete
# ---------------------------------------------------------------------------


@main.command()
@click.argument("post_id")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_obj
def delete(settings: Any, post_id: str, yes: bool) -> None:
    """Delete a post by id."""
    if not yes and not click.confirm(f"Delete post {post_id}?"):
        return
    _run(settings, lambda adapter: adapter.delete_post(post_id))
    console.print(f"[green]Deleted post {post_id}.[/green]")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(settings: Any, call: Callable[[Any], Awaitable[T]]) -> T:
    """Build the adapter, run one call against it and close it.

    Errors from the content layer are printed and exit with status 1.
    """
    from blogkit.cms.selector import create_adapter
    from blogkit.errors import BlogkitError
    from blogkit.storage.database import dispose_engines

    async def run() -> T:
        adapter = create_adapter(settings)
        try:
            async with adapter:
                return await call(adapter)
        finally:
            await dispose_engines()

    try:
        return asyncio.run(run())
    except BlogkitError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise SystemExit(1) from e


def _print_posts(result: Any, title: str) -> None:
    if not result.items:
        console.print("[yellow]No posts found.[/yellow]")
        return

    table = Table(title=title)
    table.add_column("ID", justify="right")
    table.add_column("Title", width=40)
    table.add_column("Slug", width=30)
    table.add_column("Status", width=10)
    table.add_column("Date", width=12)
    table.add_column("Tags", width=24)
    for item in result.items:
        date = item.published_at or item.created_at
        table.add_row(
            item.id,
            escape(item.title),
            item.slug,
            item.status.value,
            date.strftime("%Y-%m-%d"),
            ", ".join(t.name for t in item.tags),
        )
    console.print(table)
    if result.has_next:
        console.print(f"[dim]More results on page {result.page + 1}.[/dim]")

"""Tests for the shared content model and text helpers."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from blogkit.cms.models import (
    NO_EXCERPT,
    BodyFormat,
    ContentBody,
    CreatePostInput,
    ListResult,
    Post,
    PostListItem,
    PostStatus,
    UpdatePostInput,
)
from blogkit.cms.text import clean_tag_names, parse_timestamp, strip_html, truncate

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _post(**overrides) -> Post:
    fields = {
        "id": "1",
        "title": "T",
        "slug": "t",
        "body": ContentBody(format=BodyFormat.MDX, value="x"),
        "status": PostStatus.PUBLISHED,
        "created_at": NOW,
        "published_at": NOW,
    }
    fields.update(overrides)
    return Post(**fields)


# ---------------------------------------------------------------------------
# Status invariant
# ---------------------------------------------------------------------------


class TestStatusInvariant:
    """A post is published exactly when it carries a publication time."""

    def test_published_with_timestamp(self) -> None:
        """Test a published post with a timestamp is valid."""
        assert _post().published_at == NOW

    def test_published_without_timestamp_rejected(self) -> None:
        """Test a published post without a timestamp is rejected."""
        with pytest.raises(ValidationError):
            _post(published_at=None)

    @pytest.mark.parametrize("status", [PostStatus.DRAFT, PostStatus.SCHEDULED])
    def test_unpublished_with_timestamp_rejected(self, status: PostStatus) -> None:
        """Test drafts and scheduled posts cannot carry a publication time."""
        with pytest.raises(ValidationError):
            _post(status=status, published_at=NOW)

    def test_draft_without_timestamp(self) -> None:
        """Test a draft without a timestamp is valid."""
        post = _post(status=PostStatus.DRAFT, published_at=None)
        assert post.status == PostStatus.DRAFT


# ---------------------------------------------------------------------------
# Projections
# ---------------------------------------------------------------------------


def test_list_item_substitutes_placeholder_excerpt() -> None:
    """Test that list items fill a missing excerpt with the placeholder."""
    item = _post(excerpt=None).to_list_item()
    assert item.excerpt == NO_EXCERPT


def test_list_item_keeps_real_excerpt() -> None:
    """Test that list items keep an existing excerpt."""
    item = _post(excerpt="Short summary").to_list_item()
    assert item.excerpt == "Short summary"
    assert not hasattr(item, "body")


def test_list_result_rejects_oversized_page() -> None:
    """Test that a page cannot hold more items than its limit."""
    item = _post().to_list_item()
    with pytest.raises(ValidationError):
        ListResult(page=1, limit=1, has_next=False, items=[item, item])


def test_list_result_round_trips_through_json() -> None:
    """Test list results survive JSON serialization."""
    result = ListResult(page=1, limit=5, has_next=True, items=[_post().to_list_item()])
    restored = ListResult.model_validate_json(result.model_dump_json())
    assert restored == result
    assert isinstance(restored.items[0], PostListItem)


def test_update_input_tracks_explicit_fields() -> None:
    """Test that only explicitly set update fields count as changes."""
    data = UpdatePostInput(title="New", excerpt=None)
    assert data.changes() == {"title": "New", "excerpt": None}
    assert UpdatePostInput().changes() == {}


def test_create_input_requires_tag_names() -> None:
    """Test that create input must carry a tag list, even an empty one."""
    fields = {
        "author_id": "user-1",
        "title": "T",
        "slug": "t",
        "body": ContentBody(format=BodyFormat.MDX, value="x"),
        "status": PostStatus.DRAFT,
    }

    with pytest.raises(ValidationError, match="tag_names"):
        CreatePostInput(**fields)

    assert CreatePostInput(**fields, tag_names=[]).tag_names == []


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def test_strip_html() -> None:
    """Test HTML stripping and entity decoding."""
    assert strip_html("<p>Hello <strong>world</strong></p>\n<p>again</p>") == "Hello world again"
    assert strip_html(None) == ""
    assert strip_html("Tom &amp; Jerry") == "Tom & Jerry"


def test_truncate() -> None:
    """Test truncation caps text at 250 characters."""
    assert truncate("a" * 300) == "a" * 250
    assert truncate("short") == "short"


def test_parse_timestamp_treats_naive_as_utc() -> None:
    """Test naive timestamps are read as UTC."""
    parsed = parse_timestamp("2024-03-01T10:00:00")
    assert parsed == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
    assert parse_timestamp("2024-03-01T12:00:00+02:00") == parsed
    assert parse_timestamp(None) is None


def test_clean_tag_names() -> None:
    """Test tag names are trimmed, blanks dropped, duplicates removed in order."""
    assert clean_tag_names([" python ", "", "Python", "python", "  "]) == ["python", "Python"]

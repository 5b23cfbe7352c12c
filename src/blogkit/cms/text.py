"""Text and timestamp normalization helpers shared by the providers."""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import datetime, timezone

from bs4 import BeautifulSoup
from dateutil import parser as dateparser

DESCRIPTION_LENGTH = 250

_WHITESPACE = re.compile(r"\s+")


def strip_html(html: str | None) -> str:
    """Reduce rendered HTML to plain text with collapsed whitespace."""
    if not html:
        return ""
    text = BeautifulSoup(html, "html.parser").get_text(separator=" ")
    return _WHITESPACE.sub(" ", text).strip()


def truncate(text: str, length: int = DESCRIPTION_LENGTH) -> str:
    return text[:length]


def ensure_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a backend timestamp string. Missing timezone means UTC."""
    if not value:
        return None
    return ensure_utc(dateparser.isoparse(value))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clean_tag_names(names: Iterable[str]) -> list[str]:
    """Drop blank names and duplicates, keeping first-seen order. Case is significant."""
    seen: dict[str, None] = {}
    for name in names:
        name = name.strip()
        if name:
            seen.setdefault(name, None)
    return list(seen)

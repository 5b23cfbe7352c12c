"""Tests for provider selection and configuration loading."""

from __future__ import annotations

import httpx
import pytest

from blogkit.cms.cache import ReadCache
from blogkit.cms.providers.native import NativeCmsAdapter
from blogkit.cms.providers.sanity import SanityCmsAdapter
from blogkit.cms.providers.wordpress import WordPressCmsAdapter
from blogkit.cms.selector import create_adapter, resolve_provider
from blogkit.config import Settings, get_settings
from blogkit.errors import ConfigurationError


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("default", "default"),
        ("native", "default"),
        ("", "default"),
        ("rest-cms", "rest-cms"),
        ("WordPress", "rest-cms"),
        ("document-cms", "document-cms"),
        (" sanity ", "document-cms"),
    ],
)
def test_resolve_provider(name: str, expected: str) -> None:
    """Test provider names and aliases resolve."""
    assert resolve_provider(name) == expected


def test_unknown_provider() -> None:
    """Test an unknown provider name is rejected."""
    with pytest.raises(ConfigurationError) as exc_info:
        create_adapter(Settings(cms_provider="ghost"))
    assert exc_info.value.setting == "CMS_PROVIDER"


def test_default_provider(settings: Settings) -> None:
    """Test the default provider is the relational one."""
    adapter = create_adapter(settings)
    assert isinstance(adapter, NativeCmsAdapter)
    assert adapter._cache is None


def test_default_provider_uses_given_cache(settings: Settings, cache: ReadCache) -> None:
    """Test a passed-in cache is used."""
    adapter = create_adapter(settings, cache=cache)
    assert adapter._cache is cache


def test_default_provider_builds_cache_from_url(settings: Settings) -> None:
    """Test a cache is built from the Redis URL."""
    settings.redis_url = "redis://localhost:6379/0"
    adapter = create_adapter(settings)
    assert isinstance(adapter._cache, ReadCache)


def test_rest_cms_requires_url() -> None:
    """Test the REST provider needs a site URL."""
    with pytest.raises(ConfigurationError, match="WORDPRESS_URL") as exc_info:
        create_adapter(Settings(cms_provider="rest-cms"))
    assert exc_info.value.setting == "WORDPRESS_URL"


async def test_rest_cms(http_client: httpx.AsyncClient) -> None:
    """Test building the REST provider with credentials."""
    adapter = create_adapter(
        Settings(cms_provider="rest-cms", wordpress_url="https://blog.example.com"),
        http_client=http_client,
    )
    assert isinstance(adapter, WordPressCmsAdapter)
    assert adapter._client is http_client


@pytest.mark.parametrize(
    ("missing", "env_name"),
    [
        ("sanity_project_id", "SANITY_PROJECT_ID"),
        ("sanity_dataset", "SANITY_DATASET"),
        ("sanity_api_version", "SANITY_API_VERSION"),
    ],
)
def test_document_cms_names_missing_setting(missing: str, env_name: str) -> None:
    """Test the missing document-CMS setting is named."""
    fields = {
        "sanity_project_id": "abc123",
        "sanity_dataset": "production",
        "sanity_api_version": "2024-01-01",
    }
    fields[missing] = ""

    with pytest.raises(ConfigurationError) as exc_info:
        create_adapter(Settings(cms_provider="document-cms", **fields))

    assert exc_info.value.setting == env_name


def test_document_cms_without_write_token_still_constructs() -> None:
    """Test the document provider builds without a write token."""
    adapter = create_adapter(
        Settings(
            cms_provider="sanity",
            sanity_project_id="abc123",
            sanity_dataset="production",
            sanity_api_version="2024-01-01",
        )
    )
    assert isinstance(adapter, SanityCmsAdapter)


def test_get_settings_reads_conventional_names(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test settings read the unprefixed backend variables."""
    monkeypatch.setenv("CMS_PROVIDER", "rest-cms")
    monkeypatch.setenv("WORDPRESS_URL", "https://wp.example.com")
    monkeypatch.setenv("BLOGKIT_CACHE_TTL_SECONDS", "42")

    settings = get_settings()

    assert settings.cms_provider == "rest-cms"
    assert settings.wordpress_url == "https://wp.example.com"
    assert settings.cache_ttl_seconds == 42

"""Build the one content adapter the process will use.

The caller constructs the adapter once at startup and passes it to whatever
needs it. Required settings are checked before anything is constructed.
"""

from __future__ import annotations

import logging

import httpx

from blogkit.cms.adapter import ContentAdapter
from blogkit.cms.cache import ReadCache
from blogkit.cms.providers.native import NativeCmsAdapter
from blogkit.cms.providers.sanity import SanityCmsAdapter
from blogkit.cms.providers.wordpress import WordPressCmsAdapter
from blogkit.config import Settings
from blogkit.errors import ConfigurationError
from blogkit.storage.database import get_engine

logger = logging.getLogger(__name__)

DEFAULT = "default"
REST_CMS = "rest-cms"
DOCUMENT_CMS = "document-cms"

_ALIASES = {
    DEFAULT: DEFAULT,
    "native": DEFAULT,
    REST_CMS: REST_CMS,
    "wordpress": REST_CMS,
    DOCUMENT_CMS: DOCUMENT_CMS,
    "sanity": DOCUMENT_CMS,
}

# Settings field -> environment variable an operator has to set
_REQUIRED = {
    REST_CMS: [("wordpress_url", "WORDPRESS_URL")],
    DOCUMENT_CMS: [
        ("sanity_project_id", "SANITY_PROJECT_ID"),
        ("sanity_dataset", "SANITY_DATASET"),
        ("sanity_api_version", "SANITY_API_VERSION"),
    ],
}


def resolve_provider(name: str) -> str:
    """Normalize a provider name or alias."""
    key = (name or DEFAULT).strip().lower()
    try:
        return _ALIASES[key]
    except KeyError:
        raise ConfigurationError(
            "CMS_PROVIDER",
            f"unknown CMS provider {name!r}; expected one of {', '.join(sorted(set(_ALIASES)))}",
        ) from None


def validate_settings(provider: str, settings: Settings) -> None:
    for field, env_name in _REQUIRED.get(provider, []):
        if not str(getattr(settings, field) or "").strip():
            raise ConfigurationError(env_name)


def create_adapter(
    settings: Settings,
    *,
    cache: ReadCache | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> ContentAdapter:
    """Construct the adapter selected by ``settings.cms_provider``.

    ``cache`` overrides the Redis cache built from ``redis_url`` and
    ``http_client`` is handed to remote providers (tests inject mocked ones).
    """
    provider = resolve_provider(settings.cms_provider)
    validate_settings(provider, settings)

    if provider == REST_CMS:
        logger.info("Using WordPress CMS at %s", settings.wordpress_url)
        return WordPressCmsAdapter(
            settings.wordpress_url,
            settings.wordpress_username,
            settings.wordpress_app_password,
            timeout=settings.http_timeout,
            client=http_client,
        )

    if provider == DOCUMENT_CMS:
        logger.info(
            "Using Sanity project %s (dataset %s)",
            settings.sanity_project_id,
            settings.sanity_dataset,
        )
        return SanityCmsAdapter(
            settings.sanity_project_id,
            settings.sanity_dataset,
            settings.sanity_api_version,
            read_token=settings.sanity_read_token,
            write_token=settings.sanity_token,
            use_cdn=settings.sanity_use_cdn,
            timeout=settings.http_timeout,
            client=http_client,
        )

    if cache is None and settings.redis_url:
        cache = ReadCache.from_url(settings.redis_url, ttl=settings.cache_ttl_seconds)
    logger.info("Using native CMS (cache %s)", "enabled" if cache else "disabled")
    return NativeCmsAdapter(get_engine(settings.database_url), cache=cache)

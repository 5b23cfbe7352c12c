"""Configuration loading from environment variables with validation."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# Anchor the default database next to the project root (two levels up from src/blogkit)
_PROJECT_DIR = Path(__file__).resolve().parent.parent.parent

# Conventional, unprefixed names of the settings that belong to the backends
# themselves rather than to blogkit. Mapped onto Settings fields in get_settings().
_BACKEND_ENV_VARS = {
    "cms_provider": "CMS_PROVIDER",
    "database_url": "DATABASE_URL",
    "redis_url": "REDIS_URL",
    "wordpress_url": "WORDPRESS_URL",
    "wordpress_username": "WORDPRESS_USERNAME",
    "wordpress_app_password": "WORDPRESS_APP_PASSWORD",
    "sanity_project_id": "SANITY_PROJECT_ID",
    "sanity_dataset": "SANITY_DATASET",
    "sanity_api_version": "SANITY_API_VERSION",
    "sanity_read_token": "SANITY_READ_TOKEN",
    "sanity_token": "SANITY_TOKEN",
    "sanity_use_cdn": "SANITY_USE_CDN",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BLOGKIT_",
        case_sensitive=False,
    )

    # Provider selection: default | rest-cms | document-cms
    cms_provider: str = "default"

    # Relational store (async SQLAlchemy URL)
    database_url: str = f"sqlite+aiosqlite:///{_PROJECT_DIR / 'data' / 'blogkit.db'}"

    # Read cache; caching is skipped entirely when unset
    redis_url: str = ""
    cache_ttl_seconds: int = 300

    # REST CMS (WordPress)
    wordpress_url: str = ""
    wordpress_username: str = ""
    wordpress_app_password: str = ""

    # Document CMS (Sanity)
    sanity_project_id: str = ""
    sanity_dataset: str = ""
    sanity_api_version: str = ""
    sanity_read_token: str = ""
    sanity_token: str = ""  # write token
    sanity_use_cdn: bool = False

    # Remote calls
    http_timeout: float = 30.0

    # Logging
    log_level: str = "INFO"


def get_settings() -> Settings:
    """Load settings from environment and .env file."""
    load_dotenv(_PROJECT_DIR / ".env")
    overrides = {
        field: os.environ[env_name]
        for field, env_name in _BACKEND_ENV_VARS.items()
        if os.environ.get(env_name)
    }
    return Settings(**overrides)

"""Configuration management for Canvas to Notion."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel


class Config(BaseModel):
    """Application configuration."""

    firebase_database_url: str
    firebase_api_key: str | None = None
    firebase_database_secret: str | None = None
    firebase_timeout_seconds: float = 15.0
    notion_client_id: str | None = None
    notion_client_secret: str | None = None
    notion_redirect_uri: str | None = None
    notion_timeout_seconds: float = 30.0
    notion_max_retries: int = 3
    notion_backoff_base_seconds: float = 1.0
    notion_backoff_cap_seconds: float = 30.0
    web_host: str = "127.0.0.1"
    web_port: int = 8888

    @property
    def database_root(self) -> str:
        return self.firebase_database_url.rstrip("/")

    @property
    def oauth_configured(self) -> bool:
        return bool(
            self.notion_client_id and self.notion_client_secret and self.notion_redirect_uri
        )


def load_config(**overrides: object) -> Config:
    """Load config from environment variables, .env file, and overrides.

    Resolution order (highest priority first):
    1. Explicit overrides (CLI flags)
    2. Environment variables
    3. .env file
    4. Defaults
    """
    load_dotenv()
    load_dotenv(Path.home() / ".canvas-notion" / ".env")

    kwargs: dict[str, object] = {}

    # Realtime Database URL (required)
    database_url = overrides.get("firebase_database_url") or os.getenv("FIREBASE_DATABASE_URL")
    if not database_url:
        raise ValueError(
            "FIREBASE_DATABASE_URL is required. Set it in .env or as an environment variable."
        )
    kwargs["firebase_database_url"] = database_url

    api_key = overrides.get("firebase_api_key") or os.getenv("FIREBASE_API_KEY")
    if api_key:
        kwargs["firebase_api_key"] = api_key

    secret = overrides.get("firebase_database_secret") or os.getenv("FIREBASE_DATABASE_SECRET")
    if secret:
        kwargs["firebase_database_secret"] = secret

    # Notion OAuth app
    for field_name, env_name in (
        ("notion_client_id", "NOTION_CLIENT_ID"),
        ("notion_client_secret", "NOTION_CLIENT_SECRET"),
        ("notion_redirect_uri", "NOTION_REDIRECT_URI"),
    ):
        value = overrides.get(field_name) or os.getenv(env_name)
        if value:
            kwargs[field_name] = value

    # Notion request policy
    timeout = os.getenv("CANVAS_NOTION_NOTION_TIMEOUT_SECONDS")
    if timeout is not None:
        kwargs["notion_timeout_seconds"] = float(timeout)

    max_retries = os.getenv("CANVAS_NOTION_NOTION_MAX_RETRIES")
    if max_retries is not None:
        kwargs["notion_max_retries"] = int(max_retries)

    backoff_base = os.getenv("CANVAS_NOTION_NOTION_BACKOFF_BASE_SECONDS")
    if backoff_base is not None:
        kwargs["notion_backoff_base_seconds"] = float(backoff_base)

    backoff_cap = os.getenv("CANVAS_NOTION_NOTION_BACKOFF_CAP_SECONDS")
    if backoff_cap is not None:
        kwargs["notion_backoff_cap_seconds"] = float(backoff_cap)

    # Web server
    host = overrides.get("web_host") or os.getenv("CANVAS_NOTION_WEB_HOST")
    if host:
        kwargs["web_host"] = host

    port = overrides.get("web_port") or os.getenv("CANVAS_NOTION_WEB_PORT")
    if port:
        kwargs["web_port"] = int(port)

    return Config(**kwargs)

"""Thin async Notion API client used by the sync and compare engines."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

from canvas_notion.config import Config
from canvas_notion.errors import NotionAPIError

NOTION_API_BASE = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"
NOTION_OAUTH_TOKEN_URL = f"{NOTION_API_BASE}/oauth/token"

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def read_plain_text(items: list[dict[str, Any]]) -> str:
    parts: list[str] = []
    for item in items or []:
        pt = item.get("plain_text", "")
        if not pt:
            pt = item.get("text", {}).get("content", "")
        parts.append(pt)
    return "".join(parts)


def to_rich_text(text: str) -> list[dict[str, Any]]:
    return [{"type": "text", "text": {"content": text or ""}}]


def _parse_retry_after_seconds(value: str | None) -> float | None:
    if not value:
        return None

    stripped = value.strip()
    try:
        return max(0.0, float(stripped))
    except ValueError:
        pass

    try:
        retry_at = parsedate_to_datetime(stripped)
        if retry_at is None:
            return None
        if retry_at.tzinfo is None:
            retry_at = retry_at.replace(tzinfo=timezone.utc)
        return max(0.0, (retry_at - _utc_now()).total_seconds())
    except (TypeError, ValueError):
        return None


def _compute_backoff_delay(attempt: int, base_seconds: float, cap_seconds: float) -> float:
    exp = min(cap_seconds, base_seconds * (2**attempt))
    return max(0.0, min(cap_seconds, exp * random.uniform(0.8, 1.2)))


def _error_from_response(response: httpx.Response, request_label: str) -> NotionAPIError:
    code = None
    detail = response.text.strip()
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        code = body.get("code")
        detail = body.get("message") or detail
    if len(detail) > 1000:
        detail = detail[:1000] + "...(truncated)"
    return NotionAPIError(
        response.status_code,
        request_label,
        detail,
        code=code,
        request_id=response.headers.get("x-request-id"),
    )


# ---------------------------------------------------------------------------
# Response decoding
# ---------------------------------------------------------------------------


@dataclass
class NotionResource:
    """Normalized view of a page, database or block returned by Notion.

    ``kind`` is ``"page"`` or ``"database"`` for both top-level objects and
    ``child_page`` / ``child_database`` blocks; any other block keeps its
    block type.
    """

    id: str
    kind: str
    title: str
    icon: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "type": self.kind, "title": self.title, "icon": self.icon}


def _decode_icon(icon: dict[str, Any] | None) -> str | None:
    if not icon:
        return None
    icon_type = icon.get("type")
    if icon_type == "emoji":
        return icon.get("emoji")
    if icon_type in ("external", "file"):
        return icon.get(icon_type, {}).get("url")
    return None


def _page_title(page: dict[str, Any]) -> str:
    for prop in page.get("properties", {}).values():
        if isinstance(prop, dict) and prop.get("type") == "title":
            return read_plain_text(prop.get("title", []))
    return ""


def decode_resource(item: dict[str, Any]) -> NotionResource:
    """Decode any Notion object into a :class:`NotionResource`."""
    obj = item.get("object")
    icon = _decode_icon(item.get("icon"))

    if obj == "database":
        title = read_plain_text(item.get("title", [])) or "Untitled"
        return NotionResource(id=item["id"], kind="database", title=title, icon=icon)

    if obj == "page":
        return NotionResource(id=item["id"], kind="page", title=_page_title(item) or "Untitled", icon=icon)

    block_type = item.get("type", "")
    if block_type == "child_database":
        title = item.get("child_database", {}).get("title", "")
        return NotionResource(id=item["id"], kind="database", title=title, icon=icon)
    if block_type == "child_page":
        title = item.get("child_page", {}).get("title", "")
        return NotionResource(id=item["id"], kind="page", title=title, icon=icon)
    return NotionResource(id=item["id"], kind=block_type or "block", title="", icon=icon)


def title_property_text(page: dict[str, Any], name: str) -> str:
    prop = page.get("properties", {}).get(name, {})
    if prop.get("type", "title") != "title":
        return ""
    return read_plain_text(prop.get("title", []))


def url_property_value(page: dict[str, Any], name: str) -> str | None:
    prop = page.get("properties", {}).get(name, {})
    if prop.get("type", "url") != "url":
        return None
    return prop.get("url")


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class NotionClient:
    """Thin async Notion API client for the sync use-cases."""

    def __init__(
        self,
        token: str,
        *,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_base_seconds: float = 1.0,
        backoff_cap_seconds: float = 30.0,
        api_base: str = NOTION_API_BASE,
        notion_version: str = NOTION_VERSION,
    ) -> None:
        self.token = token
        self.timeout = timeout
        self.max_retries = max(0, max_retries)
        self.backoff_base_seconds = max(0.0, backoff_base_seconds)
        self.backoff_cap_seconds = max(0.0, backoff_cap_seconds)
        self.api_base = api_base.rstrip("/")
        self.notion_version = notion_version

    @classmethod
    def from_config(cls, config: Config, token: str) -> "NotionClient":
        return cls(
            token,
            timeout=config.notion_timeout_seconds,
            max_retries=config.notion_max_retries,
            backoff_base_seconds=config.notion_backoff_base_seconds,
            backoff_cap_seconds=config.notion_backoff_cap_seconds,
        )

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Notion-Version": self.notion_version,
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_payload: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self.api_base}{path}"
        request_label = f"{method} {path}"
        total_attempts = self.max_retries + 1

        for attempt in range(total_attempts):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(
                        method,
                        url,
                        headers=self._headers,
                        json=json_payload,
                        params=params,
                    )
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                if attempt == self.max_retries:
                    raise
                delay = _compute_backoff_delay(
                    attempt, self.backoff_base_seconds, self.backoff_cap_seconds
                )
                logger.warning(
                    "Notion %s failed (%s), retry %d/%d in %.1fs",
                    request_label,
                    exc.__class__.__name__,
                    attempt + 1,
                    total_attempts,
                    delay,
                )
                await asyncio.sleep(delay)
                continue

            retryable = response.status_code == 429 or 500 <= response.status_code < 600
            if retryable and attempt < self.max_retries:
                delay = None
                if response.status_code == 429:
                    delay = _parse_retry_after_seconds(response.headers.get("Retry-After"))
                if delay is None:
                    delay = _compute_backoff_delay(
                        attempt, self.backoff_base_seconds, self.backoff_cap_seconds
                    )
                logger.warning(
                    "Notion %s returned %d, retry %d/%d in %.1fs",
                    request_label,
                    response.status_code,
                    attempt + 1,
                    total_attempts,
                    delay,
                )
                await asyncio.sleep(delay)
                continue

            if response.is_error:
                raise _error_from_response(response, request_label)

            if response.content:
                return response.json()
            return {}

        raise RuntimeError("Unreachable: Notion retry loop exited without response")

    async def _paginate(
        self,
        method: str,
        path: str,
        *,
        json_payload: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        results: list[dict[str, Any]] = []
        cursor: str | None = None
        while True:
            if method == "GET":
                params: dict[str, Any] = {"page_size": 100}
                if cursor:
                    params["start_cursor"] = cursor
                data = await self._request(method, path, params=params)
            else:
                payload: dict[str, Any] = {**(json_payload or {}), "page_size": 100}
                if cursor:
                    payload["start_cursor"] = cursor
                data = await self._request(method, path, json_payload=payload)
            results.extend(data.get("results", []))
            if not data.get("has_more"):
                break
            cursor = data.get("next_cursor")
        return results

    async def retrieve_page(self, page_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/pages/{page_id}")

    async def list_children(self, block_id: str) -> list[NotionResource]:
        blocks = await self._paginate("GET", f"/blocks/{block_id}/children")
        return [decode_resource(block) for block in blocks]

    async def create_database(
        self,
        *,
        parent_page_id: str,
        title: str,
        properties: dict[str, Any],
        is_inline: bool = False,
    ) -> str:
        payload = {
            "parent": {"type": "page_id", "page_id": parent_page_id},
            "is_inline": is_inline,
            "title": to_rich_text(title),
            "properties": properties,
        }
        database = await self._request("POST", "/databases", json_payload=payload)
        return database["id"]

    async def query_database(
        self,
        database_id: str,
        *,
        filter_spec: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        payload = {"filter": filter_spec} if filter_spec else None
        return await self._paginate(
            "POST", f"/databases/{database_id}/query", json_payload=payload
        )

    async def create_page(self, *, database_id: str, properties: dict[str, Any]) -> str:
        payload = {
            "parent": {"database_id": database_id},
            "properties": properties,
        }
        page = await self._request("POST", "/pages", json_payload=payload)
        return page["id"]

    async def search(self) -> list[NotionResource]:
        items = await self._paginate("POST", "/search", json_payload={})
        return [decode_resource(item) for item in items]


@dataclass
class OAuthGrant:
    access_token: str
    workspace_id: str | None = None
    workspace_name: str | None = None


async def exchange_oauth_code(config: Config, code: str) -> OAuthGrant:
    """Exchange a Notion OAuth authorization code for an access token."""
    if not config.oauth_configured:
        raise ValueError(
            "NOTION_CLIENT_ID, NOTION_CLIENT_SECRET and NOTION_REDIRECT_URI are required "
            "for the Notion token exchange."
        )

    async with httpx.AsyncClient(timeout=config.notion_timeout_seconds) as client:
        response = await client.post(
            NOTION_OAUTH_TOKEN_URL,
            json={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": config.notion_redirect_uri,
            },
            auth=(config.notion_client_id, config.notion_client_secret),
            headers={"Notion-Version": NOTION_VERSION},
        )
    if response.is_error:
        raise _error_from_response(response, "POST /oauth/token")

    data = response.json()
    return OAuthGrant(
        access_token=data["access_token"],
        workspace_id=data.get("workspace_id"),
        workspace_name=data.get("workspace_name"),
    )

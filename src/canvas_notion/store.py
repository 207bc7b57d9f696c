"""Firebase Realtime Database access and user record operations."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from canvas_notion.config import Config
from canvas_notion.errors import StoreError
from canvas_notion.models import SyncStatus, UserRecord, utc_now

logger = logging.getLogger(__name__)

USERS_ROOT = "users"


class RealtimeDatabase:
    """Tree-structured JSON store reached over the Realtime Database REST API.

    Paths are slash separated and relative to the database root, e.g.
    ``users/abc123/syncStatus``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        auth_token: str | None = None,
        timeout: float = 15.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: Config) -> "RealtimeDatabase":
        return cls(
            config.database_root,
            auth_token=config.firebase_database_secret,
            timeout=config.firebase_timeout_seconds,
        )

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.strip('/')}.json"

    def _params(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        params: dict[str, str] = {}
        if self.auth_token:
            params["auth"] = self.auth_token
        if extra:
            params.update(extra)
        return params

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_payload: Any = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.request(
                method,
                self._url(path),
                params=self._params(params),
                json=json_payload,
            )
        if response.is_error:
            detail = response.text.strip()
            if len(detail) > 500:
                detail = detail[:500] + "...(truncated)"
            raise StoreError(
                f"Realtime Database error {response.status_code} on {method} {path}: {detail}"
            )
        if response.content:
            return response.json()
        return None

    async def get(self, path: str) -> Any:
        return await self._request("GET", path)

    async def set(self, path: str, value: Any) -> None:
        await self._request("PUT", path, json_payload=value)

    async def update(self, path: str, values: dict[str, Any]) -> None:
        """Merge ``values`` into the node at ``path``; ``None`` values delete children."""
        await self._request("PATCH", path, json_payload=values)

    async def remove(self, path: str) -> None:
        await self._request("DELETE", path)

    async def find_by_child(self, path: str, child: str, value: str) -> dict[str, Any]:
        """Equality query over an indexed child field, keyed by node id."""
        data = await self._request(
            "GET",
            path,
            params={"orderBy": json.dumps(child), "equalTo": json.dumps(value)},
        )
        return data or {}


def _user_path(user_id: str, *parts: str) -> str:
    return "/".join([USERS_ROOT, user_id, *parts])


class UserStore:
    """Typed reads and writes of user records."""

    def __init__(self, db: RealtimeDatabase) -> None:
        self.db = db

    async def find_by_email(self, email: str) -> UserRecord | None:
        """Look up a user by email. If several records match, the first wins."""
        matches = await self.db.find_by_child(USERS_ROOT, "email", email)
        for user_id, data in matches.items():
            if isinstance(data, dict):
                return UserRecord.model_validate({**data, "user_id": user_id})
        return None

    async def get_user(self, user_id: str) -> UserRecord | None:
        data = await self.db.get(_user_path(user_id))
        if not isinstance(data, dict):
            return None
        return UserRecord.model_validate({**data, "user_id": user_id})

    async def store_notion_connection(
        self,
        user_id: str,
        *,
        access_token: str,
        workspace_id: str | None,
        page_ids: list[dict[str, Any]],
    ) -> None:
        await self.db.update(
            _user_path(user_id),
            {
                "accessToken": access_token,
                "workspaceId": workspace_id,
                "pageIDs": page_ids,
                "lastUpdated": utc_now().isoformat(),
            },
        )

    async def clear_notion_connection(self, user_id: str) -> None:
        await self.db.update(
            _user_path(user_id),
            {
                "accessToken": None,
                "workspaceId": None,
                "pageIDs": None,
                "lastUpdated": utc_now().isoformat(),
            },
        )

    async def set_sync_status(self, user_id: str, status: SyncStatus) -> None:
        await self.db.set(_user_path(user_id, "syncStatus"), status.to_store())

    async def get_sync_status(self, user_id: str) -> SyncStatus | None:
        data = await self.db.get(_user_path(user_id, "syncStatus"))
        if not isinstance(data, dict) or "status" not in data:
            return None
        return SyncStatus.model_validate(data)

    async def get_profile(self, user_id: str) -> dict[str, Any]:
        data = await self.db.get(_user_path(user_id, "profile"))
        return data if isinstance(data, dict) else {}

    async def update_profile(self, user_id: str, fields: dict[str, Any]) -> None:
        allowed = {k: v for k, v in fields.items() if k not in ("email", "uid")}
        if allowed:
            await self.db.update(_user_path(user_id, "profile"), allowed)

    async def delete_user(self, user_id: str) -> None:
        await self.db.remove(_user_path(user_id))

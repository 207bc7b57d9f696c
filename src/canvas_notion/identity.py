"""Bearer token verification against Firebase Authentication."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from canvas_notion.config import Config
from canvas_notion.errors import AuthenticationError

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"

logger = logging.getLogger(__name__)


@dataclass
class Identity:
    uid: str
    email: str | None
    display_name: str | None = None


def parse_bearer(header: str | None) -> str | None:
    """Return the token from an ``Authorization: Bearer <token>`` header."""
    if not header or not header.startswith("Bearer "):
        return None
    token = header[len("Bearer "):].strip()
    return token or None


class FirebaseIdentityVerifier:
    """Resolves Firebase ID tokens to user identities via the Identity Toolkit API."""

    def __init__(
        self,
        api_key: str,
        *,
        api_base: str = IDENTITY_TOOLKIT_URL,
        timeout: float = 15.0,
    ) -> None:
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: Config) -> "FirebaseIdentityVerifier":
        if not config.firebase_api_key:
            raise ValueError("FIREBASE_API_KEY is required for token verification.")
        return cls(config.firebase_api_key, timeout=config.firebase_timeout_seconds)

    async def _post(self, action: str, id_token: str) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(
                f"{self.api_base}/accounts:{action}",
                params={"key": self.api_key},
                json={"idToken": id_token},
            )

    async def verify(self, id_token: str) -> Identity | None:
        """Return the identity behind ``id_token``, or ``None`` if it is not valid."""
        response = await self._post("lookup", id_token)
        if response.status_code in (400, 401, 403):
            logger.info("Rejected ID token (%d)", response.status_code)
            return None
        response.raise_for_status()

        users = response.json().get("users") or []
        if not users:
            return None
        user = users[0]
        return Identity(
            uid=user["localId"],
            email=user.get("email"),
            display_name=user.get("displayName"),
        )

    async def require(self, authorization: str | None) -> Identity:
        token = parse_bearer(authorization)
        if token is None:
            raise AuthenticationError("Authentication required")
        identity = await self.verify(token)
        if identity is None:
            raise AuthenticationError("Invalid token")
        return identity

    async def delete_account(self, id_token: str) -> None:
        response = await self._post("delete", id_token)
        response.raise_for_status()

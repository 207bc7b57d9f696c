"""JSON routes for the browser extension and the dashboard."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Header
from fastapi.responses import JSONResponse

from canvas_notion.errors import UserNotFoundError
from canvas_notion.models import (
    DeleteAccountRequest,
    EmailRequest,
    SyncRequest,
    TokenExchangeRequest,
    utc_now,
)
from canvas_notion.service import SyncService


def create_router(service: SyncService) -> APIRouter:
    """Create the router with all service endpoints."""
    router = APIRouter()

    @router.get("/health")
    async def health():
        return {"status": "ok", "timestamp": utc_now().isoformat()}

    # -- Notion sync -------------------------------------------------------

    @router.post("/notion/sync", status_code=202)
    async def notion_sync(req: SyncRequest):
        """Accept a sync and run it in the background; poll the status route for the outcome."""
        return await service.trigger_sync(req)

    @router.post("/notion/compare")
    async def notion_compare(req: SyncRequest):
        """List the Canvas assignments not yet in Notion, grouped by course."""
        comparison = await service.compare(req)
        return {"success": True, "comparison": comparison}

    @router.get("/notion/sync/status")
    async def notion_sync_status(email: str | None = None):
        status = await service.get_sync_status(email)
        return {"success": True, "syncStatus": status}

    # -- Notion connection -------------------------------------------------

    @router.get("/notion/connected")
    async def notion_connected(email: str | None = None):
        try:
            connected = await service.connected(email)
        except UserNotFoundError as exc:
            return JSONResponse(
                status_code=exc.status_code,
                content={"success": False, "connected": False, "error": str(exc)},
            )
        return {"success": True, "connected": connected}

    @router.post("/notion/disconnect")
    async def notion_disconnect(req: EmailRequest):
        await service.disconnect(req.email)
        return {"success": True, "connected": False}

    @router.post("/notion/token")
    async def notion_token(req: TokenExchangeRequest):
        """Exchange a Notion OAuth code and store the token for the user."""
        await service.exchange_token(req.code, req.email)
        return {"success": True, "message": "Notion token stored successfully"}

    # -- Users ---------------------------------------------------------------

    @router.get("/users/profile")
    async def get_profile(authorization: str | None = Header(None)):
        identity = await service.authenticate(authorization)
        profile = await service.get_profile(identity)
        return {"success": True, "profile": profile}

    @router.put("/users/profile")
    async def update_profile(
        fields: dict[str, Any] = Body(...),
        authorization: str | None = Header(None),
    ):
        identity = await service.authenticate(authorization)
        await service.update_profile(identity, fields)
        return {"success": True, "message": "Profile updated successfully"}

    @router.get("/users/info")
    async def user_info(authorization: str | None = Header(None)):
        identity = await service.authenticate(authorization)
        return service.user_info(identity)

    # -- Auth ----------------------------------------------------------------

    @router.post("/auth/delete-account")
    async def delete_account(req: DeleteAccountRequest):
        await service.delete_account(req.id_token)
        return {"message": "Account deleted successfully"}

    return router

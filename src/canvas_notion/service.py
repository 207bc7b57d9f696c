"""Use-cases behind the HTTP routes and the CLI."""

from __future__ import annotations

import logging
from typing import Any

from canvas_notion.config import Config
from canvas_notion.errors import (
    NotConnectedError,
    NotFoundError,
    SyncDispatchError,
    SyncInProgressError,
    UserNotFoundError,
    ValidationError,
)
from canvas_notion.identity import FirebaseIdentityVerifier, Identity
from canvas_notion.models import (
    BackgroundSyncRequest,
    SyncRequest,
    SyncState,
    SyncStatus,
    UserRecord,
)
from canvas_notion.notion import NotionClient, exchange_oauth_code
from canvas_notion.status import SyncStatusTracker, describe_status, status_payload
from canvas_notion.store import RealtimeDatabase, UserStore
from canvas_notion.sync import (
    NotionClientFactory,
    SyncReport,
    compare_with_notion,
    run_background_sync,
)
from canvas_notion.tasks import SyncTaskRunner, TaskAlreadyRunningError

logger = logging.getLogger(__name__)


def _require(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field} is required")
    return value.strip()


class SyncService:
    """Sync triggering, connection management and account operations for one deployment."""

    def __init__(
        self,
        config: Config,
        *,
        users: UserStore,
        client_factory: NotionClientFactory,
        runner: SyncTaskRunner,
        verifier: FirebaseIdentityVerifier | None = None,
    ) -> None:
        self.config = config
        self.users = users
        self.client_factory = client_factory
        self.runner = runner
        self.verifier = verifier
        self.tracker = SyncStatusTracker(users)

    @classmethod
    def from_config(cls, config: Config) -> "SyncService":
        verifier = None
        if config.firebase_api_key:
            verifier = FirebaseIdentityVerifier.from_config(config)
        return cls(
            config,
            users=UserStore(RealtimeDatabase.from_config(config)),
            client_factory=lambda token: NotionClient.from_config(config, token),
            runner=SyncTaskRunner(),
            verifier=verifier,
        )

    async def _user_by_email(self, email: str | None) -> UserRecord:
        email = _require(email, "Email")
        user = await self.users.find_by_email(email)
        if user is None:
            raise UserNotFoundError(email)
        return user

    def _require_verifier(self) -> FirebaseIdentityVerifier:
        if self.verifier is None:
            raise ValueError("FIREBASE_API_KEY is required for authenticated routes.")
        return self.verifier

    # -- sync -------------------------------------------------------------

    async def _accept(self, request: SyncRequest) -> tuple[BackgroundSyncRequest, SyncStatus]:
        """Validate a sync request, refuse overlapping runs and record it as pending."""
        email = _require(request.email, "Email")
        page_id = _require(request.page_id, "Page ID")

        user = await self._user_by_email(email)
        if not user.access_token:
            raise NotConnectedError()

        if self.runner.is_running((user.user_id, page_id)):
            raise SyncInProgressError(page_id)

        pending = await self.tracker.set_pending(
            user.user_id,
            total_assignments=len(request.assignments),
            total_courses=len(request.courses),
        )
        job = BackgroundSyncRequest(
            email=email,
            page_id=page_id,
            courses=request.courses,
            assignments=request.assignments,
            user_id=user.user_id,
        )
        return job, pending

    async def _run(self, job: BackgroundSyncRequest) -> SyncReport | None:
        return await run_background_sync(
            job,
            users=self.users,
            tracker=self.tracker,
            client_factory=self.client_factory,
        )

    async def trigger_sync(self, request: SyncRequest) -> dict[str, Any]:
        """Accept a sync, mark it pending, and schedule the run in the background."""
        job, pending = await self._accept(request)

        try:
            self.runner.submit((job.user_id, job.page_id), lambda: self._run(job))
        except TaskAlreadyRunningError as exc:
            raise SyncInProgressError(job.page_id) from exc
        except Exception as exc:
            logger.exception("Failed to schedule sync for user %s", job.user_id)
            message = f"Failed to start sync: {exc}"
            try:
                await self.tracker.set_error(job.user_id, message)
            except Exception:
                logger.exception("Could not record dispatch failure for user %s", job.user_id)
            raise SyncDispatchError(message) from exc

        return {
            "success": True,
            "message": describe_status(pending),
            "info": {
                "totalAssignments": len(request.assignments),
                "totalCourses": len(request.courses),
                "syncStatus": SyncState.PENDING.value,
                "startedAt": pending.started_at.isoformat(),
            },
        }

    async def run_sync(self, request: SyncRequest) -> SyncReport | None:
        """Run a sync in the foreground, recording its status like a background run.

        Returns ``None`` when the run failed; the error is in the stored status.
        """
        job, _ = await self._accept(request)
        return await self._run(job)

    async def compare(self, request: SyncRequest) -> dict[str, Any]:
        email = _require(request.email, "Email")
        page_id = _require(request.page_id, "Page ID")
        await self._user_by_email(email)

        return await compare_with_notion(
            users=self.users,
            client_factory=self.client_factory,
            email=email,
            page_id=page_id,
            courses=request.courses,
            assignments=request.assignments,
        )

    async def get_sync_status(self, email: str | None) -> dict[str, Any]:
        user = await self._user_by_email(email)
        status = await self.tracker.get(user.user_id)
        if status is None:
            raise NotFoundError("No sync status found")
        return status_payload(status)

    # -- connection -------------------------------------------------------

    async def connected(self, email: str | None) -> bool:
        user = await self._user_by_email(email)
        return user.connected

    async def disconnect(self, email: str | None) -> None:
        user = await self._user_by_email(email)
        await self.users.clear_notion_connection(user.user_id)
        logger.info("Disconnected Notion for user %s", user.user_id)

    async def exchange_token(self, code: str | None, email: str | None) -> None:
        """Complete the Notion OAuth flow and cache the resources the grant can see."""
        code = _require(code, "Code")
        user = await self._user_by_email(email)

        grant = await exchange_oauth_code(self.config, code)
        resources = await self.client_factory(grant.access_token).search()
        await self.users.store_notion_connection(
            user.user_id,
            access_token=grant.access_token,
            workspace_id=grant.workspace_id,
            page_ids=[resource.to_dict() for resource in resources],
        )
        logger.info(
            "Stored Notion token for user %s (%d resources shared)",
            user.user_id,
            len(resources),
        )

    # -- account ----------------------------------------------------------

    async def authenticate(self, authorization: str | None) -> Identity:
        return await self._require_verifier().require(authorization)

    async def get_profile(self, identity: Identity) -> dict[str, Any]:
        return await self.users.get_profile(identity.uid)

    async def update_profile(self, identity: Identity, fields: dict[str, Any]) -> None:
        await self.users.update_profile(identity.uid, fields)

    def user_info(self, identity: Identity) -> dict[str, Any]:
        return {
            "uid": identity.uid,
            "email": identity.email,
            "displayName": identity.display_name,
        }

    async def delete_account(self, id_token: str | None) -> None:
        """Remove the user's data and their Firebase Auth account."""
        id_token = _require(id_token, "ID token")
        verifier = self._require_verifier()
        identity = await verifier.require(f"Bearer {id_token}")

        try:
            await self.users.delete_user(identity.uid)
        except Exception:
            logger.exception("Failed to delete data for user %s, continuing", identity.uid)

        await verifier.delete_account(id_token)
        logger.info("Deleted account %s", identity.uid)

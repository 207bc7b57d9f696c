"""Sync status tracking for background runs."""

from __future__ import annotations

from typing import Any

from canvas_notion.models import SyncResults, SyncState, SyncStatus, utc_now
from canvas_notion.store import UserStore

UNKNOWN_ERROR_MESSAGE = "An unknown error occurred."


def describe_status(status: SyncStatus) -> str:
    """Human readable message for a stored status."""
    if status.status == SyncState.PENDING:
        return "Sync in progress..."
    if status.status == SyncState.COMPLETE:
        results = status.results or SyncResults()
        return (
            f"Sync complete: {results.new_assignments_created} new assignments created, "
            f"{results.skipped_assignments} already in Notion, "
            f"{results.courses_created} courses created."
        )
    return f"Sync failed: {status.error or UNKNOWN_ERROR_MESSAGE}"


def status_payload(status: SyncStatus) -> dict[str, Any]:
    """Stored status fields plus the derived ``message``."""
    return {**status.to_store(), "message": describe_status(status)}


class SyncStatusTracker:
    """Persists the ``pending -> complete | error`` state of a user's latest run.

    Every write replaces the whole status object.
    """

    def __init__(self, users: UserStore) -> None:
        self.users = users

    async def set_pending(
        self,
        user_id: str,
        *,
        total_assignments: int,
        total_courses: int,
    ) -> SyncStatus:
        status = SyncStatus(
            status=SyncState.PENDING,
            started_at=utc_now(),
            total_assignments=total_assignments,
            total_courses=total_courses,
        )
        await self.users.set_sync_status(user_id, status)
        return status

    async def set_complete(self, user_id: str, results: SyncResults) -> SyncStatus:
        status = SyncStatus(
            status=SyncState.COMPLETE,
            results=results,
            completed_at=utc_now(),
        )
        await self.users.set_sync_status(user_id, status)
        return status

    async def set_error(self, user_id: str, message: str | None) -> SyncStatus:
        status = SyncStatus(
            status=SyncState.ERROR,
            error=message or UNKNOWN_ERROR_MESSAGE,
            error_at=utc_now(),
        )
        await self.users.set_sync_status(user_id, status)
        return status

    async def get(self, user_id: str) -> SyncStatus | None:
        return await self.users.get_sync_status(user_id)

"""Data models for Canvas to Notion.

Wire and store payloads use the camelCase keys the browser extension sends,
so models declare aliases and are dumped with ``by_alias=True``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyncState(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    ERROR = "error"


class Course(BaseModel):
    """A Canvas course. Matched against Notion by exact ``name``."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    name: str


class Assignment(BaseModel):
    """A Canvas assignment. Matched against Notion by trimmed ``html_url``."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    name: str
    due_at: str | None = None
    points_possible: float | None = None
    html_url: str
    course_id: str = Field(alias="courseId")

    @property
    def url_key(self) -> str:
        return self.html_url.strip()


class NotionPageRef(BaseModel):
    """Cached snapshot entry of a Notion resource the integration can see."""

    id: str
    type: str
    title: str = "Untitled"
    icon: str | None = None


class SyncResults(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    courses_created: int = Field(0, alias="coursesCreated")
    total_assignments: int = Field(0, alias="totalAssignments")
    new_assignments_created: int = Field(0, alias="newAssignmentsCreated")
    skipped_assignments: int = Field(0, alias="skippedAssignments")
    failed_assignments: int = Field(0, alias="failedAssignments")


class SyncStatus(BaseModel):
    """Stored state of the latest sync run for a user.

    Only the fields belonging to the current ``status`` are populated:
    pending carries the start time and totals, complete carries ``results``,
    error carries the message.
    """

    model_config = ConfigDict(populate_by_name=True)

    status: SyncState
    started_at: datetime | None = Field(None, alias="startedAt")
    total_assignments: int | None = Field(None, alias="totalAssignments")
    total_courses: int | None = Field(None, alias="totalCourses")
    results: SyncResults | None = None
    completed_at: datetime | None = Field(None, alias="completedAt")
    error: str | None = None
    error_at: datetime | None = Field(None, alias="errorAt")

    def to_store(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class UserRecord(BaseModel):
    """A user entry under ``users/{user_id}`` in the Realtime Database."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str
    email: str | None = None
    display_name: str | None = Field(None, alias="displayName")
    access_token: str | None = Field(None, alias="accessToken")
    workspace_id: str | None = Field(None, alias="workspaceId")
    page_ids: list[NotionPageRef] = Field(default_factory=list, alias="pageIDs")
    sync_status: SyncStatus | None = Field(None, alias="syncStatus")
    profile: dict = Field(default_factory=dict)
    created_at: str | None = Field(None, alias="createdAt")
    last_updated: str | None = Field(None, alias="lastUpdated")

    @property
    def connected(self) -> bool:
        return bool(self.access_token)


class SyncRequest(BaseModel):
    """Payload for triggering a sync or a compare."""

    model_config = ConfigDict(populate_by_name=True)

    email: str
    page_id: str = Field(alias="pageId")
    courses: list[Course]
    assignments: list[Assignment]


class BackgroundSyncRequest(SyncRequest):
    """Payload handed to a background run: the trigger payload plus the store key."""

    user_id: str = Field(alias="userId")


class EmailRequest(BaseModel):
    email: str


class TokenExchangeRequest(BaseModel):
    code: str
    email: str


class DeleteAccountRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id_token: str = Field(alias="idToken")

"""One-way Canvas to Notion reconciliation.

A run locates (or creates) the ``Courses`` and ``Assignments`` databases
under a parent page, snapshots what already exists there, and creates only
the missing course and assignment pages. Courses are matched by exact title,
assignments by trimmed URL.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from canvas_notion.errors import NoPageAccessError, NotConnectedError, NotionAPIError
from canvas_notion.models import Assignment, BackgroundSyncRequest, Course, SyncResults
from canvas_notion.notion import (
    NotionClient,
    title_property_text,
    to_rich_text,
    url_property_value,
)
from canvas_notion.status import SyncStatusTracker
from canvas_notion.store import UserStore

COURSES_DB_TITLE = "Courses"
ASSIGNMENTS_DB_TITLE = "Assignments"
DEFAULT_ASSIGNMENT_STATUS = "Not Started"
UNKNOWN_COURSE = "Unknown Course"
COURSE_NOT_FOUND = "Related course not found"

NotionClientFactory = Callable[[str], NotionClient]

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _format_due_date(due_at: str | None) -> dict[str, Any] | None:
    """Normalise a Canvas ``due_at`` into a Notion date value (UTC, ISO-8601)."""
    if not due_at:
        return None
    parsed = datetime.fromisoformat(due_at.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return {"start": parsed.astimezone(timezone.utc).isoformat()}


# ---------------------------------------------------------------------------
# Target schema
# ---------------------------------------------------------------------------


def courses_schema() -> dict[str, Any]:
    return {"Name": {"title": {}}}


def assignments_schema(courses_db_id: str) -> dict[str, Any]:
    return {
        "Name": {"title": {}},
        "DueDate": {"date": {}},
        "Points": {"number": {}},
        "URL": {"url": {}},
        "Status": {
            "select": {
                "options": [
                    {"name": "Not Started", "color": "red"},
                    {"name": "In Progress", "color": "yellow"},
                    {"name": "Done", "color": "green"},
                ]
            }
        },
        "Course": {
            "relation": {
                "database_id": courses_db_id,
                "type": "single_property",
                "single_property": {},
            }
        },
    }


def course_properties(name: str) -> dict[str, Any]:
    return {"Name": {"title": to_rich_text(name)}}


def assignment_properties(assignment: Assignment, course_page_id: str) -> dict[str, Any]:
    points = assignment.points_possible if assignment.points_possible is not None else 0
    return {
        "Name": {"title": to_rich_text(assignment.name)},
        "DueDate": {"date": _format_due_date(assignment.due_at)},
        "Points": {"number": points},
        "URL": {"url": assignment.html_url},
        "Status": {"select": {"name": DEFAULT_ASSIGNMENT_STATUS}},
        "Course": {"relation": [{"id": course_page_id}]},
    }


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class ItemOutcome(str, Enum):
    CREATED = "created"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ItemResult:
    assignment: str
    outcome: ItemOutcome
    url: str | None = None
    page_id: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome != ItemOutcome.FAILED

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "assignment": self.assignment,
            "outcome": self.outcome.value,
            "success": self.success,
        }
        if self.url:
            data["url"] = self.url
        if self.page_id:
            data["pageId"] = self.page_id
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class Containers:
    courses_db_id: str | None = None
    assignments_db_id: str | None = None


@dataclass
class SyncReport:
    page_id: str
    courses_db_id: str | None = None
    assignments_db_id: str | None = None
    databases_created: list[str] = field(default_factory=list)
    existing_course_count: int = 0
    course_page_ids: dict[str, str] = field(default_factory=dict)
    items: list[ItemResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=_utc_now)
    finished_at: datetime | None = None

    def _count(self, outcome: ItemOutcome) -> int:
        return sum(1 for item in self.items if item.outcome == outcome)

    @property
    def courses_created(self) -> int:
        return max(0, len(self.course_page_ids) - self.existing_course_count)

    @property
    def new_assignments_created(self) -> int:
        return self._count(ItemOutcome.CREATED)

    @property
    def skipped_assignments(self) -> int:
        return self._count(ItemOutcome.SKIPPED)

    @property
    def failed_assignments(self) -> int:
        return self._count(ItemOutcome.FAILED)

    def finalize(self) -> None:
        self.finished_at = _utc_now()

    def to_results(self) -> SyncResults:
        return SyncResults(
            courses_created=self.courses_created,
            total_assignments=len(self.items),
            new_assignments_created=self.new_assignments_created,
            skipped_assignments=self.skipped_assignments,
            failed_assignments=self.failed_assignments,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.to_results().model_dump(by_alias=True),
            "coursesDatabaseId": self.courses_db_id,
            "assignmentsDatabaseId": self.assignments_db_id,
            "databasesCreated": self.databases_created,
            "assignments": [item.to_dict() for item in self.items],
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
        }


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


async def connect_notion(
    users: UserStore,
    client_factory: NotionClientFactory,
    email: str,
) -> NotionClient:
    """Build a Notion client from the access token stored for ``email``."""
    user = await users.find_by_email(email)
    if user is None or not user.access_token:
        raise NotConnectedError()
    return client_factory(user.access_token)


async def _verify_page_access(client: NotionClient, page_id: str) -> None:
    try:
        await client.retrieve_page(page_id)
    except NotionAPIError as exc:
        logger.warning("No access to parent page %s: %s", page_id, exc)
        raise NoPageAccessError(page_id) from exc


async def _find_containers(client: NotionClient, page_id: str) -> Containers:
    containers = Containers()
    for child in await client.list_children(page_id):
        if child.kind != "database":
            continue
        if child.title == COURSES_DB_TITLE and containers.courses_db_id is None:
            containers.courses_db_id = child.id
        elif child.title == ASSIGNMENTS_DB_TITLE and containers.assignments_db_id is None:
            containers.assignments_db_id = child.id
    return containers


async def _ensure_containers(client: NotionClient, report: SyncReport) -> None:
    containers = await _find_containers(client, report.page_id)

    if containers.courses_db_id is None:
        logger.info("Creating %s database under %s", COURSES_DB_TITLE, report.page_id)
        containers.courses_db_id = await client.create_database(
            parent_page_id=report.page_id,
            title=COURSES_DB_TITLE,
            properties=courses_schema(),
            is_inline=False,
        )
        report.databases_created.append(COURSES_DB_TITLE)

    if containers.assignments_db_id is None:
        logger.info("Creating %s database under %s", ASSIGNMENTS_DB_TITLE, report.page_id)
        containers.assignments_db_id = await client.create_database(
            parent_page_id=report.page_id,
            title=ASSIGNMENTS_DB_TITLE,
            properties=assignments_schema(containers.courses_db_id),
            is_inline=True,
        )
        report.databases_created.append(ASSIGNMENTS_DB_TITLE)

    report.courses_db_id = containers.courses_db_id
    report.assignments_db_id = containers.assignments_db_id


async def _existing_course_names(client: NotionClient, courses_db_id: str) -> set[str]:
    names: set[str] = set()
    for page in await client.query_database(courses_db_id):
        title = title_property_text(page, "Name").strip()
        if title:
            names.add(title)
    return names


async def _existing_assignment_urls(client: NotionClient, assignments_db_id: str) -> set[str]:
    urls: set[str] = set()
    for page in await client.query_database(assignments_db_id):
        url = (url_property_value(page, "URL") or "").strip()
        if url:
            urls.add(url)
    return urls


async def _resolve_courses(
    client: NotionClient,
    courses: list[Course],
    report: SyncReport,
) -> None:
    existing = await _existing_course_names(client, report.courses_db_id)
    report.existing_course_count = len(existing)

    for course in courses:
        if course.name in existing:
            matches = await client.query_database(
                report.courses_db_id,
                filter_spec={"property": "Name", "title": {"equals": course.name}},
            )
            if matches:
                report.course_page_ids[course.name] = matches[0]["id"]
            else:
                logger.warning("Course %r listed in Notion but not found by title", course.name)
            continue

        logger.info("Creating course: %s", course.name)
        report.course_page_ids[course.name] = await client.create_page(
            database_id=report.courses_db_id,
            properties=course_properties(course.name),
        )


async def _sync_assignment(
    client: NotionClient,
    assignment: Assignment,
    course_page_id: str | None,
    assignments_db_id: str,
) -> ItemResult:
    if course_page_id is None:
        logger.info("Course not found for assignment: %s", assignment.name)
        return ItemResult(
            assignment=assignment.name,
            outcome=ItemOutcome.FAILED,
            url=assignment.url_key,
            error=COURSE_NOT_FOUND,
        )

    try:
        page_id = await client.create_page(
            database_id=assignments_db_id,
            properties=assignment_properties(assignment, course_page_id),
        )
    except Exception as exc:
        logger.error("Error creating assignment %s: %s", assignment.name, exc)
        return ItemResult(
            assignment=assignment.name,
            outcome=ItemOutcome.FAILED,
            url=assignment.url_key,
            error=str(exc) or exc.__class__.__name__,
        )
    return ItemResult(
        assignment=assignment.name,
        outcome=ItemOutcome.CREATED,
        url=assignment.url_key,
        page_id=page_id,
    )


# ---------------------------------------------------------------------------
# Engines
# ---------------------------------------------------------------------------


async def sync_to_notion(
    *,
    users: UserStore,
    client_factory: NotionClientFactory,
    email: str,
    page_id: str,
    courses: list[Course],
    assignments: list[Assignment],
) -> SyncReport:
    """Create the Canvas courses and assignments missing from the page's databases.

    Raises:
        NotConnectedError: If the user has no stored Notion token.
        NoPageAccessError: If the parent page cannot be read. Nothing is
            written in that case.
    """
    client = await connect_notion(users, client_factory, email)
    await _verify_page_access(client, page_id)

    report = SyncReport(page_id=page_id)
    await _ensure_containers(client, report)
    await _resolve_courses(client, courses, report)

    existing_urls = await _existing_assignment_urls(client, report.assignments_db_id)
    course_names = {course.id: course.name for course in courses}

    logger.info("Processing %d assignments", len(assignments))
    for assignment in assignments:
        if assignment.url_key in existing_urls:
            report.items.append(
                ItemResult(
                    assignment=assignment.name,
                    outcome=ItemOutcome.SKIPPED,
                    url=assignment.url_key,
                )
            )
            continue

        course_name = course_names.get(assignment.course_id)
        course_page_id = report.course_page_ids.get(course_name) if course_name else None
        report.items.append(
            await _sync_assignment(client, assignment, course_page_id, report.assignments_db_id)
        )

    report.finalize()
    logger.info(
        "Sync of page %s finished: %d created, %d skipped, %d failed",
        page_id,
        report.new_assignments_created,
        report.skipped_assignments,
        report.failed_assignments,
    )
    return report


async def compare_with_notion(
    *,
    users: UserStore,
    client_factory: NotionClientFactory,
    email: str,
    page_id: str,
    courses: list[Course],
    assignments: list[Assignment],
) -> dict[str, dict[str, list[dict[str, Any]]]]:
    """Group the assignments not yet in Notion by course name, without writing anything."""
    client = await connect_notion(users, client_factory, email)
    await _verify_page_access(client, page_id)

    containers = await _find_containers(client, page_id)
    existing_urls: set[str] = set()
    if containers.assignments_db_id is not None:
        existing_urls = await _existing_assignment_urls(client, containers.assignments_db_id)

    course_names = {course.id: course.name for course in courses}
    comparison: dict[str, dict[str, list[dict[str, Any]]]] = {}
    for assignment in assignments:
        if assignment.url_key in existing_urls:
            continue
        course_name = course_names.get(assignment.course_id, UNKNOWN_COURSE)
        group = comparison.setdefault(course_name, {"onlyInCanvas": []})
        group["onlyInCanvas"].append(assignment.model_dump(by_alias=True))
    return comparison


async def run_background_sync(
    request: BackgroundSyncRequest,
    *,
    users: UserStore,
    tracker: SyncStatusTracker,
    client_factory: NotionClientFactory,
) -> SyncReport | None:
    """Task body for an accepted sync: run it and record the terminal status."""
    logger.info(
        "Background sync started for user %s, page %s (%d courses, %d assignments)",
        request.user_id,
        request.page_id,
        len(request.courses),
        len(request.assignments),
    )
    try:
        report = await sync_to_notion(
            users=users,
            client_factory=client_factory,
            email=request.email,
            page_id=request.page_id,
            courses=request.courses,
            assignments=request.assignments,
        )
    except Exception as exc:
        logger.exception("Background sync failed for user %s", request.user_id)
        await tracker.set_error(request.user_id, str(exc))
        return None

    await tracker.set_complete(request.user_id, report.to_results())
    return report

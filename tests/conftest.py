"""Shared test configuration."""

from __future__ import annotations

import copy
import itertools
from typing import Any

import pytest

from canvas_notion.config import Config
from canvas_notion.errors import NotionAPIError
from canvas_notion.models import Assignment, Course
from canvas_notion.notion import NotionResource, title_property_text, to_rich_text
from canvas_notion.store import UserStore

PARENT_PAGE = "parent-page"
USER_ID = "user-1"
USER_EMAIL = "student@example.edu"


class InMemoryDatabase:
    """Nested-dict stand-in for the Realtime Database REST client."""

    def __init__(self, data: dict[str, Any] | None = None):
        self.data: dict[str, Any] = data or {}

    @staticmethod
    def _parts(path: str) -> list[str]:
        return [part for part in path.strip("/").split("/") if part]

    async def get(self, path: str) -> Any:
        node: Any = self.data
        for part in self._parts(path):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return copy.deepcopy(node)

    async def set(self, path: str, value: Any) -> None:
        *parents, leaf = self._parts(path)
        node = self.data
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = copy.deepcopy(value)

    async def update(self, path: str, values: dict[str, Any]) -> None:
        node = self.data
        for part in self._parts(path):
            node = node.setdefault(part, {})
        for key, value in values.items():
            if value is None:
                node.pop(key, None)
            else:
                node[key] = copy.deepcopy(value)

    async def remove(self, path: str) -> None:
        *parents, leaf = self._parts(path)
        node = self.data
        for part in parents:
            if part not in node:
                return
            node = node[part]
        node.pop(leaf, None)

    async def find_by_child(self, path: str, child: str, value: str) -> dict[str, Any]:
        root = await self.get(path) or {}
        return {
            key: item
            for key, item in root.items()
            if isinstance(item, dict) and item.get(child) == value
        }


class FakeNotionClient:
    """Records Notion writes and serves reads from in-memory databases."""

    def __init__(self, accessible_pages: set[str] | None = None):
        self.accessible_pages = accessible_pages if accessible_pages is not None else {PARENT_PAGE}
        self.children: dict[str, list[NotionResource]] = {}
        self.rows: dict[str, list[dict[str, Any]]] = {}
        self.created_databases: list[tuple[str, str, bool]] = []
        self.database_properties: dict[str, dict[str, Any]] = {}
        self.created_pages: list[tuple[str, dict[str, Any]]] = []
        self.queries: list[tuple[str, dict[str, Any] | None]] = []
        self.fail_titles: set[str] = set()
        self.shared: list[NotionResource] = []
        self._ids = itertools.count(1)

    # -- seeding helpers ---------------------------------------------------

    def add_database(self, parent_id: str, title: str) -> str:
        database_id = f"db-{next(self._ids)}"
        self.children.setdefault(parent_id, []).append(
            NotionResource(id=database_id, kind="database", title=title)
        )
        self.rows[database_id] = []
        return database_id

    def add_row(self, database_id: str, properties: dict[str, Any]) -> str:
        page_id = f"page-{next(self._ids)}"
        self.rows[database_id].append({"id": page_id, "properties": properties})
        return page_id

    def database_titled(self, title: str) -> str | None:
        for resources in self.children.values():
            for resource in resources:
                if resource.kind == "database" and resource.title == title:
                    return resource.id
        return None

    # -- client surface ----------------------------------------------------

    async def retrieve_page(self, page_id: str) -> dict[str, Any]:
        if page_id not in self.accessible_pages:
            raise NotionAPIError(404, f"GET /pages/{page_id}", "Could not find page", code="object_not_found")
        return {"object": "page", "id": page_id}

    async def list_children(self, block_id: str) -> list[NotionResource]:
        return list(self.children.get(block_id, []))

    async def create_database(self, *, parent_page_id, title, properties, is_inline=False) -> str:
        database_id = self.add_database(parent_page_id, title)
        self.created_databases.append((title, database_id, is_inline))
        self.database_properties[database_id] = properties
        return database_id

    async def query_database(self, database_id, *, filter_spec=None) -> list[dict[str, Any]]:
        self.queries.append((database_id, filter_spec))
        rows = list(self.rows.get(database_id, []))
        if filter_spec:
            wanted = filter_spec["title"]["equals"]
            rows = [row for row in rows if title_property_text(row, filter_spec["property"]) == wanted]
        return rows

    async def create_page(self, *, database_id, properties) -> str:
        title = title_property_text({"properties": properties}, "Name")
        if title in self.fail_titles:
            raise NotionAPIError(400, "POST /pages", f"Cannot create {title}", code="validation_error")
        self.created_pages.append((database_id, properties))
        return self.add_row(database_id, properties)

    async def search(self) -> list[NotionResource]:
        return list(self.shared)


def course_row(name: str) -> dict[str, Any]:
    return {"Name": {"title": to_rich_text(name)}}


def assignment_row(name: str, url: str) -> dict[str, Any]:
    return {"Name": {"title": to_rich_text(name)}, "URL": {"url": url}}


def make_course(course_id: str = "101", name: str = "Algorithms") -> Course:
    return Course(id=course_id, name=name)


def make_assignment(
    name: str = "Homework 1",
    *,
    course_id: str = "101",
    url: str | None = None,
    due_at: str | None = "2025-02-01T23:59:00Z",
    points: float | None = 10,
) -> Assignment:
    return Assignment(
        name=name,
        due_at=due_at,
        points_possible=points,
        html_url=url or f"https://canvas.example.edu/courses/{course_id}/assignments/{name.replace(' ', '-').lower()}",
        courseId=course_id,
    )


@pytest.fixture
def config():
    return Config(
        firebase_database_url="https://canvas-notion-test.firebaseio.com",
        firebase_api_key="test-api-key",
        notion_client_id="client-id",
        notion_client_secret="client-secret",
        notion_redirect_uri="https://app.example.edu/notion/callback",
        notion_max_retries=2,
        notion_backoff_base_seconds=0.01,
        notion_backoff_cap_seconds=0.05,
    )


@pytest.fixture
def database():
    return InMemoryDatabase(
        {
            "users": {
                USER_ID: {
                    "email": USER_EMAIL,
                    "displayName": "Student",
                    "accessToken": "secret_notion",
                    "workspaceId": "ws-1",
                    "profile": {"school": "Example University"},
                },
                "user-2": {"email": "unlinked@example.edu"},
            }
        }
    )


@pytest.fixture
def users(database):
    return UserStore(database)


@pytest.fixture
def notion():
    return FakeNotionClient()


@pytest.fixture
def client_factory(notion):
    tokens: list[str] = []

    def factory(token: str) -> FakeNotionClient:
        tokens.append(token)
        return notion

    factory.tokens = tokens
    return factory

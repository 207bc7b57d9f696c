"""Tests for the Notion API client and response decoding."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from canvas_notion.errors import NotionAPIError
from canvas_notion.notion import (
    NotionClient,
    _compute_backoff_delay,
    _parse_retry_after_seconds,
    decode_resource,
    exchange_oauth_code,
    title_property_text,
    url_property_value,
)


def _response(
    status_code: int = 200,
    *,
    json: dict | None = None,
    headers: dict[str, str] | None = None,
    method: str = "GET",
) -> httpx.Response:
    return httpx.Response(
        status_code=status_code,
        headers=headers,
        json=json if json is not None else {},
        request=httpx.Request(method, "https://api.notion.com/v1/test"),
    )


def _client() -> NotionClient:
    return NotionClient(
        "secret_test",
        max_retries=2,
        backoff_base_seconds=0.01,
        backoff_cap_seconds=0.05,
    )


class TestNotionRetries:
    @pytest.mark.asyncio
    async def test_retries_429_honouring_retry_after(self):
        request_mock = AsyncMock(
            side_effect=[
                _response(429, headers={"Retry-After": "2"}),
                _response(200, json={"object": "page", "id": "p1"}),
            ]
        )
        sleep_mock = AsyncMock()
        with (
            patch("canvas_notion.notion.httpx.AsyncClient.request", new=request_mock),
            patch("canvas_notion.notion.asyncio.sleep", new=sleep_mock),
        ):
            page = await _client().retrieve_page("p1")

        assert page["id"] == "p1"
        assert request_mock.await_count == 2
        assert sleep_mock.await_args_list[0].args[0] == 2.0

    @pytest.mark.asyncio
    async def test_retries_transport_errors_and_5xx(self):
        request_mock = AsyncMock(
            side_effect=[
                httpx.ConnectError("refused"),
                _response(502),
                _response(200, json={"object": "page", "id": "p1"}),
            ]
        )
        sleep_mock = AsyncMock()
        with (
            patch("canvas_notion.notion.httpx.AsyncClient.request", new=request_mock),
            patch("canvas_notion.notion.asyncio.sleep", new=sleep_mock),
        ):
            await _client().retrieve_page("p1")

        assert request_mock.await_count == 3
        assert sleep_mock.await_count == 2

    @pytest.mark.asyncio
    async def test_does_not_retry_client_errors(self):
        request_mock = AsyncMock(
            side_effect=[
                _response(
                    404,
                    json={"object": "error", "code": "object_not_found", "message": "Could not find page"},
                    headers={"x-request-id": "req-1"},
                )
            ]
        )
        sleep_mock = AsyncMock()
        with (
            patch("canvas_notion.notion.httpx.AsyncClient.request", new=request_mock),
            patch("canvas_notion.notion.asyncio.sleep", new=sleep_mock),
        ):
            with pytest.raises(NotionAPIError) as exc_info:
                await _client().retrieve_page("missing")

        err = exc_info.value
        assert err.status_code == 404
        assert err.code == "object_not_found"
        assert err.request_id == "req-1"
        assert "Could not find page" in str(err)
        assert sleep_mock.await_count == 0

    @pytest.mark.asyncio
    async def test_raises_after_retries_exhausted(self):
        request_mock = AsyncMock(side_effect=[_response(503), _response(503), _response(503)])
        sleep_mock = AsyncMock()
        with (
            patch("canvas_notion.notion.httpx.AsyncClient.request", new=request_mock),
            patch("canvas_notion.notion.asyncio.sleep", new=sleep_mock),
        ):
            with pytest.raises(NotionAPIError) as exc_info:
                await _client().retrieve_page("p1")

        assert exc_info.value.status_code == 503
        assert request_mock.await_count == 3
        assert sleep_mock.await_count == 2


class TestNotionPagination:
    @pytest.mark.asyncio
    async def test_query_database_follows_cursor_and_sends_filter(self):
        request_mock = AsyncMock(
            side_effect=[
                _response(200, json={"results": [{"id": "r1"}], "has_more": True, "next_cursor": "c2"}),
                _response(200, json={"results": [{"id": "r2"}], "has_more": False, "next_cursor": None}),
            ]
        )
        flt = {"property": "Name", "title": {"equals": "Algorithms"}}
        with patch("canvas_notion.notion.httpx.AsyncClient.request", new=request_mock):
            rows = await _client().query_database("db1", filter_spec=flt)

        assert [row["id"] for row in rows] == ["r1", "r2"]
        first_payload = request_mock.await_args_list[0].kwargs["json"]
        second_payload = request_mock.await_args_list[1].kwargs["json"]
        assert first_payload["filter"] == flt
        assert "start_cursor" not in first_payload
        assert second_payload["start_cursor"] == "c2"

    @pytest.mark.asyncio
    async def test_list_children_decodes_blocks(self):
        request_mock = AsyncMock(
            return_value=_response(
                200,
                json={
                    "results": [
                        {"object": "block", "id": "b1", "type": "child_database", "child_database": {"title": "Courses"}},
                        {"object": "block", "id": "b2", "type": "paragraph", "paragraph": {}},
                    ],
                    "has_more": False,
                },
            )
        )
        with patch("canvas_notion.notion.httpx.AsyncClient.request", new=request_mock):
            children = await _client().list_children("parent")

        assert [(c.id, c.kind, c.title) for c in children] == [
            ("b1", "database", "Courses"),
            ("b2", "paragraph", ""),
        ]
        assert request_mock.await_args.kwargs["params"] == {"page_size": 100}


class TestDecodeResource:
    def test_database_object(self):
        resource = decode_resource(
            {
                "object": "database",
                "id": "d1",
                "title": [{"plain_text": "Assignments"}],
                "icon": {"type": "emoji", "emoji": "📚"},
            }
        )
        assert resource.to_dict() == {"id": "d1", "type": "database", "title": "Assignments", "icon": "📚"}

    def test_page_object_without_title(self):
        resource = decode_resource({"object": "page", "id": "p1", "properties": {}})
        assert resource.kind == "page"
        assert resource.title == "Untitled"

    def test_page_object_with_external_icon(self):
        resource = decode_resource(
            {
                "object": "page",
                "id": "p2",
                "icon": {"type": "external", "external": {"url": "https://example.com/i.png"}},
                "properties": {"title": {"type": "title", "title": [{"plain_text": "Semester"}]}},
            }
        )
        assert resource.title == "Semester"
        assert resource.icon == "https://example.com/i.png"

    def test_property_readers(self):
        page = {
            "properties": {
                "Name": {"type": "title", "title": [{"plain_text": "Homework "}, {"plain_text": "1"}]},
                "URL": {"type": "url", "url": "https://canvas.example.edu/a/1"},
            }
        }
        assert title_property_text(page, "Name") == "Homework 1"
        assert url_property_value(page, "URL") == "https://canvas.example.edu/a/1"
        assert url_property_value(page, "Missing") is None


class TestBackoffHelpers:
    def test_retry_after_seconds(self):
        assert _parse_retry_after_seconds("3") == 3.0
        assert _parse_retry_after_seconds("garbage") is None
        assert _parse_retry_after_seconds(None) is None

    def test_backoff_is_capped(self):
        assert _compute_backoff_delay(10, 1.0, 5.0) <= 5.0


class TestOAuthExchange:
    @pytest.mark.asyncio
    async def test_exchange_uses_basic_auth_and_redirect_uri(self, config):
        post_mock = AsyncMock(
            return_value=_response(
                200,
                json={"access_token": "secret_new", "workspace_id": "ws-9", "workspace_name": "Uni"},
                method="POST",
            )
        )
        with patch("canvas_notion.notion.httpx.AsyncClient.post", new=post_mock):
            grant = await exchange_oauth_code(config, "code-123")

        assert grant.access_token == "secret_new"
        assert grant.workspace_id == "ws-9"
        kwargs = post_mock.await_args.kwargs
        assert kwargs["auth"] == ("client-id", "client-secret")
        assert kwargs["json"]["redirect_uri"] == config.notion_redirect_uri
        assert kwargs["json"]["code"] == "code-123"

    @pytest.mark.asyncio
    async def test_exchange_requires_oauth_config(self, config):
        unconfigured = config.model_copy(update={"notion_client_secret": None})
        with pytest.raises(ValueError):
            await exchange_oauth_code(unconfigured, "code-123")

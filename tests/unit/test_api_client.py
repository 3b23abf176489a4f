"""
Unit Tests for the API client
Tests for: headers, payload casing, error mapping, media URLs, debug events
"""
import json

import httpx
import pytest

from eepdesk.debug_events import DebugEventType
from eepdesk.exceptions import ApiError, NetworkError, SessionExpiredError

from conftest import BASE_URL


class TestRequests:
    """Test request building"""

    @pytest.mark.asyncio
    async def test_bearer_token_and_snake_case_body(self, make_client, token_store):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("authorization")
            seen["content_type"] = request.headers.get("content-type")
            seen["body"] = json.loads(request.content)
            seen["url"] = str(request.url)
            return httpx.Response(201, json={"id": "task_9", "due_date": "2024-07-01"})

        token_store.save("abc", "refresh")
        client = make_client(handler)

        result = await client.request("/tasks/", method="post", json={"title": "Call", "dueDate": "2024-07-01"})

        assert seen["auth"] == "Bearer abc"
        assert seen["content_type"] == "application/json"
        assert seen["body"] == {"title": "Call", "due_date": "2024-07-01"}
        assert seen["url"] == f"{BASE_URL}/tasks/"
        assert result == {"id": "task_9", "dueDate": "2024-07-01"}
        await client.aclose()

    @pytest.mark.asyncio
    async def test_no_authorization_without_token(self, make_client):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json=[])

        client = make_client(handler)
        await client.request("/students/lookup/")

        assert seen["auth"] is None
        await client.aclose()

    @pytest.mark.asyncio
    async def test_form_data_keys_converted(self, make_client):
        seen = {}

        def handler(request):
            seen["content_type"] = request.headers["content-type"]
            seen["body"] = request.content.decode()
            return httpx.Response(200, json={})

        client = make_client(handler)
        await client.request("/filings/", method="POST", data={"documentName": "Annual Return"})

        assert seen["content_type"].startswith("application/x-www-form-urlencoded")
        assert "document_name=Annual+Return" in seen["body"]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_absolute_url_used_as_is(self, make_client):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            return httpx.Response(200, json={})

        client = make_client(handler)
        await client.request("http://other/api/students/?page=2")

        assert seen["url"] == "http://other/api/students/?page=2"
        await client.aclose()


class TestResponses:
    """Test response normalization"""

    @pytest.mark.asyncio
    async def test_no_content_returns_none(self, make_client):
        client = make_client(lambda request: httpx.Response(204))

        assert await client.request("/tasks/task_1/", method="DELETE") is None
        await client.aclose()

    @pytest.mark.asyncio
    async def test_paginated_envelope_only_rows_converted(self, make_client):
        payload = {
            "count": 1,
            "next": None,
            "previous": None,
            "results": [{"student_id": "EEP-101", "profile_photo": "/media/students/EEP-101.jpg"}],
        }
        client = make_client(lambda request: httpx.Response(200, json=payload))

        result = await client.request("/students/")

        assert set(result) == {"count", "next", "previous", "results"}
        assert result["results"] == [{
            "studentId": "EEP-101",
            "profilePhoto": "http://testserver/media/students/EEP-101.jpg",
        }]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_media_url_absolutized_on_object(self, make_client):
        payload = {"id": "filing_1", "attached_file": "/media/filings/a.pdf"}
        client = make_client(lambda request: httpx.Response(200, json=payload))

        result = await client.request("/filings/filing_1/")

        assert result["attachedFile"] == "http://testserver/media/filings/a.pdf"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_absolute_media_url_untouched(self, make_client):
        payload = [{"profile_photo": "https://cdn.example.com/p.jpg"}]
        client = make_client(lambda request: httpx.Response(200, json=payload))

        result = await client.request("/students/all/")

        assert result == [{"profilePhoto": "https://cdn.example.com/p.jpg"}]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_unreadable_success_body(self, make_client):
        client = make_client(lambda request: httpx.Response(200, content=b"<html>"))

        with pytest.raises(NetworkError):
            await client.request("/tasks/")
        await client.aclose()


class TestErrors:
    """Test error mapping"""

    @pytest.mark.asyncio
    async def test_field_errors_become_api_error(self, make_client):
        body = {"email": ["Invalid email"], "password": ["Too short"]}
        client = make_client(lambda request: httpx.Response(400, json=body))

        with pytest.raises(ApiError) as exc_info:
            await client.request("/register/", method="POST", json={})

        assert exc_info.value.status == 400
        assert exc_info.value.message == "email: Invalid email; password: Too short"
        assert exc_info.value.data == body
        await client.aclose()

    @pytest.mark.asyncio
    async def test_non_json_error_body(self, make_client):
        client = make_client(lambda request: httpx.Response(500, text="Internal Server Error"))

        with pytest.raises(ApiError) as exc_info:
            await client.request("/tasks/")

        assert exc_info.value.message == "API request failed with status 500."
        assert exc_info.value.data is None
        await client.aclose()

    @pytest.mark.asyncio
    async def test_transport_failure_is_network_error(self, make_client):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)

        with pytest.raises(NetworkError) as exc_info:
            await client.request("/tasks/")

        assert exc_info.value.details == {"endpoint": "/tasks/"}
        await client.aclose()

    @pytest.mark.asyncio
    async def test_login_401_is_not_refreshed(self, make_client, token_store):
        calls = []

        def handler(request):
            calls.append(request.url.path)
            return httpx.Response(401, json={"detail": "No active account found with the given credentials"})

        token_store.save("stale", "refresh")
        client = make_client(handler)

        with pytest.raises(ApiError) as exc_info:
            await client.request("/token/", method="POST", json={"username": "x", "password": "y"})

        assert not isinstance(exc_info.value, SessionExpiredError)
        assert calls == ["/api/token/"]
        await client.aclose()


class TestDebugEvents:
    """Test that every call is reported"""

    @pytest.mark.asyncio
    async def test_success_event(self, make_client, events):
        client = make_client(lambda request: httpx.Response(200, json=[]))

        await client.request("/tasks/")

        event = events.events[0]
        assert event.type == DebugEventType.API_SUCCESS
        assert event.message == "[GET] /tasks/ succeeded (200)"
        assert event.status == 200
        assert event.duration_ms is not None
        await client.aclose()

    @pytest.mark.asyncio
    async def test_error_event(self, make_client, events):
        client = make_client(lambda request: httpx.Response(404, json={"detail": "Not found."}))

        with pytest.raises(ApiError):
            await client.request("/tasks/nope/")

        event = events.events[0]
        assert event.is_error
        assert event.message == "[GET] /tasks/nope/ failed (404) - Not found."
        assert events.unread_error_count == 1
        await client.aclose()

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_request(self, make_client, events):
        def broken(event):
            raise RuntimeError("listener bug")

        events.subscribe(broken)
        client = make_client(lambda request: httpx.Response(200, json={"ok": True}))

        assert await client.request("/dashboard/stats/") == {"ok": True}
        await client.aclose()

from __future__ import annotations

import asyncio
import json
from typing import Callable, List

import httpx
import pytest

from studyroom.config import Settings
from studyroom.session_client import ConflictError, FocusSessionClient, NetworkError, SessionStoreError

Handler = Callable[[httpx.Request], httpx.Response]


def _client(handler: Handler, **settings) -> FocusSessionClient:
    transport = httpx.MockTransport(handler)
    http = httpx.AsyncClient(transport=transport, base_url="http://store.test")
    return FocusSessionClient("learner-1", Settings(**settings), client=http)  # type: ignore[call-arg]


def test_start_posts_topic_and_returns_session_id() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"success": True, "sessionId": "abc123"})

    session_id = asyncio.run(
        _client(handler, STUDYROOM_API_TOKEN="secret").start_focus_session(
            "room-1", "topic-1", "Closures", milestone_id="m1"
        )
    )

    assert session_id == "abc123"
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/api/rooms/room-1/session/start"
    assert request.headers["X-User-Id"] == "learner-1"
    assert request.headers["Authorization"] == "Bearer secret"
    body = json.loads(request.content)
    assert body["topicId"] == "topic-1"
    assert body["topicTitle"] == "Closures"
    assert body["milestoneId"] == "m1"
    assert body["deviceId"].startswith("device_")


def test_start_falls_back_to_nested_session_id() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json={"session": {"_id": "nested-1"}})

    assert asyncio.run(_client(handler).start_focus_session("room-1", "t", "T")) == "nested-1"


def test_start_without_session_id_is_an_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json={"success": True})

    with pytest.raises(SessionStoreError):
        asyncio.run(_client(handler).start_focus_session("room-1", "t", "T"))


@pytest.mark.parametrize(
    "status_code,expected",
    [
        (409, ConflictError),
        (500, NetworkError),
        (503, NetworkError),
        (404, SessionStoreError),
        (401, SessionStoreError),
    ],
)
def test_status_codes_map_to_error_types(status_code: int, expected: type) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"detail": "nope"})

    with pytest.raises(expected) as excinfo:
        asyncio.run(_client(handler).start_focus_session("room-1", "t", "T"))

    assert excinfo.value.status_code == status_code
    assert str(excinfo.value) == "nope"


def test_client_errors_are_not_network_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": {"message": "Room not found"}})

    with pytest.raises(SessionStoreError) as excinfo:
        asyncio.run(_client(handler).start_focus_session("room-1", "t", "T"))

    assert not isinstance(excinfo.value, NetworkError)
    assert str(excinfo.value) == "Room not found"


def test_transport_failure_is_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkError):
        asyncio.run(_client(handler).pulse_focus_session("room-1", "s1", 10))


def test_request_errors_beyond_transport_are_network_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.TooManyRedirects("Exceeded maximum allowed redirects.", request=request)

    with pytest.raises(NetworkError, match="unreachable"):
        asyncio.run(_client(handler).get_active_focus_session("room-1"))


def test_pulse_and_end_hit_session_endpoints() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"success": True})

    async def scenario() -> None:
        async with _client(handler) as client:
            await client.pulse_focus_session("room-1", "s1", 42, is_running=False)
            await client.end_focus_session("room-1", "s1")

    asyncio.run(scenario())

    assert [request.url.path for request in seen] == [
        "/api/rooms/room-1/session/s1/pulse",
        "/api/rooms/room-1/session/s1/end",
    ]
    assert json.loads(seen[0].content) == {"elapsedTime": 42, "isRunning": False}


def test_active_session_is_parsed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "session": {
                    "_id": "s1",
                    "topicId": "topic-1",
                    "topicTitle": "Closures",
                    "elapsedTime": 125,
                    "isRunning": True,
                    "lastPulseAt": "2024-05-01T09:00:00Z",
                }
            },
        )

    session = asyncio.run(_client(handler).get_active_focus_session("room-1"))

    assert session is not None
    assert session.session_id == "s1"
    assert session.elapsed_time == 125
    assert session.is_running is True
    assert session.last_pulse_at is not None


def test_missing_active_session_is_none() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"session": None})

    assert asyncio.run(_client(handler).get_active_focus_session("room-1")) is None


def test_malformed_active_session_is_an_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"session": {"elapsedTime": -4}})

    with pytest.raises(SessionStoreError):
        asyncio.run(_client(handler).get_active_focus_session("room-1"))


def test_client_requires_user_id() -> None:
    with pytest.raises(ValueError):
        FocusSessionClient("  ", Settings())  # type: ignore[call-arg]

"""Async client for the remote focus-session store."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from .config import Settings, get_settings
from .focus_session import RemoteFocusSession

logger = logging.getLogger(__name__)


class SessionStoreError(RuntimeError):
    """Remote session store rejected a call or returned an unusable payload."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NetworkError(SessionStoreError):
    """The session store could not be reached (request failure, timeout or 5xx)."""


class ConflictError(SessionStoreError):
    """The session store already holds an active session for this room and user."""


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase or "Request failed"
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        for key in ("detail", "message"):
            if data.get(key):
                return str(data[key])
    return "Request failed"


class FocusSessionClient:
    """Thin wrapper over the ``/api/rooms/{room_id}/session`` endpoints."""

    def __init__(
        self,
        user_id: str,
        settings: Optional[Settings] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not user_id or not user_id.strip():
            raise ValueError("A user id is required to talk to the session store.")
        settings = settings or get_settings()
        self._user_id = user_id.strip()
        self._token = settings.api_token
        timeout_seconds = max(settings.api_timeout_ms, 1000) / 1000
        self._client = client or httpx.AsyncClient(
            base_url=settings.api_base_url.rstrip("/"),
            timeout=timeout_seconds,
        )
        self._owns_client = client is None

    async def __aenter__(self) -> "FocusSessionClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self) -> Dict[str, str]:
        headers = {"X-User-Id": self._user_id}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _request(self, method: str, path: str, *, json: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = await self._client.request(method, path, json=json, headers=self._headers())
        except httpx.RequestError as exc:
            raise NetworkError(f"Session store unreachable: {exc}") from exc

        if response.status_code == httpx.codes.CONFLICT:
            raise ConflictError(_error_detail(response), status_code=response.status_code)
        if response.status_code >= 500:
            raise NetworkError(_error_detail(response), status_code=response.status_code)
        if response.is_error:
            raise SessionStoreError(_error_detail(response), status_code=response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise SessionStoreError(f"Session store returned invalid JSON for {method} {path}") from exc

    async def start_focus_session(
        self,
        room_id: str,
        task_id: str,
        task_title: str,
        *,
        milestone_id: Optional[str] = None,
    ) -> str:
        payload: Dict[str, Any] = {
            "topicId": task_id,
            "topicTitle": task_title,
            "deviceId": f"device_{int(time.time() * 1000)}",
        }
        if milestone_id:
            payload["milestoneId"] = milestone_id
        data = await self._request("POST", f"/api/rooms/{room_id}/session/start", json=payload)
        session_id = None
        if isinstance(data, dict):
            session_id = data.get("sessionId")
            nested = data.get("session")
            if not session_id and isinstance(nested, dict):
                session_id = nested.get("_id")
        if not session_id:
            raise SessionStoreError("Session store did not return a session id.")
        return str(session_id)

    async def pulse_focus_session(
        self,
        room_id: str,
        session_id: str,
        elapsed_seconds: int,
        *,
        is_running: bool = True,
    ) -> None:
        await self._request(
            "POST",
            f"/api/rooms/{room_id}/session/{session_id}/pulse",
            json={"elapsedTime": int(elapsed_seconds), "isRunning": is_running},
        )

    async def end_focus_session(self, room_id: str, session_id: str) -> None:
        await self._request("POST", f"/api/rooms/{room_id}/session/{session_id}/end")

    async def get_active_focus_session(self, room_id: str) -> Optional[RemoteFocusSession]:
        data = await self._request("GET", f"/api/rooms/{room_id}/session/active")
        if not isinstance(data, dict) or not data.get("session"):
            return None
        try:
            return RemoteFocusSession.model_validate(data["session"])
        except ValidationError as exc:
            raise SessionStoreError(f"Session store returned an invalid active session: {exc}") from exc


__all__ = [
    "ConflictError",
    "FocusSessionClient",
    "NetworkError",
    "SessionStoreError",
]

"""Focus session timer for one learner in one room.

The timer owns a small state machine (idle -> running <-> paused -> idle),
counts elapsed seconds with a once-per-second tick, mirrors its state to
local storage on every transition and pulses the remote session store at
most once per pulse window, plus once on every pause and resume so other
devices see the running flag. Remote failures never escape: they degrade to
local-only operation or are recorded on the published snapshot.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from pydantic import ValidationError

from .config import Settings, get_settings
from .focus_session import (
    FocusCompletion,
    MilestoneRef,
    StoredTimerState,
    TaskRef,
    TimerError,
    TimerSnapshot,
    TimerStatus,
    as_utc,
    utcnow,
)
from .session_client import ConflictError, FocusSessionClient, NetworkError, SessionStoreError
from .telemetry import emit_event
from .timer_storage import TimerStorage, storage_key

logger = logging.getLogger(__name__)

LOCAL_SESSION_PREFIX = "local_"

SnapshotListener = Callable[[TimerSnapshot], None]


@dataclass
class _SessionState:
    status: TimerStatus = TimerStatus.IDLE
    elapsed_seconds: int = 0
    target_seconds: Optional[int] = None
    task: Optional[TaskRef] = None
    milestone: Optional[MilestoneRef] = None
    session_id: Optional[str] = None
    is_local: bool = False


class FocusTimer:
    """Client-side focus session tracker exposing transitions and a read-only snapshot."""

    def __init__(
        self,
        room_id: str,
        user_id: str,
        *,
        client: FocusSessionClient,
        storage: TimerStorage,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        autostart: bool = True,
    ) -> None:
        if not room_id or not room_id.strip():
            raise ValueError("A room id is required for a focus timer.")
        if not user_id or not user_id.strip():
            raise ValueError("A user id is required for a focus timer.")
        settings = settings or get_settings()
        self.room_id = room_id.strip()
        self.user_id = user_id.strip()
        self._client = client
        self._storage = storage
        self._key = storage_key(self.room_id)
        self._clock = clock or utcnow
        self._autostart = autostart
        self._tick_interval = settings.timer_tick_seconds
        self._pulse_interval = timedelta(seconds=settings.timer_pulse_seconds)
        self._stale_after = timedelta(minutes=settings.timer_stale_after_minutes)
        self._local_max_age = timedelta(hours=settings.timer_local_max_age_hours)

        self._state = _SessionState()
        self._generation = 0
        self._starting = False
        self._last_pulse_at: Optional[datetime] = None
        self._last_remote_pulse_at: Optional[datetime] = None
        self._last_error: Optional[TimerError] = None
        self._listeners: List[SnapshotListener] = []
        self._tick_task: Optional[asyncio.Task[None]] = None
        self._pulse_task: Optional[asyncio.Task[None]] = None

    # ------------------------------------------------------------------ state

    @property
    def snapshot(self) -> TimerSnapshot:
        state = self._state
        return TimerSnapshot(
            room_id=self.room_id,
            status=state.status,
            elapsed_seconds=state.elapsed_seconds,
            target_seconds=state.target_seconds,
            task=state.task,
            milestone=state.milestone,
            session_id=state.session_id,
            is_local=state.is_local,
            last_pulse_at=self._last_remote_pulse_at,
            last_error=self._last_error,
        )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def clear_error(self) -> None:
        if self._last_error is not None:
            self._last_error = None
            self._publish()

    def _publish(self) -> None:
        snapshot = self.snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:  # noqa: BLE001
                logger.exception("Focus timer listener failed for room=%s", self.room_id)

    def _record_error(self, kind: str, message: str) -> None:
        self._last_error = TimerError(kind=kind, message=message, occurred_at=self._clock())  # type: ignore[arg-type]

    # ------------------------------------------------------------ persistence

    def _persist(self) -> None:
        state = self._state
        if state.session_id is None:
            return
        entry = StoredTimerState(
            session_id=state.session_id,
            task=state.task,
            milestone=state.milestone,
            is_running=state.status is TimerStatus.RUNNING,
            elapsed_seconds=state.elapsed_seconds,
            target_seconds=state.target_seconds,
            is_local=state.is_local,
            saved_at=self._clock(),
        )
        try:
            self._storage.save(self._key, entry.model_dump(mode="json"))
        except OSError as exc:
            logger.warning("Failed to persist focus timer for room=%s: %s", self.room_id, exc)
            self._record_error("storage", "Timer progress could not be saved on this device.")

    def _clear_local(self) -> None:
        try:
            self._storage.clear(self._key)
        except OSError as exc:
            logger.warning("Failed to clear focus timer storage for room=%s: %s", self.room_id, exc)

    def _load_local(self) -> Optional[StoredTimerState]:
        try:
            raw = self._storage.load(self._key)
        except OSError as exc:
            logger.warning("Failed to read focus timer storage for room=%s: %s", self.room_id, exc)
            return None
        if raw is None:
            return None
        try:
            entry = StoredTimerState.model_validate(raw)
        except ValidationError:
            logger.warning("Discarding unreadable focus timer entry for room=%s", self.room_id)
            self._clear_local()
            return None
        if as_utc(self._clock()) - as_utc(entry.saved_at) > self._local_max_age:
            logger.info("Discarding expired focus timer entry for room=%s", self.room_id)
            self._clear_local()
            return None
        return entry

    # ---------------------------------------------------------------- driver

    def _start_driver(self) -> None:
        if not self._autostart:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; focus timer for room=%s must be ticked manually", self.room_id)
            return
        if self._tick_task is None or self._tick_task.done():
            self._tick_task = loop.create_task(self._tick_loop())
        if self._pulse_task is None or self._pulse_task.done():
            self._pulse_task = loop.create_task(self._pulse_loop())

    def _stop_driver(self) -> List["asyncio.Task[None]"]:
        cancelled = []
        for task in (self._tick_task, self._pulse_task):
            if task is not None and not task.done():
                task.cancel()
                cancelled.append(task)
        self._tick_task = None
        self._pulse_task = None
        return cancelled

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self._tick_interval)
            self.tick()

    async def _pulse_loop(self) -> None:
        while True:
            await asyncio.sleep(self._pulse_interval.total_seconds())
            await self.pulse()

    async def close(self) -> None:
        """Stop the tick and pulse loops without touching session state."""
        for task in self._stop_driver():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # ----------------------------------------------------------- transitions

    async def start_session(
        self,
        task: TaskRef,
        milestone: Optional[MilestoneRef] = None,
        *,
        target_seconds: Optional[int] = None,
    ) -> TimerSnapshot:
        if self._state.status is not TimerStatus.IDLE or self._starting:
            self._record_error("conflict", "A focus session is already active in this room.")
            self._publish()
            return self.snapshot

        self._starting = True
        generation = self._generation
        is_local = False
        try:
            session_id = await self._client.start_focus_session(
                self.room_id,
                task.task_id,
                task.title,
                milestone_id=milestone.milestone_id if milestone else None,
            )
        except ConflictError as exc:
            logger.info("Focus session start rejected for room=%s: %s", self.room_id, exc)
            self._record_error("conflict", str(exc) or "A focus session is already active.")
            emit_event("focus_session_rejected", room_id=self.room_id, user_id=self.user_id, reason="conflict")
            self._publish()
            return self.snapshot
        except NetworkError as exc:
            logger.warning("Session store unreachable for room=%s; starting locally: %s", self.room_id, exc)
            session_id = f"{LOCAL_SESSION_PREFIX}{int(self._clock().timestamp() * 1000)}"
            is_local = True
            emit_event("focus_session_fallback", room_id=self.room_id, user_id=self.user_id)
        except SessionStoreError as exc:
            logger.warning("Session store refused focus session for room=%s: %s", self.room_id, exc)
            self._record_error("rejected", str(exc) or "The focus session could not be started.")
            emit_event(
                "focus_session_rejected",
                room_id=self.room_id,
                user_id=self.user_id,
                reason="rejected",
                status_code=exc.status_code,
            )
            self._publish()
            return self.snapshot
        finally:
            self._starting = False

        if generation != self._generation:
            logger.info("Focus session start for room=%s was stopped before it completed", self.room_id)
            if not is_local:
                await self._end_remote(session_id)
            emit_event("focus_session_cancelled", room_id=self.room_id, session_id=session_id)
            self._publish()
            return self.snapshot

        self._generation += 1
        self._state = _SessionState(
            status=TimerStatus.RUNNING,
            elapsed_seconds=0,
            target_seconds=target_seconds,
            task=task,
            milestone=milestone,
            session_id=session_id,
            is_local=is_local,
        )
        self._last_error = None
        self._last_pulse_at = self._clock()
        self._last_remote_pulse_at = None if is_local else self._last_pulse_at
        self._persist()
        self._start_driver()
        emit_event(
            "focus_session_started",
            room_id=self.room_id,
            user_id=self.user_id,
            session_id=session_id,
            task_id=task.task_id,
            local=is_local,
        )
        self._publish()
        return self.snapshot

    async def pause_session(self) -> TimerSnapshot:
        """Pause locally at once, then tell the session store so other devices do not adopt it."""
        if self._state.status is not TimerStatus.RUNNING:
            return self.snapshot
        self._state.status = TimerStatus.PAUSED
        self._stop_driver()
        self._persist()
        emit_event(
            "focus_session_paused",
            room_id=self.room_id,
            session_id=self._state.session_id,
            elapsed_seconds=self._state.elapsed_seconds,
        )
        self._publish()
        await self._send_pulse(is_running=False)
        return self.snapshot

    async def resume_session(self) -> TimerSnapshot:
        if self._state.status is not TimerStatus.PAUSED:
            return self.snapshot
        self._state.status = TimerStatus.RUNNING
        self._persist()
        self._start_driver()
        emit_event(
            "focus_session_resumed",
            room_id=self.room_id,
            session_id=self._state.session_id,
            elapsed_seconds=self._state.elapsed_seconds,
        )
        self._publish()
        await self._send_pulse(is_running=True)
        return self.snapshot

    def tick(self) -> int:
        """Advance a running session by one second and return the elapsed total."""
        if self._state.status is not TimerStatus.RUNNING:
            return self._state.elapsed_seconds
        self._state.elapsed_seconds += 1
        self._persist()
        self._publish()
        return self._state.elapsed_seconds

    async def pulse(self) -> bool:
        """Auto-save: mirror state locally and report progress remotely, once per pulse window."""
        state = self._state
        if state.status is not TimerStatus.RUNNING or state.session_id is None:
            return False
        now = self._clock()
        if self._last_pulse_at is not None and now - self._last_pulse_at < self._pulse_interval:
            return False
        self._last_pulse_at = now
        self._persist()
        if state.is_local:
            return True
        return await self._send_pulse(is_running=True)

    async def _send_pulse(self, *, is_running: bool) -> bool:
        state = self._state
        if state.session_id is None or state.is_local:
            return False
        generation = self._generation
        session_id = state.session_id
        try:
            await self._client.pulse_focus_session(
                self.room_id, session_id, state.elapsed_seconds, is_running=is_running
            )
        except SessionStoreError as exc:
            logger.warning("Focus session pulse failed for room=%s session=%s: %s", self.room_id, session_id, exc)
            emit_event("focus_pulse_failed", room_id=self.room_id, session_id=session_id, status_code=exc.status_code)
            return False

        if generation != self._generation or self._state.session_id != session_id:
            logger.debug("Ignoring pulse response for finished session %s", session_id)
            return False
        self._last_remote_pulse_at = self._clock()
        self._publish()
        return True

    async def _end_remote(self, session_id: str) -> None:
        try:
            await self._client.end_focus_session(self.room_id, session_id)
        except SessionStoreError as exc:
            logger.warning(
                "Could not end focus session %s remotely (non-critical): %s", session_id, exc
            )

    async def stop_session(self) -> TimerSnapshot:
        """End the session remotely when possible and always return to idle."""
        state = self._state
        if state.session_id is None:
            if self._starting:
                # the in-flight start sees the new generation and backs out
                self._generation += 1
            return self.snapshot
        session_id = state.session_id
        elapsed = state.elapsed_seconds
        self._generation += 1
        self._stop_driver()
        try:
            if not state.is_local:
                await self._end_remote(session_id)
        finally:
            self._state = _SessionState()
            self._last_pulse_at = None
            self._last_remote_pulse_at = None
            self._clear_local()
            emit_event(
                "focus_session_stopped",
                room_id=self.room_id,
                session_id=session_id,
                elapsed_seconds=elapsed,
            )
            self._publish()
        return self.snapshot

    async def complete_session(self) -> Optional[FocusCompletion]:
        """Stop the session and hand back what was studied so the caller can mark it done."""
        state = self._state
        if state.session_id is None:
            return None
        completion = FocusCompletion(
            session_id=state.session_id,
            task=state.task,
            milestone=state.milestone,
            elapsed_seconds=state.elapsed_seconds,
            completed_at=self._clock(),
        )
        await self.stop_session()
        emit_event(
            "focus_session_completed",
            room_id=self.room_id,
            session_id=completion.session_id,
            task_id=completion.task.task_id if completion.task else None,
            elapsed_seconds=completion.elapsed_seconds,
        )
        return completion

    async def recover(self) -> TimerSnapshot:
        """Mount-time recovery: adopt a fresh remote session, else fall back to the local cache offline."""
        if self._state.status is not TimerStatus.IDLE or self._starting:
            return self.snapshot
        try:
            remote = await self._client.get_active_focus_session(self.room_id)
        except SessionStoreError as exc:
            logger.warning("Could not load active focus session for room=%s: %s", self.room_id, exc)
            self._record_error("network", "Session store unreachable; showing progress saved on this device.")
            self._restore_local()
            return self.snapshot

        now = self._clock()
        if remote is not None and remote.is_running and remote.is_fresh(now, self._stale_after):
            self._generation += 1
            self._state = _SessionState(
                status=TimerStatus.RUNNING,
                elapsed_seconds=remote.elapsed_time,
                task=TaskRef(task_id=remote.topic_id, title=remote.topic_title or "") if remote.topic_id else None,
                milestone=MilestoneRef(milestone_id=remote.milestone_id) if remote.milestone_id else None,
                session_id=remote.session_id,
            )
            self._last_pulse_at = now
            self._last_remote_pulse_at = as_utc(remote.last_pulse_at) if remote.last_pulse_at else None
            self._persist()
            self._start_driver()
            logger.info("Resuming focus session %s for room=%s", remote.session_id, self.room_id)
            emit_event(
                "focus_session_adopted",
                room_id=self.room_id,
                session_id=remote.session_id,
                elapsed_seconds=remote.elapsed_time,
            )
        else:
            if remote is not None:
                logger.info("Ignoring stale or paused focus session %s for room=%s", remote.session_id, self.room_id)
                emit_event("focus_session_discarded", room_id=self.room_id, session_id=remote.session_id)
            self._clear_local()
        self._publish()
        return self.snapshot

    def _restore_local(self) -> None:
        entry = self._load_local()
        if entry is None:
            self._publish()
            return
        self._generation += 1
        self._state = _SessionState(
            status=TimerStatus.RUNNING if entry.is_running else TimerStatus.PAUSED,
            elapsed_seconds=entry.elapsed_seconds,
            target_seconds=entry.target_seconds,
            task=entry.task,
            milestone=entry.milestone,
            session_id=entry.session_id,
            is_local=entry.is_local or entry.session_id.startswith(LOCAL_SESSION_PREFIX),
        )
        self._last_pulse_at = self._clock()
        if entry.is_running:
            self._start_driver()
        emit_event(
            "focus_session_restored_local",
            room_id=self.room_id,
            session_id=entry.session_id,
            elapsed_seconds=entry.elapsed_seconds,
        )
        self._publish()


__all__ = ["FocusTimer", "LOCAL_SESSION_PREFIX", "SnapshotListener"]

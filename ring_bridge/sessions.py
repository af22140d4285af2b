"""Single-session stream orchestration.

At most one stream session is alive at any time. A trigger that arrives
while a session is starting or active is dropped: overlapping doorbell and
motion events are expected and carry no queueing or fairness guarantee.

    Idle --trigger--> Starting --handle created--> Active --ended--> Idle
                         |
                         +--clean/create failed--> Idle

Teardown happens in exactly one place, the handle's "ended" callback. The
session timeout and shutdown only ask the handle to stop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Sequence

from .camera_api import Camera, StreamingSession
from .notifications import VIDEO_STREAM_AVAILABLE, VIDEO_STREAM_ENDED, NotificationSink
from .output_dir import FileSystemError, OutputDirectoryManager
from .readiness import StreamReadinessWatcher

log = logging.getLogger("ring_bridge.sessions")


class SessionState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    ACTIVE = "active"


class TriggerKind(str, Enum):
    DOORBELL = "doorbell"
    MOTION = "motion"


class StreamStartError(RuntimeError):
    """Raised when the camera service cannot create a streaming session."""


@dataclass(slots=True)
class Session:
    camera_name: str
    camera_id: Any
    trigger: TriggerKind
    started_at: float
    state: SessionState = SessionState.STARTING
    handle: StreamingSession | None = None
    stop_requested: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "camera": self.camera_name,
            "trigger": self.trigger.value,
            "started_at": self.started_at,
        }


OutputArgsBuilder = Callable[[str], Sequence[str]]


class StreamSessionManager:
    def __init__(
        self,
        *,
        output_dir: OutputDirectoryManager,
        watcher: StreamReadinessWatcher,
        sink: NotificationSink,
        session_timeout: float,
        output_args: OutputArgsBuilder,
        playlist_name: str = "stream.m3u8",
        readiness_timeout: float = 15.0,
    ) -> None:
        if session_timeout <= 0:
            raise ValueError("session_timeout must be positive")
        self._output_dir = output_dir
        self._watcher = watcher
        self._sink = sink
        self._session_timeout = float(session_timeout)
        self._output_args = output_args
        self._playlist_name = playlist_name
        self._readiness_timeout = float(readiness_timeout)
        self._session: Session | None = None
        self._timeout_handle: asyncio.TimerHandle | None = None
        self._closed = False

    @property
    def state(self) -> SessionState:
        return self._session.state if self._session is not None else SessionState.IDLE

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def playlist_path(self) -> str:
        return str(self._output_dir.directory / self._playlist_name)

    def status(self) -> dict[str, Any]:
        if self._session is None:
            return {"state": SessionState.IDLE.value}
        return self._session.to_payload()

    async def handle_trigger(self, camera: Camera, kind: TriggerKind | str) -> bool:
        """Start a stream for *camera*; return ``False`` when the trigger is dropped."""

        kind = TriggerKind(kind)
        if self._closed:
            return False
        if self._session is not None:
            log.debug(
                "%s %s ignored; a %s session is already %s",
                camera.name,
                kind.value,
                self._session.camera_name,
                self._session.state.value,
            )
            return False

        session = Session(
            camera_name=str(camera.name),
            camera_id=getattr(camera, "id", None),
            trigger=kind,
            started_at=time.time(),
        )
        self._session = session
        log.info(
            "%s %s. Preparing stream.",
            session.camera_name,
            "doorbell pressed" if kind is TriggerKind.DOORBELL else "motion detected",
        )

        try:
            return await self._start(session, camera)
        except BaseException:
            # Release the claim on any early exit, cancellation included.
            if session.state is not SessionState.ACTIVE:
                self._reset(session)
            raise

    async def _start(self, session: Session, camera: Camera) -> bool:
        try:
            await self._output_dir.clean()
        except FileSystemError as exc:
            log.error("Unable to prepare output directory: %s", exc)
            self._reset(session)
            return False
        if self._session is not session or session.stop_requested:
            # Shut down while cleaning.
            self._reset(session)
            return False

        self._watcher.arm(
            self._output_dir.directory,
            self._playlist_name,
            self._readiness_timeout,
            self._on_stream_ready,
        )
        loop = asyncio.get_running_loop()
        self._timeout_handle = loop.call_later(self._session_timeout, self._on_timeout, session)

        try:
            handle = await self._create(camera)
        except StreamStartError as exc:
            log.error("Error starting stream: %s", exc)
            self._reset(session)
            return False

        if self._session is not session:
            handle.stop()
            return False
        session.handle = handle
        session.state = SessionState.ACTIVE
        handle.on_ended(lambda: self._on_ended(session, handle))
        log.info("%s stream session active", session.camera_name)
        if session.stop_requested:
            handle.stop()
        return True

    async def _create(self, camera: Camera) -> StreamingSession:
        output = list(self._output_args(self.playlist_path))
        try:
            return await camera.create_streaming_session(output)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise StreamStartError(str(exc) or exc.__class__.__name__) from exc

    def _on_stream_ready(self) -> None:
        if self._session is None:
            return
        self._sink.notify(VIDEO_STREAM_AVAILABLE, None)

    def _on_ended(self, session: Session, handle: StreamingSession) -> None:
        if self._session is not session or session.handle is not handle:
            return
        log.info("%s video stream has ended", session.camera_name)
        self._reset(session)
        self._sink.notify(VIDEO_STREAM_ENDED, None)

    def _on_timeout(self, session: Session) -> None:
        self._timeout_handle = None
        if self._session is not session:
            return
        log.info("%s stream reached its time limit; stopping", session.camera_name)
        self._request_stop(session)

    def _request_stop(self, session: Session) -> None:
        session.stop_requested = True
        if session.handle is not None:
            session.handle.stop()

    def _reset(self, session: Session) -> None:
        if self._session is not session:
            return
        self._session = None
        session.state = SessionState.IDLE
        session.handle = None
        self._cancel_timeout()
        self._watcher.disarm()

    def _cancel_timeout(self) -> None:
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None

    async def shutdown(self) -> None:
        self._closed = True
        self._cancel_timeout()
        await self._watcher.close()
        session = self._session
        if session is not None:
            self._request_stop(session)


__all__ = [
    "Session",
    "SessionState",
    "StreamSessionManager",
    "StreamStartError",
    "TriggerKind",
]

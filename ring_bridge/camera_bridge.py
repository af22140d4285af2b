"""Bridge camera service callbacks into the session manager."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Union

from .camera_api import Camera, CameraApi, release_subscription
from .credentials import CredentialError, CredentialStore
from .sessions import StreamSessionManager, TriggerKind


@dataclass(frozen=True, slots=True)
class DoorbellPressed:
    camera: Camera


@dataclass(frozen=True, slots=True)
class MotionDetected:
    camera: Camera
    active: bool


@dataclass(frozen=True, slots=True)
class RefreshTokenRotated:
    old: str | None
    new: str


CameraEvent = Union[DoorbellPressed, MotionDetected, RefreshTokenRotated]


class CameraEventBridge:
    """Translate camera service callbacks into session triggers.

    Callbacks only enqueue typed events; a single consumer task handles them
    in arrival order on the event loop. Each accepted trigger runs as its own
    task so that a second trigger arriving while a stream is starting is
    judged against the current session state and dropped, never queued.
    """

    def __init__(
        self,
        *,
        manager: StreamSessionManager,
        credentials: CredentialStore,
        stream_motion: bool,
        logger: logging.Logger | None = None,
    ) -> None:
        self._manager = manager
        self._credentials = credentials
        self._stream_motion = bool(stream_motion)
        self._logger = logger or logging.getLogger("ring_bridge.camera_bridge")
        self._queue: asyncio.Queue[CameraEvent] = asyncio.Queue()
        self._subscriptions: list[Any] = []
        self._task: asyncio.Task | None = None
        self._triggers: set[asyncio.Task] = set()
        self._cameras: list[Camera] = []

    @property
    def cameras(self) -> list[Camera]:
        return list(self._cameras)

    @property
    def running(self) -> bool:
        return self._task is not None and bool(self._cameras)

    def watch_credentials(self, api: CameraApi) -> None:
        """Persist token rotations; call before the first request to the service."""

        self._subscriptions.append(
            api.on_refresh_token_updated(
                lambda old, new: self._put(RefreshTokenRotated(old, new))
            )
        )
        self._ensure_consumer()

    def start(self, cameras: Iterable[Camera]) -> None:
        if self._cameras:
            return
        self._cameras = list(cameras)
        for camera in self._cameras:
            self._subscribe(camera)
        self._ensure_consumer()

    def _ensure_consumer(self) -> None:
        if self._task is None:
            loop = asyncio.get_running_loop()
            self._task = loop.create_task(self._run(), name="camera-event-bridge")

    def _subscribe(self, camera: Camera) -> None:
        self._subscriptions.append(
            camera.on_doorbell_pressed(lambda *_: self._put(DoorbellPressed(camera)))
        )
        self._subscriptions.append(
            camera.on_motion_detected(
                lambda motion=True, *_: self._put(MotionDetected(camera, bool(motion)))
            )
        )

    def _put(self, event: CameraEvent) -> None:
        self._queue.put_nowait(event)

    async def stop(self) -> None:
        self._cameras = []
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            try:
                release_subscription(subscription)
            except Exception as exc:  # pragma: no cover - client library quirks
                self._logger.debug("unsubscribe failed: %s", exc)

        task = self._task
        self._task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        triggers = list(self._triggers)
        self._triggers.clear()
        for trigger in triggers:
            trigger.cancel()
        if triggers:
            await asyncio.gather(*triggers, return_exceptions=True)

    async def drain(self) -> None:
        """Wait until queued events and in-flight triggers are processed."""

        await self._queue.join()
        while self._triggers:
            await asyncio.gather(*list(self._triggers), return_exceptions=True)

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._dispatch(event)
            except asyncio.CancelledError:
                raise
            except Exception:  # pragma: no cover - defensive logging
                self._logger.exception("Failed to handle %s", type(event).__name__)
            finally:
                self._queue.task_done()

    async def _dispatch(self, event: CameraEvent) -> None:
        if isinstance(event, DoorbellPressed):
            self._trigger(event.camera, TriggerKind.DOORBELL)
        elif isinstance(event, MotionDetected):
            self._logger.info("Motion detected on %s: %s", event.camera.name, event.active)
            if self._stream_motion and event.active:
                self._trigger(event.camera, TriggerKind.MOTION)
        elif isinstance(event, RefreshTokenRotated):
            self._logger.info("Refresh Token Updated")
            try:
                await self._credentials.rotate(event.old, event.new)
            except CredentialError as exc:
                self._logger.error("Unable to persist rotated refresh token: %s", exc)

    def _trigger(self, camera: Camera, kind: TriggerKind) -> None:
        task = asyncio.get_running_loop().create_task(self._manager.handle_trigger(camera, kind))
        self._triggers.add(task)
        task.add_done_callback(self._trigger_done)

    def _trigger_done(self, task: asyncio.Task) -> None:
        self._triggers.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error("Stream trigger failed: %s", exc, exc_info=exc)


__all__ = [
    "CameraEvent",
    "CameraEventBridge",
    "DoorbellPressed",
    "MotionDetected",
    "RefreshTokenRotated",
]

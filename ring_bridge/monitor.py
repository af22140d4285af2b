"""Orchestration root: wire the bridge together for one monitoring session."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from .camera_api import CameraApi, CameraApiFactory
from .camera_bridge import CameraEventBridge
from .config import MonitoringOptions, get_cfg
from .credentials import CredentialError, CredentialStore
from .ffmpeg_io import hls_output_args_from_cfg
from .notifications import DISPLAY_ERROR, NotificationSink
from .output_dir import FileSystemError, OutputDirectoryManager
from .readiness import StreamReadinessWatcher
from .sessions import StreamSessionManager

CONNECTION_ERROR_MESSAGE = "Failed to initialize Ring connection. Check your refresh token."
CREDENTIAL_ERROR_MESSAGE = "Unable to load the Ring refresh token. Check the credential file."

log = logging.getLogger("ring_bridge.monitor")


class MonitoringConnectionError(RuntimeError):
    """Raised when the camera service client cannot be established."""


@dataclass(slots=True)
class BridgeContext:
    """Everything one monitoring session shares, owned by :class:`RingMonitor`."""

    cfg: Mapping[str, Any]
    options: MonitoringOptions
    output_dir: Path
    credential_file: Path
    playlist_name: str
    readiness_timeout: float
    sink: NotificationSink

    @classmethod
    def build(
        cls,
        cfg: Mapping[str, Any],
        options: MonitoringOptions,
        sink: NotificationSink,
    ) -> "BridgeContext":
        paths = cfg.get("paths", {})
        stream = cfg.get("stream", {})
        try:
            readiness_timeout = float(stream.get("readiness_timeout_sec", 15.0))
        except (TypeError, ValueError):
            readiness_timeout = 15.0
        return cls(
            cfg=cfg,
            options=options,
            output_dir=Path(paths.get("output_dir", "public")),
            credential_file=Path(paths.get("credential_file", ".env")),
            playlist_name=str(stream.get("playlist_name") or "stream.m3u8"),
            readiness_timeout=readiness_timeout,
            sink=sink,
        )


class RingMonitor:
    def __init__(
        self,
        *,
        api_factory: CameraApiFactory | None,
        sink: NotificationSink,
        cfg: Mapping[str, Any] | None = None,
    ) -> None:
        self._api_factory = api_factory
        self._sink = sink
        self._cfg = cfg
        self._context: BridgeContext | None = None
        self._api: CameraApi | None = None
        self._manager: StreamSessionManager | None = None
        self._bridge: CameraEventBridge | None = None
        self._watcher: StreamReadinessWatcher | None = None
        self._output_dir: OutputDirectoryManager | None = None

    @property
    def context(self) -> BridgeContext | None:
        return self._context

    @property
    def manager(self) -> StreamSessionManager | None:
        return self._manager

    @property
    def bridge(self) -> CameraEventBridge | None:
        return self._bridge

    @property
    def monitoring(self) -> bool:
        return self._bridge is not None and self._bridge.running

    def status(self) -> dict[str, Any]:
        cameras = [str(camera.name) for camera in self._bridge.cameras] if self._bridge else []
        session = self._manager.status() if self._manager else {"state": "idle"}
        return {"monitoring": self.monitoring, "cameras": cameras, "session": session}

    async def begin_monitoring(self, payload: Mapping[str, Any] | None) -> bool:
        """Handle the "begin monitoring" command; return ``True`` once cameras are watched."""

        await self.stop()
        cfg = self._cfg if self._cfg is not None else get_cfg()
        options = MonitoringOptions.from_payload(payload, cfg)
        context = BridgeContext.build(cfg, options, self._sink)
        self._context = context

        credentials = CredentialStore(context.credential_file)
        try:
            refresh_token = await credentials.load_or_initialize(options.refresh_token)
        except CredentialError as exc:
            log.error("Credential storage unavailable: %s", exc)
            self._sink.notify(DISPLAY_ERROR, CREDENTIAL_ERROR_MESSAGE)
            return False

        self._output_dir = OutputDirectoryManager(context.output_dir)
        self._watcher = StreamReadinessWatcher()
        hls_cfg = cfg.get("stream", {}).get("hls")
        self._manager = StreamSessionManager(
            output_dir=self._output_dir,
            watcher=self._watcher,
            sink=self._sink,
            session_timeout=options.session_timeout,
            output_args=lambda path: hls_output_args_from_cfg(path, hls_cfg),
            playlist_name=context.playlist_name,
            readiness_timeout=context.readiness_timeout,
        )
        self._bridge = CameraEventBridge(
            manager=self._manager,
            credentials=credentials,
            stream_motion=options.stream_motion,
        )

        try:
            cameras = await self._connect(refresh_token, self._bridge)
        except MonitoringConnectionError as exc:
            log.error("Unable to start Ring monitoring: %s", exc)
            self._sink.notify(DISPLAY_ERROR, CONNECTION_ERROR_MESSAGE)
            await self._bridge.drain()
            await self.stop()
            return False

        self._bridge.start(cameras)
        return True

    async def _connect(self, refresh_token: str, bridge: CameraEventBridge) -> list[Any]:
        if self._api_factory is None:
            raise MonitoringConnectionError("no camera service client is configured")
        try:
            api = self._api_factory(refresh_token)
            self._api = api
            # The first request may already rotate the token.
            bridge.watch_credentials(api)
            locations = await api.get_locations()
            cameras = list(await api.get_cameras())
        except Exception as exc:
            raise MonitoringConnectionError(str(exc) or exc.__class__.__name__) from exc
        log.info("Found %d location(s) with %d camera(s).", len(locations), len(cameras))
        return cameras

    async def stop(self) -> None:
        manager, self._manager = self._manager, None
        bridge, self._bridge = self._bridge, None
        watcher, self._watcher = self._watcher, None
        api, self._api = self._api, None
        output_dir, self._output_dir = self._output_dir, None
        if manager is None and bridge is None and api is None:
            return

        log.info("Stopping Ring monitoring")
        if manager is not None:
            await manager.shutdown()
        if bridge is not None:
            await bridge.stop()
        if watcher is not None:
            await watcher.close()
        close = getattr(api, "close", None)
        if callable(close):
            try:
                result = close()
                if hasattr(result, "__await__"):
                    await result
            except Exception as exc:  # pragma: no cover - client library quirks
                log.warning("Error closing camera service client: %r", exc)
        if output_dir is not None:
            try:
                await output_dir.clean()
            except FileSystemError as exc:
                log.warning("Unable to clean output directory: %s", exc)


__all__ = [
    "BridgeContext",
    "CONNECTION_ERROR_MESSAGE",
    "MonitoringConnectionError",
    "RingMonitor",
]

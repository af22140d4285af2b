#!/usr/bin/env python3
"""
HTTP surface for the dashboard display.

Endpoints:
- POST /api/monitoring/begin   "begin monitoring" command (JSON options)
- POST /api/monitoring/stop    stop monitoring and any running stream
- GET  /api/status             monitoring and session snapshot
- GET  /api/events             Server-Sent Events notification stream
- GET  /stream/{filename}      HLS playlist and segments from the output dir
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import time
from pathlib import Path
from typing import Any

from aiohttp import web
from aiohttp.web import AppKey

from .camera_api import CameraApiFactory, load_api_factory
from .config import get_cfg, reload_cfg
from .monitor import RingMonitor
from .notifications import NotificationBus

EVENT_STREAM_HEARTBEAT_SECONDS = 15.0
EVENT_STREAM_RETRY_MILLIS = 2000
STREAM_CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/mp2t",
    ".m4s": "video/iso.segment",
    ".mp4": "video/mp4",
}

NOTIFICATION_BUS_KEY: AppKey[NotificationBus] = web.AppKey("notification_bus", NotificationBus)
MONITOR_KEY: AppKey[RingMonitor] = web.AppKey("ring_monitor", RingMonitor)
OUTPUT_DIR_KEY: AppKey[Path] = web.AppKey("output_dir", Path)
SHUTDOWN_EVENT_KEY: AppKey[asyncio.Event] = web.AppKey("shutdown_event", asyncio.Event)

log = logging.getLogger("ring_bridge.web_server")


def _resolve_api_factory(cfg: dict[str, Any]) -> CameraApiFactory | None:
    target = str(cfg.get("ring", {}).get("client_factory") or "").strip()
    if not target:
        log.warning("ring.client_factory is not configured; monitoring cannot connect")
        return None
    try:
        return load_api_factory(target)
    except (ImportError, AttributeError, TypeError, ValueError) as exc:
        log.error("Unable to load camera service client %r: %s", target, exc)
        return None


def build_app(
    *,
    cfg: dict[str, Any] | None = None,
    api_factory: CameraApiFactory | None = None,
    bus: NotificationBus | None = None,
) -> web.Application:
    cfg = cfg if cfg is not None else get_cfg()
    if api_factory is None:
        api_factory = _resolve_api_factory(cfg)

    app = web.Application()
    bus = bus or NotificationBus()
    monitor = RingMonitor(api_factory=api_factory, sink=bus, cfg=cfg)
    app[NOTIFICATION_BUS_KEY] = bus
    app[MONITOR_KEY] = monitor
    app[OUTPUT_DIR_KEY] = Path(cfg.get("paths", {}).get("output_dir", "public"))
    app[SHUTDOWN_EVENT_KEY] = asyncio.Event()

    async def _stop_monitor(app: web.Application) -> None:
        app[SHUTDOWN_EVENT_KEY].set()
        await app[MONITOR_KEY].stop()

    app.on_shutdown.append(_stop_monitor)

    async def monitoring_begin(request: web.Request) -> web.Response:
        try:
            payload = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise web.HTTPBadRequest(reason="expected a JSON object")
        if not isinstance(payload, dict):
            raise web.HTTPBadRequest(reason="expected a JSON object")
        ok = await request.app[MONITOR_KEY].begin_monitoring(payload)
        return web.json_response({"ok": ok, **request.app[MONITOR_KEY].status()})

    async def monitoring_stop(request: web.Request) -> web.Response:
        await request.app[MONITOR_KEY].stop()
        return web.json_response({"ok": True, **request.app[MONITOR_KEY].status()})

    async def status(request: web.Request) -> web.Response:
        payload = request.app[MONITOR_KEY].status()
        payload["subscribers"] = request.app[NOTIFICATION_BUS_KEY].subscriber_count
        return web.json_response(payload, headers={"Cache-Control": "no-store"})

    async def stream_file(request: web.Request) -> web.StreamResponse:
        name = request.match_info["filename"]
        suffix = Path(name).suffix.lower()
        if (
            not name
            or name != Path(name).name
            or name.startswith(".")
            or suffix not in STREAM_CONTENT_TYPES
        ):
            raise web.HTTPNotFound()
        path = request.app[OUTPUT_DIR_KEY] / name
        if not path.is_file():
            raise web.HTTPNotFound()
        return web.FileResponse(
            path,
            headers={
                "Cache-Control": "no-store",
                "Content-Type": STREAM_CONTENT_TYPES[suffix],
            },
        )

    async def events_stream(request: web.Request) -> web.StreamResponse:
        bus = request.app[NOTIFICATION_BUS_KEY]
        shutdown = request.app[SHUTDOWN_EVENT_KEY]
        last_event_id = request.headers.get("Last-Event-ID") or request.query.get(
            "last_event_id", ""
        )
        queue = bus.subscribe(last_event_id=last_event_id)

        response = web.StreamResponse(
            status=200,
            headers={
                "Cache-Control": "no-store",
                "Content-Type": "text/event-stream",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )
        await response.prepare(request)

        heartbeat_deadline = time.monotonic() + EVENT_STREAM_HEARTBEAT_SECONDS
        heartbeat_chunk = b"event: heartbeat\ndata: {}\n\n"

        try:
            await response.write(f"retry: {EVENT_STREAM_RETRY_MILLIS}\n\n".encode("utf-8"))
            while not shutdown.is_set():
                remaining = heartbeat_deadline - time.monotonic()
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=max(0.0, remaining))
                except asyncio.TimeoutError:
                    try:
                        await response.write(heartbeat_chunk)
                    except ConnectionResetError:
                        break
                    heartbeat_deadline = time.monotonic() + EVENT_STREAM_HEARTBEAT_SECONDS
                    continue

                data_text = json.dumps(event.get("payload"), separators=(",", ":"), ensure_ascii=False)
                buffer_parts = [f"id: {event['id']}\n", f"event: {event['type']}\n"]
                buffer_parts.extend(f"data: {line}\n" for line in data_text.splitlines() or [""])
                buffer_parts.append("\n")
                try:
                    await response.write("".join(buffer_parts).encode("utf-8"))
                except ConnectionResetError:
                    break
        finally:
            bus.unsubscribe(queue)
        return response

    app.router.add_post("/api/monitoring/begin", monitoring_begin)
    app.router.add_post("/api/monitoring/stop", monitoring_stop)
    app.router.add_get("/api/status", status)
    app.router.add_get("/api/events", events_stream)
    app.router.add_get("/stream/{filename}", stream_file)
    return app


async def serve(host: str, port: int, *, access_log: bool = False) -> None:
    app = build_app(cfg=get_cfg())
    runner = web.AppRunner(app, access_log=log if access_log else None)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    log.info("ring bridge listening on %s:%s", host, port)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop.set)
        except NotImplementedError:  # pragma: no cover - non-POSIX loops
            pass
    try:
        await stop.wait()
    finally:
        log.info("Stopping ring bridge ...")
        await runner.cleanup()


def cli_main() -> int:
    parser = argparse.ArgumentParser(description="Ring doorbell to dashboard stream bridge.")
    parser.add_argument("--host", help="Override bind host (defaults to config).")
    parser.add_argument("--port", type=int, help="Override bind port (defaults to config).")
    parser.add_argument("--access-log", action="store_true", help="Enable aiohttp access logs.")
    parser.add_argument("--log-level", help="Python logging level (defaults to config).")
    args = parser.parse_args()

    cfg = reload_cfg()
    level_name = (args.log_level or cfg.get("logging", {}).get("level") or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    web_cfg = cfg.get("web_server", {})
    host = args.host or str(web_cfg.get("host") or "0.0.0.0")
    port = args.port or int(web_cfg.get("port") or 8090)
    try:
        asyncio.run(serve(host, port, access_log=args.access_log))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    raise SystemExit(cli_main())

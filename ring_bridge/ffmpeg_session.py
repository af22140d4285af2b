#!/usr/bin/env python3
"""
FfmpegStreamingSession: a streaming session backed by a local ffmpeg process.

- Pulls from a camera source URL (RTSP, RTP SDP, HTTP) and writes HLS
- Fires on_ended exactly once when ffmpeg exits, whatever the reason
- stop() is idempotent: SIGTERM first, SIGKILL if ffmpeg lingers

Nothing in this package launches it on its own. Camera service client
factories (``ring.client_factory``) whose cameras expose a stream URL return
one of these from ``create_streaming_session``, passing through the output
arguments they were given.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from typing import Callable, Sequence

log = logging.getLogger("ring_bridge.ffmpeg")


class FfmpegStreamingSession:
    def __init__(
        self,
        source_url: str,
        output: Sequence[str],
        *,
        ffmpeg_bin: str = "ffmpeg",
        terminate_timeout: float = 1.5,
    ) -> None:
        self.source_url = source_url
        self.output = list(output)
        self.ffmpeg_bin = ffmpeg_bin
        self.terminate_timeout = float(terminate_timeout)
        self._proc: asyncio.subprocess.Process | None = None
        self._waiter: asyncio.Task | None = None
        self._callbacks: list[Callable[[], None]] = []
        self._ended = False
        self._stop_task: asyncio.Task | None = None
        self.returncode: int | None = None

    @classmethod
    async def start(
        cls, source_url: str, output: Sequence[str], **kwargs
    ) -> "FfmpegStreamingSession":
        session = cls(source_url, output, **kwargs)
        await session._spawn()
        return session

    @property
    def running(self) -> bool:
        return self._proc is not None and not self._ended

    def _build_command(self) -> list[str]:
        return [
            self.ffmpeg_bin,
            "-hide_banner",
            "-loglevel", "warning",
            "-i", self.source_url,
            "-c:v", "libx264",
            "-c:a", "aac",
            *self.output,
        ]

    async def _spawn(self) -> None:
        cmd = self._build_command()
        if shutil.which(cmd[0]) is None:
            raise FileNotFoundError(f"{cmd[0]} not found in PATH")
        log.info("Launching ffmpeg: %s", " ".join(cmd))
        self._proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
            start_new_session=True,
        )
        self._waiter = asyncio.get_running_loop().create_task(self._wait())

    async def _wait(self) -> None:
        proc = self._proc
        if proc is None:
            return
        rc = await proc.wait()
        self.returncode = rc
        log.info("ffmpeg exited rc=%s", rc)
        self._finish()

    def _finish(self) -> None:
        if self._ended:
            return
        self._ended = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:  # pragma: no cover - defensive logging
                log.exception("on_ended callback failed")

    def on_ended(self, callback: Callable[[], None]) -> None:
        if self._ended:
            asyncio.get_running_loop().call_soon(callback)
            return
        self._callbacks.append(callback)

    def stop(self) -> None:
        if self._ended or self._proc is None:
            return
        if self._stop_task is not None:
            return
        self._stop_task = asyncio.get_running_loop().create_task(self._terminate())

    async def wait_closed(self) -> None:
        if self._waiter is not None:
            await asyncio.shield(self._waiter)

    async def _terminate(self) -> None:
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._waiter), self.terminate_timeout)
        except asyncio.TimeoutError:
            log.warning("ffmpeg did not exit after SIGTERM; sending SIGKILL")
            try:
                proc.kill()
            except ProcessLookupError:
                pass


__all__ = ["FfmpegStreamingSession"]

"""Detect the first playable HLS output by watching the output directory."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from watchfiles import Change, awatch

log = logging.getLogger("ring_bridge.readiness")


@dataclass(slots=True)
class WatchTask:
    """A bounded observation looking for one filename in one directory."""

    directory: Path
    filename: str
    deadline: float
    on_ready: Callable[[], None]
    active: bool = True
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task | None = None
    timer: asyncio.TimerHandle | None = None

    @property
    def target(self) -> Path:
        return self.directory / self.filename


def _is_hidden(path: str) -> bool:
    return os.path.basename(path).startswith(".")


def _creation_filter(change: Change, path: str) -> bool:
    return change == Change.added and not _is_hidden(path)


class StreamReadinessWatcher:
    """Arm-once watcher that fires ``on_ready`` when a file appears.

    Only one :class:`WatchTask` is active at a time; arming again replaces the
    previous one. ``on_ready`` runs at most once per :meth:`arm` and never
    after :meth:`disarm`. Expiry of the deadline is silent.
    """

    def __init__(
        self,
        *,
        debounce_ms: int = 200,
        rust_timeout_ms: int = 250,
    ) -> None:
        self._debounce_ms = int(debounce_ms)
        self._rust_timeout_ms = int(rust_timeout_ms)
        self._current: WatchTask | None = None

    @property
    def active(self) -> bool:
        return self._current is not None and self._current.active

    @property
    def current(self) -> WatchTask | None:
        return self._current

    def arm(
        self,
        directory: str | os.PathLike[str],
        filename: str,
        timeout: float,
        on_ready: Callable[[], None],
    ) -> WatchTask:
        if not filename or os.path.basename(filename) != filename:
            raise ValueError("filename must be a plain file name")
        self.disarm()

        loop = asyncio.get_running_loop()
        timeout = max(0.0, float(timeout))
        watch = WatchTask(
            directory=Path(directory),
            filename=filename,
            deadline=loop.time() + timeout,
            on_ready=on_ready,
        )
        self._current = watch
        watch.timer = loop.call_later(timeout, self._expire, watch)
        watch.task = loop.create_task(self._observe(watch), name=f"readiness:{filename}")
        log.debug("Watching %s for %s (%.1fs)", watch.directory, filename, timeout)
        return watch

    def disarm(self) -> None:
        watch = self._current
        self._current = None
        if watch is None:
            return
        self._release(watch)

    async def close(self) -> None:
        watch = self._current
        self.disarm()
        if watch is None or watch.task is None:
            return
        if watch.task is asyncio.current_task():
            return
        with contextlib.suppress(asyncio.CancelledError):
            await watch.task

    def _release(self, watch: WatchTask) -> None:
        watch.active = False
        watch.stop_event.set()
        if watch.timer is not None:
            watch.timer.cancel()
            watch.timer = None
        task = watch.task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _expire(self, watch: WatchTask) -> None:
        if not watch.active:
            return
        log.info("%s did not appear within the readiness window", watch.filename)
        if self._current is watch:
            self._current = None
        watch.timer = None
        self._release(watch)

    def _fire(self, watch: WatchTask) -> None:
        if not watch.active or self._current is not watch:
            return
        self._current = None
        self._release(watch)
        log.info("%s is available", watch.filename)
        try:
            watch.on_ready()
        except Exception:  # pragma: no cover - defensive logging
            log.exception("Readiness callback failed")

    async def _observe(self, watch: WatchTask) -> None:
        target = watch.target
        try:
            if await asyncio.to_thread(target.is_file):
                self._fire(watch)
                return
            async for changes in awatch(
                watch.directory,
                watch_filter=_creation_filter,
                stop_event=watch.stop_event,
                debounce=self._debounce_ms,
                rust_timeout=self._rust_timeout_ms,
                yield_on_timeout=True,
                recursive=False,
            ):
                if not watch.active:
                    return
                seen = any(os.path.basename(path) == watch.filename for _change, path in changes)
                # Renames into place and writes racing the watcher setup do not
                # always surface as "added"; fall back to a direct check.
                if seen or await asyncio.to_thread(target.is_file):
                    self._fire(watch)
                    return
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # pragma: no cover - watch backend failures
            log.warning("Unable to watch %s: %s", watch.directory, exc)
            if self._current is watch:
                self._current = None
            self._release(watch)


__all__ = ["StreamReadinessWatcher", "WatchTask"]

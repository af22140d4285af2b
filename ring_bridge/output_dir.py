"""Output directory housekeeping between stream sessions."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from pathlib import Path

log = logging.getLogger("ring_bridge.output_dir")


class FileSystemError(RuntimeError):
    """Raised when the output directory cannot be prepared."""


class OutputDirectoryManager:
    """Guarantee an existing, empty output directory before each session."""

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    async def clean(self) -> int:
        """Create or empty the directory; return the number of removed entries."""

        removed = await asyncio.to_thread(self._clean_sync)
        if removed:
            log.debug("Removed %d stale entries from %s", removed, self._directory)
        return removed

    def _clean_sync(self) -> int:
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FileSystemError(f"Unable to create {self._directory}: {exc}") from exc

        removed = 0
        try:
            entries = list(os.scandir(self._directory))
        except OSError as exc:
            raise FileSystemError(f"Unable to list {self._directory}: {exc}") from exc
        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    shutil.rmtree(entry.path)
                else:
                    os.unlink(entry.path)
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise FileSystemError(f"Unable to remove {entry.path}: {exc}") from exc
            removed += 1
        return removed


__all__ = ["FileSystemError", "OutputDirectoryManager"]

"""Durable storage for the Ring two-factor refresh token."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from dotenv import dotenv_values

TOKEN_KEY = "RING_2FA_REFRESH_TOKEN"

log = logging.getLogger("ring_bridge.credentials")


class CredentialError(RuntimeError):
    """Raised when the credential file cannot be read or written."""


def format_credential(value: str) -> str:
    return f"{TOKEN_KEY}={value}"


class CredentialStore:
    """Single source of truth for the refresh token.

    The file holds one ``RING_2FA_REFRESH_TOKEN=<value>`` line. Rotation is a
    plain first-occurrence text substitution of the old token so that any
    other content an operator keeps in the file survives untouched.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def read(self) -> str | None:
        try:
            return await asyncio.to_thread(self._read_value)
        except OSError as exc:
            raise CredentialError(f"Unable to read {self._path}: {exc}") from exc

    async def load_or_initialize(self, initial_value: str | None) -> str:
        async with self._lock:
            try:
                exists = await asyncio.to_thread(self._path.exists)
                if exists:
                    stored = await asyncio.to_thread(self._read_value)
                    if stored:
                        return stored
                    log.warning("%s holds no %s entry", self._path, TOKEN_KEY)
                if not initial_value:
                    raise CredentialError(
                        "No stored refresh token and none configured (ring2faRefreshToken)"
                    )
                await asyncio.to_thread(self._write_text, format_credential(initial_value))
            except OSError as exc:
                raise CredentialError(f"Unable to access {self._path}: {exc}") from exc
            log.info("Initialized refresh token storage at %s", self._path)
            return initial_value

    async def rotate(self, old_value: str | None, new_value: str) -> bool:
        """Replace *old_value* with *new_value*; return ``True`` when storage changed."""

        if not old_value:
            # First issuance; there is nothing to replace.
            return False
        async with self._lock:
            try:
                current = await asyncio.to_thread(self._path.read_text, encoding="utf-8")
                if old_value not in current:
                    log.warning("Stored credential does not contain the rotated token")
                    return False
                updated = current.replace(old_value, new_value, 1)
                await asyncio.to_thread(self._write_text, updated)
            except OSError as exc:
                raise CredentialError(f"Unable to rotate token in {self._path}: {exc}") from exc
        log.info("Refresh token rotated")
        return True

    def _read_value(self) -> str | None:
        if not self._path.exists():
            return None
        with self._path.open("r", encoding="utf-8") as handle:
            values = dotenv_values(stream=handle)
        value = values.get(TOKEN_KEY)
        return value or None

    def _write_text(self, text: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, self._path)


__all__ = ["CredentialError", "CredentialStore", "TOKEN_KEY", "format_credential"]

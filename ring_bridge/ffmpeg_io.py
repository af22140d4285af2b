"""Shared helpers for building ffmpeg command lines."""

from __future__ import annotations

import os
from typing import Any, Mapping

DEFAULT_PRESET = "veryfast"
DEFAULT_GOP = 25
DEFAULT_SEGMENT_TIME = 2
DEFAULT_LIST_SIZE = 6


def hls_output_args(
    playlist_path: str | os.PathLike[str],
    *,
    preset: str = DEFAULT_PRESET,
    gop: int = DEFAULT_GOP,
    segment_time: int = DEFAULT_SEGMENT_TIME,
    list_size: int = DEFAULT_LIST_SIZE,
) -> list[str]:
    """Return output arguments that write a self-pruning HLS playlist.

    The playlist path is always the final element; ffmpeg treats the last
    bare argument as the output target. Scene-cut keyframes are disabled so
    every segment starts on the fixed GOP boundary.
    """

    return [
        "-preset",
        str(preset),
        "-g",
        str(int(gop)),
        "-sc_threshold",
        "0",
        "-f",
        "hls",
        "-hls_time",
        str(int(segment_time)),
        "-hls_list_size",
        str(int(list_size)),
        "-hls_flags",
        "delete_segments",
        os.fspath(playlist_path),
    ]


def hls_output_args_from_cfg(
    playlist_path: str | os.PathLike[str], hls_cfg: Mapping[str, Any] | None
) -> list[str]:
    hls_cfg = hls_cfg or {}

    def _int(key: str, default: int) -> int:
        try:
            value = int(hls_cfg.get(key, default))
        except (TypeError, ValueError):
            return default
        return value if value > 0 else default

    preset = hls_cfg.get("preset")
    return hls_output_args(
        playlist_path,
        preset=str(preset) if isinstance(preset, str) and preset.strip() else DEFAULT_PRESET,
        gop=_int("gop", DEFAULT_GOP),
        segment_time=_int("segment_time", DEFAULT_SEGMENT_TIME),
        list_size=_int("list_size", DEFAULT_LIST_SIZE),
    )

#!/usr/bin/env python3
"""
Unified configuration loader for the Ring dashboard bridge.

Load order (first found wins):
  1) RING_BRIDGE_CONFIG (env, absolute or relative to CWD)
  2) /etc/ring-bridge/config.yaml
  3) <project_root>/config.yaml (derived from this file's location)
  4) <script_dir>/config.yaml (directory of the running script)
  5) ./config.yaml (current working directory)

Environment variables override file values when present.

Options sent with the "begin monitoring" command (``ring2faRefreshToken``,
``ringStreamMotion``, ``ringMinutesToStreamVideo``) are parsed by
:class:`MonitoringOptions` and take precedence over the ``ring`` section.
"""
from __future__ import annotations

import copy
import logging
import math
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Mapping

import yaml

PROJECT_ROOT = Path(__file__).resolve().parent.parent

_DEFAULTS: Dict[str, Any] = {
    "paths": {
        "output_dir": str(PROJECT_ROOT / "public"),
        "credential_file": str(PROJECT_ROOT / ".env"),
    },
    "stream": {
        "playlist_name": "stream.m3u8",
        "readiness_timeout_sec": 15.0,
        "hls": {
            "preset": "veryfast",
            "gop": 25,
            "segment_time": 2,
            "list_size": 6,
        },
    },
    "ring": {
        "client_factory": "",
        "stream_motion": False,
        "minutes_to_stream": 1.5,
    },
    "web_server": {
        "host": "0.0.0.0",
        "port": 8090,
    },
    "logging": {
        "level": "INFO",
    },
}

_cfg_cache: Dict[str, Any] | None = None
_search_paths: list[Path] = []
_active_config_path: Path | None = None

log = logging.getLogger("ring_bridge.config")


def _load_yaml_if_exists(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        log.warning("Ignoring unreadable config file %s: %s", path, exc)
        return {}
    if isinstance(data, dict):
        return data
    return {}


def _candidate_search_paths(project_root: Path, script_dir: Path) -> list[Path]:
    search: list[Path] = []
    env_cfg = os.getenv("RING_BRIDGE_CONFIG")
    if env_cfg:
        search.append(Path(env_cfg).expanduser().resolve())
    search.extend(
        [
            Path("/etc/ring-bridge/config.yaml"),
            project_root / "config.yaml",
            script_dir / "config.yaml",
            Path.cwd() / "config.yaml",
        ]
    )
    seen: set[Path] = set()
    ordered: list[Path] = []
    for candidate in search:
        resolved = candidate.resolve()
        if resolved in seen:
            continue
        seen.add(resolved)
        ordered.append(resolved)
    return ordered


def _deep_merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in extra.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _positive_float(value: str) -> float:
    parsed = float(value)
    if not math.isfinite(parsed) or parsed <= 0:
        raise ValueError("value must be a positive number")
    return parsed


def _port(value: str) -> int:
    parsed = int(value)
    if not 0 < parsed < 65536:
        raise ValueError("port out of range")
    return parsed


def _apply_env_overrides(cfg: Dict[str, Any]) -> None:
    overrides: tuple[tuple[str, str, str, Callable[[str], Any]], ...] = (
        ("RING_BRIDGE_OUTPUT_DIR", "paths", "output_dir", str),
        ("RING_BRIDGE_CREDENTIAL_FILE", "paths", "credential_file", str),
        ("RING_BRIDGE_PLAYLIST", "stream", "playlist_name", str),
        ("RING_BRIDGE_READINESS_TIMEOUT", "stream", "readiness_timeout_sec", _positive_float),
        ("RING_BRIDGE_CLIENT_FACTORY", "ring", "client_factory", str),
        ("RING_BRIDGE_HOST", "web_server", "host", str),
        ("RING_BRIDGE_PORT", "web_server", "port", _port),
        ("RING_BRIDGE_LOG_LEVEL", "logging", "level", str),
    )
    for env_key, section, key, cast in overrides:
        if env_key not in os.environ:
            continue
        raw = os.environ[env_key].strip()
        if not raw:
            continue
        try:
            cfg.setdefault(section, {})[key] = cast(raw)
        except ValueError:
            log.warning("Ignoring invalid %s=%r", env_key, raw)


def get_cfg() -> Dict[str, Any]:
    global _cfg_cache, _search_paths, _active_config_path
    if _cfg_cache is not None:
        return _cfg_cache

    cfg = copy.deepcopy(_DEFAULTS)

    try:
        script_dir = Path(sys.argv[0]).resolve().parent
    except (IndexError, OSError):
        script_dir = Path.cwd()

    search = _candidate_search_paths(PROJECT_ROOT, script_dir)
    _search_paths = list(search)

    active: Path | None = None
    for candidate in search:
        if active is None and candidate.exists():
            active = candidate

    for candidate in reversed(search):
        cfg = _deep_merge(cfg, _load_yaml_if_exists(candidate))

    _active_config_path = active

    _apply_env_overrides(cfg)
    _cfg_cache = cfg
    return cfg


def reload_cfg() -> Dict[str, Any]:
    global _cfg_cache
    _cfg_cache = None
    return get_cfg()


def active_config_path() -> Path | None:
    if _cfg_cache is None:
        get_cfg()
    return _active_config_path


def search_paths() -> list[Path]:
    if _cfg_cache is None:
        get_cfg()
    return list(_search_paths)


_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _coerce_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _TRUE_VALUES:
            return True
        if normalized in _FALSE_VALUES:
            return False
    return default


def _coerce_minutes(value: Any, default: float) -> float:
    try:
        minutes = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(minutes) or minutes <= 0:
        return default
    return minutes


@dataclass(slots=True)
class MonitoringOptions:
    """Options carried by the "begin monitoring" command."""

    refresh_token: str
    stream_motion: bool
    minutes_to_stream: float

    @property
    def session_timeout(self) -> float:
        """Session timeout in seconds."""
        return self.minutes_to_stream * 60.0

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any] | None,
        cfg: Mapping[str, Any] | None = None,
    ) -> "MonitoringOptions":
        payload = payload or {}
        ring_cfg = (cfg or get_cfg()).get("ring", {})
        default_motion = _coerce_bool(ring_cfg.get("stream_motion"), False)
        default_minutes = _coerce_minutes(ring_cfg.get("minutes_to_stream"), 1.5)

        token = payload.get("ring2faRefreshToken")
        return cls(
            refresh_token=str(token).strip() if token is not None else "",
            stream_motion=_coerce_bool(payload.get("ringStreamMotion"), default_motion),
            minutes_to_stream=_coerce_minutes(
                payload.get("ringMinutesToStreamVideo"), default_minutes
            ),
        )


__all__ = [
    "MonitoringOptions",
    "PROJECT_ROOT",
    "active_config_path",
    "get_cfg",
    "reload_cfg",
    "search_paths",
]

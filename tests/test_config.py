"""Tests covering configuration loading and monitoring options."""

from __future__ import annotations

from pathlib import Path

import pytest

from ring_bridge import config as config_module
from ring_bridge.config import MonitoringOptions


def _reset_config_state(monkeypatch) -> None:
    monkeypatch.setattr(config_module, "_cfg_cache", None, raising=False)
    monkeypatch.setattr(config_module, "_search_paths", [], raising=False)
    monkeypatch.setattr(config_module, "_active_config_path", None, raising=False)


def test_yaml_file_overrides_defaults(monkeypatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "paths:\n  output_dir: /srv/stream\nstream:\n  readiness_timeout_sec: 30\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("RING_BRIDGE_CONFIG", str(config_path))
    _reset_config_state(monkeypatch)

    cfg = config_module.get_cfg()

    assert cfg["paths"]["output_dir"] == "/srv/stream"
    assert cfg["stream"]["readiness_timeout_sec"] == 30
    assert cfg["stream"]["playlist_name"] == "stream.m3u8"
    assert config_module.active_config_path() == config_path.resolve()


def test_env_overrides(monkeypatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("web_server:\n  port: 9000\n", encoding="utf-8")
    monkeypatch.setenv("RING_BRIDGE_CONFIG", str(config_path))
    monkeypatch.setenv("RING_BRIDGE_PORT", "9100")
    monkeypatch.setenv("RING_BRIDGE_PLAYLIST", "live.m3u8")
    monkeypatch.setenv("RING_BRIDGE_READINESS_TIMEOUT", "-3")
    _reset_config_state(monkeypatch)

    cfg = config_module.get_cfg()

    assert cfg["web_server"]["port"] == 9100
    assert cfg["stream"]["playlist_name"] == "live.m3u8"
    assert cfg["stream"]["readiness_timeout_sec"] == 15.0


def test_unparseable_yaml_falls_back_to_defaults(monkeypatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("paths: [unclosed\n", encoding="utf-8")
    monkeypatch.setenv("RING_BRIDGE_CONFIG", str(config_path))
    _reset_config_state(monkeypatch)

    cfg = config_module.get_cfg()

    assert cfg["ring"]["minutes_to_stream"] == 1.5


def test_monitoring_options_from_payload() -> None:
    cfg = {"ring": {"stream_motion": False, "minutes_to_stream": 1.5}}
    options = MonitoringOptions.from_payload(
        {
            "ring2faRefreshToken": " token ",
            "ringStreamMotion": True,
            "ringMinutesToStreamVideo": 2,
        },
        cfg,
    )

    assert options.refresh_token == "token"
    assert options.stream_motion is True
    assert options.session_timeout == pytest.approx(120.0)


def test_monitoring_options_fall_back_to_config() -> None:
    cfg = {"ring": {"stream_motion": "yes", "minutes_to_stream": 0.5}}
    options = MonitoringOptions.from_payload({"ringMinutesToStreamVideo": "nope"}, cfg)

    assert options.refresh_token == ""
    assert options.stream_motion is True
    assert options.minutes_to_stream == 0.5
    assert options.session_timeout == pytest.approx(30.0)

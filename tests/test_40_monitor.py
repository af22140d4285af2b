from __future__ import annotations

import asyncio
import logging

import pytest

from doubles import FakeApi, FakeCamera, RecordingSink, wait_for
from ring_bridge.credentials import TOKEN_KEY
from ring_bridge.monitor import (
    CONNECTION_ERROR_MESSAGE,
    CREDENTIAL_ERROR_MESSAGE,
    RingMonitor,
)
from ring_bridge.notifications import DISPLAY_ERROR, VIDEO_STREAM_AVAILABLE, VIDEO_STREAM_ENDED
from ring_bridge.sessions import SessionState


def _cfg(tmp_path):
    return {
        "paths": {
            "output_dir": str(tmp_path / "public"),
            "credential_file": str(tmp_path / ".env"),
        },
        "stream": {"playlist_name": "stream.m3u8", "readiness_timeout_sec": 5.0, "hls": {}},
        "ring": {"stream_motion": False, "minutes_to_stream": 1.5},
    }


class Factory:
    def __init__(self, api: FakeApi) -> None:
        self.api = api
        self.tokens: list[str] = []

    def __call__(self, refresh_token: str) -> FakeApi:
        self.tokens.append(refresh_token)
        return self.api


@pytest.mark.asyncio
async def test_begin_monitoring_streams_on_doorbell(tmp_path, caplog):
    sink = RecordingSink()
    camera = FakeCamera(playlist_after=0.2)
    factory = Factory(FakeApi([camera]))
    monitor = RingMonitor(api_factory=factory, sink=sink, cfg=_cfg(tmp_path))

    with caplog.at_level(logging.INFO):
        ok = await monitor.begin_monitoring({"ring2faRefreshToken": "ABC"})

    assert ok is True
    assert factory.tokens == ["ABC"]
    assert monitor.monitoring is True
    assert monitor.status()["cameras"] == ["Front Door"]
    assert "Found 1 location(s) with 1 camera(s)." in caplog.text
    assert (tmp_path / ".env").read_text(encoding="utf-8") == f"{TOKEN_KEY}=ABC"

    camera.press()
    await wait_for(lambda: VIDEO_STREAM_AVAILABLE in sink.types())
    output = camera.outputs[0]
    assert output[-1] == str(tmp_path / "public" / "stream.m3u8")
    assert output[:2] == ["-preset", "veryfast"]
    assert monitor.status()["session"]["state"] == "active"

    await monitor.stop()
    await wait_for(lambda: VIDEO_STREAM_ENDED in sink.types())
    assert monitor.monitoring is False
    assert factory.api.closed is True
    assert list((tmp_path / "public").iterdir()) == []


@pytest.mark.asyncio
async def test_stored_token_wins_over_command_token(tmp_path):
    (tmp_path / ".env").write_text(f"{TOKEN_KEY}=STORED", encoding="utf-8")
    factory = Factory(FakeApi([FakeCamera()]))
    monitor = RingMonitor(api_factory=factory, sink=RecordingSink(), cfg=_cfg(tmp_path))

    assert await monitor.begin_monitoring({"ring2faRefreshToken": "NEW"}) is True

    assert factory.tokens == ["STORED"]
    await monitor.stop()


@pytest.mark.asyncio
async def test_connection_failure_reports_display_error(tmp_path):
    sink = RecordingSink()
    factory = Factory(FakeApi(fail_with=RuntimeError("401 Unauthorized")))
    monitor = RingMonitor(api_factory=factory, sink=sink, cfg=_cfg(tmp_path))

    assert await monitor.begin_monitoring({"ring2faRefreshToken": "ABC"}) is False

    assert sink.events == [(DISPLAY_ERROR, CONNECTION_ERROR_MESSAGE)]
    assert monitor.monitoring is False
    assert factory.api.closed is True


@pytest.mark.asyncio
async def test_missing_client_factory_reports_display_error(tmp_path):
    sink = RecordingSink()
    monitor = RingMonitor(api_factory=None, sink=sink, cfg=_cfg(tmp_path))

    assert await monitor.begin_monitoring({"ring2faRefreshToken": "ABC"}) is False

    assert sink.events == [(DISPLAY_ERROR, CONNECTION_ERROR_MESSAGE)]


@pytest.mark.asyncio
async def test_missing_token_reports_credential_error(tmp_path):
    sink = RecordingSink()
    factory = Factory(FakeApi([FakeCamera()]))
    monitor = RingMonitor(api_factory=factory, sink=sink, cfg=_cfg(tmp_path))

    assert await monitor.begin_monitoring({}) is False

    assert sink.events == [(DISPLAY_ERROR, CREDENTIAL_ERROR_MESSAGE)]
    assert factory.tokens == []


@pytest.mark.asyncio
async def test_rotation_during_connect_is_persisted(tmp_path):
    factory = Factory(FakeApi([FakeCamera()], rotate_on_connect=("ABC", "XYZ")))
    monitor = RingMonitor(api_factory=factory, sink=RecordingSink(), cfg=_cfg(tmp_path))

    assert await monitor.begin_monitoring({"ring2faRefreshToken": "ABC"}) is True
    await monitor.bridge.drain()

    assert (tmp_path / ".env").read_text(encoding="utf-8") == f"{TOKEN_KEY}=XYZ"
    await monitor.stop()


@pytest.mark.asyncio
async def test_rotation_before_connection_failure_is_persisted(tmp_path):
    api = FakeApi(rotate_on_connect=("ABC", "XYZ"), fail_with=RuntimeError("boom"))
    monitor = RingMonitor(api_factory=Factory(api), sink=RecordingSink(), cfg=_cfg(tmp_path))

    assert await monitor.begin_monitoring({"ring2faRefreshToken": "ABC"}) is False

    assert (tmp_path / ".env").read_text(encoding="utf-8") == f"{TOKEN_KEY}=XYZ"


@pytest.mark.asyncio
async def test_begin_again_replaces_previous_monitoring(tmp_path):
    first_api = FakeApi([FakeCamera()])
    second_api = FakeApi([FakeCamera("Garage", 3)])
    apis = iter([first_api, second_api])
    monitor = RingMonitor(
        api_factory=lambda token: next(apis), sink=RecordingSink(), cfg=_cfg(tmp_path)
    )

    assert await monitor.begin_monitoring({"ring2faRefreshToken": "ABC"}) is True
    assert await monitor.begin_monitoring({"ring2faRefreshToken": "ABC"}) is True

    assert first_api.closed is True
    assert second_api.closed is False
    assert monitor.status()["cameras"] == ["Garage"]
    await monitor.stop()
    await monitor.stop()


@pytest.mark.asyncio
async def test_stop_does_not_wait_for_hung_stream_creation(tmp_path):
    camera = FakeCamera(create_delay=1000)
    factory = Factory(FakeApi([camera]))
    monitor = RingMonitor(api_factory=factory, sink=RecordingSink(), cfg=_cfg(tmp_path))
    assert await monitor.begin_monitoring({"ring2faRefreshToken": "ABC"}) is True
    manager = monitor.manager

    camera.press()
    await wait_for(lambda: camera.outputs)
    await asyncio.wait_for(monitor.stop(), 3.0)

    assert manager.state is SessionState.IDLE
    assert monitor.monitoring is False
    assert factory.api.closed is True

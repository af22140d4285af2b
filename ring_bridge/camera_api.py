"""Contracts for the external camera service client.

The bridge never talks to the cloud service directly. A client library is
plugged in through a factory callable ``factory(refresh_token) -> CameraApi``,
configured as ``ring.client_factory: "package.module:callable"``.
"""

from __future__ import annotations

import importlib
from typing import Any, Callable, Protocol, Sequence, runtime_checkable


@runtime_checkable
class Subscription(Protocol):
    def unsubscribe(self) -> None: ...


class StreamingSession(Protocol):
    """Handle to a live stream created by the camera service.

    ``on_ended`` callbacks fire exactly once per handle, also when registered
    after the stream already ended. ``stop`` is idempotent.
    """

    def on_ended(self, callback: Callable[[], None]) -> Any: ...

    def stop(self) -> None: ...


class Camera(Protocol):
    name: str
    id: Any

    def on_doorbell_pressed(self, callback: Callable[[], None]) -> Any: ...

    def on_motion_detected(self, callback: Callable[[bool], None]) -> Any: ...

    async def create_streaming_session(self, output: Sequence[str]) -> StreamingSession: ...


class CameraApi(Protocol):
    async def get_locations(self) -> Sequence[Any]: ...

    async def get_cameras(self) -> Sequence[Camera]: ...

    def on_refresh_token_updated(
        self, callback: Callable[[str | None, str], None]
    ) -> Any: ...


CameraApiFactory = Callable[[str], CameraApi]


def load_api_factory(target: str) -> CameraApiFactory:
    """Resolve ``"module:attribute"`` into a client factory."""

    module_name, sep, attr = target.strip().partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Expected 'module:callable', got {target!r}")
    module = importlib.import_module(module_name)
    factory = module
    for part in attr.split("."):
        factory = getattr(factory, part)
    if not callable(factory):
        raise TypeError(f"{target!r} is not callable")
    return factory  # type: ignore[return-value]


def release_subscription(subscription: Any) -> None:
    if isinstance(subscription, Subscription):
        subscription.unsubscribe()
    elif callable(subscription):
        # Some clients hand back a bare "remove listener" function.
        subscription()


__all__ = [
    "Camera",
    "CameraApi",
    "CameraApiFactory",
    "StreamingSession",
    "Subscription",
    "load_api_factory",
    "release_subscription",
]

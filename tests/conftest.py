"""Shared fixtures: an in-memory registry and a controllable clock."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

import pytest

from npmgraph.core.registry import PackageDescriptor
from npmgraph.logging import configure_logging


@pytest.fixture(autouse=True)
def _quiet_logging() -> None:
    """Route structlog through stdlib logging (WARNING+, stderr) so stdout stays clean."""
    configure_logging(verbose=False, log_json=False)


class FakeRegistry:
    """
    Registry client double.

    ``packages`` maps name -> dependency map; names missing from it are
    unavailable. ``versions`` overrides the default "1.0.0" per package
    (None means the registry has no latest tag).
    """

    def __init__(
        self,
        packages: dict[str, dict[str, str]],
        versions: dict[str, str | None] | None = None,
        *,
        delay: float = 0.0,
        on_fetch: Callable[[str], None] | None = None,
    ) -> None:
        self.packages = packages
        self.versions = versions or {}
        self.delay = delay
        self.on_fetch = on_fetch
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def fetch(self, name: str) -> PackageDescriptor | None:
        with self._lock:
            self.calls.append(name)
        if self.on_fetch is not None:
            self.on_fetch(name)
        if self.delay:
            time.sleep(self.delay)
        if name not in self.packages:
            return None
        version = self.versions.get(name, "1.0.0")
        return PackageDescriptor(
            name=name,
            latest_version=version if version is not None else "unknown",
            dependencies=dict(self.packages[name]),
        )


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_registry() -> Callable[..., FakeRegistry]:
    return FakeRegistry

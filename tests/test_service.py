"""Tests for npmgraph.core.service module."""

from __future__ import annotations

import threading

import pytest

from npmgraph.config import Settings
from npmgraph.core.cache import ResponseCache
from npmgraph.core.registry import RegistryClient
from npmgraph.core.service import (
    BuildEvent,
    BuildEventKind,
    BuildStatus,
    GraphResult,
    GraphService,
)

from conftest import FakeRegistry

SIMPLE = {"a": {"b": "^1"}, "b": {}}


def _service(registry: FakeRegistry, **settings: object) -> GraphService:
    return GraphService(Settings(**settings), client=registry)  # type: ignore[arg-type]


class _Recorder:
    def __init__(self) -> None:
        self.events: list[BuildEvent] = []

    def __call__(self, event: BuildEvent) -> None:
        self.events.append(event)

    @property
    def kinds(self) -> list[BuildEventKind]:
        return [e.kind for e in self.events]


class TestBuildGraph:
    """Status and event reporting for GraphService.build_graph."""

    def test_completed(self) -> None:
        recorder = _Recorder()
        service = _service(FakeRegistry(SIMPLE))
        result = service.build_graph(["a"], 2, 10, on_event=recorder)
        assert result.status is BuildStatus.COMPLETED
        assert result.ok
        assert result.message is None
        assert [n.id for n in result.graph.nodes] == ["a@1.0.0", "b@1.0.0"]
        assert recorder.kinds == [BuildEventKind.STARTED, BuildEventKind.UPDATED]
        assert recorder.events[0].graph is None
        assert recorder.events[-1].graph == result.graph

    def test_empty_seeds(self) -> None:
        registry = FakeRegistry(SIMPLE)
        recorder = _Recorder()
        result = _service(registry).build_graph(["", "  "], on_event=recorder)
        assert result.status is BuildStatus.COMPLETED
        assert result.graph.nodes == []
        assert registry.calls == []
        assert recorder.kinds == [BuildEventKind.STARTED, BuildEventKind.UPDATED]

    def test_cycles_reported(self) -> None:
        service = _service(FakeRegistry({"a": {"b": "1"}, "b": {"a": "1"}}))
        result = service.build_graph(["a"], 3, 10)
        assert result.cycles == ("a",)
        assert len(result.graph.edges) == 2

    def test_invalid_limits_raise_before_start(self) -> None:
        recorder = _Recorder()
        service = _service(FakeRegistry(SIMPLE))
        with pytest.raises(ValueError):
            service.build_graph(["a"], -1, 10, on_event=recorder)
        with pytest.raises(ValueError):
            service.build_graph(["a"], 2, 0, on_event=recorder)
        assert recorder.events == []

    def test_errored(self) -> None:
        def explode(name: str) -> None:
            raise RuntimeError("registry exploded")

        recorder = _Recorder()
        service = _service(FakeRegistry(SIMPLE, on_fetch=explode))
        result = service.build_graph(["a"], on_event=recorder)
        assert result.status is BuildStatus.ERRORED
        assert result.message == "registry exploded"
        assert not result.ok
        assert recorder.kinds == [BuildEventKind.STARTED, BuildEventKind.ERRORED]
        assert recorder.events[-1].message == "registry exploded"

    def test_timed_out_returns_partial_graph(self) -> None:
        deps = {f"d{i}": "1" for i in range(10)}
        registry = FakeRegistry({"a": deps, **{name: {} for name in deps}}, delay=0.2)
        recorder = _Recorder()
        service = _service(registry, build_timeout=0.5)
        result = service.build_graph(["a"], 1, 50, on_event=recorder)
        assert result.status is BuildStatus.TIMED_OUT
        assert result.message == "Timeout after 0.5 seconds"
        assert 1 <= result.graph.node_count < 11
        assert result.graph.nodes[0].id == "a@1.0.0"
        assert result.elapsed < 2.0
        assert recorder.kinds == [BuildEventKind.STARTED, BuildEventKind.TIMED_OUT]

    def test_to_dict(self) -> None:
        result = _service(FakeRegistry(SIMPLE)).build_graph(["a"], 1, 10)
        data = result.to_dict()
        assert data["status"] == "completed"
        assert data["message"] is None
        assert data["cycles"] == []
        assert data["nodes"][0]["id"] == "a@1.0.0"
        assert data["edges"] == [{"from": "a@1.0.0", "to": "b@1.0.0"}]

    def test_result_defaults(self) -> None:
        result = GraphResult(BuildStatus.STOPPED)
        assert result.graph.nodes == []
        assert result.ok is False


class TestCancellation:
    """Cancellation through the caller's event or a keyboard interrupt."""

    def test_cancel_on_started(self) -> None:
        registry = FakeRegistry(SIMPLE)
        cancel = threading.Event()
        recorder = _Recorder()

        def on_event(event: BuildEvent) -> None:
            recorder(event)
            if event.kind is BuildEventKind.STARTED:
                cancel.set()

        result = _service(registry).build_graph(["a"], cancel_event=cancel, on_event=on_event)
        assert result.status is BuildStatus.STOPPED
        assert result.message == "Operation cancelled"
        assert result.graph.nodes == []
        assert registry.calls == []
        assert recorder.kinds == [BuildEventKind.STARTED, BuildEventKind.STOPPED]

    def test_cancel_mid_build_discards_partial(self) -> None:
        cancel = threading.Event()
        registry = FakeRegistry(
            {"a": {"b": "1", "c": "1"}, "b": {}, "c": {}},
            on_fetch=lambda name: cancel.set() if name == "b" else None,
        )
        result = _service(registry).build_graph(["a"], 2, 10, cancel_event=cancel)
        assert result.status is BuildStatus.STOPPED
        assert result.graph.nodes == []
        assert "c" not in registry.calls

    def test_cancel_mid_build_keeps_partial_when_configured(self) -> None:
        cancel = threading.Event()
        registry = FakeRegistry(
            {"a": {"b": "1", "c": "1"}, "b": {}, "c": {}},
            on_fetch=lambda name: cancel.set() if name == "b" else None,
        )
        service = _service(registry, keep_partial_on_cancel=True)
        result = service.build_graph(["a"], 2, 10, cancel_event=cancel)
        assert result.status is BuildStatus.STOPPED
        assert [n.id for n in result.graph.nodes] == ["a@1.0.0", "b@1.0.0"]

    def test_event_set_after_walk_finished_completes(self) -> None:
        cancel = threading.Event()
        registry = FakeRegistry({"a": {}}, on_fetch=lambda name: cancel.set())
        result = _service(registry).build_graph(["a"], 0, 10, cancel_event=cancel)
        assert cancel.is_set()
        assert result.status is BuildStatus.COMPLETED
        assert [n.id for n in result.graph.nodes] == ["a@1.0.0"]

    def test_keyboard_interrupt_stops_build(self) -> None:
        def interrupt(name: str) -> None:
            if name == "b":
                raise KeyboardInterrupt

        registry = FakeRegistry({"a": {"b": "1", "c": "1"}, "b": {}, "c": {}}, on_fetch=interrupt)
        recorder = _Recorder()
        result = _service(registry).build_graph(["a"], 2, 10, on_event=recorder)
        assert result.status is BuildStatus.STOPPED
        assert result.message == "Operation cancelled"
        assert result.graph.nodes == []
        assert recorder.kinds == [BuildEventKind.STARTED, BuildEventKind.STOPPED]

    def test_keyboard_interrupt_keeps_partial_when_configured(self) -> None:
        def interrupt(name: str) -> None:
            if name == "b":
                raise KeyboardInterrupt

        registry = FakeRegistry({"a": {"b": "1"}, "b": {}}, on_fetch=interrupt)
        service = _service(registry, keep_partial_on_cancel=True)
        result = service.build_graph(["a"], 2, 10)
        assert result.status is BuildStatus.STOPPED
        assert [n.id for n in result.graph.nodes] == ["a@1.0.0"]


class TestServiceCache:
    """The response cache outlives individual builds."""

    def test_second_build_uses_cache(self) -> None:
        registry = FakeRegistry(SIMPLE)
        service = _service(registry)
        first = service.build_graph(["a"], 2, 10)
        calls = list(registry.calls)
        second = service.build_graph(["a"], 2, 10)
        assert registry.calls == calls
        assert first.graph == second.graph

    def test_clear_cache_flag_forces_refetch(self) -> None:
        registry = FakeRegistry(SIMPLE)
        service = _service(registry)
        service.build_graph(["a"], 2, 10)
        service.build_graph(["a"], 2, 10, clear_cache=True)
        assert registry.calls == ["a", "b", "a", "b"]

    def test_clear_cache(self) -> None:
        registry = FakeRegistry(SIMPLE)
        service = _service(registry)
        service.build_graph(["a"], 1, 10)
        service.clear_cache()
        assert len(service.cache) == 0
        service.build_graph(["a"], 1, 10)
        assert registry.calls.count("a") == 2

    def test_refetch_after_ttl(self, clock) -> None:
        registry = FakeRegistry(SIMPLE)
        service = GraphService(client=registry, cache=ResponseCache(600, clock=clock))
        service.build_graph(["a"], 0, 10)
        clock.advance(300)
        service.build_graph(["a"], 0, 10)
        assert registry.calls == ["a"]
        clock.advance(301)
        service.build_graph(["a"], 0, 10)
        assert registry.calls == ["a", "a"]

    def test_cache_ttl_from_settings(self) -> None:
        service = _service(FakeRegistry(SIMPLE), cache_ttl=42)
        assert service.cache.ttl == 42


class TestPackageInfo:
    """Tests for GraphService.get_package_info."""

    def test_found_and_cached(self) -> None:
        registry = FakeRegistry(SIMPLE, {"a": "3.1.4"})
        service = _service(registry)
        info = service.get_package_info(" a ")
        assert info is not None
        assert info.latest_version == "3.1.4"
        assert info.dependencies == {"b": "^1"}
        assert service.get_package_info("a") == info
        assert registry.calls == ["a"]

    def test_unknown(self) -> None:
        registry = FakeRegistry(SIMPLE)
        service = _service(registry)
        assert service.get_package_info("nope") is None
        assert service.get_package_info("nope") is None
        assert registry.calls == ["nope", "nope"]

    def test_blank_name(self) -> None:
        registry = FakeRegistry(SIMPLE)
        assert _service(registry).get_package_info("   ") is None
        assert registry.calls == []


class TestServiceLifecycle:
    """Construction and closing."""

    def test_default_client(self) -> None:
        with GraphService(Settings(registry_url="https://registry.test")) as service:
            assert isinstance(service.client, RegistryClient)
            assert service.client.base_url == "https://registry.test"

    def test_injected_client_is_not_closed(self) -> None:
        registry = FakeRegistry(SIMPLE)
        with GraphService(client=registry) as service:
            assert service.client is registry

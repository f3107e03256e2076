"""Graph build service: owns the registry client and cache, enforces the build budget."""

from __future__ import annotations

import enum
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field

import structlog

from npmgraph.config import Settings
from npmgraph.core.cache import ResponseCache
from npmgraph.core.graph import (
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_NODES,
    GraphBuilder,
    GraphData,
    PackageFetcher,
    normalize_seed_names,
)
from npmgraph.core.registry import PackageDescriptor, RegistryClient

log = structlog.get_logger(__name__)


class BuildStatus(str, enum.Enum):
    """Terminal outcome of one graph build."""

    COMPLETED = "completed"
    STOPPED = "stopped"
    TIMED_OUT = "timed_out"
    ERRORED = "errored"


class BuildEventKind(str, enum.Enum):
    """Progress notifications sent to the output consumer."""

    STARTED = "started"
    UPDATED = "updated"
    STOPPED = "stopped"
    TIMED_OUT = "timed_out"
    ERRORED = "errored"


_TERMINAL_EVENTS = {
    BuildStatus.COMPLETED: BuildEventKind.UPDATED,
    BuildStatus.STOPPED: BuildEventKind.STOPPED,
    BuildStatus.TIMED_OUT: BuildEventKind.TIMED_OUT,
    BuildStatus.ERRORED: BuildEventKind.ERRORED,
}


@dataclass(frozen=True)
class BuildEvent:
    kind: BuildEventKind
    graph: GraphData | None = None
    message: str | None = None


@dataclass
class GraphResult:
    """Graph (possibly partial or empty) plus how the build ended."""

    status: BuildStatus
    graph: GraphData = field(default_factory=GraphData)
    message: str | None = None
    elapsed: float = 0.0
    cycles: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status is BuildStatus.COMPLETED

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "message": self.message,
            "elapsed": round(self.elapsed, 3),
            "cycles": list(self.cycles),
            **self.graph.to_dict(),
        }


EventCallback = Callable[[BuildEvent], None]


class GraphService:
    """
    Compose registry client, response cache and graph builder.

    The cache lives as long as the service; everything else is created per
    build. Builds may overlap (e.g. a web server handling two requests); the
    cache is the only state they share.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        client: PackageFetcher | None = None,
        cache: ResponseCache | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self._owns_client = client is None
        if client is None:
            client = RegistryClient(self.settings.registry_url, timeout=self.settings.request_timeout)
        self.client: PackageFetcher = client
        # An empty cache is falsy, so test for None explicitly
        self.cache = cache if cache is not None else ResponseCache(self.settings.cache_ttl)

    def get_package_info(self, name: str) -> PackageDescriptor | None:
        """Descriptor for one package, served from the cache when fresh."""
        name = name.strip()
        if not name:
            return None
        cached = self.cache.get(name)
        if cached is not None:
            return cached
        descriptor = self.client.fetch(name)
        if descriptor is not None:
            self.cache.set(name, descriptor)
        return descriptor

    def clear_cache(self) -> None:
        """Forget every cached registry response (forced refresh)."""
        log.info("clearing registry cache", entries=len(self.cache))
        self.cache.clear()

    def build_graph(
        self,
        seed_names: Iterable[str],
        max_depth: int = DEFAULT_MAX_DEPTH,
        max_nodes: int = DEFAULT_MAX_NODES,
        *,
        cancel_event: threading.Event | None = None,
        clear_cache: bool = False,
        on_event: EventCallback | None = None,
    ) -> GraphResult:
        """
        Build a dependency graph and report how the build ended.

        The builder runs in a worker thread; if it has not finished within
        ``settings.build_timeout`` seconds it is aborted and the partial graph
        is returned with status TIMED_OUT. Setting ``cancel_event`` stops the
        build with status STOPPED once the walk observes it (partial graph
        discarded unless ``settings.keep_partial_on_cancel``). A
        KeyboardInterrupt while waiting on the worker also ends in STOPPED.

        Raises:
            ValueError: if the limits are invalid.
        """
        seeds = normalize_seed_names(seed_names)
        builder = GraphBuilder(
            self.client,
            self.cache,
            max_depth=max_depth,
            max_nodes=max_nodes,
            cancel_event=cancel_event,
            fetch_workers=self.settings.fetch_workers,
        )

        def emit(event: BuildEvent) -> None:
            if on_event is not None:
                on_event(event)

        if clear_cache:
            self.clear_cache()
        emit(BuildEvent(BuildEventKind.STARTED))
        started = time.monotonic()

        if not seeds:
            result = GraphResult(BuildStatus.COMPLETED)
        else:
            result = self._run(builder, seeds)
        result.elapsed = time.monotonic() - started

        log.info(
            "graph build finished",
            status=result.status.value,
            nodes=result.graph.node_count,
            edges=len(result.graph.edges),
            elapsed=round(result.elapsed, 3),
        )
        emit(BuildEvent(_TERMINAL_EVENTS[result.status], graph=result.graph, message=result.message))
        return result

    def _run(self, builder: GraphBuilder, seeds: list[str]) -> GraphResult:
        budget = self.settings.build_timeout
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="npmgraph-build")
        future = executor.submit(builder.build, seeds)
        try:
            graph = future.result(timeout=budget)
        except FutureTimeoutError:
            builder.abort()
            log.warning("graph build timed out", timeout=budget)
            return GraphResult(
                BuildStatus.TIMED_OUT,
                graph=builder.snapshot(),
                message=f"Timeout after {budget:g} seconds",
                cycles=tuple(sorted(builder.cycles)),
            )
        except KeyboardInterrupt:
            builder.abort()
            log.warning("graph build interrupted")
            return self._stopped(builder, builder.snapshot())
        except Exception as e:
            log.exception("graph build failed")
            return GraphResult(BuildStatus.ERRORED, graph=builder.snapshot(), message=str(e))
        finally:
            # Do not block on an aborted build; it unwinds at its next checkpoint.
            executor.shutdown(wait=False)

        if builder.interrupted:
            return self._stopped(builder, graph)
        return GraphResult(BuildStatus.COMPLETED, graph=graph, cycles=tuple(sorted(builder.cycles)))

    def _stopped(self, builder: GraphBuilder, graph: GraphData) -> GraphResult:
        kept = graph if self.settings.keep_partial_on_cancel else GraphData()
        return GraphResult(
            BuildStatus.STOPPED,
            graph=kept,
            message="Operation cancelled",
            cycles=tuple(sorted(builder.cycles)),
        )

    def close(self) -> None:
        if self._owns_client and isinstance(self.client, RegistryClient):
            self.client.close()

    def __enter__(self) -> GraphService:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

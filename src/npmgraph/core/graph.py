"""Build and represent bounded npm dependency graphs."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Protocol

import structlog

from npmgraph.core.cache import ResponseCache
from npmgraph.core.registry import PackageDescriptor

log = structlog.get_logger(__name__)

DEFAULT_MAX_DEPTH = 2
DEFAULT_MAX_NODES = 50
# Only the first N declared dependencies of a package are followed.
FAN_OUT_LIMIT = 10


class PackageFetcher(Protocol):
    """Anything that resolves a package name to a descriptor (None = unavailable)."""

    def fetch(self, name: str) -> PackageDescriptor | None: ...


@dataclass(frozen=True)
class GraphNode:
    """One package at one resolved version."""

    id: str
    label: str
    version: str
    level: int

    def to_dict(self) -> dict:
        return {"id": self.id, "label": self.label, "version": self.version, "level": self.level}


@dataclass(frozen=True)
class GraphEdge:
    """Dependency edge between two node ids."""

    from_id: str
    to_id: str

    def to_dict(self) -> dict:
        return {"from": self.from_id, "to": self.to_id}


def node_id(name: str, version: str) -> str:
    """Canonical node identity: ``name@version``."""
    return f"{name}@{version}"


@dataclass
class GraphData:
    """Ordered nodes and edges, with id and edge-pair indexes for deduplication."""

    nodes: list[GraphNode] = field(default_factory=list)
    edges: list[GraphEdge] = field(default_factory=list)
    _by_id: dict[str, GraphNode] = field(default_factory=dict, init=False, repr=False, compare=False)
    _edge_keys: set[tuple[str, str]] = field(default_factory=set, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        nodes, edges = self.nodes, self.edges
        self.nodes, self.edges = [], []
        for node in nodes:
            self.add_node(node)
        for edge in edges:
            self.add_edge(edge)

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    def get_node(self, id_: str) -> GraphNode | None:
        return self._by_id.get(id_)

    def has_edge(self, from_id: str, to_id: str) -> bool:
        return (from_id, to_id) in self._edge_keys

    def add_node(self, node: GraphNode) -> bool:
        """Append ``node`` unless its id is already present. Returns True if added."""
        if node.id in self._by_id:
            return False
        self._by_id[node.id] = node
        self.nodes.append(node)
        return True

    def add_edge(self, edge: GraphEdge) -> bool:
        """Append ``edge`` unless the (from, to) pair is already present."""
        key = (edge.from_id, edge.to_id)
        if key in self._edge_keys:
            return False
        self._edge_keys.add(key)
        self.edges.append(edge)
        return True

    def roots(self) -> list[GraphNode]:
        """Seed nodes (level 0), in discovery order."""
        return [n for n in self.nodes if n.level == 0]

    def children_of(self, id_: str) -> list[GraphNode]:
        """Direct dependencies of a node, in edge order."""
        return [self._by_id[e.to_id] for e in self.edges if e.from_id == id_ and e.to_id in self._by_id]

    def copy(self) -> GraphData:
        return GraphData(nodes=list(self.nodes), edges=list(self.edges))

    def to_dict(self) -> dict:
        """Serialize to the ``{nodes, edges}`` shape consumed by renderers."""
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }


def normalize_seed_names(seed_names: Iterable[str]) -> list[str]:
    """Trim names, drop blanks and duplicates; first occurrence keeps its position."""
    return list(dict.fromkeys(name.strip() for name in seed_names if name and name.strip()))


class GraphBuilder:
    """
    Bounded, cancellable depth-first expansion from seed packages.

    Descriptors are looked up in ``cache`` first and fetched with ``client``
    on a miss; successful fetches are cached. Cycles are detected against the
    active recursion path only, so a package shared by two branches (a
    diamond) is expanded under both. Packages that cannot be resolved are
    skipped; they never abort the build and are not asked for again until
    the next build.

    With ``fetch_workers > 1`` the direct dependencies of each package are
    prefetched concurrently before the (still sequential) walk over them.
    """

    def __init__(
        self,
        client: PackageFetcher,
        cache: ResponseCache,
        *,
        max_depth: int = DEFAULT_MAX_DEPTH,
        max_nodes: int = DEFAULT_MAX_NODES,
        fan_out: int = FAN_OUT_LIMIT,
        cancel_event: threading.Event | None = None,
        fetch_workers: int = 1,
    ) -> None:
        if max_depth < 0:
            raise ValueError(f"max_depth must be >= 0, got {max_depth!r}")
        if max_nodes < 1:
            raise ValueError(f"max_nodes must be >= 1, got {max_nodes!r}")
        if fan_out < 1:
            raise ValueError(f"fan_out must be >= 1, got {fan_out!r}")
        if fetch_workers < 1:
            raise ValueError(f"fetch_workers must be >= 1, got {fetch_workers!r}")
        self.client = client
        self.cache = cache
        self.max_depth = max_depth
        self.max_nodes = max_nodes
        self.fan_out = fan_out
        self.fetch_workers = fetch_workers
        self._cancel_event = cancel_event
        self._abort = threading.Event()
        self._lock = threading.Lock()
        self._graph = GraphData()
        self._active_path: set[str] = set()
        self._cycles: set[str] = set()
        self._unavailable: set[str] = set()
        self._interrupted = False
        self._pool: ThreadPoolExecutor | None = None

    @property
    def cancelled(self) -> bool:
        """True once the caller's cancel event is set or :meth:`abort` was called."""
        if self._abort.is_set():
            return True
        return self._cancel_event is not None and self._cancel_event.is_set()

    @property
    def interrupted(self) -> bool:
        """True if the last build saw cancellation at a checkpoint and unwound early."""
        return self._interrupted

    @property
    def cycles(self) -> frozenset[str]:
        """Package names seen re-entering the active path during the last build."""
        return frozenset(self._cycles)

    def abort(self) -> None:
        """Stop the build at its next checkpoint, independently of the cancel event."""
        self._abort.set()

    def _stop_requested(self) -> bool:
        if self.cancelled:
            self._interrupted = True
            return True
        return False

    def snapshot(self) -> GraphData:
        """Consistent copy of the graph accumulated so far."""
        with self._lock:
            return self._graph.copy()

    def build(self, seed_names: Iterable[str]) -> GraphData:
        """Expand every seed (in order) until limits or cancellation stop the walk."""
        seeds = normalize_seed_names(seed_names)
        with self._lock:
            self._graph = GraphData()
        self._active_path = set()
        self._cycles = set()
        self._unavailable = set()
        self._interrupted = False
        log.info("building graph", seeds=seeds, max_depth=self.max_depth, max_nodes=self.max_nodes)

        if self.fetch_workers > 1 and seeds:
            self._pool = ThreadPoolExecutor(self.fetch_workers, thread_name_prefix="npmgraph-fetch")
        try:
            for name in seeds:
                if self._stop_requested():
                    log.info("cancellation requested, stopping graph build")
                    break
                if self._node_count() >= self.max_nodes:
                    log.info("reached max nodes limit", max_nodes=self.max_nodes)
                    break
                self._expand(name, 0)
        finally:
            if self._pool is not None:
                self._pool.shutdown(wait=False, cancel_futures=True)
                self._pool = None

        graph = self.snapshot()
        log.info(
            "graph built",
            nodes=graph.node_count,
            edges=len(graph.edges),
            cycles=sorted(self._cycles),
        )
        return graph

    def _node_count(self) -> int:
        with self._lock:
            return self._graph.node_count

    @contextmanager
    def _on_path(self, name: str) -> Iterator[None]:
        self._active_path.add(name)
        try:
            yield
        finally:
            self._active_path.discard(name)

    def _resolve(self, name: str) -> PackageDescriptor | None:
        cached = self.cache.get(name)
        if cached is not None:
            return cached
        with self._lock:
            if name in self._unavailable:
                return None
        if self._stop_requested():
            return None
        descriptor = self.client.fetch(name)
        if descriptor is None:
            # Failures are remembered for this build only, never cached
            with self._lock:
                self._unavailable.add(name)
        else:
            self.cache.set(name, descriptor)
        return descriptor

    def _prefetch(self, names: list[str]) -> None:
        """Warm the cache for ``names`` concurrently (no-op without a worker pool)."""
        if self._pool is None:
            return
        with self._lock:
            missing = [n for n in names if n not in self.cache and n not in self._unavailable]
        if len(missing) < 2:
            return
        list(self._pool.map(self._resolve, missing))

    def _ensure_node(self, name: str, version: str, level: int) -> str | None:
        """Return the node id, inserting the node first if needed; None when the graph is full."""
        id_ = node_id(name, version)
        with self._lock:
            if self._graph.get_node(id_) is None:
                if self._graph.node_count >= self.max_nodes:
                    return None
                self._graph.add_node(GraphNode(id=id_, label=name, version=version, level=level))
        return id_

    def _add_edge(self, from_id: str, to_id: str) -> None:
        with self._lock:
            self._graph.add_edge(GraphEdge(from_id=from_id, to_id=to_id))

    def _expand(self, name: str, depth: int) -> None:
        if depth > self.max_depth or self._node_count() >= self.max_nodes or self._stop_requested():
            return
        if name in self._active_path:
            self._cycles.add(name)
            log.debug("cycle detected", package=name, depth=depth)
            return

        with self._on_path(name):
            descriptor = self._resolve(name)
            if descriptor is None:
                log.debug("skipping unresolvable package", package=name)
                return
            current_id = self._ensure_node(name, descriptor.latest_version, depth)
            if current_id is None or depth >= self.max_depth:
                return

            dep_names = list(descriptor.dependencies)[: self.fan_out]
            self._prefetch(dep_names)
            for dep_name in dep_names:
                if self._node_count() >= self.max_nodes or self._stop_requested():
                    break
                dep = self._resolve(dep_name)
                if dep is None:
                    log.debug("skipping unresolvable dependency", package=name, dependency=dep_name)
                    continue
                dep_id = self._ensure_node(dep_name, dep.latest_version, depth + 1)
                if dep_id is None:
                    break
                self._add_edge(current_id, dep_id)
                if depth < self.max_depth - 1:
                    self._expand(dep_name, depth + 1)


def build_dependency_graph(
    seed_names: Iterable[str],
    *,
    client: PackageFetcher,
    cache: ResponseCache,
    max_depth: int = DEFAULT_MAX_DEPTH,
    max_nodes: int = DEFAULT_MAX_NODES,
    fan_out: int = FAN_OUT_LIMIT,
    cancel_event: threading.Event | None = None,
    fetch_workers: int = 1,
) -> GraphData:
    """
    Build a dependency graph from seed package names.

    Args:
        seed_names: Packages to start from; trimmed and deduplicated.
        client: Registry client used on cache misses.
        cache: Response cache shared across builds.
        max_depth: Deepest level a node may sit at (seeds are level 0).
        max_nodes: Hard ceiling on the number of nodes.
        fan_out: How many declared dependencies per package are followed.
        cancel_event: Optional event; once set the walk unwinds without fetching.
        fetch_workers: Concurrent prefetch workers; 1 means strictly sequential.

    Returns:
        The accumulated GraphData (possibly partial if cancelled).
    """
    builder = GraphBuilder(
        client,
        cache,
        max_depth=max_depth,
        max_nodes=max_nodes,
        fan_out=fan_out,
        cancel_event=cancel_event,
        fetch_workers=fetch_workers,
    )
    return builder.build(seed_names)

"""Runtime settings, read from NPMGRAPH_* environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings

from npmgraph.core.cache import DEFAULT_TTL
from npmgraph.core.registry import DEFAULT_REGISTRY_URL, REQUEST_TIMEOUT

BUILD_TIMEOUT = 30.0  # wall-clock budget for one whole graph build


class Settings(BaseSettings):
    """Knobs shared by the CLI, TUI and web front ends.

    Every field can be set through an ``NPMGRAPH_``-prefixed environment
    variable (``NPMGRAPH_CACHE_TTL=60``). Keyword arguments win over the
    environment; unset or empty variables keep the defaults.

    Attributes:
        registry_url: Base URL of the npm registry.
        request_timeout: Per-request HTTP timeout in seconds.
        cache_ttl: Lifetime of cached registry responses in seconds.
        build_timeout: Wall-clock budget for one graph build in seconds.
        fetch_workers: Threads used to prefetch sibling dependencies.
        keep_partial_on_cancel: Return the partial graph when a build is stopped.
    """

    model_config = {
        "frozen": True,
        "env_prefix": "NPMGRAPH_",
        "env_ignore_empty": True,
    }

    registry_url: str = DEFAULT_REGISTRY_URL
    request_timeout: float = Field(default=REQUEST_TIMEOUT, gt=0)
    cache_ttl: float = Field(default=DEFAULT_TTL, gt=0)
    build_timeout: float = Field(default=BUILD_TIMEOUT, gt=0)
    fetch_workers: int = Field(default=1, ge=1)
    keep_partial_on_cancel: bool = False

"""Fetch npm package metadata from the registry and parse it into descriptors."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import httpx
import structlog

log = structlog.get_logger(__name__)

DEFAULT_REGISTRY_URL = "https://registry.npmjs.org"
REQUEST_TIMEOUT = 10.0  # seconds
USER_AGENT = "npmgraph"
UNKNOWN_VERSION = "unknown"


@dataclass(frozen=True)
class PackageDescriptor:
    """Registry metadata for one package, scoped to its latest version."""

    name: str
    latest_version: str = UNKNOWN_VERSION
    dependencies: dict[str, str] = field(default_factory=dict)
    description: str = ""

    def to_dict(self) -> dict:
        """Serialize to a JSON-friendly dict."""
        return {
            "name": self.name,
            "latest_version": self.latest_version,
            "dependencies": dict(self.dependencies),
            "description": self.description,
        }


def parse_registry_document(name: str, document: Any) -> PackageDescriptor | None:
    """
    Build a PackageDescriptor from a registry JSON document.

    The document is expected to carry ``dist-tags.latest`` and a ``versions``
    map whose entry for that version holds a ``dependencies`` map of
    name -> range. Missing pieces fall back to ``"unknown"`` and ``{}``.
    Returns None if the document is not a JSON object at all.
    """
    if not isinstance(document, dict):
        return None

    latest = UNKNOWN_VERSION
    dist_tags = document.get("dist-tags")
    if isinstance(dist_tags, dict):
        tag = dist_tags.get("latest")
        if isinstance(tag, str) and tag.strip():
            latest = tag.strip()

    dependencies: dict[str, str] = {}
    versions = document.get("versions")
    if isinstance(versions, dict):
        manifest = versions.get(latest)
        if isinstance(manifest, dict):
            declared = manifest.get("dependencies")
            if isinstance(declared, dict):
                for dep_name, dep_range in declared.items():
                    # Registry order is kept; junk ranges are dropped
                    if isinstance(dep_name, str) and dep_name and isinstance(dep_range, str):
                        dependencies[dep_name] = dep_range

    description = document.get("description")
    return PackageDescriptor(
        name=name,
        latest_version=latest,
        dependencies=dependencies,
        description=description.strip() if isinstance(description, str) else "",
    )


class RegistryClient:
    """
    Resolve package names against an npm-compatible registry.

    One GET per call with a fixed timeout. Any failure (timeout, transport
    error, non-200 status, malformed body) yields None instead of raising.
    The underlying httpx client is thread-safe, so one RegistryClient can be
    shared by concurrent builds.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_REGISTRY_URL,
        *,
        timeout: float = REQUEST_TIMEOUT,
        user_agent: str = USER_AGENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout!r}")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http = httpx.Client(
            timeout=httpx.Timeout(timeout),
            headers={"Accept": "application/json", "User-Agent": user_agent},
            transport=transport,
            follow_redirects=True,
        )

    def package_url(self, name: str) -> str:
        """URL of the registry document for ``name`` (scoped names are fully escaped)."""
        return f"{self.base_url}/{quote(name, safe='')}"

    def fetch(self, name: str) -> PackageDescriptor | None:
        """Fetch and parse metadata for one package, or None if unavailable."""
        url = self.package_url(name)
        try:
            response = self._http.get(url)
        except httpx.TimeoutException:
            log.warning("registry request timed out", package=name, timeout=self.timeout)
            return None
        except httpx.HTTPError as e:
            log.warning("registry request failed", package=name, error=str(e))
            return None

        if response.status_code != 200:
            log.warning("registry returned error status", package=name, status=response.status_code)
            return None
        try:
            document = response.json()
        except ValueError as e:
            log.warning("registry returned malformed JSON", package=name, error=str(e))
            return None

        descriptor = parse_registry_document(name, document)
        if descriptor is None:
            log.warning("registry document is not an object", package=name)
            return None
        log.debug(
            "fetched package",
            package=name,
            version=descriptor.latest_version,
            dependencies=len(descriptor.dependencies),
        )
        return descriptor

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> RegistryClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

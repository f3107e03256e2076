"""Read seed package names from a project's package.json."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

import structlog

log = structlog.get_logger(__name__)

MANIFEST_FILENAME = "package.json"

# Sections of package.json that declare dependencies, in display order.
DEPENDENCY_TYPES = (
    "dependencies",
    "devDependencies",
    "peerDependencies",
    "optionalDependencies",
)
# Default seed selection: production dependencies only.
DEFAULT_SEED_TYPES = ("dependencies",)


@dataclass(frozen=True)
class ManifestPackage:
    """One declared dependency: name, declared range and section."""

    name: str
    version: str
    type: str

    def to_dict(self) -> dict:
        return {"name": self.name, "version": self.version, "type": self.type}


@dataclass
class Manifest:
    """Dependencies declared by one project folder."""

    project_name: str
    folder_path: Path
    packages: list[ManifestPackage] = field(default_factory=list)

    def by_type(self) -> dict[str, list[ManifestPackage]]:
        """Packages grouped by section; empty sections omitted."""
        grouped: dict[str, list[ManifestPackage]] = {}
        for dep_type in DEPENDENCY_TYPES:
            pkgs = [p for p in self.packages if p.type == dep_type]
            if pkgs:
                grouped[dep_type] = pkgs
        return grouped

    def to_dict(self) -> dict:
        return {
            "project_name": self.project_name,
            "folder_path": str(self.folder_path),
            "packages": [p.to_dict() for p in self.packages],
        }


def find_manifest_folder(start: Path) -> Path | None:
    """Nearest folder at or above ``start`` that contains a package.json."""
    current = Path(start).resolve()
    if current.is_file():
        current = current.parent
    for folder in (current, *current.parents):
        if (folder / MANIFEST_FILENAME).is_file():
            return folder
    return None


def read_manifest(folder: Path) -> Manifest | None:
    """
    Parse ``folder/package.json`` into a Manifest.

    Every dependency section is read; non-string ranges become "unknown".
    Packages are sorted by name. Returns None if the file is missing,
    unreadable, or not a JSON object.
    """
    folder = Path(folder)
    path = folder / MANIFEST_FILENAME
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        log.warning("could not read manifest", path=str(path), error=str(e))
        return None
    if not isinstance(data, dict):
        return None

    packages: list[ManifestPackage] = []
    for dep_type in DEPENDENCY_TYPES:
        section = data.get(dep_type)
        if not isinstance(section, dict):
            continue
        for name, version in section.items():
            packages.append(
                ManifestPackage(
                    name=name,
                    version=version if isinstance(version, str) else "unknown",
                    type=dep_type,
                )
            )
    packages.sort(key=lambda p: p.name)

    project_name = data.get("name")
    return Manifest(
        project_name=project_name if isinstance(project_name, str) and project_name else folder.resolve().name,
        folder_path=folder.resolve(),
        packages=packages,
    )


def default_seed_names(
    manifest: Manifest,
    types: tuple[str, ...] | list[str] = DEFAULT_SEED_TYPES,
) -> list[str]:
    """Names of the packages whose section is in ``types`` (manifest order, no duplicates)."""
    return list(dict.fromkeys(p.name for p in manifest.packages if p.type in types))

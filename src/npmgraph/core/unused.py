"""Find declared dependencies that no source file of the project imports."""

from __future__ import annotations

import os
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from npmgraph.core.manifest import ManifestPackage, read_manifest

log = structlog.get_logger(__name__)

SOURCE_EXTENSIONS = (".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs")
EXCLUDED_DIRS = frozenset({"node_modules", "dist", "out", "build", ".git", "coverage"})
# Sections compared against the imports; peer and optional deps are not.
CHECKED_TYPES = ("dependencies", "devDependencies")

_IMPORT_PATTERNS = (
    re.compile(r"""\brequire\s*\(\s*['"]([^'"]+)['"]\s*\)"""),
    re.compile(r"""\bimport\s+[^'";]*?\bfrom\s*['"]([^'"]+)['"]"""),
    re.compile(r"""\bexport\s+[^'";]*?\bfrom\s*['"]([^'"]+)['"]"""),
    re.compile(r"""\bimport\s*\(\s*['"]([^'"]+)['"]\s*\)"""),
    re.compile(r"""\bimport\s+['"]([^'"]+)['"]"""),
)


@dataclass
class UnusedReport:
    """Outcome of one scan: which declared packages were never imported."""

    project_path: Path
    total_dependencies: int
    scanned_files: int
    unused: list[ManifestPackage] = field(default_factory=list)

    @property
    def dependencies(self) -> list[ManifestPackage]:
        return [p for p in self.unused if p.type == "dependencies"]

    @property
    def dev_dependencies(self) -> list[ManifestPackage]:
        return [p for p in self.unused if p.type == "devDependencies"]

    def to_dict(self) -> dict:
        return {
            "project_path": str(self.project_path),
            "total_dependencies": self.total_dependencies,
            "scanned_files": self.scanned_files,
            "unused": [p.to_dict() for p in self.unused],
        }


def iter_source_files(root: Path) -> Iterator[Path]:
    """JavaScript/TypeScript files under ``root``, skipping build output and node_modules."""
    for dirpath, dirnames, filenames in os.walk(root, topdown=True):
        dirnames[:] = sorted(d for d in dirnames if d not in EXCLUDED_DIRS)
        for filename in sorted(filenames):
            if filename.endswith(SOURCE_EXTENSIONS):
                yield Path(dirpath) / filename


def extract_specifiers(source: str) -> list[str]:
    """Module specifiers from import/export/require statements, in pattern order."""
    specifiers: list[str] = []
    for pattern in _IMPORT_PATTERNS:
        specifiers.extend(m.group(1) for m in pattern.finditer(source))
    return specifiers


def package_name(specifier: str) -> str | None:
    """
    Package that a module specifier refers to.

    ``lodash/fp`` -> ``lodash``, ``@scope/pkg/sub`` -> ``@scope/pkg``.
    Relative and absolute paths and ``node:`` builtins give None.
    """
    if not specifier or specifier.startswith((".", "/", "node:")):
        return None
    parts = specifier.split("/")
    if specifier.startswith("@"):
        if len(parts) < 2 or not parts[1]:
            return None
        return f"{parts[0]}/{parts[1]}"
    return parts[0]


def used_package_names(files: Iterable[Path]) -> set[str]:
    """Every package imported by at least one of ``files``; unreadable files are skipped."""
    used: set[str] = set()
    for path in files:
        try:
            source = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            log.warning("could not read source file", path=str(path), error=str(e))
            continue
        for specifier in extract_specifiers(source):
            name = package_name(specifier)
            if name is not None:
                used.add(name)
    return used


def find_unused_dependencies(folder: Path) -> UnusedReport | None:
    """
    Compare ``folder/package.json`` against the imports of its source files.

    Only dependencies and devDependencies are checked. Returns None when the
    folder has no readable package.json.
    """
    manifest = read_manifest(folder)
    if manifest is None:
        return None
    declared = [p for p in manifest.packages if p.type in CHECKED_TYPES]
    files = list(iter_source_files(manifest.folder_path))
    used = used_package_names(files)
    unused = [p for p in declared if p.name not in used]
    log.info(
        "scanned for unused dependencies",
        project=manifest.project_name,
        files=len(files),
        declared=len(declared),
        unused=len(unused),
    )
    return UnusedReport(
        project_path=manifest.folder_path,
        total_dependencies=len(declared),
        scanned_files=len(files),
        unused=unused,
    )

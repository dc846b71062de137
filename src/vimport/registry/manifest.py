"""Package manifest model and the per-process manifest cache."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from ..constants import Constants


def resolve_main_file(pkg_json: Mapping[str, Any]) -> str:
    """Pick the entry file of a package.json.

    Priority: ``module`` (ESM) > ``main`` (CommonJS) > ``index.js``.
    """
    for key in ("module", "main"):
        value = pkg_json.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return Constants.DEFAULT_MAIN_FILE


@dataclass(frozen=True)
class PackageManifest:
    """Subset of a registry manifest needed to load a package."""

    name: str
    resolved_version: Optional[str]
    main_entry_path: str
    dependencies: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_json(cls, data: Any, requested_name: str = "") -> "PackageManifest":
        """Build a manifest from a decoded package.json document.

        Args:
            data: Decoded JSON; anything that is not an object yields an
                empty manifest for ``requested_name``.
            requested_name: Name used when the document carries none.
        """
        if not isinstance(data, Mapping):
            data = {}
        deps = data.get("dependencies")
        dependencies = (
            {str(k): str(v) for k, v in deps.items()} if isinstance(deps, Mapping) else {}
        )
        version = data.get("version")
        return cls(
            name=str(data.get("name") or requested_name),
            resolved_version=str(version) if version else None,
            main_entry_path=resolve_main_file(data),
            dependencies=dependencies,
        )


class ManifestCache:
    """Manifests keyed by ``name@version``.

    Entries are never mutated; they are only dropped by ``clear``.
    """

    def __init__(self) -> None:
        self._cache: Dict[str, PackageManifest] = {}

    @staticmethod
    def make_key(name: str, version: Optional[str]) -> str:
        """Generate cache key."""
        return f"{name}@{version or Constants.DEFAULT_VERSION}"

    def get(self, name: str, version: Optional[str]) -> Optional[PackageManifest]:
        """Return the cached manifest or None."""
        return self._cache.get(self.make_key(name, version))

    def set(self, name: str, version: Optional[str], manifest: PackageManifest) -> None:
        """Cache a manifest, keeping an existing entry for the same key."""
        self._cache.setdefault(self.make_key(name, version), manifest)

    def clear(self) -> None:
        """Clear all cached entries."""
        self._cache.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._cache

    def __len__(self) -> int:
        return len(self._cache)

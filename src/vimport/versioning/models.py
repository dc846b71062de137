"""Data models for package specifiers."""

from dataclasses import dataclass
from typing import Optional

from ..constants import Constants, Source


@dataclass(frozen=True)
class PackageSpecifier:
    """Structured intent parsed from a package string."""
    name: str  # real package name; "owner/repo" for GitHub
    version: str  # "latest" or an exact token
    source: Source
    alias: Optional[str]
    original_input: str
    degraded: bool = False  # parsed best-effort from malformed input

    @property
    def is_scoped(self) -> bool:
        """True for ``@scope/pkg`` names."""
        return self.name.startswith("@") and "/" in self.name

    @property
    def is_latest(self) -> bool:
        """True when no exact version was pinned."""
        return self.version == Constants.DEFAULT_VERSION

    @property
    def module_name(self) -> str:
        """Logical name the compiled module is registered under.

        Registry packages register under their full name; GitHub imports
        register under the repository name.
        """
        if self.source == Source.GITHUB:
            return self.name.rsplit("/", 1)[-1]
        return self.name

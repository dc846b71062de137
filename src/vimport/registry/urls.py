"""URL builders for npm, Yarn and GitHub package sources."""

from __future__ import annotations

import os
import urllib.parse
from typing import Dict, Optional

from ..constants import Constants, Source


def encode_package_name(name: str) -> str:
    """Percent-encode a package name per path segment.

    ``@scope/pkg`` becomes ``@<scope>/<pkg>`` with each part encoded on its
    own, so the slash stays a path separator.
    """
    if name.startswith("@") and "/" in name:
        scope, pkg = name[1:].split("/", 1)
        return f"@{urllib.parse.quote(scope, safe='')}/{urllib.parse.quote(pkg, safe='')}"
    return urllib.parse.quote(name, safe="")


def _encode_version(version: str) -> str:
    return urllib.parse.quote(version, safe="")


def _encode_file_path(file_path: str) -> str:
    path = file_path[2:] if file_path.startswith("./") else file_path
    return "/".join(urllib.parse.quote(part, safe="") for part in path.lstrip("/").split("/"))


class RegistryUrls:
    """Maps package coordinates to manifest and file URLs.

    Yarn has no public file CDN; Yarn file URLs fall back to the npm CDN and
    callers must not rely on them being served by a distinct host.
    """

    DEFAULT_BASES = {
        "npm_cdn": Constants.NPM_CDN_URL,
        "npm_registry": Constants.NPM_REGISTRY_URL,
        "github_raw": Constants.GITHUB_RAW_URL,
    }

    def __init__(
        self,
        npm_cdn: Optional[str] = None,
        npm_registry: Optional[str] = None,
        yarn_registry: Optional[str] = None,
        github_raw: Optional[str] = None,
    ):
        """Initialize the URL builder.

        Args:
            npm_cdn: Base of an unpkg-compatible CDN.
            npm_registry: Base of the npm registry API.
            yarn_registry: Yarn registry base; when None the ``YARN_REGISTRY``
                environment variable is read on each call.
            github_raw: Base serving raw GitHub content.
        """
        self._bases: Dict[str, str] = {**self.DEFAULT_BASES}
        if npm_cdn:
            self._bases["npm_cdn"] = npm_cdn
        if npm_registry:
            self._bases["npm_registry"] = npm_registry
        if github_raw:
            self._bases["github_raw"] = github_raw
        self._yarn_registry = yarn_registry

    def _base(self, key: str) -> str:
        return self._bases[key].rstrip("/")

    @property
    def yarn_registry(self) -> str:
        """Yarn registry base, honoring the ``YARN_REGISTRY`` override."""
        base = self._yarn_registry or os.environ.get(
            Constants.ENV_YARN_REGISTRY, Constants.YARN_REGISTRY_URL
        )
        return base.rstrip("/")

    def npm_package_url(self, name: str, version: Optional[str] = None) -> str:
        """CDN URL of a package's package.json."""
        suffix = f"@{_encode_version(version)}" if version else ""
        return f"{self._base('npm_cdn')}/{encode_package_name(name)}{suffix}/{Constants.PACKAGE_JSON_FILE}"

    def npm_file_url(self, name: str, version: Optional[str], file_path: str) -> str:
        """CDN URL of a file inside a published package."""
        suffix = f"@{_encode_version(version)}" if version else ""
        return f"{self._base('npm_cdn')}/{encode_package_name(name)}{suffix}/{_encode_file_path(file_path)}"

    def npm_registry_url(self, name: str, version: Optional[str] = None) -> str:
        """npm registry API URL of one version's manifest."""
        return f"{self._base('npm_registry')}/{encode_package_name(name)}/{_encode_version(version or Constants.DEFAULT_VERSION)}"

    def yarn_package_url(self, name: str, version: Optional[str] = None) -> str:
        """Yarn registry URL of one version's manifest."""
        return f"{self.yarn_registry}/{encode_package_name(name)}/{_encode_version(version or Constants.DEFAULT_VERSION)}"

    def yarn_file_url(self, name: str, version: Optional[str], file_path: str) -> str:
        """Yarn file URL; served by the npm CDN."""
        return self.npm_file_url(name, version, file_path)

    def manifest_url(self, source: Source, name: str, version: Optional[str]) -> str:
        """Primary manifest URL for a registry source."""
        if source == Source.YARN:
            return self.yarn_package_url(name, version)
        return self.npm_package_url(name, version)

    def file_url(self, source: Source, name: str, version: Optional[str], file_path: str) -> str:
        """File URL for a registry source."""
        if source == Source.YARN:
            return self.yarn_file_url(name, version, file_path)
        return self.npm_file_url(name, version, file_path)

    def github_file_url(self, owner: str, repo: str, branch: str, file_path: str) -> str:
        """Raw content URL of a file in a GitHub repository branch."""
        return "/".join(
            [
                self._base("github_raw"),
                urllib.parse.quote(owner, safe=""),
                urllib.parse.quote(repo, safe=""),
                urllib.parse.quote(branch, safe=""),
                _encode_file_path(file_path),
            ]
        )

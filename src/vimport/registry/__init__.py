"""Registry URL builders and manifest handling."""

from .manifest import ManifestCache, PackageManifest, resolve_main_file
from .urls import RegistryUrls, encode_package_name

__all__ = [
    "ManifestCache",
    "PackageManifest",
    "RegistryUrls",
    "encode_package_name",
    "resolve_main_file",
]

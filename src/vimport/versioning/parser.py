"""Specifier parsing utilities for package imports.

Grammar: ``[alias@]name[@version]`` for registry imports, with an optional
explicit source prefix as ``alias@source:name[@version]`` or
``source:name[@version]``; ``github:owner/repo`` for GitHub imports. Scoped
names keep their leading ``@scope/`` segment.
"""

import logging
from typing import Optional, Tuple

import semantic_version

from ..constants import Constants, Source
from .models import PackageSpecifier

logger = logging.getLogger(__name__)

_RANGE_PREFIXES = "^~"


def _top_level_at(s: str) -> int:
    """Index of the ``@`` separating a name from what follows, or -1.

    A leading ``@`` belongs to a scoped name and is never a separator.
    """
    return s.find("@", 1)


def _split_source_prefix(s: str) -> Tuple[Optional[Source], str]:
    """Return (source, remainder) when ``s`` starts with ``npm:``/``yarn:``/``github:``."""
    for source in Source:
        prefix = f"{source.value}:"
        if s.startswith(prefix):
            return source, s[len(prefix):]
    return None, s


def _normalize_version(token: str) -> str:
    """Strip leading range operators; the importer only knows pin-or-latest."""
    token = token.strip().lstrip(_RANGE_PREFIXES).strip()
    return token or Constants.DEFAULT_VERSION


def _split_name_version(s: str) -> Tuple[str, str]:
    at = _top_level_at(s)
    if at == -1:
        return s, Constants.DEFAULT_VERSION
    return s[:at], _normalize_version(s[at + 1:])


def _degraded(raw: str) -> PackageSpecifier:
    logger.debug("Malformed package specifier %r; treating it as a package name", raw)
    return PackageSpecifier(
        name=raw.strip(),
        version=Constants.DEFAULT_VERSION,
        source=Source.NPM,
        alias=None,
        original_input=raw,
        degraded=True,
    )


def parse_specifier(text: str) -> PackageSpecifier:
    """Parse a package string into a PackageSpecifier.

    Pure and never raises: malformed input degrades to the whole string as
    the package name with default version and source.

    Examples:
        ``lodash`` -> lodash@latest from npm
        ``express@^4.17.1`` -> express@4.17.1
        ``@babel/core@7.0.0`` -> @babel/core@7.0.0
        ``myexpress@npm:express@4.17.1`` -> express@4.17.1, alias myexpress
        ``github:owner/repo`` -> owner/repo from GitHub
    """
    token = text.strip()
    if not token:
        return _degraded(text)

    # Explicit source without alias, e.g. "yarn:lodash@4" or "github:owner/repo"
    source, remainder = _split_source_prefix(token)
    alias = None
    if source is None:
        at = _top_level_at(token)
        if at == -1:
            if token.startswith("@") and "/" not in token:
                return _degraded(text)
            return PackageSpecifier(
                name=token,
                version=Constants.DEFAULT_VERSION,
                source=Source.NPM,
                alias=None,
                original_input=text,
            )
        left, rest = token[:at], token[at + 1:]
        source, remainder = _split_source_prefix(rest)
        if source is None:
            if not left:
                return _degraded(text)
            return PackageSpecifier(
                name=left,
                version=_normalize_version(rest),
                source=Source.NPM,
                alias=None,
                original_input=text,
            )
        alias = left or None

    name, version = _split_name_version(remainder.strip())
    if not name or name == "@":
        return _degraded(text)
    if source == Source.GITHUB and "/" not in name:
        return _degraded(text)
    return PackageSpecifier(
        name=name,
        version=version,
        source=source,
        alias=alias,
        original_input=text,
    )


def normalize_dependency_range(token: Optional[str]) -> str:
    """Keep a declared dependency range only when it is a valid npm range.

    Anything else (git URLs, tags, ``npm:`` aliases, empty values) resolves
    to ``latest``.
    """
    if token is None:
        return Constants.DEFAULT_VERSION
    token = str(token).strip()
    if not token or token.lower() == Constants.DEFAULT_VERSION:
        return Constants.DEFAULT_VERSION
    try:
        semantic_version.NpmSpec(token)
    except ValueError:
        return Constants.DEFAULT_VERSION
    return token

"""Error taxonomy for the importer.

Fatal conditions are exceptions deriving from ``VimportError``. Non-fatal
conditions are ``Warning`` subclasses; the importer logs them and records
their message in the batch report instead of raising.
"""

from __future__ import annotations

from typing import Optional


class VimportError(Exception):
    """Base class for all importer errors."""


class NetworkError(VimportError):
    """HTTP or transport failure after retries were exhausted.

    ``status_code`` is the last observed HTTP status, 0 for transport-level
    errors and 408 for timeouts.
    """

    def __init__(self, message: str, status_code: int, url: str):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class InvalidResponseError(VimportError):
    """A payload expected to be structured (JSON) could not be parsed."""

    def __init__(self, message: str, url: str):
        super().__init__(message)
        self.url = url


class CompileError(VimportError):
    """Fetched source could not be compiled or evaluated."""

    def __init__(self, message: str, module_name: str):
        super().__init__(message)
        self.module_name = module_name


class DependencyFailure(VimportError):
    """A dependency failed to import; recorded, never fatal to its parent."""

    def __init__(self, message: str, name: str, parent: Optional[str] = None):
        super().__init__(message)
        self.name = name
        self.parent = parent


class ParseDegraded(UserWarning):
    """A specifier was malformed and parsed on a best-effort basis."""


class CircularDependencyWarning(UserWarning):
    """A package was requested while already being resolved; branch skipped."""

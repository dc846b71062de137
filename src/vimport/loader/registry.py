"""Virtual module registry: logical name -> compiled module.

Lookups go through an explicit resolver chain: the registry is consulted
first and anything it does not hold falls through to the normal Python
import system. Nothing is installed on ``sys.meta_path``; code compiled by
the loader sees the chain through its own ``__import__`` and ``require``.
"""

from __future__ import annotations

import builtins
import importlib
import logging
import time
from dataclasses import dataclass, field
from types import ModuleType
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VirtualModuleRecord:
    """A compiled module addressable by logical name."""

    logical_name: str
    storage_path: str
    compiled_handle: ModuleType = field(repr=False)
    loaded_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class LoadedModuleInfo:
    """Row returned by ``VirtualModuleRegistry.list_loaded``."""

    name: str
    storage_path: str
    is_loaded: bool


class VirtualModuleRegistry:
    """Owns every VirtualModuleRecord and the module cache behind them."""

    def __init__(self) -> None:
        self._records: Dict[str, VirtualModuleRecord] = {}
        self._module_cache: Dict[str, ModuleType] = {}  # storage path -> module

    def register(self, record: VirtualModuleRecord) -> None:
        """Register a record, replacing any prior record for the same name."""
        if record.logical_name in self._records:
            logger.debug("Replacing virtual module %s", record.logical_name)
        self._records[record.logical_name] = record
        self._module_cache[record.storage_path] = record.compiled_handle

    def add_alias(self, alias: str, name: str) -> Optional[VirtualModuleRecord]:
        """Make an existing module reachable under ``alias`` too."""
        target = self._records.get(name)
        if target is None or alias == name:
            return target
        record = VirtualModuleRecord(
            logical_name=alias,
            storage_path=target.storage_path,
            compiled_handle=target.compiled_handle,
            loaded_at=target.loaded_at,
        )
        self._records[alias] = record
        return record

    def get(self, name: str) -> Optional[VirtualModuleRecord]:
        """Return the record registered under ``name``."""
        return self._records.get(name)

    def resolve(self, name: str) -> Optional[ModuleType]:
        """Return the virtual module for ``name`` or None."""
        record = self._records.get(name)
        if record is None:
            return None
        return self._module_cache.get(record.storage_path)

    def require(self, name: str) -> Any:
        """Resolve ``name`` virtually, falling through to a normal import."""
        module = self.resolve(name)
        if module is not None:
            return module
        return importlib.import_module(name)

    def make_import(self) -> Callable[..., Any]:
        """Build an ``__import__`` that consults this registry first."""
        original_import = builtins.__import__

        def virtual_import(name, globals=None, locals=None, fromlist=(), level=0):  # pylint: disable=redefined-builtin
            if level == 0:
                module = self.resolve(name)
                if module is not None:
                    return module
            return original_import(name, globals, locals, fromlist, level)

        return virtual_import

    def module_builtins(self) -> Dict[str, Any]:
        """Builtins namespace for code compiled into a virtual module."""
        namespace = dict(vars(builtins))
        namespace["__import__"] = self.make_import()
        return namespace

    def list_loaded(self) -> List[LoadedModuleInfo]:
        """List registered modules and whether each is still in the module cache."""
        return [
            LoadedModuleInfo(
                name=name,
                storage_path=record.storage_path,
                is_loaded=record.storage_path in self._module_cache,
            )
            for name, record in self._records.items()
        ]

    def clear(self) -> None:
        """Drop all bookkeeping; module objects referenced elsewhere survive."""
        self._records.clear()
        self._module_cache.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._records

    def __len__(self) -> int:
        return len(self._records)

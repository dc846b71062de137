"""Compile fetched source text into registered virtual modules."""

from __future__ import annotations

import abc
import logging
import posixpath
import types
from typing import Optional

from ..constants import Constants
from ..errors import CompileError
from .registry import VirtualModuleRecord, VirtualModuleRegistry

logger = logging.getLogger(__name__)


class ModuleCompiler(abc.ABC):
    """Turns source text into an executed module object."""

    @abc.abstractmethod
    def compile(
        self,
        name: str,
        source: str,
        storage_path: str,
        registry: VirtualModuleRegistry,
    ) -> types.ModuleType:
        """Compile and evaluate ``source``; raise CompileError on failure."""


class PythonModuleCompiler(ModuleCompiler):
    """Executes Python source in a fresh module namespace.

    The namespace gets ``require`` and an ``__import__`` bound to the
    registry so the module can reach other virtual modules by name.
    """

    def compile(self, name, source, storage_path, registry):
        module = types.ModuleType(name)
        module.__file__ = storage_path
        namespace = module.__dict__
        namespace["__builtins__"] = registry.module_builtins()
        namespace["require"] = registry.require

        try:
            code = compile(source, storage_path, "exec")
        except (SyntaxError, ValueError) as exc:
            raise CompileError(f"Failed to compile {name}: {exc}", name) from exc
        try:
            exec(code, namespace)  # pylint: disable=exec-used
        except (Exception, SystemExit) as exc:  # pylint: disable=broad-exception-caught
            raise CompileError(
                f"Failed to evaluate {name}: {exc.__class__.__name__}: {exc}", name
            ) from exc
        return module


class ModuleLoader:
    """Compiles source and registers the result in a VirtualModuleRegistry."""

    def __init__(
        self,
        registry: VirtualModuleRegistry,
        compiler: Optional[ModuleCompiler] = None,
        root: str = Constants.VIRTUAL_ROOT,
    ):
        self._registry = registry
        self._compiler = compiler or PythonModuleCompiler()
        self._root = root.rstrip("/")

    def storage_path(self, name: str, entry_path: Optional[str] = None) -> str:
        """Virtual path a module is stored under, e.g. ``/virtual_modules/lodash.js``."""
        suffix = posixpath.splitext(entry_path or Constants.DEFAULT_MAIN_FILE)[1]
        return f"{self._root}/{name}{suffix}"

    def load(self, name: str, source: str, entry_path: Optional[str] = None) -> VirtualModuleRecord:
        """Compile ``source`` as module ``name`` and register it (last load wins).

        Raises:
            CompileError: When the source cannot be compiled or evaluated.
        """
        path = self.storage_path(name, entry_path)
        try:
            module = self._compiler.compile(name, source, path, self._registry)
        except CompileError as exc:
            logger.error("Failed to load %s: %s", name, exc)
            raise
        record = VirtualModuleRecord(logical_name=name, storage_path=path, compiled_handle=module)
        self._registry.register(record)
        logger.debug("Registered virtual module %s at %s", name, path)
        return record

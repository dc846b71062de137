"""Module compilation and the virtual module registry."""

from .compiler import ModuleCompiler, ModuleLoader, PythonModuleCompiler
from .registry import LoadedModuleInfo, VirtualModuleRecord, VirtualModuleRegistry

__all__ = [
    "LoadedModuleInfo",
    "ModuleCompiler",
    "ModuleLoader",
    "PythonModuleCompiler",
    "VirtualModuleRecord",
    "VirtualModuleRegistry",
]

"""vimport - load npm, Yarn and GitHub packages into in-memory modules.

Typical use::

    import asyncio
    import vimport

    report = asyncio.run(vimport.import_modules(["github:acme/pyhelpers"]))
    helpers = vimport.require("pyhelpers")

Entry files are compiled as Python source by ``PythonModuleCompiler``; pass
another ``ModuleCompiler`` to ``ModuleImporter`` to load other languages.
"""

from .errors import (
    CircularDependencyWarning,
    CompileError,
    DependencyFailure,
    InvalidResponseError,
    NetworkError,
    ParseDegraded,
    VimportError,
)
from .importer import (
    BatchReport,
    ImportContext,
    ImportOutcome,
    ModuleImporter,
    PackageState,
    clear_modules,
    import_modules,
    list_modules,
    require,
)
from .versioning import PackageSpecifier, parse_specifier

__version__ = "0.1.0"

__all__ = [
    "BatchReport",
    "CircularDependencyWarning",
    "CompileError",
    "DependencyFailure",
    "ImportContext",
    "ImportOutcome",
    "InvalidResponseError",
    "ModuleImporter",
    "NetworkError",
    "PackageSpecifier",
    "PackageState",
    "ParseDegraded",
    "VimportError",
    "clear_modules",
    "import_modules",
    "list_modules",
    "parse_specifier",
    "require",
]

"""Dependency-resolving package importer.

Resolves a batch of package specifiers into virtual modules:

1. parse each specifier;
2. skip names already loaded, skip names currently being resolved (a
   cycle; the branch is dropped with a warning);
3. fetch the manifest (cached by ``name@version``, primary URL then the
   npm registry API);
4. import declared dependencies in groups of ``max_concurrency``, each
   group awaited in full before the next starts, failures isolated;
5. fetch and compile the package's own entry file.

A failure of a package's own entry file is fatal for that package only.
The batch never raises because members failed; callers read the report.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple, TypeVar

from .common.http_client import RetryOptions, TransportClient
from .common.logging_utils import Timer, extra_context, is_debug_enabled
from .constants import Constants, Source
from .errors import CircularDependencyWarning, DependencyFailure, ParseDegraded, VimportError
from .loader.compiler import ModuleCompiler, ModuleLoader
from .loader.registry import LoadedModuleInfo, VirtualModuleRegistry
from .registry.manifest import ManifestCache, PackageManifest
from .registry.urls import RegistryUrls
from .versioning.models import PackageSpecifier
from .versioning.parser import normalize_dependency_range, parse_specifier

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PackageState(Enum):
    """Lifecycle of one package name within a context."""
    NOT_STARTED = "not_started"
    RESOLVING = "resolving"
    LOADED = "loaded"
    FAILED = "failed"


@dataclass(frozen=True)
class ImportOutcome:
    """Result for one package name."""
    name: str
    success: bool
    error_message: Optional[str] = None


@dataclass
class BatchReport:
    """Aggregated outcomes of one ``import_batch`` call."""
    succeeded: List[ImportOutcome] = field(default_factory=list)
    failed: List[ImportOutcome] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when nothing failed."""
        return not self.failed

    def outcome(self, name: str) -> Optional[ImportOutcome]:
        """Find the outcome recorded for ``name``."""
        for item in (*self.succeeded, *self.failed):
            if item.name == name:
                return item
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Plain-data view for serialization."""
        return {
            "succeeded": [dataclasses.asdict(o) for o in self.succeeded],
            "failed": [dataclasses.asdict(o) for o in self.failed],
            "warnings": list(self.warnings),
        }


class ImportContext:
    """Shared state for one importer: registry, manifest cache, in-flight set.

    Each mutation is a single synchronous step between awaits, so no lock
    is needed under the asyncio scheduler.
    """

    def __init__(self, registry: Optional[VirtualModuleRegistry] = None):
        self.registry = registry or VirtualModuleRegistry()
        self.manifests = ManifestCache()
        self.in_flight: Set[str] = set()
        self.states: Dict[str, PackageState] = {}
        self.errors: Dict[str, str] = {}

    def state(self, name: str) -> PackageState:
        """Current state of ``name``."""
        return self.states.get(name, PackageState.NOT_STARTED)

    def clear(self) -> None:
        """Reset every name to NOT_STARTED and drop all caches."""
        self.registry.clear()
        self.manifests.clear()
        self.in_flight.clear()
        self.states.clear()
        self.errors.clear()


class _BatchRun:
    """Outcome collector for a single batch."""

    def __init__(self) -> None:
        self._outcomes: Dict[str, ImportOutcome] = {}
        self.warnings: List[str] = []

    def _record(self, outcome: ImportOutcome) -> None:
        existing = self._outcomes.get(outcome.name)
        if existing is not None and not existing.success:
            return
        self._outcomes[outcome.name] = outcome

    def succeed(self, name: str) -> None:
        self._record(ImportOutcome(name=name, success=True))

    def fail(self, name: str, message: str) -> None:
        self._record(ImportOutcome(name=name, success=False, error_message=message))

    def warn(self, warning: Warning) -> None:
        logger.warning("%s", warning)
        self.warnings.append(f"{warning.__class__.__name__}: {warning}")

    def report(self) -> BatchReport:
        outcomes = list(self._outcomes.values())
        return BatchReport(
            succeeded=[o for o in outcomes if o.success],
            failed=[o for o in outcomes if not o.success],
            warnings=list(self.warnings),
        )


def _chunks(items: Sequence[T], size: int) -> Iterable[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _reraise_fatal(results: Iterable[Any]) -> None:
    """Propagate cancellation and interpreter exits captured by gather."""
    for result in results:
        if isinstance(result, BaseException) and not isinstance(result, Exception):
            raise result


class ModuleImporter:
    """Imports packages from npm, Yarn or GitHub into virtual modules."""

    def __init__(
        self,
        transport: Optional[TransportClient] = None,
        urls: Optional[RegistryUrls] = None,
        context: Optional[ImportContext] = None,
        compiler: Optional[ModuleCompiler] = None,
        max_concurrency: int = Constants.MAX_CONCURRENT_DOWNLOADS,
        retry_options: Optional[RetryOptions] = None,
    ):
        """Initialize the importer.

        Args:
            transport: HTTP client; one is created (and owned) when omitted.
            urls: Registry URL builder.
            context: Shared state; a private context is created when omitted.
            compiler: Module compiler used by the loader.
            max_concurrency: Size of each concurrently processed group.
            retry_options: Retry policy for a transport created here.
        """
        self._owns_transport = transport is None
        self._transport = transport or TransportClient(retry_options)
        self._urls = urls or RegistryUrls()
        self._context = context or ImportContext()
        self._loader = ModuleLoader(self._context.registry, compiler)
        self._max_concurrency = max(1, int(max_concurrency))

    @property
    def context(self) -> ImportContext:
        """Shared state of this importer."""
        return self._context

    async def import_batch(self, specifiers: Iterable[str]) -> BatchReport:
        """Import every specifier, returning a report instead of raising."""
        run = _BatchRun()
        items = list(specifiers)
        with Timer() as timer:
            for chunk in _chunks(items, self._max_concurrency):
                results = await asyncio.gather(
                    *(self._import_top_level(text, run) for text in chunk),
                    return_exceptions=True,
                )
                _reraise_fatal(results)

        report = run.report()
        if report.failed:
            logger.warning("Import completed with some failures:")
            for outcome in report.failed:
                logger.warning("  - %s: %s", outcome.name, outcome.error_message)
        if is_debug_enabled(logger):
            logger.debug(
                "Batch finished",
                extra=extra_context(
                    event="function_exit",
                    component="importer",
                    action="import_batch",
                    count=len(items),
                    failed=len(report.failed),
                    duration_ms=timer.duration_ms(),
                ),
            )
        return report

    def list_loaded(self) -> List[LoadedModuleInfo]:
        """List modules currently held by the registry."""
        return self._context.registry.list_loaded()

    def clear_all(self) -> None:
        """Empty the registry, manifest cache and in-flight set."""
        self._context.clear()
        logger.info("Virtual module cache cleared")

    def require(self, name: str) -> Any:
        """Resolve ``name`` through the registry, then the normal import system."""
        return self._context.registry.require(name)

    async def close(self) -> None:
        """Release the transport if this importer created it."""
        if self._owns_transport:
            await self._transport.stop()

    async def __aenter__(self) -> "ModuleImporter":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _import_top_level(self, text: str, run: _BatchRun) -> None:
        spec = parse_specifier(text)
        if spec.degraded:
            run.warn(ParseDegraded(
                f"Malformed package specifier {text!r}; parsed as package name {spec.name!r}"
            ))
        if not spec.name:
            run.fail(text, "Invalid package specifier")
            return
        try:
            if spec.source == Source.GITHUB:
                await self._import_from_github(spec, run)
            else:
                await self._import_from_registry(spec, run)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            # Already recorded in the run; other top-level imports continue.
            logger.debug("Top-level import of %s failed: %s", text, exc)

    def _skip_if_settled(self, spec: PackageSpecifier, run: _BatchRun) -> bool:
        """Handle LOADED/FAILED names; True when nothing else must happen."""
        state = self._context.state(spec.name)
        if state == PackageState.LOADED:
            logger.debug("Module %s already loaded", spec.name)
            self._bind_alias(spec)
            run.succeed(spec.name)
            return True
        if state == PackageState.FAILED:
            message = self._context.errors.get(spec.name, "previous import failed")
            run.fail(spec.name, message)
            raise VimportError(message)
        return False

    def _mark_loaded(self, spec: PackageSpecifier, run: _BatchRun) -> None:
        self._context.states[spec.name] = PackageState.LOADED
        self._context.errors.pop(spec.name, None)
        self._bind_alias(spec)
        run.succeed(spec.name)

    def _mark_failed(self, spec: PackageSpecifier, run: _BatchRun, exc: Exception) -> None:
        message = str(exc) or exc.__class__.__name__
        self._context.states[spec.name] = PackageState.FAILED
        self._context.errors[spec.name] = message
        run.fail(spec.name, message)

    def _bind_alias(self, spec: PackageSpecifier) -> None:
        if spec.alias and spec.alias != spec.module_name:
            self._context.registry.add_alias(spec.alias, spec.module_name)

    async def _import_from_registry(self, spec: PackageSpecifier, run: _BatchRun) -> None:
        """Resolve one npm/Yarn package and its dependency tree.

        Raises:
            VimportError: When the package itself could not be loaded.
        """
        name = spec.name
        if self._skip_if_settled(spec, run):
            return
        if name in self._context.in_flight:
            run.warn(CircularDependencyWarning(f"Circular dependency detected for {name}, skipping"))
            return

        self._context.in_flight.add(name)
        self._context.states[name] = PackageState.RESOLVING
        logger.info("Importing %s@%s from %s...", name, spec.version, spec.source.value.upper())
        try:
            manifest = await self._get_manifest(spec)
            failures = await self._import_dependencies(spec, manifest, run)

            version = manifest.resolved_version or (None if spec.is_latest else spec.version)
            url = self._urls.file_url(spec.source, name, version, manifest.main_entry_path)
            source = await self._transport.fetch_text(url)
            self._loader.load(spec.module_name, source, manifest.main_entry_path)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._mark_failed(spec, run, exc)
            logger.error("Failed to import %s: %s", name, exc)
            raise
        finally:
            self._context.in_flight.discard(name)

        self._mark_loaded(spec, run)
        logger.info("Successfully imported %s@%s", name, manifest.resolved_version or spec.version)
        if failures:
            logger.warning("Some dependencies of %s failed to import:", name)
            for dep_name, message in failures:
                logger.warning("  - %s: %s", dep_name, message)

    async def _get_manifest(self, spec: PackageSpecifier) -> PackageManifest:
        cached = self._context.manifests.get(spec.name, spec.version)
        if cached is not None:
            logger.debug("Manifest cache hit for %s@%s", spec.name, spec.version)
            return cached

        primary = self._urls.manifest_url(spec.source, spec.name, spec.version)
        try:
            data = await self._transport.fetch_json(primary)
        except VimportError as exc:
            fallback = self._urls.npm_registry_url(spec.name, spec.version)
            logger.warning(
                "Manifest fetch for %s failed (%s); falling back to %s", spec.name, exc, fallback
            )
            data = await self._transport.fetch_json(fallback)

        manifest = PackageManifest.from_json(data, spec.name)
        self._context.manifests.set(spec.name, spec.version, manifest)
        return manifest

    async def _import_dependencies(
        self, parent: PackageSpecifier, manifest: PackageManifest, run: _BatchRun
    ) -> List[Tuple[str, str]]:
        """Import declared dependencies group by group; return the failures."""
        entries = list(manifest.dependencies.items())
        failures: List[Tuple[str, str]] = []
        for chunk in _chunks(entries, self._max_concurrency):
            results = await asyncio.gather(
                *(self._import_dependency(dep, token, parent, run) for dep, token in chunk),
                return_exceptions=True,
            )
            _reraise_fatal(results)
            for (dep_name, _), result in zip(chunk, results):
                if isinstance(result, Exception):
                    failures.append((dep_name, str(result)))
        return failures

    async def _import_dependency(
        self, dep_name: str, token: str, parent: PackageSpecifier, run: _BatchRun
    ) -> None:
        version = normalize_dependency_range(token)
        dep_spec = dataclasses.replace(
            parse_specifier(f"{dep_name}@{version}"), source=parent.source
        )
        try:
            await self._import_from_registry(dep_spec, run)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            logger.warning("Failed to import dependency %s: %s", dep_name, exc)
            raise DependencyFailure(str(exc), dep_name, parent.name) from exc

    async def _import_from_github(self, spec: PackageSpecifier, run: _BatchRun) -> None:
        """Import a repository's entry file; no dependency graph is resolved.

        Raises:
            VimportError: When no branch yields both a manifest and entry file,
                or the entry file does not compile.
        """
        if self._skip_if_settled(spec, run):
            return
        owner, repo = spec.name.split("/", 1)
        if spec.name in self._context.in_flight:
            run.warn(CircularDependencyWarning(f"{spec.name} is already being imported, skipping"))
            return

        if not spec.is_latest:
            logger.debug(
                "Version %s of %s ignored; GitHub imports read the main or master branch",
                spec.version,
                spec.name,
            )
        self._context.in_flight.add(spec.name)
        self._context.states[spec.name] = PackageState.RESOLVING
        logger.info("Importing %s from GitHub (%s/%s)...", repo, owner, repo)
        try:
            source, entry, branch = await self._fetch_github_entry(owner, repo)
            self._loader.load(spec.module_name, source, entry)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._mark_failed(spec, run, exc)
            logger.error("Failed to import %s from GitHub: %s", repo, exc)
            raise
        finally:
            self._context.in_flight.discard(spec.name)

        self._mark_loaded(spec, run)
        logger.info("Successfully imported %s from GitHub (branch %s)", repo, branch)

    async def _fetch_github_entry(self, owner: str, repo: str) -> Tuple[str, str, str]:
        """Return (source, entry path, branch) from the first branch that works."""
        last_error: Optional[VimportError] = None
        for branch in Constants.GITHUB_BRANCHES:
            try:
                manifest_url = self._urls.github_file_url(
                    owner, repo, branch, Constants.PACKAGE_JSON_FILE
                )
                manifest = PackageManifest.from_json(
                    await self._transport.fetch_json(manifest_url), repo
                )
                entry_url = self._urls.github_file_url(
                    owner, repo, branch, manifest.main_entry_path
                )
                source = await self._transport.fetch_text(entry_url)
                return source, manifest.main_entry_path, branch
            except VimportError as exc:
                logger.debug("Branch %s of %s/%s unusable: %s", branch, owner, repo, exc)
                last_error = exc
        assert last_error is not None
        raise last_error


# Process-wide default state backing the module-level helpers below.
_default_context = ImportContext()


async def import_modules(specifiers: Iterable[str], **kwargs: Any) -> BatchReport:
    """Import ``specifiers`` into the process-wide default context."""
    kwargs.setdefault("context", _default_context)
    async with ModuleImporter(**kwargs) as importer:
        return await importer.import_batch(specifiers)


def list_modules() -> List[LoadedModuleInfo]:
    """List modules held by the default context."""
    return _default_context.registry.list_loaded()


def clear_modules() -> None:
    """Clear the default context."""
    _default_context.clear()
    logger.info("Virtual module cache cleared")


def require(name: str) -> Any:
    """Resolve ``name`` through the default context's registry."""
    return _default_context.registry.require(name)

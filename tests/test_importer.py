"""Tests for the dependency-resolving importer."""

import asyncio
import logging
from collections import Counter

import pytest

import vimport
from vimport.errors import InvalidResponseError, NetworkError
from vimport.importer import ImportContext, ModuleImporter, PackageState, _default_context
from vimport.registry.urls import RegistryUrls

URLS = RegistryUrls(
    npm_cdn="https://cdn.test",
    npm_registry="https://registry.test",
    yarn_registry="https://yarn.test",
    github_raw="https://raw.test",
)


class FakeTransport:
    """In-memory transport keyed by URL.

    Values may be dicts (JSON documents), strings (text bodies) or exception
    instances. Unknown URLs answer like a 404.
    """

    def __init__(self, routes=None, delay=0.0):
        self.routes = dict(routes or {})
        self.calls = Counter()
        self.delay = delay
        self.active = 0
        self.peak = 0
        self.events = []

    async def _serve(self, url):
        self.calls[url] += 1
        self.events.append(("start", url))
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
            self.events.append(("end", url))
        if url not in self.routes:
            raise NetworkError("HTTP 404 - Not Found", 404, url)
        value = self.routes[url]
        if isinstance(value, Exception):
            raise value
        return value

    async def fetch_text(self, url, options=None):
        value = await self._serve(url)
        return value if isinstance(value, str) else str(value)

    async def fetch_json(self, url, options=None):
        value = await self._serve(url)
        if isinstance(value, str):
            raise InvalidResponseError(f"Invalid JSON response from {url}", url)
        return value

    async def stop(self):
        pass


def publish(routes, name, version="1.0.0", deps=None, source="LOADED = True\n", base="https://cdn.test", **extra):
    """Serve a package manifest at @latest and @version plus its entry file."""
    manifest = {"name": name, "version": version, "dependencies": deps or {}, **extra}
    routes[f"{base}/{name}@latest/package.json"] = manifest
    routes[f"{base}/{name}@{version}/package.json"] = manifest
    entry = extra.get("module") or extra.get("main") or "index.js"
    routes[f"https://cdn.test/{name}@{version}/{entry}"] = source
    return manifest


def run_batch(importer, specifiers):
    return asyncio.run(importer.import_batch(specifiers))


def make_importer(routes, **kwargs):
    transport = FakeTransport(routes, delay=kwargs.pop("delay", 0.0))
    importer = ModuleImporter(transport=transport, urls=URLS, **kwargs)
    return importer, transport


class TestRegistryImports:
    """Tests for npm and Yarn imports."""

    def test_imports_dependencies_first(self):
        """Dependencies are loaded before and importable from their parent."""
        routes = {}
        publish(routes, "a", deps={"b": "^1.0.0"}, source="import b\nRESULT = b.VALUE * 21\n")
        publish(routes, "b", source="VALUE = 2\n")
        importer, _ = make_importer(routes)

        report = run_batch(importer, ["a"])

        assert report.ok
        assert {o.name for o in report.succeeded} == {"a", "b"}
        assert importer.require("a").RESULT == 42
        assert importer.context.state("b") == PackageState.LOADED

    def test_second_import_is_a_no_op(self):
        """A loaded package is not fetched again."""
        routes = {}
        publish(routes, "a")
        importer, transport = make_importer(routes)

        run_batch(importer, ["a"])
        report = run_batch(importer, ["a@1.0.0"])

        assert report.outcome("a").success
        assert transport.calls["https://cdn.test/a@latest/package.json"] == 1
        assert transport.calls["https://cdn.test/a@1.0.0/index.js"] == 1

    def test_cycle_is_skipped_with_warning(self):
        """Mutually dependent packages both load; the back edge is dropped."""
        routes = {}
        publish(routes, "a", deps={"b": "^1.0.0"})
        publish(routes, "b", deps={"a": "^1.0.0"})
        importer, _ = make_importer(routes)

        report = run_batch(importer, ["a"])

        assert report.ok
        assert {o.name for o in report.succeeded} == {"a", "b"}
        assert any(
            w.startswith("CircularDependencyWarning") and "for a" in w for w in report.warnings
        )
        assert importer.context.in_flight == set()

    def test_failures_are_isolated_between_top_level_packages(self):
        """One missing package does not stop the rest of the batch."""
        routes = {}
        publish(routes, "a")
        importer, _ = make_importer(routes)

        report = run_batch(importer, ["missing", "a"])

        assert not report.ok
        assert report.outcome("a").success
        failed = report.outcome("missing")
        assert not failed.success
        assert "HTTP 404" in failed.error_message
        assert importer.context.state("missing") == PackageState.FAILED

    def test_dependency_failure_is_not_fatal(self):
        """A parent loads even when one of its dependencies fails."""
        routes = {}
        publish(routes, "a", deps={"b": "^1.0.0", "c": "^1.0.0"})
        publish(routes, "b")
        importer, _ = make_importer(routes)

        report = run_batch(importer, ["a"])

        assert report.outcome("a").success
        assert report.outcome("b").success
        assert not report.outcome("c").success
        assert importer.require("a").LOADED is True

    def test_entry_compile_failure_is_fatal(self):
        """A package whose own entry fails to compile is recorded failed."""
        routes = {}
        publish(routes, "a", deps={"b": "^1.0.0"}, source="def (:\n")
        publish(routes, "b")
        importer, _ = make_importer(routes)

        report = run_batch(importer, ["a"])

        assert report.outcome("b").success
        assert "Failed to compile a" in report.outcome("a").error_message
        assert "a" not in importer.context.registry

    def test_manifest_falls_back_to_registry_api(self):
        """A manifest missing from the CDN is fetched from the npm registry."""
        routes = {
            "https://registry.test/a/latest": {"name": "a", "version": "2.0.0", "main": "lib/a.py"},
            "https://cdn.test/a@2.0.0/lib/a.py": "VERSION = '2.0.0'\n",
        }
        importer, transport = make_importer(routes)

        report = run_batch(importer, ["a"])

        assert report.ok
        assert transport.calls["https://cdn.test/a@latest/package.json"] == 1
        assert importer.require("a").VERSION == "2.0.0"
        assert importer.list_loaded()[0].storage_path == "/virtual_modules/a.py"

    def test_module_entry_preferred(self):
        """The module field wins over main when picking the entry file."""
        routes = {}
        publish(routes, "a", module="esm/index.js", main="cjs/index.js", source="KIND = 'esm'\n")
        importer, _ = make_importer(routes)

        run_batch(importer, ["a"])

        assert importer.require("a").KIND == "esm"

    def test_failed_package_is_not_refetched(self):
        """A failed name stays failed until the context is cleared."""
        importer, transport = make_importer({})

        first = run_batch(importer, ["missing"])
        second = run_batch(importer, ["missing"])

        assert second.outcome("missing").error_message == first.outcome("missing").error_message
        assert transport.calls["https://cdn.test/missing@latest/package.json"] == 1

    def test_clear_allows_reimport(self):
        """Clearing resets state so the next import fetches again."""
        routes = {}
        publish(routes, "a")
        importer, transport = make_importer(routes)

        run_batch(importer, ["a"])
        importer.clear_all()
        assert importer.list_loaded() == []
        assert importer.context.state("a") == PackageState.NOT_STARTED
        run_batch(importer, ["a"])

        assert transport.calls["https://cdn.test/a@latest/package.json"] == 2
        assert importer.require("a").LOADED is True

    def test_alias_resolves_to_package(self):
        """An aliased import is reachable under both names."""
        routes = {}
        publish(routes, "express", version="4.17.1")
        importer, _ = make_importer(routes)

        report = run_batch(importer, ["web@npm:express@4.17.1"])

        assert report.outcome("express").success
        assert importer.require("web") is importer.require("express")

    def test_yarn_source_inherited_by_dependencies(self):
        """Yarn manifests come from the Yarn registry, for dependencies too."""
        routes = {}
        publish(routes, "a", deps={"b": "1.0.0"}, base="https://yarn.test")
        publish(routes, "b", base="https://yarn.test")
        routes["https://yarn.test/a/latest"] = routes.pop("https://yarn.test/a@latest/package.json")
        routes["https://yarn.test/b/1.0.0"] = routes.pop("https://yarn.test/b@1.0.0/package.json")
        importer, transport = make_importer(routes)

        report = run_batch(importer, ["yarn:a"])

        assert report.ok
        assert transport.calls["https://yarn.test/b/1.0.0"] == 1
        assert transport.calls["https://cdn.test/b@1.0.0/index.js"] == 1

    def test_concurrency_is_bounded(self):
        """No more than max_concurrency fetches run at once."""
        routes = {}
        names = [f"pkg{i}" for i in range(5)]
        for name in names:
            publish(routes, name)
        importer, transport = make_importer(routes, max_concurrency=2, delay=0.01)

        report = run_batch(importer, names)

        assert len(report.succeeded) == 5
        assert transport.peak <= 2

    def test_dependency_groups_settle_in_order(self):
        """Dependencies run in groups; each group settles before the next starts."""
        routes = {}
        deps = [f"dep{i}" for i in range(5)]
        publish(routes, "app", deps={name: "^1.0.0" for name in deps}, source="READY = True\n")
        for name in deps:
            if name != "dep1":
                publish(routes, name)
        importer, transport = make_importer(routes, max_concurrency=2, delay=0.01)

        report = run_batch(importer, ["app"])

        assert transport.peak <= 2
        assert importer.require("app").READY is True
        assert not report.outcome("dep1").success
        assert all(report.outcome(name).success for name in deps if name != "dep1")

        def group_of(url):
            for index, name in enumerate(deps):
                if f"/{name}@" in url or f"/{name}/" in url:
                    return index // 2
            return None

        positions = {}
        for position, (kind, url) in enumerate(transport.events):
            group = group_of(url)
            if group is not None:
                positions.setdefault((kind, group), []).append(position)
        for group in (0, 1):
            assert max(positions[("end", group)]) < min(positions[("start", group + 1)])

    def test_entry_exiting_interpreter_fails_only_that_package(self):
        """An entry file that raises SystemExit is a compile failure, not a batch abort."""
        routes = {}
        publish(routes, "bad", source="raise SystemExit(1)\n")
        publish(routes, "good")
        importer, _ = make_importer(routes)

        report = run_batch(importer, ["bad", "good"])

        assert report.outcome("good").success
        failed = report.outcome("bad")
        assert not failed.success
        assert "SystemExit" in failed.error_message
        assert importer.context.state("bad") == PackageState.FAILED
        assert importer.context.in_flight == set()

    def test_degraded_specifier(self):
        """Blank input is reported as failed with a parse warning."""
        importer, transport = make_importer({})

        report = run_batch(importer, ["  "])

        assert report.outcome("  ").error_message == "Invalid package specifier"
        assert any(w.startswith("ParseDegraded") for w in report.warnings)
        assert not transport.calls

    def test_report_to_dict(self):
        """The report serializes to plain data."""
        routes = {}
        publish(routes, "a")
        importer, _ = make_importer(routes)

        data = run_batch(importer, ["a", "missing"]).to_dict()

        assert data["succeeded"] == [{"name": "a", "success": True, "error_message": None}]
        assert data["failed"][0]["name"] == "missing"


class TestGithubImports:
    """Tests for GitHub imports."""

    def test_falls_back_to_master(self):
        """The master branch is tried when main has no package.json."""
        routes = {
            "https://raw.test/octo/widgets/master/package.json": {"name": "widgets", "main": "lib/w.py"},
            "https://raw.test/octo/widgets/master/lib/w.py": "NAME = 'widgets'\n",
        }
        importer, transport = make_importer(routes)

        report = run_batch(importer, ["github:octo/widgets"])

        assert report.outcome("octo/widgets").success
        assert transport.calls["https://raw.test/octo/widgets/main/package.json"] == 1
        assert importer.require("widgets").NAME == "widgets"
        assert importer.list_loaded()[0].storage_path == "/virtual_modules/widgets.py"

    def test_all_branches_fail(self):
        """The last branch error is reported when no branch works."""
        importer, _ = make_importer({})

        report = run_batch(importer, ["github:octo/nothing"])

        outcome = report.outcome("octo/nothing")
        assert not outcome.success
        assert "HTTP 404" in outcome.error_message

    def test_github_alias(self):
        """Aliased GitHub imports register under the alias as well."""
        routes = {
            "https://raw.test/octo/widgets/main/package.json": {},
            "https://raw.test/octo/widgets/main/index.js": "NAME = 'w'\n",
        }
        importer, _ = make_importer(routes)

        run_batch(importer, ["w@github:octo/widgets"])

        assert importer.require("w") is importer.require("widgets")

    def test_duplicate_github_specifiers_fetch_once(self):
        """A repository already being imported is not fetched a second time."""
        routes = {
            "https://raw.test/octo/widgets/main/package.json": {},
            "https://raw.test/octo/widgets/main/index.js": "NAME = 'w'\n",
        }
        importer, transport = make_importer(routes)

        report = run_batch(importer, ["github:octo/widgets", "github:octo/widgets"])

        assert report.outcome("octo/widgets").success
        assert transport.calls["https://raw.test/octo/widgets/main/package.json"] == 1
        assert any(w.startswith("CircularDependencyWarning") for w in report.warnings)
        assert importer.context.in_flight == set()

    def test_github_version_is_ignored(self, caplog):
        """A version on a GitHub specifier is logged and not used."""
        routes = {
            "https://raw.test/octo/widgets/main/package.json": {},
            "https://raw.test/octo/widgets/main/index.js": "NAME = 'w'\n",
        }
        importer, _ = make_importer(routes)

        with caplog.at_level(logging.DEBUG, logger="vimport.importer"):
            report = run_batch(importer, ["github:octo/widgets@dev"])

        assert report.outcome("octo/widgets").success
        assert "Version dev of octo/widgets ignored" in caplog.text


class TestDefaultContext:
    """Tests for the module-level helpers."""

    def setup_method(self):
        _default_context.clear()

    def teardown_method(self):
        _default_context.clear()

    def test_module_level_helpers(self):
        """import_modules, list_modules, require and clear_modules share state."""
        routes = {}
        publish(routes, "a", source="X = 1\n")

        report = asyncio.run(
            vimport.import_modules(["a"], transport=FakeTransport(routes), urls=URLS)
        )

        assert report.ok
        assert [m.name for m in vimport.list_modules()] == ["a"]
        assert vimport.require("a").X == 1
        vimport.clear_modules()
        assert vimport.list_modules() == []

    def test_private_context(self):
        """An explicit context keeps the default one untouched."""
        routes = {}
        publish(routes, "a")
        context = ImportContext()

        asyncio.run(
            vimport.import_modules(["a"], transport=FakeTransport(routes), urls=URLS, context=context)
        )

        assert "a" in context.registry
        assert vimport.list_modules() == []


@pytest.mark.parametrize("specifier", ["a", "a@1.0.0", "a@^1.0.0"])
def test_version_forms_resolve_same_package(specifier):
    """Pinned, ranged and bare specifiers all load the published entry."""
    routes = {}
    publish(routes, "a")
    importer, _ = make_importer(routes)

    assert run_batch(importer, [specifier]).ok

"""CLI entry point for vimport.

Commands: ``import <specifiers...>``, ``list`` and ``clear``. Module state
lives in the running process only, so ``list`` and ``clear`` act on what
this invocation has loaded.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from typing import Any, Iterable, List, Optional

from .args import parse_args
from .common.logging_utils import configure_logging
from .config import ImporterConfig
from .constants import Constants, ExitCodes
from .importer import BatchReport, ModuleImporter
from .loader.registry import LoadedModuleInfo

logger = logging.getLogger(__name__)


def _setup_logging(args: Any) -> None:
    """Configure logging based on CLI arguments.

    Args:
        args: Parsed CLI arguments.
    """
    if getattr(args, "LOG_LEVEL", None):
        os.environ[Constants.ENV_LOG_LEVEL] = str(args.LOG_LEVEL).upper()
    configure_logging()

    log_file = getattr(args, "LOG_FILE", None)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s"
        )
        file_handler.setFormatter(formatter)
        logging.getLogger().addHandler(file_handler)
        logger.info("Logging to file: %s", log_file)


def format_module_list(modules: Iterable[LoadedModuleInfo]) -> str:
    """Render loaded modules, one status line plus path per module."""
    rows = list(modules)
    if not rows:
        return "No modules currently loaded."
    return "\n".join(
        f"{'✓' if info.is_loaded else '✗'} {info.name}\n   {info.storage_path}" for info in rows
    )


def format_error_summary(report: BatchReport) -> str:
    """Render the failures of a batch, or an empty string."""
    if not report.failed:
        return ""
    lines = [f"  ✗ {o.name}: {o.error_message}" for o in report.failed]
    return "\nErrors encountered:\n" + "\n".join(lines)


def _print_list(importer: ModuleImporter) -> None:
    print("\nCached Virtual Modules:")
    print("------------------------")
    print(format_module_list(importer.list_loaded()))
    print("")


async def _run_import(importer: ModuleImporter, specifiers: List[str], show_list: bool) -> BatchReport:
    async with importer:
        loop = asyncio.get_running_loop()
        start = loop.time()
        report = await importer.import_batch(specifiers)
        logger.info("Import completed in %.2fs", loop.time() - start)
        if show_list:
            _print_list(importer)
        return report


def main(argv: Optional[List[str]] = None) -> int:
    """Run the CLI and return its exit code."""
    args = parse_args(argv)
    _setup_logging(args)
    if args.CONFIG and not os.path.isfile(args.CONFIG):
        logger.error("Config file not found: %s", args.CONFIG)
        return ExitCodes.FILE_ERROR.value
    config = ImporterConfig.from_args(args)
    importer = ModuleImporter(
        urls=config.registry_urls(),
        max_concurrency=config.max_concurrency,
        retry_options=config.retry_options(),
    )

    if args.command == "import":
        report = asyncio.run(_run_import(importer, list(args.SPECIFIERS), args.SHOW_LIST))
        if report.failed:
            print(format_error_summary(report))
            return ExitCodes.IMPORT_FAILURES.value
        return ExitCodes.SUCCESS.value

    if args.command == "list":
        _print_list(importer)
        return ExitCodes.SUCCESS.value

    if args.command == "clear":
        importer.clear_all()
        logger.info("Module cache cleared successfully")
        return ExitCodes.SUCCESS.value

    logger.error("Unknown command: %s", args.command)
    return ExitCodes.USAGE_ERROR.value


def run() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()

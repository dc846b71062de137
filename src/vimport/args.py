"""Argument parsing functionality for vimport."""

import argparse

from .constants import Constants


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level parser with its subcommands."""
    parser = argparse.ArgumentParser(
        prog="vimport",
        description="vimport - Load npm, Yarn and GitHub packages into memory without installing",
        epilog=(
            "Specifier format: package[@version] or alias@[npm|yarn|github]:package[@version]. "
            "Examples: express@4.17.1, myexpress@npm:express@4.17.1, mylib@github:user/repo"
        ),
        add_help=True,
    )

    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store",
                        type=str,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        default='INFO')
    parser.add_argument("--logfile",
                        dest="LOG_FILE",
                        help="Log output file",
                        action="store",
                        type=str)
    parser.add_argument("-c", "--config",
                        dest="CONFIG",
                        help="Path to configuration file (YAML, YML, or JSON)",
                        action="store",
                        type=str)

    subparsers = parser.add_subparsers(dest="command", metavar="<command>")
    subparsers.required = True

    import_parser = subparsers.add_parser("import", help="Import one or more modules")
    import_parser.add_argument("SPECIFIERS",
                               help="Package specifiers to import",
                               nargs="+")
    import_parser.add_argument("-j", "--concurrency",
                               dest="MAX_CONCURRENCY",
                               help=f"Maximum concurrent downloads (default: {Constants.MAX_CONCURRENT_DOWNLOADS})",
                               action="store",
                               type=int)
    import_parser.add_argument("--timeout",
                               dest="TIMEOUT",
                               help=f"Per-request timeout in seconds (default: {Constants.REQUEST_TIMEOUT})",
                               action="store",
                               type=float)
    import_parser.add_argument("--retries",
                               dest="RETRIES",
                               help=f"Attempts per request (default: {Constants.HTTP_RETRY_MAX})",
                               action="store",
                               type=int)
    import_parser.add_argument("--list",
                               dest="SHOW_LIST",
                               help="List loaded modules after importing.",
                               action="store_true")

    subparsers.add_parser("list", help="List all cached virtual modules")
    subparsers.add_parser("clear", help="Clear the virtual module cache")
    return parser


def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    return build_parser().parse_args(argv)

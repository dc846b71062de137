"""Constants used in the project."""

import os
from enum import Enum


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FILE_ERROR = 1
    USAGE_ERROR = 2
    IMPORT_FAILURES = 3


class Source(Enum):
    """Package sources supported by the importer.

    Args:
        Enum (string): Package sources supported by the importer.
    """

    NPM = "npm"
    YARN = "yarn"
    GITHUB = "github"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    NPM_CDN_URL = os.environ.get("VIMPORT_NPM_CDN", "https://unpkg.com")
    NPM_REGISTRY_URL = os.environ.get("VIMPORT_NPM_REGISTRY", "https://registry.npmjs.org")
    YARN_REGISTRY_URL = "https://registry.yarnpkg.com"
    GITHUB_RAW_URL = os.environ.get("VIMPORT_GITHUB_RAW", "https://raw.githubusercontent.com")
    ENV_YARN_REGISTRY = "YARN_REGISTRY"
    ENV_LOG_LEVEL = "VIMPORT_LOG_LEVEL"
    GITHUB_BRANCHES = ("main", "master")
    PACKAGE_JSON_FILE = "package.json"
    DEFAULT_MAIN_FILE = "index.js"
    DEFAULT_VERSION = "latest"
    VIRTUAL_ROOT = "/virtual_modules"

    LOG_FORMAT = "[%(levelname)s] %(message)s"
    REQUEST_TIMEOUT = 10.0  # Per-request timeout in seconds
    HTTP_RETRY_MAX = 3  # Total attempts, first one included
    HTTP_RETRY_BASE_DELAY_SEC = 1.0
    HTTP_RETRY_MAX_DELAY_SEC = 10.0
    HTTP_BACKOFF_FACTOR = 2.0
    MAX_CONCURRENT_DOWNLOADS = 5
    USER_AGENT = "vimport/0.1"

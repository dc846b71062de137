"""Importer configuration: defaults, environment, YAML file and CLI overrides.

Precedence, lowest to highest: built-in defaults, environment variables,
the ``importer:`` section of a YAML (or JSON) config file, CLI arguments.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional

import yaml

from .common.http_client import RetryOptions
from .constants import Constants
from .registry.urls import RegistryUrls

logger = logging.getLogger(__name__)

_ENV_VARS = {
    "max_concurrency": ("VIMPORT_MAX_CONCURRENCY", int),
    "timeout": ("VIMPORT_TIMEOUT", float),
    "max_retries": ("VIMPORT_MAX_RETRIES", int),
}


@dataclass
class ImporterConfig:
    """Tunables for the importer and its transport."""

    max_concurrency: int = Constants.MAX_CONCURRENT_DOWNLOADS
    timeout: float = Constants.REQUEST_TIMEOUT
    max_retries: int = Constants.HTTP_RETRY_MAX
    initial_delay: float = Constants.HTTP_RETRY_BASE_DELAY_SEC
    max_delay: float = Constants.HTTP_RETRY_MAX_DELAY_SEC
    backoff_factor: float = Constants.HTTP_BACKOFF_FACTOR
    npm_cdn: Optional[str] = None
    npm_registry: Optional[str] = None
    yarn_registry: Optional[str] = None
    github_raw: Optional[str] = None

    def apply(self, values: Mapping[str, Any]) -> "ImporterConfig":
        """Apply known, non-None keys from ``values``; unknown keys are logged."""
        known = {f.name for f in fields(self)}
        for key, value in values.items():
            if key not in known:
                logger.warning("Ignoring unknown config key: %s", key)
                continue
            if value is None:
                continue
            current = getattr(self, key)
            try:
                setattr(self, key, str(value) if current is None else type(current)(value))
            except (TypeError, ValueError):
                logger.warning("Ignoring invalid value for %s: %r", key, value)
        return self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ImporterConfig":
        """Create config from ``VIMPORT_*`` environment variables."""
        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for key, (var, cast) in _ENV_VARS.items():
            raw = env.get(var)
            if raw is None or not raw.strip():
                continue
            try:
                values[key] = cast(raw)
            except ValueError:
                logger.warning("Ignoring invalid %s=%r", var, raw)
        return cls().apply(values)

    @classmethod
    def from_args(cls, args: Any) -> "ImporterConfig":
        """Create config from CLI arguments layered over env and config file.

        Args:
            args: Parsed CLI arguments namespace.

        Returns:
            ImporterConfig instance.
        """
        config = cls.from_env()
        config_path = getattr(args, "CONFIG", None)
        if config_path:
            config.apply(load_config_file(config_path))
        config.apply(
            {
                "max_concurrency": getattr(args, "MAX_CONCURRENCY", None),
                "timeout": getattr(args, "TIMEOUT", None),
                "max_retries": getattr(args, "RETRIES", None),
            }
        )
        return config

    def retry_options(self) -> RetryOptions:
        """Transport retry policy derived from this config."""
        return RetryOptions().with_overrides(
            timeout=self.timeout,
            max_retries=self.max_retries,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            backoff_factor=self.backoff_factor,
        )

    def registry_urls(self) -> RegistryUrls:
        """URL builder honoring configured base URLs."""
        return RegistryUrls(
            npm_cdn=self.npm_cdn,
            npm_registry=self.npm_registry,
            yarn_registry=self.yarn_registry,
            github_raw=self.github_raw,
        )


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load the ``importer`` section of a YAML/JSON config file.

    A missing or unreadable file yields an empty mapping and a log line.
    """
    if not os.path.isfile(config_path):
        logger.warning("Config file not found: %s", config_path)
        return {}
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.error("Failed to load config: %s", e)
        return {}
    if not isinstance(data, dict):
        return {}
    section = data.get("importer", data)
    return section if isinstance(section, dict) else {}

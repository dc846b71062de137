"""Package specifier models and parsing."""

from .models import PackageSpecifier
from .parser import normalize_dependency_range, parse_specifier

__all__ = [
    "PackageSpecifier",
    "parse_specifier",
    "normalize_dependency_range",
]

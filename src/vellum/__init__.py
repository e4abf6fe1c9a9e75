"""Vellum: content-compliance ledger and deployment gate for published pages."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("vellum")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from vellum.core import Issue, VellumDB

__all__ = ["Issue", "VellumDB", "__version__"]

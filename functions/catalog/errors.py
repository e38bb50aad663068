"""
Error taxonomy shared by the stores, the change feed and the controllers.
"""

from __future__ import annotations


class CatalogError(Exception):
    """Base class for data-access errors."""


class ValidationError(CatalogError):
    """A required field is missing or invalid. Raised before any remote call."""


class TransportError(CatalogError):
    """The remote call failed (network, auth or server-side rejection)."""


class NotFoundError(CatalogError):
    """The referenced identifier or storage path does not exist."""

"""
Exception taxonomy for the app object importer.

``NotFoundError``, ``ConflictError`` and ``UnsupportedTypeError`` also derive
from the matching builtin (``LookupError``, ``ValueError``, ``TypeError``) so
callers that only know the builtins still catch them.  Any other exception
escaping the engine is treated as a transient engine error.
"""

from __future__ import annotations


class ImporterError(Exception):
    """Base class for all importer errors."""


class NotFoundError(ImporterError, LookupError):
    """A document, object, script section or variable could not be found."""

    def __str__(self) -> str:
        # LookupError would otherwise repr() the message.
        return str(self.args[0]) if self.args else ""


class ConflictError(ImporterError, ValueError):
    """A unique-name constraint was violated by a write."""


class UnsupportedTypeError(ImporterError, TypeError):
    """No importer is registered for the item type."""

"""Typed errors raised by the RecycleIt services."""

from __future__ import annotations


class RecycleItError(Exception):
    """Base class for every domain error."""


class NotFoundError(RecycleItError, LookupError):
    """An id or email has no matching entity."""

    def __init__(self, entity: str, key: object) -> None:
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")


class ValidationError(RecycleItError, ValueError):
    """A value is out of range: negative points, inverted dates, bad counts."""


class ConflictError(RecycleItError):
    """The operation clashes with existing state (duplicate membership, closed session)."""


class ConfigurationError(RecycleItError):
    """League configuration cannot be applied to the current membership."""

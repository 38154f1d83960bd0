"""Exceptions raised by mass_align."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Alignment options that cannot produce a meaningful alignment."""


class RecordError(ValueError):
    """A feature record with non-finite or out-of-domain numeric fields."""


class AlignmentCancelled(Exception):
    """Cooperative cancellation; caught by the engine between merge passes."""


__all__ = ["ConfigurationError", "RecordError", "AlignmentCancelled"]

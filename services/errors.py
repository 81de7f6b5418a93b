"""Error taxonomy shared by the billing, sizing, and allocation engines."""

from __future__ import annotations


class EngineError(ValueError):
    """Base class for input problems detected before any computation runs."""


class FormatError(EngineError):
    """Raised when an interval export cannot be parsed into any readings."""


class ValidationError(EngineError):
    """Raised when numeric inputs are out of range or contradict each other."""


class ConfigurationError(EngineError):
    """Raised when a conditionally required field is missing."""


__all__ = [
    "EngineError",
    "FormatError",
    "ValidationError",
    "ConfigurationError",
]

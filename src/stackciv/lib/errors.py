"""Exceptions and warnings raised while building and analysing stacks."""

__all__ = ['StackcivError', 'ConfigurationError', 'CoverageError',
           'NumericalInconsistencyError', 'DataQualityWarning']


class StackcivError(Exception):
    """Base class for all stackciv errors."""


class ConfigurationError(StackcivError, ValueError):
    """Mutually exclusive or malformed options were requested.

    Raised before any work is done.
    """


class CoverageError(StackcivError):
    """A spectrum or fit window does not cover the requested wavelengths.

    Callers handle this locally, flag the affected object or window and
    carry on with the rest of the run.
    """


class NumericalInconsistencyError(StackcivError):
    """Parallel arrays or fit products disagree in a way that should never
    happen for valid inputs (e.g. mismatched lengths or an absurd splice).
    """


class DataQualityWarning(UserWarning):
    """Non-fatal data problem (e.g. a non-finite completeness weight)."""

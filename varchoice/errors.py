"""
Exceptions raised by varchoice.

Every class also derives from the builtin it specializes, so code that
catches ValueError or RuntimeError keeps working.
"""

from __future__ import annotations


class VariableChoiceError(Exception):
    """Base exception for all varchoice errors."""


class HotSetInsertionError(VariableChoiceError, ValueError):
    """Raised when a subset is added to a hot set that already contains it."""


class UnsupportedSubsetSizeError(VariableChoiceError, ValueError):
    """Raised for subset sizes the likelihood engine cannot enumerate."""


class NumericalDivergenceError(VariableChoiceError, FloatingPointError):
    """Raised when a partition-function sum is not a finite number."""


class MalformedRecordError(VariableChoiceError, ValueError):
    """Raised when a dataset line cannot be parsed into slate and choice."""

    def __init__(self, message: str, line_number: int | None = None) -> None:
        self.line_number = line_number
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)


class ConvergenceError(VariableChoiceError, RuntimeError):
    """Raised when an optimization that must converge does not."""

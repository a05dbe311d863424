"""
Step interpretation: the step grammar and execution-time re-validation.
"""

from stepwise.interpreter.parser import (
    EMPTY_STEP_ERROR,
    UNSUPPORTED_STEP_ERROR,
    normalize_assertion,
    parse_fallback,
    parse_step,
    parse_strict,
)
from stepwise.interpreter.resolution import resolve_execution_action

__all__ = [
    "EMPTY_STEP_ERROR",
    "UNSUPPORTED_STEP_ERROR",
    "normalize_assertion",
    "parse_fallback",
    "parse_step",
    "parse_strict",
    "resolve_execution_action",
]

"""
Execution-time re-validation of stored step actions.

A stored action must still be derivable from its raw text. The step is
re-parsed before every run and the fresh result is preferred; stored values
only survive where the re-parse leaves an optional timing field unset, or
where the re-parse disagrees on the kind of action.
"""

from typing import Optional

from pydantic import ValidationError

from stepwise.core.types import Action, action_from_json
from stepwise.error_handling.exceptions import StepParseError
from stepwise.interpreter.parser import parse_step

# Optional timing fields a stored action may contribute to a fresh re-parse
TIMING_FIELDS = ("delay_seconds", "timeout_seconds")


def load_stored_action(action_json: Optional[str]) -> Optional[Action]:
    """Stored action, or None when the payload is missing or malformed."""
    if not action_json:
        return None
    try:
        return action_from_json(action_json)
    except (ValidationError, ValueError):
        return None


def merge_timing(fresh: Action, stored: Action) -> Action:
    """Fill timing gaps in the fresh action from the stored one."""
    updates = {}
    for field in TIMING_FIELDS:
        if field not in type(fresh).model_fields:
            continue
        if getattr(fresh, field) is None and getattr(stored, field, None) is not None:
            updates[field] = getattr(stored, field)
    if not updates:
        return fresh
    return fresh.model_copy(update=updates)


def resolve_execution_action(
    action_json: Optional[str], raw_text: str, step_order: int
) -> Action:
    """
    Decide which action a step executes.

    Args:
        action_json: Serialized action as stored with the step
        raw_text: Step text as authored
        step_order: 1-based position, used in the error message

    Returns:
        The action to execute

    Raises:
        StepParseError: If neither the stored action nor the raw text is usable
    """
    stored = load_stored_action(action_json)
    reparsed = parse_step(raw_text)

    if stored is not None and reparsed.ok and reparsed.action is not None:
        if reparsed.action.type == stored.type:
            return merge_timing(reparsed.action, stored)
        return stored

    if stored is not None:
        return stored

    if reparsed.ok and reparsed.action is not None:
        return reparsed.action

    raise StepParseError(
        f"Step {step_order} has invalid parsed action data.",
        raw_text=raw_text,
        step_order=step_order,
    )

"""
Merge actions returned by the glossary merge model.

The model answers with either a single action object or a list of them.
Each action is parsed into one variant of a tagged union keyed on the
``action`` field; any malformed action rejects the whole batch.
"""

from __future__ import annotations

from typing import Annotated, Any, Collection, List, Literal, Union

from pydantic import BaseModel, Field, StrictInt, StrictStr, TypeAdapter, ValidationError, model_validator


class ActionValidationError(Exception):
    """Raised when a batch of merge actions fails validation."""

    pass


class NoneAction(BaseModel):
    """Leave the glossary unchanged."""
    action: Literal["none"]


class AddEntryAction(BaseModel):
    """Append the proposal as a new entry. Carries no id or data."""
    action: Literal["add_entry"]

    @model_validator(mode="before")
    @classmethod
    def _reject_target_fields(cls, data: Any) -> Any:
        if isinstance(data, dict) and ("id" in data or "data" in data):
            raise ValueError("add_entry should not have 'id' or 'data' fields")
        return data


class DeleteAction(BaseModel):
    """Remove an existing entry."""
    action: Literal["delete"]
    id: StrictInt = Field(..., gt=0)

    @model_validator(mode="before")
    @classmethod
    def _reject_data(cls, data: Any) -> Any:
        if isinstance(data, dict) and "data" in data:
            raise ValueError("delete should not have 'data' field")
        return data


class UpdateAction(BaseModel):
    """Replace the value of an existing entry."""
    action: Literal["update"]
    id: StrictInt = Field(..., gt=0)
    data: StrictStr


class AddKeyAction(BaseModel):
    """Add keys to an existing entry."""
    action: Literal["add_key"]
    id: StrictInt = Field(..., gt=0)
    data: List[StrictStr]


class DelKeyAction(BaseModel):
    """Remove keys from an existing entry."""
    action: Literal["del_key"]
    id: StrictInt = Field(..., gt=0)
    data: List[StrictStr]


MergeAction = Annotated[
    Union[NoneAction, AddEntryAction, DeleteAction, UpdateAction, AddKeyAction, DelKeyAction],
    Field(discriminator="action"),
]

TARGETED_ACTIONS = (DeleteAction, UpdateAction, AddKeyAction, DelKeyAction)

_action_adapter: TypeAdapter = TypeAdapter(MergeAction)


def normalize_actions(parsed: Any) -> List[Any]:
    """
    Normalize a parsed model response into a list of raw actions.

    Input: ``{"action": "none"}`` or ``[{"action": "delete", "id": 7}, ...]``
    Output: always a list
    """
    if isinstance(parsed, list):
        return parsed
    return [parsed]


def parse_actions(raw_actions: List[Any], conflict_ids: Collection[int]) -> List[MergeAction]:
    """
    Parse and validate a batch of raw actions.

    Args:
        raw_actions: Actions as decoded from JSON
        conflict_ids: Ids of the entries the model was shown

    Returns:
        Typed actions, in input order

    Raises:
        ActionValidationError: On the first malformed action or an id
            outside ``conflict_ids``
    """
    allowed = set(conflict_ids)
    actions: List[MergeAction] = []

    for i, raw in enumerate(raw_actions):
        kind = raw.get("action") if isinstance(raw, dict) else None
        try:
            action = _action_adapter.validate_python(raw)
        except ValidationError as e:
            first = e.errors()[0] if e.errors() else {}
            reason = first.get("msg", str(e))
            raise ActionValidationError(f"Action {i} ({kind}): {reason}") from e

        if isinstance(action, TARGETED_ACTIONS) and action.id not in allowed:
            raise ActionValidationError(
                f"Action {i} ({action.action}): id {action.id} not in conflict set"
            )
        actions.append(action)

    return actions

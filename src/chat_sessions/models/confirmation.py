"""
Confirmation models: yes/no decision points attached to a response turn.

Each step is its own model; the union is discriminated by ``step``.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from chat_sessions.errors import InvalidTransitionError


class CreateConfirmation(BaseModel):
    """Promote an untitled session to a durable one."""
    step: Literal["create"] = "create"
    prompt: str = ""
    epoch: int = 0


class PingConfirmation(BaseModel):
    step: Literal["ping"] = "ping"
    session_id: str


class DeleteConfirmation(BaseModel):
    step: Literal["delete"] = "delete"
    session_id: str


class RenameConfirmation(BaseModel):
    step: Literal["rename"] = "rename"
    session_id: str
    current_label: str
    new_label: str


class ExportConfirmation(BaseModel):
    step: Literal["export"] = "export"
    session_id: str


class ClearHistoryConfirmation(BaseModel):
    step: Literal["clearHistory"] = "clearHistory"
    session_id: str


Confirmation = Annotated[
    Union[
        CreateConfirmation,
        PingConfirmation,
        DeleteConfirmation,
        RenameConfirmation,
        ExportConfirmation,
        ClearHistoryConfirmation,
    ],
    Field(discriminator="step"),
]

CONFIRMATION_TYPES = (
    CreateConfirmation,
    PingConfirmation,
    DeleteConfirmation,
    RenameConfirmation,
    ExportConfirmation,
    ClearHistoryConfirmation,
)
KNOWN_STEPS = {"create", "ping", "delete", "rename", "export", "clearHistory"}

_adapter: TypeAdapter[Any] = TypeAdapter(Confirmation)


def step_of(raw: Any) -> Optional[str]:
    if isinstance(raw, CONFIRMATION_TYPES):
        return raw.step
    if isinstance(raw, dict):
        step = raw.get("step")
        return step if isinstance(step, str) else None
    return None


def parse_confirmation(raw: Any) -> Optional[Any]:
    """Parse confirmation data coming back with a request.

    Returns None for an unrecognized step. Raises InvalidTransitionError when
    the step is known but its payload is malformed.
    """
    if isinstance(raw, CONFIRMATION_TYPES):
        return raw
    if step_of(raw) not in KNOWN_STEPS:
        return None
    try:
        return _adapter.validate_python(raw)
    except ValidationError as e:
        raise InvalidTransitionError(
            f"Malformed '{raw.get('step')}' confirmation: {e.error_count()} invalid field(s)",
            details={"step": raw.get("step")},
        )

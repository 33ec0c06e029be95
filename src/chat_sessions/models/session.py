"""
Session models: listing entries, turns, requests and session content.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Annotated, Any, Awaitable, Callable, Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field

from chat_sessions.models.confirmation import Confirmation

if TYPE_CHECKING:
    from chat_sessions.streaming import CancellationToken, ResponseStream


class SessionStatus(str, Enum):
    COMPLETED = "completed"
    IN_PROGRESS = "in_progress"
    FAILED = "failed"


class SessionKind(str, Enum):
    DEMO = "demo"
    DYNAMIC = "dynamic"
    UNTITLED = "untitled"


class SessionItem(BaseModel):
    id: str
    label: str
    status: SessionStatus = SessionStatus.COMPLETED
    kind: SessionKind = SessionKind.DYNAMIC
    epoch: int = 0
    description: Optional[str] = None
    created_at: str = ""


# Response parts

class MarkdownPart(BaseModel):
    kind: Literal["markdown"] = "markdown"
    value: str


class ProgressPart(BaseModel):
    kind: Literal["progress"] = "progress"
    value: str


class ThinkingPart(BaseModel):
    kind: Literal["thinking"] = "thinking"
    value: str


class WarningPart(BaseModel):
    kind: Literal["warning"] = "warning"
    value: str


class ConfirmationPart(BaseModel):
    kind: Literal["confirmation"] = "confirmation"
    title: str
    message: str
    data: Confirmation


ResponsePart = Annotated[
    Union[MarkdownPart, ProgressPart, ThinkingPart, WarningPart, ConfirmationPart],
    Field(discriminator="kind"),
]


# Turns

class RequestTurn(BaseModel):
    kind: Literal["request"] = "request"
    prompt: str
    participant: str = ""


class ResponseTurn(BaseModel):
    kind: Literal["response"] = "response"
    parts: list[ResponsePart] = Field(default_factory=list)
    participant: str = ""

    def text(self) -> str:
        return "".join(p.value for p in self.parts if isinstance(p, (MarkdownPart, ProgressPart)))


Turn = Annotated[Union[RequestTurn, ResponseTurn], Field(discriminator="kind")]


class ChatRequest(BaseModel):
    """Inbound request. Confirmation data stays raw until the lifecycle parses it."""
    prompt: str = ""
    command: Optional[str] = None
    accepted_confirmation_data: list[Any] = Field(default_factory=list)
    rejected_confirmation_data: list[Any] = Field(default_factory=list)

    @property
    def resolves_confirmations(self) -> bool:
        return bool(self.accepted_confirmation_data or self.rejected_confirmation_data)


class ErrorDetails(BaseModel):
    code: str
    message: str


class ResponseMetadata(BaseModel):
    session_id: str
    command: str = ""
    error: Optional[ErrorDetails] = None


class SessionCommit(BaseModel):
    """Payload of on_session_committed: ``modified`` replaces ``original``."""
    original: SessionItem
    modified: SessionItem


RequestHandler = Callable[
    [ChatRequest, list[Any], "ResponseStream", "CancellationToken"],
    Awaitable[ResponseMetadata],
]
ActiveResponseCallback = Callable[["ResponseStream", "CancellationToken"], Awaitable[None]]


class SessionContent:
    """Full session payload. History is append-only and kept in turn order."""

    __slots__ = ("history", "request_handler", "active_response_callback", "options", "status")

    def __init__(
        self,
        history: Optional[list[Any]] = None,
        request_handler: Optional[RequestHandler] = None,
        active_response_callback: Optional[ActiveResponseCallback] = None,
        options: Optional[Mapping[str, str]] = None,
        status: SessionStatus = SessionStatus.COMPLETED,
    ):
        if active_response_callback is not None and status != SessionStatus.IN_PROGRESS:
            raise ValueError("active_response_callback requires status in_progress")
        self.history = history if history is not None else []
        self.request_handler = request_handler
        self.active_response_callback = active_response_callback
        self.options = options
        self.status = status

    @property
    def read_only(self) -> bool:
        return self.request_handler is None

    def __repr__(self) -> str:
        return f"SessionContent(turns={len(self.history)}, status={self.status.value!r}, read_only={self.read_only})"

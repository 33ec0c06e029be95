"""
Session lifecycle manager: owns the session item list and the
untitled → pending-create → durable → deleted state machine.

Inbound requests for one session id are serialized by a per-session lock.
The commit sequence (option transfer, content registration, item swap) has no
await point, so no other request can observe it half done.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import itertools
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from chat_sessions.config import Settings
from chat_sessions.errors import InvalidTransitionError, NotFoundError
from chat_sessions.events import EventEmitter
from chat_sessions.models.confirmation import (
    ClearHistoryConfirmation,
    CreateConfirmation,
    DeleteConfirmation,
    ExportConfirmation,
    PingConfirmation,
    RenameConfirmation,
    parse_confirmation,
    step_of,
)
from chat_sessions.models.session import (
    ChatRequest,
    ErrorDetails,
    MarkdownPart,
    RequestTurn,
    ResponseMetadata,
    ResponseTurn,
    SessionCommit,
    SessionContent,
    SessionItem,
    SessionKind,
    SessionStatus,
)
from chat_sessions.options import SessionOptionStore
from chat_sessions.repository import SessionContentRepository, echo_handler
from chat_sessions.streaming import CancellationToken, RecordingStream, emit

logger = logging.getLogger(__name__)

COMMANDS = ("delete", "rename", "export", "clear", "ping", "manage")
MAX_LABEL_LENGTH = 40


class SessionState(str, Enum):
    UNTITLED = "untitled"
    PENDING_CREATE = "pending_create"
    DURABLE = "durable"
    DELETED = "deleted"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def label_from_prompt(prompt: str, fallback: str) -> str:
    text = " ".join(prompt.split())
    if not text:
        return fallback
    if len(text) > MAX_LABEL_LENGTH:
        return text[: MAX_LABEL_LENGTH - 3].rstrip() + "..."
    return text


def render_history(label: str, history: list[Any]) -> str:
    """Markdown export of a conversation."""
    lines = [f"# {label}", ""]
    for turn in history:
        if isinstance(turn, RequestTurn):
            lines.append(f"**User:** {turn.prompt}")
        elif isinstance(turn, ResponseTurn):
            lines.append(f"**{turn.participant or 'Assistant'}:** {turn.text()}")
        lines.append("")
    if not history:
        lines.append("_No messages._")
    return "\n".join(lines).rstrip() + "\n"


def parse_command(request: ChatRequest) -> Optional[tuple[str, str]]:
    if request.command in COMMANDS:
        return request.command, request.prompt.strip()
    text = request.prompt.strip()
    if not text.startswith("/"):
        return None
    name, _, arg = text[1:].partition(" ")
    if name not in COMMANDS:
        return None
    return name, arg.strip()


class SessionLifecycleManager:
    def __init__(
        self,
        repository: SessionContentRepository,
        options: SessionOptionStore,
        settings: Optional[Settings] = None,
    ):
        self._repository = repository
        self._options = options
        self._settings = settings or Settings()
        self._items: dict[str, SessionItem] = {}
        self._untitled: dict[str, SessionItem] = {}
        self._pending: dict[str, dict[str, Any]] = {}
        self._deleted: set[str] = set()
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._epochs = itertools.count(1)
        self._counter = 0

        self.on_session_items_changed: EventEmitter[None] = EventEmitter("session_items_changed")
        self.on_session_committed: EventEmitter[SessionCommit] = EventEmitter("session_committed")

        repository.bind_untitled_handler(self._untitled_handler)
        for item in repository.list_static():
            self._items[item.id] = item.model_copy(update={"epoch": next(self._epochs)})

    # Queries

    def list_session_items(self) -> list[SessionItem]:
        return [item.model_copy() for item in self._items.values()]

    def get_session_item(self, session_id: str) -> Optional[SessionItem]:
        item = self._items.get(session_id) or self._untitled.get(session_id)
        return item.model_copy() if item else None

    def get_session_content(self, session_id: str) -> SessionContent:
        if self._repository.kind_of(session_id) == SessionKind.UNTITLED and session_id not in self._items:
            self._register_untitled(session_id)
        return self._repository.get(session_id)

    def state_of(self, session_id: str) -> SessionState:
        if session_id in self._items:
            return SessionState.DURABLE
        if session_id in self._untitled:
            if "create" in self._pending.get(session_id, {}):
                return SessionState.PENDING_CREATE
            return SessionState.UNTITLED
        if session_id in self._deleted:
            return SessionState.DELETED
        return SessionState.UNTITLED

    def pending_steps(self, session_id: str) -> list[str]:
        return list(self._pending.get(session_id, {}))

    # Direct operations

    def create_session(self, name: Optional[str] = None) -> SessionItem:
        session_id = self._allocate_id()
        item = SessionItem(
            id=session_id,
            label=name or f"Session {self._counter}",
            kind=SessionKind.DYNAMIC,
            epoch=next(self._epochs),
            created_at=_now_iso(),
        )
        self._repository.store(session_id, SessionContent(request_handler=echo_handler(session_id, "New session echo")))
        self._items[session_id] = item
        self._deleted.discard(session_id)
        logger.info("Created session %s (%s)", session_id, item.label)
        self.on_session_items_changed.fire(None)
        return item.model_copy()

    def delete_session(self, session_id: str) -> bool:
        """Remove a dynamic session. Demo and unknown ids report False."""
        item = self._items.get(session_id)
        if item is None or item.kind != SessionKind.DYNAMIC:
            logger.debug("Delete of %s ignored: not a dynamic session", session_id)
            return False
        self._repository.delete(session_id)
        self._options.clear(session_id)
        self._pending.pop(session_id, None)
        del self._items[session_id]
        self._deleted.add(session_id)
        logger.info("Deleted session %s", session_id)
        self.on_session_items_changed.fire(None)
        return True

    def rename_session(self, session_id: str, label: str) -> Optional[SessionItem]:
        """Relabel a listed session. Unknown ids and empty labels report None."""
        try:
            return self._rename(session_id, label)
        except (NotFoundError, InvalidTransitionError) as e:
            logger.warning("Rename of %s refused: %s", session_id, e)
            return None

    def _rename(self, session_id: str, label: str) -> SessionItem:
        original = self._items.get(session_id)
        if original is None:
            raise NotFoundError(f"Session '{session_id}' not found", details={"session_id": session_id})
        if not label.strip():
            raise InvalidTransitionError("Session label cannot be empty")
        modified = original.model_copy(update={"label": label.strip(), "epoch": next(self._epochs)})
        self._items[session_id] = modified
        logger.info("Renamed session %s: %r -> %r", session_id, original.label, modified.label)
        self.on_session_committed.fire(SessionCommit(original=original, modified=modified))
        self.on_session_items_changed.fire(None)
        return modified.model_copy()

    def clear_history(self, session_id: str) -> bool:
        cleared = self._repository.clear_history(session_id)
        if cleared:
            logger.info("Cleared history of %s", session_id)
        return cleared

    def dispose(self) -> None:
        self.on_session_items_changed.dispose()
        self.on_session_committed.dispose()

    # Request dispatch

    async def dispatch_request(
        self,
        session_id: str,
        request: Union[ChatRequest, str],
        sink: Any,
        token: Optional[CancellationToken] = None,
    ) -> ResponseMetadata:
        if isinstance(request, str):
            request = ChatRequest(prompt=request)
        token = token or CancellationToken()
        async with self._serialized(session_id):
            content = self.get_session_content(session_id)
            if content.read_only:
                message = f"Session '{self._label(session_id)}' is read-only and does not accept requests."
                emit(sink, "warning", message)
                return ResponseMetadata(
                    session_id=session_id,
                    error=ErrorDetails(code="invalid_transition", message=message),
                )

            stream = RecordingStream(sink)
            if request.resolves_confirmations:
                return self._resolve_confirmations(session_id, request, stream)

            command = parse_command(request) if session_id in self._items else None
            if command is not None:
                result = self._offer(session_id, command[0], command[1], stream)
            else:
                history = list(content.history)
                result = await content.request_handler(request, history, stream, token)
            self._record(session_id, request, stream)
            return result

    @contextlib.asynccontextmanager
    async def _serialized(self, session_id: str):
        # A lock lives only while requests for its id are queued or running.
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_id] -= 1
            if not self._lock_users[session_id]:
                del self._lock_users[session_id]
                del self._locks[session_id]

    def _record(self, session_id: str, request: ChatRequest, stream: RecordingStream) -> None:
        if self._repository.kind_of(session_id) != SessionKind.DYNAMIC:
            return
        self._repository.append_turns(session_id, [
            RequestTurn(prompt=request.prompt, participant=self._settings.participant),
            ResponseTurn(parts=list(stream.parts), participant=self._settings.participant),
        ])

    # Untitled sessions

    def _register_untitled(self, session_id: str) -> SessionItem:
        item = self._untitled.get(session_id)
        if item is None:
            if session_id in self._deleted:
                logger.debug("Reviving deleted id %s as untitled", session_id)
                self._deleted.discard(session_id)
            item = SessionItem(
                id=session_id,
                label="Untitled",
                kind=SessionKind.UNTITLED,
                epoch=next(self._epochs),
                created_at=_now_iso(),
            )
            self._untitled[session_id] = item
        return item

    def _untitled_handler(self, session_id: str):
        return functools.partial(self._handle_untitled, session_id)

    async def _handle_untitled(self, session_id, request, history, stream, token) -> ResponseMetadata:
        item = self._register_untitled(session_id)
        confirmation = CreateConfirmation(prompt=request.prompt, epoch=item.epoch)
        self._pending.setdefault(session_id, {})["create"] = confirmation
        stream.confirmation(
            "Create session?",
            f"Start a new session with: \"{label_from_prompt(request.prompt, 'an empty message')}\"",
            confirmation,
        )
        return ResponseMetadata(session_id=session_id, command="create")

    def _commit(self, session_id: str, confirmation: CreateConfirmation, stream: RecordingStream) -> SessionItem:
        original = self._untitled.get(session_id)
        if original is None:
            raise InvalidTransitionError(
                f"Session '{session_id}' is not an untitled session", details={"session_id": session_id}
            )
        if original.epoch != confirmation.epoch:
            raise InvalidTransitionError(
                "This creation request is stale; send a new message to start again.",
                details={"session_id": session_id, "epoch": confirmation.epoch},
            )

        new_id = self._allocate_id()
        label = label_from_prompt(confirmation.prompt, f"Session {self._counter}")
        modified = SessionItem(
            id=new_id,
            label=label,
            status=SessionStatus.COMPLETED,
            kind=SessionKind.DYNAMIC,
            epoch=next(self._epochs),
            created_at=_now_iso(),
        )
        participant = self._settings.participant
        history: list[Any] = [
            RequestTurn(prompt=confirmation.prompt, participant=participant),
            ResponseTurn(parts=[MarkdownPart(value=f"Created session **{label}**.")], participant=participant),
        ]
        self._options.transfer(session_id, new_id)
        self._repository.store(new_id, SessionContent(history=history, request_handler=echo_handler(new_id, "New session echo")))
        del self._untitled[session_id]
        self._pending.pop(session_id, None)
        self._items[new_id] = modified

        logger.info("Committed untitled session %s as %s", session_id, new_id)
        self.on_session_committed.fire(SessionCommit(original=original, modified=modified))
        self.on_session_items_changed.fire(None)
        stream.markdown(f"Created session **{label}**.")
        return modified

    def _allocate_id(self) -> str:
        prefix = self._settings.session_id_prefix
        while True:
            self._counter += 1
            candidate = f"{prefix}{self._counter}"
            if candidate not in self._items and candidate not in self._untitled and not self._repository.has(candidate):
                return candidate

    # Confirmations

    def _offer(self, session_id: str, name: str, arg: str, stream: RecordingStream) -> ResponseMetadata:
        item = self._items[session_id]
        demo = item.kind == SessionKind.DEMO
        offers: list[tuple[str, str, Any]] = []
        if name == "rename":
            if not arg:
                stream.warning("Usage: /rename <new label>")
                return ResponseMetadata(session_id=session_id, command=name)
            offers.append((
                "Rename session?",
                f"Rename '{item.label}' to '{arg}'?",
                RenameConfirmation(session_id=session_id, current_label=item.label, new_label=arg),
            ))
        elif name == "ping":
            offers.append(("Ping?", "Send a ping to this session?", PingConfirmation(session_id=session_id)))
        elif name in ("delete", "clear") and demo:
            stream.warning(f"Demo session '{item.label}' cannot be {'deleted' if name == 'delete' else 'cleared'}.")
            return ResponseMetadata(session_id=session_id, command=name)
        else:
            if name in ("delete", "manage") and not demo:
                offers.append((
                    "Delete session?",
                    f"Delete '{item.label}'? This cannot be undone.",
                    DeleteConfirmation(session_id=session_id),
                ))
            if name in ("export", "manage"):
                offers.append(("Export session?", "Export the conversation as markdown?", ExportConfirmation(session_id=session_id)))
            if name in ("clear", "manage") and not demo:
                offers.append((
                    "Clear history?",
                    f"Remove all messages from '{item.label}'?",
                    ClearHistoryConfirmation(session_id=session_id),
                ))

        pending = self._pending.setdefault(session_id, {})
        for title, message, confirmation in offers:
            pending[confirmation.step] = confirmation
            stream.confirmation(title, message, confirmation)
        return ResponseMetadata(session_id=session_id, command=name)

    def _resolve_confirmations(self, session_id: str, request: ChatRequest, stream: RecordingStream) -> ResponseMetadata:
        result_id = session_id
        steps: list[str] = []
        error: Optional[ErrorDetails] = None
        answers = [(raw, True) for raw in request.accepted_confirmation_data]
        answers += [(raw, False) for raw in request.rejected_confirmation_data]

        for raw, accepted in answers:
            try:
                confirmation = parse_confirmation(raw)
                if confirmation is None:
                    stream.markdown(f"Unknown confirmation step: {step_of(raw)!r}. Nothing to do.")
                    continue
                steps.append(confirmation.step)
                committed = self._resolve(session_id, confirmation, accepted, stream)
                if committed is not None:
                    result_id = committed
            except InvalidTransitionError as e:
                logger.warning("Invalid transition for %s: %s", session_id, e)
                stream.warning(str(e))
                error = ErrorDetails(code=e.code, message=str(e))
            except NotFoundError as e:
                logger.info("%s", e)
                stream.markdown(str(e))

        return ResponseMetadata(session_id=result_id, command=",".join(steps), error=error)

    def _take_pending(self, session_id: str, confirmation: Any) -> Any:
        pending = self._pending.get(session_id, {})
        outstanding = pending.get(confirmation.step)
        if outstanding is None:
            raise InvalidTransitionError(
                f"No pending '{confirmation.step}' confirmation for this session.",
                details={"session_id": session_id, "step": confirmation.step},
            )
        if getattr(confirmation, "session_id", session_id) != session_id:
            raise InvalidTransitionError(
                f"Confirmation belongs to session '{confirmation.session_id}'.",
                details={"session_id": session_id, "step": confirmation.step},
            )
        del pending[confirmation.step]
        if not pending:
            self._pending.pop(session_id, None)
        return outstanding

    def _resolve(self, session_id: str, confirmation: Any, accepted: bool, stream: RecordingStream) -> Optional[str]:
        """Resolve one confirmation. Returns the new id when a commit happened."""
        if isinstance(confirmation, CreateConfirmation):
            outstanding = self._pending.get(session_id, {}).get("create")
            if outstanding is not None and outstanding.epoch != confirmation.epoch:
                raise InvalidTransitionError("This creation request is stale; send a new message to start again.")
            self._take_pending(session_id, confirmation)
            if not accepted:
                stream.markdown("Session creation cancelled.")
                return None
            return self._commit(session_id, confirmation, stream).id

        self._take_pending(session_id, confirmation)
        if not accepted:
            stream.markdown(f"{confirmation.step} cancelled.")
            return None

        if isinstance(confirmation, PingConfirmation):
            stream.markdown("pong")
        elif isinstance(confirmation, DeleteConfirmation):
            label = self._label(session_id)
            if not self.delete_session(session_id):
                raise NotFoundError(f"Session '{session_id}' not found.", details={"session_id": session_id})
            stream.markdown(f"Deleted session **{label}**.")
        elif isinstance(confirmation, RenameConfirmation):
            item = self._items.get(session_id)
            if item is None:
                raise NotFoundError(f"Session '{session_id}' not found.", details={"session_id": session_id})
            if item.label != confirmation.current_label:
                raise InvalidTransitionError(
                    f"Session was renamed to '{item.label}' since this confirmation was offered."
                )
            self._rename(session_id, confirmation.new_label)
            stream.markdown(f"Renamed to **{confirmation.new_label}**.")
        elif isinstance(confirmation, ExportConfirmation):
            content = self._repository.get(session_id)
            stream.markdown(render_history(self._label(session_id), content.history))
        elif isinstance(confirmation, ClearHistoryConfirmation):
            if not self.clear_history(session_id):
                raise NotFoundError(f"No stored history for session '{session_id}'.", details={"session_id": session_id})
            stream.markdown("History cleared.")
        return None

    def _label(self, session_id: str) -> str:
        item = self._items.get(session_id) or self._untitled.get(session_id)
        return item.label if item else session_id

"""
Session content repository.

Lookup order for ``get(session_id)``:
- demo id: fixed content, rebuilt on every call
- committed dynamic id: the stored content
- anything else: an untitled placeholder (never an error)
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Iterable, Optional

from chat_sessions.config import Settings
from chat_sessions.models.session import (
    MarkdownPart,
    RequestHandler,
    RequestTurn,
    ResponseMetadata,
    ResponseTurn,
    SessionContent,
    SessionItem,
    SessionKind,
    SessionStatus,
)
from chat_sessions.options import SessionOptionStore
from chat_sessions.streaming import StreamingResponseController, default_script

logger = logging.getLogger(__name__)

READONLY_ID = "readonly"
INTERACTIVE_ID = "interactive"
STREAMING_ID = "streaming"


def echo_handler(session_id: str, prefix: str = "Echo") -> RequestHandler:
    async def handler(request, history, stream, token) -> ResponseMetadata:
        stream.markdown(f"**{prefix}:** {request.prompt}")
        return ResponseMetadata(session_id=session_id)

    return handler


def delayed_handler(session_id: str, delay: float) -> RequestHandler:
    async def handler(request, history, stream, token) -> ResponseMetadata:
        if await token.wait(delay):
            return ResponseMetadata(session_id=session_id)
        stream.markdown(f"**Processing:** {request.prompt}")
        return ResponseMetadata(session_id=session_id)

    return handler


class SessionContentRepository:
    def __init__(self, options: SessionOptionStore, settings: Optional[Settings] = None, show_options: bool = True):
        self._options = options
        self._settings = settings or Settings()
        self._show_options = show_options
        self._dynamic: dict[str, SessionContent] = {}
        self._untitled_handler_factory: Optional[Callable[[str], RequestHandler]] = None
        self._lock = threading.RLock()
        self._static = [
            SessionItem(
                id=READONLY_ID,
                label="Read-only History",
                kind=SessionKind.DEMO,
                description="Fixed history, no request handler",
            ),
            SessionItem(
                id=INTERACTIVE_ID,
                label="Interactive Chat",
                kind=SessionKind.DEMO,
                description="Echoes every message",
            ),
            SessionItem(
                id=STREAMING_ID,
                label="Live Streaming",
                status=SessionStatus.IN_PROGRESS,
                kind=SessionKind.DEMO,
                description="Has an active streaming response",
            ),
        ]

    def bind_untitled_handler(self, factory: Callable[[str], RequestHandler]) -> None:
        """Untitled placeholders get their request handler from ``factory(session_id)``."""
        self._untitled_handler_factory = factory

    def list_static(self) -> list[SessionItem]:
        return [item.model_copy() for item in self._static]

    def is_demo(self, session_id: str) -> bool:
        return any(item.id == session_id for item in self._static)

    def has(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._dynamic

    def kind_of(self, session_id: str) -> SessionKind:
        if self.is_demo(session_id):
            return SessionKind.DEMO
        if self.has(session_id):
            return SessionKind.DYNAMIC
        return SessionKind.UNTITLED

    def _options_view(self, session_id: str):
        return self._options.view(session_id) if self._show_options else None

    def get(self, session_id: str) -> SessionContent:
        if self.is_demo(session_id):
            return self._demo_content(session_id)
        with self._lock:
            stored = self._dynamic.get(session_id)
        if stored is not None:
            return stored
        logger.debug("No content for %s, serving untitled placeholder", session_id)
        return self._untitled_content(session_id)

    def store(self, session_id: str, content: SessionContent) -> None:
        if self.is_demo(session_id):
            raise ValueError(f"Cannot overwrite demo session {session_id}")
        if content.options is None:
            content.options = self._options_view(session_id)
        with self._lock:
            self._dynamic[session_id] = content

    def append_turns(self, session_id: str, turns: Iterable[Any]) -> bool:
        with self._lock:
            content = self._dynamic.get(session_id)
            if content is None:
                return False
            content.history.extend(turns)
            return True

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._dynamic.pop(session_id, None) is not None

    def clear_history(self, session_id: str) -> bool:
        with self._lock:
            content = self._dynamic.get(session_id)
            if content is None:
                return False
            content.history = []
            return True

    def _demo_content(self, session_id: str) -> SessionContent:
        participant = self._settings.participant
        greeting = ResponseTurn(parts=[MarkdownPart(value="Hello! I'm your chat assistant.")], participant=participant)
        options = self._options_view(session_id)
        if session_id == READONLY_ID:
            return SessionContent(
                history=[RequestTurn(prompt="What can you do?", participant=participant), greeting],
                request_handler=None,
                options=options,
            )
        if session_id == INTERACTIVE_ID:
            return SessionContent(history=[], request_handler=echo_handler(session_id), options=options)
        controller = StreamingResponseController(
            default_script(self._settings.stream_steps),
            step_delay=self._settings.stream_step_delay,
        )
        return SessionContent(
            history=[RequestTurn(prompt="Start streaming", participant=participant), greeting],
            request_handler=delayed_handler(session_id, self._settings.handler_delay),
            active_response_callback=controller.run,
            options=options,
            status=SessionStatus.IN_PROGRESS,
        )

    def _untitled_content(self, session_id: str) -> SessionContent:
        welcome = ResponseTurn(
            parts=[MarkdownPart(value=self._settings.welcome_message)],
            participant=self._settings.participant,
        )
        return SessionContent(
            history=[welcome],
            request_handler=self._untitled_handler_factory(session_id) if self._untitled_handler_factory else None,
            options=self._options_view(session_id),
        )

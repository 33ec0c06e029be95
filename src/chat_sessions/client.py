"""
ChatSessionHost / ChatSessions: the surface a chat host talks to.

One host instance owns the whole registry (option registry, option store,
content repository, lifecycle manager); nothing is module-global.
"""

import asyncio
import logging
from typing import Any, Iterable, Mapping, Optional, Union

from chat_sessions.config import Settings
from chat_sessions.errors import ChatSessionsError
from chat_sessions.events import EventEmitter
from chat_sessions.lifecycle import SessionLifecycleManager, SessionState
from chat_sessions.models.options import OptionGroup, OptionUpdate
from chat_sessions.models.session import (
    ChatRequest,
    ResponseMetadata,
    SessionCommit,
    SessionContent,
    SessionItem,
)
from chat_sessions.options import OptionRegistry, SessionOptionStore
from chat_sessions.repository import SessionContentRepository
from chat_sessions.streaming import CancellationToken

logger = logging.getLogger(__name__)

UpdateLike = Union[OptionUpdate, Mapping[str, Any]]


def coerce_updates(updates: Iterable[UpdateLike]) -> list[OptionUpdate]:
    """Accept OptionUpdate models, ``{"group_id", "value"}`` dicts or ``{group: value}`` shorthands."""
    out: list[OptionUpdate] = []
    for update in updates:
        if isinstance(update, OptionUpdate):
            out.append(update)
        elif "group_id" in update:
            out.append(OptionUpdate.model_validate(update))
        else:
            out.extend(OptionUpdate(group_id=k, value=v) for k, v in update.items())
    return out


class ChatSessionHost:
    """Async chat session host (primary)."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        option_groups: Optional[Iterable[OptionGroup]] = None,
    ):
        self.settings = settings or Settings()
        groups = list(option_groups) if option_groups is not None else self.settings.option_groups
        self.option_registry = OptionRegistry(groups)
        self.options = SessionOptionStore(self.option_registry)
        self.repository = SessionContentRepository(
            self.options, self.settings, show_options=bool(self.option_registry),
        )
        self.lifecycle = SessionLifecycleManager(self.repository, self.options, self.settings)
        self._disposed = False

    @property
    def on_session_items_changed(self) -> EventEmitter[None]:
        return self.lifecycle.on_session_items_changed

    @property
    def on_session_committed(self) -> EventEmitter[SessionCommit]:
        return self.lifecycle.on_session_committed

    def list_session_items(self) -> list[SessionItem]:
        self._ensure_active()
        return self.lifecycle.list_session_items()

    def get_session_content(self, session_id: str) -> SessionContent:
        self._ensure_active()
        return self.lifecycle.get_session_content(session_id)

    def get_session_state(self, session_id: str) -> SessionState:
        return self.lifecycle.state_of(session_id)

    def list_option_groups(self) -> list[OptionGroup]:
        return self.option_registry.list_groups()

    def apply_option_updates(self, session_id: str, updates: Iterable[UpdateLike]) -> list[str]:
        """Apply option updates; returns the group ids that changed."""
        self._ensure_active()
        changed = self.options.apply_updates(session_id, coerce_updates(updates))
        if changed:
            logger.info("Session %s options updated: %s", session_id, ", ".join(changed))
        return changed

    async def dispatch_request(
        self,
        session_id: str,
        message: Union[ChatRequest, str],
        sink: Any,
        token: Optional[CancellationToken] = None,
    ) -> ResponseMetadata:
        """Route an inbound request. Only SinkFailure (or a handler's own error) escapes."""
        self._ensure_active()
        return await self.lifecycle.dispatch_request(session_id, message, sink, token)

    async def run_active_response(
        self, session_id: str, sink: Any, token: Optional[CancellationToken] = None,
    ) -> bool:
        """Drive the active response of an in-progress session. Returns False if there is none."""
        self._ensure_active()
        content = self.lifecycle.get_session_content(session_id)
        if content.active_response_callback is None:
            return False
        await content.active_response_callback(sink, token or CancellationToken())
        return True

    def create_session(self, name: Optional[str] = None) -> SessionItem:
        self._ensure_active()
        return self.lifecycle.create_session(name)

    def delete_session(self, session_id: str) -> bool:
        self._ensure_active()
        return self.lifecycle.delete_session(session_id)

    def rename_session(self, session_id: str, label: str) -> Optional[SessionItem]:
        """Relabel a listed session; None when the id is unknown or the label empty."""
        self._ensure_active()
        return self.lifecycle.rename_session(session_id, label)

    def dispose(self) -> None:
        if not self._disposed:
            self.lifecycle.dispose()
            self._disposed = True

    def _ensure_active(self) -> None:
        if self._disposed:
            raise ChatSessionsError("disposed", "Host has been disposed.")


class ChatSessions:
    """Sync wrapper around ChatSessionHost. Runs the event loop internally."""

    def __init__(self, **kwargs: Any):
        self._async = ChatSessionHost(**kwargs)
        self._loop = asyncio.new_event_loop()

    def _run(self, coro: Any) -> Any:
        return self._loop.run_until_complete(coro)

    @property
    def host(self) -> ChatSessionHost:
        return self._async

    @property
    def on_session_items_changed(self) -> EventEmitter[None]:
        return self._async.on_session_items_changed

    @property
    def on_session_committed(self) -> EventEmitter[SessionCommit]:
        return self._async.on_session_committed

    def list_session_items(self) -> list[SessionItem]:
        return self._async.list_session_items()

    def get_session_content(self, session_id: str) -> SessionContent:
        return self._async.get_session_content(session_id)

    def list_option_groups(self) -> list[OptionGroup]:
        return self._async.list_option_groups()

    def apply_option_updates(self, session_id: str, updates: Iterable[UpdateLike]) -> list[str]:
        return self._async.apply_option_updates(session_id, updates)

    def dispatch_request(self, session_id: str, message: Union[ChatRequest, str], sink: Any) -> ResponseMetadata:
        return self._run(self._async.dispatch_request(session_id, message, sink))

    def run_active_response(self, session_id: str, sink: Any) -> bool:
        return self._run(self._async.run_active_response(session_id, sink))

    def create_session(self, name: Optional[str] = None) -> SessionItem:
        return self._async.create_session(name)

    def delete_session(self, session_id: str) -> bool:
        return self._async.delete_session(session_id)

    def rename_session(self, session_id: str, label: str) -> Optional[SessionItem]:
        return self._async.rename_session(session_id, label)

    def close(self) -> None:
        self._async.dispose()
        self._loop.close()

"""
chat-sessions: chat session registry and lifecycle for chat hosts.

Session listing, untitled → durable commits, per-session options and
streaming active responses, all in memory.
"""

from chat_sessions.client import ChatSessionHost, ChatSessions
from chat_sessions.config import Settings, load_settings
from chat_sessions.errors import ChatSessionsError, InvalidTransitionError, NotFoundError, SinkFailure
from chat_sessions.lifecycle import SessionState
from chat_sessions.models.options import OptionGroup, OptionItem, OptionUpdate
from chat_sessions.models.session import (
    ChatRequest,
    ResponseMetadata,
    SessionCommit,
    SessionContent,
    SessionItem,
    SessionKind,
    SessionStatus,
)
from chat_sessions.streaming import CancellationToken, StreamingResponseController

__version__ = "0.1.0"
__all__ = [
    "ChatSessionHost",
    "ChatSessions",
    "Settings",
    "load_settings",
    "ChatSessionsError",
    "InvalidTransitionError",
    "NotFoundError",
    "SinkFailure",
    "SessionState",
    "OptionGroup",
    "OptionItem",
    "OptionUpdate",
    "ChatRequest",
    "ResponseMetadata",
    "SessionCommit",
    "SessionContent",
    "SessionItem",
    "SessionKind",
    "SessionStatus",
    "CancellationToken",
    "StreamingResponseController",
]

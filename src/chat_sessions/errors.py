"""
Chat session error types.

NotFound and InvalidTransition degrade to user-visible warnings inside the
library; SinkFailure is the only error that reaches the caller of a dispatch.
"""

from typing import Any, Optional


class ChatSessionsError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class NotFoundError(ChatSessionsError):
    def __init__(self, message: str, code: str = "not_found", details: Optional[dict[str, Any]] = None):
        super().__init__(code, message, details)


class InvalidTransitionError(ChatSessionsError):
    def __init__(self, message: str, code: str = "invalid_transition", details: Optional[dict[str, Any]] = None):
        super().__init__(code, message, details)


class SinkFailure(ChatSessionsError):
    def __init__(self, message: str):
        super().__init__("sink_failure", message)

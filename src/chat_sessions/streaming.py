"""
Streaming response controller: drives the active response of an in-progress
session through a host-provided sink.

Emission order is the script order. Cancellation is checked before every
event; waits between events are cancellable, so at most the event already in
flight is delivered after ``cancel()``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Literal, Optional, Protocol

from pydantic import BaseModel

from chat_sessions.errors import SinkFailure
from chat_sessions.models.session import (
    ConfirmationPart,
    MarkdownPart,
    ProgressPart,
    ThinkingPart,
    WarningPart,
)

logger = logging.getLogger(__name__)


class ResponseStream(Protocol):
    """Output sink supplied by the host. ``thinking`` is optional."""

    def markdown(self, value: str) -> None: ...

    def progress(self, value: str) -> None: ...

    def warning(self, value: str) -> None: ...

    def confirmation(self, title: str, message: str, data: Any) -> None: ...


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def is_cancellation_requested(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds. Returns True if cancelled meanwhile."""
        if self._event.is_set():
            return True
        if timeout <= 0:
            await asyncio.sleep(0)
            return self._event.is_set()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True


class ScriptStep(BaseModel):
    kind: Literal["progress", "markdown", "thinking"]
    value: str


def default_script(steps: int = 3) -> list[ScriptStep]:
    script = [ScriptStep(kind="progress", value=f"Processing step {i}/{steps}...") for i in range(1, steps + 1)]
    script.append(ScriptStep(kind="markdown", value="Complete!"))
    return script


def emit(sink: Any, kind: str, value: str) -> None:
    """Send one event to the sink.

    A sink without ``thinking``, ``progress`` or ``warning`` degrades to
    ``markdown``.
    Anything the sink raises becomes SinkFailure.
    """
    method = getattr(sink, kind, None)
    if method is None and kind in ("thinking", "progress", "warning"):
        logger.warning("Sink %s does not support %s events, falling back to markdown", type(sink).__name__, kind)
        method = getattr(sink, "markdown", None)
    if method is None:
        raise SinkFailure(f"Sink {type(sink).__name__} does not support {kind} events")
    try:
        method(value)
    except SinkFailure:
        raise
    except Exception as e:
        logger.error("Sink failed on %s event: %s", kind, e)
        raise SinkFailure(f"Output sink failed: {e}") from e


class StreamingResponseController:
    def __init__(self, script: Optional[Iterable[ScriptStep]] = None, step_delay: float = 0.8):
        self._script = list(script) if script is not None else default_script()
        self._step_delay = step_delay

    @property
    def script(self) -> list[ScriptStep]:
        return list(self._script)

    async def run(self, sink: Any, token: Optional[CancellationToken] = None) -> None:
        token = token or CancellationToken()
        last = len(self._script) - 1
        for index, step in enumerate(self._script):
            if token.is_cancellation_requested:
                logger.debug("Streaming cancelled before step %d", index)
                return
            emit(sink, step.kind, step.value)
            if index < last and await token.wait(self._step_delay):
                logger.debug("Streaming cancelled after step %d", index)
                return


class RecordingStream:
    """Forwards every event to the host sink and keeps the parts for history."""

    def __init__(self, sink: Any):
        self._sink = sink
        self.parts: list[Any] = []

    def markdown(self, value: str) -> None:
        emit(self._sink, "markdown", value)
        self.parts.append(MarkdownPart(value=value))

    def progress(self, value: str) -> None:
        emit(self._sink, "progress", value)
        self.parts.append(ProgressPart(value=value))

    def thinking(self, value: str) -> None:
        emit(self._sink, "thinking", value)
        self.parts.append(ThinkingPart(value=value))

    def warning(self, value: str) -> None:
        emit(self._sink, "warning", value)
        self.parts.append(WarningPart(value=value))

    def confirmation(self, title: str, message: str, data: Any) -> None:
        method = getattr(self._sink, "confirmation", None)
        if method is None:
            raise SinkFailure(f"Sink {type(self._sink).__name__} does not support confirmations")
        try:
            method(title, message, data)
        except Exception as e:
            raise SinkFailure(f"Output sink failed: {e}") from e
        self.parts.append(ConfirmationPart(title=title, message=message, data=data))

from typing import Any

import pytest

from chat_sessions import ChatSessionHost, Settings


class RecordingSink:
    """Collects every event the library sends to the host."""

    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []

    def markdown(self, value: str) -> None:
        self.events.append(("markdown", value))

    def progress(self, value: str) -> None:
        self.events.append(("progress", value))

    def thinking(self, value: str) -> None:
        self.events.append(("thinking", value))

    def warning(self, value: str) -> None:
        self.events.append(("warning", value))

    def confirmation(self, title: str, message: str, data: Any) -> None:
        self.events.append(("confirmation", data))

    def of(self, kind: str) -> list[Any]:
        return [value for k, value in self.events if k == kind]

    @property
    def confirmations(self) -> list[Any]:
        return self.of("confirmation")


@pytest.fixture
def settings():
    return Settings(handler_delay=0, stream_step_delay=0)


@pytest.fixture
def host(settings):
    h = ChatSessionHost(settings=settings)
    yield h
    h.dispose()


@pytest.fixture
def sink():
    return RecordingSink()

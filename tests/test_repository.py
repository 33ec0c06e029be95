import pytest

from chat_sessions.config import Settings, default_option_groups
from chat_sessions.models.session import (
    RequestTurn,
    ResponseMetadata,
    ResponseTurn,
    SessionContent,
    SessionKind,
    SessionStatus,
)
from chat_sessions.options import OptionRegistry, SessionOptionStore
from chat_sessions.repository import SessionContentRepository, echo_handler
from chat_sessions.streaming import CancellationToken


@pytest.fixture
def store():
    return SessionOptionStore(OptionRegistry(default_option_groups()))


@pytest.fixture
def repo(store):
    return SessionContentRepository(store, Settings(handler_delay=0, stream_step_delay=0))


class TestStaticCatalog:
    def test_declaration_order(self, repo):
        assert [i.id for i in repo.list_static()] == ["readonly", "interactive", "streaming"]
        assert all(i.kind == SessionKind.DEMO for i in repo.list_static())

    def test_demo_content_is_deterministic(self, repo):
        first = repo.get("readonly")
        second = repo.get("readonly")
        assert [t.model_dump() for t in first.history] == [t.model_dump() for t in second.history]
        assert isinstance(first.history[0], RequestTurn)
        assert isinstance(first.history[1], ResponseTurn)

    def test_readonly_has_no_handler(self, repo):
        assert repo.get("readonly").read_only

    def test_streaming_has_active_response(self, repo):
        content = repo.get("streaming")
        assert content.status == SessionStatus.IN_PROGRESS
        assert content.active_response_callback is not None

    def test_completed_sessions_have_no_active_response(self, repo):
        for session_id in ("readonly", "interactive"):
            content = repo.get(session_id)
            assert content.status == SessionStatus.COMPLETED
            assert content.active_response_callback is None

    def test_demo_options_read_through_store(self, repo, store):
        store.set("interactive", "model", "ultra")
        assert dict(repo.get("interactive").options) == {"model": "ultra"}

    def test_demo_cannot_be_deleted_or_overwritten(self, repo):
        assert repo.delete("interactive") is False
        with pytest.raises(ValueError):
            repo.store("interactive", SessionContent())


class TestDynamicSessions:
    def test_store_and_get(self, repo):
        content = SessionContent(request_handler=echo_handler("session-1"))
        repo.store("session-1", content)
        assert repo.get("session-1") is content
        assert repo.kind_of("session-1") == SessionKind.DYNAMIC

    def test_delete_reports_existence(self, repo):
        repo.store("session-1", SessionContent())
        assert repo.delete("session-1") is True
        assert repo.delete("session-1") is False
        assert repo.delete("never-existed") is False

    def test_clear_history_keeps_handler(self, repo):
        handler = echo_handler("session-1")
        repo.store("session-1", SessionContent(history=[RequestTurn(prompt="hi")], request_handler=handler))
        assert repo.clear_history("session-1") is True
        content = repo.get("session-1")
        assert content.history == []
        assert content.request_handler is handler

    def test_clear_history_of_demo_is_refused(self, repo):
        assert repo.clear_history("readonly") is False

    def test_append_turns(self, repo):
        repo.store("session-1", SessionContent())
        assert repo.append_turns("session-1", [RequestTurn(prompt="a")])
        assert repo.append_turns("missing", [RequestTurn(prompt="a")]) is False
        assert len(repo.get("session-1").history) == 1


class TestUntitledFallback:
    def test_unknown_id_gets_placeholder(self, repo):
        content = repo.get("whatever-123")
        assert repo.kind_of("whatever-123") == SessionKind.UNTITLED
        assert len(content.history) == 1
        assert "start a new session" in content.history[0].text()

    def test_placeholder_uses_bound_handler_factory(self, repo):
        seen = []

        def factory(session_id):
            seen.append(session_id)
            return echo_handler(session_id)

        repo.bind_untitled_handler(factory)
        assert not repo.get("new-1").read_only
        assert seen == ["new-1"]

    def test_options_hidden_without_registry(self):
        store = SessionOptionStore(OptionRegistry())
        repo = SessionContentRepository(store, show_options=False)
        assert repo.get("interactive").options is None


@pytest.mark.asyncio
async def test_echo_handler(sink):
    handler = echo_handler("s1")
    from chat_sessions.models.session import ChatRequest
    result = await handler(ChatRequest(prompt="hello"), [], sink, CancellationToken())
    assert result == ResponseMetadata(session_id="s1")
    assert sink.of("markdown") == ["**Echo:** hello"]


def test_content_rejects_callback_when_completed():
    async def callback(stream, token):
        return None

    with pytest.raises(ValueError):
        SessionContent(active_response_callback=callback)

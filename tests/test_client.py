import pytest

from chat_sessions import ChatSessionHost, ChatSessions, ChatSessionsError, OptionUpdate, Settings
from chat_sessions.client import coerce_updates
from chat_sessions.models.options import OptionGroup, OptionItem

from conftest import RecordingSink


class TestHostSurface:
    def test_lists_demo_sessions(self, host):
        assert [i.id for i in host.list_session_items()] == ["readonly", "interactive", "streaming"]

    def test_option_groups(self, host):
        groups = {g.id: [i.id for i in g.items] for g in host.list_option_groups()}
        assert groups == {"model": ["basic", "pro", "ultra"], "subagent": ["basic", "summarizer"]}

    def test_apply_option_updates_scenario(self, host):
        changed = host.apply_option_updates("s1", [{"model": "pro"}, {"subagent": "summarizer"}])
        assert changed == ["model", "subagent"]
        assert host.options.get("s1") == {"model": "pro", "subagent": "summarizer"}

    def test_unknown_option_is_ignored(self, host):
        assert host.apply_option_updates("s1", [{"group_id": "model", "value": "mega"}]) == []
        assert host.options.get("s1") == {}

    def test_custom_option_groups(self):
        host = ChatSessionHost(option_groups=[OptionGroup(id="tone", items=[OptionItem(id="formal")])])
        assert [g.id for g in host.list_option_groups()] == ["tone"]
        assert host.apply_option_updates("s1", [{"tone": "formal"}]) == ["tone"]

    def test_no_option_groups_hides_options(self):
        host = ChatSessionHost(option_groups=[])
        assert host.get_session_content("interactive").options is None

    def test_items_changed_fires_on_create(self, host):
        fired = []
        dispose = host.on_session_items_changed(fired.append)
        host.create_session("Named")
        dispose()
        host.create_session("Unheard")
        assert fired == [None]

    def test_rename_session(self, host):
        item = host.create_session("Draft")
        renamed = host.rename_session(item.id, " Final ")
        assert renamed.label == "Final"
        assert renamed.epoch > item.epoch

    def test_rename_unknown_session_reports_none(self, host):
        commits = []
        host.on_session_committed(commits.append)
        assert host.rename_session("nope", "x") is None
        assert commits == []

    def test_rename_to_empty_label_reports_none(self, host):
        item = host.create_session("Keep")
        assert host.rename_session(item.id, "   ") is None
        assert host.lifecycle.get_session_item(item.id).label == "Keep"

    def test_disposed_host_refuses_calls(self, settings):
        host = ChatSessionHost(settings=settings)
        host.dispose()
        with pytest.raises(ChatSessionsError) as exc:
            host.list_session_items()
        assert exc.value.code == "disposed"


class TestActiveResponse:
    @pytest.mark.asyncio
    async def test_streaming_session_runs_script(self, host, sink):
        assert await host.run_active_response("streaming", sink) is True
        assert [k for k, _ in sink.events] == ["progress", "progress", "progress", "markdown"]

    @pytest.mark.asyncio
    async def test_completed_session_has_nothing_to_run(self, host, sink):
        assert await host.run_active_response("interactive", sink) is False
        assert sink.events == []


def test_coerce_updates():
    updates = coerce_updates([
        OptionUpdate(group_id="model", value="pro"),
        {"group_id": "subagent", "value": None},
        {"model": "ultra"},
    ])
    assert updates == [
        OptionUpdate(group_id="model", value="pro"),
        OptionUpdate(group_id="subagent", value=None),
        OptionUpdate(group_id="model", value="ultra"),
    ]


class TestSyncWrapper:
    def test_dispatch_and_commit(self):
        client = ChatSessions(settings=Settings(handler_delay=0, stream_step_delay=0))
        try:
            sink = RecordingSink()
            client.dispatch_request("new-1", "hi", sink)
            [confirmation] = sink.confirmations
            from chat_sessions.models.session import ChatRequest
            result = client.dispatch_request(
                "new-1", ChatRequest(accepted_confirmation_data=[confirmation.model_dump()]), RecordingSink(),
            )
            assert result.session_id in [i.id for i in client.list_session_items()]
        finally:
            client.close()

    def test_run_active_response(self):
        client = ChatSessions(settings=Settings(stream_step_delay=0))
        try:
            sink = RecordingSink()
            assert client.run_active_response("streaming", sink)
            assert sink.of("markdown") == ["Complete!"]
        finally:
            client.close()

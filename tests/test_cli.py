import json

import pytest
from click.testing import CliRunner

from chat_sessions.cli.main import main
from chat_sessions.client import ChatSessions


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"handler_delay": 0, "stream_step_delay": 0}))
    return path


def invoke(config_file, *args, input=None):
    return CliRunner().invoke(main, ["--config", str(config_file), *args], input=input)


class TestSessionsCommands:
    def test_list_json(self, config_file):
        result = invoke(config_file, "sessions", "list", "--json")
        assert result.exit_code == 0, result.output
        assert [s["id"] for s in json.loads(result.output)] == ["readonly", "interactive", "streaming"]

    def test_show_readonly(self, config_file):
        result = invoke(config_file, "sessions", "show", "readonly")
        assert result.exit_code == 0, result.output
        assert "What can you do?" in result.output
        assert "read-only" in result.output

    def test_catalog_is_read_only(self, config_file):
        for command in ("create", "delete"):
            result = invoke(config_file, "sessions", command)
            assert result.exit_code == 2
            assert "No such command" in result.output


def test_options_list(config_file):
    result = invoke(config_file, "options", "list")
    assert result.exit_code == 0, result.output
    assert "summarizer" in result.output


def test_commands_close_their_client(config_file, monkeypatch):
    closed = []
    original = ChatSessions.close

    def close(self):
        closed.append(self)
        original(self)

    monkeypatch.setattr(ChatSessions, "close", close)
    assert invoke(config_file, "sessions", "list").exit_code == 0
    assert invoke(config_file, "sessions", "show", "interactive").exit_code == 0
    assert invoke(config_file, "options", "list").exit_code == 0
    assert len(closed) == 3


def test_stream(config_file):
    result = invoke(config_file, "stream", "streaming")
    assert result.exit_code == 0, result.output
    assert "Processing step 3/3..." in result.output
    assert "Complete!" in result.output


def test_stream_without_active_response(config_file):
    result = invoke(config_file, "stream", "interactive")
    assert result.exit_code == 0
    assert "no active response" in result.output


def test_chat_creates_session(config_file):
    result = invoke(config_file, "chat", "new-1", input="hi\ny\n/sessions\n/quit\n")
    assert result.exit_code == 0, result.output
    assert "Create session?" in result.output
    assert "Session: session-1" in result.output


def test_chat_manages_sessions_within_one_run(config_file):
    result = invoke(
        config_file, "chat",
        input="/new Scratch\n/rename Notes\ny\n/delete\ny\n/sessions\n/quit\n",
    )
    assert result.exit_code == 0, result.output
    assert "Session: session-1 (Scratch)" in result.output
    assert "Session: session-1 (Notes)" in result.output
    assert "Deleted session" in result.output
    assert "Sessions (3 total)" in result.output


class TestConfigCommands:
    def test_set_and_show(self, config_file):
        result = invoke(config_file, "config", "set", "stream_steps", "5")
        assert result.exit_code == 0, result.output
        assert json.loads(config_file.read_text())["stream_steps"] == 5
        shown = invoke(config_file, "config", "show")
        assert '"stream_steps": 5' in shown.output

    def test_unknown_key(self, config_file):
        result = invoke(config_file, "config", "set", "colour", "blue")
        assert result.exit_code == 1
        assert "Unknown setting" in result.output

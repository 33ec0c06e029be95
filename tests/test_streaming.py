import asyncio
import logging

import pytest

from chat_sessions.errors import SinkFailure
from chat_sessions.models.session import ConfirmationPart, MarkdownPart, ProgressPart
from chat_sessions.models.confirmation import PingConfirmation
from chat_sessions.streaming import (
    CancellationToken,
    RecordingStream,
    ScriptStep,
    StreamingResponseController,
    default_script,
)


class MarkdownOnlySink:
    def __init__(self):
        self.values = []

    def markdown(self, value):
        self.values.append(value)


class ExplodingSink:
    def markdown(self, value):
        raise RuntimeError("display closed")

    def progress(self, value):
        raise RuntimeError("display closed")


class TestController:
    @pytest.mark.asyncio
    async def test_three_progress_then_markdown(self, sink):
        await StreamingResponseController(step_delay=0).run(sink, CancellationToken())
        assert [kind for kind, _ in sink.events] == ["progress", "progress", "progress", "markdown"]
        assert sink.of("progress")[0] == "Processing step 1/3..."
        assert sink.of("markdown") == ["Complete!"]

    @pytest.mark.asyncio
    async def test_cancel_after_first_event(self, sink):
        token = CancellationToken()
        original = sink.progress

        def progress(value):
            original(value)
            token.cancel()

        sink.progress = progress
        await StreamingResponseController(step_delay=0.01).run(sink, token)
        assert len(sink.events) <= 2
        assert sink.events[0] == ("progress", "Processing step 1/3...")

    @pytest.mark.asyncio
    async def test_cancel_during_wait_returns_promptly(self, sink):
        token = CancellationToken()
        task = asyncio.create_task(StreamingResponseController(step_delay=30).run(sink, token))
        await asyncio.sleep(0.01)
        token.cancel()
        await asyncio.wait_for(task, timeout=1.0)
        assert len(sink.events) == 1

    @pytest.mark.asyncio
    async def test_already_cancelled_emits_nothing(self, sink):
        token = CancellationToken()
        token.cancel()
        await StreamingResponseController(step_delay=0).run(sink, token)
        assert sink.events == []

    @pytest.mark.asyncio
    async def test_custom_script_order(self, sink):
        script = [
            ScriptStep(kind="thinking", value="hmm"),
            ScriptStep(kind="progress", value="working"),
            ScriptStep(kind="markdown", value="done"),
        ]
        await StreamingResponseController(script, step_delay=0).run(sink)
        assert sink.events == [("thinking", "hmm"), ("progress", "working"), ("markdown", "done")]

    @pytest.mark.asyncio
    async def test_sink_failure_propagates(self):
        with pytest.raises(SinkFailure):
            await StreamingResponseController(step_delay=0).run(ExplodingSink())

    @pytest.mark.asyncio
    async def test_missing_event_kind_degrades_to_markdown(self, caplog):
        out = MarkdownOnlySink()
        with caplog.at_level(logging.WARNING, logger="chat_sessions.streaming"):
            await StreamingResponseController(default_script(2), step_delay=0).run(out)
        assert out.values == ["Processing step 1/2...", "Processing step 2/2...", "Complete!"]
        assert "falling back to markdown" in caplog.text


class TestCancellationToken:
    @pytest.mark.asyncio
    async def test_wait_times_out(self):
        token = CancellationToken()
        assert await token.wait(0.01) is False
        assert not token.is_cancellation_requested

    @pytest.mark.asyncio
    async def test_wait_after_cancel(self):
        token = CancellationToken()
        token.cancel()
        assert await token.wait(10) is True


class TestRecordingStream:
    def test_forwards_and_records(self, sink):
        stream = RecordingStream(sink)
        stream.progress("p")
        stream.markdown("m")
        stream.confirmation("Ping?", "ping it", PingConfirmation(session_id="s1"))
        assert [k for k, _ in sink.events] == ["progress", "markdown", "confirmation"]
        assert isinstance(stream.parts[0], ProgressPart)
        assert isinstance(stream.parts[1], MarkdownPart)
        assert isinstance(stream.parts[2], ConfirmationPart)

    def test_sink_without_confirmations_fails(self):
        with pytest.raises(SinkFailure):
            RecordingStream(MarkdownOnlySink()).confirmation("t", "m", PingConfirmation(session_id="s1"))

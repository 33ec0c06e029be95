"""CLI: chat-sessions chat, chat-sessions stream"""

import asyncio
import contextlib
import logging
import signal
import uuid
from typing import Any, Optional

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel

from chat_sessions.client import ChatSessionHost
from chat_sessions.models.session import ChatRequest, SessionCommit
from chat_sessions.streaming import CancellationToken

logger = logging.getLogger(__name__)
console = Console()


def _run(coro):
    from chat_sessions.cli.main import _run
    return _run(coro)


class ConsoleSink:
    """Renders response events with rich; collects confirmations for the REPL."""

    def __init__(self, out: Console):
        self.out = out
        self.confirmations: list[Any] = []

    def markdown(self, value: str) -> None:
        self.out.print(Markdown(value))

    def progress(self, value: str) -> None:
        self.out.print(f"[dim]{escape(value)}[/dim]")

    def thinking(self, value: str) -> None:
        self.out.print(f"[italic magenta]{escape(value)}[/italic magenta]")

    def warning(self, value: str) -> None:
        self.out.print(f"[yellow]{escape(value)}[/yellow]")

    def confirmation(self, title: str, message: str, data: Any) -> None:
        self.out.print(Panel(escape(message), title=escape(title), border_style="cyan"))
        self.confirmations.append(data)


async def answer_confirmations(host: ChatSessionHost, session_id: str, sink: ConsoleSink, ask) -> str:
    """Ask about each outstanding confirmation and send the answers back.

    Returns the session id to continue with (a commit replaces it).
    """
    while sink.confirmations:
        accepted, rejected = [], []
        for data in sink.confirmations:
            (accepted if ask(data) else rejected).append(data.model_dump())
        sink = ConsoleSink(sink.out)
        result = await host.dispatch_request(
            session_id,
            ChatRequest(accepted_confirmation_data=accepted, rejected_confirmation_data=rejected),
            sink,
        )
        session_id = result.session_id
    return session_id


def _parse_option(arg: str) -> Optional[dict[str, Optional[str]]]:
    group, sep, value = arg.partition("=")
    if not sep or not group:
        return None
    return {"group_id": group.strip(), "value": value.strip() or None}


@click.command("chat")
@click.argument("session_id", required=False)
@click.pass_context
def chat_cmd(ctx: click.Context, session_id: Optional[str]):
    """Interactive chat. Without SESSION_ID a new untitled session is started.

    Sessions created here live as long as the REPL: /new creates one, /rename
    and /delete act on the current one after a confirmation.
    """
    settings = ctx.obj["settings"]

    async def _chat():
        host = ChatSessionHost(settings=settings)
        current = {"id": session_id or f"untitled-{uuid.uuid4().hex[:8]}"}

        def on_commit(commit: SessionCommit) -> None:
            if commit.original.id == current["id"]:
                current["id"] = commit.modified.id
                console.print(f"[dim]Session: {commit.modified.id} ({escape(commit.modified.label)})[/dim]")

        dispose = host.on_session_committed(on_commit)
        console.print(f"[dim]Session: {current['id']}[/dim]")
        console.print(
            "[cyan]Type your message (/sessions, /new \\[name], /rename <label>, /delete, "
            "/option group=value, /quit)[/cyan]\n"
        )
        try:
            while True:
                msg = click.prompt("You", prompt_suffix=": ")
                if msg.lower() in ("/quit", "/exit"):
                    break
                if msg == "/sessions":
                    from chat_sessions.cli.sessions import sessions_table
                    console.print(sessions_table(host.list_session_items()))
                    continue
                if msg == "/new" or msg.startswith("/new "):
                    item = host.create_session(msg[len("/new"):].strip() or None)
                    current["id"] = item.id
                    console.print(f"[dim]Session: {item.id} ({escape(item.label)})[/dim]")
                    continue
                if msg.startswith("/option "):
                    update = _parse_option(msg[len("/option "):])
                    if update is None:
                        console.print("[yellow]Usage: /option group=value[/yellow]")
                        continue
                    changed = host.apply_option_updates(current["id"], [update])
                    console.print(f"[dim]changed: {', '.join(changed) or 'nothing'}[/dim]")
                    continue
                sink = ConsoleSink(console)
                await host.dispatch_request(current["id"], msg, sink)
                await answer_confirmations(
                    host, current["id"], sink,
                    lambda data: click.confirm(f"Accept {data.step}?", default=True),
                )
        except (KeyboardInterrupt, EOFError, click.Abort):
            pass
        finally:
            dispose()
            host.dispose()

    _run(_chat())


@click.command("stream")
@click.argument("session_id")
@click.pass_context
def stream_cmd(ctx: click.Context, session_id: str):
    """Run a session's active response. Ctrl+C cancels."""
    settings = ctx.obj["settings"]

    async def _stream():
        host = ChatSessionHost(settings=settings)
        token = CancellationToken()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, token.cancel)
        except (NotImplementedError, RuntimeError):
            logger.debug("SIGINT handler unavailable; Ctrl+C will abort instead of cancel")
        try:
            ran = await host.run_active_response(session_id, ConsoleSink(console), token)
        finally:
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(signal.SIGINT)
            host.dispose()
        if not ran:
            console.print(f"[yellow]Session {session_id} has no active response.[/yellow]")
        elif token.is_cancellation_requested:
            console.print("[dim]Cancelled.[/dim]")

    _run(_stream())

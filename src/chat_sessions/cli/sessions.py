"""CLI: chat-sessions sessions list|show

Each invocation starts a fresh in-memory host, so these commands only read.
Creating, renaming and deleting sessions happens inside `chat-sessions chat`.
"""

import json

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from chat_sessions.models.session import RequestTurn, ResponseTurn, SessionItem

console = Console()


def _get_client(ctx):
    from chat_sessions.cli.main import _get_client
    return _get_client(ctx)


def sessions_table(items: list[SessionItem], title: str = "Sessions") -> Table:
    table = Table(title=f"{title} ({len(items)} total)")
    table.add_column("ID", style="bold")
    table.add_column("Label")
    table.add_column("Status")
    table.add_column("Kind")
    for item in items:
        table.add_row(item.id, escape(item.label), item.status.value, item.kind.value)
    return table


@click.group()
def sessions():
    """Inspect the session catalog (read-only; use `chat` to create or delete)."""


@sessions.command("list")
@click.option("--json-output", "--json", is_flag=True)
@click.pass_context
def sessions_list(ctx, json_output):
    """List sessions."""
    client = _get_client(ctx)
    try:
        items = client.list_session_items()
    finally:
        client.close()
    if json_output:
        click.echo(json.dumps([i.model_dump(mode="json") for i in items], indent=2))
        return
    console.print(sessions_table(items))


@sessions.command("show")
@click.argument("session_id")
@click.option("--json-output", "--json", is_flag=True)
@click.pass_context
def sessions_show(ctx, session_id, json_output):
    """Show a session's content. Unknown ids show the untitled placeholder."""
    client = _get_client(ctx)
    try:
        content = client.get_session_content(session_id)
        options = dict(content.options) if content.options is not None else None
    finally:
        client.close()
    if json_output:
        click.echo(json.dumps({
            "status": content.status.value,
            "read_only": content.read_only,
            "has_active_response": content.active_response_callback is not None,
            "options": options,
            "history": [t.model_dump(mode="json") for t in content.history],
        }, indent=2))
        return
    flags = [content.status.value]
    if content.read_only:
        flags.append("read-only")
    if content.active_response_callback is not None:
        flags.append("streaming")
    console.print(f"[bold]{escape(session_id)}[/bold] [dim]({', '.join(flags)})[/dim]")
    if options:
        console.print(f"[dim]options: {escape(json.dumps(options))}[/dim]")
    for turn in content.history:
        if isinstance(turn, RequestTurn):
            console.print(f"[cyan]You:[/cyan] {escape(turn.prompt)}")
        elif isinstance(turn, ResponseTurn):
            console.print(f"[green]{escape(turn.participant or 'Assistant')}:[/green] {escape(turn.text())}")

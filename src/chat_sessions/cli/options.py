"""CLI: chat-sessions options list"""

import click
from rich.console import Console
from rich.table import Table

console = Console()


def _get_client(ctx):
    from chat_sessions.cli.main import _get_client
    return _get_client(ctx)


@click.group()
def options():
    """Per-session option catalog."""


@options.command("list")
@click.pass_context
def options_list(ctx):
    """List option groups and their items."""
    client = _get_client(ctx)
    try:
        groups = client.list_option_groups()
    finally:
        client.close()
    table = Table(title="Option groups")
    table.add_column("Group", style="bold")
    table.add_column("Items")
    table.add_column("Description")
    for group in groups:
        table.add_row(group.id, ", ".join(i.id for i in group.items), group.description or "")
    console.print(table)

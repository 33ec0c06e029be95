"""
chat-sessions CLI: `chat-sessions` command.

Commands:
  chat-sessions chat [session-id]     Interactive REPL chat
  chat-sessions stream <session-id>   Run a session's active response
  chat-sessions sessions <cmd>        Session listing (read-only)
  chat-sessions options list          Option catalog
  chat-sessions config <cmd>          Show or edit settings
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Optional

try:
    import click
    from rich.console import Console
    from rich.logging import RichHandler
except ImportError:
    raise SystemExit("CLI requires extras: pip install chat-sessions[cli]")

from pydantic import ValidationError

from chat_sessions.client import ChatSessions
from chat_sessions.config import Settings, config_path, load_settings, save_settings
from chat_sessions.errors import ChatSessionsError

console = Console()


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


def _get_client(ctx: click.Context) -> ChatSessions:
    return ChatSessions(settings=_settings(ctx))


def _run(coro):
    try:
        return asyncio.run(coro)
    except ChatSessionsError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)


@click.group()
@click.version_option("0.1.0")
@click.option("--config", "config_file", type=click.Path(path_type=Path), default=None, help="Settings file")
@click.option("-v", "--verbose", is_flag=True, help="Log at debug level")
@click.pass_context
def main(ctx: click.Context, config_file: Optional[Path], verbose: bool):
    """chat-sessions CLI: demo host for the chat session registry."""
    settings = load_settings(config_file)
    _setup_logging("DEBUG" if verbose else settings.log_level)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    ctx.obj["config_file"] = config_file


@click.group("config")
def config_group():
    """Show or edit settings."""


@config_group.command("show")
@click.pass_context
def config_show(ctx: click.Context):
    """Print the effective settings as JSON."""
    console.print(f"[dim]{config_path(ctx.obj['config_file'])}[/dim]")
    click.echo(json.dumps(_settings(ctx).model_dump(mode="json"), indent=2))


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str):
    """Set one settings key. VALUE is parsed as JSON when possible."""
    if key not in Settings.model_fields:
        console.print(f"[red]Unknown setting: {key}[/red]")
        raise SystemExit(1)
    parsed: Any
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        parsed = value
    try:
        updated = Settings.model_validate({**_settings(ctx).model_dump(), key: parsed})
    except ValidationError as e:
        console.print(f"[red]Invalid value for {key}: {e.errors()[0]['msg']}[/red]")
        raise SystemExit(1)
    path = save_settings(updated, ctx.obj["config_file"])
    console.print(f"[green]{key} saved to {path}[/green]")


# Register subcommands from separate modules
from chat_sessions.cli.chat import chat_cmd, stream_cmd
from chat_sessions.cli.options import options
from chat_sessions.cli.sessions import sessions

main.add_command(chat_cmd)
main.add_command(stream_cmd)
main.add_command(sessions)
main.add_command(options)
main.add_command(config_group)


if __name__ == "__main__":
    main()

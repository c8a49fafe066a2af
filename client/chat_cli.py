#!/usr/bin/env python3

from __future__ import annotations
import asyncio
from pathlib import Path
from typing import Optional

import aioconsole
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from shared.log import get_logger, set_log_level
from shared.protocol import ChatMessage, MessageKind
from .config import ClientConfig, load_config
from .manager import ConnectionManager
from .state import ConnectionState

app = typer.Typer(help="Kabaw Chat terminal client")
console = Console()
logger = get_logger(__name__)

_STATE_STYLE = {
    ConnectionState.CONNECTED: "green",
    ConnectionState.CONNECTING: "yellow",
    ConnectionState.DISCONNECTED: "red",
}


def format_message(message: ChatMessage, own_id: Optional[str] = None) -> str:
    """Render one log entry as rich markup"""
    content = escape(message.content)
    if message.kind in (MessageKind.SYSTEM, MessageKind.USER_JOINED):
        return f"[dim]* {content}[/]"
    when = message.timestamp.astimezone().strftime("%H:%M")
    name = escape(message.username or "?")
    if own_id and message.user_id == own_id:
        return f"[dim]{when}[/] [bold cyan]{name}[/] (you): {content}"
    return f"[dim]{when}[/] [bold]{name}[/]: {content}"


def status_table(manager: ConnectionManager) -> Table:
    table = Table(title="Connection")
    table.add_column("Field")
    table.add_column("Value")
    style = _STATE_STYLE[manager.state]
    table.add_row("State", f"[{style}]{manager.state.value}[/]")
    table.add_row("Server", manager.params.url)
    table.add_row("User", f"{manager.params.username} in #{manager.params.channel}")
    table.add_row("Session", manager.session_id or "-")
    table.add_row("Attempts", f"{manager.attempts}/{manager.policy.max_attempts}")
    table.add_row("Messages", str(len(manager.messages)))
    table.add_row("Error", manager.error or "-")
    return table


def _resolve(config: Optional[Path], username: Optional[str], channel: Optional[str],
             server: Optional[str]) -> ClientConfig:
    cfg = load_config(config).merged(username=username, channel=channel, server_url=server)
    if not cfg.username or not cfg.username.strip():
        raise typer.BadParameter("a username is required (--username or KABAW_USERNAME)")
    if not cfg.channel.strip():
        raise typer.BadParameter("channel must not be empty")
    return cfg.merged(username=cfg.username.strip(), channel=cfg.channel.strip())


@app.command()
def endpoint(
    username: Optional[str] = typer.Option(None, help="Display name to join with"),
    channel: Optional[str] = typer.Option(None, help="Channel to join"),
    server: Optional[str] = typer.Option(None, help="Base websocket URL of the chat server"),
    config: Optional[Path] = typer.Option(None, help="YAML config file"),
):
    """Print the websocket URL the client would dial."""
    cfg = _resolve(config, username, channel, server)
    manager = ConnectionManager(cfg.server_url, cfg.username, cfg.channel)
    console.print(manager.params.endpoint)


@app.command()
def run(
    username: Optional[str] = typer.Option(None, help="Display name to join with"),
    channel: Optional[str] = typer.Option(None, help="Channel to join"),
    server: Optional[str] = typer.Option(None, help="Base websocket URL of the chat server"),
    config: Optional[Path] = typer.Option(None, help="YAML config file"),
):
    """Join a channel and chat interactively."""
    cfg = _resolve(config, username, channel, server)
    set_log_level(cfg.log_level)
    console.print(f"[bold green]Kabaw chat[/] as {escape(cfg.username)} in #{escape(cfg.channel)} on {cfg.server_url}")

    async def main_loop() -> None:
        manager = ConnectionManager(cfg.server_url, cfg.username, cfg.channel, policy=cfg.policy)
        manager.on("message", lambda m: console.print(format_message(m, manager.session_id)))
        manager.on("state", lambda s: console.print(f"[{_STATE_STYLE[s]}]-- {s.value}[/]"))
        manager.on("error", lambda e: e and console.print(f"[red]{escape(e)}[/]"))
        manager.connect()

        try:
            while True:
                try:
                    line = (await aioconsole.ainput(": ")).strip()
                except EOFError:
                    break
                if not line:
                    continue
                if line in {"/quit", "/exit"}:
                    break
                if line == "/help":
                    console.print("/status, /connect, /disconnect, /quit; anything else is sent")
                    continue
                if line == "/status":
                    console.print(status_table(manager))
                    continue
                if line == "/connect":
                    manager.connect()
                    continue
                if line == "/disconnect":
                    manager.disconnect()
                    continue
                if line.startswith("/"):
                    console.print("Unknown command. /help")
                    continue
                if not manager.send_message(line):
                    console.print(f"[yellow]Not sent ({manager.state.value})[/]")
        finally:
            manager.dispose()
            # let the close frame go out before the loop stops
            await asyncio.sleep(0.2)

    asyncio.run(main_loop())


def main() -> None:
    app()


if __name__ == "__main__":
    main()

"""Command line entry points for mailwatch."""

from __future__ import annotations

import asyncio
import json
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from mailwatch.configuration import DEFAULT_CONFIG_PATH, WatchConfig, dump_config, load_config
from mailwatch.errors import MailwatchError, format_error_for_cli
from mailwatch.imap import ExplicitIds, Mail, MailWatcher

T = TypeVar("T")

console = Console()
error_console = Console(stderr=True)

cli = typer.Typer(help="Watch IMAP mailboxes and act on their mails")
config_app = typer.Typer(help="Inspect mailwatch configuration")
cli.add_typer(config_app, name="config")


class MailFilter(str, Enum):
    ALL = "all"
    SEEN = "seen"
    UNSEEN = "unseen"


def _build_watcher(config: WatchConfig) -> MailWatcher:
    return MailWatcher(config)


def _load(config_path: Path) -> WatchConfig:
    try:
        return load_config(config_path)
    except MailwatchError as exc:
        error_console.print(format_error_for_cli(exc), markup=False)
        raise typer.Exit(1)


def _run(config: WatchConfig, operation: Callable[[MailWatcher], Awaitable[T]]) -> T:
    """Connect, run ``operation`` and disconnect, turning errors into exit code 1."""

    async def _session() -> T:
        watcher = _build_watcher(config)
        async with watcher.session():
            return await operation(watcher)

    try:
        return asyncio.run(_session())
    except MailwatchError as exc:
        error_console.print(format_error_for_cli(exc), markup=False)
        raise typer.Exit(1)


def _mail_to_dict(mail: Mail) -> Dict[str, Any]:
    return {
        "uid": mail.uid,
        "seq": mail.seq,
        "mailbox": mail.mailbox_path,
        "subject": mail.subject,
        "from": mail.sender.address if mail.sender else None,
        "content": mail.content,
    }


def _preview(text: str, limit: int = 60) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= limit else flat[: limit - 3] + "..."


@cli.command("watch")
def watch(
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to config file"),
    mailboxes: Optional[List[str]] = typer.Option(
        None, "--mailbox", "-m", help="Mailbox to watch (repeatable, overrides config)"
    ),
    json_output: bool = typer.Option(False, "--json", help="Print one JSON object per event"),
) -> None:
    """Watch mailboxes and print events until interrupted.

    Example:
        mailwatch watch --config ~/.mailwatch/config.json --mailbox INBOX
    """
    config = _load(config_path)
    if mailboxes:
        config = config.model_copy(update={"mailboxes_to_watch": list(mailboxes)})

    def _print_mail(kind: str, mail: Mail) -> None:
        if json_output:
            print(json.dumps({"event": kind, **_mail_to_dict(mail)}))
        else:
            sender = mail.sender.address if mail.sender else "unknown"
            console.print(
                f"[green]{kind}[/green] {escape(f'[{mail.mailbox_path}]')} #{mail.uid} "
                f"from {escape(sender)}: [bold]{escape(mail.subject)}[/bold]"
            )

    def _print_removed(uid: int) -> None:
        if json_output:
            print(json.dumps({"event": "removed", "uid": uid}))
        else:
            console.print(f"[red]removed[/red] #{uid}")

    async def _watch() -> None:
        watcher = _build_watcher(config)
        watcher.on_loaded(lambda mail: _print_mail("loaded", mail))
        watcher.on_arrived(lambda mail: _print_mail("arrived", mail))
        watcher.on_removed(_print_removed)
        await watcher.run()
        try:
            await asyncio.Event().wait()
        finally:
            await watcher.close()

    if not json_output:
        watched = ", ".join(config.mailboxes_to_watch) or "no mailboxes"
        console.print(f"[bold blue]Watching {watched} on {config.host}[/bold blue]")
        console.print("[yellow]Press Ctrl+C to stop.[/yellow]")
    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        if not json_output:
            console.print("\n[bold yellow]Watcher stopped[/bold yellow]")


@cli.command("list")
def list_mails(
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to config file"),
    mailbox: str = typer.Option("INBOX", "--mailbox", "-m", help="Mailbox path"),
    mail_filter: MailFilter = typer.Option(MailFilter.ALL, "--filter", "-f", help="Which mails to list"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """List the mails of a mailbox."""
    config = _load(config_path)

    async def _query(watcher: MailWatcher) -> List[Mail]:
        if mail_filter == MailFilter.SEEN:
            return await watcher.get_seen_mails(mailbox)
        if mail_filter == MailFilter.UNSEEN:
            return await watcher.get_unseen_mails(mailbox)
        return await watcher.get_all_mails(mailbox)

    mails = _run(config, _query)

    if json_output:
        print(json.dumps([_mail_to_dict(mail) for mail in mails]))
        return

    if not mails:
        console.print(f"[yellow]No mails in {mailbox} ({mail_filter.value}).[/yellow]")
        return

    table = Table(title=f"{mailbox} ({mail_filter.value})")
    table.add_column("UID", style="cyan", no_wrap=True)
    table.add_column("From", style="green")
    table.add_column("Subject", style="bold")
    table.add_column("Content", style="dim")
    for mail in mails:
        table.add_row(
            str(mail.uid),
            mail.sender.address if mail.sender else "",
            escape(mail.subject),
            escape(_preview(mail.content)),
        )
    console.print(table)


def _mutate(
    config_path: Path,
    mailbox: str,
    uids: List[int],
    action: str,
    json_output: bool,
) -> None:
    config = _load(config_path)

    async def _apply(watcher: MailWatcher) -> bool:
        method = getattr(watcher, f"{action}_mails")
        return await method(mailbox, ExplicitIds(uids))

    ok = _run(config, _apply)
    if json_output:
        print(json.dumps({"success": ok, "action": action, "mailbox": mailbox, "uids": uids}))
    elif ok:
        console.print(f"[bold green]✓ {action} applied to {len(uids)} mails in {mailbox}[/bold green]")
    else:
        error_console.print(f"[bold red]✗ {action} failed in {mailbox}[/bold red]")
    if not ok:
        raise typer.Exit(1)


@cli.command("see")
def see(
    uids: List[int] = typer.Argument(..., help="UIDs to mark as seen"),
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to config file"),
    mailbox: str = typer.Option("INBOX", "--mailbox", "-m", help="Mailbox path"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Mark mails as seen."""
    _mutate(config_path, mailbox, uids, "see", json_output)


@cli.command("unsee")
def unsee(
    uids: List[int] = typer.Argument(..., help="UIDs to mark as unseen"),
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to config file"),
    mailbox: str = typer.Option("INBOX", "--mailbox", "-m", help="Mailbox path"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Mark mails as unseen."""
    _mutate(config_path, mailbox, uids, "unsee", json_output)


@cli.command("delete")
def delete(
    uids: List[int] = typer.Argument(..., help="UIDs to delete"),
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to config file"),
    mailbox: str = typer.Option("INBOX", "--mailbox", "-m", help="Mailbox path"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Delete mails and expunge them."""
    _mutate(config_path, mailbox, uids, "delete", json_output)


@config_app.command("show")
def show_config(
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to config file"),
) -> None:
    """Display effective configuration with secrets masked."""
    config = _load(config_path)
    typer.echo(json.dumps(dump_config(config), indent=2))


__all__ = ["cli", "config_app"]

"""Kindling CLI entry point.

Provides ``kindling say``, ``paste``, ``rooms``, ``account list``,
``start``, ``stop``, ``setup``, ``log tail``/``log view``, and
``version``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from importlib.metadata import version as pkg_version
from pathlib import Path
from typing import Annotated

import click
import typer
from pydantic import ValidationError

from kindling.config import (
    Paths,
    build_config_toml,
    load_config,
    resolve_paths,
    write_config,
)
from kindling.daemon import Daemon, PidFile, start_detached, stop_daemon
from kindling.errors import KindlingError, RoomNotFoundError
from kindling.log import configure_logging, follow, tail_lines
from kindling.models import AccountConfig
from kindling.paste import PasteSource, read_paste
from kindling.plugins import PLUGINS
from kindling.session import Room, Session, build_session

app = typer.Typer(
    help="Kindling: post to Campfire rooms and keep watch over them.",
    no_args_is_help=True,
)
account_app = typer.Typer(help="Inspect configured accounts.", no_args_is_help=True)
log_app = typer.Typer(help="Read the daemon log.", no_args_is_help=True)
app.add_typer(account_app, name="account")
app.add_typer(log_app, name="log")


@dataclass(frozen=True)
class _Options:
    config: Path | None = None
    verbose: bool = False


@app.callback()
def main(
    ctx: typer.Context,
    config: Annotated[
        Path | None,
        typer.Option(help="Config file (default: $KINDLING_HOME/config.toml)."),
    ] = None,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Log debug output.")
    ] = False,
) -> None:
    """Kindling: post to Campfire rooms and keep watch over them."""
    ctx.obj = _Options(config=config, verbose=verbose)
    configure_logging(verbose=verbose)


def _options(ctx: typer.Context) -> _Options:
    obj = ctx.obj
    return obj if isinstance(obj, _Options) else _Options()


def _paths(ctx: typer.Context) -> Paths:
    return resolve_paths(_options(ctx).config)


@contextmanager
def _reporting_errors() -> Iterator[None]:
    """Report :class:`KindlingError` on stderr and exit 1."""
    try:
        yield
    except KindlingError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _open_session(ctx: typer.Context) -> Session:
    """Load config and build a session without plugins or hooks."""
    config = load_config(_paths(ctx).config)
    return build_session(config, with_handlers=False)


async def _post(
    session: Session,
    subdomain: str | None,
    room: str | None,
    text: str,
    *,
    paste: bool,
) -> Room:
    try:
        target = session.selected_room(subdomain, room)
        if paste:
            await target.paste(text)
        else:
            await target.say(text)
        return target
    finally:
        await session.close()


_SubdomainOption = Annotated[
    str | None, typer.Option("--subdomain", "-s", help="Account subdomain.")
]
_RoomOption = Annotated[str | None, typer.Option("--room", "-r", help="Room name.")]


@app.command()
def version() -> None:
    """Print the kindling version."""
    print(f"kindling {pkg_version('kindling-chat')}")


@app.command()
def say(
    ctx: typer.Context,
    text: Annotated[list[str], typer.Argument(help="Message text.")],
    subdomain: _SubdomainOption = None,
    room: _RoomOption = None,
) -> None:
    """Post a message to a room (the default room unless both -s and -r are given)."""
    message = " ".join(text)
    with _reporting_errors():
        session = _open_session(ctx)
        target = asyncio.run(_post(session, subdomain, room, message, paste=False))
    typer.echo(f"Sent to {target.key}.")


@app.command()
def paste(
    ctx: typer.Context,
    value: Annotated[
        str | None, typer.Argument(help="Text or filename, depending on --from.")
    ] = None,
    source: Annotated[
        PasteSource,
        typer.Option("--from", help="Where the paste comes from."),
    ] = PasteSource.AUTO,
    subdomain: _SubdomainOption = None,
    room: _RoomOption = None,
) -> None:
    """Post a paste from the clipboard, selection, stdin, a file, or an argument."""
    with _reporting_errors():
        content = read_paste(source, value)
        session = _open_session(ctx)
        target = asyncio.run(_post(session, subdomain, room, content, paste=True))
    typer.echo(f"Pasted {len(content.splitlines())} line(s) to {target.key}.")


async def _list_rooms(session: Session, subdomain: str | None) -> list[str]:
    try:
        if subdomain is not None and subdomain not in session.accounts:
            msg = f"No account configured for subdomain {subdomain!r}"
            raise RoomNotFoundError(msg)
        accounts = (
            [session.accounts[subdomain]]
            if subdomain is not None
            else list(session.accounts.values())
        )
        lines: list[str] = []
        for account in accounts:
            lines.append(account.subdomain)
            for info in await account.list_rooms():
                mark = "*" if info.name in account.rooms else " "
                topic = f"  {info.topic}" if info.topic else ""
                lines.append(f"  {mark} {info.name}{topic}")
        return lines
    finally:
        await session.close()


@app.command()
def rooms(
    ctx: typer.Context,
    subdomain: Annotated[
        str | None, typer.Argument(help="Only this account (default: all).")
    ] = None,
) -> None:
    """List rooms on the service (* marks rooms kindling watches)."""
    with _reporting_errors():
        session = _open_session(ctx)
        lines = asyncio.run(_list_rooms(session, subdomain))
    for line in lines:
        typer.echo(line)


@account_app.command("list")
def account_list(ctx: typer.Context) -> None:
    """List configured accounts and their rooms (* marks the default room)."""
    with _reporting_errors():
        session = _open_session(ctx)
    try:
        if not session.accounts:
            typer.echo("No accounts configured. Run 'kindling setup'.")
            return
        for account in session.accounts.values():
            typer.echo(f"{account.subdomain}  {account.config.url}")
            for room in account.rooms.values():
                mark = "*" if room is session.default_room else " "
                typer.echo(f"  {mark} {room.name}")
    finally:
        asyncio.run(session.close())


@app.command()
def start(
    ctx: typer.Context,
    detach: Annotated[
        bool, typer.Option("--detach/--no-detach", help="Run in the background.")
    ] = True,
) -> None:
    """Start the watcher daemon."""
    options = _options(ctx)
    paths = _paths(ctx)
    with _reporting_errors():
        config = load_config(paths.config)
        if detach:
            pid = start_detached(
                paths.pid,
                paths.log,
                config_path=options.config,
                verbose=options.verbose,
            )
            typer.echo(f"Daemon started (pid {pid}). Log: {paths.log}")
            return
        configure_logging(verbose=options.verbose, log_path=paths.log)
        session = build_session(config)
        daemon = Daemon(
            session,
            PidFile(paths.pid),
            interval=config.interval,
            max_backoff=config.max_backoff,
        )
        asyncio.run(daemon.run())


@app.command()
def stop(ctx: typer.Context) -> None:
    """Stop the watcher daemon."""
    with _reporting_errors():
        pid = stop_daemon(PidFile(_paths(ctx).pid))
    typer.echo(f"Daemon stopped (pid {pid}).")


def _prompt_account() -> AccountConfig | None:
    subdomain = typer.prompt("Campfire subdomain")
    token = typer.prompt("API token", hide_input=True)
    ssl = typer.confirm("Use SSL?", default=True)
    rooms_input = typer.prompt(
        "Rooms (comma-separated, or empty)", default="", show_default=False
    )
    room_names = tuple(r.strip() for r in rooms_input.split(",") if r.strip())
    try:
        return AccountConfig(
            subdomain=subdomain, token=token, ssl=ssl, rooms=room_names
        )
    except ValidationError as exc:
        typer.echo(f"Invalid account: {exc.errors()[0]['msg']}", err=True)
        return None


@app.command()
def setup(
    ctx: typer.Context,
    force: Annotated[
        bool, typer.Option(help="Overwrite an existing config file.")
    ] = False,
) -> None:
    """Create the config file interactively."""
    path = _paths(ctx).config
    if path.exists() and not force:
        typer.echo(
            f"{path} already exists. Edit it directly or pass --force.", err=True
        )
        raise typer.Exit(code=1)

    accounts: list[AccountConfig] = []
    while True:
        account = _prompt_account()
        if account is not None:
            accounts.append(account)
        if accounts and not typer.confirm("Add another account?", default=False):
            break

    plugins_input = typer.prompt(
        f"Plugins to enable ({', '.join(sorted(PLUGINS))}; comma-separated)",
        default="transcript",
    )
    plugins = [p.strip() for p in plugins_input.split(",") if p.strip()]
    unknown = [p for p in plugins if p not in PLUGINS]
    if unknown:
        typer.echo(f"Ignoring unknown plugin(s): {', '.join(unknown)}", err=True)
        plugins = [p for p in plugins if p in PLUGINS]

    first = accounts[0]
    content = build_config_toml(
        accounts,
        default_account=first.subdomain,
        default_room=first.rooms[0] if first.rooms else None,
        plugins=plugins,
    )
    with _reporting_errors():
        write_config(path, content)
        load_config(path)
    typer.echo(f"Created {path}")
    for account in accounts:
        typer.echo(f"  {account.subdomain}: {', '.join(account.rooms) or '(no rooms)'}")


def _require_log(ctx: typer.Context) -> Path:
    path = _paths(ctx).log
    if not path.exists():
        typer.echo(f"No log at {path}. Has the daemon been started?", err=True)
        raise typer.Exit(code=1)
    return path


@log_app.command("tail")
def log_tail(
    ctx: typer.Context,
    lines: Annotated[int, typer.Option("--lines", "-n", min=0)] = 20,
    follow_log: Annotated[
        bool, typer.Option("--follow/--no-follow", help="Keep printing new lines.")
    ] = True,
) -> None:
    """Show the end of the daemon log."""
    path = _require_log(ctx)
    for line in tail_lines(path, lines):
        typer.echo(line)
    if not follow_log:
        return
    try:
        for line in follow(path):
            typer.echo(line)
    except KeyboardInterrupt:
        pass


@log_app.command("view")
def log_view(ctx: typer.Context) -> None:
    """Page through the whole daemon log."""
    path = _require_log(ctx)
    click.echo_via_pager(path.read_text(encoding="utf-8", errors="replace"))


if __name__ == "__main__":
    app()

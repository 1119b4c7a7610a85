from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from hashdrop.catalog import build_catalog
from hashdrop.config import HashdropConfig, Host, load_config
from hashdrop.errors import HashdropError
from hashdrop.hashing import hash_file
from hashdrop.log import LOG_LEVELS, setup_logging
from hashdrop.models import RemoteStat, Verified
from hashdrop.progress_ui import waiting_spinner
from hashdrop.remote import RemoteSession, SshSession
from hashdrop.selection import Selection, select
from hashdrop.verify import raise_for_mismatches, verify, verify_upload


app = typer.Typer(help="Upload files to a remote site under a content-hash prefix and manage them.")
console = Console()
err_console = Console(stderr=True)

SIZE_UNITS = ("B", "K", "M", "G", "T", "P", "E")
# lets "-1" through as an index argument instead of an unknown option
NEGATIVE_INDICES = {"ignore_unknown_options": True}


@dataclass(slots=True)
class AppState:
    config_dir: str | None = None
    host_alias: str | None = None
    loglevel: str = "info"


def open_session(host: Host, *, log_commands: bool = False) -> RemoteSession:
    return SshSession(host, log_commands=log_commands)


def _connect(ctx: typer.Context) -> tuple[HashdropConfig, Host, RemoteSession]:
    state: AppState = ctx.obj or AppState()
    config = load_config(state.config_dir)
    host = config.get_host(state.host_alias)
    return config, host, open_session(host, log_commands=state.loglevel == "trace")


def _run(action: Callable[[], int], failure: str) -> int:
    try:
        return action()
    except KeyboardInterrupt:
        err_console.print(f"[yellow]{failure} interrupted.[/yellow]")
        return 130
    except (HashdropError, ValueError, OSError) as exc:
        err_console.print(f"[red]{failure} failed:[/red] {escape(str(exc))}", highlight=False)
        return 1


def _format_size(size: int) -> str:
    value = size
    for exponent, suffix in enumerate(SIZE_UNITS):
        # 999.5 and above would print as 1000.00, move to the next unit at 999
        if value >= 999 and exponent < len(SIZE_UNITS) - 1:
            value >>= 10
            continue
        return f"{size / (1 << (exponent * 10)):>6.2f}{suffix}"
    raise ValueError(f"Invalid size: {size}")


def _format_time(stat: RemoteStat) -> str:
    return datetime.fromtimestamp(stat.mtime).strftime("%Y-%m-%d %H:%M:%S")


def _render_selection(
    title: str,
    selection: Selection,
    host: Host,
    *,
    filenames: bool,
    with_size: bool,
    with_time: bool,
) -> None:
    num_files = len(selection.catalog)
    rows: list[list[str]] = []
    for index, path, stat in selection:
        row = [str(index), str(index - num_files)]
        if with_size:
            row.append(_format_size(stat.size) if stat else "")
        if with_time:
            row.append(_format_time(stat) if stat else "")
        row.append(Path(path).name if filenames else host.get_url(path))
        rows.append(row)

    if not console.is_terminal:
        for row in rows:
            typer.echo("\t".join(row))
        return

    if not rows:
        console.print(Text(f"{title}: nothing selected.", style="yellow"))
        return

    table = Table(title=title)
    table.add_column("#", justify="right")
    table.add_column("Rev", justify="right")
    if with_size:
        table.add_column("Size", justify="right")
    if with_time:
        table.add_column("Modified")
    table.add_column("File" if filenames else "URL", overflow="fold")
    for row in rows:
        table.add_row(*row)
    console.print(table)


@app.callback()
def main(
    ctx: typer.Context,
    config: str | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration folder. Alternatively, HASHDROP_CONFIG can be set. [default: ~/.config/hashdrop]",
    ),
    host: str | None = typer.Option(
        None,
        "--host",
        "-H",
        help="Name of the remote site. Only relevant if several remote sites are configured.",
    ),
    loglevel: str = typer.Option(
        "info",
        "--loglevel",
        "-l",
        help=f"Log level: {', '.join(LOG_LEVELS)}.",
    ),
) -> None:
    try:
        setup_logging(loglevel, console=err_console)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--loglevel") from exc
    ctx.obj = AppState(config_dir=config, host_alias=host, loglevel=loglevel.lower())


def _list(
    ctx: typer.Context,
    *,
    indices: list[int],
    filter_regex: str | None,
    first: int | None,
    last: int | None,
    newer: str | None,
    older: str | None,
    sort_size: bool,
    sort_time: bool,
    reverse: bool,
    details: bool,
    with_size: bool,
    with_time: bool,
    filenames: bool,
    url_only: bool,
    print_indices: bool,
) -> int:
    config, host, session = _connect(ctx)
    details = details or config.details

    to_list = (
        select(build_catalog(session), session, console=console)
        .by_indices(indices)
        .by_filter(filter_regex)
        .with_all_if_none(filter_regex is None)
        .select_newer(newer)
        .select_older(older)
        .sort_by_size(sort_size)
        .sort_by_time(sort_time)
        .revert(reverse)
        .first(first)
        .last(last)
        .with_stats(details or with_size or with_time)
    )

    if url_only:
        for _, path, _ in to_list:
            typer.echo(host.get_url(path))
    elif print_indices:
        typer.echo(" ".join(str(index) for index in to_list.indices))
    else:
        _render_selection(
            "Listing remote files",
            to_list,
            host,
            filenames=filenames,
            with_size=details or with_size,
            with_time=details or with_time,
        )
    return 0


@app.command("list", context_settings=NEGATIVE_INDICES)
def list_files(
    ctx: typer.Context,
    indices: list[int] | None = typer.Argument(
        None, help="Indices of files to list (if none given, list all). Negative indices count from the end."
    ),
    filter_regex: str | None = typer.Option(
        None, "--filter", "-F", metavar="REGEX", help="Filter filenames by regex."
    ),
    first: int | None = typer.Option(None, "--first", min=0, help="Only list the first N selected entries."),
    last: int | None = typer.Option(
        None,
        "--last",
        "-n",
        min=0,
        help="Only list the last N entries. Applied after sorting and reversing.",
    ),
    newer: str | None = typer.Option(
        None, "--newer", help="Select files newer than the given duration (e.g. 2h, 3days, 1w)."
    ),
    older: str | None = typer.Option(
        None, "--older", help="Select files older than the given duration (e.g. 2h, 3days, 1w)."
    ),
    sort_size: bool = typer.Option(False, "--sort-size", "-S", help="Sort listing by size."),
    sort_time: bool = typer.Option(False, "--sort-time", "-T", help="Sort listing by modification time."),
    reverse: bool = typer.Option(False, "--reverse", "-r", help="Reverse listing."),
    details: bool = typer.Option(False, "--details", "-d", help="Show all details."),
    with_size: bool = typer.Option(False, "--with-size", "-s", help="Print file sizes."),
    with_time: bool = typer.Option(False, "--with-time", "-t", help="Print remote modification time."),
    filenames: bool = typer.Option(False, "--filenames", "-f", help="Show filenames instead of full URLs."),
    url_only: bool = typer.Option(False, "--url-only", "-u", help="Only list the remote URLs."),
    print_indices: bool = typer.Option(
        False, "--indices", "-i", help="Only print indices of files (useful as input to `clean`)."
    ),
) -> None:
    """List uploaded files and their URLs."""
    raise typer.Exit(
        code=_run(
            lambda: _list(
                ctx,
                indices=indices or [],
                filter_regex=filter_regex,
                first=first,
                last=last,
                newer=newer,
                older=older,
                sort_size=sort_size,
                sort_time=sort_time,
                reverse=reverse,
                details=details,
                with_size=with_size,
                with_time=with_time,
                filenames=filenames,
                url_only=url_only,
                print_indices=print_indices,
            ),
            "List",
        )
    )


def _check(
    ctx: typer.Context,
    files: list[Path],
    *,
    details: bool,
    filenames: bool,
    url_only: bool,
    with_size: bool,
    with_time: bool,
) -> int:
    config, host, session = _connect(ctx)
    details = details or config.details

    base = select(build_catalog(session), session, console=console)
    found = base
    missing: list[Path] = []
    for local in files:
        matched = base.by_hash([local], host.prefix_length, bail_on_missing=False)
        if matched.count() == 0:
            missing.append(local)
        found = found.by_indices(list(matched.indices))
    found = found.with_stats(details or with_size or with_time)

    if url_only:
        for _, path, _ in found:
            typer.echo(host.get_url(path))
    else:
        _render_selection(
            "Found remote files",
            found,
            host,
            filenames=filenames,
            with_size=details or with_size,
            with_time=details or with_time,
        )

    if missing:
        err_console.print(
            f"[red]Not found on remote site ({len(missing)}/{len(files)}):[/red] "
            + ", ".join(str(path) for path in missing),
            highlight=False,
        )
        return 1
    return 0


@app.command()
def check(
    ctx: typer.Context,
    files: list[Path] = typer.Argument(..., help="Local file(s) to look up on the remote site."),
    details: bool = typer.Option(False, "--details", "-d", help="Show all details."),
    filenames: bool = typer.Option(False, "--filenames", "-f", help="Show filenames instead of full URLs."),
    url_only: bool = typer.Option(False, "--url-only", "-u", help="Only list the remote URLs."),
    with_size: bool = typer.Option(False, "--with-size", "-s", help="Print file sizes."),
    with_time: bool = typer.Option(False, "--with-time", "-t", help="Print remote modification time."),
) -> None:
    """Check if given local files are already present on the remote site."""
    raise typer.Exit(
        code=_run(
            lambda: _check(
                ctx,
                files,
                details=details,
                filenames=filenames,
                url_only=url_only,
                with_size=with_size,
                with_time=with_time,
            ),
            "Check",
        )
    )


def _verify(
    ctx: typer.Context,
    *,
    indices: list[int],
    files: list[Path],
    filter_regex: str | None,
    last: int | None,
    sort_size: bool,
    reverse: bool,
) -> int:
    _, host, session = _connect(ctx)

    to_verify = (
        select(build_catalog(session), session, console=console)
        .by_indices(indices)
        .by_filter(filter_regex)
        .by_hash(files, host.prefix_length, bail_on_missing=True)
        .with_all_if_none()
        .sort_by_size(sort_size)
        .revert(reverse)
        .last(last)
    )

    with waiting_spinner(f"Verifying {to_verify.count()} file(s)...", console):
        outcomes = verify(session, to_verify)

    raise_for_mismatches(outcomes)
    console.print(f"[green]Verified {len(outcomes)} file(s).[/green]")
    return 0


@app.command("verify", context_settings=NEGATIVE_INDICES)
def verify_files(
    ctx: typer.Context,
    indices: list[int] | None = typer.Argument(None, help="Indices of files to verify as returned by `list`."),
    files: list[Path] | None = typer.Option(None, "--file", "-f", help="Explicit local file to verify (repeatable)."),
    filter_regex: str | None = typer.Option(
        None, "--filter", "-F", metavar="REGEX", help="Verify all filenames matching regex."
    ),
    last: int | None = typer.Option(None, "--last", "-n", min=0, help="Only verify the last N selected files."),
    sort_size: bool = typer.Option(False, "--sort-size", "-S", help="Sort by size (useful with --last)."),
    reverse: bool = typer.Option(False, "--reverse", "-r", help="Reverse ordering."),
) -> None:
    """Verify already uploaded files by recomputing their hashes remotely."""
    raise typer.Exit(
        code=_run(
            lambda: _verify(
                ctx,
                indices=indices or [],
                files=files or [],
                filter_regex=filter_regex,
                last=last,
                sort_size=sort_size,
                reverse=reverse,
            ),
            "Verify",
        )
    )


def _clean(
    ctx: typer.Context,
    *,
    indices: list[int],
    files: list[Path],
    clean_all: bool,
    no_confirm: bool,
) -> int:
    _, host, session = _connect(ctx)

    to_delete = (
        select(build_catalog(session), session, console=console)
        .by_indices(indices)
        .by_hash(files, host.prefix_length, bail_on_missing=True)
        .with_all(clean_all)
    )
    if to_delete.count() == 0:
        console.print("[yellow]No files selected for deletion.[/yellow]")
        return 0

    if not no_confirm:
        console.print(Text("Will delete the following files:", style="bold"))
        for _, path, _ in to_delete:
            console.print(f"  [cyan]*[/cyan] [red]{escape(path)}[/red]", highlight=False)
        if not typer.confirm("Delete files?", default=False):
            console.print("Aborted.")
            return 0

    folders = list(dict.fromkeys(entry.hash_prefix for entry in to_delete.entries()))
    for folder in folders:
        for line in session.remove_folder(folder):
            console.print(line, highlight=False)
    return 0


@app.command(context_settings=NEGATIVE_INDICES)
def clean(
    ctx: typer.Context,
    indices: list[int] | None = typer.Argument(None, help="Indices of files to delete as returned by `list`."),
    files: list[Path] | None = typer.Option(None, "--file", "-f", help="Explicit local file to delete remotely."),
    clean_all: bool = typer.Option(False, "--all", help="Clean all remote files (dangerous!)."),
    no_confirm: bool = typer.Option(False, "--no-confirm", help="Disable confirming deletions."),
) -> None:
    """Delete already uploaded files."""
    raise typer.Exit(
        code=_run(
            lambda: _clean(
                ctx,
                indices=indices or [],
                files=files or [],
                clean_all=clean_all,
                no_confirm=no_confirm,
            ),
            "Clean",
        )
    )


def _rename(ctx: typer.Context, source: str, new_name: str) -> int:
    _, host, session = _connect(ctx)
    if not new_name or "/" in new_name or new_name in {".", ".."}:
        raise ValueError(f"Invalid new filename: {new_name!r}")

    base = select(build_catalog(session), session, console=console)
    try:
        selected = base.by_indices([int(source)])
    except ValueError:
        selected = base.by_hash([source], host.prefix_length, bail_on_missing=True)

    if selected.count() > 1:
        raise HashdropError(f"Found {selected.count()} matching remote files, pick one by index.")

    [entry] = selected.entries()
    target = f"{entry.hash_prefix}/{new_name}"
    session.move(entry.relative_path, target)

    url = host.get_url(target)
    if console.is_terminal:
        console.print(f"[red]{escape(entry.filename)}[/red] -> {escape(url)}", highlight=False)
    else:
        typer.echo(url)
    return 0


@app.command(context_settings=NEGATIVE_INDICES)
def rename(
    ctx: typer.Context,
    source: str = typer.Argument(..., help="Index of the remote file or local file to compute the hash from."),
    new_name: str = typer.Argument(..., help="New file name."),
) -> None:
    """Rename an already uploaded file."""
    raise typer.Exit(code=_run(lambda: _rename(ctx, source, new_name), "Rename"))


def _target_name(local: Path, prefix: str | None, suffix: str | None) -> str:
    if not local.name:
        raise ValueError(f"{local} has no filename.")
    return f"{prefix or ''}{local.stem}{suffix or ''}{local.suffix}"


def _push(
    ctx: typer.Context,
    files: list[Path],
    *,
    aliases: list[str],
    prefix: str | None,
    suffix: str | None,
    limit_kbytes: float | None,
    limit_mbits: float | None,
) -> int:
    if aliases and len(aliases) != len(files):
        raise ValueError("You need to specify as many aliases as you specify files!")
    if aliases and (prefix or suffix):
        raise ValueError("--alias cannot be combined with --prefix/--suffix.")
    if limit_kbytes is not None and limit_mbits is not None:
        raise ValueError("--limit-kbytes and --limit-mbits are mutually exclusive.")

    config, host, session = _connect(ctx)
    names = aliases or [_target_name(local, prefix, suffix) for local in files]

    # scp limits are given in Kbit/s
    limit_kbits = None
    if limit_mbits is not None:
        limit_kbits = int(limit_mbits * 1024)
    elif limit_kbytes is not None:
        limit_kbits = int(limit_kbytes * 8)

    for local, name in zip(files, names):
        with waiting_spinner(f"Hashing {local}...", console):
            token = hash_file(local, host.prefix_length)
        target = f"{token}/{name}"

        session.make_folder(token)
        with waiting_spinner(f"Uploading {local}...", console):
            session.upload_file(local, target, limit_kbits=limit_kbits)

        if config.verify_via_hash:
            with waiting_spinner("Verifying upload...", console):
                outcome = verify_upload(session, target, token)
            if not isinstance(outcome, Verified):
                session.remove_folder(token)
                raise HashdropError(
                    f"[{local}] Upload verification failed: {outcome.describe()}"
                )

        if host.group:
            session.adjust_group(token, host.group)

        typer.echo(host.get_url(target))
    return 0


@app.command()
def push(
    ctx: typer.Context,
    files: list[Path] = typer.Argument(..., help="File(s) to upload."),
    aliases: list[str] | None = typer.Option(
        None, "--alias", "-a", help="File name on the remote site (one per file, repeatable)."
    ),
    prefix: str | None = typer.Option(None, "--prefix", "-p", help="Prepend to every uploaded file name."),
    suffix: str | None = typer.Option(
        None, "--suffix", "-s", help="Append to every uploaded file name, keeping the extension."
    ),
    limit_kbytes: float | None = typer.Option(
        None, "--limit-kbytes", "-L", metavar="kByte/s", help="Limit upload speed in kByte/s."
    ),
    limit_mbits: float | None = typer.Option(
        None, "--limit-mbits", "-l", metavar="Mbit/s", help="Limit upload speed in Mbit/s."
    ),
) -> None:
    """Upload new files."""
    raise typer.Exit(
        code=_run(
            lambda: _push(
                ctx,
                files,
                aliases=aliases or [],
                prefix=prefix,
                suffix=suffix,
                limit_kbytes=limit_kbytes,
                limit_mbits=limit_mbits,
            ),
            "Push",
        )
    )

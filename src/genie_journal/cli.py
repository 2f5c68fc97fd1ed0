"""genie-journal CLI: journal the current directory onto a git ref.

    genie-journal [--dir DIR] [-i MS] [--ignore GLOBS] [--api-port PORT] [--ref REF] [-v]

Exits 1 if the directory is not a git work tree or the event listener cannot
find a free port.
"""

from __future__ import annotations

import click

from genie_journal.api import BindError
from genie_journal.config import ConfigError, JournalConfig, load_config, parse_ignore
from genie_journal.daemon import run
from genie_journal.repo import StorageError


def build_config(
    root: str,
    interval: int | None,
    ignore: str | None,
    api_port: int | None,
    ref: str | None,
) -> JournalConfig:
    try:
        cfg = load_config(root)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    return cfg.with_overrides(
        interval_ms=interval,
        ignore=parse_ignore(ignore) if ignore is not None else None,
        api_port=api_port,
        ref=ref,
    )


@click.command()
@click.version_option(package_name="genie-journal")
@click.option("--dir", "root", default=".", show_default=True, help="Directory to journal")
@click.option("-i", "--interval", type=click.IntRange(min=1), default=None,
              help="Debounce interval in milliseconds  [default: 4000]")
@click.option("--ignore", default=None, help="Comma-separated globs to ignore")
@click.option("--api-port", type=click.IntRange(0, 65535), default=None,
              help="Base port for the event API  [default: 3000]")
@click.option("--ref", default=None, help="Ref to commit onto  [default: refs/heads/journal]")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def main(root: str, interval: int | None, ignore: str | None, api_port: int | None, ref: str | None, verbose: bool) -> None:
    """Watch a git work tree and journal its changes as periodic commits."""
    cfg = build_config(root, interval, ignore, api_port, ref)
    try:
        run(cfg, verbose=verbose)
    except BindError as exc:
        click.echo(f"Failed to start API server: {exc}", err=True)
        raise SystemExit(1) from exc
    except StorageError as exc:
        raise click.ClickException(str(exc)) from exc
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()

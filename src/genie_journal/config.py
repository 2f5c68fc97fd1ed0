"""JournalConfig: per-workspace config for the journal daemon.

Looked up as ``journal.toml`` in the watched directory or any parent; every
key is optional.

journal.toml example:

    [journal]
    ref = "refs/heads/journal"
    notes_ref = "refs/notes/genie"
    interval_ms = 4000
    ignore = ["node_modules/**", "*.log"]
    flush_on_exit = true

    [author]
    name = "Genie-bot"
    email = "genie@example.com"

    [api]
    host = "127.0.0.1"
    port = 3000
    max_port_retries = 100

Command-line options override the file.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from genie_journal.api import DEFAULT_BASE_PORT, DEFAULT_HOST, MAX_PORT_RETRIES, PortRetryPolicy
from genie_journal.journaler import DEFAULT_INTERVAL_MS
from genie_journal.models import Author
from genie_journal.repo import DEFAULT_NOTES_REF, DEFAULT_REF

_CONFIG_FILENAME = "journal.toml"


class ConfigError(ValueError):
    """journal.toml exists but cannot be used."""


@dataclass
class ApiConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_BASE_PORT
    max_port_retries: int = MAX_PORT_RETRIES

    @property
    def retry_policy(self) -> PortRetryPolicy:
        return PortRetryPolicy(base_port=self.port, max_attempts=self.max_port_retries)


@dataclass
class JournalConfig:
    """Resolved configuration for one watched directory."""

    root: Path
    ref: str = DEFAULT_REF
    notes_ref: str = DEFAULT_NOTES_REF
    interval_ms: int = DEFAULT_INTERVAL_MS
    ignore: list[str] = field(default_factory=list)
    flush_on_exit: bool = True
    author: Author = field(default_factory=Author)
    api: ApiConfig = field(default_factory=ApiConfig)
    config_path: Path | None = None   # the journal.toml that was read, if any

    def with_overrides(
        self,
        interval_ms: int | None = None,
        ignore: list[str] | None = None,
        api_port: int | None = None,
        ref: str | None = None,
    ) -> JournalConfig:
        """Copy with CLI overrides applied; None leaves a value untouched."""
        cfg = replace(self, api=replace(self.api), ignore=list(self.ignore))
        if interval_ms is not None:
            cfg.interval_ms = interval_ms
        if ignore is not None:
            cfg.ignore = ignore
        if api_port is not None:
            cfg.api.port = api_port
        if ref is not None:
            cfg.ref = ref
        return cfg


def parse_ignore(value: str | None) -> list[str]:
    """Split a comma-separated glob list, dropping blanks."""
    if not value:
        return []
    return [p.strip() for p in value.split(",") if p.strip()]


def _find_config(start: Path) -> Path | None:
    """Walk upward from start looking for journal.toml."""
    for directory in (start, *start.parents):
        candidate = directory / _CONFIG_FILENAME
        if candidate.exists():
            return candidate
    return None


def load_config(root: Path | str | None = None) -> JournalConfig:
    """Load journal.toml for the watched root (cwd if None). Missing file → defaults."""
    root_path = (Path(root) if root else Path.cwd()).resolve()
    config_path = _find_config(root_path)

    raw: dict[str, Any] = {}
    if config_path is not None:
        try:
            with config_path.open("rb") as f:
                raw = tomllib.load(f)
        except tomllib.TOMLDecodeError as exc:
            msg = f"{config_path}: {exc}"
            raise ConfigError(msg) from exc

    journal = raw.get("journal", {})
    author = raw.get("author", {})
    api = raw.get("api", {})

    ignore = journal.get("ignore", [])
    if isinstance(ignore, str):
        ignore = parse_ignore(ignore)

    try:
        return JournalConfig(
            root=root_path,
            ref=str(journal.get("ref", DEFAULT_REF)),
            notes_ref=str(journal.get("notes_ref", DEFAULT_NOTES_REF)),
            interval_ms=int(journal.get("interval_ms", DEFAULT_INTERVAL_MS)),
            ignore=[str(p) for p in ignore],
            flush_on_exit=bool(journal.get("flush_on_exit", True)),
            author=Author(
                name=str(author.get("name", Author.name)),
                email=str(author.get("email", Author.email)),
            ),
            api=ApiConfig(
                host=str(api.get("host", DEFAULT_HOST)),
                port=int(api.get("port", DEFAULT_BASE_PORT)),
                max_port_retries=int(api.get("max_port_retries", MAX_PORT_RETRIES)),
            ),
            config_path=config_path,
        )
    except (TypeError, ValueError) as exc:
        msg = f"{config_path}: {exc}"
        raise ConfigError(msg) from exc

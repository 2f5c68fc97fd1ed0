"""Data models for the journal: ingested events, commit notes, commits."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

_MISSING_FIELDS = "Missing required fields: type and timestamp"


class ValidationError(ValueError):
    """An ingested event payload is malformed or incomplete."""


def iso_now() -> str:
    """UTC timestamp with millisecond precision and a ``Z`` suffix."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class Event:
    """A structured event submitted by an external tool."""

    type: str
    timestamp: str
    source: str | None = None
    path: str | None = None
    data: dict[str, Any] | None = None
    extra: dict[str, Any] = field(default_factory=dict)   # unknown keys, kept verbatim

    @classmethod
    def from_payload(cls, payload: Any) -> Event:
        """Build an Event from a decoded JSON body. Raises ValidationError."""
        if not isinstance(payload, dict):
            msg = "Invalid JSON payload"
            raise ValidationError(msg)
        if not payload.get("type") or not payload.get("timestamp"):
            raise ValidationError(_MISSING_FIELDS)
        known = {"type", "timestamp", "source", "path", "data"}
        return cls(
            type=payload["type"],
            timestamp=payload["timestamp"],
            source=payload.get("source"),
            path=payload.get("path"),
            data=payload.get("data"),
            extra={k: v for k, v in payload.items() if k not in known},
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": self.type, "timestamp": self.timestamp}
        if self.source is not None:
            d["source"] = self.source
        if self.path is not None:
            d["path"] = self.path
        if self.data is not None:
            d["data"] = self.data
        d.update(self.extra)
        return d


@dataclass
class Note:
    """Metadata attached to a journal commit via git notes."""

    nodes: list[str] = field(default_factory=list)
    events: list[Event] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.nodes or self.events)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        if self.nodes:
            d["nodes"] = list(self.nodes)
        if self.events:
            d["events"] = [e.to_dict() for e in self.events]
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, text: str) -> Note:
        raw = json.loads(text)
        return cls(
            nodes=list(raw.get("nodes", [])),
            events=[Event.from_payload(e) for e in raw.get("events", [])],
        )


@dataclass(frozen=True)
class Author:
    name: str = "Genie-bot"
    email: str = "genie@example.com"


@dataclass
class Commit:
    """A journal commit created by one flush."""

    sha: str
    ref: str
    message: str
    author: Author
    timestamp: str
    paths: list[str] = field(default_factory=list)
    note: Note | None = None

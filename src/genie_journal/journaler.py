"""Journaler: coalesces file changes and ingested events into journal commits.

State machine::

    IDLE --enqueue_change / event arrival--> ARMED --timer fires--> FLUSHING
    FLUSHING --commit + note | nothing to commit | storage failure--> IDLE

The debounce window is fixed: the first activity after IDLE arms the timer
for ``interval_ms``; later activity joins that window without extending it.

All public methods must be called on the event loop thread. ``flush()``
swaps out the pending containers before its first ``await``, so activity that
arrives while git is running lands in fresh containers and arms its own timer.
Flushes are serialised with a lock so two of them never share the git index.

Events never create a commit by themselves. A window with events but no file
changes puts the events back at the front of the queue and re-arms; they ride
on the next commit that has file changes. There is no bound on how long they
are held.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from genie_journal.models import Author, Commit, Note, iso_now
from genie_journal.node_map import node_for_path
from genie_journal.repo import StorageError

if TYPE_CHECKING:
    from collections.abc import Callable

    from genie_journal.event_queue import EventQueue
    from genie_journal.models import Event

logger = logging.getLogger("genie_journal.journaler")

DEFAULT_INTERVAL_MS = 4000


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Anything with ``call_later`` (an asyncio loop, or a fake clock in tests)."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


class Storage(Protocol):
    ref: str
    author: Author

    async def stage(self, paths: list[str]) -> list[str]: ...
    async def commit(self, message: str) -> str: ...
    async def add_note(self, sha: str, text: str) -> None: ...


class JournalerState(enum.Enum):
    IDLE = "idle"
    ARMED = "armed"
    FLUSHING = "flushing"


def commit_message(n_events: int, timestamp: str | None = None) -> str:
    msg = f"genie snapshot: {timestamp or iso_now()}"
    if n_events:
        msg += f" (includes {n_events} API events)"
    return msg


def nodes_for_paths(paths: list[str]) -> list[str]:
    """Distinct node ids in first-occurrence order; unmapped paths dropped."""
    seen: dict[str, None] = {}
    for p in paths:
        node = node_for_path(p)
        if node:
            seen.setdefault(node, None)
    return list(seen)


class Journaler:
    """Debounced committer for a watched directory."""

    def __init__(
        self,
        storage: Storage,
        events: EventQueue,
        root: Path | str,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.storage = storage
        self.events = events
        self.root = Path(root).resolve()
        self.interval_ms = interval_ms
        self._scheduler = scheduler
        self._pending: set[str] = set()
        self._timer: TimerHandle | None = None
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[Commit | None]] = set()
        self._closed = False
        events.subscribe(self.arm)

    # ------------------------------------------------------------------
    # state
    # ------------------------------------------------------------------

    @property
    def state(self) -> JournalerState:
        if self._lock.locked():
            return JournalerState.FLUSHING
        if self._timer is not None:
            return JournalerState.ARMED
        return JournalerState.IDLE

    @property
    def pending_paths(self) -> frozenset[str]:
        return frozenset(self._pending)

    # ------------------------------------------------------------------
    # producers
    # ------------------------------------------------------------------

    def _relative(self, path: str | os.PathLike[str]) -> str | None:
        p = Path(path)
        if not p.is_absolute():
            p = self.root / p
        rel = os.path.relpath(os.path.normpath(p), self.root)
        if rel == "." or rel == ".." or rel.startswith(".." + os.sep):
            return None
        return Path(rel).as_posix()

    def enqueue_change(self, path: str | os.PathLike[str]) -> None:
        """Record a changed path (absolute, or relative to the root) and arm the timer."""
        rel = self._relative(path)
        if rel is None:
            logger.warning("ignoring path outside %s: %s", self.root, path)
            return
        self._pending.add(rel)
        self.arm()

    def arm(self) -> None:
        """Schedule a flush ``interval_ms`` from now unless one is already scheduled."""
        if self._timer is not None or self._closed:
            return
        scheduler = self._scheduler or asyncio.get_running_loop()
        self._timer = scheduler.call_later(self.interval_ms / 1000, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        if not self._pending and not len(self.events):
            return
        task = asyncio.ensure_future(self.flush())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ------------------------------------------------------------------
    # flush
    # ------------------------------------------------------------------

    async def flush(self) -> Commit | None:
        """Commit pending file changes with their metadata note.

        Returns the new commit, or None when nothing was committed.
        """
        async with self._lock:
            files = sorted(self._pending)
            self._pending = set()
            pending_events = self.events.drain_all()

            if not files:
                if pending_events:
                    self.events.requeue(pending_events)
                    logger.debug("holding %d events until the next file change", len(pending_events))
                self.arm()
                return None

            try:
                return await self._commit(files, pending_events)
            except StorageError as exc:
                self._pending.update(files)
                self.events.requeue(pending_events)
                logger.warning(
                    "flush failed, %d paths and %d events kept for the next window: %s",
                    len(files), len(pending_events), exc,
                )
                self.arm()
                return None

    async def _commit(self, files: list[str], pending_events: list[Event]) -> Commit:
        await self.storage.stage(files)
        timestamp = iso_now()
        message = commit_message(len(pending_events), timestamp)
        sha = await self.storage.commit(message)

        note = Note(nodes=nodes_for_paths(files), events=pending_events)
        if note:
            await self.storage.add_note(sha, note.to_json())

        logger.info("committed %s on %s: %d paths, %d events", sha[:12], self.storage.ref, len(files), len(pending_events))
        return Commit(
            sha=sha,
            ref=self.storage.ref,
            message=message,
            author=self.storage.author,
            timestamp=timestamp,
            paths=files,
            note=note or None,
        )

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    async def join(self) -> None:
        """Wait for any flush started by the timer to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def aclose(self, flush_pending: bool = True) -> None:
        """Stop the timer, let the in-flight flush finish, optionally flush what is left."""
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        await self.join()
        if flush_pending and self._pending:
            await self.flush()
        if self._pending:
            logger.warning("shutting down with %d uncommitted paths", len(self._pending))
        if len(self.events):
            logger.warning("shutting down with %d events not attached to any commit", len(self.events))

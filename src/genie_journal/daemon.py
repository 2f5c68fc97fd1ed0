"""Journal daemon: wires watcher, ingestion listener and Journaler on one loop.

Startup order: git check → ingestion listener (port announced on stdout) →
watcher. SIGINT/SIGTERM stop the producers first, then let the Journaler
finish its in-flight flush and commit whatever is still pending.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import TYPE_CHECKING

from genie_journal.api import EventIngress, announce_port
from genie_journal.event_queue import EventQueue
from genie_journal.journaler import Journaler
from genie_journal.repo import GitRepo
from genie_journal.watcher import Watcher

if TYPE_CHECKING:
    from genie_journal.config import JournalConfig
    from genie_journal.models import Event

logger = logging.getLogger("genie_journal.daemon")


class JournalDaemon:
    """All components of one running journal, bound to the current loop."""

    def __init__(self, cfg: JournalConfig) -> None:
        self.cfg = cfg
        self.repo = GitRepo(cfg.root, ref=cfg.ref, notes_ref=cfg.notes_ref, author=cfg.author)
        self.events = EventQueue()
        self.journaler = Journaler(self.repo, self.events, root=cfg.root, interval_ms=cfg.interval_ms)
        self.ingress: EventIngress | None = None
        self.watcher: Watcher | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stopped = asyncio.Event()

    # Called from listener / watcher threads.

    def _submit_event(self, event: Event) -> None:
        assert self._loop is not None
        self._loop.call_soon_threadsafe(self.events.append, event)

    def _on_change(self, path: str) -> None:
        assert self._loop is not None
        self._loop.call_soon_threadsafe(self.journaler.enqueue_change, path)

    async def start(self) -> int:
        """Start listener and watcher; returns the bound ingestion port.

        Raises StorageError if the root is not a git work tree and BindError
        if no port is free.
        """
        self._loop = asyncio.get_running_loop()
        await self.repo.ensure()

        self.ingress = EventIngress(self._submit_event, self.cfg.api.retry_policy, host=self.cfg.api.host)
        port = self.ingress.start()
        announce_port(port)

        self.watcher = Watcher(self.cfg.root, self._on_change, self.cfg.ignore)
        self.watcher.start()
        logger.info("journaling %s onto %s every %dms", self.cfg.root, self.cfg.ref, self.cfg.interval_ms)
        return port

    def request_stop(self) -> None:
        self._stopped.set()

    async def wait(self) -> None:
        await self._stopped.wait()

    async def stop(self) -> None:
        if self.watcher is not None:
            self.watcher.stop()
            self.watcher = None
        if self.ingress is not None:
            await asyncio.to_thread(self.ingress.stop)
            self.ingress = None
        await self.journaler.aclose(flush_pending=self.cfg.flush_on_exit)


async def run_daemon(cfg: JournalConfig) -> None:
    """Run until SIGINT/SIGTERM."""
    daemon = JournalDaemon(cfg)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, daemon.request_stop)
        except (NotImplementedError, RuntimeError):
            pass  # Windows / non-main thread: Ctrl-C still raises KeyboardInterrupt
    try:
        await daemon.start()
        await daemon.wait()
    finally:
        logger.info("shutting down")
        await daemon.stop()


def run(cfg: JournalConfig, verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(name)s %(message)s",
    )
    asyncio.run(run_daemon(cfg))

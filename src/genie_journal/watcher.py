"""inotify watcher: reports every file add/change/delete under a root.

Runs in a background thread and calls ``on_change(abs_path)`` once per
observed mutation. Paths with a ``.git`` component and paths matching any
ignore glob are never reported, and neither is the initial state of the tree.

Falls back to mtime polling if inotify is unavailable (macOS, Docker).
"""

from __future__ import annotations

import logging
import os
import threading
from fnmatch import fnmatch
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

logger = logging.getLogger("genie_journal.watcher")

_INOTIFY_TIMEOUT_MS = 500
_POLL_INTERVAL = 1.0


def is_ignored(rel: str, ignore: Iterable[str] = ()) -> bool:
    """True for git metadata and for paths matching an ignore glob.

    Globs are tried against the whole root-relative path and against each
    path component, so ``node_modules``, ``*.log`` and ``build/**`` all work.
    """
    parts = Path(rel).parts
    if ".git" in parts:
        return True
    rel_posix = Path(rel).as_posix()
    for pat in ignore:
        pat = pat.strip().lstrip("/")
        if not pat:
            continue
        if fnmatch(rel_posix, pat) or any(fnmatch(part, pat) for part in parts):
            return True
    return False


# ---------------------------------------------------------------------------
# inotify watcher
# ---------------------------------------------------------------------------

def watch_inotify(
    root: Path,
    on_change: Callable[[str], None],
    ignore: list[str],
    stop: threading.Event,
    ready: threading.Event | None = None,
) -> None:
    """Watch using inotify_simple (Linux). Blocks until ``stop`` is set."""
    import inotify_simple  # type: ignore[import]

    inotify = inotify_simple.INotify()
    flags = inotify_simple.flags  # type: ignore[attr-defined]
    mask = (
        flags.CREATE | flags.CLOSE_WRITE | flags.DELETE
        | flags.MOVED_FROM | flags.MOVED_TO | flags.DELETE_SELF
    )

    # wd → directory path
    watched: dict[int, Path] = {}

    def _add_tree(top: Path, report: bool) -> None:
        # Watch first, list second: nothing written in between is lost.
        stack = [top]
        while stack:
            d = stack.pop()
            if d != root and is_ignored(str(d.relative_to(root)), ignore):
                continue
            try:
                wd = inotify.add_watch(str(d), mask)
                entries = list(os.scandir(d))
            except OSError:
                continue
            watched[wd] = d
            for entry in entries:
                if entry.is_dir(follow_symlinks=False):
                    stack.append(Path(entry.path))
                elif report:
                    _emit(Path(entry.path))

    def _emit(path: Path) -> None:
        rel = str(path.relative_to(root))
        if is_ignored(rel, ignore):
            return
        try:
            on_change(str(path))
        except Exception:
            logger.exception("change callback failed for %s", path)

    def _forget(top: Path) -> None:
        for wd, d in list(watched.items()):
            if d == top or top in d.parents:
                del watched[wd]
                try:
                    inotify.rm_watch(wd)
                except OSError:
                    pass

    try:
        _add_tree(root, report=False)
        snapshot = scan_tree(root, ignore)
        logger.info("inotify watching %s (%d dirs)", root, len(watched))
        if ready is not None:
            ready.set()

        while not stop.is_set():
            for event in inotify.read(timeout=_INOTIFY_TIMEOUT_MS):
                if event.mask & flags.Q_OVERFLOW:
                    # Events were dropped. Rescan and report everything that
                    # differs from the last full scan.
                    logger.warning("inotify queue overflow under %s, rescanning", root)
                    _add_tree(root, report=False)
                    current = scan_tree(root, ignore)
                    for rel in diff_scans(snapshot, current):
                        _emit(root / rel)
                    snapshot = current
                    continue
                dir_path = watched.get(event.wd)
                if dir_path is None:
                    continue
                if event.mask & flags.DELETE_SELF:
                    watched.pop(event.wd, None)
                    continue
                if not event.name:
                    continue
                changed = dir_path / event.name
                is_dir = bool(event.mask & flags.ISDIR)

                if is_dir:
                    if event.mask & (flags.CREATE | flags.MOVED_TO):
                        _add_tree(changed, report=True)
                    elif event.mask & (flags.DELETE | flags.MOVED_FROM):
                        # One notification for the whole subtree.
                        _forget(changed)
                        _emit(changed)
                    continue
                _emit(changed)
    finally:
        inotify.close()


# ---------------------------------------------------------------------------
# Polling fallback
# ---------------------------------------------------------------------------

def scan_tree(root: Path, ignore: list[str]) -> dict[str, tuple[int, int]]:
    """Root-relative path → (mtime_ns, size) for every file not ignored."""
    seen: dict[str, tuple[int, int]] = {}
    for dirpath, dirnames, filenames in os.walk(root):
        d = Path(dirpath)
        rel_dir = "" if d == root else str(d.relative_to(root))
        if rel_dir and is_ignored(rel_dir, ignore):
            dirnames[:] = []
            continue
        for name in filenames:
            rel = os.path.join(rel_dir, name) if rel_dir else name
            if is_ignored(rel, ignore):
                continue
            try:
                st = os.stat(d / name)
            except OSError:
                continue
            seen[rel] = (st.st_mtime_ns, st.st_size)
    return seen


def diff_scans(before: dict[str, tuple[int, int]], after: dict[str, tuple[int, int]]) -> list[str]:
    """Paths added, changed or removed between two scans."""
    changed = [p for p, sig in after.items() if before.get(p) != sig]
    removed = [p for p in before if p not in after]
    return changed + removed


def watch_poll(
    root: Path,
    on_change: Callable[[str], None],
    ignore: list[str],
    stop: threading.Event,
    interval: float = _POLL_INTERVAL,
    ready: threading.Event | None = None,
) -> None:
    """Polling fallback. Compares mtimes every interval seconds."""
    logger.info("polling %s interval=%.1fs", root, interval)
    previous = scan_tree(root, ignore)
    if ready is not None:
        ready.set()
    while not stop.wait(interval):
        current = scan_tree(root, ignore)
        for rel in diff_scans(previous, current):
            try:
                on_change(str(root / rel))
            except Exception:
                logger.exception("change callback failed for %s", rel)
        previous = current


# ---------------------------------------------------------------------------
# Thread wrapper
# ---------------------------------------------------------------------------

class Watcher:
    """Runs the best available watch backend in a daemon thread."""

    def __init__(
        self,
        root: Path | str,
        on_change: Callable[[str], None],
        ignore: list[str] | None = None,
        use_inotify: bool = True,
        poll_interval: float = _POLL_INTERVAL,
    ) -> None:
        self.root = Path(root).resolve()
        self.on_change = on_change
        self.ignore = list(ignore or [])
        self.use_inotify = use_inotify
        self.poll_interval = poll_interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()

    def _run(self) -> None:
        try:
            if self.use_inotify:
                try:
                    watch_inotify(self.root, self.on_change, self.ignore, self._stop, self._ready)
                    return
                except ImportError:
                    logger.warning("inotify_simple not available, falling back to polling")
            watch_poll(self.root, self.on_change, self.ignore, self._stop, self.poll_interval, self._ready)
        except Exception:
            logger.exception("watcher stopped unexpectedly")
        finally:
            self._ready.set()

    def start(self, wait: float = 5.0) -> None:
        """Start the watch thread; waits until the initial tree is registered."""
        self._thread = threading.Thread(target=self._run, name="genie-journal-watcher", daemon=True)
        self._thread.start()
        self._ready.wait(wait)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

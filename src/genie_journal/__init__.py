"""Auto-versioned workspace timeline: file changes become debounced git commits.

Layout inside the watched repository:
    refs/heads/journal        # snapshot commits (configurable), HEAD untouched
    refs/notes/genie          # one JSON note per annotated commit
    .git/genie-journal.index  # private index the snapshots are built from

Note payload:
    {"nodes": ["alpha", ...], "events": [{"type":..., "timestamp":..., ...}]}
    Absent keys mean none of that kind for the commit. A node is the path
    segment after a ``nodes/`` directory (``nodes/alpha/file.txt`` → alpha).

External tools submit events with ``POST /log_event`` on the port announced
as ``JOURNAL_DAEMON_PORT:<port>``; events are attached to the next commit
that has file changes.
"""

from genie_journal.config import JournalConfig, load_config
from genie_journal.event_queue import EventQueue
from genie_journal.journaler import Journaler, JournalerState
from genie_journal.models import Commit, Event, Note
from genie_journal.node_map import node_for_path
from genie_journal.repo import GitRepo, StorageError

__all__ = [
    "Commit",
    "Event",
    "EventQueue",
    "GitRepo",
    "Journaler",
    "JournalerState",
    "JournalConfig",
    "Note",
    "StorageError",
    "load_config",
    "node_for_path",
]

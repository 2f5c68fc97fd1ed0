"""Map a workspace path to the logical node it belongs to.

Convention: ``nodes/<slug>/...`` → ``<slug>``. The first ``nodes`` directory
component wins, wherever it sits in the path.
"""

from __future__ import annotations

from pathlib import PurePosixPath


def node_for_path(path: str) -> str | None:
    parts = PurePosixPath(path.replace("\\", "/")).parts
    for i, part in enumerate(parts[:-1]):
        if part == "nodes":
            return parts[i + 1] or None
    return None

"""Shared pytest fixtures for genie-journal tests."""

import asyncio
import shutil
import subprocess
from pathlib import Path

import pytest

from genie_journal.event_queue import EventQueue
from genie_journal.journaler import Journaler
from genie_journal.models import Author
from genie_journal.repo import StorageError


# ---------------------------------------------------------------------------
# git helpers
# ---------------------------------------------------------------------------

def git(repo: Path, *args: str) -> str:
    """Run git in repo with a fixed identity; returns stdout."""
    result = subprocess.run(
        ["git", "-c", "user.name=Test", "-c", "user.email=test@example.com", *args],
        cwd=repo,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout


@pytest.fixture
def git_repo(tmp_path, monkeypatch):
    """An empty git repository (no commits yet)."""
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path.parent))
    repo = tmp_path / "work"
    repo.mkdir()
    git(repo, "init", "-q")
    return repo


@pytest.fixture
def git_repo_with_head(git_repo):
    """A git repository with one commit on its checked-out branch."""
    (git_repo / "README.md").write_text("hello\n")
    git(git_repo, "add", "README.md")
    git(git_repo, "commit", "-q", "-m", "initial")
    return git_repo


# ---------------------------------------------------------------------------
# Journaler doubles
# ---------------------------------------------------------------------------

class FakeHandle:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Manual clock: timers only run when the test calls fire()."""

    def __init__(self):
        self.handles = []

    def call_later(self, delay, callback, *args):
        handle = FakeHandle(delay, lambda: callback(*args))
        self.handles.append(handle)
        return handle

    @property
    def pending(self):
        return [h for h in self.handles if not h.cancelled]

    def fire(self):
        """Run the oldest outstanding timer."""
        handle = self.pending[0]
        self.handles.remove(handle)
        handle.callback()


class FakeStorage:
    """In-memory stand-in for GitRepo."""

    def __init__(self):
        self.ref = "refs/heads/journal"
        self.author = Author()
        self.staged = []
        self.messages = []
        self.notes = {}
        self.fail_stage = False
        self.fail_commit = False
        self.fail_note = False
        self.commit_gate = None

    async def stage(self, paths):
        if self.fail_stage:
            raise StorageError("stage failed")
        self.staged.append(list(paths))
        return list(paths)

    async def commit(self, message):
        if self.commit_gate is not None:
            await self.commit_gate.wait()
        if self.fail_commit:
            raise StorageError("commit failed")
        self.messages.append(message)
        return f"{len(self.messages):040x}"

    async def add_note(self, sha, text):
        if self.fail_note:
            raise StorageError("note failed")
        self.notes[sha] = text


async def until(predicate, attempts=50):
    """Yield to the loop until predicate() holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def event_queue():
    return EventQueue()


@pytest.fixture
def journaler(storage, event_queue, scheduler, tmp_path):
    return Journaler(storage, event_queue, root=tmp_path, interval_ms=100, scheduler=scheduler)

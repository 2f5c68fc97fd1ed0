"""End-to-end journaling against a real repository and real timers."""

import asyncio
import json
import re
import urllib.request

import pytest

from genie_journal.config import load_config
from genie_journal.daemon import JournalDaemon
from genie_journal.event_queue import EventQueue
from genie_journal.journaler import Journaler
from genie_journal.models import Event
from genie_journal.repo import GitRepo

INTERVAL_MS = 100


@pytest.fixture
def repo(git_repo):
    return GitRepo(git_repo)


@pytest.fixture
def queue():
    return EventQueue()


@pytest.fixture
def journaler(repo, queue, git_repo):
    return Journaler(repo, queue, root=git_repo, interval_ms=INTERVAL_MS)


async def _settle(journaler, seconds):
    await asyncio.sleep(seconds)
    await journaler.join()


class TestDirectFlush:
    @pytest.mark.asyncio
    async def test_flush_commits_existing_file(self, journaler, repo, git_repo):
        (git_repo / "a.txt").write_text("a\n")
        journaler.enqueue_change("a.txt")
        commit = await journaler.flush()

        assert commit is not None
        assert journaler.pending_paths == frozenset()
        assert [sha for sha, _ in await repo.log()] == [commit.sha]
        await journaler.aclose()


class TestDebouncedCommits:
    @pytest.mark.asyncio
    async def test_two_paths_within_window_make_one_commit(self, journaler, repo, git_repo):
        (git_repo / "a.txt").write_text("a\n")
        (git_repo / "b.txt").write_text("b\n")
        journaler.enqueue_change("a.txt")
        await asyncio.sleep(INTERVAL_MS / 1000 / 4)
        journaler.enqueue_change("b.txt")
        await _settle(journaler, INTERVAL_MS / 1000 * 3)

        log = await repo.log()
        assert len(log) == 1
        sha, subject = log[0]
        assert re.fullmatch(r"genie snapshot: \S+Z", subject)
        assert sorted(await repo.changed_paths(sha)) == ["a.txt", "b.txt"]

    @pytest.mark.asyncio
    async def test_events_alone_make_no_commit(self, journaler, repo, queue):
        queue.append(Event("tool_run", "2025-01-01T00:00:00Z"))
        await _settle(journaler, INTERVAL_MS / 1000 * 2.5)

        assert await repo.log() == []
        assert len(queue) == 1
        await journaler.aclose()

    @pytest.mark.asyncio
    async def test_node_and_events_in_note(self, journaler, repo, queue, git_repo):
        queue.append(Event("tool_run", "2025-01-01T00:00:00Z", source="agent"))
        await _settle(journaler, INTERVAL_MS / 1000 * 1.5)

        (git_repo / "nodes" / "alpha").mkdir(parents=True)
        (git_repo / "nodes" / "alpha" / "file.txt").write_text("x\n")
        journaler.enqueue_change(str(git_repo / "nodes" / "alpha" / "file.txt"))
        await _settle(journaler, INTERVAL_MS / 1000 * 3)

        log = await repo.log()
        assert len(log) == 1
        sha, subject = log[0]
        assert subject.endswith("(includes 1 API events)")
        note = json.loads(await repo.read_note(sha))
        assert note["nodes"] == ["alpha"]
        assert note["events"] == [{"type": "tool_run", "timestamp": "2025-01-01T00:00:00Z", "source": "agent"}]


class TestDaemon:
    """Watcher + listener + Journaler wired together."""

    @pytest.mark.asyncio
    async def test_file_write_and_event_end_up_in_one_commit(self, git_repo, capsys):
        cfg = load_config(git_repo).with_overrides(interval_ms=INTERVAL_MS, api_port=0)
        daemon = JournalDaemon(cfg)
        port = await daemon.start()
        try:
            assert f"JOURNAL_DAEMON_PORT:{port}" in capsys.readouterr().out

            body = json.dumps({"type": "note", "timestamp": "2025-01-01T00:00:00Z"}).encode()
            req = urllib.request.Request(f"http://127.0.0.1:{port}/log_event", data=body, method="POST")
            status = await asyncio.to_thread(lambda: urllib.request.urlopen(req, timeout=5).status)
            assert status == 202

            (git_repo / "nodes" / "alpha").mkdir(parents=True)
            (git_repo / "nodes" / "alpha" / "file.txt").write_text("x\n")

            log = []
            for _ in range(100):
                await asyncio.sleep(0.1)
                log = await daemon.repo.log()
                if log:
                    break
            assert log, "no journal commit was created"
        finally:
            await daemon.stop()

        note = json.loads(await daemon.repo.read_note(log[-1][0]))
        assert "alpha" in note["nodes"]
        assert note["events"][0]["type"] == "note"
